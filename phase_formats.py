"""Shared vocabulary for the Elephant Puzzle game."""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Postgres emits 1-6 fractional digits; older fromisoformat wants exactly 3 or 6.
_ISO_FRACTION_RE = re.compile(r"\.(\d+)(?=[+-]\d\d:?\d\d$|[Zz]?$)")


class Phase(str, Enum):
    PREPARATION = "preparation"
    INCUBATION = "incubation"
    ILLUMINATION = "illumination"
    VERIFICATION = "verification"

    @classmethod
    def parse(cls, raw) -> "Phase | None":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw or "").strip().lower())
        except ValueError:
            return None


PHASE_ORDER: tuple[Phase, ...] = (
    Phase.PREPARATION,
    Phase.INCUBATION,
    Phase.ILLUMINATION,
    Phase.VERIFICATION,
)

PHASE_CONFIG: dict[Phase, dict[str, str]] = {
    Phase.PREPARATION: {
        "title": "Preparation",
        "description": "Gathering information and resources",
    },
    Phase.INCUBATION: {
        "title": "Incubation",
        "description": "Letting ideas develop subconsciously",
    },
    Phase.ILLUMINATION: {
        "title": "Illumination",
        "description": "The 'Eureka!' moment of insight",
    },
    Phase.VERIFICATION: {
        "title": "Verification",
        "description": "Testing and refining ideas",
    },
}


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @classmethod
    def parse(cls, raw) -> "Difficulty | None":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw or "").strip().lower())
        except ValueError:
            return None


DIFFICULTY_CONFIG: dict[Difficulty, dict[str, Any]] = {
    Difficulty.EASY: {
        "label": "Easy",
        "timer_seconds": 900,
        "quotes_count": 8,
        "description": "8 quotes, 15 min timer",
    },
    Difficulty.MEDIUM: {
        "label": "Medium",
        "timer_seconds": 600,
        "quotes_count": 16,
        "description": "16 quotes, 10 min timer",
    },
    Difficulty.HARD: {
        "label": "Hard",
        "timer_seconds": 300,
        "quotes_count": 24,
        "description": "24 quotes, 5 min timer",
    },
}

# Single creativity theme only.
THEME = "classic"


class AvatarType(str, Enum):
    INITIAL = "initial"
    PRESET = "preset"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, raw) -> "AvatarType | None":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw or "initial").strip().lower())
        except ValueError:
            return None


AVATAR_PRESETS: tuple[str, ...] = (
    "elephant",
    "lion",
    "unicorn",
    "dragon",
    "owl",
    "fox",
    "panda",
    "penguin",
    "butterfly",
    "bee",
    "rocket",
    "star",
)


@dataclass(frozen=True)
class Quote:
    id: str
    text: str
    author: str
    phase: Phase
    theme: str = THEME

    @classmethod
    def from_row(cls, row: dict) -> "Quote":
        return cls(
            id=str(row["id"]),
            text=str(row.get("text") or ""),
            author=str(row.get("author") or ""),
            phase=Phase(row["phase"]),
            theme=str(row.get("theme") or THEME),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "author": self.author,
            "phase": self.phase.value,
            "theme": self.theme,
        }


@dataclass(frozen=True)
class PhaseTitle:
    id: str
    title: str
    phase: Phase

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "phase": self.phase.value}


PHASE_TITLES: tuple[PhaseTitle, ...] = tuple(
    PhaseTitle(id=f"title-{phase.value}", title=PHASE_CONFIG[phase]["title"], phase=phase)
    for phase in PHASE_ORDER
)
PHASE_TITLES_BY_ID: dict[str, PhaseTitle] = {title.id: title for title in PHASE_TITLES}


@dataclass
class GameSession:
    id: str
    is_active: bool = False
    theme: str = THEME
    difficulty: Difficulty = Difficulty.MEDIUM
    timer_seconds: int = DIFFICULTY_CONFIG[Difficulty.MEDIUM]["timer_seconds"]
    timer_started_at: float | None = None
    double_points_active: bool = False
    current_hint: str | None = None
    game_ended_at: float | None = None
    quote_count: int | None = None
    created_at: float = 0.0
    updated_at: float = 0.0

    @classmethod
    def from_row(cls, row: dict) -> "GameSession":
        difficulty = Difficulty.parse(row.get("difficulty")) or Difficulty.MEDIUM
        quote_count = row.get("quote_count")
        return cls(
            id=str(row["id"]),
            is_active=bool(row.get("is_active")),
            theme=str(row.get("theme") or THEME),
            difficulty=difficulty,
            timer_seconds=int(
                row.get("timer_seconds") or DIFFICULTY_CONFIG[difficulty]["timer_seconds"]
            ),
            timer_started_at=parse_timestamp(row.get("timer_started_at")),
            double_points_active=bool(row.get("double_points_active")),
            current_hint=row.get("current_hint") or None,
            game_ended_at=parse_timestamp(row.get("game_ended_at")),
            quote_count=int(quote_count) if quote_count is not None else None,
            created_at=_timestamp(row.get("created_at")),
            updated_at=_timestamp(row.get("updated_at")),
        )

    def remaining_seconds(self, now: float) -> int | None:
        """Seconds left on the round timer, or None when no timer is running."""
        if self.timer_started_at is None:
            return None
        elapsed = now - self.timer_started_at
        return int(math.ceil(max(0.0, self.timer_seconds - elapsed)))

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["difficulty"] = self.difficulty.value
        return payload


@dataclass
class ActivePlayer:
    id: str
    session_id: str
    player_name: str
    score: int = 0
    streak: int = 0
    wrong_attempts: int = 0
    placements: dict[str, str] = field(default_factory=dict)
    is_completed: bool = False
    avatar_type: AvatarType = AvatarType.INITIAL
    avatar_value: str | None = None
    joined_at: float = 0.0
    updated_at: float = 0.0

    @classmethod
    def from_row(cls, row: dict) -> "ActivePlayer":
        placements = row.get("placements") or {}
        return cls(
            id=str(row["id"]),
            session_id=str(row.get("session_id") or ""),
            player_name=str(row.get("player_name") or ""),
            score=int(row.get("score") or 0),
            streak=int(row.get("streak") or 0),
            wrong_attempts=int(row.get("wrong_attempts") or 0),
            placements={str(k): str(v) for k, v in dict(placements).items()},
            is_completed=bool(row.get("is_completed")),
            avatar_type=AvatarType.parse(row.get("avatar_type")) or AvatarType.INITIAL,
            avatar_value=row.get("avatar_value") or None,
            joined_at=_timestamp(row.get("joined_at") or row.get("created_at")),
            updated_at=_timestamp(row.get("updated_at")),
        )

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["avatar_type"] = self.avatar_type.value
        return payload


@dataclass
class GameState:
    """Per-player game progress held by the player engine."""

    is_started: bool = False
    is_completed: bool = False
    start_time: float | None = None
    end_time: float | None = None
    placements: dict[str, str] = field(default_factory=dict)
    title_placements: dict[str, str] = field(default_factory=dict)
    score: int = 0
    base_score: int = 0
    time_bonus: int = 0
    streak: int = 0
    wrong_attempts: int = 0
    elapsed_time: int = 0

    def all_placements(self) -> dict[str, str]:
        merged = dict(self.placements)
        merged.update(self.title_placements)
        return merged

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LeaderboardEntry:
    id: str
    session_id: str | None
    player_name: str
    score: int
    time_ms: int
    theme: str = THEME
    created_at: float = 0.0

    @classmethod
    def from_row(cls, row: dict) -> "LeaderboardEntry":
        return cls(
            id=str(row["id"]),
            session_id=row.get("session_id"),
            player_name=str(row.get("player_name") or ""),
            score=int(row.get("score") or 0),
            time_ms=int(row.get("time_ms") or 0),
            theme=str(row.get("theme") or THEME),
            created_at=_timestamp(row.get("created_at")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SavedLeaderboard:
    id: str
    game_name: str
    saved_at: float
    players: list[dict] = field(default_factory=list)
    winner_name: str | None = None
    winner_score: int | None = None
    session_id: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "SavedLeaderboard":
        players = row.get("players")
        winner_score = row.get("winner_score")
        return cls(
            id=str(row["id"]),
            game_name=str(row.get("game_name") or ""),
            saved_at=_timestamp(row.get("saved_at") or row.get("created_at")),
            players=list(players) if isinstance(players, list) else [],
            winner_name=row.get("winner_name") or None,
            winner_score=int(winner_score) if winner_score is not None else None,
            session_id=row.get("session_id"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def parse_timestamp(value) -> float | None:
    """Epoch seconds from a stored timestamp.

    Local rows carry floats; the hosted backend returns ISO-8601 strings such as
    ``2025-01-01T00:00:00.123+00:00``. Naive values are read as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass
    text = _ISO_FRACTION_RE.sub(_pad_fraction, text.replace(" ", "T", 1))
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def format_timestamp(value: float | None) -> str | None:
    """ISO-8601 UTC text for an epoch timestamp."""
    if value is None:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc).isoformat()


def _pad_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def _timestamp(value) -> float:
    return parse_timestamp(value) or 0.0


# Seed catalog for a fresh local database.
DEFAULT_QUOTES: tuple[tuple[Phase, str, str], ...] = (
    (Phase.PREPARATION, "Chance favors only the prepared mind.", "Louis Pasteur"),
    (
        Phase.PREPARATION,
        "Before anything else, preparation is the key to success.",
        "Alexander Graham Bell",
    ),
    (Phase.PREPARATION, "By failing to prepare, you are preparing to fail.", "Benjamin Franklin"),
    (
        Phase.PREPARATION,
        "Give me six hours to chop down a tree and I will spend the first four sharpening the axe.",
        "Abraham Lincoln",
    ),
    (
        Phase.INCUBATION,
        "Almost everything will work again if you unplug it for a few minutes, including you.",
        "Anne Lamott",
    ),
    (
        Phase.INCUBATION,
        "Rest is not idleness, and to lie sometimes on the grass on a summer day is by no means a waste of time.",
        "John Lubbock",
    ),
    (Phase.INCUBATION, "Creativity is the residue of time wasted.", "Albert Einstein"),
    (
        Phase.INCUBATION,
        "Your mind will answer most questions if you learn to relax and wait for the answer.",
        "William S. Burroughs",
    ),
    (Phase.ILLUMINATION, "Eureka! I have found it!", "Archimedes"),
    (Phase.ILLUMINATION, "Creativity is just connecting things.", "Steve Jobs"),
    (
        Phase.ILLUMINATION,
        "The best way to have a good idea is to have lots of ideas.",
        "Linus Pauling",
    ),
    (Phase.ILLUMINATION, "Ideas come from everything.", "Alfred Hitchcock"),
    (
        Phase.VERIFICATION,
        "Genius is one percent inspiration and ninety-nine percent perspiration.",
        "Thomas Edison",
    ),
    (Phase.VERIFICATION, "Ideas are easy. Implementation is hard.", "Guy Kawasaki"),
    (
        Phase.VERIFICATION,
        "I have not failed. I've just found 10,000 ways that won't work.",
        "Thomas Edison",
    ),
    (Phase.VERIFICATION, "Vision without execution is hallucination.", "Thomas Edison"),
)
