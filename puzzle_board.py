"""Per-player puzzle board: available pieces, placed pieces and hint zones."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from api_errors import ValidationError
from phase_formats import PHASE_ORDER, PHASE_TITLES, Phase, PhaseTitle, Quote


@dataclass(frozen=True)
class DropResult:
    accepted: bool
    correct: bool
    item_id: str
    phase: str
    hint_zone: str | None = None
    completed: bool = False

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "correct": self.correct,
            "item_id": self.item_id,
            "phase": self.phase,
            "hint_zone": self.hint_zone,
            "completed": self.completed,
        }


class DragSession:
    """One drag gesture, from pick-up to drop."""

    def __init__(self, board: "PuzzleBoard", item_id: str):
        self.board = board
        self.item_id = item_id
        self.highlighted: Phase | None = None
        self.finished = False

    def hover(self, phase) -> Phase | None:
        self.highlighted = Phase.parse(phase)
        return self.highlighted

    def drop(self, phase) -> DropResult:
        if self.finished:
            raise ValidationError("This piece was already dropped.")
        self.finished = True
        self.highlighted = None
        return self.board.attempt_drop(self.item_id, phase)

    def cancel(self) -> None:
        self.finished = True
        self.highlighted = None


class PuzzleBoard:
    WRONG_ATTEMPTS_FOR_HINT = 2
    HINT_ZONE_SECONDS = 3

    def __init__(self, engine, quotes: list[Quote], clock=None):
        self.engine = engine
        self.clock = clock or engine.clock
        self.quotes = list(quotes)
        self._quotes_by_id = {quote.id: quote for quote in self.quotes}
        self.available_quotes: list[Quote] = list(self.quotes)
        self.available_titles: list[PhaseTitle] = list(PHASE_TITLES)
        self.placed_quotes: dict[Phase, list[Quote]] = {phase: [] for phase in PHASE_ORDER}
        self.placed_titles: dict[Phase, PhaseTitle | None] = {
            phase: None for phase in PHASE_ORDER
        }
        self.item_wrong_attempts: dict[str, int] = {}
        self.phase_misses: Counter = Counter()
        self._hint_zone: Phase | None = None
        self._hint_zone_until = 0.0
        self._completion_fired = False

    # ------------------------
    # Progress
    # ------------------------

    @property
    def total_items(self) -> int:
        return len(self.quotes) + len(PHASE_TITLES)

    @property
    def placed_count(self) -> int:
        quotes = sum(len(items) for items in self.placed_quotes.values())
        titles = sum(1 for title in self.placed_titles.values() if title is not None)
        return quotes + titles

    @property
    def progress(self) -> float:
        if not self.total_items:
            return 0.0
        return round(self.placed_count / self.total_items * 100, 1)

    @property
    def is_complete(self) -> bool:
        return self.placed_count == self.total_items

    @property
    def hint_zone(self) -> Phase | None:
        if self._hint_zone is not None and self.clock() >= self._hint_zone_until:
            self._hint_zone = None
        return self._hint_zone

    # ------------------------
    # Interaction
    # ------------------------

    def begin_drag(self, item_id: str) -> DragSession:
        self._find_available(item_id)
        return DragSession(self, item_id)

    def attempt_drop(self, item_id: str, target_phase) -> DropResult:
        phase = Phase.parse(target_phase)
        if phase is None:
            raise ValidationError("Unknown phase zone.")

        with self.engine.lock:
            item = self._find_available(item_id)
            self._hint_zone = None

            if isinstance(item, PhaseTitle):
                correct = self.engine.place_title(item.id, phase)
            else:
                correct = self.engine.place_quote(item.id, phase, item.phase)

            if correct is None:
                return DropResult(accepted=False, correct=False, item_id=item_id, phase=phase.value)

            if correct:
                self._place(item, phase)
                self.item_wrong_attempts[item.id] = 0
            else:
                attempts = self.item_wrong_attempts.get(item.id, 0) + 1
                self.item_wrong_attempts[item.id] = attempts
                self.phase_misses[item.phase] += 1
                if attempts >= self.WRONG_ATTEMPTS_FOR_HINT:
                    self._hint_zone = item.phase
                    self._hint_zone_until = self.clock() + self.HINT_ZONE_SECONDS

            completed = False
            if self.is_complete and not self._completion_fired:
                self._completion_fired = True
                completed = self.engine.complete_game(self.engine.remaining_seconds())

            hint = self.hint_zone
            return DropResult(
                accepted=True,
                correct=correct,
                item_id=item.id,
                phase=phase.value,
                hint_zone=hint.value if hint else None,
                completed=bool(completed),
            )

    def remove_item(self, item_id: str, from_phase) -> None:
        """Send a placed piece back to the pool. Scores are left untouched."""
        phase = Phase.parse(from_phase)
        if phase is None:
            raise ValidationError("Unknown phase zone.")

        with self.engine.lock:
            title = self.placed_titles.get(phase)
            if title is not None and title.id == item_id:
                self.placed_titles[phase] = None
                self.available_titles.append(title)
                return

            placed = self.placed_quotes[phase]
            for quote in placed:
                if quote.id == item_id:
                    self.placed_quotes[phase] = [q for q in placed if q.id != item_id]
                    self.available_quotes.append(quote)
                    return

        raise ValidationError("That piece is not placed on this zone.")

    def restore(self, placements: dict[str, str]) -> int:
        """Re-place pieces whose recorded phase is their correct phase."""
        restored = 0
        for item_id, raw_phase in (placements or {}).items():
            phase = Phase.parse(raw_phase)
            if phase is None:
                continue
            item = self._lookup_available(item_id)
            if item is None or item.phase != phase:
                continue
            self._place(item, phase)
            restored += 1
        if self.is_complete:
            self._completion_fired = True
        return restored

    def phase_miss_counts(self) -> dict[str, int]:
        return {phase.value: self.phase_misses.get(phase, 0) for phase in PHASE_ORDER}

    # ------------------------
    # Internals
    # ------------------------

    def _lookup_available(self, item_id: str):
        for title in self.available_titles:
            if title.id == item_id:
                return title
        for quote in self.available_quotes:
            if quote.id == item_id:
                return quote
        return None

    def _find_available(self, item_id: str):
        item = self._lookup_available(item_id)
        if item is not None:
            return item
        if item_id in self._quotes_by_id or any(t.id == item_id for t in PHASE_TITLES):
            raise ValidationError("That piece is already placed.", 409)
        raise ValidationError("Unknown puzzle piece.", 404)

    def _place(self, item, phase: Phase) -> None:
        if isinstance(item, PhaseTitle):
            self.available_titles = [t for t in self.available_titles if t.id != item.id]
            self.placed_titles[phase] = item
        else:
            self.available_quotes = [q for q in self.available_quotes if q.id != item.id]
            self.placed_quotes[phase].append(item)

    def to_dict(self) -> dict:
        hint = self.hint_zone
        return {
            "available_quotes": [q.to_dict() for q in self.available_quotes],
            "available_titles": [t.to_dict() for t in self.available_titles],
            "placed_quotes": {
                phase.value: [q.to_dict() for q in self.placed_quotes[phase]]
                for phase in PHASE_ORDER
            },
            "placed_titles": {
                phase.value: (
                    self.placed_titles[phase].to_dict() if self.placed_titles[phase] else None
                )
                for phase in PHASE_ORDER
            },
            "item_wrong_attempts": dict(self.item_wrong_attempts),
            "hint_zone": hint.value if hint else None,
            "placed_count": self.placed_count,
            "total_items": self.total_items,
            "progress": self.progress,
            "is_complete": self.is_complete,
        }
