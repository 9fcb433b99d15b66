"""Player side of the game: join, placements, scoring and round completion."""

from __future__ import annotations

import logging
import math
import random
import threading
from typing import Callable

from api_errors import GameError, NotJoinedError, ResolutionFailure, ValidationError
from leaderboard import LeaderboardService, reveal_stages
from multiplayer_service_core import MultiplayerServiceCore
from phase_formats import (
    AVATAR_PRESETS,
    PHASE_TITLES_BY_ID,
    ActivePlayer,
    AvatarType,
    GameSession,
    GameState,
    Phase,
    Quote,
)
from puzzle_board import PuzzleBoard
from reflection import build_reflection

logger = logging.getLogger(__name__)

POINTS_CORRECT = 10
POINTS_WRONG_PENALTY = 2
STREAK_BONUS = 5
STREAK_BONUS_EVERY = 3
TIME_BONUS_MULTIPLIER = 0.1


def streak_bonus_for(streak: int) -> int:
    if streak < STREAK_BONUS_EVERY:
        return 0
    return STREAK_BONUS * (streak // STREAK_BONUS_EVERY)


def score_placement(
    score: int,
    streak: int,
    wrong_attempts: int,
    *,
    correct: bool,
    double_points: bool = False,
    streak_bonus: bool = True,
) -> tuple[int, int, int]:
    """Return the (score, streak, wrong_attempts) after one placement."""
    if correct:
        streak += 1
        bonus = streak_bonus_for(streak) if streak_bonus else 0
        multiplier = 2 if double_points else 1
        return score + (POINTS_CORRECT + bonus) * multiplier, streak, wrong_attempts
    return max(0, score - POINTS_WRONG_PENALTY), 0, wrong_attempts + 1


def time_bonus_for(remaining_seconds) -> int:
    if remaining_seconds and remaining_seconds > 0:
        return int(math.floor(remaining_seconds * TIME_BONUS_MULTIPLIER))
    return 0


class PlayerSessionEngine(MultiplayerServiceCore):
    def __init__(
        self,
        *,
        store,
        leaderboard: LeaderboardService | None = None,
        notifier=None,
        scheduler=None,
        clock=None,
        rng: random.Random | None = None,
    ):
        super().__init__(store=store, notifier=notifier, scheduler=scheduler, clock=clock)
        self.notifier.name = "player"
        self.leaderboard_service = leaderboard or LeaderboardService(store)
        self.rng = rng or random.Random()
        self.lock = threading.RLock()
        self.session: GameSession | None = None
        self.player: ActivePlayer | None = None
        self.quotes: list[Quote] = []
        self._catalog: list[Quote] = []
        self.board: PuzzleBoard | None = None
        self.state = GameState()
        self.show_reveal = False
        self._game_ended_at: float | None = None

    # ------------------------
    # Loading + joining
    # ------------------------

    def load(self) -> GameSession | None:
        """Resolve the current session and deal this player's quotes."""
        with self.lock:
            ok, row = self._gateway_call(
                "Fetch session",
                "Failed to connect to game server",
                self.store.fetch_current_session,
            )
            if not ok or row is None:
                return None

            self._unsubscribe_all()
            self.session = GameSession.from_row(row)
            self._game_ended_at = self.session.game_ended_at
            self._subscribe(
                "game_sessions", self.handle_session_change, {"id": self.session.id}
            )

            ok, quote_rows = self._gateway_call(
                "Fetch quotes",
                "Failed to load quotes",
                self.store.fetch_active_quotes,
            )
            catalog = [Quote.from_row(r) for r in quote_rows] if ok else []
            self.rng.shuffle(catalog)
            self._catalog = catalog
            self._deal()
            return self.session

    def _deal(self, keep=()) -> None:
        """Build the board from the shuffled catalog, keeping ``keep`` ids in the hand."""
        keep = set(keep)
        kept = [q for q in self._catalog if q.id in keep]
        rest = [q for q in self._catalog if q.id not in keep]
        quotes = kept + rest
        count = self.session.quote_count if self.session else None
        if count and len(quotes) > count:
            quotes = quotes[:count]
        self.quotes = quotes
        self.board = PuzzleBoard(self, quotes)

    def join(self, player_name, avatar_type="initial", avatar_value=None) -> bool:
        name = self._sanitize_player_name(player_name)
        if not name:
            raise ValidationError("Player name is required.")
        avatar_kind, avatar_value = self._validate_avatar(avatar_type, avatar_value)

        with self.lock:
            if self.session is None and self.load() is None:
                self.notifier.error("No active game session")
                return False
            session = self.session

            ok, existing = self._gateway_call(
                "Find player",
                "Failed to join game",
                lambda: self.store.select(
                    "active_players",
                    {"session_id": session.id, "player_name": name},
                    limit=1,
                ),
            )
            if not ok:
                return False

            if existing:
                return self._rejoin(ActivePlayer.from_row(existing[0]), avatar_kind, avatar_value)

            ok, row = self._gateway_call(
                "Create player",
                "Failed to join game",
                lambda: self.store.insert(
                    "active_players",
                    {
                        "session_id": session.id,
                        "player_name": name,
                        "avatar_type": avatar_kind.value,
                        "avatar_value": avatar_value,
                        "score": 0,
                        "streak": 0,
                        "wrong_attempts": 0,
                        "placements": {},
                        "is_completed": False,
                    },
                ),
            )
            if not ok:
                return False

            self.player = ActivePlayer.from_row(row)
            self.state = GameState(is_started=True, start_time=self.clock())
            self._watch_player()
            logger.info("Player %s joined session %s", name, session.id)
            self.notifier.success(f"Welcome, {name}!")
            return True

    def _rejoin(self, player: ActivePlayer, avatar_kind: AvatarType, avatar_value) -> bool:
        self._gateway_call(
            "Update avatar",
            "Failed to update your avatar",
            lambda: self.store.update(
                "active_players",
                {"id": player.id},
                {"avatar_type": avatar_kind.value, "avatar_value": avatar_value},
            ),
        )
        player.avatar_type = avatar_kind
        player.avatar_value = avatar_value
        self.player = player

        quote_placements = {}
        title_placements = {}
        for item_id, phase in player.placements.items():
            if item_id in PHASE_TITLES_BY_ID:
                title_placements[item_id] = phase
            else:
                quote_placements[item_id] = phase

        self.state = GameState(
            is_started=True,
            is_completed=player.is_completed,
            start_time=self.clock(),
            placements=quote_placements,
            title_placements=title_placements,
            score=player.score,
            base_score=player.score if player.is_completed else 0,
            streak=player.streak,
            wrong_attempts=player.wrong_attempts,
        )
        self._deal(keep=quote_placements)
        self.board.restore(player.placements)
        self._watch_player()
        logger.info("Player %s rejoined session %s", player.player_name, player.session_id)
        self.notifier.success(f"Welcome back, {player.player_name}!")
        return True

    def _watch_player(self) -> None:
        self._subscribe("active_players", self._on_player_change, {"id": self.player.id})

    @staticmethod
    def _validate_avatar(avatar_type, avatar_value) -> tuple[AvatarType, str | None]:
        kind = AvatarType.parse(avatar_type)
        if kind is None:
            raise ValidationError("Avatar type must be initial, preset or custom.")
        value = str(avatar_value).strip() if avatar_value else None
        if kind is AvatarType.INITIAL:
            return kind, None
        if kind is AvatarType.PRESET and value not in AVATAR_PRESETS:
            raise ValidationError("Unknown preset avatar.")
        if kind is AvatarType.CUSTOM and not value:
            raise ValidationError("Custom avatars need an uploaded image.")
        return kind, value

    # ------------------------
    # Placements
    # ------------------------

    def can_place(self) -> bool:
        return self.player is not None and self.session is not None and not self.state.is_completed

    def place_quote(self, quote_id: str, target_phase, correct_phase) -> bool | None:
        target = Phase.parse(target_phase)
        correct_target = Phase.parse(correct_phase)
        if target is None or correct_target is None:
            raise ValidationError("Unknown phase zone.")
        with self.lock:
            if not self._check_can_place():
                return None
            is_correct = target == correct_target
            self._apply_score(is_correct, streak_bonus=True)
            self.state.placements[quote_id] = target.value
            self._persist_progress()
            return is_correct

    def place_title(self, title_id: str, target_phase) -> bool | None:
        title = PHASE_TITLES_BY_ID.get(title_id)
        target = Phase.parse(target_phase)
        if title is None:
            raise ValidationError("Unknown phase title.")
        if target is None:
            raise ValidationError("Unknown phase zone.")
        with self.lock:
            if not self._check_can_place():
                return None
            is_correct = target == title.phase
            self._apply_score(is_correct, streak_bonus=False)
            self.state.title_placements[title_id] = target.value
            self._persist_progress()
            return is_correct

    def _check_can_place(self) -> bool:
        if self.player is None or self.session is None:
            self.notifier.error("Join the game first.")
            return False
        if self.state.is_completed:
            return False
        return True

    def _apply_score(self, is_correct: bool, *, streak_bonus: bool) -> None:
        score, streak, wrong = score_placement(
            self.state.score,
            self.state.streak,
            self.state.wrong_attempts,
            correct=is_correct,
            double_points=self.session.double_points_active,
            streak_bonus=streak_bonus,
        )
        self.state.score = score
        self.state.streak = streak
        self.state.wrong_attempts = wrong

        if not is_correct:
            self.notifier.warning("Wrong phase! Try again.")
        elif streak_bonus and streak % STREAK_BONUS_EVERY == 0:
            self.notifier.success(f"{streak} Streak! +{streak_bonus_for(streak)} bonus!")

    def _persist_progress(self) -> None:
        patch = {
            "score": self.state.score,
            "streak": self.state.streak,
            "wrong_attempts": self.state.wrong_attempts,
            "placements": self.state.all_placements(),
        }
        player_id = self.player.id
        self.player.score = self.state.score
        self.player.streak = self.state.streak
        self.player.wrong_attempts = self.state.wrong_attempts
        self.player.placements = dict(patch["placements"])
        self._gateway_call(
            "Save progress",
            "Failed to save your progress",
            lambda: self.store.update("active_players", {"id": player_id}, patch),
        )

    # ------------------------
    # Completion + timer
    # ------------------------

    def remaining_seconds(self) -> int | None:
        if self.session is None:
            return None
        return self.session.remaining_seconds(self.clock())

    def elapsed_seconds(self) -> int:
        if self.state.is_completed:
            return self.state.elapsed_time
        if self.state.start_time is None:
            return 0
        return int(max(0.0, self.clock() - self.state.start_time))

    def complete_game(self, remaining_seconds=None) -> bool:
        """Commit this player's round exactly once."""
        with self.lock:
            if self.state.is_completed or self.player is None or self.session is None:
                return False

            end_time = self.clock()
            start_time = self.state.start_time if self.state.start_time is not None else end_time
            time_ms = int(round((end_time - start_time) * 1000))
            time_bonus = time_bonus_for(remaining_seconds)
            base_score = self.state.score
            final_score = base_score + time_bonus

            self.state.is_completed = True
            self.state.end_time = end_time
            self.state.base_score = base_score
            self.state.time_bonus = time_bonus
            self.state.score = final_score
            self.state.elapsed_time = time_ms // 1000
            self.player.is_completed = True
            self.player.score = final_score

            player = self.player
            session_id = self.session.id
            self._gateway_call(
                "Complete game",
                "Failed to save your final score",
                lambda: self.store.update(
                    "active_players",
                    {"id": player.id},
                    {"is_completed": True, "score": final_score},
                ),
            )
            self._gateway_call(
                "Record leaderboard",
                "Failed to record your leaderboard entry",
                lambda: self.leaderboard_service.record_completion(
                    session_id=session_id,
                    player_name=player.player_name,
                    score=final_score,
                    time_ms=time_ms,
                ),
            )

            if time_bonus > 0:
                self.notifier.success(f"Puzzle complete! +{time_bonus} time bonus!")
            else:
                self.notifier.success("Puzzle complete!")
            return True

    def handle_time_up(self) -> bool:
        with self.lock:
            if self.state.is_completed or self.player is None:
                return False
            self.show_reveal = True
            return self.complete_game()

    def check_timer(self) -> bool:
        """Run the time-up path once a running countdown has reached zero."""
        with self.lock:
            session = self.session
            if session is None or not session.is_active:
                return False
            remaining = session.remaining_seconds(self.clock())
            if remaining is None or remaining > 0:
                return False
            return self.handle_time_up()

    # ------------------------
    # Change feed
    # ------------------------

    def handle_session_change(self, event) -> None:
        if event.event_type == "delete":
            with self.lock:
                self.session = None
            return

        with self.lock:
            previous = self.session
            session_id = event.row.get("id") or (previous.id if previous else None)
            ok, rows = self._gateway_call(
                "Refetch session",
                "Lost connection to the game",
                lambda: self.store.select("game_sessions", {"id": session_id}, limit=1),
            )
            if not ok or not rows:
                return
            current = GameSession.from_row(rows[0])
            self.session = current
            if previous is not None and current.quote_count != previous.quote_count:
                self._redeal_if_untouched()

            ended_before = self._game_ended_at
            self._game_ended_at = current.game_ended_at
            if current.game_ended_at is not None and ended_before is None:
                if self.player is not None:
                    self.show_reveal = True
                    if not self.state.is_completed:
                        self.complete_game()
            elif current.game_ended_at is None and ended_before is not None:
                self.show_reveal = False

            if current.is_active and not (previous and previous.is_active):
                self.notifier.info("The game has started!")
            if current.current_hint and current.current_hint != (
                previous.current_hint if previous else None
            ):
                self.notifier.info(f"Hint: {current.current_hint}")
            if current.double_points_active and not (
                previous and previous.double_points_active
            ):
                self.notifier.success("Double Points Activated!")

    def _redeal_if_untouched(self) -> None:
        # A hand with placed items stays as dealt until the next join.
        if self.board is not None and (self.board.placed_count or self.state.is_completed):
            logger.info("Quote count changed mid-round; keeping the current hand.")
            return
        self._deal()
        if self.player is not None:
            self.notifier.info(f"The Game Master changed the puzzle to {len(self.quotes)} quotes.")

    def _on_player_change(self, event) -> None:
        if event.event_type != "delete":
            return
        with self.lock:
            if self.player is None:
                return
            logger.info("Player %s was removed from the session", self.player.player_name)
            self._unsubscribe_player()
            self.player = None
            self.state = GameState()
            self.show_reveal = False
            self.board = PuzzleBoard(self, self.quotes)
            self.notifier.warning("The Game Master cleared the players. Join again to play.")

    def _unsubscribe_player(self) -> None:
        keep = []
        for subscription in self._subscriptions:
            if subscription.collection == "active_players":
                subscription.unsubscribe()
            else:
                keep.append(subscription)
        self._subscriptions = keep

    # ------------------------
    # Views
    # ------------------------

    @property
    def status(self) -> str:
        if self.player is None:
            return "unjoined"
        if self.show_reveal:
            return "revealed"
        if self.state.is_completed:
            return "completed"
        if self.session is not None and self.session.is_active:
            return "playing"
        return "waiting"

    def leaderboard(self, limit: int = 10) -> list[ActivePlayer]:
        if self.session is None:
            return []
        session_id = self.session.id
        ok, players = self._gateway_call(
            "Fetch leaderboard",
            "Failed to load the leaderboard",
            lambda: self.leaderboard_service.top_players(session_id, limit=limit),
        )
        return players if ok else []

    def reveal(self) -> list[dict]:
        return reveal_stages(self.leaderboard(limit=100))

    def reflection(self) -> dict:
        with self.lock:
            if self.player is None:
                raise NotJoinedError()
            misses = self.board.phase_miss_counts() if self.board else {}
            return build_reflection(self.player.player_name, self.state, misses, self.rng)

    def snapshot(self) -> dict:
        with self.lock:
            session = self.session
            return {
                "status": self.status,
                "player": self.player.to_dict() if self.player else None,
                "session": (
                    {
                        "id": session.id,
                        "is_active": session.is_active,
                        "difficulty": session.difficulty.value,
                        "timer_seconds": session.timer_seconds,
                        "double_points_active": session.double_points_active,
                        "current_hint": session.current_hint,
                        "game_ended": session.game_ended_at is not None,
                    }
                    if session
                    else None
                ),
                "remaining_seconds": self.remaining_seconds(),
                "elapsed_seconds": self.elapsed_seconds(),
                "game_state": self.state.to_dict(),
                "board": self.board.to_dict() if self.board else None,
                "show_reveal": self.show_reveal,
            }


class PlayerRegistry:
    """Live player engines for this process, keyed by player id."""

    def __init__(self, factory: Callable[[], PlayerSessionEngine]):
        self._factory = factory
        self._lock = threading.Lock()
        self._engines: dict[str, PlayerSessionEngine] = {}

    def join(self, player_name, avatar_type="initial", avatar_value=None) -> PlayerSessionEngine:
        engine = self._factory()
        if engine.load() is None:
            engine.close()
            raise ResolutionFailure("No active game session")
        try:
            joined = engine.join(player_name, avatar_type, avatar_value)
        except ValidationError:
            engine.close()
            raise
        if not joined:
            engine.close()
            raise GameError("Failed to join game", 503)

        with self._lock:
            previous = self._engines.pop(engine.player.id, None)
            self._engines[engine.player.id] = engine
        if previous is not None:
            previous.close()
        return engine

    def get(self, player_id: str) -> PlayerSessionEngine:
        with self._lock:
            engine = self._engines.get(str(player_id or ""))
        if engine is None:
            raise NotJoinedError()
        return engine

    def remove(self, player_id: str) -> bool:
        with self._lock:
            engine = self._engines.pop(str(player_id or ""), None)
        if engine is None:
            return False
        engine.close()
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._engines)

    def close_all(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.close()
