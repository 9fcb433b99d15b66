"""Game Master side of the shared session: lifecycle, timer and broadcasts."""

from __future__ import annotations

import logging
import threading

from api_errors import GatewayError, ValidationError
from leaderboard import LeaderboardService
from multiplayer_service_core import MultiplayerServiceCore
from phase_formats import (
    DIFFICULTY_CONFIG,
    THEME,
    ActivePlayer,
    Difficulty,
    GameSession,
    Quote,
    SavedLeaderboard,
)

logger = logging.getLogger(__name__)


class SessionController(MultiplayerServiceCore):
    HINT_CLEAR_SECONDS = 10
    MIN_TIMER_MINUTES = 1
    MAX_TIMER_MINUTES = 60
    MIN_CUSTOM_QUOTES = 4
    MISSING_SESSION_MESSAGE = "No game session yet. Reload the Game Master screen."

    def __init__(
        self,
        *,
        store,
        leaderboard: LeaderboardService | None = None,
        notifier=None,
        scheduler=None,
        clock=None,
    ):
        super().__init__(store=store, notifier=notifier, scheduler=scheduler, clock=clock)
        self.notifier.name = "game-master"
        self.leaderboard = leaderboard or LeaderboardService(store)
        self.session: GameSession | None = None
        self.players: list[ActivePlayer] = []
        self._hint_lock = threading.Lock()
        self._hint_token = 0
        self._hint_clear = None

    # ------------------------
    # Session resolution + change feed
    # ------------------------

    def init_session(self) -> GameSession | None:
        """Adopt the most recently created session, creating one if none exists."""
        ok, row = self._gateway_call(
            "Resolve session",
            "Failed to connect to game server",
            self.store.fetch_current_session,
        )
        if not ok:
            return None

        if row is None:
            medium = DIFFICULTY_CONFIG[Difficulty.MEDIUM]
            ok, row = self._gateway_call(
                "Create session",
                "Failed to connect to game server",
                lambda: self.store.insert(
                    "game_sessions",
                    {
                        "is_active": False,
                        "theme": THEME,
                        "difficulty": Difficulty.MEDIUM.value,
                        "timer_seconds": medium["timer_seconds"],
                        "quote_count": medium["quotes_count"],
                    },
                ),
            )
            if not ok:
                return None
            logger.info("Created game session %s", row["id"])

        self._adopt(GameSession.from_row(row))
        return self.session

    def _adopt(self, session: GameSession) -> None:
        if self.session is not None and self.session.id == session.id:
            self.session = session
            return

        self._unsubscribe_all()
        self.session = session
        self._subscribe("game_sessions", self._on_session_change, {"id": session.id})
        self._subscribe(
            "active_players", self._on_players_change, {"session_id": session.id}
        )
        self.refresh_players()

    def _on_session_change(self, event) -> None:
        if event.event_type == "delete":
            logger.warning("Current session %s was deleted", event.row.get("id"))
            self.session = None
            return
        if event.new_row:
            self.session = GameSession.from_row(event.new_row)

    def _on_players_change(self, _event) -> None:
        self.refresh_players()

    def refresh(self) -> GameSession | None:
        if self.session is None:
            return self.init_session()
        session_id = self.session.id
        ok, rows = self._gateway_call(
            "Refresh session",
            "Failed to refresh game session",
            lambda: self.store.select("game_sessions", {"id": session_id}, limit=1),
        )
        if ok and rows:
            self.session = GameSession.from_row(rows[0])
        return self.session

    def refresh_players(self) -> list[ActivePlayer]:
        if self.session is None:
            self.players = []
            return self.players
        session_id = self.session.id
        try:
            rows = self.store.select(
                "active_players",
                {"session_id": session_id},
                order="score",
                descending=True,
            )
        except GatewayError as exc:
            logger.warning("Fetching players failed: %s", exc)
            return self.players
        self.players = [ActivePlayer.from_row(row) for row in rows]
        return self.players

    def roster(self) -> list[ActivePlayer]:
        return list(self.players)

    def quotes(self) -> list[Quote]:
        ok, rows = self._gateway_call(
            "Fetch quotes",
            "Failed to load quotes",
            self.store.fetch_active_quotes,
        )
        return [Quote.from_row(row) for row in rows] if ok else []

    # ------------------------
    # Lifecycle
    # ------------------------

    def _require_session(self, label: str) -> GameSession | None:
        if self.session is None:
            logger.warning("%s requested before a session was resolved", label)
            self.notifier.error(self.MISSING_SESSION_MESSAGE)
            return None
        return self.session

    def _update_session(
        self, label: str, patch: dict, *, success: str | None, failure: str
    ) -> bool:
        session = self._require_session(label)
        if session is None:
            return False
        ok, _ = self._gateway_call(
            label,
            failure,
            lambda: self.store.update("game_sessions", {"id": session.id}, patch),
        )
        if ok:
            logger.info("%s applied to session %s", label, session.id)
            if success:
                self.notifier.success(success)
        return ok

    def start(self) -> bool:
        return self._update_session(
            "Start game",
            {"is_active": True, "timer_started_at": self.clock(), "game_ended_at": None},
            success="Game started!",
            failure="Failed to start game",
        )

    def pause(self) -> bool:
        return self._update_session(
            "Pause game",
            {"is_active": False, "timer_started_at": None},
            success="Game paused",
            failure="Failed to pause game",
        )

    def end(self) -> bool:
        return self._update_session(
            "End game",
            {"is_active": False, "timer_started_at": None, "game_ended_at": self.clock()},
            success="Game ended! Showing leaderboard to players...",
            failure="Failed to end game",
        )

    # ------------------------
    # Settings
    # ------------------------

    def set_timer(self, seconds) -> bool:
        try:
            seconds = int(seconds)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Timer must be a whole number of seconds.") from exc
        low = self.MIN_TIMER_MINUTES * 60
        high = self.MAX_TIMER_MINUTES * 60
        if not low <= seconds <= high:
            raise ValidationError(
                f"Timer must be between {self.MIN_TIMER_MINUTES} and "
                f"{self.MAX_TIMER_MINUTES} minutes."
            )
        return self._update_session(
            "Set timer",
            {"timer_seconds": seconds},
            success=f"Timer set to {seconds // 60} minutes",
            failure="Failed to set timer",
        )

    def set_difficulty(self, level) -> bool:
        difficulty = Difficulty.parse(level)
        if difficulty is None:
            raise ValidationError("Difficulty must be easy, medium or hard.")
        config = DIFFICULTY_CONFIG[difficulty]
        return self._update_session(
            "Set difficulty",
            {
                "difficulty": difficulty.value,
                "timer_seconds": config["timer_seconds"],
                "quote_count": config["quotes_count"],
            },
            success=f"Difficulty set to {config['label']}",
            failure="Failed to set difficulty",
        )

    def set_custom_settings(self, quote_count, minutes) -> bool:
        try:
            quote_count = int(quote_count)
            minutes = int(minutes)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Quote count and minutes must be whole numbers.") from exc
        if not self.MIN_TIMER_MINUTES <= minutes <= self.MAX_TIMER_MINUTES:
            raise ValidationError(
                f"Timer must be between {self.MIN_TIMER_MINUTES} and "
                f"{self.MAX_TIMER_MINUTES} minutes."
            )
        if self._require_session("Custom settings") is None:
            return False

        ok, rows = self._gateway_call(
            "Count quotes",
            "Failed to set custom settings",
            self.store.fetch_active_quotes,
        )
        if not ok:
            return False
        catalog_size = len(rows)
        quote_count = max(self.MIN_CUSTOM_QUOTES, quote_count)
        if catalog_size:
            quote_count = min(quote_count, catalog_size)

        return self._update_session(
            "Custom settings",
            {
                # Custom rounds keep the medium tag.
                "difficulty": Difficulty.MEDIUM.value,
                "timer_seconds": minutes * 60,
                "quote_count": quote_count,
            },
            success=f"Custom settings: {quote_count} quotes, {minutes} min timer",
            failure="Failed to set custom settings",
        )

    def toggle_double_points(self) -> bool:
        session = self._require_session("Toggle double points")
        if session is None:
            return False
        activate = not session.double_points_active
        return self._update_session(
            "Toggle double points",
            {"double_points_active": activate},
            success="Double points activated!" if activate else "Double points deactivated",
            failure="Failed to toggle double points",
        )

    # ------------------------
    # Hints
    # ------------------------

    def send_hint(self, text) -> bool:
        hint = str(text or "").strip()
        if not hint:
            raise ValidationError("Hint text is required.")
        session = self._require_session("Send hint")
        if session is None:
            return False

        with self._hint_lock:
            self._hint_token += 1
            token = self._hint_token
            if self._hint_clear is not None:
                self._hint_clear.cancel()
                self._hint_clear = None

        ok = self._update_session(
            "Send hint",
            {"current_hint": hint},
            success="Hint sent to all players!",
            failure="Failed to send hint",
        )
        if ok:
            call = self._schedule(
                self.HINT_CLEAR_SECONDS,
                lambda: self._clear_hint(token, hint, session.id),
            )
            with self._hint_lock:
                if self._hint_token == token:
                    self._hint_clear = call
                else:
                    call.cancel()
        return ok

    def _clear_hint(self, token: int, hint: str, session_id: str) -> None:
        with self._hint_lock:
            if token != self._hint_token:
                return
            self._hint_clear = None

        ok, rows = self._gateway_call(
            "Read hint",
            "Failed to clear hint",
            lambda: self.store.select("game_sessions", {"id": session_id}, limit=1),
        )
        if not ok or not rows or rows[0].get("current_hint") != hint:
            return
        self._gateway_call(
            "Clear hint",
            "Failed to clear hint",
            lambda: self.store.update(
                "game_sessions", {"id": session_id}, {"current_hint": None}
            ),
        )

    # ------------------------
    # Roster
    # ------------------------

    def clear_players(self) -> bool:
        session = self._require_session("Clear players")
        if session is None:
            return False
        ok, _ = self._gateway_call(
            "Clear players",
            "Failed to clear players",
            lambda: self.store.delete("active_players", {"session_id": session.id}),
        )
        if ok:
            self.notifier.success("All players cleared")
        return ok

    def reset_leaderboard(self) -> bool:
        session = self._require_session("Reset leaderboard")
        if session is None:
            return False
        ok, _ = self._gateway_call(
            "Reset leaderboard",
            "Failed to reset leaderboard",
            lambda: self.store.delete("active_players", {"session_id": session.id}),
        )
        if not ok:
            return False
        return self._update_session(
            "Reset leaderboard",
            {"is_active": False, "timer_started_at": None, "game_ended_at": None},
            success="Leaderboard reset - ready for new game!",
            failure="Failed to reset leaderboard",
        )

    def save_leaderboard(self, game_name, reset: bool = True) -> SavedLeaderboard | None:
        name = str(game_name or "").strip()
        if not name:
            raise ValidationError("Game name is required.")
        session = self._require_session("Save leaderboard")
        if session is None:
            return None
        players = self.refresh_players()
        if not players:
            raise ValidationError("There are no players to save.")

        ok, saved = self._gateway_call(
            "Save leaderboard",
            "Failed to save leaderboard",
            lambda: self.leaderboard.save_snapshot(
                session_id=session.id, game_name=name, players=players
            ),
        )
        if not ok:
            return None
        self.notifier.success(f"Leaderboard saved as {name}")
        if reset:
            self.reset_leaderboard()
        return saved

    def snapshot(self) -> dict:
        session = self.session
        remaining = session.remaining_seconds(self.clock()) if session else None
        return {
            "session": session.to_dict() if session else None,
            "remaining_seconds": remaining,
            "players": [p.to_dict() for p in self.players],
            "player_count": len(self.players),
            "completed_count": sum(1 for p in self.players if p.is_completed),
        }
