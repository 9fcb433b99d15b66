from __future__ import annotations

import logging

from phase_formats import THEME, ActivePlayer, LeaderboardEntry, SavedLeaderboard

logger = logging.getLogger(__name__)


def rank_players(players: list[ActivePlayer]) -> list[ActivePlayer]:
    return sorted(players, key=lambda p: (-p.score, p.joined_at, p.player_name))


def reveal_stages(players: list[ActivePlayer]) -> list[dict]:
    """Staged podium order for the end-of-round reveal.

    Starts with a "timesup" beat, then reveals third and second place (only
    when that many players exist), then the winner, then the full table.
    """
    ranked = rank_players(players)
    podium = ranked[:3]
    stages = [{"stage": "timesup", "player": None, "rank": None}]
    for rank, label in ((3, "third"), (2, "second"), (1, "first")):
        if len(podium) >= rank:
            stages.append(
                {"stage": label, "player": podium[rank - 1].to_dict(), "rank": rank}
            )
    stages.append(
        {
            "stage": "full",
            "player": None,
            "rank": None,
            "players": [p.to_dict() for p in ranked],
        }
    )
    return stages


class LeaderboardService:
    def __init__(self, store):
        self.store = store

    def top_players(self, session_id: str, limit: int = 10) -> list[ActivePlayer]:
        rows = self.store.select(
            "active_players",
            {"session_id": session_id},
            order="score",
            descending=True,
            limit=limit,
        )
        return [ActivePlayer.from_row(row) for row in rows]

    def record_completion(
        self, *, session_id: str, player_name: str, score: int, time_ms: int
    ) -> LeaderboardEntry:
        row = self.store.insert(
            "leaderboard",
            {
                "session_id": session_id,
                "player_name": player_name,
                "score": int(score),
                "time_ms": int(time_ms),
                "theme": THEME,
            },
        )
        logger.info("Leaderboard entry: %s scored %s in %sms", player_name, score, time_ms)
        return LeaderboardEntry.from_row(row)

    def history(self, limit: int = 20) -> list[LeaderboardEntry]:
        rows = self.store.select("leaderboard", order="score", descending=True, limit=limit)
        return [LeaderboardEntry.from_row(row) for row in rows]

    def save_snapshot(
        self, *, session_id: str | None, game_name: str, players: list[ActivePlayer]
    ) -> SavedLeaderboard:
        ranked = rank_players(players)
        winner = ranked[0] if ranked else None
        row = self.store.insert(
            "saved_leaderboards",
            {
                "session_id": session_id,
                "game_name": game_name,
                "players": [p.to_dict() for p in players],
                "winner_name": winner.player_name if winner else None,
                "winner_score": winner.score if winner else None,
            },
        )
        logger.info("Saved leaderboard %r with %s players", game_name, len(players))
        return SavedLeaderboard.from_row(row)

    def saved(self, limit: int = 20) -> list[SavedLeaderboard]:
        rows = self.store.select(
            "saved_leaderboards", order="saved_at", descending=True, limit=limit
        )
        return [SavedLeaderboard.from_row(row) for row in rows]
