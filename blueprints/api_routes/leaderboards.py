from flask import request

from api_errors import GameError, ResolutionFailure, ValidationError
from blueprints.api_routes.common import (
    build_responder,
    drain_notifications,
    last_error_message,
    read_limit,
)


def register_leaderboard_api_routes(bp, context):
    controller = context["controller"]
    leaderboard = context["leaderboard"]

    _leaderboard_response = build_responder(
        log_label="Leaderboard",
        unavailable_code="leaderboard_unavailable",
        unavailable_message="Leaderboards are temporarily unavailable.",
        game_error_code="leaderboard_error",
    )

    @bp.route("/api/leaderboards/current", methods=["GET"], endpoint="api_leaderboard_current")
    def api_leaderboard_current():
        limit = read_limit(request.args.get("limit"), 10)

        def _run():
            session = controller.session
            if session is None:
                raise ResolutionFailure()
            players = leaderboard.top_players(session.id, limit=limit)
            return {"session_id": session.id, "players": [p.to_dict() for p in players]}

        return _leaderboard_response(_run)

    @bp.route("/api/leaderboards/history", methods=["GET"], endpoint="api_leaderboard_history")
    def api_leaderboard_history():
        limit = read_limit(request.args.get("limit"), 20)
        return _leaderboard_response(
            lambda: {"entries": [entry.to_dict() for entry in leaderboard.history(limit)]}
        )

    @bp.route("/api/leaderboards/saved", methods=["GET"], endpoint="api_leaderboard_saved")
    def api_leaderboard_saved():
        limit = read_limit(request.args.get("limit"), 20)
        return _leaderboard_response(
            lambda: {"saved": [saved.to_dict() for saved in leaderboard.saved(limit)]}
        )

    @bp.route(
        "/api/leaderboards/saved",
        methods=["POST"],
        endpoint="api_leaderboard_save",
    )
    def api_leaderboard_save():
        data = request.get_json(silent=True) or {}
        game_name = (data.get("game_name") or "").strip()
        reset = data.get("reset", True)
        if not isinstance(reset, bool):
            reset = str(reset).strip().lower() in ("true", "1", "t", "yes")

        def _run():
            if not game_name:
                raise ValidationError("Game name is required.")
            saved = controller.save_leaderboard(game_name, reset=reset)
            notifications = drain_notifications(controller.notifier)
            if saved is None:
                message = last_error_message(notifications, "Failed to save leaderboard")
                if controller.session is None:
                    raise ResolutionFailure(message)
                raise GameError(message, 502)
            return {"saved": saved.to_dict(), "notifications": notifications}

        return _leaderboard_response(_run)
