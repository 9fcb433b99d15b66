from flask import request

from api_errors import GameError, ResolutionFailure
from blueprints.api_routes.common import build_responder, drain_notifications, last_error_message


def register_gamemaster_api_routes(bp, context):
    controller = context["controller"]
    services = context["services"]

    _gm_response = build_responder(
        log_label="Game Master",
        unavailable_code="game_master_unavailable",
        unavailable_message="The game server is temporarily unavailable.",
        game_error_code="game_master_error",
    )

    def _session_payload(notifications: list[dict]) -> dict:
        payload = controller.snapshot()
        payload["quote_count"] = len(controller.quotes())
        payload["play_url"] = services.build_public_url("/play")
        payload["notifications"] = notifications + drain_notifications(controller.notifier)
        return payload

    def _gm_action(fn):
        def _run():
            ok = fn()
            notifications = drain_notifications(controller.notifier)
            if not ok:
                message = last_error_message(notifications, "Game Master action failed.")
                if controller.session is None:
                    raise ResolutionFailure(message)
                raise GameError(message, 502)
            payload = _session_payload(notifications)
            payload["ok"] = True
            return payload

        return _gm_response(_run)

    @bp.route("/api/gm/session", methods=["GET"], endpoint="api_gm_session")
    def api_gm_session():
        def _run():
            controller.refresh()
            return _session_payload([])

        return _gm_response(_run)

    @bp.route("/api/gm/start", methods=["POST"], endpoint="api_gm_start")
    def api_gm_start():
        return _gm_action(controller.start)

    @bp.route("/api/gm/pause", methods=["POST"], endpoint="api_gm_pause")
    def api_gm_pause():
        return _gm_action(controller.pause)

    @bp.route("/api/gm/end", methods=["POST"], endpoint="api_gm_end")
    def api_gm_end():
        return _gm_action(controller.end)

    @bp.route("/api/gm/double-points", methods=["POST"], endpoint="api_gm_double_points")
    def api_gm_double_points():
        return _gm_action(controller.toggle_double_points)

    @bp.route("/api/gm/clear-players", methods=["POST"], endpoint="api_gm_clear_players")
    def api_gm_clear_players():
        return _gm_action(controller.clear_players)

    @bp.route(
        "/api/gm/reset-leaderboard", methods=["POST"], endpoint="api_gm_reset_leaderboard"
    )
    def api_gm_reset_leaderboard():
        return _gm_action(controller.reset_leaderboard)

    @bp.route("/api/gm/timer", methods=["POST"], endpoint="api_gm_timer")
    def api_gm_timer():
        data = request.get_json(silent=True) or {}
        return _gm_action(lambda: controller.set_timer(data.get("seconds")))

    @bp.route("/api/gm/difficulty", methods=["POST"], endpoint="api_gm_difficulty")
    def api_gm_difficulty():
        data = request.get_json(silent=True) or {}
        difficulty = (data.get("difficulty") or "").strip()
        return _gm_action(lambda: controller.set_difficulty(difficulty))

    @bp.route("/api/gm/custom-settings", methods=["POST"], endpoint="api_gm_custom_settings")
    def api_gm_custom_settings():
        data = request.get_json(silent=True) or {}
        return _gm_action(
            lambda: controller.set_custom_settings(data.get("quote_count"), data.get("minutes"))
        )

    @bp.route("/api/gm/hint", methods=["POST"], endpoint="api_gm_hint")
    def api_gm_hint():
        data = request.get_json(silent=True) or {}
        hint = (data.get("hint") or "").strip()
        return _gm_action(lambda: controller.send_hint(hint))
