from flask import request

from api_errors import NotJoinedError, ValidationError
from blueprints.api_routes.common import build_responder, drain_notifications
from phase_formats import (
    AVATAR_PRESETS,
    DIFFICULTY_CONFIG,
    PHASE_CONFIG,
    PHASE_ORDER,
    PHASE_TITLES,
    GameSession,
)


def register_play_api_routes(bp, context):
    registry = context["registry"]
    store = context["store"]
    avatar_storage = context["avatar_storage"]

    _play_response = build_responder(
        log_label="Elephant Puzzle",
        unavailable_code="elephant_puzzle_unavailable",
        unavailable_message="Elephant Puzzle is temporarily unavailable.",
        game_error_code="elephant_puzzle_error",
    )

    def _state_payload(engine, **extra) -> dict:
        payload = engine.snapshot()
        payload["player_id"] = engine.player.id if engine.player else None
        payload["notifications"] = drain_notifications(engine.notifier)
        payload.update(extra)
        return payload

    def _board(engine):
        if engine.board is None or engine.player is None:
            raise NotJoinedError()
        return engine.board

    @bp.route("/api/play/bootstrap", methods=["GET"], endpoint="api_play_bootstrap")
    def api_play_bootstrap():
        def _run():
            row = store.fetch_current_session()
            session = GameSession.from_row(row) if row else None
            return {
                "phases": [
                    {"phase": phase.value, **PHASE_CONFIG[phase]} for phase in PHASE_ORDER
                ],
                "titles": [title.to_dict() for title in PHASE_TITLES],
                "difficulties": {
                    level.value: dict(config) for level, config in DIFFICULTY_CONFIG.items()
                },
                "avatar_presets": list(AVATAR_PRESETS),
                "session": session.to_dict() if session else None,
            }

        return _play_response(_run)

    @bp.route("/api/play/join", methods=["POST"], endpoint="api_play_join")
    def api_play_join():
        data = request.get_json(silent=True) or {}
        player_name = (data.get("player_name") or "").strip()
        avatar_type = (data.get("avatar_type") or "initial").strip()
        avatar_value = data.get("avatar_value")
        return _play_response(
            lambda: _state_payload(registry.join(player_name, avatar_type, avatar_value))
        )

    @bp.route("/api/play/players/<string:player_id>", methods=["GET"], endpoint="api_play_state")
    def api_play_state(player_id: str):
        def _run():
            engine = registry.get(player_id)
            engine.check_timer()
            return _state_payload(engine)

        return _play_response(_run)

    @bp.route(
        "/api/play/players/<string:player_id>/drop",
        methods=["POST"],
        endpoint="api_play_drop",
    )
    def api_play_drop(player_id: str):
        data = request.get_json(silent=True) or {}
        item_id = (data.get("item_id") or "").strip()
        phase = (data.get("phase") or "").strip()

        def _run():
            if not item_id:
                raise ValidationError("item_id is required.")
            engine = registry.get(player_id)
            engine.check_timer()
            result = _board(engine).attempt_drop(item_id, phase)
            return _state_payload(engine, result=result.to_dict())

        return _play_response(_run)

    @bp.route(
        "/api/play/players/<string:player_id>/remove",
        methods=["POST"],
        endpoint="api_play_remove",
    )
    def api_play_remove(player_id: str):
        data = request.get_json(silent=True) or {}
        item_id = (data.get("item_id") or "").strip()
        phase = (data.get("phase") or "").strip()

        def _run():
            engine = registry.get(player_id)
            _board(engine).remove_item(item_id, phase)
            return _state_payload(engine)

        return _play_response(_run)

    @bp.route(
        "/api/play/players/<string:player_id>/reflection",
        methods=["GET"],
        endpoint="api_play_reflection",
    )
    def api_play_reflection(player_id: str):
        return _play_response(lambda: registry.get(player_id).reflection())

    @bp.route(
        "/api/play/players/<string:player_id>/reveal",
        methods=["GET"],
        endpoint="api_play_reveal",
    )
    def api_play_reveal(player_id: str):
        def _run():
            engine = registry.get(player_id)
            return {"stages": engine.reveal(), "show_reveal": engine.show_reveal}

        return _play_response(_run)

    @bp.route(
        "/api/play/players/<string:player_id>/leave",
        methods=["POST"],
        endpoint="api_play_leave",
    )
    def api_play_leave(player_id: str):
        return _play_response(lambda: {"ok": registry.remove(player_id)})

    @bp.route("/api/play/avatar", methods=["POST"], endpoint="api_play_avatar")
    def api_play_avatar():
        upload = request.files.get("file")

        def _run():
            if upload is None:
                raise ValidationError("Please upload an image file")
            url = avatar_storage.store_avatar(
                upload.filename, upload.mimetype, upload.read()
            )
            return {"avatar_type": "custom", "avatar_value": url}

        return _play_response(_run)
