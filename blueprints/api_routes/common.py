from flask import current_app, jsonify

from api_errors import GameError, error_response


def api_error(status: int, code: str, message: str, details=None):
    return error_response(status=status, code=code, message=message, details=details)


def build_responder(
    *,
    log_label: str,
    unavailable_code: str,
    unavailable_message: str,
    game_error_code: str,
):
    def _respond(fn):
        try:
            payload = fn()
            return jsonify(payload)
        except GameError as exc:
            if exc.status_code >= 500:
                current_app.logger.warning("%s API failure: %s", log_label, exc)
                return api_error(exc.status_code, unavailable_code, str(exc) or unavailable_message)
            return api_error(exc.status_code, game_error_code, str(exc))
        except Exception as exc:
            current_app.logger.error(
                "%s API failure: %s",
                log_label,
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            return api_error(500, unavailable_code, unavailable_message)

    return _respond


def drain_notifications(notifier) -> list[dict]:
    return [notification.to_dict() for notification in notifier.drain()]


def last_error_message(notifications: list[dict], default: str) -> str:
    for notification in reversed(notifications):
        if notification["level"] == "error":
            return notification["message"]
    return default


def read_limit(raw, default: int, maximum: int = 100) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return max(1, min(value, maximum))
