from __future__ import annotations

from typing import Any

from flask import jsonify


class GameError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class ResolutionFailure(GameError):
    """No current session exists where one is required."""

    def __init__(self, message: str = "No active game session.", status_code: int = 404):
        super().__init__(message, status_code)


class GatewayError(GameError):
    """A read or write against the game store was rejected."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message, status_code)


class ValidationError(GameError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message, status_code)


class NotJoinedError(GameError):
    def __init__(self, message: str = "Join the game first.", status_code: int = 404):
        super().__init__(message, status_code)


def build_error_payload(
    *,
    code: str,
    message: str,
    details: Any = None,
) -> dict[str, Any]:
    payload = {
        "code": str(code).strip() or "unknown_error",
        "message": str(message).strip() or "Unknown error.",
        "details": details if details is not None else {},
    }
    # Backward-compatible alias for older clients that still read "error".
    payload["error"] = payload["message"]
    return payload


def error_response(
    *,
    status: int,
    code: str,
    message: str,
    details: Any = None,
):
    return jsonify(build_error_payload(code=code, message=message, details=details)), int(
        status
    )
