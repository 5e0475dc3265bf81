"""Standard JSON envelopes returned by endpoint plugins.

Success: ``{status, author, note, results, message?}``
Error:   ``{status, message, error?}``
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

AUTHOR = "Ditzzy"
NOTE = "Thank you for using this API!"


def send_success(data: Any, message: str | None = None, status_code: int = 200) -> JSONResponse:
    body: dict[str, Any] = {
        "status": status_code,
        "author": AUTHOR,
        "note": NOTE,
        "results": data,
    }
    if message:
        body["message"] = message
    return JSONResponse(body, status_code=status_code)


def send_error(status_code: int, message: str, error: Any = None) -> JSONResponse:
    body: dict[str, Any] = {"status": status_code, "message": message}
    if error:
        body["error"] = error
    return JSONResponse(body, status_code=status_code)


# ── Common error responses ─────────────────────────────────────────────────────


def bad_request(message: str = "Bad request") -> JSONResponse:
    return send_error(400, message)


def invalid_url(message: str = "Invalid URL") -> JSONResponse:
    return send_error(400, message)


def missing_parameter(param: str) -> JSONResponse:
    return send_error(400, f"Missing required parameter: {param}")


def invalid_parameter(param: str, reason: str | None = None) -> JSONResponse:
    return send_error(400, f"Invalid parameter: {param}{f' - {reason}' if reason else ''}")


def not_found(message: str = "Resource not found") -> JSONResponse:
    return send_error(404, message)


def server_error(message: str = "An error occurred, please try again later.") -> JSONResponse:
    return send_error(500, message)


def too_many_requests(message: str = "Too many requests, please slow down.") -> JSONResponse:
    return send_error(429, message)


def service_unavailable(message: str = "Service temporarily unavailable") -> JSONResponse:
    return send_error(503, message)
