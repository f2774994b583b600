from __future__ import annotations

from typing import Any

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """
    HTTP-status-coded error rendered as the standard JSON envelope:
      {"success": false, "error": {"code": ..., "message": ..., **details}}
    """

    status: int = 400

    def __init__(self, status: int | None, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        if status is not None:
            self.status = status
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        err: dict[str, Any] = {"code": self.code, "message": self.message}
        err.update(self.details)
        return err


def ok(data: Any = None, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def fail(status: int, code: str, message: str, **details: Any):
    err: dict[str, Any] = {"code": code, "message": message}
    err.update(details)
    return jsonify({"success": False, "error": err}), status


_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    429: "RATE_LIMITED",
}


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        if e.status >= 500:
            app.logger.error("API error %s (%s) request_id=%s", e.code, e.message, getattr(g, "request_id", None))
        return jsonify({"success": False, "error": e.to_dict()}), e.status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        status = e.code or 500
        if status == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return fail(status, _HTTP_CODES.get(status, "HTTP_ERROR"), e.description or e.name)

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return fail(500, "INTERNAL_ERROR", "An unexpected error occurred.")
