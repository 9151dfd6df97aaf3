"""
errors.py — Dispatch error types and their HTTP rendering.

Inside the pipeline these exceptions are raised and caught: a missing or
disabled channel becomes a SKIPPED outcome, a failed attempt becomes a
retry, and a crashing subscriber is logged. Only InvalidNotification
reaches the submitter, as a 422 with the shape

    {"error": {"code", "message", "status", "details"?, "path"?, "method"?}}

path and method are omitted in production.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from notification_engine.app.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class NotificationError(Exception):
    """Base exception for all dispatch errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            error["details"] = self.details
        return error


class InvalidNotification(NotificationError):
    """Malformed inbound request (422). Never enqueued."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        if field:
            details["field"] = field
        super().__init__(message, status_code=422,
                         error_code="INVALID_NOTIFICATION", details=details)


class ChannelNotConfigured(NotificationError):
    """Target channel is missing, disabled or has no transport (404)."""

    def __init__(self, channel: str, reason: str = "not registered"):
        super().__init__(
            message=f"Channel '{channel}' unavailable: {reason}",
            status_code=404,
            error_code="CHANNEL_NOT_CONFIGURED",
            details={"channel": channel, "reason": reason},
        )
        self.channel = channel
        self.reason = reason


class TransportFailure(NotificationError):
    """A single channel delivery attempt failed (502)."""

    def __init__(self, channel: str, reason: str = "", *, envelope_id: Optional[str] = None):
        super().__init__(
            message=f"Delivery via {channel} failed: {reason}",
            status_code=502,
            error_code="TRANSPORT_FAILURE",
            details={"channel": channel, "envelope_id": envelope_id},
        )
        self.channel = channel
        self.reason = reason


class SubscriberCallbackError(NotificationError):
    """An event subscriber raised while handling an event (500)."""

    def __init__(self, event_name: str, callback: Any, cause: BaseException):
        name = getattr(callback, "__qualname__", None) or repr(callback)
        super().__init__(
            message=f"Subscriber {name} failed on '{event_name}': {cause}",
            status_code=500,
            error_code="SUBSCRIBER_CALLBACK_ERROR",
            details={"event": event_name, "subscriber": name},
        )
        self.event_name = event_name
        self.callback = callback
        self.cause = cause


# ═══════════════════════════════════════════════════════════════════════════
# HTTP Mapping
# ═══════════════════════════════════════════════════════════════════════════

def _error_response(
    exc: NotificationError,
    request: Request,
    settings: Settings,
) -> JSONResponse:
    """Render a NotificationError as ``{"error": {...}}``."""
    error = exc.to_dict()
    if not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return JSONResponse(status_code=exc.status_code, content={"error": error})


def register_error_handlers(app: FastAPI, settings: Optional[Settings] = None) -> None:
    """
    Attach the dispatch error handlers to ``app``.

    Body validation failures are reported as INVALID_NOTIFICATION so that
    every rejected submission has the same shape, whether pydantic or
    enrichment caught it.
    """
    settings = settings or default_settings

    @app.exception_handler(NotificationError)
    async def on_notification_error(request: Request, exc: NotificationError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "%s %s rejected [%s]: %s", request.method,
                   request.url.path, exc.error_code, exc.message,
                   extra={"status_code": exc.status_code})
        return _error_response(exc, request, settings)

    @app.exception_handler(RequestValidationError)
    async def on_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        logger.warning("Malformed notification request: %s", errors,
                       extra={"status_code": 422})
        return _error_response(
            InvalidNotification("Malformed notification request", errors=errors),
            request, settings,
        )

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled exception on %s %s", request.method,
                        request.url.path, exc_info=exc)
        detail = str(exc) if settings.DEBUG else "Internal server error"
        return _error_response(NotificationError(detail), request, settings)
