"""
FastAPI route: notification submission and engine introspection.

Provides endpoints to:
    POST /api/v1/notifications           — submit a notification
    GET  /api/v1/notifications/stats     — queue / worker / outcome counters
    GET  /api/v1/notifications/channels  — configured channels

The NotificationSystem is created by the application lifespan and read
from ``app.state.notifications``.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from notification_engine.app.notifications.enrichment import NotificationRequest
from notification_engine.app.notifications.models import QueuedReceipt
from notification_engine.app.notifications.system import NotificationSystem

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


def _system(request: Request) -> NotificationSystem:
    return request.app.state.notifications


@router.post(
    "",
    summary="Submit a notification",
    description=(
        "Critical notifications are delivered immediately and the per-channel "
        "results of the first pass are returned (200). Anything else is queued "
        "and acknowledged with 202."
    ),
)
async def submit_notification(body: NotificationRequest, request: Request):
    result = await _system(request).send_notification(body)
    if isinstance(result, QueuedReceipt):
        return JSONResponse(status_code=202, content=result.to_dict())
    return result.to_dict()


@router.get("/stats", summary="Dispatch engine statistics")
async def get_stats(request: Request) -> Dict[str, Any]:
    return _system(request).get_stats()


@router.get("/channels", summary="List configured channels")
async def list_channels(request: Request) -> Dict[str, Any]:
    system = _system(request)
    return {
        "channels": system.registry.to_dict(),
        "active": system.registry.active_channels(),
    }
