"""
push.py — Mobile / web push channel.

In production this would post to FCM (the default endpoint) with a
notification body built from the payload. Simulated profile: 95% success,
50–250 ms latency.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict

from notification_engine.app.notifications.channels.base import SimulatedTransport
from notification_engine.app.notifications.models import (
    ChannelKind,
    NotificationEnvelope,
    Priority,
)


def build_push_data(envelope: NotificationEnvelope) -> Dict[str, Any]:
    payload = envelope.payload
    body = payload.get("message", "") if isinstance(payload, Mapping) else str(payload)
    return {
        "notification": {
            "title": payload.get("title", "") if isinstance(payload, Mapping) else "",
            "body": body,
            "tag": envelope.id,
            "requireInteraction": envelope.priority in (Priority.HIGH, Priority.CRITICAL),
        },
    }


class PushTransport(SimulatedTransport):
    """Simulated push back-end."""

    kind = ChannelKind.PUSH.value
    label = "PUSH"
    success_rate = 0.95
    latency_ms = (50.0, 250.0)

    def describe(self, envelope: NotificationEnvelope) -> str:
        data = build_push_data(envelope)
        return f"{len(str(data))} byte push payload"
