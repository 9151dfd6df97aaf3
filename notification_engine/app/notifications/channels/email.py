"""
email.py — Email delivery channel.

Delivery mechanism:
    • SMTP (or API-based: SendGrid, SES, Mailgun) at the configured endpoint
    • Subject taken from payload["subject"] / payload["title"] when present

Simulated profile: 90% success, 100–600 ms provider latency.
"""

from __future__ import annotations

from collections.abc import Mapping

from notification_engine.app.notifications.channels.base import SimulatedTransport
from notification_engine.app.notifications.models import (
    ChannelKind,
    NotificationEnvelope,
)

_PRIORITY_ICONS = {
    "low": "ℹ️",
    "normal": "✉️",
    "high": "⚠️",
    "critical": "🚨",
}


def build_subject(envelope: NotificationEnvelope) -> str:
    """Render the subject line for an envelope."""
    payload = envelope.payload
    title = ""
    if isinstance(payload, Mapping):
        title = str(payload.get("subject") or payload.get("title") or "")
    if not title:
        title = "Notification"
    icon = _PRIORITY_ICONS.get(envelope.priority.value, "✉️")
    return f"{icon} [{envelope.priority.name}] {title}"


class EmailTransport(SimulatedTransport):
    """Simulated email back-end."""

    kind = ChannelKind.EMAIL.value
    label = "EMAIL"
    success_rate = 0.90
    latency_ms = (100.0, 600.0)

    def describe(self, envelope: NotificationEnvelope) -> str:
        return f"Subject='{build_subject(envelope)}'"
