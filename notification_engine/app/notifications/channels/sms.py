"""
sms.py — SMS gateway channel.

Messages are flattened to a single text segment of at most 160 characters
(GSM 7-bit segment length). Simulated profile: 85% success, 100–400 ms.
"""

from __future__ import annotations

from collections.abc import Mapping

from notification_engine.app.notifications.channels.base import SimulatedTransport
from notification_engine.app.notifications.models import (
    ChannelKind,
    NotificationEnvelope,
)

SMS_MAX_CHARS = 160


def build_sms_text(envelope: NotificationEnvelope) -> str:
    payload = envelope.payload
    if isinstance(payload, Mapping):
        text = str(payload.get("short_message") or payload.get("message") or "")
    else:
        text = str(payload)
    if len(text) > SMS_MAX_CHARS:
        text = text[: SMS_MAX_CHARS - 3] + "..."
    return text


class SmsTransport(SimulatedTransport):
    """Simulated SMS back-end."""

    kind = ChannelKind.SMS.value
    label = "SMS"
    success_rate = 0.85
    latency_ms = (100.0, 400.0)

    def describe(self, envelope: NotificationEnvelope) -> str:
        return f"{len(build_sms_text(envelope))} chars"
