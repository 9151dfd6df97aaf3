"""
channels — Per-channel delivery back-ends.

Each back-end implements ChannelTransport:
    await transport.attempt(envelope, config) → TransportResult

Transports are registered in the ChannelRegistry by kind. Retry logic
lives in the engine.
"""

from __future__ import annotations

import random
from typing import Dict, Optional

from notification_engine.app.notifications.channels.base import (
    ChannelTransport,
    SimulatedTransport,
)
from notification_engine.app.notifications.channels.email import EmailTransport
from notification_engine.app.notifications.channels.push import PushTransport
from notification_engine.app.notifications.channels.sms import SmsTransport

__all__ = [
    "ChannelTransport",
    "SimulatedTransport",
    "EmailTransport",
    "PushTransport",
    "SmsTransport",
    "simulated_transports",
]


def simulated_transports(
    *,
    simulate_latency: bool = True,
    seed: Optional[int] = None,
) -> Dict[str, ChannelTransport]:
    """Build one simulated transport per built-in channel kind."""
    rng = random.Random(seed)
    return {
        cls.kind: cls(simulate_latency=simulate_latency, rng=rng)
        for cls in (EmailTransport, PushTransport, SmsTransport)
    }
