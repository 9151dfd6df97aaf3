"""
base.py — Channel transport capability.

The engine only knows this interface: one call performs one delivery
attempt and reports success or failure. Retry logic lives in the engine,
never in a transport.

SimulatedTransport is the development back-end shared by the built-in
channels. It sleeps for a random latency and fails with a fixed
probability, standing in for the real provider call.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from notification_engine.app.notifications.models import (
    ChannelConfig,
    NotificationEnvelope,
    TransportResult,
)

logger = logging.getLogger(__name__)


class ChannelTransport(ABC):
    """Base class for all channel delivery back-ends."""

    kind: str = ""

    @abstractmethod
    async def attempt(
        self,
        envelope: NotificationEnvelope,
        config: ChannelConfig,
    ) -> TransportResult:
        """Perform one delivery attempt.

        Implementations should return TransportResult.failed(...) on
        failure. An exception escaping this call is treated the same way
        by the engine.
        """


class SimulatedTransport(ChannelTransport):
    """
    Random-outcome transport used until a real provider is wired in.

    Parameters
    ----------
    success_rate : float
        Probability (0–1) that an attempt succeeds.
    latency_ms : (float, float)
        Uniform range for the simulated provider round-trip.
    simulate_latency : bool
        If False, attempts complete without sleeping.
    rng : random.Random | None
        Source of randomness; seed it for reproducible runs.
    """

    label = "CHANNEL"
    success_rate: float = 1.0
    latency_ms: Tuple[float, float] = (0.0, 0.0)

    def __init__(
        self,
        *,
        success_rate: Optional[float] = None,
        latency_ms: Optional[Tuple[float, float]] = None,
        simulate_latency: bool = True,
        rng: Optional[random.Random] = None,
    ):
        if success_rate is not None:
            self.success_rate = success_rate
        if latency_ms is not None:
            self.latency_ms = latency_ms
        self.simulate_latency = simulate_latency
        self._rng = rng or random.Random()

    def describe(self, envelope: NotificationEnvelope) -> str:
        """One-line summary of what would be sent, for the log."""
        return str(envelope.payload)[:80]

    def _message_id(self) -> str:
        return f"{self.kind}_{uuid.uuid4().hex[:12]}"

    async def attempt(
        self,
        envelope: NotificationEnvelope,
        config: ChannelConfig,
    ) -> TransportResult:
        started = time.perf_counter()

        if self.simulate_latency:
            low, high = self.latency_ms
            await asyncio.sleep(self._rng.uniform(low, high) / 1000.0)

        elapsed_ms = (time.perf_counter() - started) * 1000

        if self._rng.random() >= self.success_rate:
            logger.debug(
                "[%s] Simulated failure for %s via %s",
                self.label, envelope.id, config.endpoint,
            )
            return TransportResult.failed(
                f"{self.label.capitalize()} delivery failed",
                delivery_time_ms=elapsed_ms,
            )

        logger.info(
            "[%s] %s → %s: %s",
            self.label, envelope.id, config.endpoint, self.describe(envelope),
        )
        return TransportResult.ok(self._message_id(), delivery_time_ms=elapsed_ms)
