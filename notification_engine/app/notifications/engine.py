"""
engine.py — Per-channel delivery with scheduled retries.

═══════════════════════════════════════════════════════════════════════════
DELIVERY FLOW
═══════════════════════════════════════════════════════════════════════════

    deliver(envelope)
        │
        ├── one asyncio task per target channel (run concurrently)
        │       │
        │       ├── 1. resolve via ChannelRegistry ── unavailable ──▶ SKIPPED
        │       ├── 2. one transport attempt
        │       ├── 3. ok ──▶ SUCCESS
        │       └── 4. failed ──▶ failures += 1
        │                 ├── failures ≤ max_retries ──▶ RETRY_SCHEDULED
        │                 │        (RetryScheduler re-runs steps 1–4
        │                 │         for this channel only)
        │                 └── otherwise ──▶ FAILED_EXHAUSTED
        │
        └── returns the DeliveryReport of the first pass

Events:
    notification:channel    — every per-channel outcome, as recorded
    notification:processed  — once per envelope, when every channel is
                              terminal; carries the final outcomes

The failure count for a channel travels with its task (and with the
scheduled retry), so no two tasks ever write the same counter. Transport
failures are always resolved to an outcome; nothing raises out of
deliver() for them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from notification_engine.app.core.errors import ChannelNotConfigured, TransportFailure
from notification_engine.app.core.logging_config import set_dispatch_context
from notification_engine.app.notifications.channels import ChannelTransport
from notification_engine.app.notifications.event_bus import EventBus
from notification_engine.app.notifications.models import (
    CHANNEL_OUTCOME_EVENT,
    PROCESSED_EVENT,
    ChannelConfig,
    ChannelOutcome,
    DeliveryReport,
    NotificationEnvelope,
    OutcomeStatus,
    TransportResult,
)
from notification_engine.app.notifications.registry import ChannelRegistry
from notification_engine.app.notifications.retry import RetryPolicy, RetryScheduler, Sleep

logger = logging.getLogger(__name__)


@dataclass
class _EnvelopeProgress:
    """Latest outcome per channel for an envelope still in flight."""
    envelope: NotificationEnvelope
    outcomes: Dict[str, ChannelOutcome] = field(default_factory=dict)
    pending: Set[str] = field(default_factory=set)
    started: float = field(default_factory=time.perf_counter)


class DeliveryEngine:
    """
    Delivers envelopes across their target channels.

    Parameters
    ----------
    registry : ChannelRegistry
    event_bus : EventBus
    policy : RetryPolicy
        Backoff parameters. The retry cap itself is read from each
        envelope's ``max_retries``.
    sleep : callable, optional
        Passed to the RetryScheduler (tests inject a non-waiting sleep).
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        event_bus: EventBus,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Optional[Sleep] = None,
    ):
        self.registry = registry
        self.event_bus = event_bus
        self.policy = policy or RetryPolicy()
        self.retry_scheduler = RetryScheduler(self.policy, self._redeliver, sleep=sleep)
        self._in_flight: Dict[int, _EnvelopeProgress] = {}
        self.outcome_counts: Counter = Counter()
        self.transport_invocations = 0

    # ── Public API ──

    @property
    def in_flight(self) -> int:
        """Envelopes with at least one channel not yet terminal."""
        return len(self._in_flight)

    async def deliver(self, envelope: NotificationEnvelope) -> DeliveryReport:
        """
        Attempt delivery on every target channel of an envelope.

        Returns the outcomes of this first pass. Channels reported as
        RETRY_SCHEDULED keep going in the background.
        """
        self._in_flight[id(envelope)] = _EnvelopeProgress(
            envelope=envelope,
            pending=set(envelope.target_channels),
        )
        logger.info(
            "Delivering %s [%s] to %s",
            envelope.id, envelope.priority.value, list(envelope.target_channels),
            extra={"notification_id": envelope.id},
        )

        outcomes = await asyncio.gather(*(
            self._deliver_channel(envelope, channel, failures=0)
            for channel in envelope.target_channels
        ))
        return DeliveryReport(
            envelope_id=envelope.id,
            outcomes={o.channel: o for o in outcomes},
        )

    async def join(self) -> None:
        """Wait for every scheduled retry to play out."""
        await self.retry_scheduler.join()

    def abandon_all(self) -> int:
        """Stop retrying: cancel pending retries, refuse new ones, forget in-flight envelopes."""
        cancelled = self.retry_scheduler.close()
        self._in_flight.clear()
        return cancelled

    # ── Single-channel step ──

    async def _redeliver(
        self,
        envelope: NotificationEnvelope,
        channel: str,
        failures: int,
    ) -> None:
        if id(envelope) not in self._in_flight:
            logger.warning(
                "Dropping retry for %s via %s: envelope no longer tracked",
                envelope.id, channel,
            )
            return
        await self._deliver_channel(envelope, channel, failures=failures)

    async def _deliver_channel(
        self,
        envelope: NotificationEnvelope,
        channel: str,
        *,
        failures: int,
    ) -> ChannelOutcome:
        set_dispatch_context(notification_id=envelope.id, channel=channel)

        try:
            config, transport = self.registry.resolve(channel)
        except ChannelNotConfigured as exc:
            logger.info(
                "Skipping %s for %s (%s)", channel, envelope.id, exc.reason,
                extra={"outcome": OutcomeStatus.SKIPPED.value},
            )
            return self._settle(envelope, ChannelOutcome(
                channel=channel,
                status=OutcomeStatus.SKIPPED,
                attempt=failures,
                reason=exc.reason,
            ))

        attempt = failures + 1
        result = await self._attempt(transport, envelope, config, attempt)

        if result.success:
            return self._settle(envelope, ChannelOutcome(
                channel=channel,
                status=OutcomeStatus.SUCCESS,
                attempt=attempt,
                message_id=result.message_id,
                delivery_time_ms=result.delivery_time_ms,
            ))

        failures += 1
        if failures <= envelope.max_retries:
            outcome = self._settle(envelope, ChannelOutcome(
                channel=channel,
                status=OutcomeStatus.RETRY_SCHEDULED,
                attempt=attempt,
                reason=result.error,
                retry_delay_seconds=self.policy.compute_backoff(failures),
            ))
            self.retry_scheduler.schedule(envelope, channel, failures)
            return outcome

        logger.warning(
            "Delivery of %s via %s failed after %d attempts: %s",
            envelope.id, channel, attempt, result.error,
            extra={"outcome": OutcomeStatus.FAILED_EXHAUSTED.value, "attempt": attempt},
        )
        return self._settle(envelope, ChannelOutcome(
            channel=channel,
            status=OutcomeStatus.FAILED_EXHAUSTED,
            attempt=attempt,
            reason=result.error,
        ))

    async def _attempt(
        self,
        transport: ChannelTransport,
        envelope: NotificationEnvelope,
        config: ChannelConfig,
        attempt: int,
    ) -> TransportResult:
        """Run one transport attempt; a raising transport counts as a failure."""
        self.transport_invocations += 1
        try:
            return await transport.attempt(envelope, config)
        except Exception as exc:
            failure = TransportFailure(config.kind, str(exc) or type(exc).__name__,
                                       envelope_id=envelope.id)
            logger.error(
                "%s (attempt %d)", failure.message, attempt,
                exc_info=exc,
                extra={"attempt": attempt},
            )
            return TransportResult.failed(failure.reason)

    # ── Outcome bookkeeping ──

    def _settle(self, envelope: NotificationEnvelope, outcome: ChannelOutcome) -> ChannelOutcome:
        """Record an outcome, publish it, and finish the envelope if all channels are done."""
        self.outcome_counts[outcome.status] += 1
        progress = self._in_flight.get(id(envelope))

        self.event_bus.publish(CHANNEL_OUTCOME_EVENT, {
            "envelope_id": envelope.id,
            "channel": outcome.channel,
            "outcome": outcome.to_dict(),
        })

        if progress is None:
            return outcome

        progress.outcomes[outcome.channel] = outcome
        if outcome.status.is_terminal:
            progress.pending.discard(outcome.channel)

        if not progress.pending:
            del self._in_flight[id(envelope)]
            final = DeliveryReport(
                envelope_id=envelope.id,
                outcomes={
                    ch: progress.outcomes[ch]
                    for ch in envelope.target_channels
                    if ch in progress.outcomes
                },
            )
            duration_ms = (time.perf_counter() - progress.started) * 1000
            logger.info(
                "Notification %s processed: %s (%.1fms)",
                envelope.id,
                {ch: s.value for ch, s in final.statuses().items()},
                duration_ms,
                extra={"duration_ms": duration_ms},
            )
            self.event_bus.publish(PROCESSED_EVENT, {
                "envelope_id": envelope.id,
                "outcomes": {ch: o.to_dict() for ch, o in final.outcomes.items()},
                "report": final,
            })

        return outcome
