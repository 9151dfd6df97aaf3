"""
system.py — The dispatch engine, assembled.

One NotificationSystem owns the channel registry, event bus, delivery
engine, dispatch queue and worker. Build it once at startup and pass it
to whoever needs it; nothing here is a module-level singleton.

Usage:
    system = NotificationSystem.from_config(settings.dispatch_config())
    await system.initialize()

    unsubscribe = system.subscribe(lambda event, data: print(event, data))
    result = await system.send_notification({
        "priority": "critical",
        "channels": ["email", "sms"],
        "payload": {"title": "Server down", "message": "db-1 unreachable"},
    })

    await system.shutdown()
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Union

from notification_engine.app.core.config import DispatchConfig
from notification_engine.app.notifications.dispatch_queue import DispatchQueue, DispatchWorker
from notification_engine.app.notifications.engine import DeliveryEngine
from notification_engine.app.notifications.enrichment import NotificationRequest, enrich
from notification_engine.app.notifications.event_bus import Callback, EventBus, Subscription
from notification_engine.app.notifications.models import (
    DeliveryReport,
    NotificationEnvelope,
    QueuedReceipt,
)
from notification_engine.app.notifications.registry import ChannelRegistry
from notification_engine.app.notifications.retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)


class NotificationSystem:
    """
    Facade over the dispatch pipeline.

    Parameters
    ----------
    config : DispatchConfig
    registry : ChannelRegistry, optional
        Defaults to the built-in simulated channels for ``config``.
    sleep : callable, optional
        Retry-delay sleep, forwarded to the RetryScheduler.
    """

    def __init__(
        self,
        config: Optional[DispatchConfig] = None,
        registry: Optional[ChannelRegistry] = None,
        *,
        sleep: Optional[Sleep] = None,
    ):
        self.config = config or DispatchConfig()
        self.registry = registry or ChannelRegistry.from_config(self.config)
        self.event_bus = EventBus()
        self.engine = DeliveryEngine(
            self.registry,
            self.event_bus,
            RetryPolicy(
                max_retries=self.config.retry_attempts,
                backoff_base_seconds=self.config.backoff_base_seconds,
            ),
            sleep=sleep,
        )
        self.queue = DispatchQueue()
        self.worker = DispatchWorker(
            self.queue,
            self.engine,
            tick_interval=self.config.tick_interval_seconds,
        )

    @classmethod
    def from_config(cls, config: DispatchConfig, **kwargs: Any) -> "NotificationSystem":
        return cls(config, **kwargs)

    # ── Lifecycle ──

    async def initialize(self) -> None:
        """Start the queue worker. Safe to call twice."""
        await self.worker.start()
        logger.info(
            "Notification system initialized (channels=%s)",
            self.registry.active_channels(),
        )

    async def shutdown(self) -> None:
        """
        Stop the worker, drop queued work, cancel retries, remove subscribers.

        Deliveries the worker already admitted finish their current transport
        attempt, but a failure there no longer schedules a retry.
        """
        await self.worker.stop()
        dropped = self.queue.clear()
        cancelled = self.engine.abandon_all()
        await self.worker.join()
        self.event_bus.clear()
        logger.info(
            "Notification system shutdown (dropped %d queued, %d retries)",
            dropped, cancelled,
        )

    async def join(self) -> None:
        """Wait until admitted deliveries and their retries have settled."""
        while self.worker.active_deliveries or self.engine.retry_scheduler.pending:
            await self.worker.join()
            await self.engine.join()

    # ── Sending ──

    def enrich(self, raw: Union[NotificationRequest, Mapping[str, Any]]) -> NotificationEnvelope:
        return enrich(
            raw,
            default_priority=self.config.default_priority,
            max_retries=self.config.retry_attempts,
        )

    async def send_notification(
        self,
        raw: Union[NotificationRequest, Mapping[str, Any]],
    ) -> Union[DeliveryReport, QueuedReceipt]:
        """
        Accept a notification request.

        Critical notifications are delivered before this returns and the
        first-pass DeliveryReport is returned. Everything else is queued
        for the worker and a QueuedReceipt comes back.

        Raises
        ------
        InvalidNotification
            The request has no payload.
        """
        envelope = self.enrich(raw)

        if envelope.immediate:
            return await self.engine.deliver(envelope)

        position = self.queue.enqueue(envelope)
        logger.info(
            "Queued %s [%s] at position %d",
            envelope.id, envelope.priority.value, position,
            extra={"notification_id": envelope.id, "queue_length": position},
        )
        return QueuedReceipt(id=envelope.id, queue_position=position)

    # ── Events ──

    def subscribe(self, callback: Callback) -> Subscription:
        return self.event_bus.subscribe(callback)

    def unsubscribe(self, callback: Callback) -> bool:
        return self.event_bus.unsubscribe(callback)

    # ── Introspection ──

    def get_stats(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self.queue),
            "active_channels": self.registry.active_channels(),
            "subscriber_count": self.event_bus.subscriber_count,
            "is_processing": self.worker.is_running,
            "in_flight": self.engine.in_flight,
            "pending_retries": self.engine.retry_scheduler.pending,
            "dispatched": self.worker.dispatched,
            "transport_invocations": self.engine.transport_invocations,
            "outcomes": {
                status.value: count
                for status, count in self.engine.outcome_counts.items()
            },
        }
