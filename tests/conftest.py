"""
Shared fixtures and test doubles for the dispatch engine tests.

    ScriptedTransport — transport whose outcomes are given up front
    RecordingSleep    — retry sleep that records delays and returns at once
    EventRecorder     — EventBus subscriber that keeps everything it sees
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, List, Optional, Tuple, Union

import pytest

from notification_engine.app.core.config import DispatchConfig
from notification_engine.app.notifications.channels.base import ChannelTransport
from notification_engine.app.notifications.event_bus import EventBus
from notification_engine.app.notifications.models import (
    CHANNEL_OUTCOME_EVENT,
    PROCESSED_EVENT,
    ChannelConfig,
    NotificationEnvelope,
    Priority,
    TransportResult,
)
from notification_engine.app.notifications.registry import ChannelRegistry

Step = Union[bool, BaseException]


class ScriptedTransport(ChannelTransport):
    """
    Returns scripted results in order, then ``default`` forever.

    A step is True (success), False (failure) or an exception to raise.
    """

    def __init__(self, kind: str, steps: Iterable[Step] = (), *, default: bool = True):
        self.kind = kind
        self._steps = list(steps)
        self.default = default
        self.calls: List[Tuple[str, str]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def attempt(self, envelope: NotificationEnvelope, config: ChannelConfig) -> TransportResult:
        self.calls.append((envelope.id, config.endpoint))
        step = self._steps.pop(0) if self._steps else self.default
        if isinstance(step, BaseException):
            raise step
        if step:
            return TransportResult.ok(f"{self.kind}_{len(self.calls)}", delivery_time_ms=1.0)
        return TransportResult.failed(f"{self.kind} delivery failed")


class RecordingSleep:
    """Stands in for asyncio.sleep in the RetryScheduler."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class EventRecorder:
    """Collects every (event_name, data) published on a bus."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    def __call__(self, event_name: str, data: Any) -> None:
        self.events.append((event_name, data))

    def named(self, event_name: str) -> List[Any]:
        return [data for name, data in self.events if name == event_name]

    def channel_statuses(self, channel: str, envelope_id: Optional[str] = None) -> List[str]:
        """Outcome status sequence seen for one channel."""
        return [
            data["outcome"]["status"]
            for data in self.named(CHANNEL_OUTCOME_EVENT)
            if data["channel"] == channel
            and (envelope_id is None or data["envelope_id"] == envelope_id)
        ]

    def processed(self) -> List[Any]:
        return self.named(PROCESSED_EVENT)


def make_envelope(
    channels: Tuple[str, ...] = ("email",),
    *,
    priority: Priority = Priority.NORMAL,
    max_retries: int = 3,
    payload: Any = None,
    envelope_id: Optional[str] = None,
) -> NotificationEnvelope:
    kwargs = {"id": envelope_id} if envelope_id else {}
    return NotificationEnvelope(
        payload=payload if payload is not None else {"title": "Hello", "message": "World"},
        priority=priority,
        target_channels=channels,
        max_retries=max_retries,
        **kwargs,
    )


def make_registry(*transports: ScriptedTransport, disabled: Iterable[str] = ()) -> ChannelRegistry:
    registry = ChannelRegistry()
    disabled = set(disabled)
    for transport in transports:
        registry.register(
            ChannelConfig(
                kind=transport.kind,
                enabled=transport.kind not in disabled,
                endpoint=f"{transport.kind}://test",
            ),
            transport,
        )
    return registry


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def event_bus(recorder: EventRecorder) -> EventBus:
    bus = EventBus()
    bus.subscribe(recorder)
    return bus


@pytest.fixture
def fast_config() -> DispatchConfig:
    """Dispatch config with no simulated latency and a short tick."""
    return DispatchConfig(
        enable_sms=True,
        retry_attempts=3,
        tick_interval_ms=10,
        backoff_base_ms=1,
        simulate_latency=False,
        simulation_seed=7,
    )
