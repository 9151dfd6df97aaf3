"""
test_engine.py — DeliveryEngine per-channel delivery, retries and events.

Covers:
    • success / skipped / retry-scheduled / failed-exhausted outcomes
    • fail-fail-succeed round trip with max_retries=2
    • exactly one failed-exhausted publish, no retry afterwards
    • channel independence (a stuck channel does not hold up another)
    • transports that raise
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import RecordingSleep, ScriptedTransport, make_envelope, make_registry
from notification_engine.app.notifications.engine import DeliveryEngine
from notification_engine.app.notifications.models import (
    PROCESSED_EVENT,
    ChannelConfig,
    NotificationEnvelope,
    OutcomeStatus,
    TransportResult,
)
from notification_engine.app.notifications.channels.base import ChannelTransport
from notification_engine.app.notifications.retry import RetryPolicy


def _engine(registry, event_bus, sleep, base=1.0):
    return DeliveryEngine(
        registry, event_bus, RetryPolicy(backoff_base_seconds=base), sleep=sleep,
    )


class TestFirstPass:

    @pytest.mark.asyncio
    async def test_success(self, event_bus, recorder, recording_sleep):
        email = ScriptedTransport("email")
        engine = _engine(make_registry(email), event_bus, recording_sleep)
        envelope = make_envelope(("email",))

        report = await engine.deliver(envelope)

        assert report.envelope_id == envelope.id
        assert report.statuses() == {"email": OutcomeStatus.SUCCESS}
        assert report["email"].attempt == 1
        assert report["email"].message_id == "email_1"
        assert email.calls == [(envelope.id, "email://test")]
        assert engine.in_flight == 0

        processed = recorder.processed()
        assert len(processed) == 1
        assert processed[0]["envelope_id"] == envelope.id
        assert processed[0]["outcomes"]["email"]["status"] == "success"

    @pytest.mark.asyncio
    async def test_unregistered_and_disabled_are_skipped(self, event_bus, recorder, recording_sleep):
        sms = ScriptedTransport("sms")
        push = ScriptedTransport("push")
        engine = _engine(make_registry(sms, push, disabled=["sms"]), event_bus, recording_sleep)

        report = await engine.deliver(make_envelope(("sms", "pigeon", "push")))

        assert report.statuses() == {
            "sms": OutcomeStatus.SKIPPED,
            "pigeon": OutcomeStatus.SKIPPED,
            "push": OutcomeStatus.SUCCESS,
        }
        assert report["sms"].reason == "disabled"
        assert report["pigeon"].reason == "not registered"
        assert sms.call_count == 0
        assert engine.retry_scheduler.pending == 0
        assert len(recorder.processed()) == 1

    @pytest.mark.asyncio
    async def test_report_keeps_target_order(self, event_bus, recording_sleep):
        transports = [ScriptedTransport(k) for k in ("sms", "email", "push")]
        engine = _engine(make_registry(*transports), event_bus, recording_sleep)
        report = await engine.deliver(make_envelope(("push", "sms", "email")))
        assert list(report) == ["push", "sms", "email"]

    @pytest.mark.asyncio
    async def test_failure_schedules_retry_without_waiting(self, event_bus):
        release = asyncio.Event()
        delays = []

        async def gated_sleep(delay):
            delays.append(delay)
            await release.wait()

        email = ScriptedTransport("email", [False])
        engine = _engine(make_registry(email), event_bus, gated_sleep)

        report = await engine.deliver(make_envelope(("email",)))
        await asyncio.sleep(0)
        assert delays == [2.0]

        outcome = report["email"]
        assert outcome.status is OutcomeStatus.RETRY_SCHEDULED
        assert outcome.reason == "email delivery failed"
        assert outcome.retry_delay_seconds == 2.0  # base × 2^1
        assert email.call_count == 1
        assert engine.in_flight == 1

        release.set()
        await engine.join()
        assert email.call_count == 2
        assert engine.in_flight == 0


class TestRetries:

    @pytest.mark.asyncio
    async def test_fail_fail_succeed_round_trip(self, event_bus, recorder, recording_sleep):
        sms = ScriptedTransport("sms", [False, False, True])
        engine = _engine(make_registry(sms), event_bus, recording_sleep)
        envelope = make_envelope(("sms",), max_retries=2)

        await engine.deliver(envelope)
        await engine.join()

        assert recorder.channel_statuses("sms") == [
            "retry-scheduled", "retry-scheduled", "success",
        ]
        assert sms.call_count == 3
        assert recording_sleep.delays == [2.0, 4.0]

        processed = recorder.processed()
        assert len(processed) == 1
        assert processed[0]["outcomes"]["sms"]["status"] == "success"
        assert processed[0]["outcomes"]["sms"]["attempt"] == 3

    @pytest.mark.asyncio
    async def test_exhaustion_publishes_once_and_stops(self, event_bus, recorder, recording_sleep):
        email = ScriptedTransport("email", default=False)
        engine = _engine(make_registry(email), event_bus, recording_sleep)
        envelope = make_envelope(("email",), max_retries=3)

        await engine.deliver(envelope)
        await engine.join()

        statuses = recorder.channel_statuses("email")
        assert statuses == ["retry-scheduled"] * 3 + ["failed-exhausted"]
        assert statuses.count("failed-exhausted") == 1
        assert email.call_count == 4  # initial + 3 retries
        assert recording_sleep.delays == [2.0, 4.0, 8.0]
        assert engine.retry_scheduler.pending == 0

        processed = recorder.processed()
        assert len(processed) == 1
        assert processed[0]["outcomes"]["email"]["status"] == "failed-exhausted"

        # nothing further happens
        await asyncio.sleep(0)
        assert email.call_count == 4
        assert len(recorder.processed()) == 1

    @pytest.mark.asyncio
    async def test_zero_retries_exhausts_immediately(self, event_bus, recording_sleep):
        email = ScriptedTransport("email", [False])
        engine = _engine(make_registry(email), event_bus, recording_sleep)

        report = await engine.deliver(make_envelope(("email",), max_retries=0))

        assert report["email"].status is OutcomeStatus.FAILED_EXHAUSTED
        assert engine.retry_scheduler.pending == 0
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retry_only_touches_failed_channel(self, event_bus, recorder, recording_sleep):
        email = ScriptedTransport("email")
        sms = ScriptedTransport("sms", [False, True])
        engine = _engine(make_registry(email, sms), event_bus, recording_sleep)

        await engine.deliver(make_envelope(("email", "sms")))
        await engine.join()

        assert email.call_count == 1
        assert sms.call_count == 2
        processed = recorder.processed()
        assert len(processed) == 1
        assert {ch: o["status"] for ch, o in processed[0]["outcomes"].items()} == {
            "email": "success", "sms": "success",
        }

    @pytest.mark.asyncio
    async def test_raising_transport_counts_as_failure(self, event_bus, recorder, recording_sleep):
        push = ScriptedTransport("push", [ConnectionError("socket closed"), True])
        engine = _engine(make_registry(push), event_bus, recording_sleep)

        report = await engine.deliver(make_envelope(("push",)))
        assert report["push"].status is OutcomeStatus.RETRY_SCHEDULED
        assert report["push"].reason == "socket closed"

        await engine.join()
        assert recorder.channel_statuses("push") == ["retry-scheduled", "success"]


class TestIndependence:

    @pytest.mark.asyncio
    async def test_stuck_channel_does_not_block_another(self, event_bus, recording_sleep):
        release = asyncio.Event()
        finished = []

        class BlockingTransport(ChannelTransport):
            kind = "sms"

            async def attempt(self, envelope: NotificationEnvelope, config: ChannelConfig) -> TransportResult:
                await release.wait()
                finished.append("sms")
                return TransportResult.ok("sms_1")

        class FastTransport(ChannelTransport):
            kind = "email"

            async def attempt(self, envelope: NotificationEnvelope, config: ChannelConfig) -> TransportResult:
                finished.append("email")
                return TransportResult.ok("email_1")

        registry = make_registry()
        registry.register(ChannelConfig("sms"), BlockingTransport())
        registry.register(ChannelConfig("email"), FastTransport())
        engine = _engine(registry, event_bus, recording_sleep)

        task = asyncio.create_task(engine.deliver(make_envelope(("sms", "email"))))
        for _ in range(5):
            await asyncio.sleep(0)

        assert finished == ["email"]
        assert not task.done()

        release.set()
        report = await task
        assert finished == ["email", "sms"]
        assert report.is_complete

    @pytest.mark.asyncio
    async def test_subscriber_failure_does_not_break_delivery(self, event_bus, recorder, recording_sleep):
        def broken(event, data):
            raise RuntimeError("listener down")

        event_bus.subscribe(broken)
        email = ScriptedTransport("email", [False, True])
        engine = _engine(make_registry(email), event_bus, recording_sleep)

        report = await engine.deliver(make_envelope(("email",)))
        await engine.join()

        assert report["email"].status is OutcomeStatus.RETRY_SCHEDULED
        assert recorder.channel_statuses("email") == ["retry-scheduled", "success"]

    @pytest.mark.asyncio
    async def test_envelopes_tracked_separately(self, event_bus, recorder, recording_sleep):
        email = ScriptedTransport("email", [False, True, True])
        engine = _engine(make_registry(email), event_bus, recording_sleep)
        first, second = make_envelope(("email",)), make_envelope(("email",))

        await asyncio.gather(engine.deliver(first), engine.deliver(second))
        await engine.join()

        finished = {data["envelope_id"] for data in recorder.named(PROCESSED_EVENT)}
        assert finished == {first.id, second.id}
        assert engine.in_flight == 0


@pytest.mark.asyncio
async def test_abandon_all_drops_pending_retries(event_bus, recorder):
    async def never(delay):
        await asyncio.Event().wait()

    email = ScriptedTransport("email", [False])
    engine = DeliveryEngine(make_registry(email), event_bus, RetryPolicy(), sleep=never)

    await engine.deliver(make_envelope(("email",)))
    assert engine.retry_scheduler.pending == 1

    assert engine.abandon_all() == 1
    await engine.join()
    assert engine.in_flight == 0
    assert email.call_count == 1
    assert recorder.processed() == []


@pytest.mark.asyncio
async def test_outcome_counters(event_bus):
    email = ScriptedTransport("email", [False, True])
    engine = DeliveryEngine(make_registry(email), event_bus, RetryPolicy(), sleep=RecordingSleep())

    await engine.deliver(make_envelope(("email", "fax")))
    await engine.join()

    assert engine.transport_invocations == 2
    assert engine.outcome_counts[OutcomeStatus.SKIPPED] == 1
    assert engine.outcome_counts[OutcomeStatus.RETRY_SCHEDULED] == 1
    assert engine.outcome_counts[OutcomeStatus.SUCCESS] == 1


@pytest.mark.asyncio
async def test_failure_after_abandon_schedules_nothing(event_bus, recording_sleep):
    release = asyncio.Event()

    class HeldTransport(ScriptedTransport):
        async def attempt(self, envelope, config):
            await release.wait()
            return await super().attempt(envelope, config)

    email = HeldTransport("email", [False])
    engine = _engine(make_registry(email), event_bus, recording_sleep)

    delivery = asyncio.create_task(engine.deliver(make_envelope(("email",))))
    await asyncio.sleep(0)
    assert email.call_count == 0

    engine.abandon_all()
    release.set()
    report = await delivery
    await engine.join()

    assert report.statuses() == {"email": OutcomeStatus.RETRY_SCHEDULED}
    assert engine.retry_scheduler.pending == 0
    assert recording_sleep.delays == []
    assert email.call_count == 1


@pytest.mark.asyncio
async def test_duplicate_channels_delivered_once(event_bus, recorder, recording_sleep):
    email = ScriptedTransport("email")
    engine = _engine(make_registry(email), event_bus, recording_sleep)
    envelope = NotificationEnvelope(payload="x", target_channels=("email", "EMAIL", "email"))

    report = await engine.deliver(envelope)

    assert list(report) == ["email"]
    assert email.call_count == 1
    assert len(recorder.processed()) == 1
