"""
test_core.py — Settings, logging formatters and the error hierarchy.
"""

from __future__ import annotations

import asyncio
import json
import logging

import pytest
from pydantic import ValidationError

from notification_engine.app.core.config import DispatchConfig, Settings
from notification_engine.app.core.errors import (
    ChannelNotConfigured,
    InvalidNotification,
    NotificationError,
    SubscriberCallbackError,
    TransportFailure,
)
from notification_engine.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    get_dispatch_context,
    set_dispatch_context,
)


class TestSettings:

    def test_defaults(self, monkeypatch):
        for key in ("ENABLE_SMS", "RETRY_ATTEMPTS", "TICK_INTERVAL_MS", "BACKOFF_BASE_MS",
                    "DEFAULT_PRIORITY"):
            monkeypatch.delenv(key, raising=False)
        config = Settings(_env_file=None).dispatch_config()
        assert config.enable_email and config.enable_push and not config.enable_sms
        assert config.default_priority == "normal"
        assert config.retry_attempts == 3
        assert config.tick_interval_seconds == 1.0
        assert config.backoff_base_seconds == 1.0

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ENABLE_SMS", "true")
        monkeypatch.setenv("RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("TICK_INTERVAL_MS", "250")
        monkeypatch.setenv("BACKOFF_BASE_MS", "500")
        monkeypatch.setenv("DEFAULT_PRIORITY", "high")
        config = Settings(_env_file=None).dispatch_config()
        assert config.enable_sms is True
        assert config.retry_attempts == 5
        assert config.tick_interval_seconds == 0.25
        assert config.backoff_base_seconds == 0.5
        assert config.default_priority == "high"

    def test_production_flag(self):
        assert Settings(_env_file=None, ENVIRONMENT="production").is_production


class TestDispatchConfig:

    def test_rejects_negative_retries(self):
        with pytest.raises(ValidationError):
            DispatchConfig(retry_attempts=-1)

    def test_rejects_zero_tick(self):
        with pytest.raises(ValidationError):
            DispatchConfig(tick_interval_ms=0)

    def test_rejects_unknown_priority(self):
        with pytest.raises(ValidationError):
            DispatchConfig(default_priority="urgent")

    def test_frozen(self):
        config = DispatchConfig()
        with pytest.raises(ValidationError):
            config.retry_attempts = 9


class TestErrors:

    def test_hierarchy(self):
        for exc in (
            InvalidNotification("bad"),
            ChannelNotConfigured("sms", "disabled"),
            TransportFailure("email", "timeout"),
            SubscriberCallbackError("evt", print, RuntimeError("x")),
        ):
            assert isinstance(exc, NotificationError)

    def test_codes(self):
        assert InvalidNotification("bad", field="payload").status_code == 422
        assert ChannelNotConfigured("sms").error_code == "CHANNEL_NOT_CONFIGURED"
        failure = TransportFailure("email", "timeout", envelope_id="NTF-1")
        assert failure.status_code == 502
        assert failure.details == {"channel": "email", "envelope_id": "NTF-1"}

    def test_to_dict(self):
        error = InvalidNotification("payload is required", field="payload").to_dict()
        assert error == {
            "code": "INVALID_NOTIFICATION",
            "message": "payload is required",
            "status": 422,
            "details": {"field": "payload"},
        }
        assert "details" not in NotificationError("boom").to_dict()

    def test_subscriber_error_names_callback(self):
        def on_event(event, data):
            pass

        err = SubscriberCallbackError("notification:processed", on_event, ValueError("nope"))
        assert "on_event" in err.message
        assert err.details["event"] == "notification:processed"


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("notification_engine.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:

    def test_json_formatter_includes_extras(self):
        line = JSONFormatter().format(_record(channel="sms", attempt=2, unrelated="x"))
        entry = json.loads(line)
        assert entry["message"] == "hello"
        assert entry["channel"] == "sms"
        assert entry["attempt"] == 2
        assert "unrelated" not in entry

    def test_context_is_task_local(self):
        async def worker(name):
            set_dispatch_context(notification_id=name, channel="email")
            await asyncio.sleep(0)
            return get_dispatch_context()["notification_id"]

        async def main():
            return await asyncio.gather(worker("a"), worker("b"))

        assert asyncio.run(main()) == ["a", "b"]
        assert get_dispatch_context() == {}

    def test_pretty_formatter_renders_context(self):
        async def format_inside_task():
            set_dispatch_context(notification_id="NTF-1", channel="push")
            return PrettyFormatter().format(_record())

        line = asyncio.run(format_inside_task())
        assert "[NTF-1/push]" in line
        assert "hello" in line
