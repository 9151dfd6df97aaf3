"""
event_bus.py — In-process publish / subscribe for delivery outcomes.

Callbacks are invoked synchronously, in registration order, with
``callback(event_name, data)``. A callback that raises is logged and
reported back to the publisher; the remaining callbacks still run.

Known limitation: callbacks run one after another on the publisher's
task, so a slow callback delays every subscriber registered after it.
Subscribers doing real work should hand it off (e.g. asyncio.create_task).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from notification_engine.app.core.errors import SubscriberCallbackError

logger = logging.getLogger(__name__)

Callback = Callable[[str, Any], Any]


class Subscription:
    """Handle returned by EventBus.subscribe; call it to unsubscribe."""

    def __init__(self, bus: "EventBus", callback: Callback):
        self._bus = bus
        self.callback = callback

    @property
    def active(self) -> bool:
        return self._bus.is_subscribed(self.callback)

    def unsubscribe(self) -> bool:
        return self._bus.unsubscribe(self.callback)

    def __call__(self) -> bool:
        return self.unsubscribe()


class EventBus:
    """Ordered fan-out of events to registered callbacks."""

    def __init__(self) -> None:
        # dict keeps insertion order and collapses duplicate registrations
        self._subscribers: Dict[Callback, None] = {}

    def subscribe(self, callback: Callback) -> Subscription:
        if not callable(callback):
            raise TypeError(f"Subscriber must be callable, got {type(callback).__name__}")
        self._subscribers.setdefault(callback, None)
        logger.debug("Subscriber added (%d total)", len(self._subscribers))
        return Subscription(self, callback)

    def unsubscribe(self, callback: Callback) -> bool:
        """Remove a callback. Returns False if it was not subscribed."""
        if callback in self._subscribers:
            del self._subscribers[callback]
            return True
        return False

    def is_subscribed(self, callback: Callback) -> bool:
        return callback in self._subscribers

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event_name: str, data: Any) -> List[SubscriberCallbackError]:
        """
        Deliver an event to every current subscriber.

        Returns
        -------
        list of SubscriberCallbackError
            One entry per callback that raised; empty when all succeeded.
        """
        errors: List[SubscriberCallbackError] = []
        # Snapshot: callbacks may (un)subscribe while we iterate
        for callback in list(self._subscribers):
            try:
                callback(event_name, data)
            except Exception as exc:
                error = SubscriberCallbackError(event_name, callback, exc)
                logger.error("Subscriber callback error: %s", error.message, exc_info=exc)
                errors.append(error)
        return errors

    def clear(self) -> None:
        self._subscribers.clear()
