"""
retry.py — Exponential backoff and scheduled re-delivery.

Backoff formula:
    delay = base × 2^attempt

    Example (base = 1s):
        Attempt 1: 2s, Attempt 2: 4s, Attempt 3: 8s

``attempt`` is the channel's failure count so far (1 after the first
failed attempt). Each scheduled retry is its own asyncio task, so waiting
out a delay never blocks the dispatch worker or any other envelope.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

from notification_engine.app.notifications.models import NotificationEnvelope

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Redeliver = Callable[[NotificationEnvelope, str, int], Awaitable[object]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters shared by all channels."""
    max_retries: int = 3
    backoff_base_seconds: float = 1.0

    def compute_backoff(self, attempt: int) -> float:
        """
        Delay before the next retry.

        Parameters
        ----------
        attempt : int
            Failures so far for this channel.

        Returns
        -------
        float
            Delay in seconds.
        """
        return self.backoff_base_seconds * (2 ** attempt)

    def should_retry(self, failures: int) -> bool:
        return failures <= self.max_retries


class RetryScheduler:
    """
    Re-injects one failed (envelope, channel) attempt after its backoff.

    Parameters
    ----------
    policy : RetryPolicy
    redeliver : callable
        ``await redeliver(envelope, channel, failures)`` runs the
        single-channel delivery step again.
    sleep : callable, optional
        Awaitable used to wait out the delay (default asyncio.sleep).
    """

    def __init__(
        self,
        policy: RetryPolicy,
        redeliver: Redeliver,
        *,
        sleep: Optional[Sleep] = None,
    ):
        self.policy = policy
        self._redeliver = redeliver
        self._sleep = sleep or asyncio.sleep
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def schedule(
        self,
        envelope: NotificationEnvelope,
        channel: str,
        attempt_number: int,
    ) -> Optional[float]:
        """
        Schedule a retry and return its delay in seconds.

        Returns None without scheduling anything once the scheduler is
        closed. Must be called from within a running event loop.
        """
        if self._closed:
            logger.info(
                "Not retrying %s via %s: scheduler closed", envelope.id, channel,
                extra={"notification_id": envelope.id, "channel": channel},
            )
            return None

        delay = self.policy.compute_backoff(attempt_number)
        task = asyncio.get_running_loop().create_task(
            self._run(envelope, channel, attempt_number, delay),
            name=f"retry:{envelope.id}:{channel}:{attempt_number}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "Retry %d/%d for %s via %s in %.1fs",
            attempt_number, self.policy.max_retries, envelope.id, channel, delay,
            extra={
                "notification_id": envelope.id,
                "channel": channel,
                "attempt": attempt_number,
                "delay_seconds": delay,
            },
        )
        return delay

    async def _run(
        self,
        envelope: NotificationEnvelope,
        channel: str,
        attempt_number: int,
        delay: float,
    ) -> None:
        await self._sleep(delay)
        try:
            await self._redeliver(envelope, channel, attempt_number)
        except Exception:
            logger.exception(
                "Re-delivery of %s via %s crashed", envelope.id, channel,
            )

    async def join(self) -> None:
        """Wait until no retries are pending, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> int:
        """Cancel every pending retry wait. Returns the number cancelled."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("Cancelled %d pending retries", len(tasks))
        return len(tasks)

    def close(self) -> int:
        """Refuse further retries and cancel the pending ones."""
        self._closed = True
        return self.cancel_all()
