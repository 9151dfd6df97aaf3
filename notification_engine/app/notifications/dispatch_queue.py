"""
dispatch_queue.py — FIFO buffer for non-immediate notifications.

═══════════════════════════════════════════════════════════════════════════
ADMISSION CONTROL
═══════════════════════════════════════════════════════════════════════════

A single DispatchWorker wakes every tick (default 1s) and, if the queue is
non-empty, hands exactly ONE envelope to the DeliveryEngine. This caps
initial dispatch at one envelope per tick to throttle downstream
transports; it is intentional and is the system's only backpressure.

The delivery itself runs as a background task, so a slow channel never
stretches the tick. Critical envelopes never enter this queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Set

from notification_engine.app.notifications.engine import DeliveryEngine
from notification_engine.app.notifications.models import NotificationEnvelope

logger = logging.getLogger(__name__)


class DispatchQueue:
    """Unbounded FIFO of envelopes awaiting initial dispatch."""

    def __init__(self) -> None:
        self._items: Deque[NotificationEnvelope] = deque()

    def enqueue(self, envelope: NotificationEnvelope) -> int:
        """Append to the tail. Returns the new queue length."""
        self._items.append(envelope)
        return len(self._items)

    def dequeue(self) -> Optional[NotificationEnvelope]:
        """Pop from the head, or None when empty."""
        if not self._items:
            return None
        return self._items.popleft()

    def peek_ids(self) -> List[str]:
        return [e.id for e in self._items]

    def clear(self) -> int:
        dropped = len(self._items)
        self._items.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


class DispatchWorker:
    """
    Drains the DispatchQueue at a fixed cadence.

    Usage:
        worker = DispatchWorker(queue, engine, tick_interval=1.0)
        await worker.start()
        ...
        await worker.stop()

    Tests drive it deterministically with ``await worker.tick()``.
    """

    def __init__(
        self,
        queue: DispatchQueue,
        engine: DeliveryEngine,
        *,
        tick_interval: float = 1.0,
    ):
        self.queue = queue
        self.engine = engine
        self.tick_interval = tick_interval
        self.dispatched = 0
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._deliveries: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_deliveries(self) -> int:
        return len(self._deliveries)

    async def tick(self) -> Optional[asyncio.Task]:
        """
        Admit at most one envelope.

        Returns the delivery task, or None when the queue was empty.
        """
        envelope = self.queue.dequeue()
        if envelope is None:
            return None

        self.dispatched += 1
        logger.debug(
            "Dispatching %s (%d left in queue)", envelope.id, len(self.queue),
            extra={"notification_id": envelope.id, "queue_length": len(self.queue)},
        )
        task = asyncio.get_running_loop().create_task(
            self._deliver(envelope), name=f"dispatch:{envelope.id}",
        )
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        return task

    async def _deliver(self, envelope: NotificationEnvelope) -> None:
        try:
            await self.engine.deliver(envelope)
        except Exception:
            logger.exception("Dispatch of %s crashed", envelope.id)

    async def start(self) -> None:
        """Start the tick loop (no-op if already running)."""
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._run(), name="dispatch-worker")
        logger.info("Dispatch worker started (tick=%.3fs)", self.tick_interval)

    async def stop(self) -> None:
        """Stop the tick loop. Deliveries already admitted keep running."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("Dispatch worker stopped")

    async def _run(self) -> None:
        """Main tick loop."""
        while self._running:
            try:
                await asyncio.sleep(self.tick_interval)
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Dispatch worker error: %s", e)

    async def join(self) -> None:
        """Wait for every admitted delivery's first pass to finish."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)
