"""Non-blocking alert dispatcher."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from ..events.types import StoredEvent


logger = logging.getLogger(__name__)

Evaluator = Callable[[StoredEvent], Awaitable[None]]


@dataclass
class AlertDispatcher:
    """
    Hands freshly persisted events to alert evaluation, off the request path.

    Events are placed on a bounded asyncio queue consumed by independent
    worker tasks. submit() never awaits, so a slow or failing evaluator
    cannot delay or fail ingestion.

    Features:
    - Non-blocking submit (fire and forget)
    - Bounded queue, events dropped when full
    - Per-event timeout and failure isolation in the workers
    - Metrics on queue depth, drops and failures
    """
    # Async callable that evaluates one event against alert rules
    evaluator: Evaluator | None = None

    # Number of concurrent evaluation workers
    workers: int = 4

    # Maximum pending evaluations
    max_queue_size: int = 10000

    # Per-event evaluation limit (None or 0 = unlimited)
    evaluation_timeout_seconds: float | None = 30.0

    # Internal state
    _queue: asyncio.Queue | None = field(default=None, init=False)
    _tasks: list[asyncio.Task] = field(default_factory=list, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "submitted": 0,
            "dropped": 0,
            "evaluated": 0,
            "failed": 0,
            "timed_out": 0,
        }

    async def start(self) -> None:
        """Create the queue and worker tasks (call on startup)."""
        if self._tasks:
            return
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"alert-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(
            f"Alert dispatcher started (workers={self.workers}, "
            f"max_queue={self.max_queue_size})"
        )

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Let workers finish queued evaluations (up to drain_timeout), then cancel them."""
        if self._queue is not None and self._tasks:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Alert dispatcher stopping with {self._queue.qsize()} "
                    f"evaluation(s) still pending"
                )

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None
        logger.info(f"Alert dispatcher stopped. Stats: {self._stats}")

    def submit(self, event: StoredEvent) -> bool:
        """
        Schedule evaluation of an event (non-blocking).

        Returns True if queued, False if dropped.
        """
        if self._queue is None:
            logger.warning(f"Alert dispatcher not started, dropping event {event.id}")
            self._stats["dropped"] += 1
            return False

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Alert queue full, dropping event {event.id}")
            self._stats["dropped"] += 1
            return False

        self._stats["submitted"] += 1
        return True

    async def _worker_loop(self, worker_id: int) -> None:
        """Evaluate queued events until cancelled."""
        while True:
            event = await self._queue.get()
            try:
                await self._evaluate(event)
            finally:
                self._queue.task_done()

    async def _evaluate(self, event: StoredEvent) -> None:
        if self.evaluator is None:
            return

        timeout = self.evaluation_timeout_seconds or None
        try:
            await asyncio.wait_for(self.evaluator(event), timeout=timeout)
            self._stats["evaluated"] += 1
        except asyncio.TimeoutError:
            logger.error(f"Alert evaluation for event {event.id} timed out after {timeout}s")
            self._stats["timed_out"] += 1
        except Exception as e:
            logger.error(f"Alert evaluation failed for event {event.id}: {e}")
            self._stats["failed"] += 1

    @property
    def queue_depth(self) -> int:
        """Current queue depth."""
        return self._queue.qsize() if self._queue else 0

    @property
    def stats(self) -> dict:
        """Get dispatcher statistics."""
        return {
            **self._stats,
            "queue_depth": self.queue_depth,
            "workers": len(self._tasks),
        }
