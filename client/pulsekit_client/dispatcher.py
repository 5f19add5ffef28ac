"""Background batch dispatcher: drains the buffer and delivers batches."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum

from .buffer import EventBuffer
from .transport import Batch, DeliveryError, HttpTransport


logger = logging.getLogger(__name__)


class DispatcherState(str, Enum):
    """Where the dispatcher thread currently is."""
    IDLE = "idle"
    DRAINING = "draining"
    SENDING = "sending"
    RETRYING = "retrying"
    STOPPED = "stopped"


@dataclass
class RetryPolicy:
    """Bounded exponential backoff for transient delivery failures."""
    max_retries: int = 3
    backoff_seconds: float = 0.5
    max_backoff_seconds: float = 8.0

    def delay(self, retry: int) -> float:
        """Seconds to wait before the given retry (1-based)."""
        return min(self.backoff_seconds * (2 ** (retry - 1)), self.max_backoff_seconds)


class BatchDispatcher:
    """
    Single worker thread that owns the buffer's drain side.

    Woken by:
    - the buffer reaching batch_size (sends full batches only)
    - the flush interval elapsing (sends everything buffered)
    - flush() (sends everything up to the snapshot taken at the call)

    At most one batch is in flight at a time, so batches leave in
    capture order and a flush overlapping a timer drain cannot send
    an event twice.
    """

    def __init__(
        self,
        buffer: EventBuffer,
        transport: HttpTransport,
        batch_size: int = 10,
        flush_interval_seconds: float = 5.0,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.buffer = buffer
        self.transport = transport
        self.batch_size = batch_size
        self.flush_interval_seconds = flush_interval_seconds
        self.retry = retry or RetryPolicy()

        self._cond = threading.Condition()
        self._abort = threading.Event()
        self._wake = False
        self._stopping = False
        self._flush_target = 0
        self._in_flight_first: int | None = None
        self._thread: threading.Thread | None = None
        self._state = DispatcherState.IDLE

        self._stats = {
            "batches_sent": 0,
            "events_sent": 0,
            "batches_dropped": 0,
            "events_dropped": 0,
            "retries": 0,
        }

    def start(self) -> None:
        """Start the worker thread (no-op if already running)."""
        if self.running:
            return
        self._thread = threading.Thread(
            target=self._run,
            name="pulsekit-dispatcher",
            daemon=True,
        )
        self._thread.start()
        logger.debug(
            f"Dispatcher started (batch_size={self.batch_size}, "
            f"interval={self.flush_interval_seconds}s)"
        )

    def notify(self) -> None:
        """Called after an append; wakes the worker once a full batch is waiting."""
        if len(self.buffer) >= self.batch_size:
            with self._cond:
                self._wake = True
                self._cond.notify_all()

    def flush(self, timeout: float | None = None) -> bool:
        """
        Send everything buffered at the time of the call.

        Returns True once those events are acknowledged or permanently
        failed, False if the timeout elapsed first. Events captured
        after the call are left to a later cycle.
        """
        target = self.buffer.last_seq
        with self._cond:
            if not self.running:
                return self._is_settled(target)
            self._flush_target = max(self._flush_target, target)
            self._wake = True
            self._cond.notify_all()
            settled = self._cond.wait_for(lambda: self._is_settled(target), timeout=timeout)

        if not settled:
            logger.debug(f"Flush timed out after {timeout}s with {len(self.buffer)} event(s) buffered")
        return settled

    def stop(self, timeout: float | None = None) -> None:
        """Make one final attempt at whatever is buffered, then stop the thread."""
        with self._cond:
            if self._thread is None:
                return
            self._stopping = True
            self._cond.notify_all()
        self._abort.set()
        self._thread.join(timeout)
        self._state = DispatcherState.STOPPED
        logger.debug(f"Dispatcher stopped. Stats: {self.stats}")

    def _is_settled(self, target: int) -> bool:
        """True when no event with seq <= target is buffered or in flight (caller holds _cond)."""
        if self._in_flight_first is not None and self._in_flight_first <= target:
            return False
        oldest = self.buffer.oldest_seq
        return oldest is None or oldest > target

    def _run(self) -> None:
        deadline = time.monotonic() + self.flush_interval_seconds

        while True:
            with self._cond:
                self._cond.wait_for(
                    lambda: self._wake or self._stopping,
                    timeout=max(0.0, deadline - time.monotonic()),
                )
                self._wake = False
                stopping = self._stopping
                target = self._flush_target

            if stopping or time.monotonic() >= deadline:
                target = max(target, self.buffer.last_seq)
                deadline = time.monotonic() + self.flush_interval_seconds

            try:
                self._drain(target)
            except Exception as e:
                logger.error(f"Dispatcher error: {e}")

            if stopping:
                break

    def _drain(self, target: int) -> None:
        """Send batches until nothing up to target remains and no full batch is waiting."""
        while True:
            with self._cond:
                oldest = self.buffer.oldest_seq
                if oldest is None or (oldest > target and len(self.buffer) < self.batch_size):
                    self._state = DispatcherState.IDLE
                    self._cond.notify_all()
                    return
                self._state = DispatcherState.DRAINING
                entries = self.buffer.drain(self.batch_size)
                self._in_flight_first = entries[0][0]

            try:
                self._send(Batch(events=[event for _, event in entries]))
            finally:
                with self._cond:
                    self._in_flight_first = None
                    self._cond.notify_all()

    def _send(self, batch: Batch) -> None:
        """Deliver one batch, retrying transient failures with backoff."""
        retries = 0
        while True:
            self._state = DispatcherState.SENDING
            try:
                ack = self.transport.send(batch)
            except DeliveryError as e:
                if not e.retryable:
                    self._drop(batch, f"rejected by server: {e}")
                    return
                if retries >= self.retry.max_retries:
                    self._drop(batch, f"giving up after {retries + 1} attempt(s): {e}")
                    return
                retries += 1
                delay = self.retry.delay(retries)
                self._state = DispatcherState.RETRYING
                self._stats["retries"] += 1
                logger.debug(f"Batch {batch.batch_id} failed ({e}), retry {retries} in {delay:.2f}s")
                if self._abort.wait(delay):
                    self._drop(batch, "dispatcher stopping")
                    return
            except Exception as e:
                self._drop(batch, f"unexpected error: {e}")
                return
            else:
                self._stats["batches_sent"] += 1
                self._stats["events_sent"] += len(batch)
                logger.debug(
                    f"Delivered batch {batch.batch_id} ({len(batch)} event(s), "
                    f"acknowledged count={ack.get('count')})"
                )
                return

    def _drop(self, batch: Batch, reason: str) -> None:
        self._stats["batches_dropped"] += 1
        self._stats["events_dropped"] += len(batch)
        logger.warning(f"Dropping batch {batch.batch_id} of {len(batch)} event(s): {reason}")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopping

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def stats(self) -> dict:
        """Dispatcher statistics."""
        return {
            **self._stats,
            "state": self._state.value,
            "buffer_size": len(self.buffer),
            "evicted": self.buffer.dropped_count,
        }
