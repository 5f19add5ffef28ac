"""Bounded, thread-safe event buffer with drop-oldest eviction."""

from __future__ import annotations

import logging
import threading
from collections import deque

from .events import Event


logger = logging.getLogger(__name__)


class EventBuffer:
    """
    Ring buffer of pending events shared by capturing threads and the
    dispatcher thread.

    - deque(maxlen=N) evicts the oldest entry automatically on overflow
    - every appended event gets a monotonically increasing sequence
      number, which lets flush() wait for "everything captured so far"
    - drain() pops up to N oldest entries atomically (FIFO)
    """

    def __init__(self, max_size: int = 1000) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._entries: deque[tuple[int, Event]] = deque(maxlen=max_size)
        self._lock = threading.Lock()
        self._last_seq = 0
        self._dropped_count = 0

    def append(self, event: Event) -> int:
        """Add an event, evicting the oldest if full. Returns its sequence number."""
        with self._lock:
            was_full = len(self._entries) == self._entries.maxlen
            if was_full:
                evicted_seq, evicted = self._entries[0]
            self._last_seq += 1
            seq = self._last_seq
            self._entries.append((seq, event))
            if was_full:
                self._dropped_count += 1

        if was_full:
            logger.debug(
                f"Buffer full ({self._entries.maxlen}), evicted oldest event "
                f"#{evicted_seq} type={evicted.type}"
            )
        return seq

    def drain(self, max_count: int) -> list[tuple[int, Event]]:
        """Remove and return up to max_count oldest entries, oldest first."""
        with self._lock:
            count = min(max_count, len(self._entries))
            return [self._entries.popleft() for _ in range(count)]

    @property
    def last_seq(self) -> int:
        """Sequence number of the most recently appended event (0 if none)."""
        with self._lock:
            return self._last_seq

    @property
    def oldest_seq(self) -> int | None:
        """Sequence number of the oldest buffered event, or None if empty."""
        with self._lock:
            return self._entries[0][0] if self._entries else None

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    @property
    def dropped_count(self) -> int:
        """Number of events evicted due to overflow."""
        return self._dropped_count

    def __len__(self) -> int:
        return len(self._entries)
