"""TTL cache of batch receipts for idempotent batch ingestion."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Generic, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class Receipt(Generic[T]):
    """The result recorded for a batch id."""
    value: T
    created_at: float
    ttl_seconds: float

    @property
    def is_expired(self) -> bool:
        return time.time() > self.created_at + self.ttl_seconds


@dataclass
class ReceiptCache(Generic[T]):
    """
    Remembers the outcome of recently ingested batches.

    A client that retries after a lost response sends the same batch
    id again; the cached outcome is returned instead of persisting the
    events a second time. Oldest receipts are evicted beyond max_size.
    """
    max_size: int = 10000
    ttl_seconds: float = 600.0

    _store: OrderedDict[str, Receipt[T]] = field(default_factory=OrderedDict, init=False)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, init=False)
    _lock_users: dict[str, int] = field(default_factory=dict, init=False)
    _hits: int = field(default=0, init=False)

    def get(self, key: str) -> T | None:
        """Cached value for key, or None if missing or expired."""
        receipt = self._store.get(key)
        if receipt is None or receipt.is_expired:
            return None
        self._hits += 1
        return receipt.value

    def set(self, key: str, value: T) -> None:
        self._store[key] = Receipt(value=value, created_at=time.time(), ttl_seconds=self.ttl_seconds)
        self._store.move_to_end(key)
        while len(self._store) > self.max_size:
            self._store.popitem(last=False)

    def lock_for(self, key: str) -> asyncio.Lock:
        """
        Per-key lock so concurrent replays of one batch persist it once.

        Every lock_for() must be paired with a release() once the caller
        is done with the lock.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        return lock

    def release(self, key: str) -> None:
        """Drop the key's lock once no caller is using it."""
        users = self._lock_users.get(key, 0) - 1
        if users > 0:
            self._lock_users[key] = users
            return
        self._lock_users.pop(key, None)
        self._locks.pop(key, None)

    def cleanup_expired(self) -> int:
        """Remove all expired receipts. Returns count removed."""
        expired = [key for key, receipt in self._store.items() if receipt.is_expired]
        for key in expired:
            del self._store[key]
        return len(expired)

    @property
    def stats(self) -> dict:
        return {
            "size": len(self._store),
            "max_size": self.max_size,
            "replays": self._hits,
        }
