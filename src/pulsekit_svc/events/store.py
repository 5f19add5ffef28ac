"""Event persistence interface and in-memory implementation."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from .types import EventLevel, StoredEvent


logger = logging.getLogger(__name__)


class EventStore(ABC):
    """
    Persistence collaborator for ingested events.

    Implementations must make an event durable before insert() returns.
    """

    @abstractmethod
    async def insert(self, event: StoredEvent) -> StoredEvent:
        """Persist one event."""
        ...

    @abstractmethod
    async def insert_many(self, events: list[StoredEvent]) -> int:
        """Persist several events in order. Returns the number stored."""
        ...

    @abstractmethod
    async def get(self, event_id: str) -> StoredEvent | None:
        ...

    @abstractmethod
    async def count(
        self,
        project_id: str,
        fingerprint: str | None = None,
        since: datetime | None = None,
        up_to_id: str | None = None,
    ) -> int:
        """
        Count a project's events, optionally by fingerprint.

        since filters on received_at (server clock), not the producer's
        timestamp. up_to_id limits the count to events persisted no later
        than that event.
        """
        ...

    @abstractmethod
    async def list_events(
        self,
        project_id: str,
        limit: int = 50,
        level: EventLevel | None = None,
        type: str | None = None,
    ) -> list[StoredEvent]:
        """Most recent events first."""
        ...


class InMemoryEventStore(EventStore):
    """Thread-safe in-memory store, used for development and tests."""

    def __init__(self) -> None:
        self._events: dict[str, StoredEvent] = {}
        self._by_project: dict[str, list[str]] = {}
        self._lock = threading.RLock()

    async def insert(self, event: StoredEvent) -> StoredEvent:
        with self._lock:
            self._add(event)
        return event

    async def insert_many(self, events: list[StoredEvent]) -> int:
        with self._lock:
            for event in events:
                self._add(event)
        return len(events)

    def _add(self, event: StoredEvent) -> None:
        """Store one event (caller holds lock)."""
        self._events[event.id] = event
        self._by_project.setdefault(event.project_id, []).append(event.id)

    async def get(self, event_id: str) -> StoredEvent | None:
        with self._lock:
            return self._events.get(event_id)

    async def count(
        self,
        project_id: str,
        fingerprint: str | None = None,
        since: datetime | None = None,
        up_to_id: str | None = None,
    ) -> int:
        seen = 0
        with self._lock:
            for event in self._project_events(project_id):
                if (fingerprint is None or event.fingerprint == fingerprint) and (
                    since is None or event.received_at >= since
                ):
                    seen += 1
                if event.id == up_to_id:
                    break
        return seen

    async def list_events(
        self,
        project_id: str,
        limit: int = 50,
        level: EventLevel | None = None,
        type: str | None = None,
    ) -> list[StoredEvent]:
        with self._lock:
            matching = [
                event for event in self._project_events(project_id)
                if (level is None or event.level == level)
                and (type is None or event.type == type)
            ]
        matching.sort(key=lambda e: e.timestamp, reverse=True)
        return matching[:limit]

    def _project_events(self, project_id: str) -> list[StoredEvent]:
        return [self._events[i] for i in self._by_project.get(project_id, [])]

    def all(self) -> list[StoredEvent]:
        """Every stored event in insertion order."""
        with self._lock:
            return list(self._events.values())

    def __len__(self) -> int:
        return len(self._events)
