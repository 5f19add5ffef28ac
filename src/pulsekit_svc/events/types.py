"""Persisted event types."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventLevel(str, Enum):
    """Severity of an event."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


def compute_fingerprint(event_type: str, message: str | None) -> str:
    """Grouping key for similar events: first 16 hex chars of md5("type:message")."""
    digest = hashlib.md5(f"{event_type}:{message or ''}".encode("utf-8")).hexdigest()
    return digest[:16]


@dataclass(frozen=True, slots=True)
class StoredEvent:
    """
    An event accepted by the ingestion service.

    id and received_at are assigned by the service; timestamp is the
    producer's capture time (or ingestion time when none was sent).
    """
    id: str
    project_id: str
    type: str
    level: EventLevel
    timestamp: datetime
    message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    exception: dict[str, Any] | None = None
    environment: str | None = None
    release: str | None = None
    fingerprint: str | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls,
        project_id: str,
        type: str,
        level: EventLevel,
        timestamp: datetime | None = None,
        fingerprint: str | None = None,
        message: str | None = None,
        **kwargs,
    ) -> StoredEvent:
        """Factory method that assigns id, timestamp and fingerprint."""
        return cls(
            id=str(uuid.uuid4()),
            project_id=project_id,
            type=type,
            level=level,
            timestamp=timestamp or datetime.now(timezone.utc),
            message=message,
            fingerprint=fingerprint or compute_fingerprint(type, message),
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type,
            "level": self.level.value,
            "message": self.message,
            "metadata": self.metadata,
            "tags": self.tags,
            "exception": self.exception,
            "environment": self.environment,
            "release": self.release,
            "fingerprint": self.fingerprint,
            "timestamp": self.timestamp.isoformat(),
            "received_at": self.received_at.isoformat(),
        }
