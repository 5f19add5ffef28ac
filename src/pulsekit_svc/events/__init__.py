"""Event ingestion - validation, persistence and alert hand-off."""

from .service import (
    BatchResult,
    EventValidationError,
    IngestionError,
    IngestionService,
    MalformedRequestError,
)
from .store import EventStore, InMemoryEventStore
from .types import EventLevel, StoredEvent

__all__ = [
    "BatchResult",
    "EventLevel",
    "EventStore",
    "EventValidationError",
    "InMemoryEventStore",
    "IngestionError",
    "IngestionService",
    "MalformedRequestError",
    "StoredEvent",
]
