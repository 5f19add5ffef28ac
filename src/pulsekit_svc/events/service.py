"""Event ingestion service - validates, persists and hands off to alerting."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from .models import EventBody
from .receipts import ReceiptCache
from .store import EventStore
from .types import StoredEvent

if TYPE_CHECKING:
    from ..alerts.dispatcher import AlertDispatcher


logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Base exception for ingestion errors."""
    pass


class EventValidationError(IngestionError):
    """Event body failed validation. errors maps field -> messages."""

    def __init__(self, errors: dict[str, list[str]]):
        super().__init__(f"Invalid event: {errors}")
        self.errors = errors


class MalformedRequestError(IngestionError):
    """Request body does not have the expected shape."""

    def __init__(self, message: str, error: str = "Invalid request", status_code: int = 400):
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code


@dataclass
class RejectedEvent:
    """A batch item that failed validation."""
    index: int
    errors: dict[str, list[str]]


@dataclass
class BatchResult:
    """Outcome of a batch: persisted events plus rejected items."""
    events: list[StoredEvent] = field(default_factory=list)
    rejected: list[RejectedEvent] = field(default_factory=list)
    replayed: bool = False

    @property
    def count(self) -> int:
        return len(self.events)


def format_validation_errors(exc: ValidationError) -> dict[str, list[str]]:
    """Group pydantic errors by dotted field path."""
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        field_path = ".".join(str(part) for part in error["loc"]) or "body"
        errors.setdefault(field_path, []).append(error["msg"])
    return errors


def normalize_timestamp(value: datetime | str | None) -> datetime:
    """UTC datetime from the producer's timestamp; ingestion time if absent or unparseable."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            value = None
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class IngestionService:
    """
    Accepts events for a project.

    Each accepted event is persisted first, then submitted to the alert
    dispatcher. Submission is a non-blocking enqueue, so alert
    evaluation never delays or fails ingestion.
    """

    def __init__(
        self,
        store: EventStore,
        alerts: AlertDispatcher | None = None,
        receipts: ReceiptCache[BatchResult] | None = None,
        max_batch_size: int = 1000,
    ) -> None:
        self.store = store
        self.alerts = alerts
        self.receipts = receipts
        self.max_batch_size = max_batch_size

        self._stats = {
            "events_created": 0,
            "events_rejected": 0,
            "batches": 0,
            "batches_replayed": 0,
        }

    def build_event(self, project_id: str, body: Any) -> StoredEvent:
        """
        Validate a raw body and build the event to persist.

        Raises:
            EventValidationError: with per-field messages
        """
        try:
            parsed = EventBody.model_validate(body)
        except ValidationError as e:
            raise EventValidationError(format_validation_errors(e)) from e

        return StoredEvent.create(
            project_id=project_id,
            type=parsed.type,
            level=parsed.level,
            timestamp=normalize_timestamp(parsed.timestamp),
            fingerprint=parsed.fingerprint,
            message=parsed.message,
            metadata=parsed.metadata,
            tags=parsed.tags,
            exception=parsed.exception.model_dump() if parsed.exception else None,
            environment=parsed.environment,
            release=parsed.release,
        )

    async def create_event(self, project_id: str, body: Any) -> StoredEvent:
        """
        Validate and persist one event, then trigger alerting.

        Raises:
            EventValidationError: nothing is persisted
        """
        try:
            event = self.build_event(project_id, body)
        except EventValidationError:
            self._stats["events_rejected"] += 1
            raise

        await self.store.insert(event)
        self._stats["events_created"] += 1
        self._dispatch_alerts([event])
        logger.debug(f"Event {event.id} ({event.type}) created for project {project_id}")
        return event

    async def create_events(
        self,
        project_id: str,
        bodies: Any,
        batch_id: str | None = None,
    ) -> BatchResult:
        """
        Validate each body independently and persist the valid ones in order.

        One invalid item does not fail the batch; it is reported in
        BatchResult.rejected. With a batch_id, a replay of an already
        ingested batch returns the first outcome without persisting again.

        Raises:
            MalformedRequestError: bodies is not a list, or is too large
        """
        if not isinstance(bodies, list):
            raise MalformedRequestError("Expected 'events' array in request body")
        if len(bodies) > self.max_batch_size:
            raise MalformedRequestError(
                f"Batch of {len(bodies)} events exceeds limit of {self.max_batch_size}",
                error="Batch too large",
                status_code=413,
            )

        if batch_id is None or self.receipts is None:
            return await self._ingest_batch(project_id, bodies)

        key = f"{project_id}:{batch_id}"
        try:
            async with self.receipts.lock_for(key):
                previous = self.receipts.get(key)
                if previous is not None:
                    self._stats["batches_replayed"] += 1
                    logger.info(f"Batch {batch_id} already ingested, returning previous result")
                    return BatchResult(events=previous.events, rejected=previous.rejected, replayed=True)

                result = await self._ingest_batch(project_id, bodies)
                self.receipts.set(key, result)
                return result
        finally:
            self.receipts.release(key)

    async def _ingest_batch(self, project_id: str, bodies: list[Any]) -> BatchResult:
        result = BatchResult()
        for index, body in enumerate(bodies):
            try:
                result.events.append(self.build_event(project_id, body))
            except EventValidationError as e:
                result.rejected.append(RejectedEvent(index=index, errors=e.errors))

        if result.events:
            await self.store.insert_many(result.events)

        self._stats["batches"] += 1
        self._stats["events_created"] += result.count
        self._stats["events_rejected"] += len(result.rejected)
        if result.rejected:
            logger.info(
                f"Batch for project {project_id}: {result.count} created, "
                f"{len(result.rejected)} rejected"
            )

        self._dispatch_alerts(result.events)
        return result

    def _dispatch_alerts(self, events: list[StoredEvent]) -> None:
        """Hand persisted events to the alert dispatcher without waiting."""
        if self.alerts is None:
            return
        for event in events:
            self.alerts.submit(event)

    @property
    def stats(self) -> dict:
        return dict(self._stats)
