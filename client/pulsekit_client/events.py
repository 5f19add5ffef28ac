"""Event types captured by the SDK."""

from __future__ import annotations

import json
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType, TracebackType
from typing import Any, Mapping


class EventLevel(str, Enum):
    """Severity of an event."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"

    @classmethod
    def parse(cls, value: EventLevel | str | None) -> EventLevel:
        """Accept an EventLevel or its (case-insensitive) name; None means info."""
        if value is None:
            return cls.INFO
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(level.value for level in cls)
            raise ValueError(f"Invalid level {value!r} (expected one of: {valid})") from None


@dataclass(frozen=True, slots=True)
class StackFrame:
    """One frame of a captured stack, outermost first."""
    file: str | None = None
    line: int | None = None
    function: str | None = None
    context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "function": self.function,
            "context": self.context,
        }


@dataclass(frozen=True, slots=True)
class ExceptionInfo:
    """Exception details attached to an event."""
    message: str
    exception_type: str
    stack: tuple[StackFrame, ...] = ()

    @classmethod
    def from_exception(cls, error: BaseException, stack_trace: Any = None) -> ExceptionInfo:
        """
        Build from an exception.

        stack_trace may be a traceback object, a traceback.StackSummary,
        an iterable of frame mappings, or None to use error.__traceback__.
        """
        return cls(
            message=str(error),
            exception_type=type(error).__name__,
            stack=extract_stack(stack_trace if stack_trace is not None else error.__traceback__),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "exception_type": self.exception_type,
            "stack": [frame.to_dict() for frame in self.stack],
        }


def extract_stack(stack_trace: Any) -> tuple[StackFrame, ...]:
    """Normalize the accepted stack representations into StackFrames."""
    if stack_trace is None:
        return ()

    if isinstance(stack_trace, TracebackType):
        stack_trace = traceback.extract_tb(stack_trace)

    frames = []
    for entry in stack_trace:
        if isinstance(entry, traceback.FrameSummary):
            frames.append(StackFrame(
                file=entry.filename,
                line=entry.lineno,
                function=entry.name,
                context=entry.line or None,
            ))
        elif isinstance(entry, StackFrame):
            frames.append(entry)
        elif isinstance(entry, Mapping):
            frames.append(StackFrame(
                file=entry.get("file"),
                line=entry.get("line"),
                function=entry.get("function"),
                context=entry.get("context"),
            ))
        else:
            raise TypeError(f"Unsupported stack frame: {entry!r}")
    return tuple(frames)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def freeze_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Detached, JSON-safe copy of event metadata.

    Nested containers are copied so later changes by the caller do not
    reach the buffered event. Values JSON cannot encode (Decimal, UUID,
    datetime, ...) are stored as their str().

    Raises:
        ValueError: metadata is circular, has non-string keys JSON cannot
            encode, or holds NaN or infinity
    """
    try:
        return json.loads(json.dumps(dict(metadata or {}), default=str, allow_nan=False))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Event metadata is not serializable: {e}") from None


@dataclass(frozen=True, slots=True)
class Event:
    """
    A single telemetry event.

    Immutable once built: all enrichment (default tags, scope data)
    happens in create() before the event reaches the buffer.
    """
    type: str
    level: EventLevel
    timestamp: str
    message: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    tags: Mapping[str, str] = field(default_factory=dict)
    exception: ExceptionInfo | None = None
    environment: str | None = None
    release: str | None = None
    fingerprint: str | None = None

    @classmethod
    def create(
        cls,
        type: str | None,
        level: EventLevel | str | None = None,
        message: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        tags: Mapping[str, Any] | None = None,
        timestamp: datetime | str | None = None,
        exception: ExceptionInfo | None = None,
        environment: str | None = None,
        release: str | None = None,
        fingerprint: str | None = None,
        default_tags: Mapping[str, str] | None = None,
    ) -> Event:
        """Factory that validates input and fills defaults."""
        if not type or not isinstance(type, str):
            raise ValueError("Event type is required")

        merged_tags = {k: str(v) for k, v in (default_tags or {}).items() if v is not None}
        merged_tags.update({str(k): str(v) for k, v in (tags or {}).items()})

        if timestamp is None:
            timestamp = utc_now_iso()
        elif isinstance(timestamp, datetime):
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
            timestamp = timestamp.astimezone(timezone.utc).isoformat()

        return cls(
            type=type,
            level=EventLevel.parse(level),
            timestamp=timestamp,
            message=message,
            metadata=MappingProxyType(freeze_metadata(metadata)),
            tags=MappingProxyType(merged_tags),
            exception=exception,
            environment=environment,
            release=release,
            fingerprint=fingerprint,
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (EventBody); None fields are omitted."""
        body: dict[str, Any] = {
            "type": self.type,
            "level": self.level.value,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
            "tags": dict(self.tags),
        }
        optional = {
            "message": self.message,
            "exception": self.exception.to_dict() if self.exception else None,
            "environment": self.environment,
            "release": self.release,
            "fingerprint": self.fingerprint,
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return body


def merge_fields(event: Mapping[str, Any] | None, fields: Mapping[str, Any]) -> dict[str, Any]:
    """Combine a mapping-style description with keyword fields (keywords win)."""
    merged = dict(event or {})
    merged.update({k: v for k, v in fields.items() if v is not None})
    return merged
