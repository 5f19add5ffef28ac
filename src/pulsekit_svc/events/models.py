"""Pydantic models for the event ingestion API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .types import EventLevel


# =============================================================================
# Request Body Models
# =============================================================================

class StackFrameBody(BaseModel):
    """One stack frame."""
    model_config = ConfigDict(extra="ignore")

    file: str | None = None
    line: int | None = None
    column: int | None = None
    function: str | None = None
    context: str | None = None


class ExceptionBody(BaseModel):
    """Exception details attached to an event."""
    model_config = ConfigDict(extra="ignore")

    message: str | None = None
    exception_type: str | None = None
    stack: list[StackFrameBody] = Field(default_factory=list)


class EventBody(BaseModel):
    """
    Wire shape of a single event.

    timestamp is kept loose here; unparseable values fall back to the
    ingestion time rather than failing the event.
    """
    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1)
    level: EventLevel = EventLevel.INFO
    message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)
    exception: ExceptionBody | None = None
    environment: str | None = None
    release: str | None = None
    fingerprint: str | None = None
    timestamp: datetime | str | None = None


# =============================================================================
# Response Models
# =============================================================================

class EventAck(BaseModel):
    """Acknowledgment of one persisted event."""
    id: str
    type: str
    level: str
    timestamp: str


class EventCreatedResponse(BaseModel):
    success: bool = True
    event: EventAck


class RejectedEventModel(BaseModel):
    """An item of a batch that failed validation."""
    index: int
    errors: dict[str, list[str]]


class BatchCreatedResponse(BaseModel):
    success: bool = True
    count: int
    rejected: list[RejectedEventModel] = Field(default_factory=list)


class ValidationErrorResponse(BaseModel):
    success: bool = False
    errors: dict[str, list[str]]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: str
    alerts: dict[str, Any] = Field(default_factory=dict)
