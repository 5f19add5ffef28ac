"""FastAPI routes for event ingestion."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.api_keys import Project, require_project
from .models import (
    BatchCreatedResponse,
    EventAck,
    EventCreatedResponse,
    RejectedEventModel,
)
from .service import IngestionService, MalformedRequestError

logger = logging.getLogger(__name__)

BATCH_ID_HEADER = "X-PulseKit-Batch-Id"

# Create router
router = APIRouter(prefix="/api/v1", tags=["Events"])

def _get_service(request: Request) -> IngestionService:
    """Get the service of the app serving this request."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ingestion service not initialized")
    return service


async def _read_json(request: Request) -> Any:
    body = await request.body()
    try:
        return json.loads(body) if body else {}
    except ValueError as e:
        raise MalformedRequestError("Request body must be valid JSON") from e


@router.post("/events", status_code=201, response_model=EventCreatedResponse)
async def create_event(
    request: Request,
    project: Project = Depends(require_project),
):
    """Ingest a single event."""
    service = _get_service(request)
    body = await _read_json(request)

    event = await service.create_event(project.id, body)

    return EventCreatedResponse(
        event=EventAck(
            id=event.id,
            type=event.type,
            level=event.level.value,
            timestamp=event.timestamp.isoformat(),
        ),
    )


@router.post("/events/batch", status_code=201, response_model=BatchCreatedResponse)
async def create_events(
    request: Request,
    project: Project = Depends(require_project),
):
    """
    Ingest a batch: {"events": [EventBody, ...]}.

    Valid events are stored even if others in the batch are invalid;
    the invalid ones are listed in "rejected" by index.
    """
    service = _get_service(request)
    body = await _read_json(request)
    events = body.get("events") if isinstance(body, dict) else None

    result = await service.create_events(
        project.id,
        events,
        batch_id=request.headers.get(BATCH_ID_HEADER),
    )

    return BatchCreatedResponse(
        count=result.count,
        rejected=[
            RejectedEventModel(index=item.index, errors=item.errors)
            for item in result.rejected
        ],
    )
