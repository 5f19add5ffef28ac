"""HTTP transport for delivering batches to the ingestion service."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import ClientConfig, PulseKitError
from .events import Event


logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-PulseKit-Key"
BATCH_ID_HEADER = "X-PulseKit-Batch-Id"


class DeliveryError(PulseKitError):
    """Base exception for batch delivery failures."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransportError(DeliveryError):
    """Network failure or server-side error (5xx, 429). Worth retrying."""

    retryable = True


class BatchRejectedError(DeliveryError):
    """Server refused the batch (4xx). Retrying would fail the same way."""
    pass


@dataclass
class Batch:
    """An ordered group of events sent together."""
    events: list[Event]
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_payload(self) -> dict[str, Any]:
        return {"events": [event.to_dict() for event in self.events]}

    def __len__(self) -> int:
        return len(self.events)


@dataclass
class HttpTransport:
    """
    Sends batches to POST {endpoint}/api/v1/events/batch.

    The same batch id is sent on every attempt so the service can
    recognise a replay after a lost response.
    """
    config: ClientConfig
    client: httpx.Client | None = None

    _owns_client: bool = field(default=False, init=False)

    def __post_init__(self):
        if self.client is None:
            self.client = httpx.Client(timeout=self.config.timeout)
            self._owns_client = True

    def _get_headers(self, batch: Batch) -> dict[str, str]:
        return {
            API_KEY_HEADER: self.config.api_key,
            BATCH_ID_HEADER: batch.batch_id,
            "User-Agent": "pulsekit-python/0.1.0",
        }

    def send(self, batch: Batch) -> dict[str, Any]:
        """
        Send one batch.

        Returns the decoded acknowledgment.

        Raises:
            TransportError: network failure, 5xx or 429
            BatchRejectedError: any other non-2xx status
        """
        try:
            response = self.client.post(
                self.config.batch_url,
                json=batch.to_payload(),
                headers=self._get_headers(batch),
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to reach {self.config.batch_url}: {e}") from e

        status = response.status_code
        if status >= 500 or status == 429:
            raise TransportError(f"HTTP {status}: {response.text[:200]}", status_code=status)
        if status >= 400:
            raise BatchRejectedError(f"HTTP {status}: {response.text[:200]}", status_code=status)

        try:
            return response.json()
        except ValueError:
            return {}

    def close(self) -> None:
        if self._owns_client and self.client is not None:
            self.client.close()
