"""Webhook delivery for fired alert rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from ..events.types import StoredEvent
from .rules import AlertRule


logger = logging.getLogger(__name__)


def build_webhook_payload(rule: AlertRule, event: StoredEvent) -> dict[str, Any]:
    """JSON body POSTed to a rule's webhook."""
    return {
        "alert": {
            "id": rule.id,
            "name": rule.name,
            "rule_type": rule.condition_type.value,
            "triggered_at": datetime.now(timezone.utc).isoformat(),
        },
        "project": {
            "id": event.project_id,
        },
        "event": {
            "id": event.id,
            "type": event.type,
            "level": event.level.value,
            "message": event.message,
            "timestamp": event.timestamp.isoformat(),
        },
        "context": {
            "environment": event.environment,
            "release": event.release,
        },
    }


@dataclass
class WebhookNotifier:
    """POSTs alert payloads with a shared httpx.AsyncClient."""
    timeout: float = 10.0
    client: httpx.AsyncClient | None = None

    _owns_client: bool = field(default=False, init=False)

    def __post_init__(self):
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": "PulseKit/1.0"},
            )
            self._owns_client = True

    async def notify(self, rule: AlertRule, event: StoredEvent) -> None:
        """
        Send the webhook.

        Raises:
            httpx.HTTPError: on network failure or non-2xx response
        """
        response = await self.client.post(rule.webhook_url, json=build_webhook_payload(rule, event))
        response.raise_for_status()
        logger.debug(f"Webhook for rule {rule.id} delivered ({response.status_code})")

    async def close(self) -> None:
        if self._owns_client and self.client is not None:
            await self.client.aclose()
