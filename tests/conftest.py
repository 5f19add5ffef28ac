"""Shared test fixtures for the PulseKit SDK and ingestion service."""

from __future__ import annotations

import json
import threading
import time

import httpx
import pytest

from pulsekit_client import ClientConfig, PulseKit
from pulsekit_svc.auth.config import ApiKeyConfig, AuthConfig
from pulsekit_svc.config import Config
from pulsekit_svc.events.store import InMemoryEventStore


API_KEY = "pk_test_0123456789"
PROJECT_ID = "proj-1"


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


# =============================================================================
# Client Fixtures
# =============================================================================

class FakeIngestion:
    """
    Stand-in for the batch route, driven through httpx.MockTransport.

    outcomes is consumed one per request: an int status code or an
    exception to raise. Once exhausted every request gets 201.
    """

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.requests: list[httpx.Request] = []
        self.accepted: list[list[dict]] = []
        self._lock = threading.Lock()

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        with self._lock:
            self.requests.append(request)
            outcome = self.outcomes.pop(0) if self.outcomes else 201
            if isinstance(outcome, int) and outcome < 400:
                self.accepted.append(payload["events"])

        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(
            outcome,
            json={"success": outcome < 400, "count": len(payload["events"])},
        )

    @property
    def delivered_events(self) -> list[dict]:
        with self._lock:
            return [event for batch in self.accepted for event in batch]

    @property
    def batch_ids(self) -> list[str]:
        with self._lock:
            return [r.headers["X-PulseKit-Batch-Id"] for r in self.requests]


@pytest.fixture
def fake_server() -> FakeIngestion:
    return FakeIngestion()


@pytest.fixture
def client_config() -> ClientConfig:
    """Config that only flushes on threshold or explicit flush()."""
    return ClientConfig(
        endpoint="http://pulse.test",
        api_key=API_KEY,
        environment="test",
        release="1.2.3",
        batch_size=10,
        flush_interval_seconds=60.0,
        retry_backoff_seconds=0.01,
        max_backoff_seconds=0.05,
        flush_timeout_seconds=5.0,
        flush_on_exit=False,
    )


@pytest.fixture
def make_client(client_config):
    """Factory for clients wired to a FakeIngestion server."""
    clients = []

    def factory(server: FakeIngestion, **overrides) -> PulseKit:
        http_client = httpx.Client(transport=httpx.MockTransport(server.handler))
        client = PulseKit(client_config, http_client=http_client, **overrides)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close(timeout=1.0)


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def config() -> Config:
    """Service config with one API key for PROJECT_ID."""
    return Config(
        auth=AuthConfig(api_keys=[
            ApiKeyConfig(key=API_KEY, project_id=PROJECT_ID, project_name="Test Project"),
        ]),
    )


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-PulseKit-Key": API_KEY}
