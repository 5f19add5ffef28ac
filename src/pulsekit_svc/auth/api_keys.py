"""API key to project resolution."""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from fastapi import Request

from .config import AuthConfig


logger = logging.getLogger(__name__)

DEFAULT_HEADER = "X-PulseKit-Key"


class AuthenticationError(Exception):
    """Request did not carry a usable API key."""

    def __init__(self, error: str, message: str):
        super().__init__(message)
        self.error = error
        self.message = message


@dataclass(frozen=True, slots=True)
class Project:
    """A project scopes every ingested event."""
    id: str
    name: str | None = None


@dataclass
class ApiKeyRecord:
    """Stored form of an API key (the raw key is never kept)."""
    key_hash: str
    key_prefix: str
    project: Project
    permissions: str = "write"
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    last_used_at: str | None = None


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    """New random key in the pk_... format."""
    return "pk_" + secrets.token_urlsafe(24)


class ApiKeyRegistry:
    """
    Thread-safe in-memory registry of API keys.

    Keys are stored as SHA-256 hashes; lookups hash the presented key.
    """

    def __init__(self) -> None:
        self._records: dict[str, ApiKeyRecord] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: AuthConfig) -> ApiKeyRegistry:
        registry = cls()
        for entry in config.api_keys:
            registry.register(
                entry.key,
                Project(id=entry.project_id, name=entry.project_name),
                permissions=entry.permissions,
            )
        logger.info(f"Loaded {len(config.api_keys)} API key(s)")
        return registry

    def register(self, raw_key: str, project: Project, permissions: str = "write") -> ApiKeyRecord:
        """Register a key for a project."""
        record = ApiKeyRecord(
            key_hash=hash_key(raw_key),
            key_prefix=raw_key[:8],
            project=project,
            permissions=permissions,
        )
        with self._lock:
            self._records[record.key_hash] = record
        return record

    def revoke(self, raw_key: str) -> bool:
        with self._lock:
            return self._records.pop(hash_key(raw_key), None) is not None

    def authenticate(self, raw_key: str) -> Project | None:
        """Resolve a raw key to its project, or None if unknown."""
        with self._lock:
            record = self._records.get(hash_key(raw_key))
            if record is None:
                return None
            record.last_used_at = datetime.now(timezone.utc).isoformat()
            return record.project

    def __len__(self) -> int:
        return len(self._records)


async def require_project(request: Request) -> Project:
    """FastAPI dependency: resolve the request's API key to a Project."""
    state = request.app.state
    header = getattr(state, "api_key_header", DEFAULT_HEADER)
    raw_key = request.headers.get(header)
    if not raw_key:
        raise AuthenticationError(
            "Missing API key",
            f"Please provide an API key via the {header} header",
        )

    registry: ApiKeyRegistry | None = getattr(state, "api_key_registry", None)
    project = registry.authenticate(raw_key) if registry is not None else None
    if project is None:
        logger.debug(f"Rejected API key {raw_key[:8]}...")
        raise AuthenticationError(
            "Invalid API key",
            "The provided API key is invalid or has been revoked",
        )
    return project
