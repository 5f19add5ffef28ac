"""Configuration for the PulseKit ingestion service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from .auth.config import AuthConfig


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 4000
    reload: bool = False


@dataclass
class IngestionConfig:
    """Event ingestion configuration."""
    # Largest accepted batch (larger ones are rejected with 413)
    max_batch_size: int = 1000

    # Replayed batches (same X-PulseKit-Batch-Id) are answered from here
    dedup_ttl_seconds: float = 600.0
    dedup_max_entries: int = 10000


@dataclass
class AlertConfig:
    """Alert dispatch configuration."""
    enabled: bool = True

    # Independent evaluation workers
    workers: int = 4

    # Pending evaluations beyond this are dropped
    max_queue_size: int = 10000

    # Per-event evaluation limit (0 = unlimited)
    evaluation_timeout_seconds: float = 30.0

    webhook_timeout_seconds: float = 10.0

    # Static rule definitions (see alerts.rules.AlertRule.from_dict)
    rules: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Config:
    """Main configuration container."""
    server: ServerConfig = field(default_factory=ServerConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    @classmethod
    def from_dict(cls, data: dict) -> Config:
        """Create config from dictionary."""
        auth_data = data.get("auth", {})
        return cls(
            server=ServerConfig(**data.get("server", {})),
            ingestion=IngestionConfig(**data.get("ingestion", {})),
            alerts=AlertConfig(**data.get("alerts", {})),
            auth=AuthConfig.from_dict(auth_data) if auth_data else AuthConfig(),
        )

    @classmethod
    def from_yaml(cls, path: str) -> Config:
        """Load config from YAML file."""
        import yaml
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_json(cls, path: str) -> Config:
        """Load config from JSON file."""
        import json
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: str | None = None) -> Config:
        """Load from path, PULSEKIT_CONFIG, or defaults."""
        path = path or os.environ.get("PULSEKIT_CONFIG")
        if not path:
            return cls()
        if path.endswith(".json"):
            return cls.from_json(path)
        return cls.from_yaml(path)
