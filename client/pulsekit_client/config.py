"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


class PulseKitError(Exception):
    """Base exception for PulseKit client errors."""
    pass


class ConfigError(PulseKitError, ValueError):
    """Client configuration is missing or invalid."""
    pass


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class ClientConfig:
    """
    Configuration for a PulseKit client.

    Can be set via:
    - Constructor arguments
    - Environment variables (PULSEKIT_*)

    Each client owns its own config, so several independently
    configured clients can live in one process.
    """
    # Ingestion service base URL, e.g. "https://pulse.example.com"
    endpoint: str | None = field(
        default_factory=lambda: os.environ.get("PULSEKIT_ENDPOINT")
    )

    # Project API key (sent as X-PulseKit-Key)
    api_key: str | None = field(
        default_factory=lambda: os.environ.get("PULSEKIT_API_KEY")
    )

    # Default tags applied to every event
    environment: str = field(
        default_factory=lambda: os.environ.get("PULSEKIT_ENVIRONMENT", "production")
    )
    release: str | None = field(
        default_factory=lambda: os.environ.get("PULSEKIT_RELEASE")
    )

    # Batching
    batch_size: int = 10
    flush_interval_seconds: float = 5.0

    # Buffer capacity (drop-oldest beyond this)
    max_buffer_size: int = 1000

    # HTTP request timeout (seconds)
    timeout: float = 10.0

    # Retry policy for transient delivery failures
    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    max_backoff_seconds: float = 8.0

    # Upper bound on how long flush() waits by default
    flush_timeout_seconds: float = 30.0

    # Diagnostic logging to stderr
    debug: bool = field(
        default_factory=lambda: _env_bool("PULSEKIT_DEBUG", "false")
    )

    # Capture uncaught exceptions via sys.excepthook
    auto_capture: bool = False

    # Flush and close on interpreter exit
    flush_on_exit: bool = True

    def validate(self) -> None:
        """Raise ConfigError if the config cannot be used."""
        if not self.endpoint:
            raise ConfigError("endpoint is required (or set PULSEKIT_ENDPOINT)")
        if not self.api_key:
            raise ConfigError("api_key is required (or set PULSEKIT_API_KEY)")
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_buffer_size < 1:
            raise ConfigError(f"max_buffer_size must be >= 1, got {self.max_buffer_size}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")

    @property
    def batch_url(self) -> str:
        """Batch ingestion route."""
        return f"{self.endpoint.rstrip('/')}/api/v1/events/batch"
