"""Authentication configuration."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ApiKeyConfig:
    """One API key and the project it grants access to."""
    key: str
    project_id: str
    project_name: str | None = None
    permissions: str = "write"  # read | write | admin


@dataclass
class AuthConfig:
    """API key authentication settings."""
    header: str = "X-PulseKit-Key"
    api_keys: list[ApiKeyConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> AuthConfig:
        return cls(
            header=data.get("header", "X-PulseKit-Key"),
            api_keys=[ApiKeyConfig(**entry) for entry in data.get("api_keys", [])],
        )
