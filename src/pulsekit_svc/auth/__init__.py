"""API key authentication."""

from .api_keys import (
    ApiKeyRegistry,
    AuthenticationError,
    Project,
    generate_api_key,
    require_project,
)
from .config import ApiKeyConfig, AuthConfig

__all__ = [
    "ApiKeyConfig",
    "ApiKeyRegistry",
    "AuthConfig",
    "AuthenticationError",
    "Project",
    "generate_api_key",
    "require_project",
]
