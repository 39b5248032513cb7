"""
Configuration loading.

Provider credentials come from the environment or a .env file:

    SERPAPI_KEY, BRAVE_API_KEY, BING_API_KEY

Keys are never hard-coded; a missing key surfaces as SourceUnavailable for
that provider only. Component configs given as plain dicts are validated
with build_config.
"""

from functools import lru_cache
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from cognitive_loop.errors import ConfigurationError

M = TypeVar("M", bound=BaseModel)


class ProviderSettings(BaseSettings):
    """Per-provider API credentials."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    serpapi_key: Optional[str] = None
    brave_api_key: Optional[str] = None
    bing_api_key: Optional[str] = None


@lru_cache()
def get_provider_settings() -> ProviderSettings:
    """Cached settings instance."""
    return ProviderSettings()


def build_config(model: Type[M], values: Optional[Dict[str, Any]] = None) -> M:
    """Construct a component config, reporting invalid values as ConfigurationError."""
    try:
        return model(**(values or {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {model.__name__}: {e}") from e
