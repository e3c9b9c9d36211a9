"""
Settings for Polyphony.

Each group reads its own environment prefix and `.env`; `Settings.from_yaml`
overlays a YAML file for CLI runs.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from polyphony.core.models import DEFAULT_MODELS, ModelIdentifier, ModelProvider


class ProviderSettings(BaseSettings):
    """Provider credentials, read from the conventional `*_API_KEY` variables."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # OpenAI Configuration
    openai_api_key: SecretStr | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(default=None, alias="OPENAI_BASE_URL")

    # Anthropic Configuration
    anthropic_api_key: SecretStr | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_base_url: str | None = Field(default=None, alias="ANTHROPIC_BASE_URL")

    # xAI Configuration (OpenAI-compatible endpoint)
    xai_api_key: SecretStr | None = Field(default=None, alias="XAI_API_KEY")
    xai_base_url: str = Field(default="https://api.x.ai/v1", alias="XAI_BASE_URL")

    # Google Configuration
    google_api_key: SecretStr | None = Field(default=None, alias="GOOGLE_API_KEY")

    def api_key_for(self, provider: ModelProvider) -> str | None:
        """Plain-text API key for a provider, or None if not configured."""
        secret = {
            ModelProvider.OPENAI: self.openai_api_key,
            ModelProvider.ANTHROPIC: self.anthropic_api_key,
            ModelProvider.XAI: self.xai_api_key,
            ModelProvider.GOOGLE: self.google_api_key,
        }[provider]
        if secret is None:
            return None
        value = secret.get_secret_value()
        return value or None

    @property
    def available_providers(self) -> list[ModelProvider]:
        """Providers with a non-empty API key."""
        return [p for p in ModelProvider if self.api_key_for(p)]


class PlaygroundSettings(BaseSettings):
    """Comparison orchestration settings."""

    model_config = SettingsConfigDict(
        env_prefix="POLYPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Baseline model set used when a submission names none
    default_models: list[ModelIdentifier] = Field(
        default_factory=lambda: list(DEFAULT_MODELS)
    )

    # Adapter behaviour
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    synthetic_on_auth_failure: list[ModelProvider] = Field(default_factory=list)
    synthetic_chunk_delay_seconds: float = Field(default=0.01, ge=0)

    # Event channel
    progress_total_estimate: int = Field(default=1000, gt=0)
    event_queue_size: int = Field(default=1000, gt=0)

    # History listings
    history_limit: int = Field(default=50, gt=0)
    all_history_limit: int = Field(default=100, gt=0)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v


class StorageSettings(BaseSettings):
    """Comparison and session persistence settings."""

    model_config = SettingsConfigDict(
        env_prefix="POLYPHONY_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: str = "memory"
    json_path: Path = Path("polyphony_db.json")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in {"memory", "json"}:
            raise ValueError(f"Invalid storage backend: {v}. Must be 'memory' or 'json'")
        return v


class ServerSettings(BaseSettings):
    """API server settings."""

    model_config = SettingsConfigDict(
        env_prefix="POLYPHONY_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3001"])


class Settings(BaseSettings):
    """All setting groups."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    playground: PlaygroundSettings = Field(default_factory=PlaygroundSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """
        Settings from a YAML file whose top-level keys are the group names
        (`providers`, `playground`, `storage`, `server`).
        """
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, built once."""
    return Settings()


def reload_settings() -> Settings:
    """Drop the cached settings and read the environment again."""
    get_settings.cache_clear()
    return get_settings()
