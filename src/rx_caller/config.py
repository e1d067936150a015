"""Application configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///data/rx_caller.db"
    echo: bool = False


class VoiceProviderSettings(BaseModel):
    """Outbound voice provider configuration."""

    # "vapi" for the real HTTP API, "mock" for development
    provider: str = "mock"
    api_key: str = ""
    assistant_id: str = ""
    webhook_url: str = ""

    # Endpoint is configurable to adapt to provider API differences
    base_url: str = "https://api.vapi.ai"
    calls_path: str = "/v1/call"

    # Upper bound for a single dispatch request; a timeout fails the call
    timeout_seconds: float = 15.0

    # Mock provider only: post simulated call events to our own webhook
    # this many seconds after each dispatch (unset disables)
    mock_simulate_seconds: float | None = None


class WebhookSettings(BaseModel):
    """Provider webhook security configuration."""

    secret: str = ""
    signature_headers: list[str] = [
        "X-Vapi-Signature",
        "X-Vapi-Signature-V1",
        "Vapi-Signature",
        "X-Signature",
    ]
    # Development-only escape hatch: accept requests with a bad signature
    allow_unverified: bool = False


class SchedulerSettings(BaseModel):
    """Campaign scheduler configuration."""

    enabled: bool = True
    tick_interval_seconds: float = 30.0
    batch_size: int = 10
    # Zone used to evaluate patient allowed-contact hours
    timezone: str = "UTC"


class Settings(BaseSettings):
    """Application settings.

    Loaded from:
    1. Environment variables (RXC_*)
    2. configs/{environment}.yaml
    3. configs/default.yaml
    """

    model_config = SettingsConfigDict(
        env_prefix="RXC_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 3001

    # Subsystems
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    voice: VoiceProviderSettings = Field(default_factory=VoiceProviderSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # RXC_* variables override values loaded from the YAML files
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @property
    def is_production(self) -> bool:
        """Whether strict production rules apply."""
        return self.environment in ("production", "prod")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings object loaded from config files and environment.
    """
    import os
    from dynaconf import Dynaconf

    config_dir = Path("configs")
    env = os.getenv("RXC_ENV", "development")

    settings_files = []
    if (config_dir / "default.yaml").exists():
        settings_files.append(str(config_dir / "default.yaml"))
    if (config_dir / f"{env}.yaml").exists():
        settings_files.append(str(config_dir / f"{env}.yaml"))

    dynaconf = Dynaconf(
        envvar_prefix="RXC",
        settings_files=settings_files,
        environments=False,
        load_dotenv=True,
    )

    config_dict: dict[str, Any] = {}
    for key in dynaconf.keys():
        if not key.startswith("_"):
            config_dict[key.lower()] = dynaconf[key]

    config_dict["environment"] = env

    return Settings(**config_dict)


def validate_production_settings(settings: Settings) -> list[str]:
    """Validate settings for production readiness.

    Args:
        settings: Application settings to validate.

    Returns:
        List of validation error messages (empty if all valid).
    """
    errors: list[str] = []

    if not settings.is_production:
        return errors

    if not settings.webhooks.secret:
        errors.append("RXC_WEBHOOKS__SECRET must be set in production")

    if settings.webhooks.allow_unverified:
        errors.append("RXC_WEBHOOKS__ALLOW_UNVERIFIED must not be enabled in production")

    if settings.voice.provider == "vapi" and not settings.voice.api_key:
        errors.append("RXC_VOICE__API_KEY must be set when the vapi provider is enabled")

    if settings.voice.provider == "mock":
        errors.append("RXC_VOICE__PROVIDER must not be 'mock' in production")

    return errors


def require_valid_settings() -> Settings:
    """Get settings and raise if production validation fails.

    Raises:
        ConfigurationError: If production settings are invalid.

    Returns:
        Validated settings.
    """
    from rx_caller.core.exceptions import ConfigurationError

    settings = get_settings()
    errors = validate_production_settings(settings)

    if errors:
        error_list = "\n  - ".join(errors)
        raise ConfigurationError(
            f"Production configuration errors:\n  - {error_list}",
            details={"errors": errors},
        )

    return settings
