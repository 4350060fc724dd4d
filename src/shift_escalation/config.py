"""Application configuration."""

from __future__ import annotations

import os
import socket
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shift_escalation.core.exceptions import ConfigurationError


class EscalationSettings(BaseModel):
    """Escalation defaults.

    Provider policies stored with the shift records override these
    per provider; anything a provider leaves unset falls back to here.
    """

    # Fixed minutes between SMS waves. None derives the interval from
    # how soon the shift starts (5-30 minutes).
    wave_interval_minutes: int | None = None

    # Wait between wave 3 and the first outbound call
    wait_minutes_after_waves: int = 15

    # Outbound round-robin
    outbound_enabled: bool = True
    max_rounds: int = 3
    inter_call_delay_seconds: float = 5.0
    inter_round_delay_seconds: float = 60.0

    # Transport retries (per send / per dial)
    sms_max_attempts: int = 3
    sms_backoff_seconds: float = 5.0
    call_max_attempts: int = 2
    call_backoff_seconds: float = 3.0

    # Use the privacy call template (no patient details read out)
    privacy_mode: bool = False

    # Link included in wave SMS
    accept_url_template: str = "https://shifts.example.com/accept/{shift_id}"

    # Provider wall-clock zone; naive shift start times are read in it
    timezone: str = "Australia/Sydney"


class QueueSettings(BaseModel):
    """Work queue configuration."""

    workers: int = 4
    poll_interval_seconds: float = 0.5

    # Re-delivery of a step whose handler raised unexpectedly
    max_delivery_attempts: int = 3
    redelivery_backoff_seconds: float = 5.0

    # SQL queue: a running row whose worker has not finished within the
    # lease is handed to another worker
    lease_seconds: float = 300.0


class StoreSettings(BaseModel):
    """Shift record store configuration."""

    backend: str = "sql"  # sql, memory


class DatabaseSettings(BaseModel):
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///data/shift_escalation.db"
    echo: bool = False


class TwilioSettings(BaseModel):
    """Twilio integration configuration."""

    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""
    # Public base URL Twilio uses to reach our webhooks
    webhook_url: str = ""
    messaging_service_sid: str = ""


class WebhookSettings(BaseModel):
    """Inbound webhook checks."""

    validate_signatures: bool = True
    # Empty list disables the source address check
    allowed_sources: list[str] = Field(default_factory=list)
    trusted_proxies: list[str] = Field(default_factory=list)


class TelephonySettings(BaseModel):
    """Telephony provider configuration."""

    twilio: TwilioSettings = Field(default_factory=TwilioSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)


class SMSSettings(BaseModel):
    """SMS gateway configuration."""

    provider: str = "mock"  # twilio, mock


class VoiceSettings(BaseModel):
    """Voice gateway configuration."""

    provider: str = "mock"  # twilio, mock
    ring_timeout_seconds: int = 25
    # Upper bound on waiting for the keypress/status callback of one call
    answer_timeout_seconds: float = 120.0
    gather_timeout_seconds: int = 10


class IntegrationsSettings(BaseModel):
    """External integrations configuration."""

    sms: SMSSettings = Field(default_factory=SMSSettings)
    voice: VoiceSettings = Field(default_factory=VoiceSettings)


class Settings(BaseSettings):
    """Application settings.

    Loaded from:
    1. Environment variables (SHIFT_*)
    2. configs/{environment}.yaml
    3. configs/default.yaml
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIFT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = ""

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Subsystems
    escalation: EscalationSettings = Field(default_factory=EscalationSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    telephony: TelephonySettings = Field(default_factory=TelephonySettings)
    integrations: IntegrationsSettings = Field(default_factory=IntegrationsSettings)


def _lower_keys(value: Any) -> Any:
    """Nested env overrides (SHIFT_STORE__BACKEND) keep their upper-case keys."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings object loaded from config files and environment.
    """
    from dynaconf import Dynaconf

    config_dir = Path(os.getenv("SHIFT_CONFIG_DIR", "configs"))
    env = os.getenv("SHIFT_ENV", "development")

    settings_files = []
    if (config_dir / "default.yaml").exists():
        settings_files.append(str(config_dir / "default.yaml"))
    if (config_dir / f"{env}.yaml").exists():
        settings_files.append(str(config_dir / f"{env}.yaml"))

    dynaconf = Dynaconf(
        envvar_prefix="SHIFT",
        settings_files=settings_files,
        load_dotenv=True,
    )

    config_dict: dict[str, Any] = {}
    for key in dynaconf.keys():
        if not key.startswith("_"):
            config_dict[key.lower()] = _lower_keys(dynaconf[key])

    config_dict["environment"] = env

    if not config_dict.get("instance_id"):
        config_dict["instance_id"] = f"worker-{socket.gethostname()}"

    return Settings(**config_dict)


def validate_production_settings(settings: Settings) -> list[str]:
    """Validate settings for production readiness.

    Args:
        settings: Application settings to validate.

    Returns:
        List of validation error messages (empty if all valid).
    """
    errors: list[str] = []

    if settings.environment not in ("production", "staging", "prod"):
        return errors

    twilio = settings.telephony.twilio
    uses_twilio = "twilio" in (
        settings.integrations.sms.provider.lower(),
        settings.integrations.voice.provider.lower(),
    )

    if uses_twilio:
        if not twilio.auth_token:
            errors.append(
                "SHIFT_TELEPHONY__TWILIO__AUTH_TOKEN must be set when Twilio is used"
            )
        if not twilio.account_sid:
            errors.append(
                "SHIFT_TELEPHONY__TWILIO__ACCOUNT_SID must be set when Twilio is used"
            )

    if settings.integrations.voice.provider.lower() == "twilio" and not twilio.webhook_url:
        errors.append(
            "SHIFT_TELEPHONY__TWILIO__WEBHOOK_URL must be set for Twilio voice callbacks"
        )

    if not settings.telephony.webhooks.validate_signatures:
        errors.append("Webhook signature validation cannot be disabled in production")

    if settings.store.backend == "memory":
        errors.append("SHIFT_STORE__BACKEND=memory is not durable and not allowed in production")

    return errors


def require_valid_settings() -> Settings:
    """Get settings and raise if production validation fails.

    Raises:
        ConfigurationError: If production settings are invalid.
    """
    settings = get_settings()
    errors = validate_production_settings(settings)

    if errors:
        raise ConfigurationError(
            "Production configuration is incomplete",
            details={"errors": errors},
        )

    return settings
