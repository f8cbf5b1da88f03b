# src/otelferry/core/config.py
"""
Configuration schema and loading for otelferry.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# Standard OpenTelemetry environment variables honoured when the settings
# file and OTELFERRY_* variables leave the field unset.
_OTEL_ENV_FALLBACKS: dict[str, str] = {
    "endpoint": "OTEL_EXPORTER_OTLP_ENDPOINT",
    "service_name": "OTEL_SERVICE_NAME",
}


class SignalSettings(BaseModel):
    """Per-signal enable switches."""

    model_config = {"frozen": True}

    traces: bool = True
    metrics: bool = True
    logs: bool = True


class ExportSettings(BaseModel):
    """Exporter configuration.

    Durations are in milliseconds, matching the OTEL_* environment variable
    conventions. RuntimeExportConfig converts them to seconds.
    """

    model_config = {"frozen": True}

    # Destination
    exporter: str = Field(default="otlp_http", description="Registered exporter name")
    endpoint: str = Field(default="http://localhost:4318", description="Collector base URL; /v1/<signal> is appended")
    protocol: Literal["protobuf", "json"] = "protobuf"
    compression: Literal["none", "gzip"] = "none"
    headers: dict[str, str] = Field(default_factory=dict)
    request_timeout_ms: int = Field(default=10_000, gt=0)

    # Buffering
    export_interval_ms: int = Field(default=5_000, gt=0)
    max_queue_size: int = Field(default=2_048, gt=0)
    max_batch_size: int = Field(default=512, gt=0)
    overflow_policy: Literal["drop-newest", "drop-oldest", "block-with-timeout"] = "drop-oldest"
    block_timeout_ms: int = Field(default=100, ge=0, description="Producer wait under block-with-timeout")

    # Retry
    retry_policy: Literal["requeue", "drop"] = "drop"
    max_retries: int = Field(default=5, ge=0)
    base_backoff_ms: int = Field(default=500, gt=0)
    max_backoff_ms: int = Field(default=30_000, gt=0)

    # Shutdown
    flush_timeout_on_shutdown_ms: int = Field(default=5_000, ge=0)

    # What gets exported
    service_name: str = "unknown_service"
    resource_attributes: dict[str, str | int | float | bool] = Field(default_factory=dict)
    signals: SignalSettings = Field(default_factory=SignalSettings)
    min_log_severity: Literal["trace", "debug", "info", "warn", "error", "fatal"] = "info"

    # Diagnostics of the client itself (structlog), not exported records
    log_level: Literal["debug", "info", "warning", "error"] = "info"

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"endpoint must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @field_validator("overflow_policy", "retry_policy", "protocol", "compression", "min_log_severity", "log_level", mode="before")
    @classmethod
    def normalize_choice(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower().replace("_", "-")
        return v

    @model_validator(mode="after")
    def validate_batch_fits_queue(self) -> "ExportSettings":
        if self.max_batch_size > self.max_queue_size:
            raise ValueError(f"max_batch_size ({self.max_batch_size}) cannot exceed max_queue_size ({self.max_queue_size})")
        return self

    @model_validator(mode="after")
    def validate_backoff_range(self) -> "ExportSettings":
        if self.base_backoff_ms > self.max_backoff_ms:
            raise ValueError(f"base_backoff_ms ({self.base_backoff_ms}) cannot exceed max_backoff_ms ({self.max_backoff_ms})")
        return self


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """

    def _expand_string(value: str) -> str:
        """Expand ${VAR} patterns in a string."""

        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default = match.group(2)  # None if no default specified
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            # No env var and no default - keep original (will likely cause error)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        """Expand env vars in a single value."""
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _apply_otel_env_fallbacks(config: dict[str, Any]) -> dict[str, Any]:
    """Fill unset fields from the standard OTEL_* environment variables."""
    result = dict(config)
    for field_name, env_name in _OTEL_ENV_FALLBACKS.items():
        if field_name not in result and env_name in os.environ:
            result[field_name] = os.environ[env_name]
    return result


def load_settings(config_path: Path | None = None) -> ExportSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (OTELFERRY_*) - highest priority
    2. Config file (settings.yaml), when given
    3. Standard OTEL_EXPORTER_OTLP_ENDPOINT / OTEL_SERVICE_NAME
    4. Defaults from Pydantic schema - lowest priority

    Environment variable format: OTELFERRY_SIGNALS__LOGS for nested keys.

    Args:
        config_path: Path to YAML configuration file, or None to read only
            the environment

    Returns:
        Validated ExportSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="OTELFERRY",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,  # No [default]/[production] sections
        load_dotenv=False,  # The CLI loads .env itself
        merge_enabled=True,  # Deep merge nested dicts
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    # Also filter out internal Dynaconf settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    raw_config = _apply_otel_env_fallbacks(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return ExportSettings(**raw_config)


# Header names whose values must not appear in printed configuration
_SECRET_HEADER_WORDS = frozenset({"authorization", "api-key", "x-api-key", "token", "secret"})


def resolve_config(settings: ExportSettings) -> dict[str, Any]:
    """Convert validated settings to a printable dict with header secrets masked.

    Args:
        settings: Validated ExportSettings instance

    Returns:
        Dict representation suitable for JSON/YAML output
    """
    config_dict = settings.model_dump(mode="json")
    config_dict["headers"] = {
        name: ("***" if any(word in name.lower() for word in _SECRET_HEADER_WORDS) else value)
        for name, value in config_dict["headers"].items()
    }
    return config_dict
