# tests/unit/core/test_export_settings.py
"""Tests for ExportSettings validation, loading and RuntimeExportConfig mapping."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from otelferry.contracts import (
    Compression,
    OverflowPolicy,
    RetryExhaustedPolicy,
    RuntimeExportConfig,
    Severity,
    Signal,
    WireProtocol,
)
from otelferry.core.config import ExportSettings, SignalSettings, load_settings, resolve_config


@pytest.fixture(autouse=True)
def clean_otel_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_SERVICE_NAME", "OTELFERRY_ENDPOINT", "OTELFERRY_MAX_QUEUE_SIZE"):
        monkeypatch.delenv(name, raising=False)


def write_settings(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(content)
    return path


class TestExportSettingsDefaults:
    def test_defaults(self) -> None:
        settings = ExportSettings()
        assert settings.exporter == "otlp_http"
        assert settings.endpoint == "http://localhost:4318"
        assert settings.protocol == "protobuf"
        assert settings.max_queue_size == 2048
        assert settings.max_batch_size == 512
        assert settings.export_interval_ms == 5000
        assert settings.overflow_policy == "drop-oldest"
        assert settings.retry_policy == "drop"
        assert settings.max_retries == 5
        assert settings.flush_timeout_on_shutdown_ms == 5000
        assert settings.signals == SignalSettings()

    def test_frozen(self) -> None:
        settings = ExportSettings()
        with pytest.raises(ValidationError):
            settings.max_queue_size = 10  # type: ignore[misc]


class TestExportSettingsValidation:
    def test_endpoint_must_be_http(self) -> None:
        with pytest.raises(ValidationError, match="http\\(s\\) URL"):
            ExportSettings(endpoint="collector:4318")

    def test_endpoint_trailing_slash_stripped(self) -> None:
        assert ExportSettings(endpoint="https://collector:4318/").endpoint == "https://collector:4318"

    def test_batch_cannot_exceed_queue(self) -> None:
        with pytest.raises(ValidationError, match="cannot exceed max_queue_size"):
            ExportSettings(max_queue_size=10, max_batch_size=11)

    def test_backoff_range(self) -> None:
        with pytest.raises(ValidationError, match="cannot exceed max_backoff_ms"):
            ExportSettings(base_backoff_ms=5000, max_backoff_ms=100)

    @pytest.mark.parametrize("field", ["max_queue_size", "export_interval_ms", "request_timeout_ms"])
    def test_positive_fields(self, field: str) -> None:
        with pytest.raises(ValidationError):
            ExportSettings(**{field: 0})

    def test_unknown_overflow_policy(self) -> None:
        with pytest.raises(ValidationError):
            ExportSettings(overflow_policy="drop-random")

    @pytest.mark.parametrize(("raw", "expected"), [("DROP_NEWEST", "drop-newest"), (" Block-With-Timeout ", "block-with-timeout")])
    def test_choices_are_normalized(self, raw: str, expected: str) -> None:
        assert ExportSettings(overflow_policy=raw).overflow_policy == expected

    def test_zero_flush_timeout_allowed(self) -> None:
        assert ExportSettings(flush_timeout_on_shutdown_ms=0).flush_timeout_on_shutdown_ms == 0


class TestLoadSettings:
    def test_yaml_file(self, tmp_path: Path) -> None:
        path = write_settings(
            tmp_path,
            """
endpoint: https://collector.example.com:4318
protocol: json
compression: gzip
max_queue_size: 100
max_batch_size: 10
retry_policy: requeue
signals:
  metrics: false
""",
        )
        settings = load_settings(path)

        assert settings.endpoint == "https://collector.example.com:4318"
        assert settings.protocol == "json"
        assert settings.compression == "gzip"
        assert settings.max_queue_size == 100
        assert settings.retry_policy == "requeue"
        assert settings.signals.metrics is False
        assert settings.signals.traces is True

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml")

    def test_invalid_values_raise_validation_error(self, tmp_path: Path) -> None:
        path = write_settings(tmp_path, "max_queue_size: -5\n")
        with pytest.raises(ValidationError):
            load_settings(path)

    def test_environment_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = write_settings(tmp_path, "max_queue_size: 100\nmax_batch_size: 10\n")
        monkeypatch.setenv("OTELFERRY_MAX_QUEUE_SIZE", "300")

        assert load_settings(path).max_queue_size == 300

    def test_environment_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OTELFERRY_ENDPOINT", "http://env-collector:4318")
        assert load_settings().endpoint == "http://env-collector:4318"

    def test_standard_otel_variables_are_fallbacks(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://otel-collector:4318")
        monkeypatch.setenv("OTEL_SERVICE_NAME", "checkout")

        settings = load_settings()

        assert settings.endpoint == "http://otel-collector:4318"
        assert settings.service_name == "checkout"

    def test_settings_file_beats_otel_variables(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OTEL_SERVICE_NAME", "from-env")
        path = write_settings(tmp_path, "service_name: from-file\n")
        assert load_settings(path).service_name == "from-file"

    def test_env_var_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COLLECTOR_TOKEN", "s3cr3t")
        monkeypatch.delenv("COLLECTOR_HOST", raising=False)
        path = write_settings(
            tmp_path,
            """
endpoint: "http://${COLLECTOR_HOST:-localhost}:4318"
headers:
  authorization: "Bearer ${COLLECTOR_TOKEN}"
""",
        )
        settings = load_settings(path)

        assert settings.endpoint == "http://localhost:4318"
        assert settings.headers["authorization"] == "Bearer s3cr3t"


class TestResolveConfig:
    def test_secret_headers_are_masked(self) -> None:
        settings = ExportSettings(headers={"Authorization": "Bearer abc", "X-Api-Key": "k", "X-Tenant": "acme"})

        resolved = resolve_config(settings)

        assert resolved["headers"] == {"Authorization": "***", "X-Api-Key": "***", "X-Tenant": "acme"}
        assert resolved["max_queue_size"] == 2048
        assert resolved["signals"] == {"traces": True, "metrics": True, "logs": True}


class TestRuntimeExportConfig:
    def test_from_settings_converts_units_and_enums(self) -> None:
        settings = ExportSettings(
            endpoint="https://collector:4318",
            protocol="json",
            compression="gzip",
            headers={"Authorization": "Bearer abc"},
            request_timeout_ms=2500,
            export_interval_ms=1000,
            max_queue_size=100,
            max_batch_size=20,
            overflow_policy="block-with-timeout",
            block_timeout_ms=50,
            retry_policy="requeue",
            max_retries=3,
            base_backoff_ms=200,
            max_backoff_ms=4000,
            flush_timeout_on_shutdown_ms=1500,
            service_name="checkout",
            resource_attributes={"deployment.environment": "prod"},
            signals=SignalSettings(logs=False),
            min_log_severity="warn",
        )

        config = RuntimeExportConfig.from_settings(settings)

        assert config.protocol is WireProtocol.JSON
        assert config.compression is Compression.GZIP
        assert config.request_timeout == 2.5
        assert config.export_interval == 1.0
        assert config.block_timeout == 0.05
        assert config.flush_timeout == 1.5
        assert config.overflow_policy is OverflowPolicy.BLOCK_WITH_TIMEOUT
        assert config.retry.max_retries == 3
        assert config.retry.max_attempts == 4
        assert config.retry.base_backoff == 0.2
        assert config.retry.max_backoff == 4.0
        assert config.retry.on_exhausted is RetryExhaustedPolicy.REQUEUE
        assert config.enabled_signals == frozenset({Signal.TRACES, Signal.METRICS})
        assert config.min_log_severity is Severity.WARN
        assert config.resource == {"service.name": "checkout", "deployment.environment": "prod"}

    def test_exporter_options(self) -> None:
        config = RuntimeExportConfig.from_settings(ExportSettings(headers={"a": "b"}, compression="gzip"))
        assert config.exporter_options == {
            "endpoint": "http://localhost:4318",
            "headers": {"a": "b"},
            "timeout": 10.0,
            "compression": "gzip",
        }

    def test_default(self) -> None:
        config = RuntimeExportConfig.default()
        assert config.exporter_name == "otlp_http"
        assert config.enabled_signals == frozenset(Signal)
        assert config.min_log_severity is Severity.INFO
