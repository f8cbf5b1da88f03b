# src/otelferry/contracts/config/runtime.py
"""Runtime configuration dataclasses.

Design Principles:
1. Frozen (immutable) - runtime config should never change mid-execution
2. Slots - memory efficient, prevents attribute typos
3. Factory methods - from_settings(), default()

Settings use milliseconds and plain strings because that is what users
write in YAML; the runtime config uses seconds and enums because that is
what the buffer, retry loop and controller consume.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from otelferry.contracts.enums import (
    Compression,
    OverflowPolicy,
    RetryExhaustedPolicy,
    Severity,
    Signal,
    WireProtocol,
)

if TYPE_CHECKING:
    from otelferry.core.config import ExportSettings


_SEVERITY_NAMES: dict[str, Severity] = {
    "trace": Severity.TRACE,
    "debug": Severity.DEBUG,
    "info": Severity.INFO,
    "warn": Severity.WARN,
    "error": Severity.ERROR,
    "fatal": Severity.FATAL,
}


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Retry behaviour for a single batch.

    max_retries counts retries, not attempts: max_retries=3 means up to
    four attempts in total.
    """

    max_retries: int = 5
    base_backoff: float = 0.5  # seconds
    max_backoff: float = 30.0  # seconds
    on_exhausted: RetryExhaustedPolicy = RetryExhaustedPolicy.DROP

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_backoff <= 0 or self.max_backoff < self.base_backoff:
            raise ValueError(f"Invalid backoff range: base={self.base_backoff}, max={self.max_backoff}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass(frozen=True, slots=True)
class RuntimeExportConfig:
    """Runtime configuration for the export pipeline.

    Field Origins (all from ExportSettings):
        - *_ms fields: converted to seconds (export_interval, block_timeout,
          request_timeout, flush_timeout)
        - overflow_policy, protocol, compression, min_log_severity: parsed to enums
        - retry_policy + max_retries + backoff fields: folded into RetryConfig
        - signals: converted to a frozenset of enabled Signal values
        - service_name + resource_attributes: merged into resource
        - exporter + endpoint + headers + compression + request_timeout:
          also handed to the exporter as exporter_options
    """

    exporter_name: str
    endpoint: str
    protocol: WireProtocol
    compression: Compression
    headers: dict[str, str]
    request_timeout: float
    export_interval: float
    max_queue_size: int
    max_batch_size: int
    overflow_policy: OverflowPolicy
    block_timeout: float
    retry: RetryConfig
    flush_timeout: float
    resource: dict[str, Any]
    enabled_signals: frozenset[Signal]
    min_log_severity: Severity = Severity.TRACE
    extra_exporter_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_batch_size < 1 or self.max_queue_size < 1:
            raise ValueError("max_batch_size and max_queue_size must be >= 1")
        if self.max_batch_size > self.max_queue_size:
            raise ValueError(f"max_batch_size ({self.max_batch_size}) cannot exceed max_queue_size ({self.max_queue_size})")

    @property
    def exporter_options(self) -> dict[str, Any]:
        """Options dict passed to ``ExporterProtocol.configure()``."""
        return {
            "endpoint": self.endpoint,
            "headers": dict(self.headers),
            "timeout": self.request_timeout,
            "compression": self.compression.value,
            **self.extra_exporter_options,
        }

    @classmethod
    def default(cls) -> "RuntimeExportConfig":
        """Factory for the default configuration (local collector, protobuf)."""
        from otelferry.core.config import ExportSettings

        return cls.from_settings(ExportSettings())

    @classmethod
    def from_settings(cls, settings: "ExportSettings") -> "RuntimeExportConfig":
        """Factory from ExportSettings config model.

        Args:
            settings: Validated Pydantic settings model

        Returns:
            RuntimeExportConfig with mapped values

        Raises:
            ValueError: If an enum-valued setting is invalid
        """
        enabled_signals = frozenset(
            signal
            for signal, enabled in (
                (Signal.TRACES, settings.signals.traces),
                (Signal.METRICS, settings.signals.metrics),
                (Signal.LOGS, settings.signals.logs),
            )
            if enabled
        )

        return cls(
            exporter_name=settings.exporter,
            endpoint=settings.endpoint,
            protocol=WireProtocol(settings.protocol),
            compression=Compression(settings.compression),
            headers=dict(settings.headers),
            request_timeout=settings.request_timeout_ms / 1000,
            export_interval=settings.export_interval_ms / 1000,
            max_queue_size=settings.max_queue_size,
            max_batch_size=settings.max_batch_size,
            overflow_policy=OverflowPolicy(settings.overflow_policy),
            block_timeout=settings.block_timeout_ms / 1000,
            retry=RetryConfig(
                max_retries=settings.max_retries,
                base_backoff=settings.base_backoff_ms / 1000,
                max_backoff=settings.max_backoff_ms / 1000,
                on_exhausted=RetryExhaustedPolicy(settings.retry_policy),
            ),
            flush_timeout=settings.flush_timeout_on_shutdown_ms / 1000,
            resource={"service.name": settings.service_name, **settings.resource_attributes},
            enabled_signals=enabled_signals,
            min_log_severity=_SEVERITY_NAMES[settings.min_log_severity],
        )
