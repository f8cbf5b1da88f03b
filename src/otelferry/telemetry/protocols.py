# src/otelferry/telemetry/protocols.py
"""Protocol definitions for telemetry exporters.

Exporters are responsible for delivering encoded batches to an external
destination (an OTLP collector, the console, ...).
"""

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from otelferry.contracts.records import EncodedBatch
    from otelferry.contracts.results import ExportResult


@runtime_checkable
class ExporterProtocol(Protocol):
    """Protocol for telemetry exporters.

    Lifecycle:
        1. Discovery: otelferry_get_exporters hook returns exporter classes
        2. Instantiation: the factory creates the configured exporter
        3. Configuration: configure() called with exporter options
        4. Operation: export() called once per attempt, from the export thread
        5. Shutdown: close() called when the pipeline terminates

    Error handling:
        - configure() MUST raise TelemetryExporterError on invalid config
        - export() MUST NOT raise - it classifies the outcome as an ExportResult
        - close() MUST be idempotent - safe to call multiple times
    """

    @property
    def name(self) -> str:
        """Exporter name for configuration reference.

        Matches the ``exporter`` setting:

            exporter: otlp_http  # matches this property
            endpoint: http://localhost:4318
        """
        ...

    def configure(self, config: dict[str, Any]) -> None:
        """Configure the exporter with options derived from settings.

        Called once, before any batch is exported.

        Args:
            config: Exporter options (endpoint, headers, timeout, compression)

        Raises:
            TelemetryExporterError: If configuration is invalid or incomplete
        """
        ...

    def export(self, batch: "EncodedBatch", *, timeout: float | None = None) -> "ExportResult":
        """Make one delivery attempt for an encoded batch.

        Retries are the caller's job; the exporter only classifies the
        outcome. This method MUST NOT raise.

        Thread Safety:
            export() is always called from the export thread, never
            concurrently with itself.

        Args:
            batch: The encoded batch
            timeout: Upper bound in seconds for this attempt. When None the
                exporter's configured request timeout applies; when given,
                the smaller of the two is used.

        Returns:
            ExportSuccess, RetryableFailure or FatalFailure
        """
        ...

    def close(self) -> None:
        """Release any resources held by the exporter.

        Must be idempotent - calling close() multiple times should be safe.
        """
        ...
