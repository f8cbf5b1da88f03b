# src/otelferry/telemetry/errors.py
"""Telemetry-specific exceptions.

Only TelemetryExporterError is raised to callers, and only while the
pipeline is being configured. The others describe failures inside the
export path; they are created, logged and counted there but never escape
``ExportPipeline.record()`` or the background export thread.
"""


class TelemetryError(Exception):
    """Base class for telemetry export failures."""


class TelemetryExporterError(TelemetryError):
    """Raised when an exporter encounters a configuration or initialization error.

    This is raised during exporter setup (configure/discovery), NOT during
    export operations. Export operations must not raise - they return an
    ExportResult instead.

    Attributes:
        exporter_name: Name of the exporter that failed
        message: Human-readable error description
    """

    def __init__(self, exporter_name: str, message: str) -> None:
        self.exporter_name = exporter_name
        self.message = message
        super().__init__(f"Exporter '{exporter_name}' failed: {message}")


class BufferOverflowError(TelemetryError):
    """The batch buffer is at capacity.

    Resolved inside ``BatchBuffer.push()`` according to the overflow
    policy; producers never see it.
    """

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Batch buffer full (capacity={capacity})")


class EncodingError(TelemetryError):
    """A record holds a value the OTLP wire schema cannot carry.

    Only the offending record is dropped; the rest of the batch is encoded.
    """


class TransportError(TelemetryError):
    """The request never produced an HTTP response (connect, read, timeout)."""


class RejectedPayloadError(TelemetryError):
    """The collector answered with a non-retryable status for this payload."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Collector rejected payload with HTTP {status_code}: {detail}")


class ShutdownTimeoutError(TelemetryError):
    """The shutdown flush budget ran out before every record was exported.

    Attributes:
        discarded: Number of records abandoned when the budget ran out
        timeout: The flush budget in seconds
    """

    def __init__(self, discarded: int, timeout: float) -> None:
        self.discarded = discarded
        self.timeout = timeout
        super().__init__(f"Shutdown flush exceeded {timeout:.3f}s budget; discarded {discarded} records")
