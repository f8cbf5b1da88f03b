# src/otelferry/telemetry/exporters/otlp_http.py
"""OTLP/HTTP exporter.

POSTs encoded batches to ``{endpoint}/v1/{traces|metrics|logs}`` and
classifies each response:

- 2xx                        -> ExportSuccess
- 429, 502, 503, 504         -> RetryableFailure (honouring Retry-After)
- connection/timeout errors  -> RetryableFailure
- anything else              -> FatalFailure (RejectedPayloadError)

One attempt per export() call; the RetryingSender decides whether to try
again.
"""

from __future__ import annotations

import gzip
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from otelferry.contracts.config import get_internal_default
from otelferry.contracts.enums import Compression
from otelferry.contracts.results import ExportResult, ExportSuccess, FatalFailure, RetryableFailure
from otelferry.telemetry.errors import RejectedPayloadError, TelemetryExporterError, TransportError

if TYPE_CHECKING:
    from otelferry.contracts.records import EncodedBatch

logger = structlog.get_logger(__name__)

BATCH_SEQUENCE_HEADER = "X-OTLP-Batch-Sequence"

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 502, 503, 504})

_MAX_REASON_CHARS = int(get_internal_default("exporter", "max_reason_chars"))


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds.

    HTTP-date values are not used by OTLP collectors and are ignored.

    Returns:
        Delay in seconds, or None if absent or unparseable
    """
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds


class OTLPHttpExporter:
    """Export encoded batches to an OTLP collector over HTTP.

    Configuration options:
        endpoint: Collector base URL (required), e.g. http://localhost:4318
        headers: Optional dict of headers (e.g., Authorization)
        timeout: Per-request timeout in seconds (default: 10.0)
        compression: "none" (default) or "gzip"

    Example configuration:
        exporter: otlp_http
        endpoint: https://collector.example.com:4318
        headers:
          Authorization: Bearer ${OTEL_TOKEN}
        compression: gzip

    Thread safety:
        httpx.Client is thread-safe, but the pipeline only calls export()
        from its single export thread.
    """

    _name = "otlp_http"

    def __init__(self) -> None:
        """Initialize unconfigured exporter."""
        self._endpoint: str | None = None
        self._headers: dict[str, str] = {}
        self._timeout: float = 10.0
        self._compression = Compression.NONE
        self._client: httpx.Client | None = None

    @property
    def name(self) -> str:
        """Exporter name for configuration reference."""
        return self._name

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    def configure(self, config: dict[str, Any]) -> None:
        """Configure the exporter with options from the runtime config.

        Args:
            config: Options dict containing:
                - endpoint (required): Collector base URL
                - headers (optional): Dict of header key-value pairs
                - timeout (optional): Per-request timeout in seconds
                - compression (optional): "none" or "gzip"

        Raises:
            TelemetryExporterError: If endpoint is missing or a value is invalid
        """
        if "endpoint" not in config:
            raise TelemetryExporterError(self._name, "OTLP/HTTP exporter requires 'endpoint' in config")

        endpoint = config["endpoint"]
        if not isinstance(endpoint, str) or not endpoint.startswith(("http://", "https://")):
            raise TelemetryExporterError(self._name, f"endpoint must be an http(s) URL, got {endpoint!r}")

        headers = config.get("headers", {})
        if not isinstance(headers, dict):
            raise TelemetryExporterError(self._name, f"'headers' must be a mapping, got {type(headers).__name__}")

        timeout = config.get("timeout", 10.0)
        if not isinstance(timeout, int | float) or timeout <= 0:
            raise TelemetryExporterError(self._name, f"timeout must be a positive number, got {timeout!r}")

        try:
            compression = Compression(config.get("compression", Compression.NONE.value))
        except ValueError as e:
            raise TelemetryExporterError(self._name, f"Invalid compression: {e}") from e

        self._endpoint = endpoint.rstrip("/")
        self._headers = {str(k): str(v) for k, v in headers.items()}
        self._timeout = float(timeout)
        self._compression = compression

        if self._client is not None:
            self._client.close()
        # Shared httpx.Client for connection pooling and TCP reuse.
        # Per-request timeouts override the default via timeout= kwarg.
        self._client = httpx.Client(
            timeout=self._timeout,
            headers=self._headers,
            follow_redirects=False,
        )

        logger.debug(
            "OTLP/HTTP exporter configured",
            endpoint=self._endpoint,
            compression=self._compression.value,
            timeout=self._timeout,
            headers_count=len(self._headers),
        )

    def url_for(self, batch: EncodedBatch) -> str:
        """Full request URL for a batch's signal."""
        return f"{self._endpoint}/v1/{batch.signal.value}"

    def export(self, batch: EncodedBatch, *, timeout: float | None = None) -> ExportResult:
        """Make one POST attempt for an encoded batch.

        This method MUST NOT raise - every outcome is classified.

        Args:
            batch: The encoded batch
            timeout: Optional tighter bound (e.g. the remaining shutdown
                budget); the smaller of this and the configured timeout applies

        Returns:
            ExportSuccess, RetryableFailure or FatalFailure
        """
        if self._client is None:
            return FatalFailure(reason="OTLP/HTTP exporter not configured")

        effective_timeout = self._timeout if timeout is None else max(0.0, min(self._timeout, timeout))
        body = batch.payload
        headers = {
            "Content-Type": batch.content_type,
            BATCH_SEQUENCE_HEADER: str(batch.sequence),
        }
        if self._compression is Compression.GZIP:
            body = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"

        try:
            response = self._client.post(
                self.url_for(batch),
                content=body,
                headers=headers,
                timeout=effective_timeout,
            )
        except httpx.TransportError as e:
            error = TransportError(f"{type(e).__name__}: {e}")
            return RetryableFailure(reason=str(error), error=error)

        return self._classify(response)

    def _classify(self, response: httpx.Response) -> ExportResult:
        status = response.status_code
        if 200 <= status < 300:
            return ExportSuccess(status_code=status)

        detail = response.text[:_MAX_REASON_CHARS]
        if status in RETRYABLE_STATUS_CODES:
            return RetryableFailure(
                reason=f"HTTP {status}: {detail}" if detail else f"HTTP {status}",
                status_code=status,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        error = RejectedPayloadError(status, detail)
        return FatalFailure(reason=str(error), status_code=status, error=error)

    def close(self) -> None:
        """Close the underlying httpx client. Idempotent."""
        if self._client is not None:
            self._client.close()
            self._client = None
