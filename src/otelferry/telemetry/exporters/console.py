# src/otelferry/telemetry/exporters/console.py
"""Console exporter for encoded batches.

Decodes each payload back into its OTLP request and writes it to stdout or
stderr as OTLP/JSON. Primarily used for testing and local debugging.

Unconfigured structlog prints to stdout; call
otelferry.core.logging.configure_logging() (the CLI does) so the
exporter's own diagnostics go to stderr and stdout carries only payloads.
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING, Any, Literal, TextIO, TypeGuard

import structlog
from google.protobuf import json_format

from otelferry.contracts.enums import WireProtocol
from otelferry.contracts.results import ExportResult, ExportSuccess, FatalFailure
from otelferry.telemetry.encoding import OTLPEncoder
from otelferry.telemetry.errors import TelemetryExporterError

if TYPE_CHECKING:
    from otelferry.contracts.records import EncodedBatch

logger = structlog.get_logger(__name__)


def _is_valid_format(v: str) -> TypeGuard[Literal["json", "pretty"]]:
    """TypeGuard for format validation - enables mypy type narrowing."""
    return v in {"json", "pretty"}


def _is_valid_output(v: str) -> TypeGuard[Literal["stdout", "stderr"]]:
    """TypeGuard for output validation - enables mypy type narrowing."""
    return v in {"stdout", "stderr"}


class ConsoleExporter:
    """Write encoded batches to stdout/stderr for testing and debugging.

    Supports two output formats:
    - json: One OTLP/JSON request per line (for machine processing)
    - pretty: Indented OTLP/JSON preceded by a signal/sequence header

    Configuration options:
        format: Output format - "json" (default) or "pretty"
        output: Output stream - "stdout" (default) or "stderr"

    Options the console has no use for (endpoint, headers, timeout,
    compression) are accepted and ignored, so switching ``exporter``
    between otlp_http and console needs no other change.

    Example configuration:
        exporter: console
    """

    _name = "console"

    # Valid configuration values (kept for error messages)
    _VALID_FORMATS: frozenset[str] = frozenset({"json", "pretty"})
    _VALID_OUTPUTS: frozenset[str] = frozenset({"stdout", "stderr"})

    def __init__(self) -> None:
        """Initialize unconfigured exporter."""
        self._format: Literal["json", "pretty"] = "json"
        self._output: Literal["stdout", "stderr"] = "stdout"
        self._stream: TextIO = sys.stdout
        self._decoders = {protocol.content_type: OTLPEncoder(protocol) for protocol in WireProtocol}

    @property
    def name(self) -> str:
        """Exporter name for configuration reference."""
        return self._name

    def configure(self, config: dict[str, Any]) -> None:
        """Configure the exporter.

        Args:
            config: Exporter options dict

        Raises:
            TelemetryExporterError: If configuration values are invalid
        """
        format_value = config.get("format", "json")
        if not isinstance(format_value, str):
            raise TelemetryExporterError(
                self._name,
                f"'format' must be a string, got {type(format_value).__name__}",
            )
        if _is_valid_format(format_value):
            self._format = format_value
        else:
            raise TelemetryExporterError(
                self._name,
                f"Invalid format '{format_value}'. Must be one of: {', '.join(sorted(self._VALID_FORMATS))}",
            )

        output_value = config.get("output", "stdout")
        if not isinstance(output_value, str):
            raise TelemetryExporterError(
                self._name,
                f"'output' must be a string, got {type(output_value).__name__}",
            )
        if _is_valid_output(output_value):
            self._output = output_value
        else:
            raise TelemetryExporterError(
                self._name,
                f"Invalid output '{output_value}'. Must be one of: {', '.join(sorted(self._VALID_OUTPUTS))}",
            )
        self._stream = sys.stdout if self._output == "stdout" else sys.stderr

        logger.debug(
            "Console exporter configured",
            format=self._format,
            output=self._output,
        )

    def export(self, batch: EncodedBatch, *, timeout: float | None = None) -> ExportResult:
        """Print one encoded batch.

        This method MUST NOT raise. A payload that cannot be decoded is a
        FatalFailure; writing it again would fail the same way.

        Args:
            batch: The encoded batch
            timeout: Ignored; console writes do not time out
        """
        decoder = self._decoders.get(batch.content_type)
        if decoder is None:
            return FatalFailure(reason=f"Unsupported content type {batch.content_type!r}")

        try:
            request = decoder.decode(batch.payload, batch.signal)
            data = json_format.MessageToDict(request, use_integers_for_enums=True)
            if self._format == "json":
                line = json.dumps({"signal": batch.signal.value, "sequence": batch.sequence, "request": data})
            else:
                line = f"[{batch.signal.value} #{batch.sequence}] {batch.record_count} records\n{json.dumps(data, indent=2)}"
            print(line, file=self._stream)
        except Exception as e:
            # Export MUST NOT raise - classify and continue
            logger.warning(
                "Failed to write batch to console",
                exporter=self._name,
                signal=batch.signal.value,
                sequence=batch.sequence,
                error=str(e),
            )
            return FatalFailure(reason=str(e), error=e)
        return ExportSuccess()

    def close(self) -> None:
        """Flush the stream; the console exporter does not own it, so nothing is closed."""
        try:
            self._stream.flush()
        except Exception as e:
            logger.warning(
                "Failed to flush console stream",
                exporter=self._name,
                error=str(e),
            )
