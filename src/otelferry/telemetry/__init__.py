# src/otelferry/telemetry/__init__.py
"""Telemetry export subsystem.

Components:
- buffer: BatchBuffer, bounded per-signal record buffer with overflow policies
- encoding: OTLPEncoder for OTLP protobuf and OTLP/JSON payloads
- retry: RetryingSender, tenacity-based retry with backoff and deadlines
- pipeline: ExportPipeline, the background export controller
- filtering: should_export() for signal/severity filtering
- diagnostics: ExportDiagnostics counters
- logging_sink: TelemetryLogHandler bridging stdlib logging to log records
- protocols: ExporterProtocol for implementing exporters
- hookspecs: pluggy hooks for exporter discovery
- errors: exception taxonomy
- exporters: Built-in exporters (OTLPHttpExporter, ConsoleExporter)

Usage:
    from otelferry.telemetry import create_export_pipeline

    pipeline = create_export_pipeline(config)
    pipeline.record(span)
    pipeline.shutdown()
"""

from otelferry.telemetry.buffer import BatchBuffer
from otelferry.telemetry.diagnostics import ExportDiagnostics
from otelferry.telemetry.encoding import OTLPEncoder
from otelferry.telemetry.errors import (
    BufferOverflowError,
    EncodingError,
    RejectedPayloadError,
    ShutdownTimeoutError,
    TelemetryError,
    TelemetryExporterError,
    TransportError,
)
from otelferry.telemetry.exporters import ConsoleExporter, OTLPHttpExporter
from otelferry.telemetry.factory import create_export_pipeline, create_exporter, discover_exporters
from otelferry.telemetry.filtering import should_export
from otelferry.telemetry.logging_sink import TelemetryLogHandler, install_log_handler
from otelferry.telemetry.pipeline import ExportPipeline
from otelferry.telemetry.protocols import ExporterProtocol
from otelferry.telemetry.retry import RetryingSender, SendOutcome

__all__ = [
    "BatchBuffer",
    "BufferOverflowError",
    "ConsoleExporter",
    "EncodingError",
    "ExportDiagnostics",
    "ExportPipeline",
    "ExporterProtocol",
    "OTLPEncoder",
    "OTLPHttpExporter",
    "RejectedPayloadError",
    "RetryingSender",
    "SendOutcome",
    "ShutdownTimeoutError",
    "TelemetryError",
    "TelemetryExporterError",
    "TelemetryLogHandler",
    "TransportError",
    "create_export_pipeline",
    "create_exporter",
    "discover_exporters",
    "install_log_handler",
    "should_export",
]
