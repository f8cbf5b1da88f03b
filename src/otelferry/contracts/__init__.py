"""Shared contracts for cross-boundary data types.

Records, batches, export results, enums and runtime configuration used by
more than one subsystem are defined here. This package is a LEAF MODULE:
it does not import from core, encoding or telemetry.

Import patterns:
    # Contracts (lightweight, no heavy dependencies)
    from otelferry.contracts import Span, LogRecord, Batch

    # Settings classes (pydantic, dynaconf)
    from otelferry.core.config import ExportSettings
"""

from otelferry.contracts.config import RetryConfig, RuntimeExportConfig
from otelferry.contracts.enums import (
    Compression,
    MetricKind,
    OverflowPolicy,
    PipelineState,
    RetryExhaustedPolicy,
    Severity,
    Signal,
    SpanKind,
    SpanStatus,
    Temporality,
    WireProtocol,
)
from otelferry.contracts.records import (
    Batch,
    EncodedBatch,
    HistogramDistribution,
    InstrumentationScope,
    LogRecord,
    MetricPoint,
    Span,
    SpanEvent,
    TelemetryRecord,
    new_span_id,
    new_trace_id,
)
from otelferry.contracts.results import ExportResult, ExportSuccess, FatalFailure, RetryableFailure

__all__ = [
    "Batch",
    "Compression",
    "EncodedBatch",
    "ExportResult",
    "ExportSuccess",
    "FatalFailure",
    "HistogramDistribution",
    "InstrumentationScope",
    "LogRecord",
    "MetricKind",
    "MetricPoint",
    "OverflowPolicy",
    "PipelineState",
    "RetryConfig",
    "RetryExhaustedPolicy",
    "RetryableFailure",
    "RuntimeExportConfig",
    "Severity",
    "Signal",
    "Span",
    "SpanEvent",
    "SpanKind",
    "SpanStatus",
    "Temporality",
    "TelemetryRecord",
    "WireProtocol",
    "new_span_id",
    "new_trace_id",
]
