# src/otelferry/telemetry/filtering.py
"""Record filtering based on enabled signals and log severity.

Records are filtered before they reach a buffer:
- A record whose signal is disabled is never buffered
- Log records below min_log_severity are never buffered

This module provides the single source of truth for filtering, used by
ExportPipeline.record() and the logging handler.
"""

from otelferry.contracts.config import RuntimeExportConfig
from otelferry.contracts.records import LogRecord, MetricPoint, Span, TelemetryRecord


def should_export(record: TelemetryRecord, config: RuntimeExportConfig) -> bool:
    """Determine whether a record should be buffered for export.

    Filter logic:
    - Spans and metric points: export if their signal is enabled
    - Log records: export if logs are enabled and severity >= min_log_severity
    - Unknown record types: rejected (there is no buffer or encoder for them)

    Args:
        record: The record to check
        config: Runtime export configuration

    Returns:
        True if the record should be buffered, False otherwise

    Example:
        >>> from otelferry.contracts import LogRecord, Severity
        >>> config = RuntimeExportConfig.default()
        >>> should_export(LogRecord(body="hello", severity=Severity.DEBUG), config)
        False
    """
    match record:
        case Span() | MetricPoint():
            return record.signal in config.enabled_signals

        case LogRecord():
            return record.signal in config.enabled_signals and record.severity >= config.min_log_severity

        case _:
            return False
