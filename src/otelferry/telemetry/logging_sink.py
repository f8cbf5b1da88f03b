# src/otelferry/telemetry/logging_sink.py
"""Bridge from stdlib/structlog logging to OTLP log records.

TelemetryLogHandler is a logging.Handler that turns each LogRecord into an
otelferry LogRecord and hands it to an ExportPipeline. Installation is
explicit and two-phase, so there is no global pipeline to look up:

    handler = TelemetryLogHandler()
    logging.getLogger().addHandler(handler)
    pipeline = create_export_pipeline(config)
    handler.bind(pipeline)

or, once the pipeline exists, ``install_log_handler(pipeline)``.

Records emitted before bind() are dropped. Records from otelferry's own
loggers are always ignored: exporting them would log again, forever.
"""

import logging
from collections.abc import Mapping
from typing import Any

import structlog

from otelferry.contracts.enums import Severity
from otelferry.contracts.records import (
    SPAN_ID_LENGTH,
    TRACE_ID_LENGTH,
    InstrumentationScope,
    LogRecord,
)
from otelferry.telemetry.pipeline import ExportPipeline

# Attributes every logging.LogRecord carries; anything else came from extra=
_STANDARD_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# structlog bookkeeping keys that are not log content
_STRUCTLOG_INTERNAL_KEYS = frozenset({"event", "level", "timestamp", "logger", "_record", "_from_structlog"})

_CORRELATION_KEYS = ("trace_id", "span_id")

_OWN_LOGGER_PREFIX = "otelferry"


def _coerce_id(value: Any, length: int) -> bytes | None:
    """Accept an id as raw bytes or a hex string; anything else is ignored."""
    if isinstance(value, bytes):
        raw = value
    elif isinstance(value, str):
        try:
            raw = bytes.fromhex(value)
        except ValueError:
            return None
    else:
        return None
    if len(raw) != length or not any(raw):
        return None
    return raw


def _attribute_value(value: Any) -> Any:
    if isinstance(value, str | bool | int | float | bytes):
        return value
    if isinstance(value, Mapping):
        return {str(k): _attribute_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_attribute_value(item) for item in value]
    return str(value)


class TelemetryLogHandler(logging.Handler):
    """logging.Handler that forwards records to an ExportPipeline.

    Correlation ids are taken, in order of preference, from the record's
    ``extra`` (``trace_id``/``span_id``), from a structlog event dict, or
    from structlog's bound contextvars. Ids may be bytes or hex strings.

    Thread Safety:
        emit() is called from whatever thread logged; ExportPipeline.record()
        is safe from any thread.
    """

    def __init__(self, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._pipeline: ExportPipeline | None = None
        self._dropped_unbound = 0

    def bind(self, pipeline: ExportPipeline) -> None:
        """Attach the pipeline that will receive records from now on."""
        self._pipeline = pipeline

    def unbind(self) -> None:
        self._pipeline = None

    @property
    def bound(self) -> bool:
        return self._pipeline is not None

    @property
    def dropped_unbound(self) -> int:
        """Records dropped because no pipeline was bound yet."""
        return self._dropped_unbound

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == _OWN_LOGGER_PREFIX or record.name.startswith(_OWN_LOGGER_PREFIX + "."):
            return
        pipeline = self._pipeline
        if pipeline is None:
            self._dropped_unbound += 1
            return
        try:
            pipeline.record(self.to_log_record(record, resource=pipeline.config.resource))
        except Exception:
            self.handleError(record)

    def to_log_record(self, record: logging.LogRecord, *, resource: Mapping[str, Any] | None = None) -> LogRecord:
        """Convert a stdlib LogRecord to an otelferry LogRecord."""
        attributes: dict[str, Any] = {
            "code.function": record.funcName,
            "code.lineno": record.lineno,
            "code.filepath": record.pathname,
            "thread.name": record.threadName,
        }
        correlation: dict[str, Any] = {}

        if isinstance(record.msg, dict):
            # structlog event dict routed through ProcessorFormatter.wrap_for_formatter
            event_dict: dict[str, Any] = record.msg
            body = str(event_dict.get("event", ""))
            for key, value in event_dict.items():
                if key in _CORRELATION_KEYS:
                    correlation[key] = value
                elif key not in _STRUCTLOG_INTERNAL_KEYS and not key.startswith("_"):
                    attributes[key] = _attribute_value(value)
        else:
            body = record.getMessage()

        for key, value in vars(record).items():
            if key in _STANDARD_RECORD_ATTRS or key.startswith("_"):
                continue
            if key in _CORRELATION_KEYS:
                correlation.setdefault(key, value)
            else:
                attributes[key] = _attribute_value(value)

        if record.exc_info and record.exc_info[0] is not None:
            attributes["exception.type"] = record.exc_info[0].__name__
            attributes["exception.message"] = str(record.exc_info[1])

        context = structlog.contextvars.get_contextvars()
        for key in _CORRELATION_KEYS:
            if key not in correlation and key in context:
                correlation[key] = context[key]

        timestamp_ns = int(record.created * 1_000_000_000)
        return LogRecord(
            timestamp_ns=timestamp_ns,
            observed_time_ns=timestamp_ns,
            resource=resource or {},
            scope=InstrumentationScope(name=record.name),
            body=body,
            severity=Severity.from_logging_level(record.levelno),
            severity_text=record.levelname,
            trace_id=_coerce_id(correlation.get("trace_id"), TRACE_ID_LENGTH),
            span_id=_coerce_id(correlation.get("span_id"), SPAN_ID_LENGTH),
            attributes=attributes,
        )


def install_log_handler(
    pipeline: ExportPipeline,
    *,
    level: int = logging.INFO,
    logger: logging.Logger | None = None,
) -> TelemetryLogHandler:
    """Create a bound TelemetryLogHandler and attach it to a logger.

    Args:
        pipeline: Pipeline receiving the log records
        level: Minimum stdlib level forwarded
        logger: Logger to attach to; the root logger by default

    Returns:
        The installed handler; remove it with ``logger.removeHandler()``
    """
    handler = TelemetryLogHandler(level)
    handler.bind(pipeline)
    (logger if logger is not None else logging.getLogger()).addHandler(handler)
    return handler
