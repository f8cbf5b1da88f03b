"""All status codes, modes, and kinds used across subsystem boundaries.

Wire-level enums carry the integer values defined by the OTLP protobuf
schema so the encoder can pass them through without lookup tables.
"""

import logging
from enum import IntEnum, StrEnum


class Signal(StrEnum):
    """Telemetry signal type.

    The value is the path segment of the OTLP/HTTP endpoint
    (``{endpoint}/v1/{signal}``).
    """

    TRACES = "traces"
    METRICS = "metrics"
    LOGS = "logs"


class SpanStatus(IntEnum):
    """Span status code (matches ``Status.StatusCode`` in trace.proto)."""

    UNSET = 0
    OK = 1
    ERROR = 2


class SpanKind(IntEnum):
    """Span kind (matches ``Span.SpanKind`` in trace.proto)."""

    INTERNAL = 1
    SERVER = 2
    CLIENT = 3
    PRODUCER = 4
    CONSUMER = 5


class MetricKind(StrEnum):
    """Kind of metric point.

    Values:
        COUNTER: Sum of increments (monotonic by default)
        GAUGE: Last observed value
        HISTOGRAM: Explicit-bucket distribution
    """

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class Temporality(IntEnum):
    """Aggregation temporality (matches ``AggregationTemporality`` in metrics.proto)."""

    DELTA = 1
    CUMULATIVE = 2


class Severity(IntEnum):
    """Log severity number (base values of ``SeverityNumber`` in logs.proto)."""

    TRACE = 1
    DEBUG = 5
    INFO = 9
    WARN = 13
    ERROR = 17
    FATAL = 21

    @classmethod
    def from_logging_level(cls, levelno: int) -> "Severity":
        """Map a stdlib logging level number to the nearest severity."""
        if levelno >= logging.CRITICAL:
            return cls.FATAL
        if levelno >= logging.ERROR:
            return cls.ERROR
        if levelno >= logging.WARNING:
            return cls.WARN
        if levelno >= logging.INFO:
            return cls.INFO
        if levelno >= logging.DEBUG:
            return cls.DEBUG
        return cls.TRACE


class WireProtocol(StrEnum):
    """Payload encoding for OTLP/HTTP requests."""

    PROTOBUF = "protobuf"
    JSON = "json"

    @property
    def content_type(self) -> str:
        if self is WireProtocol.PROTOBUF:
            return "application/x-protobuf"
        return "application/json"


class Compression(StrEnum):
    """Request body compression."""

    NONE = "none"
    GZIP = "gzip"


class OverflowPolicy(StrEnum):
    """What the batch buffer does with a record pushed while full.

    Values:
        DROP_NEWEST: Reject the incoming record
        DROP_OLDEST: Evict the oldest buffered record to make room
        BLOCK_WITH_TIMEOUT: Wait for space up to the block timeout, then
            fall back to DROP_NEWEST
    """

    DROP_NEWEST = "drop-newest"
    DROP_OLDEST = "drop-oldest"
    BLOCK_WITH_TIMEOUT = "block-with-timeout"


class RetryExhaustedPolicy(StrEnum):
    """What happens to a batch once its retries are exhausted.

    Values:
        REQUEUE: Put it back at the front of the buffer (at most once)
        DROP: Discard it and count the records as dropped
    """

    REQUEUE = "requeue"
    DROP = "drop"


class PipelineState(StrEnum):
    """Lifecycle state of the export pipeline controller."""

    IDLE = "idle"
    EXPORTING = "exporting"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"
