# src/otelferry/contracts/records.py
"""Telemetry record model.

Records are produced by instrumented application code and consumed by the
export pipeline. They are frozen once constructed:

- Dataclasses are frozen and slotted
- Attribute mappings are stored as read-only MappingProxyType views
- Lists inside attribute values become tuples
- Span events are stored as a tuple

A record is one of Span, MetricPoint or LogRecord; each subclass declares
the Signal it travels on, which selects the buffer, the OTLP request type
and the endpoint path.
"""

import random
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar

from otelferry.contracts.enums import (
    MetricKind,
    Severity,
    Signal,
    SpanKind,
    SpanStatus,
    Temporality,
)

TRACE_ID_LENGTH = 16
SPAN_ID_LENGTH = 8

_EMPTY: Mapping[str, Any] = MappingProxyType({})


def _empty_attributes() -> Mapping[str, Any]:
    return _EMPTY


def new_trace_id() -> bytes:
    """Generate a random, non-zero 16-byte trace id."""
    value = 0
    while value == 0:
        value = random.getrandbits(TRACE_ID_LENGTH * 8)
    return value.to_bytes(TRACE_ID_LENGTH, "big")


def new_span_id() -> bytes:
    """Generate a random, non-zero 8-byte span id."""
    value = 0
    while value == 0:
        value = random.getrandbits(SPAN_ID_LENGTH * 8)
    return value.to_bytes(SPAN_ID_LENGTH, "big")


def _freeze_value(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze_value(item) for item in value)
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze_value(v) for k, v in value.items()})
    return value


def _freeze_attributes(attributes: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType({str(k): _freeze_value(v) for k, v in attributes.items()})


def _check_id(name: str, value: bytes | None, length: int, *, required: bool) -> None:
    if value is None:
        if required:
            raise ValueError(f"{name} is required")
        return
    if not isinstance(value, bytes) or len(value) != length:
        raise ValueError(f"{name} must be {length} bytes, got {value!r}")
    if not any(value):
        raise ValueError(f"{name} must not be all zeros")


@dataclass(frozen=True, slots=True)
class InstrumentationScope:
    """Library or component that produced a record."""

    name: str
    version: str | None = None


DEFAULT_SCOPE = InstrumentationScope(name="otelferry")


@dataclass(frozen=True, slots=True, kw_only=True)
class TelemetryRecord:
    """Fields shared by every record kind.

    Attributes:
        timestamp_ns: Nanoseconds since the Unix epoch
        resource: Attributes describing the producing entity (service.name, ...)
        scope: Instrumentation scope that produced the record
    """

    signal: ClassVar[Signal]

    timestamp_ns: int = field(default_factory=time.time_ns)
    resource: Mapping[str, Any] = field(default_factory=_empty_attributes)
    scope: InstrumentationScope = DEFAULT_SCOPE

    def __post_init__(self) -> None:
        if self.timestamp_ns < 0:
            raise ValueError(f"timestamp_ns must be >= 0, got {self.timestamp_ns}")
        object.__setattr__(self, "resource", _freeze_attributes(self.resource))
        self._validate()

    def _validate(self) -> None:
        """Subclass hook for kind-specific validation and freezing."""


@dataclass(frozen=True, slots=True)
class SpanEvent:
    """Timestamped annotation on a span."""

    name: str
    timestamp_ns: int
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", _freeze_attributes(self.attributes))


@dataclass(frozen=True, slots=True, kw_only=True)
class Span(TelemetryRecord):
    """A timed operation within a trace."""

    signal: ClassVar[Signal] = Signal.TRACES

    trace_id: bytes
    span_id: bytes
    name: str
    start_time_ns: int
    end_time_ns: int
    parent_span_id: bytes | None = None
    kind: SpanKind = SpanKind.INTERNAL
    status: SpanStatus = SpanStatus.UNSET
    status_message: str = ""
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes)
    events: Sequence[SpanEvent] = ()

    def _validate(self) -> None:
        _check_id("trace_id", self.trace_id, TRACE_ID_LENGTH, required=True)
        _check_id("span_id", self.span_id, SPAN_ID_LENGTH, required=True)
        _check_id("parent_span_id", self.parent_span_id, SPAN_ID_LENGTH, required=False)
        if self.end_time_ns < self.start_time_ns:
            raise ValueError(f"Span '{self.name}' ends before it starts ({self.end_time_ns} < {self.start_time_ns})")
        object.__setattr__(self, "attributes", _freeze_attributes(self.attributes))
        object.__setattr__(self, "events", tuple(self.events))

    @property
    def duration_ns(self) -> int:
        return self.end_time_ns - self.start_time_ns


@dataclass(frozen=True, slots=True)
class HistogramDistribution:
    """Explicit-bucket distribution.

    ``bucket_counts[i]`` counts observations in ``(bounds[i-1], bounds[i]]``;
    the final bucket holds everything above the last bound, so there is
    always one more count than bound.
    """

    bounds: Sequence[float]
    bucket_counts: Sequence[int]
    count: int
    sum: float
    min: float | None = None
    max: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "bounds", tuple(self.bounds))
        object.__setattr__(self, "bucket_counts", tuple(self.bucket_counts))
        if len(self.bucket_counts) != len(self.bounds) + 1:
            raise ValueError(f"Expected {len(self.bounds) + 1} bucket counts for {len(self.bounds)} bounds, got {len(self.bucket_counts)}")
        if any(b >= a for a, b in zip(self.bounds[1:], self.bounds, strict=False)):
            raise ValueError(f"Histogram bounds must be strictly increasing, got {self.bounds}")
        if sum(self.bucket_counts) != self.count:
            raise ValueError(f"count={self.count} does not match bucket total {sum(self.bucket_counts)}")

    @classmethod
    def from_values(cls, values: Sequence[float], bounds: Sequence[float]) -> "HistogramDistribution":
        """Build a distribution by bucketing raw observations."""
        counts = [0] * (len(bounds) + 1)
        for value in values:
            index = len(bounds)
            for i, bound in enumerate(bounds):
                if value <= bound:
                    index = i
                    break
            counts[index] += 1
        return cls(
            bounds=tuple(bounds),
            bucket_counts=tuple(counts),
            count=len(values),
            sum=float(sum(values)),
            min=min(values) if values else None,
            max=max(values) if values else None,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class MetricPoint(TelemetryRecord):
    """A single metric data point.

    Counters and gauges carry ``value``; histograms carry ``distribution``.
    """

    signal: ClassVar[Signal] = Signal.METRICS

    name: str
    kind: MetricKind
    value: int | float | None = None
    distribution: HistogramDistribution | None = None
    unit: str = ""
    description: str = ""
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes)
    start_time_ns: int = 0
    is_monotonic: bool = True
    temporality: Temporality = Temporality.CUMULATIVE

    def _validate(self) -> None:
        if not self.name:
            raise ValueError("metric name cannot be empty")
        if self.kind is MetricKind.HISTOGRAM:
            if self.distribution is None:
                raise ValueError(f"Histogram '{self.name}' requires a distribution")
        elif self.value is None or isinstance(self.value, bool):
            raise ValueError(f"{self.kind.value} '{self.name}' requires a numeric value, got {self.value!r}")
        object.__setattr__(self, "attributes", _freeze_attributes(self.attributes))


@dataclass(frozen=True, slots=True, kw_only=True)
class LogRecord(TelemetryRecord):
    """A log line, optionally correlated with the active span."""

    signal: ClassVar[Signal] = Signal.LOGS

    body: str
    severity: Severity = Severity.INFO
    severity_text: str | None = None
    trace_id: bytes | None = None
    span_id: bytes | None = None
    observed_time_ns: int | None = None
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes)

    def _validate(self) -> None:
        _check_id("trace_id", self.trace_id, TRACE_ID_LENGTH, required=False)
        _check_id("span_id", self.span_id, SPAN_ID_LENGTH, required=False)
        object.__setattr__(self, "attributes", _freeze_attributes(self.attributes))


@dataclass(frozen=True, slots=True)
class Batch:
    """Immutable, sequence-numbered group of records of one signal.

    The sequence number is assigned when the batch is drained from the
    buffer and kept if the batch is requeued, so a collector can discard
    duplicate deliveries.
    """

    sequence: int
    signal: Signal
    records: tuple[TelemetryRecord, ...]
    requeued: bool = False

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True, slots=True)
class EncodedBatch:
    """Wire payload for one batch, ready for the exporter."""

    sequence: int
    signal: Signal
    payload: bytes
    content_type: str
    record_count: int
    dropped_count: int = 0
