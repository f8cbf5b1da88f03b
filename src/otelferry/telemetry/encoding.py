# src/otelferry/telemetry/encoding.py
"""OTLP payload encoding.

Turns a Batch into the body of an OTLP/HTTP export request using the
message classes from ``opentelemetry-proto``:

- traces  -> ExportTraceServiceRequest
- metrics -> ExportMetricsServiceRequest
- logs    -> ExportLogsServiceRequest

Records are grouped by resource, then by instrumentation scope, as
collectors expect. Two wire forms are produced from the same message:

- protobuf: ``SerializeToString()``
- JSON: OTLP/JSON, i.e. proto3 JSON with lowerCamelCase keys, integer
  enums, and trace/span ids as hex strings instead of base64

Records holding a value the schema cannot carry raise EncodingError while
being converted; they are left out of the payload and counted in
``EncodedBatch.dropped_count``.
"""

from __future__ import annotations

import base64
import json
import math
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import structlog
from google.protobuf import json_format
from google.protobuf.message import Message
from opentelemetry.proto.collector.logs.v1.logs_service_pb2 import ExportLogsServiceRequest
from opentelemetry.proto.collector.metrics.v1.metrics_service_pb2 import ExportMetricsServiceRequest
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import ExportTraceServiceRequest
from opentelemetry.proto.common.v1.common_pb2 import AnyValue, ArrayValue, KeyValue, KeyValueList
from opentelemetry.proto.common.v1.common_pb2 import InstrumentationScope as PbInstrumentationScope
from opentelemetry.proto.logs.v1.logs_pb2 import LogRecord as PbLogRecord
from opentelemetry.proto.logs.v1.logs_pb2 import ResourceLogs, ScopeLogs
from opentelemetry.proto.metrics.v1.metrics_pb2 import (
    Gauge,
    Histogram,
    HistogramDataPoint,
    Metric,
    NumberDataPoint,
    ResourceMetrics,
    ScopeMetrics,
    Sum,
)
from opentelemetry.proto.resource.v1.resource_pb2 import Resource as PbResource
from opentelemetry.proto.trace.v1.trace_pb2 import ResourceSpans, ScopeSpans, Status
from opentelemetry.proto.trace.v1.trace_pb2 import Span as PbSpan

from otelferry.contracts.enums import MetricKind, Signal, WireProtocol
from otelferry.contracts.records import (
    Batch,
    EncodedBatch,
    InstrumentationScope,
    LogRecord,
    MetricPoint,
    Span,
    TelemetryRecord,
)
from otelferry.telemetry.errors import EncodingError

logger = structlog.get_logger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

# OTLP/JSON carries these bytes fields as hex rather than proto3-JSON base64
_HEX_ID_FIELDS = frozenset({"traceId", "spanId", "parentSpanId"})

_REQUEST_TYPES: dict[Signal, type[Message]] = {
    Signal.TRACES: ExportTraceServiceRequest,
    Signal.METRICS: ExportMetricsServiceRequest,
    Signal.LOGS: ExportLogsServiceRequest,
}

_ResourceKey = tuple[tuple[str, str], ...]
_ScopeKey = tuple[str, str | None]


def _resource_key(resource: Mapping[str, Any]) -> _ResourceKey:
    """Order-independent grouping key for a resource attribute mapping."""
    return tuple(sorted((key, repr(value)) for key, value in resource.items()))


def _walk_hex_ids(node: Any, convert: Callable[[str], str]) -> Any:
    if isinstance(node, dict):
        return {key: convert(value) if key in _HEX_ID_FIELDS and isinstance(value, str) else _walk_hex_ids(value, convert) for key, value in node.items()}
    if isinstance(node, list):
        return [_walk_hex_ids(item, convert) for item in node]
    return node


def _base64_to_hex(value: str) -> str:
    return base64.b64decode(value).hex()


def _hex_to_base64(value: str) -> str:
    return base64.b64encode(bytes.fromhex(value)).decode("ascii")


class OTLPEncoder:
    """Encode batches as OTLP export requests.

    Stateless and CPU-only; safe to share, though the pipeline only calls
    it from the export thread.

    Example:
        encoder = OTLPEncoder(WireProtocol.JSON)
        encoded = encoder.encode(batch)
        encoded.content_type  # "application/json"
    """

    def __init__(self, protocol: WireProtocol = WireProtocol.PROTOBUF) -> None:
        self._protocol = protocol

    @property
    def protocol(self) -> WireProtocol:
        return self._protocol

    @property
    def content_type(self) -> str:
        return self._protocol.content_type

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encode(self, batch: Batch) -> EncodedBatch:
        """Encode a batch, dropping records that cannot be represented.

        Args:
            batch: Records of a single signal

        Returns:
            EncodedBatch with the payload and encoded/dropped counts. If
            every record was dropped the payload is an empty request.
        """
        request, encoded, dropped = self.build_request(batch)
        return EncodedBatch(
            sequence=batch.sequence,
            signal=batch.signal,
            payload=self._serialize(request),
            content_type=self.content_type,
            record_count=encoded,
            dropped_count=dropped,
        )

    def build_request(self, batch: Batch) -> tuple[Message, int, int]:
        """Build the OTLP request message for a batch.

        Returns:
            Tuple of (request message, records encoded, records dropped)
        """
        match batch.signal:
            case Signal.TRACES:
                return self._build_traces(batch.records)
            case Signal.METRICS:
                return self._build_metrics(batch.records)
            case Signal.LOGS:
                return self._build_logs(batch.records)
        raise AssertionError(f"Unhandled signal: {batch.signal!r}")  # pragma: no cover

    def decode(self, payload: bytes, signal: Signal) -> Message:
        """Parse a payload produced by encode() back into its request message.

        Args:
            payload: Request body in this encoder's wire protocol
            signal: Signal the payload was encoded for

        Returns:
            ExportTraceServiceRequest, ExportMetricsServiceRequest or
            ExportLogsServiceRequest
        """
        request = _REQUEST_TYPES[signal]()
        if self._protocol is WireProtocol.PROTOBUF:
            request.ParseFromString(payload)
            return request
        data = _walk_hex_ids(json.loads(payload), _hex_to_base64)
        json_format.ParseDict(data, request)
        return request

    # ------------------------------------------------------------------
    # Request builders
    # ------------------------------------------------------------------

    def _build_traces(self, records: Sequence[TelemetryRecord]) -> tuple[Message, int, int]:
        groups: dict[_ResourceKey, tuple[PbResource, dict[_ScopeKey, tuple[InstrumentationScope, list[PbSpan]]]]] = {}
        resources: dict[_ResourceKey, PbResource] = {}
        encoded, dropped = 0, 0
        for record in records:
            try:
                if not isinstance(record, Span):
                    raise EncodingError(f"{type(record).__name__} cannot be sent on the traces signal")
                pb_span = self._span(record)
                resource = self._cached_resource(resources, record.resource)
            except EncodingError as e:
                dropped += 1
                self._log_dropped(record, e)
                continue
            self._scope_bucket(groups, record, resource).append(pb_span)
            encoded += 1

        request = ExportTraceServiceRequest(
            resource_spans=[
                ResourceSpans(
                    resource=pb_resource,
                    scope_spans=[ScopeSpans(scope=self._scope(scope), spans=spans) for scope, spans in scopes.values()],
                )
                for pb_resource, scopes in groups.values()
            ]
        )
        return request, encoded, dropped

    def _build_metrics(self, records: Sequence[TelemetryRecord]) -> tuple[Message, int, int]:
        groups: dict[_ResourceKey, tuple[PbResource, dict[_ScopeKey, tuple[InstrumentationScope, list[Metric]]]]] = {}
        # Points of the same metric within a scope share one Metric message
        metrics_by_identity: dict[tuple[_ResourceKey, _ScopeKey, tuple[Any, ...]], Metric] = {}
        resources: dict[_ResourceKey, PbResource] = {}
        encoded, dropped = 0, 0
        for record in records:
            try:
                if not isinstance(record, MetricPoint):
                    raise EncodingError(f"{type(record).__name__} cannot be sent on the metrics signal")
                point = self._metric_point(record)
                resource = self._cached_resource(resources, record.resource)
            except EncodingError as e:
                dropped += 1
                self._log_dropped(record, e)
                continue

            identity = (
                _resource_key(record.resource),
                (record.scope.name, record.scope.version),
                (record.name, record.kind, record.unit, record.description, record.temporality, record.is_monotonic),
            )
            metric = metrics_by_identity.get(identity)
            if metric is None:
                metric = self._empty_metric(record)
                metrics_by_identity[identity] = metric
                self._scope_bucket(groups, record, resource).append(metric)
            self._append_point(metric, record.kind, point)
            encoded += 1

        request = ExportMetricsServiceRequest(
            resource_metrics=[
                ResourceMetrics(
                    resource=pb_resource,
                    scope_metrics=[ScopeMetrics(scope=self._scope(scope), metrics=metrics) for scope, metrics in scopes.values()],
                )
                for pb_resource, scopes in groups.values()
            ]
        )
        return request, encoded, dropped

    def _build_logs(self, records: Sequence[TelemetryRecord]) -> tuple[Message, int, int]:
        groups: dict[_ResourceKey, tuple[PbResource, dict[_ScopeKey, tuple[InstrumentationScope, list[PbLogRecord]]]]] = {}
        resources: dict[_ResourceKey, PbResource] = {}
        encoded, dropped = 0, 0
        for record in records:
            try:
                if not isinstance(record, LogRecord):
                    raise EncodingError(f"{type(record).__name__} cannot be sent on the logs signal")
                pb_log = self._log_record(record)
                resource = self._cached_resource(resources, record.resource)
            except EncodingError as e:
                dropped += 1
                self._log_dropped(record, e)
                continue
            self._scope_bucket(groups, record, resource).append(pb_log)
            encoded += 1

        request = ExportLogsServiceRequest(
            resource_logs=[
                ResourceLogs(
                    resource=pb_resource,
                    scope_logs=[ScopeLogs(scope=self._scope(scope), log_records=logs) for scope, logs in scopes.values()],
                )
                for pb_resource, scopes in groups.values()
            ]
        )
        return request, encoded, dropped

    @staticmethod
    def _scope_bucket(groups: dict[Any, Any], record: TelemetryRecord, resource: PbResource) -> list[Any]:
        """Return the list collecting items for record's (resource, scope), creating it if needed."""
        resource_key = _resource_key(record.resource)
        if resource_key not in groups:
            groups[resource_key] = (resource, {})
        scopes = groups[resource_key][1]
        scope_key = (record.scope.name, record.scope.version)
        if scope_key not in scopes:
            scopes[scope_key] = (record.scope, [])
        return scopes[scope_key][1]

    # ------------------------------------------------------------------
    # Record converters
    # ------------------------------------------------------------------

    def _span(self, span: Span) -> PbSpan:
        return PbSpan(
            trace_id=span.trace_id,
            span_id=span.span_id,
            parent_span_id=span.parent_span_id or b"",
            name=span.name,
            kind=int(span.kind),
            start_time_unix_nano=span.start_time_ns,
            end_time_unix_nano=span.end_time_ns,
            attributes=self._attributes(span.attributes),
            events=[
                PbSpan.Event(
                    time_unix_nano=event.timestamp_ns,
                    name=event.name,
                    attributes=self._attributes(event.attributes),
                )
                for event in span.events
            ],
            status=Status(code=int(span.status), message=span.status_message),
        )

    def _metric_point(self, point: MetricPoint) -> NumberDataPoint | HistogramDataPoint:
        attributes = self._attributes(point.attributes)
        if point.kind is MetricKind.HISTOGRAM:
            dist = point.distribution
            assert dist is not None  # MetricPoint validates this at construction
            optional: dict[str, float] = {}
            if dist.min is not None:
                optional["min"] = self._double(dist.min)
            if dist.max is not None:
                optional["max"] = self._double(dist.max)
            return HistogramDataPoint(
                attributes=attributes,
                start_time_unix_nano=point.start_time_ns,
                time_unix_nano=point.timestamp_ns,
                count=dist.count,
                sum=self._double(dist.sum),
                bucket_counts=list(dist.bucket_counts),
                explicit_bounds=[self._double(bound) for bound in dist.bounds],
                **optional,
            )

        data_point = NumberDataPoint(
            attributes=attributes,
            start_time_unix_nano=point.start_time_ns,
            time_unix_nano=point.timestamp_ns,
        )
        if isinstance(point.value, int):
            data_point.as_int = self._int64(point.value)
        elif isinstance(point.value, float):
            data_point.as_double = self._double(point.value)
        else:
            raise EncodingError(f"Metric '{point.name}' value {point.value!r} is not a number")
        return data_point

    @staticmethod
    def _empty_metric(point: MetricPoint) -> Metric:
        metric = Metric(name=point.name, unit=point.unit, description=point.description)
        match point.kind:
            case MetricKind.COUNTER:
                metric.sum.aggregation_temporality = int(point.temporality)
                metric.sum.is_monotonic = point.is_monotonic
            case MetricKind.GAUGE:
                metric.gauge.SetInParent()
            case MetricKind.HISTOGRAM:
                metric.histogram.aggregation_temporality = int(point.temporality)
        return metric

    @staticmethod
    def _append_point(metric: Metric, kind: MetricKind, point: NumberDataPoint | HistogramDataPoint) -> None:
        container: Sum | Gauge | Histogram
        match kind:
            case MetricKind.COUNTER:
                container = metric.sum
            case MetricKind.GAUGE:
                container = metric.gauge
            case MetricKind.HISTOGRAM:
                container = metric.histogram
        container.data_points.append(point)

    def _log_record(self, record: LogRecord) -> PbLogRecord:
        return PbLogRecord(
            time_unix_nano=record.timestamp_ns,
            observed_time_unix_nano=record.observed_time_ns if record.observed_time_ns is not None else record.timestamp_ns,
            severity_number=int(record.severity),
            severity_text=record.severity_text or record.severity.name,
            body=AnyValue(string_value=record.body),
            attributes=self._attributes(record.attributes),
            trace_id=record.trace_id or b"",
            span_id=record.span_id or b"",
        )

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def _resource(self, attributes: Mapping[str, Any]) -> PbResource:
        return PbResource(attributes=self._attributes(attributes))

    def _cached_resource(self, cache: dict[_ResourceKey, PbResource], attributes: Mapping[str, Any]) -> PbResource:
        """Convert a resource once per distinct attribute set.

        Raises EncodingError for the record carrying it, like any other
        attribute; a failed conversion is not cached, so every record with
        the same resource is dropped on its own.
        """
        key = _resource_key(attributes)
        if key not in cache:
            cache[key] = self._resource(attributes)
        return cache[key]

    @staticmethod
    def _scope(scope: InstrumentationScope) -> PbInstrumentationScope:
        return PbInstrumentationScope(name=scope.name, version=scope.version or "")

    def _attributes(self, attributes: Mapping[str, Any]) -> list[KeyValue]:
        # None-valued attributes carry no information; skip them
        return [KeyValue(key=key, value=self._any_value(value)) for key, value in attributes.items() if value is not None]

    def _any_value(self, value: Any) -> AnyValue:
        # bool before int: bool is an int subclass
        if isinstance(value, bool):
            return AnyValue(bool_value=value)
        if isinstance(value, int):
            return AnyValue(int_value=self._int64(value))
        if isinstance(value, float):
            return AnyValue(double_value=self._double(value))
        if isinstance(value, str):
            return AnyValue(string_value=value)
        if isinstance(value, bytes):
            return AnyValue(bytes_value=value)
        if isinstance(value, Mapping):
            return AnyValue(kvlist_value=KeyValueList(values=self._attributes(value)))
        if isinstance(value, Sequence):
            return AnyValue(array_value=ArrayValue(values=[self._any_value(item) for item in value]))
        raise EncodingError(f"Unsupported attribute value type {type(value).__name__}: {value!r}")

    @staticmethod
    def _int64(value: int) -> int:
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise EncodingError(f"Integer {value} is outside the int64 range")
        return value

    def _double(self, value: float) -> float:
        # proto3 JSON spells non-finite doubles as strings, which OTLP/JSON
        # receivers do not accept; binary protobuf carries them natively.
        if self._protocol is WireProtocol.JSON and not math.isfinite(value):
            raise EncodingError(f"Non-finite float {value!r} cannot be encoded as OTLP/JSON")
        return float(value)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def _serialize(self, request: Message) -> bytes:
        if self._protocol is WireProtocol.PROTOBUF:
            return request.SerializeToString()
        data = json_format.MessageToDict(request, use_integers_for_enums=True)
        return json.dumps(_walk_hex_ids(data, _base64_to_hex), separators=(",", ":")).encode("utf-8")

    @staticmethod
    def _log_dropped(record: TelemetryRecord, error: EncodingError) -> None:
        logger.warning(
            "Dropping record that cannot be encoded",
            record_type=type(record).__name__,
            error=str(error),
        )
