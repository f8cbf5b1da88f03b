# tests/unit/contracts/test_records.py
"""Tests for the telemetry record model.

Tests cover:
- Id validation (length, non-zero) at construction
- Immutability of records, attribute mappings and events
- Histogram distribution validation and bucketing
- Metric kind/value consistency
"""

from dataclasses import MISSING, FrozenInstanceError, fields
from types import MappingProxyType

import pytest
from hypothesis import given
from hypothesis import strategies as st

from otelferry.contracts import (
    Batch,
    HistogramDistribution,
    LogRecord,
    MetricKind,
    MetricPoint,
    Signal,
    Span,
    SpanEvent,
    new_span_id,
    new_trace_id,
)
from otelferry.contracts.records import TelemetryRecord
from tests.conftest import SPAN_ID, TRACE_ID, make_log, make_metric, make_span


class TestIds:
    """Trace and span id validation."""

    def test_generated_ids_have_otlp_lengths(self) -> None:
        assert len(new_trace_id()) == 16
        assert len(new_span_id()) == 8

    def test_generated_ids_are_non_zero(self) -> None:
        for _ in range(50):
            assert any(new_trace_id())
            assert any(new_span_id())

    @pytest.mark.parametrize("trace_id", [b"\x01" * 15, b"\x01" * 17, b""])
    def test_span_rejects_wrong_trace_id_length(self, trace_id: bytes) -> None:
        with pytest.raises(ValueError, match="trace_id must be 16 bytes"):
            make_span(trace_id=trace_id)

    def test_span_rejects_all_zero_span_id(self) -> None:
        with pytest.raises(ValueError, match="span_id must not be all zeros"):
            make_span(span_id=bytes(8))

    def test_span_rejects_bad_parent_span_id(self) -> None:
        with pytest.raises(ValueError, match="parent_span_id"):
            make_span(parent_span_id=b"\x01\x02")

    def test_log_correlation_ids_are_optional(self) -> None:
        record = make_log()
        assert record.trace_id is None
        assert record.span_id is None

    def test_log_rejects_short_trace_id(self) -> None:
        with pytest.raises(ValueError, match="trace_id"):
            make_log(trace_id=b"\x01" * 8)

    def test_hex_string_id_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            make_span(trace_id=TRACE_ID.hex())  # type: ignore[arg-type]


class TestImmutability:
    """Records are frozen once constructed."""

    def test_span_fields_cannot_be_reassigned(self) -> None:
        span = make_span()
        with pytest.raises(FrozenInstanceError):
            span.name = "changed"  # type: ignore[misc]

    def test_attributes_are_read_only_copies(self) -> None:
        source = {"http.route": "/cart", "tags": ["a", "b"]}
        span = make_span(attributes=source)
        source["http.route"] = "/mutated"

        assert span.attributes["http.route"] == "/cart"
        assert isinstance(span.attributes, MappingProxyType)
        with pytest.raises(TypeError):
            span.attributes["new"] = 1  # type: ignore[index]

    def test_list_attribute_values_become_tuples(self) -> None:
        span = make_span(attributes={"tags": ["a", "b"]})
        assert span.attributes["tags"] == ("a", "b")

    def test_events_become_tuple(self) -> None:
        events = [SpanEvent(name="retry", timestamp_ns=1)]
        span = make_span(events=events)
        events.append(SpanEvent(name="late", timestamp_ns=2))
        assert span.events == (SpanEvent(name="retry", timestamp_ns=1),)

    def test_resource_is_frozen(self) -> None:
        resource = {"service.name": "checkout"}
        record = make_log(resource=resource)
        resource["service.name"] = "other"
        assert record.resource["service.name"] == "checkout"

    @pytest.mark.parametrize("record_type", [TelemetryRecord, SpanEvent, Span, MetricPoint, LogRecord])
    def test_mapping_defaults_use_factories(self, record_type: type) -> None:
        # mappingproxy is unhashable before 3.12 and so cannot be a plain field default
        mapping_fields = [f for f in fields(record_type) if f.name in ("resource", "attributes")]
        assert mapping_fields
        for f in mapping_fields:
            assert f.default is MISSING
            assert f.default_factory is not MISSING

    def test_default_attributes_are_empty_and_read_only(self) -> None:
        event = SpanEvent(name="retry", timestamp_ns=1)
        assert dict(event.attributes) == {}
        with pytest.raises(TypeError):
            event.attributes["k"] = "v"  # type: ignore[index]


class TestSpan:
    def test_signal_is_traces(self) -> None:
        assert make_span().signal is Signal.TRACES

    def test_duration(self) -> None:
        span = make_span(start_time_ns=100, end_time_ns=350)
        assert span.duration_ns == 250

    def test_end_before_start_rejected(self) -> None:
        with pytest.raises(ValueError, match="ends before it starts"):
            make_span(start_time_ns=200, end_time_ns=100)

    def test_negative_timestamp_rejected(self) -> None:
        with pytest.raises(ValueError, match="timestamp_ns"):
            make_span(timestamp_ns=-1)

    def test_timestamp_defaults_to_now(self) -> None:
        span = Span(trace_id=TRACE_ID, span_id=SPAN_ID, name="x", start_time_ns=0, end_time_ns=0)
        assert span.timestamp_ns > 1_600_000_000_000_000_000


class TestMetricPoint:
    def test_signal_is_metrics(self) -> None:
        assert make_metric().signal is Signal.METRICS

    def test_counter_requires_value(self) -> None:
        with pytest.raises(ValueError, match="requires a numeric value"):
            MetricPoint(name="requests", kind=MetricKind.COUNTER)

    def test_bool_value_rejected(self) -> None:
        with pytest.raises(ValueError, match="requires a numeric value"):
            make_metric(value=True)

    def test_histogram_requires_distribution(self) -> None:
        with pytest.raises(ValueError, match="requires a distribution"):
            MetricPoint(name="latency", kind=MetricKind.HISTOGRAM)

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError, match="name cannot be empty"):
            make_metric(name="")


class TestHistogramDistribution:
    def test_bucket_count_must_exceed_bounds_by_one(self) -> None:
        with pytest.raises(ValueError, match="Expected 3 bucket counts"):
            HistogramDistribution(bounds=(1.0, 2.0), bucket_counts=(1, 1), count=2, sum=3.0)

    def test_bounds_must_increase(self) -> None:
        with pytest.raises(ValueError, match="strictly increasing"):
            HistogramDistribution(bounds=(2.0, 1.0), bucket_counts=(0, 0, 0), count=0, sum=0.0)

    def test_count_must_match_buckets(self) -> None:
        with pytest.raises(ValueError, match="does not match bucket total"):
            HistogramDistribution(bounds=(1.0,), bucket_counts=(1, 1), count=3, sum=0.0)

    def test_from_values_buckets_inclusive_upper_bound(self) -> None:
        dist = HistogramDistribution.from_values([0.5, 1.0, 1.5, 10.0], bounds=[1.0, 5.0])
        assert dist.bucket_counts == (2, 1, 1)
        assert dist.count == 4
        assert dist.sum == 13.0
        assert dist.min == 0.5
        assert dist.max == 10.0

    @given(values=st.lists(st.floats(min_value=-1e6, max_value=1e6, allow_nan=False), max_size=50))
    def test_from_values_counts_every_value(self, values: list[float]) -> None:
        dist = HistogramDistribution.from_values(values, bounds=[-10.0, 0.0, 10.0])
        assert sum(dist.bucket_counts) == len(values) == dist.count


class TestLogRecordAndBatch:
    def test_log_signal_is_logs(self) -> None:
        assert isinstance(make_log(), LogRecord)
        assert make_log().signal is Signal.LOGS

    def test_batch_length_is_record_count(self) -> None:
        batch = Batch(sequence=1, signal=Signal.LOGS, records=(make_log("a"), make_log("b")))
        assert len(batch) == 2
        assert batch.requeued is False
