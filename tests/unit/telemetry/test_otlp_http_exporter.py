# tests/unit/telemetry/test_otlp_http_exporter.py
"""Tests for OTLPHttpExporter.

HTTP is mocked with respx; every test drives a real httpx.Client through
the exporter so request construction and response classification are both
exercised.
"""

import gzip

import httpx
import pytest
import respx

from otelferry.contracts import (
    EncodedBatch,
    ExportSuccess,
    FatalFailure,
    RetryableFailure,
    Signal,
    WireProtocol,
)
from otelferry.telemetry.errors import RejectedPayloadError, TelemetryExporterError, TransportError
from otelferry.telemetry.exporters.otlp_http import (
    BATCH_SEQUENCE_HEADER,
    OTLPHttpExporter,
    parse_retry_after,
)

ENDPOINT = "http://collector.test:4318"


def encoded(signal: Signal = Signal.TRACES, sequence: int = 1, payload: bytes = b"\x0a\x00") -> EncodedBatch:
    return EncodedBatch(
        sequence=sequence,
        signal=signal,
        payload=payload,
        content_type=WireProtocol.PROTOBUF.content_type,
        record_count=1,
    )


@pytest.fixture
def exporter():
    exp = OTLPHttpExporter()
    exp.configure({"endpoint": ENDPOINT})
    yield exp
    exp.close()


# =============================================================================
# Configuration
# =============================================================================


class TestConfigure:
    def test_name(self) -> None:
        assert OTLPHttpExporter().name == "otlp_http"

    def test_missing_endpoint(self) -> None:
        with pytest.raises(TelemetryExporterError, match="requires 'endpoint'"):
            OTLPHttpExporter().configure({})

    @pytest.mark.parametrize("endpoint", ["collector:4318", "ftp://collector", 4318])
    def test_endpoint_must_be_http_url(self, endpoint) -> None:
        with pytest.raises(TelemetryExporterError, match="http\\(s\\) URL"):
            OTLPHttpExporter().configure({"endpoint": endpoint})

    def test_headers_must_be_mapping(self) -> None:
        with pytest.raises(TelemetryExporterError, match="'headers' must be a mapping"):
            OTLPHttpExporter().configure({"endpoint": ENDPOINT, "headers": ["Authorization"]})

    @pytest.mark.parametrize("timeout", [0, -1, "10"])
    def test_timeout_must_be_positive_number(self, timeout) -> None:
        with pytest.raises(TelemetryExporterError, match="timeout"):
            OTLPHttpExporter().configure({"endpoint": ENDPOINT, "timeout": timeout})

    def test_invalid_compression(self) -> None:
        with pytest.raises(TelemetryExporterError, match="Invalid compression"):
            OTLPHttpExporter().configure({"endpoint": ENDPOINT, "compression": "zstd"})

    def test_trailing_slash_is_stripped(self) -> None:
        exp = OTLPHttpExporter()
        exp.configure({"endpoint": ENDPOINT + "/"})
        try:
            assert exp.endpoint == ENDPOINT
            assert exp.url_for(encoded(Signal.LOGS)) == f"{ENDPOINT}/v1/logs"
        finally:
            exp.close()

    def test_export_before_configure_is_fatal(self) -> None:
        result = OTLPHttpExporter().export(encoded())
        assert isinstance(result, FatalFailure)
        assert "not configured" in result.reason


# =============================================================================
# Request construction
# =============================================================================


class TestRequest:
    @respx.mock
    @pytest.mark.parametrize("signal", list(Signal))
    def test_posts_to_signal_path(self, exporter: OTLPHttpExporter, signal: Signal) -> None:
        route = respx.post(f"{ENDPOINT}/v1/{signal.value}").mock(return_value=httpx.Response(200))

        result = exporter.export(encoded(signal))

        assert route.called
        assert result == ExportSuccess(status_code=200)

    @respx.mock
    def test_sends_content_type_sequence_and_configured_headers(self) -> None:
        route = respx.post(f"{ENDPOINT}/v1/traces").mock(return_value=httpx.Response(200))
        exp = OTLPHttpExporter()
        exp.configure({"endpoint": ENDPOINT, "headers": {"Authorization": "Bearer t0k3n"}})

        exp.export(encoded(sequence=42, payload=b"payload"))
        exp.close()

        request = route.calls.last.request
        assert request.headers["Content-Type"] == "application/x-protobuf"
        assert request.headers[BATCH_SEQUENCE_HEADER] == "42"
        assert request.headers["Authorization"] == "Bearer t0k3n"
        assert "Content-Encoding" not in request.headers
        assert request.content == b"payload"

    @respx.mock
    def test_gzip_compression(self) -> None:
        route = respx.post(f"{ENDPOINT}/v1/traces").mock(return_value=httpx.Response(200))
        exp = OTLPHttpExporter()
        exp.configure({"endpoint": ENDPOINT, "compression": "gzip"})

        exp.export(encoded(payload=b"some protobuf bytes"))
        exp.close()

        request = route.calls.last.request
        assert request.headers["Content-Encoding"] == "gzip"
        assert gzip.decompress(request.content) == b"some protobuf bytes"


# =============================================================================
# Response classification
# =============================================================================


class TestClassification:
    @respx.mock
    @pytest.mark.parametrize("status", [200, 202, 204])
    def test_2xx_is_success(self, exporter: OTLPHttpExporter, status: int) -> None:
        respx.post(f"{ENDPOINT}/v1/traces").mock(return_value=httpx.Response(status))
        assert exporter.export(encoded()) == ExportSuccess(status_code=status)

    @respx.mock
    @pytest.mark.parametrize("status", [429, 502, 503, 504])
    def test_throttling_and_gateway_errors_are_retryable(self, exporter: OTLPHttpExporter, status: int) -> None:
        respx.post(f"{ENDPOINT}/v1/traces").mock(return_value=httpx.Response(status, text="busy"))

        result = exporter.export(encoded())

        assert isinstance(result, RetryableFailure)
        assert result.status_code == status
        assert result.retry_after is None
        assert "busy" in result.reason

    @respx.mock
    def test_retry_after_is_honoured(self, exporter: OTLPHttpExporter) -> None:
        respx.post(f"{ENDPOINT}/v1/traces").mock(return_value=httpx.Response(429, headers={"Retry-After": "7"}))

        result = exporter.export(encoded())

        assert isinstance(result, RetryableFailure)
        assert result.retry_after == 7.0

    @respx.mock
    @pytest.mark.parametrize("status", [400, 401, 404, 413, 500])
    def test_other_statuses_are_fatal(self, exporter: OTLPHttpExporter, status: int) -> None:
        respx.post(f"{ENDPOINT}/v1/traces").mock(return_value=httpx.Response(status, text="bad payload"))

        result = exporter.export(encoded())

        assert isinstance(result, FatalFailure)
        assert result.status_code == status
        assert isinstance(result.error, RejectedPayloadError)
        assert result.error.detail == "bad payload"

    @respx.mock
    def test_reason_truncates_large_bodies(self, exporter: OTLPHttpExporter) -> None:
        respx.post(f"{ENDPOINT}/v1/traces").mock(return_value=httpx.Response(400, text="x" * 5000))

        result = exporter.export(encoded())

        assert isinstance(result, FatalFailure)
        assert len(result.error.detail) == 200  # type: ignore[union-attr]

    @respx.mock
    def test_connection_error_is_retryable(self, exporter: OTLPHttpExporter) -> None:
        respx.post(f"{ENDPOINT}/v1/traces").mock(side_effect=httpx.ConnectError("Connection refused"))

        result = exporter.export(encoded())

        assert isinstance(result, RetryableFailure)
        assert result.status_code is None
        assert isinstance(result.error, TransportError)
        assert "ConnectError" in result.reason

    @respx.mock
    def test_timeout_is_retryable(self, exporter: OTLPHttpExporter) -> None:
        respx.post(f"{ENDPOINT}/v1/traces").mock(side_effect=httpx.ReadTimeout("timed out"))

        assert isinstance(exporter.export(encoded(), timeout=0.5), RetryableFailure)


class TestParseRetryAfter:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("5", 5.0),
            (" 1.5 ", 1.5),
            ("0", 0.0),
            (None, None),
            ("-3", None),
            ("soon", None),
            ("Wed, 21 Oct 2015 07:28:00 GMT", None),
        ],
    )
    def test_values(self, value, expected) -> None:
        assert parse_retry_after(value) == expected


class TestClose:
    def test_close_is_idempotent(self) -> None:
        exp = OTLPHttpExporter()
        exp.configure({"endpoint": ENDPOINT})
        exp.close()
        exp.close()
        assert isinstance(exp.export(encoded()), FatalFailure)
