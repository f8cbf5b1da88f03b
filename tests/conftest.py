# tests/conftest.py
"""Shared test fixtures and helpers.

Record Factories:
- make_span / make_log / make_metric: valid records with overridable fields
- make_config: RuntimeExportConfig.default() with overrides

Test Doubles:
- RecordingExporter: ExporterProtocol implementation that records every
  attempt and returns scripted results

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os
import sys
import threading
from collections.abc import Iterable, Iterator
from dataclasses import replace
from typing import Any

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from otelferry.contracts import (
    EncodedBatch,
    ExportResult,
    ExportSuccess,
    LogRecord,
    MetricKind,
    MetricPoint,
    RuntimeExportConfig,
    Severity,
    Span,
)

# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True)
def structlog_to_stderr() -> Iterator[None]:
    """Send otelferry's own diagnostics to stderr.

    Unconfigured structlog prints to stdout, which the console exporter
    owns for payloads.
    """
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))
    yield
    structlog.reset_defaults()


# =============================================================================
# Record Factories
# =============================================================================

TRACE_ID = bytes.fromhex("4bf92f3577b34da6a3ce929d0e0e4736")
SPAN_ID = bytes.fromhex("00f067aa0ba902b7")
PARENT_SPAN_ID = bytes.fromhex("53995c3f42cd8ad8")
RESOURCE = {"service.name": "checkout"}


def make_span(name: str = "GET /cart", **overrides: Any) -> Span:
    fields: dict[str, Any] = {
        "trace_id": TRACE_ID,
        "span_id": SPAN_ID,
        "name": name,
        "start_time_ns": 1_700_000_000_000_000_000,
        "end_time_ns": 1_700_000_000_250_000_000,
        "timestamp_ns": 1_700_000_000_250_000_000,
        "resource": RESOURCE,
    }
    fields.update(overrides)
    return Span(**fields)


def make_log(body: str = "hello", **overrides: Any) -> LogRecord:
    fields: dict[str, Any] = {
        "body": body,
        "severity": Severity.INFO,
        "timestamp_ns": 1_700_000_000_000_000_123,
        "resource": RESOURCE,
    }
    fields.update(overrides)
    return LogRecord(**fields)


def make_metric(name: str = "http.server.requests", value: int | float = 1, **overrides: Any) -> MetricPoint:
    fields: dict[str, Any] = {
        "name": name,
        "kind": MetricKind.COUNTER,
        "value": value,
        "timestamp_ns": 1_700_000_000_000_000_456,
        "resource": RESOURCE,
    }
    fields.update(overrides)
    return MetricPoint(**fields)


def make_config(**overrides: Any) -> RuntimeExportConfig:
    """Default runtime config with field overrides (retry may be a RetryConfig)."""
    return replace(RuntimeExportConfig.default(), **overrides)


# =============================================================================
# Test Doubles
# =============================================================================


class RecordingExporter:
    """Exporter that records attempts and replays scripted results.

    Results are consumed in order; once the script runs out every attempt
    succeeds. Thread-safe enough for the single export thread plus a test
    thread reading ``batches``.
    """

    _name = "recording"

    def __init__(self, results: Iterable[ExportResult] = ()) -> None:
        self._results = list(results)
        self._lock = threading.Lock()
        self.batches: list[EncodedBatch] = []
        self.timeouts: list[float | None] = []
        self.configured_with: dict[str, Any] | None = None
        self.close_count = 0

    @property
    def name(self) -> str:
        return self._name

    def configure(self, config: dict[str, Any]) -> None:
        self.configured_with = config

    def export(self, batch: EncodedBatch, *, timeout: float | None = None) -> ExportResult:
        with self._lock:
            self.batches.append(batch)
            self.timeouts.append(timeout)
            if self._results:
                return self._results.pop(0)
        return ExportSuccess(status_code=200)

    def close(self) -> None:
        self.close_count += 1

    @property
    def sequences(self) -> list[int]:
        with self._lock:
            return [batch.sequence for batch in self.batches]

    @property
    def record_total(self) -> int:
        with self._lock:
            return sum(batch.record_count for batch in self.batches)


@pytest.fixture
def exporter() -> RecordingExporter:
    return RecordingExporter()
