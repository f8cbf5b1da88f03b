# src/otelferry/telemetry/diagnostics.py
"""Diagnostic counters for the export pipeline.

Failures inside the export path never reach producers; these counters are
how they become visible. They are exposed via
``ExportPipeline.health_metrics`` and logged when the pipeline shuts down.
"""

import threading
from collections.abc import Iterable

RECORDS_DROPPED = "records.dropped"
RECORDS_ENCODED = "records.encoded"
RECORDS_ENCODING_FAILED = "records.encoding_failed"
BATCHES_EXPORTED_SUCCESS = "batches.exported.success"
BATCHES_EXPORTED_FAILED = "batches.exported.failed"
BATCHES_REQUEUED = "batches.requeued"
SHUTDOWN_TIMEOUTS = "shutdown.timeouts"

ALL_COUNTERS: tuple[str, ...] = (
    RECORDS_DROPPED,
    RECORDS_ENCODED,
    RECORDS_ENCODING_FAILED,
    BATCHES_EXPORTED_SUCCESS,
    BATCHES_EXPORTED_FAILED,
    BATCHES_REQUEUED,
    SHUTDOWN_TIMEOUTS,
)


class ExportDiagnostics:
    """Thread-safe named counters.

    Producers (drops on overflow) and the export thread (everything else)
    both write, so every update takes the lock.

    Example:
        diagnostics = ExportDiagnostics()
        diagnostics.increment(RECORDS_DROPPED, 3)
        diagnostics.snapshot()["records.dropped"]  # 3
    """

    def __init__(self, names: Iterable[str] = ALL_COUNTERS) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = dict.fromkeys(names, 0)

    def increment(self, name: str, amount: int = 1) -> None:
        """Add ``amount`` to counter ``name``.

        Raises:
            KeyError: If the counter was not declared (bug, not a runtime condition)
        """
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def snapshot(self) -> dict[str, int]:
        """Return a consistent copy of all counters."""
        with self._lock:
            return dict(self._counters)
