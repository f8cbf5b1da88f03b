# src/otelferry/telemetry/buffer.py
"""Bounded buffer for telemetry record batching.

Producers push records from request-handling threads; the export thread
drains them in sequence-numbered batches.

Key design decisions:
- Single lock guards the deque; a Condition on the same lock parks
  producers under the block-with-timeout policy until a drain frees space
- push() never raises: a full buffer is resolved by the overflow policy
- Sequence numbers are assigned at drain time, so an empty drain consumes
  no number and numbers have no gaps
- Requeued batches sit ahead of newer records and keep their sequence number
- Aggregate logging: Log every 100 drops to prevent Warning Fatigue
"""

import itertools
import threading
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import replace

import structlog

from otelferry.contracts.config import get_internal_default
from otelferry.contracts.enums import OverflowPolicy, Signal
from otelferry.contracts.records import Batch, TelemetryRecord
from otelferry.telemetry.diagnostics import RECORDS_DROPPED, ExportDiagnostics
from otelferry.telemetry.errors import BufferOverflowError

logger = structlog.get_logger(__name__)


class BatchBuffer:
    """Bounded FIFO of records for one signal.

    Thread Safety:
        push() and close() are safe from any thread. drain(), requeue()
        and clear() must be called from a single consumer (the export
        thread), which is what keeps batch order and sequence numbers
        consistent.

    Attributes:
        dropped_count: Total number of records dropped by this buffer.

    Example:
        buffer = BatchBuffer(Signal.TRACES, max_size=1000)
        buffer.push(span)
        batch = buffer.drain(max_batch_size=100)
    """

    # Log aggregate metrics every N drops to avoid Warning Fatigue
    _LOG_INTERVAL = int(get_internal_default("buffer", "drop_log_interval"))

    def __init__(
        self,
        signal: Signal,
        max_size: int = 2_048,
        *,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        block_timeout: float = 0.1,
        diagnostics: ExportDiagnostics | None = None,
        sequence: Iterator[int] | None = None,
        on_full: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the buffer.

        Args:
            signal: Signal of the records this buffer holds (stamped on batches)
            max_size: Capacity in records, including requeued batches
            overflow_policy: What push() does when the buffer is full
            block_timeout: Seconds a producer may wait under BLOCK_WITH_TIMEOUT
            diagnostics: Counters to report drops into; a private set if None
            sequence: Source of batch sequence numbers. Share one iterator
                between buffers to number batches per exporter rather than
                per buffer. Defaults to 1, 2, 3, ...
            on_full: Called (outside the lock) when a push brings the
                buffer to capacity; the pipeline uses it to trigger an
                immediate drain

        Raises:
            ValueError: If max_size < 1 or block_timeout < 0.
        """
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        if block_timeout < 0:
            raise ValueError(f"block_timeout must be >= 0, got {block_timeout}")
        self._signal = signal
        self._max_size = max_size
        self._overflow_policy = overflow_policy
        self._block_timeout = block_timeout
        self._diagnostics = diagnostics if diagnostics is not None else ExportDiagnostics()
        self._sequence = sequence if sequence is not None else itertools.count(1)
        self._on_full = on_full

        self._lock = threading.Lock()
        self._not_full = threading.Condition(self._lock)
        self._records: deque[TelemetryRecord] = deque()
        self._requeued: deque[Batch] = deque()
        self._requeued_count = 0
        self._dropped_count = 0
        self._last_logged_drop_count = 0
        self._closed = False

    def push(self, record: TelemetryRecord) -> bool:
        """Append a record, applying the overflow policy if the buffer is full.

        Never raises. Records pushed after close() are dropped. Dropped
        records are counted in ``dropped_count`` and the ``records.dropped``
        diagnostic.

        Args:
            record: The record to buffer.

        Returns:
            True if the record was buffered, False if it was dropped.
        """
        with self._lock:
            if self._closed:
                self._record_drops(1)
                return False
            try:
                self._offer(record)
            except BufferOverflowError:
                if not self._resolve_overflow(record):
                    self._record_drops(1)
                    return False
            reached_capacity = self._size() >= self._max_size

        if reached_capacity and self._on_full is not None:
            self._on_full()
        return True

    def _offer(self, record: TelemetryRecord) -> None:
        """Append if there is room. Caller holds the lock."""
        if self._size() >= self._max_size:
            raise BufferOverflowError(self._max_size)
        self._records.append(record)

    def _resolve_overflow(self, record: TelemetryRecord) -> bool:
        """Apply the overflow policy to a record that did not fit. Caller holds the lock.

        Returns:
            True if the record ended up in the buffer.
        """
        match self._overflow_policy:
            case OverflowPolicy.DROP_NEWEST:
                return False

            case OverflowPolicy.DROP_OLDEST:
                # Requeued batches are not evicted; if they fill the whole
                # buffer there is nothing older to drop.
                if not self._records:
                    return False
                self._records.popleft()
                self._record_drops(1)
                self._records.append(record)
                return True

            case OverflowPolicy.BLOCK_WITH_TIMEOUT:
                has_room = self._not_full.wait_for(
                    lambda: self._closed or self._size() < self._max_size,
                    timeout=self._block_timeout,
                )
                if not has_room or self._closed:
                    return False
                self._records.append(record)
                return True

        raise AssertionError(f"Unhandled overflow policy: {self._overflow_policy!r}")  # pragma: no cover

    def drain(self, max_batch_size: int) -> Batch | None:
        """Remove up to max_batch_size records as one Batch.

        A previously requeued batch is returned first, unchanged. Otherwise
        records are taken in insertion order and stamped with the next
        sequence number.

        Args:
            max_batch_size: Maximum number of records in the batch.

        Returns:
            The batch, or None if the buffer is empty.
        """
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")
        with self._lock:
            if self._requeued:
                batch = self._requeued.popleft()
                self._requeued_count -= len(batch)
                self._not_full.notify_all()
                return batch

            if not self._records:
                return None

            count = min(max_batch_size, len(self._records))
            records = tuple(self._records.popleft() for _ in range(count))
            self._not_full.notify_all()
            return Batch(sequence=next(self._sequence), signal=self._signal, records=records)

    def requeue(self, batch: Batch) -> bool:
        """Put a failed batch back at the front of the buffer.

        Each batch may be requeued once. A second requeue, or one that
        would push the buffer past capacity, is refused and the caller is
        responsible for counting the records as dropped.

        Args:
            batch: A batch previously returned by drain().

        Returns:
            True if the batch was requeued.
        """
        if batch.requeued:
            return False
        with self._lock:
            if self._size() + len(batch) > self._max_size:
                return False
            self._requeued.append(replace(batch, requeued=True))
            self._requeued_count += len(batch)
            return True

    def close(self) -> None:
        """Refuse further pushes. drain() still returns what is buffered.

        Records pushed after close() are dropped and counted in the
        ``records.dropped`` diagnostic, and producers parked under
        block-with-timeout are woken and refused.
        """
        with self._lock:
            self._closed = True
            self._not_full.notify_all()

    def clear(self) -> int:
        """Discard everything buffered.

        Returns:
            Number of records discarded. The caller decides how to count them.
        """
        with self._lock:
            discarded = self._size()
            self._records.clear()
            self._requeued.clear()
            self._requeued_count = 0
            self._not_full.notify_all()
            return discarded

    def _size(self) -> int:
        return len(self._records) + self._requeued_count

    def _record_drops(self, count: int) -> None:
        """Count dropped records, logging in aggregate. Caller holds the lock."""
        self._dropped_count += count
        self._diagnostics.increment(RECORDS_DROPPED, count)

        if self._dropped_count - self._last_logged_drop_count >= self._LOG_INTERVAL:
            logger.warning(
                "Telemetry buffer overflow - records dropped",
                signal=self._signal.value,
                dropped_since_last_log=self._dropped_count - self._last_logged_drop_count,
                dropped_total=self._dropped_count,
                buffer_size=self._max_size,
                overflow_policy=self._overflow_policy.value,
                hint="Consider increasing max_queue_size or shortening export_interval_ms",
            )
            self._last_logged_drop_count = self._dropped_count

    @property
    def signal(self) -> Signal:
        return self._signal

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def dropped_count(self) -> int:
        """Number of records dropped due to overflow or after close()."""
        with self._lock:
            return self._dropped_count

    def __len__(self) -> int:
        """Return the current number of buffered records (requeued included)."""
        with self._lock:
            return self._size()
