# src/otelferry/telemetry/pipeline.py
"""ExportPipeline drives records from producers to the exporter.

The ExportPipeline is the central hub of the client:
1. Receives records from application threads (record())
2. Filters them by enabled signal and log severity
3. Buffers them per signal in bounded BatchBuffers
4. Drains, encodes and exports batches from one background thread
5. Retries transient failures, requeueing or dropping exhausted batches
6. Flushes what it can within a bounded budget on shutdown

Design principles:
- Producers never see export failures: record() never raises
- Exactly one export thread, so batches leave in sequence order
- Aggregate logging every 100 failed batches (Warning Fatigue prevention)
- Shutdown never raises; a blown flush budget is stored as shutdown_error

Thread Safety:
    - record() is called from any number of producer threads
    - _export_loop() runs in the background export thread, which is the
      only thread that drains buffers or calls the exporter
    - Counters live in ExportDiagnostics, which locks internally
    - State transitions are protected by _state_lock
"""

import itertools
import threading
import time
from collections.abc import Callable
from typing import Any

import structlog

from otelferry.contracts.config import RuntimeExportConfig, get_internal_default
from otelferry.contracts.enums import PipelineState, RetryExhaustedPolicy, Signal
from otelferry.contracts.records import Batch, EncodedBatch, TelemetryRecord
from otelferry.contracts.results import ExportSuccess, FatalFailure, RetryableFailure
from otelferry.telemetry.buffer import BatchBuffer
from otelferry.telemetry.diagnostics import (
    BATCHES_EXPORTED_FAILED,
    BATCHES_EXPORTED_SUCCESS,
    BATCHES_REQUEUED,
    RECORDS_DROPPED,
    RECORDS_ENCODED,
    RECORDS_ENCODING_FAILED,
    SHUTDOWN_TIMEOUTS,
    ExportDiagnostics,
)
from otelferry.telemetry.encoding import OTLPEncoder
from otelferry.telemetry.errors import ShutdownTimeoutError
from otelferry.telemetry.filtering import should_export
from otelferry.telemetry.protocols import ExporterProtocol
from otelferry.telemetry.retry import RetryingSender

logger = structlog.get_logger(__name__)


class ExportPipeline:
    """Buffers records and exports them from a background thread.

    Triggers:
    - Timer: every export_interval the export thread drains all buffers
    - Size: a push that fills a buffer wakes the thread immediately
    - force_flush(): wakes the thread and waits for the cycle to finish

    Failure handling:
    - Retryable failures are retried by RetryingSender with backoff
    - Exhausted batches are requeued once (retry policy "requeue") or
      dropped (retry policy "drop")
    - Fatal failures drop the batch immediately
    - Everything is counted in health_metrics

    Example:
        >>> pipeline = ExportPipeline(config, exporter)
        >>> pipeline.record(span)
        >>> pipeline.force_flush()
        >>> pipeline.shutdown()
    """

    _LOG_INTERVAL = 100  # Log every 100 failed batches

    def __init__(
        self,
        config: RuntimeExportConfig,
        exporter: ExporterProtocol,
        *,
        encoder: OTLPEncoder | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the pipeline and start the export thread.

        Args:
            config: Runtime export configuration
            exporter: A configured exporter; the pipeline closes it on shutdown
            encoder: Encoder to use; defaults to one for config.protocol
            clock: Monotonic clock for the shutdown deadline
        """
        self._config = config
        self._exporter = exporter
        self._encoder = encoder if encoder is not None else OTLPEncoder(config.protocol)
        self._clock = clock
        self._diagnostics = ExportDiagnostics()

        # Thread coordination
        self._state_lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._shutdown_event = threading.Event()
        self._wake_event = threading.Event()
        self._export_thread_ready = threading.Event()  # Signals thread is running
        self._deadline: float | None = None  # Set once, by shutdown()

        # force_flush() bookkeeping: requests issued vs. requests served
        self._flush_cond = threading.Condition()
        self._flush_requests = 0
        self._flushes_served = 0

        # Export-thread-only state
        self._requeued_payloads: dict[tuple[Signal, int], EncodedBatch] = {}
        self._discarded_in_flight = 0
        self._failed_batches = 0
        self._last_logged_failure_count = 0

        self.shutdown_error: ShutdownTimeoutError | None = None

        # One sequence for every buffer: numbers are per exporter, not per signal
        sequence = itertools.count(1)
        self._buffers: dict[Signal, BatchBuffer] = {
            signal: BatchBuffer(
                signal,
                config.max_queue_size,
                overflow_policy=config.overflow_policy,
                block_timeout=config.block_timeout,
                diagnostics=self._diagnostics,
                sequence=sequence,
                on_full=self._wake_event.set,
            )
            for signal in Signal
            if signal in config.enabled_signals
        }

        self._sender = RetryingSender(
            exporter,
            config.retry,
            request_timeout=config.request_timeout,
            sleep=self._backoff_sleep,
            clock=clock,
        )

        # Start export thread (non-daemon to ensure proper cleanup)
        self._export_thread = threading.Thread(
            target=self._export_loop,
            name="otelferry-export",
            daemon=False,
        )
        self._export_thread.start()
        # Wait for thread to be ready (prevents startup race)
        self._export_thread_ready.wait(timeout=float(get_internal_default("pipeline", "startup_timeout_seconds")))

    # ------------------------------------------------------------------
    # Producer API
    # ------------------------------------------------------------------

    def record(self, record: TelemetryRecord) -> None:
        """Buffer a record for export. Fire-and-forget; never raises.

        Records arriving after shutdown() began are dropped and counted.

        Thread Safety:
            Safe to call from any thread. Blocks only under the
            block-with-timeout overflow policy, and at most block_timeout.

        Args:
            record: Span, MetricPoint or LogRecord
        """
        if self._shutdown_event.is_set():
            self._diagnostics.increment(RECORDS_DROPPED)
            return

        if not should_export(record, self._config):
            return

        buffer = self._buffers.get(record.signal)
        if buffer is None:
            return
        buffer.push(record)

    def force_flush(self, timeout: float | None = None) -> bool:
        """Export everything buffered now and wait for it to finish.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            True if a full export cycle completed after the call, False on
            timeout or if the pipeline is shutting down
        """
        if self._shutdown_event.is_set():
            return False
        with self._flush_cond:
            self._flush_requests += 1
            target = self._flush_requests
        self._wake_event.set()
        with self._flush_cond:
            return self._flush_cond.wait_for(
                lambda: self._flushes_served >= target or self._shutdown_event.is_set(),
                timeout=timeout,
            ) and self._flushes_served >= target

    # ------------------------------------------------------------------
    # Export thread
    # ------------------------------------------------------------------

    def _export_loop(self) -> None:
        """Background thread: wait for a trigger, export, repeat.

        Runs until shutdown is signalled, then performs the final flush.
        """
        # Signal that export thread is ready
        self._export_thread_ready.set()

        while not self._shutdown_event.is_set():
            self._wake_event.wait(timeout=self._config.export_interval)
            self._wake_event.clear()
            if self._shutdown_event.is_set():
                break
            self._run_cycle()

        self._final_flush()

    def _run_cycle(self) -> None:
        """One Idle -> Exporting -> Idle cycle over every buffer."""
        with self._flush_cond:
            serving = self._flush_requests

        self._set_state(PipelineState.EXPORTING)
        try:
            for buffer in self._buffers.values():
                self._drain_buffer(buffer)
        except Exception as e:
            # CRITICAL: Log but don't crash - the export thread must survive
            logger.error("Export cycle failed unexpectedly", error=str(e), error_type=type(e).__name__)
        finally:
            with self._state_lock:
                if self._state is PipelineState.EXPORTING:
                    self._state = PipelineState.IDLE
            with self._flush_cond:
                self._flushes_served = max(self._flushes_served, serving)
                self._flush_cond.notify_all()

    def _drain_buffer(self, buffer: BatchBuffer) -> None:
        """Export the records that were buffered when the drain started.

        Records pushed during the drain wait for the next trigger, so a busy
        producer cannot keep the export thread in one cycle forever.
        """
        pending = len(buffer)
        while pending > 0 and not self._shutdown_event.is_set():
            batch = buffer.drain(self._config.max_batch_size)
            if batch is None:
                return
            pending -= len(batch)
            if not self._export_batch(buffer, batch):
                return

    def _final_flush(self) -> None:
        """Drain every buffer regardless of size, within the flush budget.

        Whatever is left when the deadline passes is discarded and reported
        as a ShutdownTimeoutError, which is logged and stored, never raised.
        """
        try:
            for buffer in self._buffers.values():
                while not self._deadline_passed():
                    batch = buffer.drain(self._config.max_batch_size)
                    if batch is None:
                        break
                    if not self._export_batch(buffer, batch):
                        break
        except Exception as e:
            logger.error("Final flush failed unexpectedly", error=str(e), error_type=type(e).__name__)

        cleared = sum(buffer.clear() for buffer in self._buffers.values())
        if cleared:
            self._diagnostics.increment(RECORDS_DROPPED, cleared)
        discarded = cleared + self._discarded_in_flight
        if discarded:
            error = ShutdownTimeoutError(discarded, self._config.flush_timeout)
            self.shutdown_error = error
            self._diagnostics.increment(SHUTDOWN_TIMEOUTS)
            logger.error(
                "Shutdown flush budget exhausted - records discarded",
                discarded=discarded,
                flush_timeout=self._config.flush_timeout,
                error=str(error),
            )

    def _export_batch(self, buffer: BatchBuffer, batch: Batch) -> bool:
        """Encode, send and account for one batch.

        Returns:
            True if draining this buffer may continue, False if the batch
            was requeued or the shutdown deadline cut it short.
        """
        encoded = self._encode(batch)
        if encoded is None or encoded.record_count == 0:
            return True

        try:
            outcome = self._sender.send(encoded, deadline=lambda: self._deadline)
        except Exception as e:
            # Exporters must classify, not raise; treat a raise as fatal
            logger.error(
                "Exporter raised instead of returning a result",
                exporter=self._exporter.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._drop_failed(encoded, reason=str(e))
            return True

        match outcome.result:
            case ExportSuccess():
                self._diagnostics.increment(BATCHES_EXPORTED_SUCCESS)
                logger.debug(
                    "Batch exported",
                    signal=batch.signal.value,
                    sequence=batch.sequence,
                    records=encoded.record_count,
                    attempts=outcome.attempts,
                )
                return True

            case FatalFailure(reason=reason):
                self._drop_failed(encoded, reason=reason)
                return True

            case RetryableFailure() if outcome.deadline_exceeded:
                # Abandoned by the shutdown budget; reported by _final_flush
                self._diagnostics.increment(RECORDS_DROPPED, encoded.record_count)
                self._discarded_in_flight += encoded.record_count
                return False

            case RetryableFailure(reason=reason):
                if (
                    self._config.retry.on_exhausted is RetryExhaustedPolicy.REQUEUE
                    and not self._shutdown_event.is_set()
                    and buffer.requeue(batch)
                ):
                    self._diagnostics.increment(BATCHES_EXPORTED_FAILED)
                    self._diagnostics.increment(BATCHES_REQUEUED)
                    self._requeued_payloads[(batch.signal, batch.sequence)] = encoded
                    logger.info(
                        "Batch requeued after exhausting retries",
                        signal=batch.signal.value,
                        sequence=batch.sequence,
                        attempts=outcome.attempts,
                        reason=reason,
                    )
                    return False
                self._drop_failed(encoded, reason=reason)
                return True

        raise AssertionError(f"Unhandled export result: {outcome.result!r}")  # pragma: no cover

    def _encode(self, batch: Batch) -> EncodedBatch | None:
        """Encode a batch, reusing the payload of a requeued batch."""
        cached = self._requeued_payloads.pop((batch.signal, batch.sequence), None)
        if cached is not None:
            return cached

        try:
            encoded = self._encoder.encode(batch)
        except Exception as e:
            logger.error(
                "Batch encoding failed",
                signal=batch.signal.value,
                sequence=batch.sequence,
                records=len(batch),
                error=str(e),
                error_type=type(e).__name__,
            )
            self._diagnostics.increment(RECORDS_ENCODING_FAILED, len(batch))
            self._diagnostics.increment(RECORDS_DROPPED, len(batch))
            return None

        if encoded.dropped_count:
            self._diagnostics.increment(RECORDS_ENCODING_FAILED, encoded.dropped_count)
            self._diagnostics.increment(RECORDS_DROPPED, encoded.dropped_count)
        self._diagnostics.increment(RECORDS_ENCODED, encoded.record_count)
        return encoded

    def _drop_failed(self, encoded: EncodedBatch, *, reason: str) -> None:
        """Count a permanently failed batch, logging in aggregate."""
        self._diagnostics.increment(BATCHES_EXPORTED_FAILED)
        self._diagnostics.increment(RECORDS_DROPPED, encoded.record_count)
        self._failed_batches += 1

        if self._last_logged_failure_count == 0 or self._failed_batches - self._last_logged_failure_count >= self._LOG_INTERVAL:
            logger.warning(
                "Telemetry batch dropped after export failure",
                exporter=self._exporter.name,
                signal=encoded.signal.value,
                sequence=encoded.sequence,
                records=encoded.record_count,
                reason=reason,
                failed_since_last_log=self._failed_batches - self._last_logged_failure_count,
                failed_total=self._failed_batches,
            )
            self._last_logged_failure_count = self._failed_batches

    def _backoff_sleep(self, seconds: float) -> None:
        # Wakes early when shutdown begins; later sleeps are capped by the flush deadline
        if self._shutdown_event.is_set():
            time.sleep(seconds)
        else:
            self._shutdown_event.wait(seconds)

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def _set_state(self, state: PipelineState) -> None:
        with self._state_lock:
            if self._state in (PipelineState.SHUTTING_DOWN, PipelineState.TERMINATED):
                return
            self._state = state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting records, flush within the budget, close the exporter.

        Shutdown Sequence:
        1. Fix the flush deadline, close the buffers and signal shutdown;
           record() now drops and counts
        2. Wake the export thread, which abandons its timer, cuts any backoff
           short and performs one final drain of every buffer
        3. Wait for the thread, allowing a short grace past the deadline
           for a request already on the wire
        4. Close the exporter and log final health metrics

        Idempotent; never raises. A blown budget is stored in shutdown_error.

        Args:
            timeout: Flush budget in seconds; defaults to the configured
                flush_timeout_on_shutdown
        """
        with self._state_lock:
            if self._state in (PipelineState.SHUTTING_DOWN, PipelineState.TERMINATED):
                return
            self._state = PipelineState.SHUTTING_DOWN

        budget = self._config.flush_timeout if timeout is None else max(0.0, timeout)
        self._deadline = self._clock() + budget
        # Closed before the export thread can see shutdown, so a producer
        # that passed record()'s check cannot land a record after the final drain
        for buffer in self._buffers.values():
            buffer.close()
        self._shutdown_event.set()
        self._wake_event.set()
        with self._flush_cond:
            self._flush_cond.notify_all()

        grace = float(get_internal_default("pipeline", "join_grace_seconds"))
        self._export_thread.join(timeout=budget + grace)
        if self._export_thread.is_alive():
            logger.error("Export thread did not exit cleanly within timeout", timeout=budget + grace)

        try:
            self._exporter.close()
        except Exception as e:
            logger.warning("Exporter close failed", exporter=self._exporter.name, error=str(e))

        with self._state_lock:
            self._state = PipelineState.TERMINATED
        logger.info("Export pipeline shut down", **self._diagnostics.snapshot())

    def __enter__(self) -> "ExportPipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    @property
    def config(self) -> RuntimeExportConfig:
        return self._config

    @property
    def diagnostics(self) -> ExportDiagnostics:
        return self._diagnostics

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Return export health metrics for monitoring.

        Returns a snapshot of:
        - state: Current PipelineState value
        - every diagnostics counter (records.dropped, batches.exported.success, ...)
        - queue_depth: Buffered records per enabled signal
        - queue_maxsize: Per-signal buffer capacity
        - export_thread_alive: Whether the export thread is running

        Thread Safety:
            Reads are approximately consistent; counters are read under
            their lock, queue depths may be slightly stale.
        """
        return {
            "state": self.state.value,
            **self._diagnostics.snapshot(),
            "queue_depth": {signal.value: len(buffer) for signal, buffer in self._buffers.items()},
            "queue_maxsize": self._config.max_queue_size,
            "export_thread_alive": self._export_thread.is_alive(),
        }
