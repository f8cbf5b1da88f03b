# src/otelferry/telemetry/retry.py
"""RetryingSender: bounded retry of one encoded batch with tenacity.

Provides the retry behaviour of the export thread:
- Exponential backoff with jitter, capped at max_backoff
- Jitter bounded by the base delay, so successive delays never shrink
- Server Retry-After hints honoured up to the cap
- An optional deadline (the shutdown flush budget) that shortens both the
  per-request timeout and the backoff sleeps, and stops retrying once spent

Exporters classify attempts instead of raising, so retries are driven by
the result (retry_if_result) rather than by exceptions.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    stop_any,
    wait_exponential_jitter,
)

from otelferry.contracts.config import RetryConfig
from otelferry.contracts.records import EncodedBatch
from otelferry.contracts.results import ExportResult, RetryableFailure
from otelferry.telemetry.protocols import ExporterProtocol

logger = structlog.get_logger(__name__)

DeadlineFn = Callable[[], float | None]


@dataclass(frozen=True, slots=True)
class SendOutcome:
    """What happened to one batch across all of its attempts.

    Attributes:
        result: Result of the last attempt
        attempts: Number of times the exporter was actually called
        delays: Backoff sleeps taken between attempts, in seconds
        deadline_exceeded: True if the deadline ran out before the batch
            was delivered or definitively rejected
    """

    result: ExportResult
    attempts: int
    delays: tuple[float, ...] = ()
    deadline_exceeded: bool = False


class RetryingSender:
    """Sends encoded batches through an exporter, retrying transient failures.

    Example:
        sender = RetryingSender(exporter, RetryConfig(max_retries=3))
        outcome = sender.send(encoded)
        match outcome.result:
            case ExportSuccess(): ...
    """

    def __init__(
        self,
        exporter: ExporterProtocol,
        config: RetryConfig,
        *,
        request_timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize with exporter and config.

        Args:
            exporter: Exporter making the individual attempts
            config: Retry configuration
            request_timeout: Per-attempt timeout in seconds; None leaves it
                to the exporter
            sleep: Called with each backoff delay. The pipeline passes a
                sleep that wakes early when shutdown begins.
            clock: Monotonic clock the deadline is measured against
        """
        self._exporter = exporter
        self._config = config
        self._request_timeout = request_timeout
        self._sleep = sleep
        self._clock = clock
        self._backoff = wait_exponential_jitter(
            initial=config.base_backoff,
            max=config.max_backoff,
            jitter=config.base_backoff,
        )

    @property
    def config(self) -> RetryConfig:
        return self._config

    def send(self, batch: EncodedBatch, *, deadline: DeadlineFn | None = None) -> SendOutcome:
        """Deliver one batch, retrying retryable failures.

        Args:
            batch: The encoded batch
            deadline: Returns the monotonic time by which sending must
                finish, or None for no deadline. Read before every attempt
                and every sleep, so a deadline set mid-retry takes effect.

        Returns:
            SendOutcome holding the final result. Never a RetryError:
            exhausted retries return the last RetryableFailure.
        """
        delays: list[float] = []
        attempts = 0
        deadline_exceeded = False

        def remaining() -> float | None:
            when = deadline() if deadline is not None else None
            return None if when is None else when - self._clock()

        def attempt() -> ExportResult:
            nonlocal attempts, deadline_exceeded
            left = remaining()
            if left is not None and left <= 0:
                deadline_exceeded = True
                return RetryableFailure("flush deadline exceeded before attempt")
            attempts += 1
            timeout = self._request_timeout
            if left is not None:
                timeout = left if timeout is None else min(timeout, left)
            return self._exporter.export(batch, timeout=timeout)

        def deadline_reached(retry_state: RetryCallState) -> bool:
            left = remaining()
            return deadline_exceeded or (left is not None and left <= 0)

        def wait(retry_state: RetryCallState) -> float:
            delay = self._backoff(retry_state)
            outcome = retry_state.outcome
            if outcome is not None and not outcome.failed:
                result = outcome.result()
                if isinstance(result, RetryableFailure) and result.retry_after is not None:
                    delay = min(self._config.max_backoff, max(delay, result.retry_after))
            left = remaining()
            if left is not None:
                delay = max(0.0, min(delay, left))
            return delay

        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
            delays.append(delay)
            outcome = retry_state.outcome
            result = outcome.result() if outcome is not None and not outcome.failed else None
            logger.debug(
                "Retrying batch export",
                signal=batch.signal.value,
                sequence=batch.sequence,
                attempt=retry_state.attempt_number,
                delay_seconds=round(delay, 3),
                reason=result.reason if isinstance(result, RetryableFailure) else None,
            )

        retrying = Retrying(
            stop=stop_any(stop_after_attempt(self._config.max_attempts), deadline_reached),
            wait=wait,
            retry=retry_if_result(lambda result: isinstance(result, RetryableFailure)),
            before_sleep=before_sleep,
            sleep=self._sleep,
            # Exhausted retries hand back the last result instead of raising RetryError
            retry_error_callback=lambda retry_state: retry_state.outcome.result() if retry_state.outcome else None,
        )
        result: ExportResult = retrying(attempt)

        if isinstance(result, RetryableFailure) and not deadline_exceeded:
            left = remaining()
            deadline_exceeded = left is not None and left <= 0

        return SendOutcome(
            result=result,
            attempts=attempts,
            delays=tuple(delays),
            deadline_exceeded=deadline_exceeded,
        )
