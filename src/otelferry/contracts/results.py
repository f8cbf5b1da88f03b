# src/otelferry/contracts/results.py
"""Export attempt outcomes.

An exporter classifies every attempt as exactly one of:

- ExportSuccess: the collector accepted the payload
- RetryableFailure: transient problem (throttling, gateway errors, network)
- FatalFailure: the collector rejected the payload; retrying would repeat forever

Exporters return these values instead of raising, so the retry loop and the
pipeline controller can dispatch on them with ``match``.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ExportSuccess:
    """Payload accepted."""

    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    """Transient failure; the same payload may be sent again.

    Attributes:
        reason: Human-readable description for logs
        status_code: HTTP status, or None for connection-level failures
        retry_after: Server-requested delay in seconds (Retry-After header)
        error: Underlying exception, if any
    """

    reason: str
    status_code: int | None = None
    retry_after: float | None = None
    error: Exception | None = None


@dataclass(frozen=True, slots=True)
class FatalFailure:
    """Permanent failure for this payload; never retried."""

    reason: str
    status_code: int | None = None
    error: Exception | None = None


ExportResult = ExportSuccess | RetryableFailure | FatalFailure
