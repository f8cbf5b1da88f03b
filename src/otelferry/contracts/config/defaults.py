# src/otelferry/contracts/config/defaults.py
"""Internal default values.

INTERNAL_DEFAULTS holds values hardcoded in runtime code and NOT exposed in
ExportSettings. They are implementation details that users shouldn't need
to configure, documented here so there is a single place to find them.
"""

from typing import Final

INTERNAL_DEFAULTS: Final[dict[str, dict[str, int | float | bool | str]]] = {
    "buffer": {
        # Log aggregate drop counts every N drops (Warning Fatigue prevention)
        "drop_log_interval": 100,
    },
    "pipeline": {
        # Extra time allowed for the export thread to exit after the flush
        # deadline, covering an HTTP request already on the wire
        "join_grace_seconds": 1.0,
        # Wait for the export thread to signal readiness at startup
        "startup_timeout_seconds": 5.0,
    },
    "exporter": {
        # Response body excerpt kept in failure reasons
        "max_reason_chars": 200,
    },
}


def get_internal_default(subsystem: str, field: str) -> int | float | bool | str:
    """Get an internal default value.

    Args:
        subsystem: Subsystem name (e.g., "buffer", "pipeline")
        field: Field name within subsystem

    Returns:
        The default value

    Raises:
        KeyError: If subsystem or field not found (bug - internal defaults
            must be declared here before use)
    """
    return INTERNAL_DEFAULTS[subsystem][field]
