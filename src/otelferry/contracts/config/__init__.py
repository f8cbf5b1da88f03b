"""Runtime configuration contracts.

Settings classes (ExportSettings) live in otelferry.core.config; this
package holds the immutable runtime form consumed by the pipeline.
"""

from otelferry.contracts.config.defaults import INTERNAL_DEFAULTS, get_internal_default
from otelferry.contracts.config.runtime import RetryConfig, RuntimeExportConfig

__all__ = [
    "INTERNAL_DEFAULTS",
    "RetryConfig",
    "RuntimeExportConfig",
    "get_internal_default",
]
