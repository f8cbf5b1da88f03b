# src/otelferry/telemetry/exporters/__init__.py
"""Built-in telemetry exporters.

Exporters are discovered via pluggy hooks.

Available exporters:
- OTLPHttpExporter: POST batches to an OTLP/HTTP collector
- ConsoleExporter: Write batches to stdout/stderr for testing and debugging

Usage:
    from otelferry.telemetry.exporters import ConsoleExporter, OTLPHttpExporter

Plugin registration:
    Exporters are registered via the otelferry_get_exporters hook.
    The BuiltinExportersPlugin in this module registers all built-in exporters.
"""

from otelferry.telemetry.exporters.console import ConsoleExporter
from otelferry.telemetry.exporters.otlp_http import OTLPHttpExporter
from otelferry.telemetry.hookspecs import hookimpl


class BuiltinExportersPlugin:
    """Plugin that registers built-in telemetry exporters."""

    @hookimpl
    def otelferry_get_exporters(self) -> list[type]:
        """Return built-in exporter classes."""
        return [OTLPHttpExporter, ConsoleExporter]


__all__ = [
    "BuiltinExportersPlugin",
    "ConsoleExporter",
    "OTLPHttpExporter",
]
