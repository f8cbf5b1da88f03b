# src/otelferry/telemetry/hookspecs.py
"""Exporter discovery hook.

A pipeline sends through exactly one exporter, picked by name from
configuration (``exporter: otlp_http``). discover_exporters() builds the
name -> class registry by calling ``otelferry_get_exporters`` on the
built-in plugin and on any objects passed as ``exporter_plugins`` to
create_exporter() or create_export_pipeline(). A class is named by its
``_name`` attribute, or by ``name`` on a throwaway instance when it has
none, and names must be unique across plugins.

An extra exporter ships as a plugin object:

    from otelferry.telemetry.hookspecs import hookimpl

    class ZipkinBridgePlugin:
        @hookimpl
        def otelferry_get_exporters(self):
            return [ZipkinBridgeExporter]

    pipeline = create_export_pipeline(config, exporter_plugins=[ZipkinBridgePlugin()])
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from otelferry.telemetry.protocols import ExporterProtocol

PROJECT_NAME = "otelferry"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class OtelferryTelemetrySpec:
    """Hooks an exporter plugin may implement."""

    @hookspec
    def otelferry_get_exporters(self) -> list[type["ExporterProtocol"]]:  # type: ignore[empty-body]
        """Return exporter classes, not instances.

        Each class must satisfy ExporterProtocol and be constructible with
        no arguments. The one selected by configuration is instantiated
        once per pipeline and handed ``exporter_options`` through
        configure() before the export thread starts.
        """
