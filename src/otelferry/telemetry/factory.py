# src/otelferry/telemetry/factory.py
"""Factory functions for creating an ExportPipeline from configuration.

This module provides the glue between configuration (RuntimeExportConfig)
and a running ExportPipeline. It handles:
1. Discovering exporter classes via pluggy hooks
2. Instantiating and configuring the exporter named in config
3. Creating the ExportPipeline around it

Usage:
    from otelferry.contracts.config import RuntimeExportConfig
    from otelferry.telemetry.factory import create_export_pipeline

    config = RuntimeExportConfig.from_settings(load_settings(path))
    pipeline = create_export_pipeline(config)
    pipeline.record(span)
    pipeline.shutdown()
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from otelferry.contracts.config import RuntimeExportConfig
from otelferry.telemetry.errors import TelemetryExporterError
from otelferry.telemetry.exporters import BuiltinExportersPlugin
from otelferry.telemetry.hookspecs import PROJECT_NAME, OtelferryTelemetrySpec
from otelferry.telemetry.pipeline import ExportPipeline
from otelferry.telemetry.protocols import ExporterProtocol

logger = structlog.get_logger(__name__)


def _resolve_exporter_name(exporter_class: type[ExporterProtocol]) -> str:
    """Resolve exporter name from class metadata or a temporary instance.

    Raises:
        TelemetryExporterError: If the class cannot be instantiated for name
            resolution or resolves to an invalid name.
    """
    class_name = getattr(exporter_class, "__name__", repr(exporter_class))

    # Prefer class-level _name when provided to avoid unnecessary instantiation.
    class_name_hint = getattr(exporter_class, "_name", None)
    if class_name_hint is not None:
        if type(class_name_hint) is str and class_name_hint != "":
            return class_name_hint
        raise TelemetryExporterError(
            class_name,
            f"Exporter class attribute _name must be a non-empty string, got {class_name_hint!r}",
        )

    try:
        exporter_instance = exporter_class()
    except Exception as e:
        raise TelemetryExporterError(
            class_name,
            f"Failed to instantiate exporter class during discovery: {e}",
        ) from e

    resolved_name = exporter_instance.name
    if type(resolved_name) is not str or resolved_name == "":
        raise TelemetryExporterError(
            class_name,
            f"Exporter name must be a non-empty string, got {resolved_name!r}",
        )
    return resolved_name


def discover_exporters(exporter_plugins: Iterable[Any] = ()) -> dict[str, type[ExporterProtocol]]:
    """Discover exporters via pluggy hooks.

    Registers the built-in exporters plus any additional plugin objects,
    then calls every ``otelferry_get_exporters`` hook to build the
    name -> class registry.

    Args:
        exporter_plugins: Optional additional plugin objects implementing
            ``otelferry_get_exporters``.

    Returns:
        Mapping of exporter name to exporter class.

    Raises:
        TelemetryExporterError: If plugin registration fails, a hook returns
            something other than an iterable of classes, or two exporters
            share a name.
    """
    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(OtelferryTelemetrySpec)

    for plugin in [BuiltinExportersPlugin(), *exporter_plugins]:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # PluginValidationError: hook spec mismatch (wrong method names, etc.)
            # ValueError: duplicate plugin object or plugin name already registered
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise TelemetryExporterError(
                "exporter_plugins",
                f"Invalid exporter plugin {type(plugin).__name__}: {e}",
            ) from e

    registry: dict[str, type[ExporterProtocol]] = {}
    for hook_impl in plugin_manager.hook.otelferry_get_exporters.get_hookimpls():
        plugin_name = type(hook_impl.plugin).__name__
        try:
            exporters = hook_impl.function()
        except Exception as e:
            raise TelemetryExporterError(
                "exporter_plugins",
                f"Exporter plugin {plugin_name} failed in otelferry_get_exporters: {e}",
            ) from e

        if exporters is None or isinstance(exporters, str | bytes):
            raise TelemetryExporterError(
                "exporter_plugins",
                f"otelferry_get_exporters in plugin {plugin_name} returned {type(exporters).__name__}; expected iterable of exporter classes",
            )
        try:
            exporter_iter = iter(exporters)
        except TypeError as e:
            raise TelemetryExporterError(
                "exporter_plugins",
                f"otelferry_get_exporters in plugin {plugin_name} returned {type(exporters).__name__}; expected iterable of exporter classes",
            ) from e

        for exporter_class in exporter_iter:
            exporter_name = _resolve_exporter_name(exporter_class)
            if exporter_name in registry:
                raise TelemetryExporterError(
                    exporter_name,
                    f"Duplicate exporter name '{exporter_name}' discovered: {registry[exporter_name].__name__} and {exporter_class.__name__}",
                )
            registry[exporter_name] = exporter_class

    return registry


def create_exporter(
    config: RuntimeExportConfig,
    *,
    exporter_plugins: Iterable[Any] = (),
) -> ExporterProtocol:
    """Instantiate and configure the exporter named by ``config.exporter_name``.

    Raises:
        TelemetryExporterError: If the name is unknown or configure() rejects
            the options.
    """
    registry = discover_exporters(exporter_plugins)
    try:
        exporter_class = registry[config.exporter_name]
    except KeyError:
        raise TelemetryExporterError(
            exporter_name=config.exporter_name,
            message=f"Unknown exporter. Available exporters: {sorted(registry)}",
        ) from None

    exporter = exporter_class()
    exporter.configure(config.exporter_options)
    logger.debug(
        "Exporter configured",
        exporter=config.exporter_name,
        options_keys=sorted(config.exporter_options),
    )
    return exporter


def create_export_pipeline(
    config: RuntimeExportConfig,
    *,
    exporter_plugins: Iterable[Any] = (),
) -> ExportPipeline:
    """Create a running ExportPipeline from runtime configuration.

    Args:
        config: Runtime configuration from RuntimeExportConfig.from_settings()
        exporter_plugins: Optional additional exporter plugin objects
            providing ``otelferry_get_exporters`` hooks.

    Returns:
        ExportPipeline with its export thread started. The caller owns it
        and must call shutdown().

    Raises:
        TelemetryExporterError: If exporter discovery or configuration fails.
    """
    exporter = create_exporter(config, exporter_plugins=exporter_plugins)
    if not config.enabled_signals:
        logger.warning("Export pipeline created with every signal disabled; all records will be ignored")
    return ExportPipeline(config, exporter)
