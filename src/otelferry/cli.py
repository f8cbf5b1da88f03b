# src/otelferry/cli.py
"""otelferry Command Line Interface.

Entry point for the otelferry CLI tool.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

import typer
import yaml
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from otelferry import __version__
from otelferry.contracts import (
    HistogramDistribution,
    InstrumentationScope,
    MetricKind,
    MetricPoint,
    RuntimeExportConfig,
    Span,
    SpanKind,
    SpanStatus,
    Temporality,
    new_span_id,
    new_trace_id,
)
from otelferry.core.config import ExportSettings, load_settings, resolve_config
from otelferry.telemetry.errors import TelemetryExporterError

if TYPE_CHECKING:
    from otelferry.telemetry.pipeline import ExportPipeline

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

app = typer.Typer(
    name="otelferry",
    help="otelferry: buffered, retrying OTLP/HTTP telemetry export.",
    no_args_is_help=True,
)

# Explicit bounds for the synthetic latency histogram (milliseconds)
_LATENCY_BOUNDS_MS: tuple[float, ...] = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0)

_WORKLOAD_SCOPE = InstrumentationScope(name="otelferry.workload", version=__version__)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"otelferry version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    # load_dotenv searches current dir and parents by default
    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """otelferry: buffered, retrying OTLP/HTTP telemetry export."""
    from otelferry.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    console.print(
        Panel(
            content,
            title=f"[red bold]{title}[/]",
            border_style="red",
            padding=(0, 1),
        )
    )


def _load_or_exit(settings: str | None) -> ExportSettings:
    """Load settings, turning every configuration error into exit code 1."""
    settings_path = Path(settings).expanduser() if settings is not None else None
    source = settings_path.name if settings_path is not None else "environment"

    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {source}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        details = [f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()]
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {source}",
            details=details,
            hint="Check field names, types, and allowed values.",
        )
        raise typer.Exit(1) from None


@app.command()
def validate(
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file. Without it, only OTELFERRY_* / OTEL_* environment variables are read.",
    ),
) -> None:
    """Validate export configuration and print the resolved settings."""
    from otelferry.telemetry.factory import create_exporter

    config = _load_or_exit(settings)

    try:
        exporter = create_exporter(RuntimeExportConfig.from_settings(config))
    except TelemetryExporterError as e:
        _format_validation_error(
            title="Exporter Configuration Error",
            message=str(e),
            hint="Check the exporter name and its options.",
        )
        raise typer.Exit(1) from None
    exporter.close()

    typer.echo(yaml.safe_dump(resolve_config(config), sort_keys=False), nl=False)
    typer.secho("Configuration valid.", fg=typer.colors.GREEN, err=True)


@app.command()
def emit(
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    requests: int = typer.Option(
        10,
        "--requests",
        "-n",
        min=1,
        help="Number of synthetic requests to generate.",
    ),
    flush_timeout: float | None = typer.Option(
        None,
        "--flush-timeout",
        help="Shutdown flush budget in seconds (default: flush_timeout_on_shutdown_ms).",
    ),
) -> None:
    """Send a synthetic request workload through a real export pipeline.

    Each request produces a server span with a child client span, two
    correlated log lines, a request counter point and a latency histogram
    point. Health metrics are printed as JSON after shutdown.
    """
    from otelferry.core.logging import configure_logging
    from otelferry.telemetry.factory import create_export_pipeline
    from otelferry.telemetry.logging_sink import install_log_handler

    config = _load_or_exit(settings)
    if config.log_level != "info":
        configure_logging(level=config.log_level.upper())

    runtime_config = RuntimeExportConfig.from_settings(config)
    try:
        pipeline = create_export_pipeline(runtime_config)
    except TelemetryExporterError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    workload_logger = logging.getLogger("workload")
    handler = install_log_handler(pipeline, logger=workload_logger)
    try:
        for index in range(requests):
            _emit_request(pipeline, workload_logger, index, runtime_config)
    finally:
        workload_logger.removeHandler(handler)
        pipeline.shutdown(timeout=flush_timeout)

    typer.echo(json.dumps(pipeline.health_metrics, indent=2))
    if pipeline.shutdown_error is not None:
        typer.secho(f"Warning: {pipeline.shutdown_error}", fg=typer.colors.YELLOW, err=True)


def _emit_request(
    pipeline: ExportPipeline,
    workload_logger: logging.Logger,
    index: int,
    config: RuntimeExportConfig,
) -> None:
    """Record the telemetry of one synthetic HTTP request."""
    trace_id = new_trace_id()
    server_span_id = new_span_id()
    client_span_id = new_span_id()
    failed = index % 10 == 9
    # Deterministic spread of latencies across the histogram buckets
    latency_ms = float(5 + (index * 37) % 400)
    route = "/checkout" if index % 2 else "/cart"

    end_ns = time.time_ns()
    start_ns = end_ns - int(latency_ms * 1_000_000)
    query_start_ns = start_ns + int(latency_ms * 200_000)
    query_end_ns = query_start_ns + int(latency_ms * 500_000)

    correlation = {"trace_id": trace_id.hex(), "span_id": server_span_id.hex()}
    workload_logger.info("Handling request %s %s", "GET", route, extra=correlation)

    pipeline.record(
        Span(
            resource=config.resource,
            scope=_WORKLOAD_SCOPE,
            trace_id=trace_id,
            span_id=client_span_id,
            parent_span_id=server_span_id,
            name="SELECT orders",
            kind=SpanKind.CLIENT,
            start_time_ns=query_start_ns,
            end_time_ns=query_end_ns,
            attributes={"db.system": "postgresql", "db.operation": "SELECT"},
        )
    )
    pipeline.record(
        Span(
            resource=config.resource,
            scope=_WORKLOAD_SCOPE,
            trace_id=trace_id,
            span_id=server_span_id,
            name=f"GET {route}",
            kind=SpanKind.SERVER,
            status=SpanStatus.ERROR if failed else SpanStatus.OK,
            status_message="upstream timeout" if failed else "",
            start_time_ns=start_ns,
            end_time_ns=end_ns,
            attributes={
                "http.request.method": "GET",
                "http.route": route,
                "http.response.status_code": 504 if failed else 200,
            },
        )
    )

    if failed:
        workload_logger.error("Request failed: upstream timeout", extra=correlation)
    else:
        workload_logger.info("Request completed in %.1f ms", latency_ms, extra=correlation)

    attributes = {"http.route": route, "http.response.status_code": 504 if failed else 200}
    pipeline.record(
        MetricPoint(
            resource=config.resource,
            scope=_WORKLOAD_SCOPE,
            name="http.server.requests",
            kind=MetricKind.COUNTER,
            value=1,
            temporality=Temporality.DELTA,
            unit="{request}",
            description="Requests handled",
            attributes=attributes,
            start_time_ns=start_ns,
            timestamp_ns=end_ns,
        )
    )
    pipeline.record(
        MetricPoint(
            resource=config.resource,
            scope=_WORKLOAD_SCOPE,
            name="http.server.duration",
            kind=MetricKind.HISTOGRAM,
            distribution=HistogramDistribution.from_values([latency_ms], _LATENCY_BOUNDS_MS),
            unit="ms",
            description="Request latency",
            attributes=attributes,
            start_time_ns=start_ns,
            timestamp_ns=end_ns,
        )
    )


if __name__ == "__main__":
    app()
