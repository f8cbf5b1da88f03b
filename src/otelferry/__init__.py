"""
otelferry: batched, retrying OTLP/HTTP telemetry export.

Buffers spans, metric points and log records produced by application
code and ships them to an OpenTelemetry collector in sequence-numbered
batches.
"""

__version__ = "0.1.0"
