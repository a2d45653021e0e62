"""Tracing for the provisioning core.

Modules take a tracer from :func:`get_tracer` and tag spans with the
``ATTR_*`` keys below.  Until a provider is installed every span is a
no-op; the CLI installs one through :func:`configure_telemetry` when
``telemetry.enabled`` is set in the hub config (needs ``apihub[otel]``).
"""

from __future__ import annotations

from typing import Any

from opentelemetry import trace

# ---------------------------------------------------------------------------
# Semantic attribute keys used throughout instrumentation
# ---------------------------------------------------------------------------

ATTR_OWNER_ID = "apihub.owner.id"
ATTR_INSTANCE_ID = "apihub.instance.id"
ATTR_PORT = "apihub.port"
ATTR_CONTAINER_REF = "apihub.container.ref"
ATTR_ATTEMPT = "apihub.attempt"
ATTR_REAP_SCANNED = "apihub.reap.scanned"
ATTR_REAP_REMOVED = "apihub.reap.removed"
ATTR_REAP_FAILED = "apihub.reap.failed"

_INSTRUMENTATION_NAME = "apihub"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return a :class:`~opentelemetry.trace.Tracer` for *name*.

    If the OpenTelemetry SDK has not been configured the returned tracer
    is a no-op.
    """
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


def configure_telemetry(*, service_name: str = "apihub", otlp_endpoint: str | None = None) -> None:
    """Install a tracer provider for the whole process (requires ``apihub[otel]``).

    Spans go to *otlp_endpoint* over OTLP/gRPC when it is set, and to
    stdout as JSON otherwise.

    Raises
    ------
    ImportError
        If ``opentelemetry-sdk`` (or, for OTLP, the exporter) is missing.
    """
    trace.set_tracer_provider(build_tracer_provider(service_name=service_name, otlp_endpoint=otlp_endpoint))


def build_tracer_provider(*, service_name: str = "apihub", otlp_endpoint: str | None = None) -> Any:
    """SDK ``TracerProvider`` with exactly one exporter attached."""
    try:
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace.export import (  # pyright: ignore[reportMissingImports]
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )
    except ImportError as exc:
        msg = (
            "opentelemetry-sdk is required for tracing export. "
            "Install it with: pip install apihub[otel]"
        )
        raise ImportError(msg) from exc

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(_otlp_exporter(otlp_endpoint)))
    else:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    return provider


def _otlp_exporter(endpoint: str) -> Any:
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter  # pyright: ignore[reportMissingImports]
    except ImportError as exc:
        msg = (
            "opentelemetry-exporter-otlp is required for OTLP export. "
            "Install it with: pip install apihub[otel]"
        )
        raise ImportError(msg) from exc
    return OTLPSpanExporter(endpoint=endpoint)
