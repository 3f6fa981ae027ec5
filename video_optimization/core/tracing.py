"""OpenTelemetry tracing for requests and pipeline steps.

A request span is opened by the tracing middleware; the transcoding service
nests one span per flow and one per step underneath it, so a slow ffmpeg run
or storage transfer is visible in the request's trace.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.propagate import set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "video_optimization"

_provider: Optional[TracerProvider] = None
_tracer: Optional[trace.Tracer] = None


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Install the tracer provider once per process.

    Later calls (one per application built) reuse the existing provider.

    Args:
        service_name: Reported as ``service.name``
        service_version: Reported as ``service.version``
        environment: Reported as ``deployment.environment``
        enable_console_export: Print finished spans to stdout
    """
    global _provider, _tracer

    if _provider is not None:
        return _tracer

    _provider = TracerProvider(
        resource=Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
            "deployment.environment": environment,
        })
    )
    if enable_console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_provider)
    set_global_textmap(TraceContextTextMapPropagator())
    _tracer = _provider.get_tracer(INSTRUMENTATION_NAME, service_version)

    logger.info(
        "Tracing initialized",
        extra={"service": service_name, "environment": environment},
    )
    return _tracer


def _get_tracer() -> trace.Tracer:
    # No-op tracer until setup_tracing has run (e.g. in unit tests)
    return _tracer or trace.get_tracer(INSTRUMENTATION_NAME)


def current_trace_ids() -> tuple[Optional[str], Optional[str]]:
    """Hex trace and span IDs of the active span, or ``(None, None)``."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


@contextmanager
def create_span(
    name: str,
    attributes: Optional[dict] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
) -> Iterator[Span]:
    """Run the block inside a new child span of the active one."""
    with _get_tracer().start_as_current_span(
        name,
        kind=kind,
        attributes={k: v for k, v in (attributes or {}).items() if v is not None},
    ) as span:
        yield span


def shutdown_tracing() -> None:
    """Flush pending spans. Called when the application stops."""
    if _provider is not None:
        _provider.shutdown()
        logger.info("Tracing shutdown complete")
