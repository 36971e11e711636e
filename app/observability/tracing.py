"""
Distributed Tracing with OpenTelemetry.

Spans cover the HTTP layer, SQL statements and each fulfillment attempt, so a
slow purchase confirmation can be followed from the redirect through the
provider lookup to the ledger write. Export goes to an OTLP collector and is
skipped entirely when TRACING_ENABLED is false.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import settings
from app.models.domain import Verdict

TRACER_NAME = "app.fulfillment"

# Span attribute values must be primitives
_PRIMITIVES = (str, int, float, bool)


def setup_tracing() -> None:
    """Install a TracerProvider exporting batches to the OTLP collector."""
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {SERVICE_NAME: settings.service_name, SERVICE_VERSION: settings.api_version}
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: FastAPI) -> None:
    """Trace every route of the app. Call once, after the app is built."""
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    """Trace statements issued through the async engine."""
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def set_attributes(span: Span, **attributes: Any) -> None:
    """Set span attributes, dropping None and stringifying non-primitives."""
    for key, value in attributes.items():
        if value is None:
            continue
        span.set_attribute(key, value if isinstance(value, _PRIMITIVES) else str(value))


def record_verdict(span: Span, verdict: Verdict) -> None:
    """Attach the outcome of a fulfillment attempt to its span."""
    set_attributes(
        span,
        verdict=verdict.status.value,
        rejection_reason=verdict.reason.value if verdict.reason else None,
    )


@contextmanager
def trace_operation(operation_name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a new current span.

    Exceptions leaving the block mark the span as failed and are re-raised.

    Usage:
        with trace_operation("fulfill_checkout_session", session_id=sid) as span:
            record_verdict(span, verdict)
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        operation_name, record_exception=False, set_status_on_exception=False
    ) as span:
        set_attributes(span, **attributes)
        try:
            yield span
        except BaseException as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
