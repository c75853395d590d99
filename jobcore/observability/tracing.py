"""
OpenTelemetry tracing setup.

Spans are always created through the OpenTelemetry API. Until
``setup_tracing`` installs an SDK provider they are no-ops.
"""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer

from jobcore import __version__
from jobcore.config import Settings, get_settings

logger = logging.getLogger(__name__)

TRACER_NAME = "jobcore"

# Global tracer instance
_tracer: Tracer | None = None


def setup_tracing(
    settings: Settings | None = None,
    enable_console_export: bool = False,
) -> Tracer:
    """
    Set up OpenTelemetry tracing.

    Installs an SDK tracer provider exporting over OTLP when
    ``otel_enabled`` is set. Otherwise the no-op API tracer is kept.

    Args:
        settings: Application settings.
        enable_console_export: If True, also export spans to console.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = settings or get_settings()

    if settings.otel_enabled or enable_console_export:
        resource = Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
        provider = TracerProvider(resource=resource)

        if settings.otel_enabled:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )

            provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=settings.otel_exporter_otlp_endpoint,
                        insecure=True,
                    )
                )
            )

        if enable_console_export:
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

        trace.set_tracer_provider(provider)
        logger.info(
            "Tracing enabled",
            extra={"endpoint": settings.otel_exporter_otlp_endpoint},
        )

    _tracer = trace.get_tracer(TRACER_NAME, __version__)
    return _tracer


def instrument_fastapi(app: Any) -> None:
    """
    Instrument FastAPI application with OpenTelemetry.

    Args:
        app: The FastAPI application instance.
    """
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Instrument SQLAlchemy engine with OpenTelemetry.

    Args:
        engine: The SQLAlchemy engine instance (sync engine of an AsyncEngine).
    """
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    SQLAlchemyInstrumentor().instrument(engine=engine)


def get_tracer() -> Tracer:
    """
    Get the tracer instance.

    Returns:
        Tracer: The configured tracer, or the API tracer if tracing was
        never set up.
    """
    if _tracer is None:
        return trace.get_tracer(TRACER_NAME, __version__)
    return _tracer
