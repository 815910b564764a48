"""
OpenTelemetry tracing configuration
"""
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import \
    OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (BatchSpanProcessor,
                                            ConsoleSpanExporter)

from app.core.config import get_settings
from app.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

# Global tracer provider
_tracer_provider: Optional[TracerProvider] = None
_configured = False


def configure_tracing(app=None, engine=None):
    """
    Configure OpenTelemetry tracing

    Args:
        app: FastAPI application instance (optional, for auto-instrumentation)
        engine: SQLAlchemy engine to instrument (optional)
    """
    global _tracer_provider, _configured

    if _configured:
        return

    settings = get_settings()

    if not settings.enable_tracing:
        logger.info("OpenTelemetry tracing is disabled via configuration")
        return

    resource = Resource.create({
        "service.name": settings.tracing_service_name,
        "service.version": "0.1.0",
        "service.environment": settings.app_env,
    })

    _tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(_tracer_provider)

    if settings.tracing_exporter == "otlp" and settings.tracing_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.tracing_otlp_endpoint)
        logger.info(f"Using OTLP exporter: {settings.tracing_otlp_endpoint}")
    else:
        if settings.tracing_exporter == "otlp":
            logger.warning("OTLP exporter selected but no endpoint configured, falling back to console")
        exporter = ConsoleSpanExporter()

    _tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI instrumentation enabled")

    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy instrumentation enabled")

    _configured = True
    logger.info("OpenTelemetry tracing configured successfully")


def get_tracer(name: str):
    """
    Get a tracer instance

    Without a configured provider the API hands back a no-op tracer.
    """
    return trace.get_tracer(name)


def get_current_trace_id() -> Optional[str]:
    """
    Get current trace ID from context

    Returns:
        Trace ID as string or None if not in a trace
    """
    span = trace.get_current_span()
    if span and span.get_span_context().is_valid:
        return format(span.get_span_context().trace_id, '032x')
    return None


def add_span_attributes(span=None, **kwargs):
    """
    Add attributes to current span or provided span

    Args:
        span: Optional span object (if None, uses current span)
        **kwargs: Attributes to add
    """
    if span is None:
        span = trace.get_current_span()

    if span is not None and span.get_span_context().is_valid:
        for key, value in kwargs.items():
            span.set_attribute(key, value)


def shutdown_tracing():
    """
    Flush and shut down the tracer provider on application shutdown
    """
    global _tracer_provider, _configured

    if not _configured or _tracer_provider is None:
        return

    logger.info("Shutting down OpenTelemetry tracing...")
    try:
        _tracer_provider.force_flush(timeout_millis=5000)
        _tracer_provider.shutdown()
    except Exception as e:
        logger.warning(f"Error during tracing shutdown: {e}")
    finally:
        _tracer_provider = None
        _configured = False
