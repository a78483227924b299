import os
import logging
import structlog
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from shared.config import settings


def add_otel_ids(logger, log_method, event_dict):
    """Stamp the active trace/span ids on each event so logs join up with Jaeger."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def configure_logging(service_name: str):
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    def add_service(logger, log_method, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_otel_ids,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_tracing(app: FastAPI, service_name: str):
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    trace.set_tracer_provider(provider)

    # OTLP gRPC, Jaeger listens on 4317 by default
    exporter = OTLPSpanExporter(endpoint=os.getenv("OTLP_ENDPOINT", "http://localhost:4317"), insecure=True)
    provider.add_span_processor(BatchSpanProcessor(exporter))

    # Server spans for our routes, client spans for the Daraja calls
    FastAPIInstrumentor.instrument_app(app)
    instrumentor = HTTPXClientInstrumentor()
    if not instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.instrument()


def configure_metrics(app: FastAPI):
    Instrumentator(excluded_handlers=["/metrics", "/health"]).instrument(app).expose(app, include_in_schema=False)


def setup_observability(app: FastAPI, service_name: str):
    """
    Bootstraps structured logging, tracing and Prometheus metrics for the app.
    Call once from main.py. TRACING_ENABLED=false skips the OTLP exporter,
    which is what local runs without a collector and the test suite want.
    """
    configure_logging(service_name)
    if settings.TRACING_ENABLED:
        configure_tracing(app, service_name)
    configure_metrics(app)
