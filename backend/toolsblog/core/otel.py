"""OpenTelemetry export and instrumentation

Disabled unless OTEL_EXPORTER_OTLP_ENDPOINT is set. Traces, metrics and log
records all go to the same collector.
"""
import logging

from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from toolsblog.core.config import settings

logger = logging.getLogger(__name__)

# Probed every few seconds by the orchestrator and scraper
EXCLUDED_URLS = "health,metrics"


def is_enabled() -> bool:
    return bool(settings.OTEL_EXPORTER_OTLP_ENDPOINT)


def service_resource() -> Resource:
    return Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.version": "1.0.0",
        "deployment.environment": settings.OTEL_ENVIRONMENT,
    })


def _exporter_options() -> dict:
    return {"endpoint": settings.OTEL_EXPORTER_OTLP_ENDPOINT, "insecure": True}


def initialize_otel() -> bool:
    """Install tracer and meter providers. Returns False when disabled or on failure."""
    if not is_enabled():
        return False
    resource = service_resource()
    try:
        tracer_provider = TracerProvider(resource=resource)
        tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**_exporter_options())))
        trace.set_tracer_provider(tracer_provider)

        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(**_exporter_options()),
            export_interval_millis=settings.OTEL_METRIC_INTERVAL_MS,
        )
        metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    except Exception as e:
        logger.warning(f"OpenTelemetry disabled, provider setup failed: {e}")
        return False
    return True


def setup_otel_logging() -> bool:
    """Attach an OTLP handler to the root logger"""
    if not is_enabled():
        return False
    logger_provider = LoggerProvider(resource=service_resource())
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(**_exporter_options())))
    set_logger_provider(logger_provider)
    logging.getLogger().addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider))
    return True


def instrument_app(app, engine) -> None:
    """Trace inbound requests, provider HTTP calls (Paddle) and SQL"""
    FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)
    HTTPXClientInstrumentor().instrument()
    try:
        SQLAlchemyInstrumentor().instrument(engine=engine)
    except Exception as e:
        logger.warning(f"SQLAlchemy instrumentation failed: {e}")
