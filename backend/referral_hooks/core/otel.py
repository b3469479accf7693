"""OpenTelemetry export of traces, metrics and logs to an OTLP collector"""
import logging

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from referral_hooks.core.config import settings

logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"
METRIC_EXPORT_INTERVAL_MS = 5000


def _resource() -> Resource:
    return Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": settings.OTEL_ENVIRONMENT,
    })


def _exporter_kwargs() -> dict:
    # Plaintext gRPC
    return {"endpoint": settings.OTEL_EXPORTER_OTLP_ENDPOINT, "insecure": True}


def initialize_otel() -> bool:
    """Install trace and metric providers; False when no collector is configured"""
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        resource = _resource()

        tracer_provider = TracerProvider(resource=resource)
        tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**_exporter_kwargs())))
        trace.set_tracer_provider(tracer_provider)

        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(**_exporter_kwargs()),
            export_interval_millis=METRIC_EXPORT_INTERVAL_MS,
        )
        metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
        return True
    except Exception as e:
        logger.warning(f"Failed to initialize OpenTelemetry: {e}")
        return False


def setup_otel_logging() -> bool:
    """Attach an OTLP handler to the root logger"""
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

        provider = LoggerProvider(resource=_resource())
        provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(**_exporter_kwargs())))
        set_logger_provider(provider)

        logging.getLogger().addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=provider))
        return True
    except Exception as e:
        logger.warning(f"Failed to setup OTEL logging: {e}")
        return False


def instrument_fastapi(app):
    FastAPIInstrumentor.instrument_app(app)


def instrument_httpx():
    """Airtable and Brevo calls show up as client spans"""
    HTTPXClientInstrumentor().instrument()
