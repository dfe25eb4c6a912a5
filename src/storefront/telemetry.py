"""
OpenTelemetry tracing for the storefront service
"""
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
import logging

logger = logging.getLogger(__name__)

_provider: Optional[TracerProvider] = None


def setup_opentelemetry(
    service_name: str,
    otlp_endpoint: str = "http://localhost:4317",
    enabled: bool = True,
    service_version: str = "1.0.0",
    environment: str = "dev"
) -> Optional[TracerProvider]:
    """
    Install a global tracer provider exporting spans over OTLP/gRPC

    Notification deliveries go out through httpx, so the httpx client
    instrumentation is switched on together with the provider.
    """
    global _provider

    if not enabled:
        logger.info("OpenTelemetry disabled")
        return None

    if _provider is not None:
        return _provider

    resource = Resource(attributes={
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        DEPLOYMENT_ENVIRONMENT: environment,
    })

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
    )
    trace.set_tracer_provider(provider)

    HTTPXClientInstrumentor().instrument()

    _provider = provider
    logger.info(f"OpenTelemetry initialized for {service_name}, exporting to {otlp_endpoint}")
    return provider


def shutdown_opentelemetry():
    """Flush pending spans on shutdown"""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None
        logger.info("OpenTelemetry provider shut down")


def instrument_fastapi(app):
    """Trace every inbound request"""
    FastAPIInstrumentor.instrument_app(app)
    logger.info("FastAPI instrumented with OpenTelemetry")


def instrument_sqlalchemy(engine):
    """Trace every statement issued on the engine"""
    SQLAlchemyInstrumentor().instrument(engine=engine)
    logger.info("SQLAlchemy instrumented with OpenTelemetry")
