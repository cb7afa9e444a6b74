"""Optional OpenTelemetry tracing.

Off unless ``otel_exporter_endpoint`` is set. Inbound requests are traced by
the aiohttp server instrumentation; the dispatcher adds a ``webhook.deliver``
span per outbound attempt.
"""
from __future__ import annotations

import structlog
from aiohttp import web
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_server import AioHttpServerInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

_provider: TracerProvider | None = None


def traces_url(endpoint: str) -> str:
    return endpoint.rstrip("/") + "/v1/traces"


def setup_otel(app: web.Application) -> bool:
    """Install the OTLP exporter; returns whether tracing is on."""
    global _provider

    endpoint = settings.otel_exporter_endpoint
    if endpoint is None:
        logger.debug("otel_disabled")
        return False
    if _provider is not None:
        return True

    resource = Resource.create({SERVICE_NAME: settings.app_name, DEPLOYMENT_ENVIRONMENT: settings.env})
    _provider = TracerProvider(resource=resource)
    _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_url(str(endpoint)))))
    trace.set_tracer_provider(_provider)
    AioHttpServerInstrumentor().instrument(server=app)
    logger.info("otel_enabled", endpoint=str(endpoint))
    return True


async def shutdown_otel(_app: web.Application) -> None:
    global _provider
    provider, _provider = _provider, None
    if provider is not None:
        provider.shutdown()


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)
