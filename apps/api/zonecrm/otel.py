"""Tracing setup and the span helper used around authorization checks."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from zonecrm.core.config import Settings

if TYPE_CHECKING:
    from zonecrm.authz.decision import Decision


SERVICE_NAME = "zonecrm-api"
AUTHZ_SPAN = "authz.evaluate"

_provider: TracerProvider | None = None
_exporters_attached = False
_authz_tracer = trace.get_tracer("zonecrm.authz")


def _provider_for(service_name: str, service_version: str) -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create({"service.name": service_name, "service.version": service_version})
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the tracer provider and exporters once per process when tracing is enabled."""

    global _exporters_attached

    if not settings.otel_enabled:
        return None

    provider = _provider_for(SERVICE_NAME, settings.app_version)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def setup_inmemory_otel(service_name: str = SERVICE_NAME) -> InMemorySpanExporter:
    provider = _provider_for(service_name, "test")
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


@contextmanager
def authz_span(check: str, user_id: int, zone_id: int | None) -> Iterator[trace.Span]:
    with _authz_tracer.start_as_current_span(AUTHZ_SPAN) as span:
        span.set_attribute("authz.check", check)
        span.set_attribute("authz.user_id", user_id)
        if zone_id is not None:
            span.set_attribute("authz.zone_id", zone_id)
        yield span


def annotate_decision(span: trace.Span, decision: Decision) -> None:
    span.set_attribute("authz.allowed", decision.allowed)
    if decision.kind is not None:
        span.set_attribute("authz.kind", decision.kind.value)


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = dict(scope.get("headers", []))
        correlation_raw = headers.get(b"x-correlation-id")
        if correlation_raw:
            span.set_attribute("correlation_id", correlation_raw.decode("utf-8")[:128])

    return server_request_hook
