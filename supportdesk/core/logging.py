"""Logging and tracing utilities for the SupportDesk API."""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, Sampler, TraceIdRatioBased

from supportdesk import __version__
from supportdesk.core.config import Settings

_PROVIDER: TracerProvider | None = None


def parse_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas into a header mapping."""

    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers


def configure_logging(settings: Settings) -> logging.Logger:
    """Configure the root logger and return the application logger."""

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                }
            },
            "loggers": {
                "supportdesk": {"level": level},
            },
            "root": {"handlers": ["default"], "level": level},
        }
    )

    logger = logging.getLogger("supportdesk")
    logger.setLevel(level)
    return logger


def tracer_resource(settings: Settings) -> Resource:
    """Resource attributes attached to every span the API exports."""

    return Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment,
        }
    )


def tracer_sampler(settings: Settings) -> Sampler:
    """Follow the caller's sampling decision; sample new traces by ratio."""

    return ParentBased(TraceIdRatioBased(settings.otel_sample_ratio))


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install the OTLP tracer provider once; ``None`` when tracing is off."""

    global _PROVIDER

    if _PROVIDER is not None or not settings.otel_enabled:
        return None

    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=parse_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider = TracerProvider(resource=tracer_resource(settings), sampler=tracer_sampler(settings))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _PROVIDER = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending ticket spans and release the exporter."""

    global _PROVIDER

    if provider is None:
        return
    provider.force_flush()
    provider.shutdown()
    if provider is _PROVIDER:
        _PROVIDER = None
