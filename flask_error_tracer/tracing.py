"""OpenTelemetry tracing helpers.

Spans are created through the OpenTelemetry API. ``init_tracer`` installs a
global tracer provider whose spans are handed to Sentry, which reports root
spans as transactions and nested spans as their children.
"""

from __future__ import annotations

import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.propagate import set_global_textmap
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from sentry_sdk.integrations.opentelemetry import SentryPropagator, SentrySpanProcessor

from .config import TracerOptions

logger = logging.getLogger(__name__)

_provider: Optional[TracerProvider] = None


def _traces_endpoint(endpoint: str) -> str:
    endpoint = endpoint.rstrip("/")
    if endpoint.endswith("/v1/traces"):
        return endpoint
    return f"{endpoint}/v1/traces"


def init_tracer(options: TracerOptions) -> TracerProvider:
    """Install the global tracer provider once per process."""

    global _provider
    if _provider is not None:
        return _provider

    provider = TracerProvider()
    provider.add_span_processor(SentrySpanProcessor())

    if options.otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=_traces_endpoint(options.otlp_endpoint))
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info("Exporting spans to %s", options.otlp_endpoint)

    trace.set_tracer_provider(provider)
    set_global_textmap(SentryPropagator())
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the global provider."""

    return trace.get_tracer(name)


__all__ = ["get_tracer", "init_tracer"]
