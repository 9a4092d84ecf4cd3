"""Extension metrics exposed for Prometheus scraping.

The metrics live in the default ``prometheus_client`` registry, so a host
application that already exposes ``/metrics`` picks them up without further
setup.
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram, start_http_server

# ----------------------------------------------------------------------
# Metric definitions
# ----------------------------------------------------------------------
ERRORS_FORWARDED = Counter(
    "error_tracer_errors_forwarded_total",
    "Number of uncaught errors forwarded to the tracking backend",
    ["exception"],
)

BROWSER_SCRIPT_DOWNLOADS = Counter(
    "error_tracer_browser_script_downloads_total",
    "Browser script download attempts",
    ["outcome"],
)

DATASOURCE_LATENCY = Histogram(
    "error_tracer_datasource_seconds",
    "Time spent in instrumented datasource operations",
    ["operation"],
)


def start_metrics_server(port: int = 8000) -> None:
    """Start an HTTP server for Prometheus to scrape metrics.

    If the port is already in use, a warning is logged and the function
    returns without raising an exception.
    """

    try:
        start_http_server(port)
    except OSError as exc:  # pragma: no cover - depends on system state
        logging.getLogger(__name__).warning(
            "Metrics server not started on port %s: %s", port, exc
        )


def get_metric_value(metric, **labels) -> float:
    """Return the current value of a metric for the given label set."""

    instance = metric.labels(**labels)
    value = getattr(instance, "_value", None)
    if value is None:
        # Histograms keep their running total in ``_sum``
        value = getattr(instance, "_sum", None)
    if value is None:  # pragma: no cover
        return 0.0
    getter = getattr(value, "get", None)
    return getter() if callable(getter) else value


__all__ = [
    "ERRORS_FORWARDED",
    "BROWSER_SCRIPT_DOWNLOADS",
    "DATASOURCE_LATENCY",
    "start_metrics_server",
    "get_metric_value",
]
