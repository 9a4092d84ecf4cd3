import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Dict, Mapping, Optional

from dotenv import load_dotenv

from .constant import DEFAULT_BROWSER_SCRIPT
from .exceptions import ConfigurationException

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TracerOptions:
    """Flat option record, immutable once the extension is loaded."""

    # The Sentry endpoint URL (also known as DSN)
    endpoint: Optional[str] = None
    # The Sentry javascript file
    browser_script: Optional[str] = DEFAULT_BROWSER_SCRIPT
    # Should the browser script be served locally?
    serve_browser_script_locally: bool = False
    # Download the browser script right away instead of on first request
    prefetch_browser_script: bool = True
    download_timeout: float = 25
    enable_performance_tracing: bool = False
    # Uniform sample rate for transactions
    traces_sample_rate: float = 0.3
    release: Optional[str] = None
    environment: Optional[str] = None
    send_default_pii: bool = False
    before_send: Optional[Callable] = None
    before_breadcrumb: Optional[Callable] = None
    # Secondary OTLP collector for spans
    otlp_endpoint: Optional[str] = None
    # Serve Prometheus metrics on this port
    metrics_port: Optional[int] = None

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)


DEFAULT_OPTIONS = TracerOptions()

ENV_VARIABLES = {
    "endpoint": "SENTRY_DSN",
    "environment": "SENTRY_ENVIRONMENT",
    "release": "SENTRY_RELEASE",
    "traces_sample_rate": "SENTRY_TRACES_SAMPLE_RATE",
    "browser_script": "ERROR_TRACER_BROWSER_SCRIPT",
    "serve_browser_script_locally": "ERROR_TRACER_SERVE_LOCALLY",
    "enable_performance_tracing": "ERROR_TRACER_PERFORMANCE",
    "otlp_endpoint": "OTEL_EXPORTER_OTLP_ENDPOINT",
    "metrics_port": "ERROR_TRACER_METRICS_PORT",
}

BOOLEAN_OPTIONS = {
    "serve_browser_script_locally",
    "prefetch_browser_script",
    "enable_performance_tracing",
    "send_default_pii",
}


def parse_bool(value: str) -> bool:
    """Parse a boolean flag from an environment variable."""
    return value.strip().lower() in ("1", "true", "yes", "on")


def options_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect option overrides from environment variables."""
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for name, variable in ENV_VARIABLES.items():
        value = environ.get(variable)
        if not value:
            continue
        overrides[name] = parse_bool(value) if name in BOOLEAN_OPTIONS else value
    return overrides


def validate_options(options: TracerOptions) -> TracerOptions:
    """Check the merged options, normalising the sample rate."""
    try:
        rate = float(options.traces_sample_rate)
    except (TypeError, ValueError):
        raise ConfigurationException(
            f"traces_sample_rate must be a number, got {options.traces_sample_rate!r}"
        )
    if not 0 <= rate <= 1:
        raise ConfigurationException(
            f"traces_sample_rate must be between 0 and 1, got {rate}"
        )
    options = replace(options, traces_sample_rate=rate)

    if options.metrics_port is not None:
        try:
            options = replace(options, metrics_port=int(options.metrics_port))
        except (TypeError, ValueError):
            raise ConfigurationException(
                f"metrics_port must be an integer, got {options.metrics_port!r}"
            )

    endpoint = options.endpoint
    if endpoint and not str(endpoint).startswith(("https://", "http://")):
        logger.warning(
            "Invalid Sentry DSN format: %s... (showing first 20 chars)",
            str(endpoint)[:20],
        )
        options = replace(options, endpoint=None)

    return options


def merge_options(*sources: Optional[Mapping[str, Any]]) -> TracerOptions:
    """Overlay each source on top of the defaults, later sources winning."""
    known = {field.name for field in fields(TracerOptions)}
    merged: Dict[str, Any] = {}
    for source in sources:
        if not source:
            continue
        unknown = set(source) - known
        if unknown:
            raise ConfigurationException(
                f"Unknown error tracer options: {', '.join(sorted(unknown))}"
            )
        merged.update(source)
    return validate_options(replace(DEFAULT_OPTIONS, **merged))


def load_options(
    app_config: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> TracerOptions:
    """Build options from defaults, environment, app config and overrides."""
    return merge_options(options_from_env(), app_config, overrides)
