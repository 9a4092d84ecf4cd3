"""Error tracking integration using Sentry.

``init_sentry`` hands the merged options to ``sentry_sdk.init`` and
``register_error_handler`` connects a single receiver to Flask's
``got_request_exception`` signal, so every uncaught error raised while
handling a request is forwarded. Errors Flask turns into HTTP responses
itself (``HTTPException``) never reach the signal.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import sentry_sdk
from flask import Flask, g, got_request_exception, request
from sentry_sdk.consts import INSTRUMENTER
from sentry_sdk.integrations.logging import LoggingIntegration

from .config import TracerOptions
from .constant import REDACTED, SENSITIVE_HEADERS, SENSITIVE_KEYS
from .metrics import ERRORS_FORWARDED

logger = logging.getLogger(__name__)


def _sanitize_event(event, hint):
    """Remove sensitive request headers from an event."""
    request = event.get("request") or {}
    headers = request.get("headers")
    if headers:
        for header in list(headers):
            if header.lower() in SENSITIVE_HEADERS:
                headers[header] = REDACTED
    return event


def _sanitize_breadcrumb(crumb, hint):
    """Remove sensitive values from breadcrumb data."""
    data = crumb.get("data")
    if data:
        for key in list(data):
            if key.lower() in SENSITIVE_KEYS:
                data[key] = REDACTED
    return crumb


def _chain(sanitizer: Callable, callback: Optional[Callable]) -> Callable:
    """Run the user callback after redaction; either may drop the item."""
    if callback is None:
        return sanitizer

    def before(item, hint):
        item = sanitizer(item, hint)
        if item is None:
            return None
        return callback(item, hint)

    return before


def build_init_payload(options: TracerOptions) -> Dict[str, Any]:
    """Return the keyword arguments passed to ``sentry_sdk.init``."""

    payload: Dict[str, Any] = {
        "dsn": options.endpoint,
        "traces_sample_rate": options.traces_sample_rate,
        "release": options.release,
        "environment": options.environment,
        "before_send": _chain(_sanitize_event, options.before_send),
        "before_breadcrumb": _chain(_sanitize_breadcrumb, options.before_breadcrumb),
        # Errors are forwarded by our own receiver. The SDK's Flask
        # integration and Flask's "Exception on ..." log record would report
        # them a second time, so log records only become breadcrumbs.
        "integrations": [LoggingIntegration(event_level=None)],
        "auto_enabling_integrations": False,
    }
    # Newer SDKs warn about the option whenever it is passed
    if options.send_default_pii:
        payload["send_default_pii"] = True
    if options.enable_performance_tracing:
        payload["instrumenter"] = INSTRUMENTER.OTEL
    return payload


def init_sentry(options: TracerOptions) -> bool:
    """Initialise Sentry error tracking if an endpoint is configured."""

    if not options.enabled:
        return False

    sentry_sdk.init(**build_init_payload(options))
    logger.info(
        "Sentry initialised (environment: %s)", options.environment or "production"
    )
    return True


def capture_exception(exc: BaseException) -> Optional[str]:
    """Forward an exception to Sentry and return the event ID."""

    ERRORS_FORWARDED.labels(exception=type(exc).__name__).inc()
    return sentry_sdk.capture_exception(exc)


def _forward_exception(sender: Flask, exception: BaseException, **extra: Any) -> None:
    logger.debug("Forwarding uncaught %s to Sentry", type(exception).__name__)
    capture_exception(exception)


def _request_data() -> Dict[str, Any]:
    return {
        "method": request.method,
        "url": request.base_url,
        "query_string": request.query_string.decode("latin-1"),
        "headers": dict(request.headers),
    }


def _enter_request_scope() -> None:
    scope_manager = sentry_sdk.isolation_scope()
    scope = scope_manager.__enter__()
    g._error_tracer_scope = scope_manager

    data = _request_data()

    def add_request_data(event, hint):
        event.setdefault("request", {}).update(data)
        return event

    scope.add_event_processor(add_request_data)


def _exit_request_scope(exc: Optional[BaseException]) -> None:
    scope_manager = g.pop("_error_tracer_scope", None)
    if scope_manager is not None:
        scope_manager.__exit__(None, None, None)


def register_request_scope(app: Flask) -> None:
    """Give every request of ``app`` its own Sentry isolation scope.

    Users, tags and breadcrumbs set while handling a request stay with that
    request, and its events carry the method, URL and headers.
    """

    app.before_request(_enter_request_scope)
    app.teardown_request(_exit_request_scope)


def register_error_handler(app: Flask) -> None:
    """Forward every uncaught request error of ``app`` to Sentry.

    Connecting the same receiver again is a no-op, so calling this twice does
    not report errors twice.
    """

    got_request_exception.connect(_forward_exception, app)


__all__ = [
    "build_init_payload",
    "init_sentry",
    "capture_exception",
    "register_error_handler",
    "register_request_scope",
]
