"""Flask extension wiring request errors and datasource timings to Sentry.

Usage::

    from flask import Flask
    from flask_error_tracer import ErrorTracer

    app = Flask(__name__)
    app.config["ERROR_TRACER"] = {"endpoint": "https://key@o0.ingest.sentry.io/1"}
    tracer = ErrorTracer(app, datasources=[MyDatasource])

Without an endpoint the extension logs a warning and does nothing else.
"""

import logging
from typing import Any, Iterable, List, Optional

import sentry_sdk
from flask import Flask, Response, request

from .browser_script import BrowserScriptCache, register_browser_script_route
from .config import TracerOptions, load_options
from .constant import CONFIG_KEY, EXTENSION_NAME, REQUEST_ID_HEADER
from .error_tracking import (
    capture_exception,
    init_sentry,
    register_error_handler,
    register_request_scope,
)
from .exceptions import (
    BrowserScriptException,
    ConfigurationException,
    ErrorTracerException,
    InstrumentationException,
)
from .injector import HeadInjector
from .instrumentation import DatasourceInstrumentation
from .log_config import configure_logging, get_correlation_id, set_correlation_id
from .metrics import start_metrics_server
from .tracing import get_tracer, init_tracer

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


class ErrorTracer:
    """Sentry error tracking, browser script injection and datasource tracing."""

    def __init__(
        self,
        app: Optional[Flask] = None,
        datasources: Iterable[type] = (),
        **overrides: Any,
    ):
        self.overrides = overrides
        self.datasources: List[type] = list(datasources)
        self.options: Optional[TracerOptions] = None
        self.browser_script: Optional[BrowserScriptCache] = None
        self.injector: Optional[HeadInjector] = None
        self.instrumentation: Optional[DatasourceInstrumentation] = None
        if app is not None:
            self.init_app(app)

    @property
    def enabled(self) -> bool:
        return self.options is not None and self.options.enabled

    def init_app(self, app: Flask) -> None:
        self.options = options = load_options(app.config.get(CONFIG_KEY), self.overrides)
        app.extensions[EXTENSION_NAME] = self

        if not options.enabled:
            logger.warning("Error tracking is disabled: no endpoint specified")
            return

        init_sentry(options)
        register_request_scope(app)
        register_error_handler(app)
        app.before_request(self._bind_request_id)
        app.after_request(self._echo_request_id)

        if options.serve_browser_script_locally and options.browser_script:
            self.browser_script = BrowserScriptCache(
                options.browser_script, options.download_timeout
            )
            register_browser_script_route(app, self.browser_script)
            if options.prefetch_browser_script:
                self.browser_script.prefetch()

        self.injector = HeadInjector(options)
        self.injector.register(app)

        if options.enable_performance_tracing:
            init_tracer(options)
            self.instrumentation = DatasourceInstrumentation(get_tracer(__name__))
            for datasource in self.datasources:
                self.instrumentation.instrument(datasource)

        if options.metrics_port:
            start_metrics_server(options.metrics_port)

    def instrument_datasource(self, datasource_cls: type) -> List[str]:
        """Trace ``datasource_cls``, now or once ``init_app`` has run."""
        if self.options is None:
            self.datasources.append(datasource_cls)
            return []
        if self.instrumentation is None:
            logger.debug(
                "Performance tracing is off, not instrumenting %s",
                datasource_cls.__name__,
            )
            return []
        self.datasources.append(datasource_cls)
        return self.instrumentation.instrument(datasource_cls)

    def capture_exception(self, exc: BaseException) -> Optional[str]:
        if not self.enabled:
            return None
        return capture_exception(exc)

    def _bind_request_id(self) -> None:
        correlation_id = set_correlation_id(request.headers.get(REQUEST_ID_HEADER))
        sentry_sdk.set_tag("correlation_id", correlation_id)

    def _echo_request_id(self, response: Response) -> Response:
        response.headers.setdefault(REQUEST_ID_HEADER, get_correlation_id())
        return response


__all__ = [
    "ErrorTracer",
    "TracerOptions",
    "load_options",
    "configure_logging",
    "set_correlation_id",
    "ErrorTracerException",
    "ConfigurationException",
    "BrowserScriptException",
    "InstrumentationException",
]
