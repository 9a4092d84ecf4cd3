"""Add the browser tracking script to rendered pages.

Every full HTML page leaving the application gets two tags appended to its
``<head>``: one loading the Sentry browser bundle and one initialising it.
Fragments without a ``<head>`` are left untouched.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

from flask import Flask, Response, has_request_context, request, url_for
from markupsafe import Markup

from .config import TracerOptions
from .constant import BROWSER_SCRIPT_ENDPOINT, BROWSER_SCRIPT_ROUTE, HEAD_MARKER

logger = logging.getLogger(__name__)

HEAD_CLOSE = re.compile(r"</head\s*>", re.IGNORECASE)

HEAD_TEMPLATE = Markup(
    '{marker}<script src="{src}"></script><script>{init}</script>'
)


def _script_json(value: Any) -> str:
    # A literal "</" inside an inline script would end the element early
    return json.dumps(value).replace("</", "<\\/")


def build_init_script(options: TracerOptions) -> str:
    """Return the inline ``Sentry.init`` call for the browser."""
    config: Dict[str, Any] = {"dsn": options.endpoint}
    if options.environment:
        config["environment"] = options.environment
    if options.release:
        config["release"] = options.release

    if options.enable_performance_tracing:
        config["tracesSampleRate"] = options.traces_sample_rate
        return (
            f"Sentry.init(Object.assign({_script_json(config)}, "
            "{integrations: [new Sentry.BrowserTracing()]}));"
        )
    return f"Sentry.init({_script_json(config)});"


class HeadInjector:
    """Render and inject the browser script tags."""

    def __init__(self, options: TracerOptions):
        self.options = options
        self.init_script = build_init_script(options)

    @property
    def serves_locally(self) -> bool:
        return bool(
            self.options.serve_browser_script_locally and self.options.browser_script
        )

    def browser_script_url(self) -> Optional[str]:
        if self.serves_locally:
            # Templates rendered outside a request cannot build URLs
            if not has_request_context():
                return BROWSER_SCRIPT_ROUTE
            return url_for(BROWSER_SCRIPT_ENDPOINT)
        return self.options.browser_script

    def head_tags(self) -> Markup:
        """Tags for templates that place them explicitly."""
        src = self.browser_script_url()
        if not src:
            return Markup("")
        return HEAD_TEMPLATE.format(
            marker=Markup(HEAD_MARKER), src=src, init=Markup(self.init_script)
        )

    def inject(self, response: Response) -> Response:
        """``after_request`` hook adding the tags to top-level pages."""
        if request.method == "HEAD" or response.mimetype != "text/html":
            return response
        if response.direct_passthrough or response.is_streamed:
            return response

        html = response.get_data(as_text=True)
        if HEAD_MARKER in html:
            return response

        match = HEAD_CLOSE.search(html)
        if match is None:
            return response

        tags = self.head_tags()
        if not tags:
            return response

        response.set_data(html[: match.start()] + str(tags) + html[match.start() :])
        return response

    def register(self, app: Flask) -> None:
        app.after_request(self.inject)
        app.jinja_env.globals["error_tracer_head"] = self.head_tags


__all__ = ["HeadInjector", "build_init_script"]
