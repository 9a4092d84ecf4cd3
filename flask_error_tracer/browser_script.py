"""Download-once cache for the browser-side tracking script.

The script is fetched from the CDN the first time it is needed and kept in
memory for the lifetime of the process. Concurrent callers share a single
pending download. A failed download is reported to every waiting caller and
then forgotten, so the next request tries again.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Optional

import requests
from flask import Flask, Response, abort

from .constant import (
    BROWSER_SCRIPT_ENDPOINT,
    BROWSER_SCRIPT_MAX_AGE,
    BROWSER_SCRIPT_MIMETYPE,
    BROWSER_SCRIPT_ROUTE,
)
from .exceptions import BrowserScriptException
from .metrics import BROWSER_SCRIPT_DOWNLOADS

logger = logging.getLogger(__name__)


class BrowserScriptCache:
    """Single-flight memoized download of the browser script."""

    def __init__(self, url: str, timeout: float = 25):
        self.url = url
        self.timeout = timeout
        self._lock = threading.Lock()
        self._body: Optional[bytes] = None
        self._pending: Optional[Future] = None

    @property
    def cached(self) -> bool:
        return self._body is not None

    def fetch(self) -> Future:
        """Return a future for the script body.

        The first caller performs the download in its own thread; callers
        arriving while it runs receive the same future.
        """
        with self._lock:
            if self._body is not None:
                future: Future = Future()
                future.set_result(self._body)
                return future
            if self._pending is not None:
                return self._pending
            future = self._pending = Future()

        self._download(future)
        return future

    def get(self) -> bytes:
        """Return the script body, downloading it if needed."""
        body = self._body
        if body is not None:
            return body
        return self.fetch().result()

    def prefetch(self) -> threading.Thread:
        """Start the download in the background right away."""
        thread = threading.Thread(
            target=self._prefetch, name="error-tracer-prefetch", daemon=True
        )
        thread.start()
        return thread

    def _prefetch(self) -> None:
        try:
            self.get()
        except BrowserScriptException as exc:
            logger.warning("Browser script prefetch failed: %s", exc)

    def _download(self, future: Future) -> None:
        try:
            body = self._request()
        except BaseException as exc:
            with self._lock:
                self._pending = None
            BROWSER_SCRIPT_DOWNLOADS.labels(outcome="failure").inc()
            future.set_exception(exc)
            if not isinstance(exc, Exception):
                raise
            return

        with self._lock:
            self._body = body
            self._pending = None
        BROWSER_SCRIPT_DOWNLOADS.labels(outcome="success").inc()
        logger.info("Cached browser script from %s (%d bytes)", self.url, len(body))
        future.set_result(body)

    def _request(self) -> bytes:
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise BrowserScriptException(
                f"Failed to download browser script from {self.url}: {e}"
            ) from e
        return response.content


def register_browser_script_route(app: Flask, cache: BrowserScriptCache) -> None:
    """Serve the cached script from ``BROWSER_SCRIPT_ROUTE``."""

    def serve_browser_script():
        try:
            body = cache.get()
        except BrowserScriptException as exc:
            logger.error("Unable to serve browser script: %s", exc)
            abort(502)

        response = Response(body, mimetype=BROWSER_SCRIPT_MIMETYPE)
        response.cache_control.public = True
        response.cache_control.max_age = BROWSER_SCRIPT_MAX_AGE
        return response

    app.add_url_rule(
        BROWSER_SCRIPT_ROUTE,
        endpoint=BROWSER_SCRIPT_ENDPOINT,
        view_func=serve_browser_script,
    )


__all__ = ["BrowserScriptCache", "register_browser_script_route"]
