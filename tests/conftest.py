from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import sentry_sdk
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sentry_sdk.transport import Transport

from flask_error_tracer.config import ENV_VARIABLES

DSN = "https://public@o0.ingest.sentry.io/1"
SCRIPT_URL = "https://browser.sentry-cdn.com/7.51.2/bundle.tracing.min.js"
SCRIPT_BODY = b"window.Sentry = {init: function () {}};"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of option merging."""
    for variable in ENV_VARIABLES.values():
        monkeypatch.delenv(variable, raising=False)


@pytest.fixture(autouse=True)
def sentry(request):
    """Never talk to a real Sentry project from the tests."""
    if "sentry_envelopes" in request.fixturenames:
        # The test runs the real SDK against a capturing transport
        yield None
        return
    with patch.object(sentry_sdk, "init") as init, patch.object(
        sentry_sdk, "capture_exception", return_value="event-id"
    ) as capture:
        yield SimpleNamespace(init=init, capture_exception=capture)


@pytest.fixture
def sentry_envelopes(monkeypatch):
    """Envelopes the real SDK sends while the test runs."""
    envelopes = []

    class CapturingTransport(Transport):
        def capture_envelope(self, envelope):
            envelopes.append(envelope)

    init = sentry_sdk.init
    monkeypatch.setattr(
        sentry_sdk, "init", lambda **options: init(transport=CapturingTransport, **options)
    )
    yield envelopes
    sentry_sdk.flush()
    init()


def envelope_items(envelopes, item_type):
    return [
        item.payload.json
        for envelope in envelopes
        for item in envelope.items
        if item.type == item_type
    ]


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def tracer(span_exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider.get_tracer("tests")


def script_response(body=SCRIPT_BODY):
    response = MagicMock()
    response.content = body
    response.raise_for_status.return_value = None
    return response
