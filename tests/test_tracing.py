from unittest.mock import patch

import pytest
import sentry_sdk
from opentelemetry.sdk.trace import TracerProvider
from sentry_sdk.integrations.opentelemetry import SentrySpanProcessor

from conftest import DSN, envelope_items
from flask_error_tracer import tracing
from flask_error_tracer.config import merge_options
from flask_error_tracer.error_tracking import init_sentry
from flask_error_tracer.instrumentation import DatasourceInstrumentation


@pytest.fixture(autouse=True)
def fresh_provider(monkeypatch):
    monkeypatch.setattr(tracing, "_provider", None)


@pytest.fixture
def otel_globals():
    with patch.object(tracing.trace, "set_tracer_provider") as set_provider, patch.object(
        tracing, "set_global_textmap"
    ) as set_textmap, patch.object(tracing, "SentrySpanProcessor") as processor:
        yield set_provider, set_textmap, processor


def test_init_tracer_installs_provider_once(otel_globals):
    set_provider, set_textmap, processor = otel_globals
    options = merge_options({"endpoint": DSN, "enable_performance_tracing": True})

    provider = tracing.init_tracer(options)

    assert tracing.init_tracer(options) is provider
    set_provider.assert_called_once_with(provider)
    set_textmap.assert_called_once()
    processor.assert_called_once_with()


def test_otlp_exporter_is_added_when_configured(otel_globals):
    options = merge_options({"endpoint": DSN, "otlp_endpoint": "http://collector:4318/"})

    with patch.object(tracing, "OTLPSpanExporter") as exporter, patch.object(
        tracing, "BatchSpanProcessor"
    ) as batch:
        tracing.init_tracer(options)

    exporter.assert_called_once_with(endpoint="http://collector:4318/v1/traces")
    batch.assert_called_once_with(exporter.return_value)


def test_no_otlp_exporter_by_default(otel_globals):
    with patch.object(tracing, "OTLPSpanExporter") as exporter:
        tracing.init_tracer(merge_options({"endpoint": DSN}))

    exporter.assert_not_called()


@pytest.mark.parametrize(
    "endpoint,expected",
    [
        ("http://collector:4318", "http://collector:4318/v1/traces"),
        ("http://collector:4318/v1/traces", "http://collector:4318/v1/traces"),
    ],
)
def test_traces_endpoint(endpoint, expected):
    assert tracing._traces_endpoint(endpoint) == expected


def test_datasource_calls_reach_sentry_as_transactions(sentry_envelopes):
    class Store:
        def read(self, model):
            return self.to_app({"model": model})

        def to_app(self, value):
            return value

    init_sentry(
        merge_options(
            {"endpoint": DSN, "enable_performance_tracing": True, "traces_sample_rate": 1.0}
        )
    )
    provider = TracerProvider()
    provider.add_span_processor(SentrySpanProcessor())
    DatasourceInstrumentation(provider.get_tracer("tests")).instrument(Store)

    assert Store().read("users") == {"model": "users"}
    sentry_sdk.flush()

    transactions = envelope_items(sentry_envelopes, "transaction")
    assert [event["transaction"] for event in transactions] == ["datasource_read"]
    spans = transactions[0]["spans"]
    assert any(
        "datasource_toApp" in (span.get("op"), span.get("description")) for span in spans
    )
