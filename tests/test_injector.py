from flask import Flask, Response, render_template_string

from conftest import DSN, SCRIPT_URL
from flask_error_tracer.browser_script import (
    BrowserScriptCache,
    register_browser_script_route,
)
from flask_error_tracer.config import merge_options
from flask_error_tracer.injector import HeadInjector, build_init_script

PAGE = "<!doctype html><html><head><title>Home</title></head><body>hi</body></html>"


def make_app(**overrides):
    options = merge_options({"endpoint": DSN, **overrides})
    app = Flask(__name__)

    @app.route("/page")
    def page():
        return PAGE

    @app.route("/fragment")
    def fragment():
        return "<div>partial</div>"

    @app.route("/data")
    def data():
        return {"html": "</head>"}

    @app.route("/stream")
    def stream():
        return Response((chunk for chunk in [PAGE]), mimetype="text/html")

    @app.route("/explicit")
    def explicit():
        return render_template_string(
            "<html><head>{{ error_tracer_head() }}</head><body></body></html>"
        )

    if options.serve_browser_script_locally:
        register_browser_script_route(app, BrowserScriptCache(options.browser_script))
    HeadInjector(options).register(app)
    return app


def test_init_script_contains_dsn():
    script = build_init_script(merge_options({"endpoint": DSN}))

    assert script == f'Sentry.init({{"dsn": "{DSN}"}});'


def test_init_script_includes_environment_release_and_tracing():
    options = merge_options(
        {
            "endpoint": DSN,
            "environment": "staging",
            "release": "2.1.0",
            "enable_performance_tracing": True,
            "traces_sample_rate": 0.5,
        }
    )

    script = build_init_script(options)

    assert '"environment": "staging"' in script
    assert '"release": "2.1.0"' in script
    assert '"tracesSampleRate": 0.5' in script
    assert "new Sentry.BrowserTracing()" in script


def test_init_script_cannot_close_its_tag():
    script = build_init_script(merge_options({"endpoint": DSN, "release": "</script>"}))

    assert "</script>" not in script
    assert "<\\/script>" in script


def test_page_gets_script_tags_in_head():
    html = make_app().test_client().get("/page").get_data(as_text=True)

    assert f'<script src="{SCRIPT_URL}"></script>' in html
    assert f'<script>Sentry.init({{"dsn": "{DSN}"}});</script>' in html
    assert html.index("Sentry.init") < html.index("</head>")
    assert html.endswith("<body>hi</body></html>")


def test_content_length_matches_injected_body():
    response = make_app().test_client().get("/page")

    assert response.content_length == len(response.data)


def test_fragments_are_left_alone():
    client = make_app().test_client()

    assert client.get("/fragment").get_data(as_text=True) == "<div>partial</div>"
    assert "Sentry" not in client.get("/data").get_data(as_text=True)


def test_streamed_pages_are_left_alone():
    html = make_app().test_client().get("/stream").get_data(as_text=True)

    assert html == PAGE


def test_head_requests_are_left_alone():
    app = make_app()

    response = app.test_client().head("/page")
    assert response.content_length == len(PAGE)

    with app.test_request_context("/page", method="HEAD"):
        injected = app.process_response(app.make_response(PAGE))
    assert injected.get_data(as_text=True) == PAGE


def test_explicit_placement_is_not_duplicated():
    html = make_app().test_client().get("/explicit").get_data(as_text=True)

    assert html.count("Sentry.init") == 1
    assert html.count(SCRIPT_URL) == 1


def test_local_route_is_referenced_when_served_locally():
    html = (
        make_app(serve_browser_script_locally=True)
        .test_client()
        .get("/page")
        .get_data(as_text=True)
    )

    assert '<script src="/scripts/error_tracer.js"></script>' in html
    assert SCRIPT_URL not in html


def test_nothing_is_injected_without_browser_script():
    html = make_app(browser_script=None).test_client().get("/page").get_data(as_text=True)

    assert html == PAGE


def test_templates_rendered_outside_a_request_use_the_local_route():
    app = make_app(serve_browser_script_locally=True)

    with app.app_context():
        html = render_template_string("<head>{{ error_tracer_head() }}</head>")

    assert '<script src="/scripts/error_tracer.js"></script>' in html
