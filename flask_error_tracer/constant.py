EXTENSION_NAME = "error_tracer"

# Flask config key holding user overrides
CONFIG_KEY = "ERROR_TRACER"

DEFAULT_BROWSER_SCRIPT = "https://browser.sentry-cdn.com/7.51.2/bundle.tracing.min.js"

# Local route the proxied browser script is served from
BROWSER_SCRIPT_ROUTE = "/scripts/error_tracer.js"
BROWSER_SCRIPT_ENDPOINT = "error_tracer_browser_script"
BROWSER_SCRIPT_MIMETYPE = "application/javascript"
BROWSER_SCRIPT_MAX_AGE = 86400

# Marker written next to the injected tags so a page is never injected twice
HEAD_MARKER = "<!-- error-tracer -->"

REQUEST_ID_HEADER = "X-Request-ID"

TRANSACTION_OPERATIONS = {
    "read": "datasource_read",
    "create": "datasource_create",
    "update": "datasource_update",
    "remove": "datasource_remove",
}

SPAN_OPERATIONS = {
    "to_app": "datasource_toApp",
}

# Request headers and breadcrumb keys scrubbed before events leave the process
SENSITIVE_HEADERS = ["authorization", "cookie", "x-api-key", "proxy-authorization"]
SENSITIVE_KEYS = ["token", "authorization", "api_key", "password", "secret"]
REDACTED = "[Redacted]"
