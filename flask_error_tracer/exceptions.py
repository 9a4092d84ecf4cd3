"""Custom exceptions for the error tracer extension."""

class ErrorTracerException(Exception):
    """Base exception for the error tracer."""
    pass

class ConfigurationException(ErrorTracerException):
    """Exception raised for invalid or unknown options."""
    pass

class BrowserScriptException(ErrorTracerException):
    """Exception raised when the browser script cannot be downloaded."""
    pass

class InstrumentationException(ErrorTracerException):
    """Exception raised when a method cannot be instrumented."""
    pass
