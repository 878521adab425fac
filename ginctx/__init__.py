"""Per-request context for HTTP handler chains, with request, response, error and debug helpers."""

__version__ = "0.1.0"

__all__ = ["context", "debug", "errors", "request", "response"]