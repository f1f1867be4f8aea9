"""HTTP middleware."""

from skyport.app.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
