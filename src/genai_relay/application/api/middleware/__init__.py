"""
Middleware Package
==================

- request_logging.py: correlation ID, HTTP metrics and request logs

CORS is handled by Starlette's ``CORSMiddleware``, registered in
``create_app`` together with this package's middleware.
"""

from genai_relay.application.api.middleware.request_logging import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
