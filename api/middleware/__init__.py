"""
API Middleware Layer

Middleware components for the HTTP surface:
- Error handling
- Request logging
- CORS (via FastAPI)
"""

from .error_handler import (
    ErrorHandlerMiddleware,
    ErrorHandlerConfig,
    create_error_handler_middleware,
)

from .request_logging import RequestLoggingMiddleware

__all__ = [
    # Error handling
    'ErrorHandlerMiddleware',
    'ErrorHandlerConfig',
    'create_error_handler_middleware',

    # Request logging
    'RequestLoggingMiddleware',
]
