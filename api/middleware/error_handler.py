"""
Global Error Handler Middleware - API Layer

Provides centralized error handling with sanitized error responses and logging.

@.architecture
Incoming: app.py (middleware registration), Exception objects from endpoints --- {FastAPI Request objects, Python exceptions}
Processing: dispatch(), _handle_error(), _classify_error(), _build_error_response(), _log_error() --- {5 jobs: exception_catching, error_classification, response_formatting, sanitization, logging}
Outgoing: monitoring/logging.py, Frontend (HTTP) --- {structured error logs, JSONResponse {error, message, timestamp}}
"""

import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from monitoring import get_logger

logger = get_logger(__name__)

GENERIC_MESSAGE = "Something went wrong"


class ErrorHandlerConfig:
    """Configuration for error handler."""

    def __init__(
        self,
        include_traceback: bool = False,
        sanitize_errors: bool = True,
        log_errors: bool = True,
    ):
        """
        Initialize error handler configuration.

        Args:
            include_traceback: Include traceback in response (dev only)
            sanitize_errors: Replace exception text with a generic message
            log_errors: Log errors to logger
        """
        self.include_traceback = include_traceback
        self.sanitize_errors = sanitize_errors
        self.log_errors = log_errors


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware for global error handling.

    Unhandled exceptions become a JSON 500 (or the exception's own
    ``status_code`` when it carries one). Exception text reaches the client
    only when sanitization is off.
    """

    def __init__(
        self,
        app: ASGIApp,
        config: Optional[ErrorHandlerConfig] = None
    ):
        super().__init__(app)
        self.config = config or ErrorHandlerConfig()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            return self._handle_error(request, e)

    def _handle_error(self, request: Request, error: Exception) -> JSONResponse:
        status_code, title = self._classify_error(error)

        if self.config.log_errors:
            self._log_error(request, error, status_code)

        return JSONResponse(
            status_code=status_code,
            content=self._build_error_response(title, error),
        )

    @staticmethod
    def _classify_error(error: Exception) -> Tuple[int, str]:
        """
        Map an exception to (status_code, error title).
        """
        status_code = getattr(error, 'status_code', None)
        if isinstance(status_code, int) and 400 <= status_code < 600:
            return status_code, type(error).__name__
        return 500, "Internal Server Error"

    def _build_error_response(self, title: str, error: Exception) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "error": title,
            "message": GENERIC_MESSAGE if self.config.sanitize_errors else str(error),
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        }

        if self.config.include_traceback:
            response["traceback"] = traceback.format_exception(
                type(error), error, error.__traceback__
            )

        return response

    @staticmethod
    def _log_error(request: Request, error: Exception, status_code: int) -> None:
        context = {
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error_type": type(error).__name__,
        }
        if status_code >= 500:
            logger.exception(f"Server error: {error}", **context)
        else:
            logger.warning(f"Client error: {error}", **context)


def create_error_handler_middleware(development: bool = False):
    """
    Create error handler middleware factory with environment-appropriate config.

    Args:
        development: Whether running in development mode

    Returns:
        Middleware class and kwargs for FastAPI
    """
    if development:
        config = ErrorHandlerConfig(include_traceback=True, sanitize_errors=False)
    else:
        config = ErrorHandlerConfig(include_traceback=False, sanitize_errors=True)

    return (ErrorHandlerMiddleware, {"config": config})
