"""
Structured Logging - Monitoring Layer

One log line per event, either JSON (production) or human-readable text,
with the current WebSocket session's user and session id attached.

@.architecture
Incoming: app.py, ws/*.py, core/agent.py, All modules via get_logger() --- {str environment, str log_level, str format_type, str user_id/session_id}
Processing: configure_for_environment(), configure_logging(), JSONFormatter.format(), set_session_context(), StructuredLogger._log_with_context() --- {4 jobs: context_injection, formatting, log_configuration, structured_logging}
Outgoing: sys.stdout, Log files, All modules --- {StructuredLogger instances, JSON formatted logs, context variables}
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

SERVICE_NAME = "chatline"

# Set by WebSocketHub.serve for the lifetime of one connection task
user_id_ctx: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
session_id_ctx: ContextVar[Optional[str]] = ContextVar('session_id', default=None)

TEXT_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | [%(session_id)s] | %(message)s'

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ('httpx', 'httpcore', 'asyncio', 'websockets', 'uvicorn.access')


# =============================================================================
# Formatting
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    Render a record as a single JSON object.

    Keyword fields passed to StructuredLogger land under ``extra``; the
    session context (when set) is added at top level.
    """

    def __init__(self, include_traceback: bool = True, include_context: bool = True):
        super().__init__()
        self.include_traceback = include_traceback
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc)
                                 .isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'service': SERVICE_NAME,
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if self.include_context:
            for key, var in (('user_id', user_id_ctx), ('session_id', session_id_ctx)):
                value = var.get()
                if value:
                    entry[key] = value

        if record.exc_info and self.include_traceback:
            exc_type, exc_value, exc_tb = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(exc_type, exc_value, exc_tb),
            }

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            entry['extra'] = extra_fields

        return json.dumps(entry, default=str)


class ContextFilter(logging.Filter):
    """Copy the session context onto the record for the text format."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = user_id_ctx.get() or '-'
        record.session_id = session_id_ctx.get() or '-'
        return True


# =============================================================================
# Logger
# =============================================================================

class StructuredLogger:
    """
    Thin wrapper over ``logging.Logger`` taking structured keyword fields.

        logger.info("Session registered", session_id=sid, user_id=uid)
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._logger.name

    def _log_with_context(self, level: int, message: str, exc_info: Any = None, **kwargs: Any) -> None:
        extra = {'extra_fields': kwargs} if kwargs else None
        self._logger.log(level, message, exc_info=exc_info, extra=extra)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log_with_context(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log_with_context(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log_with_context(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log_with_context(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log_with_context(logging.ERROR, message, exc_info=True, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """
    Get structured logger for module.

    Args:
        name: Logger name (usually __name__)
    """
    return StructuredLogger(name)


# =============================================================================
# Configuration
# =============================================================================

def configure_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[Path] = None,
    enable_console: bool = True,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Install handlers on the root logger, replacing any existing ones.

    Args:
        level: Root log level name
        format_type: "json" or "text"
        log_file: Optional file to log to in addition to stdout
        enable_console: Log to stdout
        module_levels: Per-logger level overrides, e.g. {"ws.heartbeat": "DEBUG"}
    """
    formatter: logging.Formatter
    if format_type == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for module_name, module_level in (module_levels or {}).items():
        logging.getLogger(module_name).setLevel(getattr(logging, module_level.upper(), logging.INFO))


# Presets keyed by Settings.environment
LOGGING_PRESETS: Dict[str, Dict[str, Any]] = {
    'development': {
        'level': 'INFO',
        'format_type': 'text',
    },
    'production': {
        'level': 'INFO',
        'format_type': 'json',
    },
    'test': {
        'level': 'WARNING',
        'format_type': 'text',
    },
}


def configure_from_preset(preset: str = 'development', **overrides: Any) -> None:
    """
    Configure logging from a named preset.

    Raises:
        ValueError: Unknown preset name
    """
    if preset not in LOGGING_PRESETS:
        raise ValueError(f"Unknown preset: {preset}. Available: {list(LOGGING_PRESETS.keys())}")

    config = dict(LOGGING_PRESETS[preset])
    config.update(overrides)
    configure_logging(**config)


def configure_for_environment(
    environment: str,
    level: Optional[str] = None,
    format_type: Optional[str] = None,
) -> None:
    """
    Configure logging for an application environment.

    The test preset keeps its own level and format so test output stays quiet.
    Elsewhere ``level`` and ``format_type`` (from MonitoringSettings) win.
    """
    if environment == 'test':
        configure_from_preset('test')
        return

    overrides = {}
    if level:
        overrides['level'] = level
    if format_type and environment == 'production':
        overrides['format_type'] = format_type
    configure_from_preset(environment, **overrides)


# =============================================================================
# Session Context
# =============================================================================

def set_session_context(user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
    """Attach user and session ids to every log line of the current task."""
    if user_id:
        user_id_ctx.set(user_id)
    if session_id:
        session_id_ctx.set(session_id)


def clear_session_context() -> None:
    user_id_ctx.set(None)
    session_id_ctx.set(None)


def get_user_id() -> Optional[str]:
    return user_id_ctx.get()


def get_session_id() -> Optional[str]:
    return session_id_ctx.get()
