"""
Centralized logging utilities with scoped loggers and decorators.
Provides structured JSON logging with consistent field names across the
sync engine, pipelines and workers.
"""

import functools
import logging
import sys
import time
from typing import Any, Callable
from enum import Enum

import structlog

from shared_utils.constants import LogScope


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class LogLevel(str, Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def configure_logging(level: str = LogLevel.INFO.value) -> None:
    """Route structlog output to stdout at the given level.

    Called once by process entrypoints (API, worker, scripts).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )


def get_scoped_logger(scope: str) -> structlog.BoundLogger:
    """Get a scoped logger for a specific service/component.

    Args:
        scope: LogScope value (sync, transcription, extraction, worker, ...)

    Returns:
        Structured logger bound to scope.
    """
    logger = structlog.get_logger()
    return logger.bind(scope=scope)


def log_execution(scope: str = LogScope.API, level: str = LogLevel.INFO.value):
    """Decorator to log function execution time and outcome.

    Args:
        scope: Log scope identifier
        level: Log level used for the start/success events

    Example:
        @log_execution(scope=LogScope.SYNC)
        def sync_platform(self, integration_id):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            logger = get_scoped_logger(scope)
            log_method = getattr(logger, level.lower(), logger.info)
            start_time = time.time()

            log_method(
                f"{func.__name__}_start",
                func_name=func.__name__,
                args_count=len(args),
                kwargs_keys=list(kwargs.keys())
            )

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func.__name__}_failed",
                    func_name=func.__name__,
                    elapsed_seconds=time.time() - start_time,
                    error_type=type(e).__name__,
                    error_message=str(e)
                )
                raise

            log_method(
                f"{func.__name__}_success",
                func_name=func.__name__,
                elapsed_seconds=time.time() - start_time,
                result_type=type(result).__name__
            )
            return result

        return wrapper
    return decorator


class ContextualLogger:
    """Helper class for managing contextual logging within a scope."""

    def __init__(self, scope: str, **context: Any):
        self.scope = scope
        self.logger = get_scoped_logger(scope).bind(**context)

    def bind(self, **context: Any) -> "ContextualLogger":
        """Return a child logger carrying extra context fields."""
        child = ContextualLogger(self.scope)
        child.logger = self.logger.bind(**context)
        return child

    def info(self, event_name: str, **kwargs):
        self.logger.info(event_name, **kwargs)

    def debug(self, event_name: str, **kwargs):
        self.logger.debug(event_name, **kwargs)

    def warning(self, event_name: str, **kwargs):
        self.logger.warning(event_name, **kwargs)

    def error(self, event_name: str, **kwargs):
        self.logger.error(event_name, **kwargs)

    def critical(self, event_name: str, **kwargs):
        self.logger.critical(event_name, **kwargs)
