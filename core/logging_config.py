"""
Logging Configuration for the Video Feed API.

Centralizes logging for the feed, view-tracking and storage services. Development
runs get colour-coded console output; production runs emit one JSON object per
line so the records can be shipped to a log pipeline as-is.

Key Components:
- `CorrelationFilter`: Copies the request correlation ID (held in a context
  variable) onto every record so all lines produced by one request, or by one
  link-refresh sweep, can be grouped together.
- `JSONFormatter`: Structured formatter used outside development. Any `extra=`
  fields passed to a logging call end up in an `extra` object.
- `ColoredConsoleFormatter`: Human readable formatter for local work.
- `get_logging_config` / `setup_logging`: Build and apply the `dictConfig`.
- `log_function_call`: Decorator logging entry, exit and duration of service
  entry points.

Architectural Design:
- Environment-Aware: Format and level come from `Settings` (or the environment
  when called without settings), never from code changes.
- Context-Aware: The correlation ID lives in a `ContextVar`, so it follows the
  asyncio task that handles a request and does not leak between requests.
"""

import functools
import inspect
import json
import logging
import logging.config
import os
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variable for request correlation ID
correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "correlation_id",
        "message",
    }
)

APP_LOGGERS = ("api", "services", "providers", "core", "jobs")


class CorrelationFilter(logging.Filter):
    """Filter that adds correlation ID to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        corr_id = correlation_id.get()
        if corr_id:
            record.correlation_id = corr_id
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        corr_id = getattr(record, "correlation_id", None) or correlation_id.get()
        if corr_id:
            log_entry["correlation_id"] = corr_id

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Colored console formatter for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        corr_id = getattr(record, "correlation_id", None)
        corr_part = f" [{corr_id}]" if corr_id else ""

        formatted = (
            f"{color}[{timestamp}] {record.levelname:8} "
            f"{record.name}{corr_part}: {record.getMessage()}{self.RESET}"
        )

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def get_logging_config(
    environment: Optional[str] = None, log_level: Optional[str] = None
) -> Dict[str, Any]:
    """Get logging configuration based on environment"""

    environment = (environment or os.getenv("ENVIRONMENT", "development")).lower()
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    formatter = "colored_console" if environment == "development" else "json"

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"correlation": {"()": CorrelationFilter}},
        "formatters": {
            "json": {"()": JSONFormatter},
            "colored_console": {"()": ColoredConsoleFormatter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": formatter,
                "filters": ["correlation"],
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            name: {"level": log_level, "handlers": ["console"], "propagate": False}
            for name in APP_LOGGERS
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }

    # Third-party loggers stay at INFO regardless of the app level
    for name in ("uvicorn", "uvicorn.access", "fastapi", "apscheduler"):
        config["loggers"][name] = {
            "level": "INFO",
            "handlers": ["console"],
            "propagate": False,
        }
    config["loggers"]["sqlalchemy.engine"] = {"level": "WARNING"}

    if environment == "production":
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "json",
            "filters": ["correlation"],
            "filename": os.getenv("LOG_FILE", "/var/log/videofeed/app.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
        }
        for logger_config in config["loggers"].values():
            if "handlers" in logger_config:
                logger_config["handlers"].append("file")
        config["root"]["handlers"].append("file")

    return config


def setup_logging(environment: Optional[str] = None, log_level: Optional[str] = None):
    """Initialize logging configuration"""
    config = get_logging_config(environment, log_level)
    logging.config.dictConfig(config)

    logger = logging.getLogger("core.logging")
    logger.info(
        f"Logging initialized for {environment or os.getenv('ENVIRONMENT', 'development')} environment"
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name"""
    return logging.getLogger(name)


def set_correlation_id(corr_id: Optional[str]):
    """Set correlation ID for the current context"""
    correlation_id.set(corr_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from the current context"""
    return correlation_id.get()


def log_function_call(logger: logging.Logger):
    """Decorator to log function calls with execution time"""

    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            logger.debug(f"Calling {func.__name__}")
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    f"Failed {func.__name__}: {e}",
                    extra={
                        "execution_time_ms": round(
                            (time.perf_counter() - start_time) * 1000, 2
                        ),
                        "error_type": type(e).__name__,
                    },
                )
                raise
            logger.debug(
                f"Completed {func.__name__}",
                extra={
                    "execution_time_ms": round(
                        (time.perf_counter() - start_time) * 1000, 2
                    )
                },
            )
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            logger.debug(f"Calling {func.__name__}")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    f"Failed {func.__name__}: {e}",
                    extra={
                        "execution_time_ms": round(
                            (time.perf_counter() - start_time) * 1000, 2
                        ),
                        "error_type": type(e).__name__,
                    },
                )
                raise
            logger.debug(
                f"Completed {func.__name__}",
                extra={
                    "execution_time_ms": round(
                        (time.perf_counter() - start_time) * 1000, 2
                    )
                },
            )
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
