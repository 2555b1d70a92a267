"""
Application Logger

Every component logs through a child of the ``studyiq`` logger, e.g.
``app_logger.getChild("adaptive.orchestrator")``. Handlers are attached to the
package root only, so embedding applications keep control of the root logger.

Per-request context (user and session ids) travels on a LoggerAdapter and is
rendered either as a ``[key=value ...]`` suffix or, with JSON output, as a
``context`` object.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Dict, Any, Optional, Union, Callable, TypeVar

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "studyiq"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'apply_logging_config',
    'LoggerAdapter',
    'JsonFormatter',
    'app_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    Renders a record as one JSON object per line.

    Timestamps are UTC ISO-8601. Context attached by LoggerAdapter is kept
    apart from the message under ``context``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc).isoformat(),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }

        context = getattr(record, 'context', None)
        if context:
            payload["context"] = context

        if record.exc_info and record.exc_info[0] is not None:
            payload["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(payload, default=str)


def configure_logger(
    level: Union[str, int] = logging.INFO,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True,
    name: str = ROOT_LOGGER_NAME
) -> logging.Logger:
    """
    (Re)build the handlers of the package logger.

    Existing handlers are closed and replaced, so calling this twice does not
    duplicate output.

    Args:
        level: Log level name or number
        use_json: Emit JsonFormatter output instead of the pipe-delimited format
        log_file: Optional file to append to; its directory is created
        console_output: Whether to log to stdout
        name: Logger to configure

    Returns:
        The configured logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter() if use_json else logging.Formatter(DEFAULT_LOG_FORMAT, DEFAULT_DATE_FORMAT)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not open log file {log_file}: {e}")

    return logger


def apply_logging_config(logging_config) -> logging.Logger:
    """Configure the package logger from a ``LoggingConfig`` section."""
    return configure_logger(
        level=logging_config.level,
        use_json=logging_config.use_json,
        log_file=logging_config.file_path,
    )


class LoggerAdapter(logging.LoggerAdapter):
    """
    Adapter stamping every record with request context.

    The orchestrator binds ``user_id`` and ``session_id`` once per call and
    hands the adapter down instead of repeating the ids in each message.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        if not self.extra:
            return msg, kwargs

        extra = dict(kwargs.get('extra') or {})
        context = dict(extra.get('context') or {})
        context.update(self.extra)
        extra['context'] = context
        kwargs = dict(kwargs, extra=extra)

        suffix = " ".join(f"{key}={value}" for key, value in self.extra.items())
        return f"{msg} [{suffix}]", kwargs

    def with_context(self, **context) -> 'LoggerAdapter':
        """Return a new adapter carrying this adapter's context plus ``context``."""
        merged = dict(self.extra)
        merged.update(context)
        return LoggerAdapter(self.logger, merged)


def get_app_logger() -> logging.Logger:
    """
    Return the package logger, configuring it from the environment once.

    ``LOG_LEVEL``, ``LOG_JSON`` and ``LOG_FILE`` are honoured on first use.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if logger.handlers:
        return logger

    return configure_logger(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        use_json=os.environ.get("LOG_JSON", "false").lower() == "true",
        log_file=os.environ.get("LOG_FILE"),
    )


app_logger = get_app_logger()


def log_execution_time(logger: Optional[logging.Logger] = None, level: int = logging.DEBUG) -> Callable[[F], F]:
    """
    Decorator logging how long a call took, and whether it raised.

    Works for plain and ``async`` functions.

    Args:
        logger: Logger to report to (defaults to app_logger)
        level: Level of the timing line
    """
    def decorator(func: F) -> F:
        def report(started: float, error: Optional[BaseException] = None) -> None:
            elapsed = time.perf_counter() - started
            target = logger or app_logger
            if error is None:
                target.log(level, f"{func.__qualname__} finished in {elapsed:.3f}s")
            else:
                target.log(level, f"{func.__qualname__} raised {type(error).__name__} after {elapsed:.3f}s")

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        return async_wrapper if asyncio.iscoroutinefunction(func) else wrapper
    return decorator
