"""
Routelet Logger
===============

Structured, leveled logging sink shared by the router and every request
context.

The minimum severity normally comes from the ``LOG_LEVEL`` environment
variable (``info``, ``warn`` or ``error``); see ``parse_level``.
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Optional, TextIO


class LogLevel(IntEnum):
    """Log levels."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


# Values accepted from LOG_LEVEL
_LEVEL_NAMES: Dict[str, LogLevel] = {
    "info": LogLevel.INFO,
    "warn": LogLevel.WARNING,
    "error": LogLevel.ERROR,
}


def parse_level(value: Optional[str], default: LogLevel = LogLevel.INFO) -> LogLevel:
    """
    Translate a ``LOG_LEVEL`` style string into a LogLevel.

    Recognized values are ``info``, ``warn`` and ``error``. Anything
    else, including ``None``, silently falls back to *default*.
    """
    if value is None:
        return default
    return _LEVEL_NAMES.get(value.strip().lower(), default)


@dataclass
class LogRecord:
    """
    Structured log record.

    Attributes:
        level: Log level
        message: Log message
        timestamp: Record timestamp
        context: Additional context
        exception: Exception info
    """

    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[BaseException] = None
    logger_name: str = "routelet"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.name,
            "message": self.message,
            "logger": self.logger_name,
        }

        if self.context:
            data["context"] = self.context

        if self.exception:
            data["exception"] = {
                "type": type(self.exception).__name__,
                "message": str(self.exception),
                "traceback": traceback.format_exception(
                    type(self.exception),
                    self.exception,
                    self.exception.__traceback__,
                ),
            }

        return data

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _isatty(stream: Any) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class LogFormatter:
    """Base log formatter."""

    def format(self, record: LogRecord) -> str:
        raise NotImplementedError


class TextFormatter(LogFormatter):
    """
    Plain text formatter.

    Colors are only used when the stream the output goes to (stderr
    unless given) is a terminal.

    Example output:
        2024-01-15 10:30:45 [INFO] Listening to 0.0.0.0:8000
    """

    def __init__(
        self,
        format_string: Optional[str] = None,
        date_format: str = "%Y-%m-%d %H:%M:%S",
        colors: bool = True,
        stream: Optional[TextIO] = None,
    ):
        self.format_string = format_string or "{timestamp} [{level}] {message}"
        self.date_format = date_format
        self.colors = colors and _isatty(stream if stream is not None else sys.stderr)

        self._colors = {
            LogLevel.DEBUG: "\033[36m",    # Cyan
            LogLevel.INFO: "\033[32m",     # Green
            LogLevel.WARNING: "\033[33m",  # Yellow
            LogLevel.ERROR: "\033[31m",    # Red
            LogLevel.CRITICAL: "\033[35m", # Magenta
        }
        self._reset = "\033[0m"

    def format(self, record: LogRecord) -> str:
        timestamp = record.timestamp.strftime(self.date_format)
        level = record.level.name

        if self.colors:
            color = self._colors.get(record.level, "")
            level = f"{color}{level}{self._reset}"

        message = record.message

        # Context as key=value pairs
        if record.context:
            context_str = " ".join(
                f"{k}={v}" for k, v in record.context.items()
            )
            message = f"{message} {context_str}"

        output = self.format_string.format(
            timestamp=timestamp,
            level=level,
            message=message,
            logger=record.logger_name,
        )

        if record.exception:
            output += "\n" + "".join(
                traceback.format_exception(
                    type(record.exception),
                    record.exception,
                    record.exception.__traceback__,
                )
            )

        return output


class JsonFormatter(LogFormatter):
    """One JSON document per record."""

    def __init__(self, pretty: bool = False):
        self.pretty = pretty

    def format(self, record: LogRecord) -> str:
        if self.pretty:
            return json.dumps(record.to_dict(), indent=2, default=str)
        return record.to_json()


class LogHandler:
    """Base log handler."""

    def __init__(
        self,
        formatter: Optional[LogFormatter] = None,
        level: LogLevel = LogLevel.DEBUG,
    ):
        self.formatter = formatter or TextFormatter()
        self.level = level

    def handle(self, record: LogRecord) -> None:
        if record.level >= self.level:
            self.emit(record)

    def emit(self, record: LogRecord) -> None:
        raise NotImplementedError

    def handle_error(self, record: LogRecord, error: Exception) -> None:
        """
        Report a failure raised while emitting *record*.

        Mirrors ``logging.Handler.handleError``: the failure is written
        to stderr so that a broken sink never aborts a request.
        """
        sys.stderr.write(
            f"--- Logging error in {type(self).__name__} ---\n"
            f"{type(error).__name__}: {error}\n"
            f"Message: {record.message!r}\n"
        )


class StreamHandler(LogHandler):
    """Stream output handler."""

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        formatter: Optional[LogFormatter] = None,
        level: LogLevel = LogLevel.DEBUG,
    ):
        self.stream = stream or sys.stderr
        super().__init__(formatter or TextFormatter(stream=self.stream), level)

    def emit(self, record: LogRecord) -> None:
        message = self.formatter.format(record)
        self.stream.write(message + "\n")
        self.stream.flush()


class Logger:
    """
    Structured logger.

    Example:
        logger = Logger("myapp", handlers=[StreamHandler()])

        logger.info("Request received", path="/api/users", method="GET")
        logger.error("Database error", exception=e)

        # With context
        logger = logger.with_context(request_id="abc123")
        logger.info("Processing request")
    """

    def __init__(
        self,
        name: str = "routelet",
        level: LogLevel = LogLevel.INFO,
        handlers: Optional[List[LogHandler]] = None,
    ):
        """
        Initialize logger.

        Args:
            name: Logger name
            level: Minimum log level
            handlers: Log handlers
        """
        self.name = name
        self.level = level
        self._handlers = handlers if handlers is not None else []
        self._context: Dict[str, Any] = {}

    @property
    def handlers(self) -> List[LogHandler]:
        return list(self._handlers)

    def add_handler(self, handler: LogHandler) -> "Logger":
        self._handlers.append(handler)
        return self

    def remove_handler(self, handler: LogHandler) -> "Logger":
        self._handlers.remove(handler)
        return self

    def with_context(self, **context: Any) -> "Logger":
        """
        Create logger with additional context.

        The new logger shares this logger's handlers.
        """
        new_logger = Logger(
            name=self.name,
            level=self.level,
            handlers=self._handlers,
        )
        new_logger._context = {**self._context, **context}
        return new_logger

    def is_enabled_for(self, level: LogLevel) -> bool:
        return level >= self.level

    def _log(
        self,
        level: LogLevel,
        message: str,
        exception: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        if level < self.level:
            return

        record = LogRecord(
            level=level,
            message=message,
            context={**self._context, **context},
            exception=exception,
            logger_name=self.name,
        )

        for handler in self._handlers:
            try:
                handler.handle(record)
            except Exception as e:
                handler.handle_error(record, e)

    def debug(self, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(LogLevel.WARNING, message, **context)

    warn = warning

    def error(
        self,
        message: str,
        exception: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        self._log(LogLevel.ERROR, message, exception, **context)

    def critical(
        self,
        message: str,
        exception: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        self._log(LogLevel.CRITICAL, message, exception, **context)

    def exception(self, message: str, **context: Any) -> None:
        """Log the exception currently being handled at ERROR level."""
        self._log(LogLevel.ERROR, message, sys.exc_info()[1], **context)


# Global logger registry
_loggers: Dict[str, Logger] = {}


def get_logger(
    name: str = "routelet",
    level: Optional[LogLevel] = None,
) -> Logger:
    """
    Get or create a named logger writing to stderr.

    *level* only applies when the logger is created.
    """
    if name not in _loggers:
        _loggers[name] = Logger(name=name, level=level or LogLevel.INFO)
        _loggers[name].add_handler(StreamHandler())

    return _loggers[name]


def configure_logging(
    level: LogLevel = LogLevel.INFO,
    format: str = "text",
    stream: Optional[TextIO] = None,
    colors: bool = True,
    name: str = "routelet",
) -> Logger:
    """
    Configure and register the logger called *name*.

    Args:
        level: Minimum severity
        format: Output format ("text" or "json")
        stream: Output stream (default: stderr)
        colors: Enable colored output on a TTY
        name: Logger name

    Returns:
        Configured logger
    """
    if format == "json":
        formatter: LogFormatter = JsonFormatter()
    else:
        formatter = TextFormatter(colors=colors, stream=stream)

    handler = StreamHandler(stream=stream, formatter=formatter, level=level)
    logger = Logger(name=name, level=level, handlers=[handler])
    _loggers[name] = logger

    return logger
