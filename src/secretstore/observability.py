"""Structured logging for the secret store.

The secret store logs through the standard :mod:`logging` module so that
applications keep full control over handlers and levels. This module adds:

- A ``TRACE`` level (5) below ``DEBUG`` for per-provider misses
- :class:`SecretStoreLogger`, a logger adapter carrying structured fields
  and helpers for security events and dependency tracking
- JSON and console formatters rendering those structured fields
- :func:`configure_logging` to attach a formatter to the package logger

Secret values are never passed to any of these helpers; only secret names
and provider descriptions are logged.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Iterator, Mapping, MutableMapping, TextIO


ROOT_LOGGER_NAME = "secretstore"


# =============================================================================
# Log Levels
# =============================================================================


class LogLevel(IntEnum):
    """Log severity levels."""

    TRACE = 5
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def from_string(cls, level: str) -> "LogLevel":
        """Convert string to LogLevel."""
        mapping = {
            "trace": cls.TRACE,
            "debug": cls.DEBUG,
            "info": cls.INFO,
            "warning": cls.WARNING,
            "warn": cls.WARNING,
            "error": cls.ERROR,
            "critical": cls.CRITICAL,
            "fatal": cls.CRITICAL,
        }
        return mapping.get(level.lower(), cls.INFO)


TRACE = int(LogLevel.TRACE)
logging.addLevelName(TRACE, "TRACE")


# =============================================================================
# Logger Adapter
# =============================================================================


class SecretStoreLogger(logging.LoggerAdapter):
    """Logger adapter with structured fields.

    Fields bound on the adapter and fields passed per call (``fields=``) are
    merged and attached to the record as ``record.fields``.

    Example:
        >>> logger = get_logger(__name__).bind(provider="env")
        >>> logger.trace("Secret %s not found", "Arcus.Foo")
    """

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None) -> None:
        super().__init__(logger, dict(extra or {}))

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        fields = dict(self.extra or {})
        fields.update(kwargs.pop("fields", None) or {})
        extra = dict(kwargs.get("extra") or {})
        extra["fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: Any) -> "SecretStoreLogger":
        """Create a child adapter with additional bound fields."""
        merged = dict(self.extra or {})
        merged.update(fields)
        return SecretStoreLogger(self.logger, merged)

    def trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(TRACE, msg, *args, **kwargs)

    def security_event(self, name: str, context: Mapping[str, Any] | None = None) -> None:
        """Log a security event, for example a secret being requested."""
        self.info(
            "Security event %s",
            name,
            fields={"event_type": "security", "event_name": name, **dict(context or {})},
        )

    def dependency(
        self,
        dependency_type: str,
        target: str,
        data: str,
        *,
        success: bool,
        duration: float,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        """Log an interaction with an external dependency such as a vault."""
        self.info(
            "%s dependency %s for %s %s in %.2fms",
            dependency_type,
            target,
            data,
            "succeeded" if success else "failed",
            duration * 1000,
            fields={
                "event_type": "dependency",
                "dependency_type": dependency_type,
                "dependency_target": target,
                "dependency_data": data,
                "success": success,
                "duration_ms": round(duration * 1000, 3),
                **dict(context or {}),
            },
        )


def get_logger(name: str = ROOT_LOGGER_NAME, **fields: Any) -> SecretStoreLogger:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__).
        **fields: Fields bound to every record of this logger.
    """
    return SecretStoreLogger(logging.getLogger(name), fields)


def as_logger(logger: logging.Logger | SecretStoreLogger | None, default: str) -> SecretStoreLogger:
    """Normalize an optional user-supplied logger."""
    if logger is None:
        return get_logger(default)
    if isinstance(logger, SecretStoreLogger):
        return logger
    return SecretStoreLogger(logger)


class DurationMeasurement:
    """Measures the elapsed time of a dependency interaction."""

    __slots__ = ("started_at", "_start", "_end")

    def __init__(self) -> None:
        self.started_at = datetime.now(timezone.utc)
        self._start = time.perf_counter()
        self._end: float | None = None

    def stop(self) -> float:
        self._end = time.perf_counter()
        return self.elapsed

    @property
    def elapsed(self) -> float:
        end = self._end if self._end is not None else time.perf_counter()
        return end - self._start


@contextmanager
def measure_duration() -> Iterator[DurationMeasurement]:
    """Context manager timing the enclosed block."""
    measurement = DurationMeasurement()
    try:
        yield measurement
    finally:
        measurement.stop()


# =============================================================================
# Formatters
# =============================================================================


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = getattr(record, "fields", None)
    return dict(fields) if isinstance(fields, Mapping) else {}


class JSONFormatter(logging.Formatter):
    """JSON log formatter.

    Outputs logs as JSON objects, one per line.

    Example output:
        {"timestamp":"2024-01-15T10:30:00Z","level":"info","message":"Found secret",...}
    """

    def __init__(
        self,
        *,
        indent: int | None = None,
        sort_keys: bool = False,
        ensure_ascii: bool = False,
    ) -> None:
        super().__init__()
        self._indent = indent
        self._sort_keys = sort_keys
        self._ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(_record_fields(record))

        if record.exc_info and record.exc_info[1] is not None:
            exception = record.exc_info[1]
            data["exception"] = {
                "type": type(exception).__name__,
                "message": str(exception),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(
            data,
            indent=self._indent,
            sort_keys=self._sort_keys,
            ensure_ascii=self._ensure_ascii,
            default=str,
        )


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter.

    Example output:
        2024-01-15 10:30:00 INFO  [secretstore.store] Found secret 'Arcus.Foo' provider=env
    """

    COLORS = {
        LogLevel.TRACE: "\033[90m",
        LogLevel.DEBUG: "\033[36m",
        LogLevel.INFO: "\033[32m",
        LogLevel.WARNING: "\033[33m",
        LogLevel.ERROR: "\033[31m",
        LogLevel.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        *,
        color: bool = True,
        show_timestamp: bool = True,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
        stream: TextIO | None = None,
    ) -> None:
        super().__init__()
        stream = stream or sys.stderr
        self._color = color and hasattr(stream, "isatty") and stream.isatty()
        self._show_timestamp = show_timestamp
        self._timestamp_format = timestamp_format

    def format(self, record: logging.LogRecord) -> str:
        parts = []

        if self._show_timestamp:
            ts = datetime.fromtimestamp(record.created).strftime(self._timestamp_format)
            parts.append(ts)

        level = record.levelname.ljust(5)
        if self._color:
            color = self.COLORS.get(record.levelno, "")  # type: ignore[call-overload]
            level = f"{color}{level}{self.RESET}"
        parts.append(level)

        parts.append(f"[{record.name}]")
        parts.append(record.getMessage())

        fields = _record_fields(record)
        if fields:
            parts.append(" ".join(f"{k}={v}" for k, v in fields.items()))

        result = " ".join(parts)

        if record.exc_info and record.exc_info[1] is not None:
            exception = record.exc_info[1]
            tb = "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )
            result = f"{result}\n{tb}"

        return result


# =============================================================================
# Configuration
# =============================================================================


_HANDLER_MARKER = "_secretstore_handler"


def configure_logging(
    *,
    level: LogLevel | int | str = LogLevel.INFO,
    format: str = "console",
    stream: TextIO | None = None,
    json_output: bool = False,
) -> logging.Logger:
    """Configure the ``secretstore`` package logger.

    Replaces a handler installed by an earlier call, leaving handlers added by
    the application untouched.

    Args:
        level: Log level for the package logger.
        format: Output format ("console" or "json").
        stream: Stream to write to (defaults to stderr).
        json_output: Shortcut for JSON format.

    Returns:
        The configured package logger.
    """
    if isinstance(level, str):
        level = LogLevel.from_string(level)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(int(level))

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)

    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    if json_output or format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(stream=stream))
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)

    return logger
