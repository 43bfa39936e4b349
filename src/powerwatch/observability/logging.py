"""
Logging for PowerWatch.

Every module logs through a PowerWatchLogger, which turns keyword
arguments into record extras. Two formatters render those extras: JSON
lines for log shippers and a compact key=value form for terminals.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, TextIO


# Keys present on every LogRecord; anything else arrived as an extra.
_STANDARD_KEYS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
RESET_COLOR = "\033[0m"


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _STANDARD_KEYS}


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """
    Renders each record as one JSON object.

    Fixed keys are timestamp, level, logger and message; extras passed to
    the logger and the formatter's static fields are merged in after them.
    """

    def __init__(
        self,
        include_location: bool = False,
        extra_fields: dict[str, Any] | None = None,
    ):
        """
        Args:
            include_location: Add a location block with file, line and function
            extra_fields: Static fields added to every line, e.g. an instance name
        """
        super().__init__()
        self.include_location = include_location
        self.extra_fields = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_location:
            line["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)

        line.update(_record_extras(record))
        line.update(self.extra_fields)
        return json.dumps(line, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Renders records for a terminal:

        [2024-05-01 10:00:00]     INFO powerwatch.cache: Cache refresh completed generation=3
    """

    def __init__(self, use_colors: bool = True, include_timestamp: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()
        self.include_timestamp = include_timestamp

    def _level(self, record: logging.LogRecord) -> str:
        label = f"{record.levelname:>8}"
        color = LEVEL_COLORS.get(record.levelno)
        if self.use_colors and color:
            return f"{color}{label}{RESET_COLOR}"
        return label

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        if self.include_timestamp:
            prefix = _record_time(record).strftime("[%Y-%m-%d %H:%M:%S] ")

        text = f"{prefix}{self._level(record)} {record.name}: {record.getMessage()}"
        extras = _record_extras(record)
        if extras:
            text += " " + " ".join(f"{key}={value}" for key, value in extras.items())
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


class PowerWatchLogger:
    """
    Thin wrapper over a stdlib logger under the ``powerwatch`` namespace.

    Keyword arguments become record extras; context fields set with
    set_context are attached to every record until cleared.
    """

    def __init__(self, name: str, level: int | None = None):
        self.logger = logging.getLogger(name)
        if level is not None:
            self.logger.setLevel(level)
        self._context: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self.logger.name

    def set_context(self, **fields: Any) -> None:
        self._context.update(fields)

    def clear_context(self) -> None:
        self._context.clear()

    def log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, message, exc_info=exc_info, extra={**self._context, **fields})

    def debug(self, message: str, **fields: Any) -> None:
        self.log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self.log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.log(logging.ERROR, message, exc_info=exc_info, **fields)

    def critical(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.log(logging.CRITICAL, message, exc_info=exc_info, **fields)

    # ==================== Gateway events ====================

    def refresh_started(self, forced: bool, environment_filter: str | None = None) -> None:
        """Log cache refresh start event."""
        self.info(
            "Cache refresh started",
            event_type="refresh.started",
            forced=forced,
            environment_filter=environment_filter or "",
        )

    def refresh_completed(
        self,
        generation: int,
        record_count: int,
        finding_count: int,
        duration_seconds: float,
    ) -> None:
        """Log cache refresh completion event."""
        self.info(
            "Cache refresh completed",
            event_type="refresh.completed",
            generation=generation,
            record_count=record_count,
            finding_count=finding_count,
            duration_seconds=round(duration_seconds, 3),
        )

    def refresh_failed(self, error: str, serving_stale: bool) -> None:
        """Log cache refresh failure event."""
        self.error(
            "Cache refresh failed",
            event_type="refresh.failed",
            error=error,
            serving_stale=serving_stale,
        )

    def request_completed(
        self,
        method: str,
        path: str,
        status: int,
        client_ip: str,
        duration_ms: float,
    ) -> None:
        """Log a served HTTP request."""
        self.debug(
            f"{method} {path} {status}",
            event_type="request.completed",
            method=method,
            path=path,
            status=status,
            client_ip=client_ip,
            duration_ms=round(duration_ms, 2),
        )

    def auth_failed(self, client_ip: str, reason: str, path: str = "") -> None:
        """Log an authentication failure."""
        self.warning(
            "Authentication failed",
            event_type="auth.failed",
            client_ip=client_ip,
            reason=reason,
            path=path,
        )

    def rate_limited(self, client_ip: str, limit: int) -> None:
        """Log a rate-limited request."""
        self.warning(
            "Rate limit exceeded",
            event_type="request.rate_limited",
            client_ip=client_ip,
            limit=limit,
        )


def configure_logging(
    level: str = "INFO",
    format: str = "human",
    output: str | TextIO = "stderr",
    extra_fields: dict[str, Any] | None = None,
) -> None:
    """
    Install a single handler on the ``powerwatch`` logger.

    Args:
        level: Level name; unknown names fall back to INFO
        format: "json" for StructuredFormatter, anything else for
            HumanReadableFormatter
        output: "stderr", "stdout" or an open text stream
        extra_fields: Static fields for JSON lines
    """
    streams = {"stderr": sys.stderr, "stdout": sys.stdout}
    stream = streams.get(output, sys.stderr) if isinstance(output, str) else output

    handler = logging.StreamHandler(stream)
    if format == "json":
        handler.setFormatter(StructuredFormatter(extra_fields=extra_fields))
    else:
        handler.setFormatter(HumanReadableFormatter())

    package_logger = logging.getLogger("powerwatch")
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    package_logger.handlers = [handler]


def get_logger(name: str) -> PowerWatchLogger:
    """Get a logger, prefixing ``powerwatch.`` unless already present."""
    if name != "powerwatch" and not name.startswith("powerwatch."):
        name = f"powerwatch.{name}"
    return PowerWatchLogger(name)


configure_logging(
    level=os.getenv("POWERWATCH_LOG_LEVEL", "INFO"),
    format=os.getenv("POWERWATCH_LOG_FORMAT", "human"),
)
