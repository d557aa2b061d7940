"""
Structured logging configuration for secretmap.

Provides consistent, structured logging across all modules with support
for different output formats and log levels. Registered secret values are
redacted from every record by the masking filter.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from secretmap.secrets.masking import get_masking_filter

ROOT_LOGGER_NAME = "secretmap"

_RESERVED_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
})


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured JSON logs.

    Useful for log aggregation systems in CI pipelines and deploy hosts.
    """

    def __init__(
        self,
        include_timestamp: bool = True,
        include_level: bool = True,
        include_logger: bool = True,
        include_location: bool = False,
        extra_fields: dict[str, Any] | None = None,
    ):
        """
        Initialize structured formatter.

        Args:
            include_timestamp: Include timestamp in output
            include_level: Include log level in output
            include_logger: Include logger name in output
            include_location: Include file/line location
            extra_fields: Additional fields to include in every log
        """
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_level = include_level
        self.include_logger = include_logger
        self.include_location = include_location
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {}

        if self.include_timestamp:
            log_data["timestamp"] = (
                datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"
            )

        if self.include_level:
            log_data["level"] = record.levelname.lower()

        if self.include_logger:
            log_data["logger"] = record.name

        log_data["message"] = record.getMessage()

        if self.include_location:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed on the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        log_data.update(self.extra_fields)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter that outputs human-readable logs.

    Useful for local development and interactive deploys.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        use_colors: bool = True,
        include_timestamp: bool = True,
        include_level: bool = True,
    ):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()
        self.include_timestamp = include_timestamp
        self.include_level = include_level

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable text."""
        parts = []

        if self.include_timestamp:
            timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            parts.append(f"[{timestamp}]")

        if self.include_level:
            level = record.levelname
            if self.use_colors and level in self.COLORS:
                level = f"{self.COLORS[level]}{level}{self.RESET}"
            parts.append(f"{level:>8}")

        parts.append(f"{record.name}:")
        parts.append(record.getMessage())

        output = " ".join(parts)

        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)

        return output


class SecretmapLogger:
    """
    Wrapper around Python logging for secretmap event logging.

    Provides convenient methods for logging with context. Event helpers
    carry names and locators only, never secret values.
    """

    def __init__(self, name: str, level: int = logging.NOTSET):
        """
        Initialize logger.

        Args:
            name: Logger name
            level: Log level; NOTSET defers to the "secretmap" root logger
        """
        self.logger = logging.getLogger(name)
        if level != logging.NOTSET:
            self.logger.setLevel(level)
        self._context: dict[str, Any] = {}

    def set_context(self, **kwargs: Any) -> None:
        """Set persistent context fields for all logs."""
        self._context.update(kwargs)

    def clear_context(self) -> None:
        """Clear context fields."""
        self._context.clear()

    def _log(
        self,
        level: int,
        message: str,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        extra = {**self._context, **kwargs}
        self.logger.log(level, message, exc_info=exc_info, extra=extra)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, message, exc_info=exc_info, **kwargs)

    def detection_started(self, resource_count: int, detector_count: int) -> None:
        """Log detection start event."""
        self.info(
            "Secret detection started",
            event_type="detection.started",
            resource_count=resource_count,
            detector_count=detector_count,
        )

    def detection_completed(
        self,
        secret_count: int,
        required_count: int,
        dropped_count: int,
        duration_seconds: float,
    ) -> None:
        """Log detection completion event."""
        self.info(
            "Secret detection completed",
            event_type="detection.completed",
            secret_count=secret_count,
            required_count=required_count,
            dropped_count=dropped_count,
            duration_seconds=duration_seconds,
        )

    def detector_failed(self, resource_id: str, resource_type: str, error: str) -> None:
        """Log a detector failure; the scan continues."""
        self.warning(
            f"Detector failed for {resource_type} {resource_id}: {error}",
            event_type="detection.detector_failed",
            resource_id=resource_id,
            resource_type=resource_type,
            error=error,
        )

    def secret_dropped(
        self,
        name: str,
        deduplication_key: str,
        resource_id: str,
        error: str,
    ) -> None:
        """Log a secret that could not be added to the manifest."""
        self.warning(
            f"Secret {name} not added to manifest: {error}",
            event_type="detection.secret_dropped",
            secret_name=name,
            deduplication_key=deduplication_key,
            resource_id=resource_id,
            error=error,
        )

    def secret_resolved(self, name: str, resolved_from: str) -> None:
        """Log a successful resolution. Provenance only, never the value."""
        self.debug(
            f"Resolved secret {name} from {resolved_from}",
            event_type="resolution.resolved",
            secret_name=name,
            resolved_from=resolved_from,
        )

    def secret_unresolved(self, name: str, required: bool, reason: str = "") -> None:
        """Log a secret no step of the chain could resolve."""
        self._log(
            logging.WARNING if required else logging.INFO,
            f"Could not resolve secret {name}",
            event_type="resolution.unresolved",
            secret_name=name,
            required=required,
            reason=reason,
        )


def configure_logging(
    level: str = "INFO",
    format: str = "human",
    output: str = "stderr",
    extra_fields: dict[str, Any] | None = None,
) -> None:
    """
    Configure logging for secretmap.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format (human, json)
        output: Output destination (stderr, stdout)
        extra_fields: Extra fields to include in structured logs
    """
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    root_logger.handlers.clear()

    if output == "stdout":
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.StreamHandler(sys.stderr)

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter(extra_fields=extra_fields)
    else:
        formatter = HumanReadableFormatter()

    handler.setFormatter(formatter)
    handler.addFilter(get_masking_filter())
    root_logger.addHandler(handler)


def get_logger(name: str) -> SecretmapLogger:
    """
    Get a secretmap logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        SecretmapLogger instance
    """
    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        return SecretmapLogger(name)
    return SecretmapLogger(f"{ROOT_LOGGER_NAME}.{name}")


# Configure logging from environment on import
_log_level = os.getenv("SECRETMAP_LOG_LEVEL", "INFO")
_log_format = os.getenv("SECRETMAP_LOG_FORMAT", "human")
configure_logging(level=_log_level, format=_log_format)
