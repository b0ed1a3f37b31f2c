"""
Structured logging for the context memory.

Provides a JSON or text formatter for the package's stdlib loggers and
a small logger wrapper that attaches key/value attributes to records.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, TextIO


class LogLevel(str, Enum):
    """Log levels matching Python logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_python_level(self) -> int:
        """Convert to Python logging level."""
        return getattr(logging, self.value)


@dataclass
class LogRecord:
    """A structured log record."""

    timestamp: datetime = field(default_factory=datetime.now)
    level: LogLevel = LogLevel.INFO
    message: str = ""
    logger_name: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "logger": self.logger_name,
        }
        if self.attributes:
            result["attributes"] = self.attributes
        if self.exception:
            result["exception"] = self.exception
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        """Convert to human-readable text."""
        parts = [
            self.timestamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"[{self.level.value}]",
            self.logger_name,
            "-",
            self.message,
        ]

        if self.attributes:
            attrs = " ".join(f"{k}={v}" for k, v in self.attributes.items())
            parts.append(f"[{attrs}]")

        text = " ".join(parts)
        if self.exception:
            text += f"\n{self.exception}"
        return text


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured logs."""

    def __init__(self, json_output: bool = True):
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        log_record = LogRecord(
            timestamp=datetime.fromtimestamp(record.created),
            level=LogLevel(record.levelname),
            message=record.getMessage(),
            logger_name=record.name,
            attributes=getattr(record, "attributes", {}),
            exception=self.formatException(record.exc_info) if record.exc_info else None,
        )

        if self.json_output:
            return log_record.to_json()
        return log_record.to_text()


class StructuredLogger:
    """
    Logger that carries key/value attributes on each record.

    Usage:
        logger = StructuredLogger("context_memory.maintenance")

        logger.info("Maintenance finished", stale_removed=3, cancelled=False)
        logger.error("Maintenance failed", exception=e)
    """

    def __init__(
        self,
        name: str = "context_memory",
        level: Optional[LogLevel] = None,
    ):
        self.name = name
        self._logger = logging.getLogger(name)
        if level is not None:
            self._logger.setLevel(level.to_python_level())

    def _log(
        self,
        level: LogLevel,
        message: str,
        exception: Optional[Exception] = None,
        **attributes,
    ) -> None:
        exc_info = None
        if exception:
            exc_info = (type(exception), exception, exception.__traceback__)

        self._logger.log(
            level.to_python_level(),
            message,
            exc_info=exc_info,
            extra={"attributes": attributes},
        )

    def debug(self, message: str, **attributes) -> None:
        self._log(LogLevel.DEBUG, message, **attributes)

    def info(self, message: str, **attributes) -> None:
        self._log(LogLevel.INFO, message, **attributes)

    def warning(self, message: str, **attributes) -> None:
        self._log(LogLevel.WARNING, message, **attributes)

    def error(
        self,
        message: str,
        exception: Optional[Exception] = None,
        **attributes,
    ) -> None:
        self._log(LogLevel.ERROR, message, exception=exception, **attributes)


def configure_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    output: Optional[TextIO] = None,
) -> StructuredLogger:
    """
    Route the package's loggers through a StructuredFormatter.

    Args:
        level: Log level
        json_output: Whether to output JSON
        output: Output stream, stderr by default

    Returns:
        The package-level StructuredLogger
    """
    package_logger = logging.getLogger("context_memory")
    package_logger.setLevel(level.to_python_level())
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(output or sys.stderr)
    handler.setFormatter(StructuredFormatter(json_output))
    package_logger.addHandler(handler)
    package_logger.propagate = False

    return StructuredLogger("context_memory")
