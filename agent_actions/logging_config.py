"""JSON logging for the action synchronizer.

Every record is emitted as one JSON object carrying the service name and
the source location. Synchronizer operations are logged through
``OperationLogger``, which never lets metadata or credential-like context
reach the output.
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

SERVICE_NAME = "agent-actions"

LOG_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"

# Context keys containing any of these fragments are dropped from log records
SENSITIVE_KEY_FRAGMENTS = ("secret", "password", "token", "key", "credential", "metadata")

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "sqlalchemy.pool")


class ActionsJsonFormatter(JsonFormatter):
    """Adds service, level and source fields to every JSON log line."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.update({
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": SERVICE_NAME,
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        })


def setup_logging(level: str = "INFO", use_stderr: bool = False) -> None:
    """Route all logging through a single JSON handler.

    Args:
        level: Root level name; unknown names fall back to INFO
        use_stderr: Log to stderr, keeping stdout free for command output
    """
    handler = logging.StreamHandler(sys.stderr if use_stderr else sys.stdout)
    handler.setFormatter(ActionsJsonFormatter(fmt=LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def is_sensitive_key(key: str) -> bool:
    """Check if a context key may carry credentials or raw metadata."""
    lowered = key.lower()
    return any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS)


def safe_context(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if not is_sensitive_key(key)}


class OperationLogger:
    """Structured start/success/failure records for one synchronizer call.

    Each record carries ``operation``, ``event`` and the target ids given
    to ``start``; the closing record also carries ``duration_ms``.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._operation: Optional[str] = None
        self._context: Dict[str, Any] = {}
        self._started: Optional[float] = None

    def start(self, operation: str, **context) -> "OperationLogger":
        """Begin timing ``operation``; returns self for chaining."""
        self._operation = operation
        self._context = safe_context(context)
        self._started = time.monotonic()
        self.logger.debug("Operation started", extra=self._extra("operation_start"))
        return self

    def success(self, **result_info) -> None:
        self.logger.info(
            "Operation succeeded",
            extra=self._extra("operation_success", duration_ms=self.duration_ms, **result_info),
        )

    def failure(self, error: str, **result_info) -> None:
        """Log a failed operation.

        Args:
            error: Error message; must not contain secret values
            **result_info: Additional non-sensitive fields (error kind, etc.)
        """
        self.logger.error(
            "Operation failed",
            extra=self._extra("operation_failure", duration_ms=self.duration_ms, error=error, **result_info),
        )

    @property
    def duration_ms(self) -> int:
        if self._started is None:
            return 0
        return int((time.monotonic() - self._started) * 1000)

    def _extra(self, event: str, **fields) -> Dict[str, Any]:
        return {
            "operation": self._operation,
            "event": event,
            **self._context,
            **safe_context(fields),
        }
