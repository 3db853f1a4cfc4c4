"""Structured logging with correlation IDs.

Every pipeline run binds its video id as the correlation id so that all log
lines emitted while encoding, polling or invalidating caches for one video
can be joined together. Lines logged outside a run carry no correlation id.
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "correlation_id"}

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"

NOISY_LOGGERS = ("sqlalchemy.engine", "botocore", "boto3", "s3transfer", "celery.app.trace")


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


@contextmanager
def bind_correlation_id(correlation_id: str) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    The previous value is restored on exit, so nested pipeline calls
    (e.g. a poll issued from inside a task) do not leak ids.
    """
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Fields passed through ``extra`` (video id, quality, job id, ...) are
    grouped under ``context``.
    """

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES
        }
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc, tb = record.exc_info
            entry["exception"] = {"type": exc_type.__name__, "message": str(exc)}
            if self.include_stack_trace and tb is not None:
                entry["exception"]["stack_trace"] = traceback.format_exception(exc_type, exc, tb)

        return json.dumps(entry, default=str)


class CorrelationIdFilter(logging.Filter):
    """Stamps the bound correlation id (or ``-``) on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Replace root handlers with one stdout handler.

    Args:
        level: Log level name
        json_format: Emit JSON lines instead of plain text
        include_stack_trace: Include stack traces for logged exceptions
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log(
    logger: logging.Logger,
    level: int,
    message: str,
    exception: Optional[BaseException] = None,
    **context: Any,
) -> None:
    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id
    logger.log(level, message, exc_info=exception, extra=context)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **context: Any,
) -> None:
    """Log an error with the correlation id, context fields and optional exception."""
    _log(logger, logging.ERROR, message, exception, **context)


def log_warning(logger: logging.Logger, message: str, **context: Any) -> None:
    _log(logger, logging.WARNING, message, **context)


def log_info(logger: logging.Logger, message: str, **context: Any) -> None:
    _log(logger, logging.INFO, message, **context)
