"""Structured logging with correlation IDs.

Every record is tagged with the correlation ID of the request being served
and, when a span is active, the trace and span IDs. Context goes through
``extra=``; the JSON formatter emits those fields under ``"extra"``.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from video_optimization.core.tracing import current_trace_ids

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# LogRecord attributes that are not caller supplied ``extra`` fields
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation_id", "taskName"}

NOISY_LOGGERS = ("uvicorn.access", "botocore", "boto3", "s3transfer", "urllib3", "PIL")

_handler: Optional[logging.Handler] = None


def get_correlation_id() -> str:
    """Correlation ID of the current request.

    Outside a request the active trace ID is used, or a fresh UUID that is
    then kept for the rest of the context.
    """
    cid = correlation_id_var.get()
    if cid is not None:
        return cid

    trace_id, _ = current_trace_ids()
    if trace_id:
        return trace_id

    cid = str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "source": f"{record.module}:{record.lineno}",
        }

        trace_id, span_id = current_trace_ids()
        if trace_id:
            entry["trace_id"] = trace_id
            entry["span_id"] = span_id

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
            }
            if self.include_stack_trace and exc_tb:
                entry["exception"]["stack_trace"] = traceback.format_exception(*record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra:
            entry["extra"] = extra

        # Non-serializable values (paths, exceptions) fall back to str()
        return json.dumps(entry, default=str)


class CorrelationIdFilter(logging.Filter):
    """Stamps every record with the current correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Install the application's stdout handler on the root logger.

    Production deployments log one JSON object per line; development gets a
    plain, human readable format. Calling it again replaces the handler it
    installed before and leaves other handlers alone.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging
        include_stack_trace: Include stack traces in JSON error records
    """
    global _handler

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if _handler is not None:
        root_logger.removeHandler(_handler)

    _handler = logging.StreamHandler(sys.stdout)
    _handler.setLevel(log_level)
    _handler.addFilter(CorrelationIdFilter())
    if json_format:
        _handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        _handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s"
        ))
    root_logger.addHandler(_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
