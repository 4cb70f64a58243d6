"""
Structured logging with trace/span correlation.

This module configures stdlib logging to emit one JSON object per line to
stdout. Every entry carries:
- an ISO-8601 UTC timestamp
- trace_id / span_id (from current OpenTelemetry context)
- service.name / service.version

Exceptions are rendered as a single ``error`` field; stack traces are never
written.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, MutableMapping, Optional

from opentelemetry import trace

_LOCK = threading.Lock()

# LogRecord attributes that are not user-supplied structured fields.
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
        "exc_info",
        "exc_text",
        "stack_info",
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
        "message",
        "trace_id",
        "span_id",
        "service_name",
        "service_version",
    }
)


@dataclass(frozen=True)
class LoggingConfig:
    """Runtime logging configuration."""

    service_name: str
    service_version: Optional[str]
    level: str
    fmt: str  # "json" or "text"


def _env(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _current_trace_span_ids() -> tuple[Optional[str], Optional[str]]:
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if not ctx or not ctx.is_valid:
        return (None, None)
    trace_id = f"{ctx.trace_id:032x}"
    span_id = f"{ctx.span_id:016x}"
    return (trace_id, span_id)


def _iso_timestamp(created: float) -> str:
    return datetime.fromtimestamp(created, tz=timezone.utc).isoformat(
        timespec="milliseconds"
    )


def _error_summary(record: logging.LogRecord) -> Optional[str]:
    if not record.exc_info or record.exc_info[1] is None:
        return None
    exc = record.exc_info[1]
    return f"{type(exc).__name__}: {exc}"


class TraceContextFilter(logging.Filter):
    """Inject trace/span + service metadata into every LogRecord."""

    def __init__(self, *, service_name: str, service_version: Optional[str]) -> None:
        super().__init__()
        self._service_name = service_name
        self._service_version = service_version

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        # Ids passed explicitly via extra= win over the ambient context.
        if getattr(record, "trace_id", None) is None:
            trace_id, span_id = _current_trace_span_ids()
            setattr(record, "trace_id", trace_id)
            setattr(record, "span_id", span_id)
        setattr(record, "service_name", self._service_name)
        setattr(record, "service_version", self._service_version)
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter suitable for Loki ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        payload: MutableMapping[str, Any] = {
            "timestamp": _iso_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "service_name": getattr(record, "service_name", None),
            "service_version": getattr(record, "service_version", None),
            "trace_id": getattr(record, "trace_id", None),
            "span_id": getattr(record, "span_id", None),
        }

        # Optional structured extras: logger.info("x", extra={"foo": "bar"})
        extra_keys = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        }
        if extra_keys:
            payload["extra"] = extra_keys

        error = _error_summary(record)
        if error is not None:
            payload["error"] = error

        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Single-line text formatter for local development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s "
            "service=%(service_name)s trace_id=%(trace_id)s span_id=%(span_id)s - %(message)s"
        )

    def formatTime(  # noqa: N802
        self, record: logging.LogRecord, datefmt: Optional[str] = None
    ) -> str:
        return _iso_timestamp(record.created)

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        # Base class would append exc_text / stack_info on extra lines.
        record.message = record.getMessage()
        record.asctime = self.formatTime(record)
        line = self.formatMessage(record)
        error = _error_summary(record)
        return f"{line} error={error}" if error is not None else line


def configure_logging(
    *,
    service_name: str,
    service_version: Optional[str] = None,
    log_level: Optional[str] = None,
    fmt: Optional[str] = None,
) -> LoggingConfig:
    """
    Configure process-wide logging.

    Environment variables (defaults shown):
      - LOG_LEVEL=info
      - LOG_FORMAT=json  (json|text)

    Args:
        service_name: Service name.
        service_version: Optional version.
        log_level: Override for LOG_LEVEL.
        fmt: Override for LOG_FORMAT.

    Returns:
        LoggingConfig
    """
    level_str = (log_level or _env("LOG_LEVEL", "info")).lower()
    fmt_str = (fmt or _env("LOG_FORMAT", "json")).lower()

    cfg = LoggingConfig(
        service_name=service_name,
        service_version=service_version,
        level=level_str,
        fmt=fmt_str,
    )

    with _LOCK:
        root = logging.getLogger()
        root.setLevel(_resolve_level(level_str))

        # Clear handlers to avoid duplicate logs on reloads.
        for h in list(root.handlers):
            root.removeHandler(h)

        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setLevel(_resolve_level(level_str))

        # Filter injects trace/span into the record.
        handler.addFilter(
            TraceContextFilter(
                service_name=service_name, service_version=service_version
            )
        )
        handler.setFormatter(JsonFormatter() if fmt_str == "json" else TextFormatter())

        root.addHandler(handler)

        # Reduce noisy loggers commonly found in FastAPI stacks
        for noisy in ("uvicorn", "uvicorn.access", "uvicorn.error", "httpx", "urllib3"):
            logging.getLogger(noisy).setLevel(max(root.level, logging.INFO))

    return cfg


def flush_logging() -> None:
    """Flush every handler attached to the root logger."""
    for handler in list(logging.getLogger().handlers):
        handler.flush()


@contextmanager
def logging_session(
    *,
    service_name: str,
    service_version: Optional[str] = None,
    log_level: Optional[str] = None,
    fmt: Optional[str] = None,
) -> Iterator[LoggingConfig]:
    """
    Configure logging for the lifetime of a process.

    Handlers are flushed when the block exits, whether it returns normally,
    raises, or exits via ``SystemExit``.
    """
    cfg = configure_logging(
        service_name=service_name,
        service_version=service_version,
        log_level=log_level,
        fmt=fmt,
    )
    try:
        yield cfg
    finally:
        flush_logging()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
