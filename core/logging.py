# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Context-aware logging
# PURPOSE: Per-endpoint and per-phase log fields, JSON or console output
# CREATED: 14 OCT 2026
# ============================================================================
"""
Structured Logging

Library modules log through plain ``logging.getLogger(__name__)``; the
fields below are attached from a ContextVar at format time, so a
healthcheck running in one asyncio task never leaks its ``service``
into another task's log lines.

Context fields:
    service, endpoint   - set by HealthcheckEngine per endpoint check
    phase               - set by StartupProbe on transitions
    trace_id, span_id   - set when a sampled span is active
    correlation_id, component, operation, plus free-form extras

Usage:
    from core.logging import configure_logging, log_context

    configure_logging("DEBUG", json_output=True)

    with log_context(service="api", endpoint="http://localhost:5010"):
        logger.info("Checking endpoint")

Checkpoints (log_checkpoint) mark startup milestones with a fixed
``CHECKPOINT: <name>`` message so they are easy to query.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import IO, Any, Dict, Iterator, Optional, Tuple, Union


class ComponentType(str, Enum):
    """Which part of the library emitted a log line."""
    ENGINE = "engine"
    PROBE = "probe"
    ROUTER = "router"
    TRACER = "tracer"
    APP = "app"


@dataclass(frozen=True)
class LogContext:
    """
    Fields attached to every log line in the current task.

    Frozen: log_context() derives a child and restores the parent on exit.
    """
    service: Optional[str] = None
    endpoint: Optional[str] = None
    phase: Optional[str] = None
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    correlation_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Set fields only, extras flattened in."""
        values = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        values.update(self.extra)
        return values


_FIELD_NAMES = frozenset(f.name for f in fields(LogContext)) - {"extra"}

_current_context: ContextVar[LogContext] = ContextVar("log_context", default=LogContext())


def get_current_context() -> LogContext:
    """Context of the current task."""
    return _current_context.get()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[LogContext]:
    """
    Add fields to the logging context for the duration of a block.

    Known field names set LogContext attributes; anything else (and an
    explicit ``extra`` dict) is merged into LogContext.extra.
    """
    parent = _current_context.get()
    known = {k: v for k, v in kwargs.items() if k in _FIELD_NAMES}
    extra = dict(parent.extra)
    extra.update(kwargs.pop("extra", None) or {})
    extra.update({k: v for k, v in kwargs.items() if k not in _FIELD_NAMES})

    token = _current_context.set(replace(parent, extra=extra, **known))
    try:
        yield _current_context.get()
    finally:
        _current_context.reset(token)


def _iso_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _record_data(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    # Set by ContextLogger and log_checkpoint via extra={"extra": {...}}
    return getattr(record, "extra", None) or None


# ============================================================================
# FORMATTERS
# ============================================================================

class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    Keys: timestamp, level, logger, message, context (current
    LogContext), data (record extras), exception, source.
    """

    DEFAULT_KEYS: Tuple[str, ...] = ("timestamp", "level", "logger", "context")

    def __init__(self, keys: Tuple[str, ...] = DEFAULT_KEYS, include_source: bool = True):
        super().__init__()
        self.keys = frozenset(keys)
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {}
        if "timestamp" in self.keys:
            entry["timestamp"] = _iso_now()
        if "level" in self.keys:
            entry["level"] = record.levelname
        if "logger" in self.keys:
            entry["logger"] = record.name
        entry["message"] = record.getMessage()

        if "context" in self.keys:
            context = get_current_context().to_dict()
            if context:
                entry["context"] = context

        data = _record_data(record)
        if data:
            entry["data"] = data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if self.include_source:
            entry["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """
    Console formatter for development.

        2026-10-14 09:12:01 WARNING  health.executor [service=webapp]: ...
    """

    INLINE_FIELDS: Tuple[str, ...] = ("service", "phase", "trace_id")

    def format(self, record: logging.LogRecord) -> str:
        context = get_current_context()
        tags = [
            f"{name}={getattr(context, name)}"
            for name in self.INLINE_FIELDS
            if getattr(context, name)
        ]
        prefix = "{time} {level:<8} {name}{tags}".format(
            time=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            level=record.levelname,
            name=record.name,
            tags=f" [{', '.join(tags)}]" if tags else "",
        )

        line = f"{prefix}: {record.getMessage()}"
        data = _record_data(record)
        if data:
            line += f" {data}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ============================================================================
# LOGGERS
# ============================================================================

class ContextLogger(logging.LoggerAdapter):
    """
    LoggerAdapter copying the current LogContext onto each record.

    The copy lands in ``record.extra`` so handlers without our formatters
    (pytest's caplog, for one) still see the fields.
    """

    def process(self, msg, kwargs):
        data = dict(kwargs.get("extra") or {})
        data.update(get_current_context().to_dict())
        component = (self.extra or {}).get("component")
        if component:
            data.setdefault("component", component)
        kwargs["extra"] = {"extra": data}
        return msg, kwargs


def get_logger(name: str, component: Optional[ComponentType] = None) -> ContextLogger:
    """Context-aware logger tagged with a component."""
    return ContextLogger(
        logging.getLogger(name),
        {"component": component.value if component else None},
    )


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
    include_source: bool = True,
    stream: Optional[IO[str]] = None,
) -> None:
    """
    Install a single root handler. Called by the host application.

    Args:
        level: Level name or number
        json_output: StructuredFormatter instead of HumanFormatter
            (LOG_FORMAT=json has the same effect)
        include_source: Add file/line/function to JSON lines
        stream: Output stream (stdout if None)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    use_json = json_output or os.getenv("LOG_FORMAT", "").lower() == "json"
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        StructuredFormatter(include_source=include_source) if use_json else HumanFormatter()
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)


# ============================================================================
# CHECKPOINTS
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named milestone (phase change, ready, failed).

    The record's extra carries the checkpoint name, a timestamp, the
    service/phase/trace_id from the current context and ``data``.
    """
    context = get_current_context()
    payload: Dict[str, Any] = {"checkpoint": name, "timestamp": _iso_now()}
    for key in ("service", "phase", "trace_id"):
        value = getattr(context, key)
        if value:
            payload[key] = value
    if data:
        payload["data"] = data

    (logger or logging.getLogger("checkpoint")).info(
        f"CHECKPOINT: {name}", extra={"extra": payload}
    )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ComponentType",
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
