"""Structured logging, request context, timing and metric hooks.

Every log line carries the ambient request context (request id, user,
project, connector) and is scrubbed of secret-looking values before it
reaches a handler. Metrics are plain callbacks so that the host process
can forward them to whatever backend it uses.
"""

import json
import logging
import re
import sys
import time
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
project_id_var: ContextVar[str | None] = ContextVar("project_id", default=None)
connector_key_var: ContextVar[str | None] = ContextVar("connector_key", default=None)

# Field name -> context variable, in log output order
CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "project_id": project_id_var,
    "connector_key": connector_key_var,
}

REDACTED = "[REDACTED]"

SECRET_KEY_RE = re.compile(
    r"(token|secret|password|credential|authorization|api_?key|envelope)",
    re.IGNORECASE,
)

_internal = logging.getLogger(__name__)


def redact(value: Any) -> Any:
    """Recursively replace values stored under secret-looking keys."""
    if isinstance(value, dict):
        return {
            k: REDACTED if SECRET_KEY_RE.search(str(k)) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class LogContext:
    """Snapshot of the request-scoped fields attached to log lines."""

    request_id: str | None = None
    user_id: str | None = None
    project_id: str | None = None
    connector_key: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def current(cls) -> "LogContext":
        return cls(**{name: var.get() for name, var in CONTEXT_VARS.items()})

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, followed by ``extra``."""
        result = {
            name: getattr(self, name) for name in CONTEXT_VARS if getattr(self, name)
        }
        result.update(self.extra)
        return result


@dataclass
class LogEntry:
    """One structured log line."""

    level: LogLevel
    message: str
    timestamp: str
    logger: str
    context: dict[str, Any] = field(default_factory=dict)
    error: dict[str, Any] | None = None
    duration_ms: float | None = None

    def to_json(self) -> str:
        data: dict[str, Any] = {
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "logger": self.logger,
        }
        optional = {
            "context": redact(self.context) if self.context else None,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return json.dumps(data, default=str)


class StructuredFormatter(logging.Formatter):
    """Renders records as ``LogEntry`` JSON, merged with the request context."""

    def format(self, record: logging.LogRecord) -> str:
        context = LogContext.current().to_dict()
        record_context = getattr(record, "context", None)
        if isinstance(record_context, dict):
            context.update(record_context)

        # Type and message only; a traceback can expose local variables
        error = None
        if record.exc_info and record.exc_info[0]:
            exc_type, exc, _ = record.exc_info
            error = {"type": exc_type.__name__, "message": str(exc) if exc else ""}

        return LogEntry(
            level=LogLevel(record.levelname),
            message=record.getMessage(),
            timestamp=datetime.now(timezone.utc).isoformat(),
            logger=record.name,
            context=context,
            error=error,
            duration_ms=getattr(record, "duration_ms", None),
        ).to_json()


class StructuredLogger:
    """Logger whose calls take a context mapping instead of format args.

    Example:
        logger = get_logger(__name__)
        logger.info("Connection stored", context={"connector_key": "NOTION"})
        logger.warning("Refresh failed", context={"status": 400}, error=exc)
    """

    def __init__(self, name: str) -> None:
        # Level and handlers come from the package logger (configure_logging)
        self.logger = logging.getLogger(name)

    def log(
        self,
        level: LogLevel,
        message: str,
        context: dict[str, Any] | None = None,
        error: BaseException | None = None,
        duration_ms: float | None = None,
    ) -> None:
        extra: dict[str, Any] = {}
        if context:
            extra["context"] = redact(context)
        if duration_ms is not None:
            extra["duration_ms"] = duration_ms
        exc_info = (type(error), error, error.__traceback__) if error else None
        self.logger.log(getattr(logging, level.value), message, exc_info=exc_info, extra=extra)

    def debug(self, message: str, context: dict[str, Any] | None = None, **kwargs: Any) -> None:
        self.log(LogLevel.DEBUG, message, context, **kwargs)

    def info(self, message: str, context: dict[str, Any] | None = None, **kwargs: Any) -> None:
        self.log(LogLevel.INFO, message, context, **kwargs)

    def warning(self, message: str, context: dict[str, Any] | None = None, **kwargs: Any) -> None:
        self.log(LogLevel.WARNING, message, context, **kwargs)

    def error(self, message: str, context: dict[str, Any] | None = None, **kwargs: Any) -> None:
        self.log(LogLevel.ERROR, message, context, **kwargs)


class RequestContext:
    """Binds request-scoped fields for every log line and metric in a block.

    Example:
        async with RequestContext(user_id="user-789", connector_key="NOTION"):
            await gateway.query_resources("NOTION", "user-789").collect()
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | None = None,
        project_id: str | None = None,
        connector_key: str | None = None,
    ) -> None:
        self.request_id = request_id or str(uuid.uuid4())
        self.user_id = user_id
        self.project_id = project_id
        self.connector_key = connector_key
        self._reset: list[tuple[ContextVar[str | None], Token[str | None]]] = []

    def __enter__(self) -> "RequestContext":
        for name, var in CONTEXT_VARS.items():
            value = getattr(self, name)
            if value:
                self._reset.append((var, var.set(value)))
        return self

    def __exit__(self, *args: Any) -> None:
        while self._reset:
            var, token = self._reset.pop()
            var.reset(token)

    async def __aenter__(self) -> "RequestContext":
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


class Timer:
    """Measures wall time of a block, sync or async.

    Example:
        async with Timer() as t:
            token = await connector.refresh_token(refresh_token)
        emit_timer("connector.refresh", t.duration_ms)
    """

    def __init__(self) -> None:
        self._start = 0.0
        self._end: float | None = None

    @property
    def duration_ms(self) -> float:
        end = self._end if self._end is not None else time.perf_counter()
        return (end - self._start) * 1000

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, *args: Any) -> None:
        self._end = time.perf_counter()

    async def __aenter__(self) -> "Timer":
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


# Callback(name, value, labels)
MetricCallback = Callable[[str, float, dict[str, Any]], None]

_metric_callbacks: list[MetricCallback] = []


def register_metric_callback(callback: MetricCallback) -> None:
    _metric_callbacks.append(callback)


def clear_metric_callbacks() -> None:
    _metric_callbacks.clear()


def emit_metric(name: str, value: float, labels: dict[str, Any] | None = None) -> None:
    """Send a metric to every registered callback.

    The current connector key is added as a label unless one is given.
    A failing callback is logged and skipped.
    """
    labels = dict(labels or {})
    connector_key = connector_key_var.get()
    if connector_key:
        labels.setdefault("connector_key", connector_key)

    for callback in list(_metric_callbacks):
        try:
            callback(name, value, labels)
        except Exception:
            _internal.debug("Metric callback failed for %s", name, exc_info=True)


def emit_counter(name: str, labels: dict[str, Any] | None = None) -> None:
    emit_metric(name, 1.0, labels)


def emit_timer(name: str, duration_ms: float, labels: dict[str, Any] | None = None) -> None:
    emit_metric(name, duration_ms, labels)


def configure_logging(
    level: LogLevel = LogLevel.INFO,
    format: str = "json",
) -> None:
    """Install a single stdout handler on the ``connector_core`` logger.

    Calling it again replaces the handler instead of adding another.

    Args:
        level: Minimum log level
        format: "json" for ``StructuredFormatter``, anything else for plain text
    """
    package_logger = logging.getLogger("connector_core")
    package_logger.setLevel(level.value)
    package_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    package_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for a module (pass ``__name__``)."""
    return StructuredLogger(name)
