"""Structured logging for mcpdx.

All components log through structlog with snake_case event names and
key/value fields. Values bound to sensitive-looking keys are redacted before
rendering, so a stray ``encryption_key=...`` never reaches a log sink.

Example usage:
    from mcpdx.core.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", format="console")

    logger = get_logger("learning.store")
    logger.info("pattern_saved", pattern_id="abc123")

    ctx = DiagnosticContext(session_id="diag-42")
    with with_context(ctx):
        logger.warning("pattern_decrypt_failed", pattern_id="abc123")
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names whose values are never rendered
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "encryption_key",
    "bearer",
    "authorization",
})


@dataclass(frozen=True)
class DiagnosticContext:
    """Correlation identifiers attached to every log entry inside ``with_context``.

    Attributes:
        session_id: Diagnostic session (or job) that triggered the operation.
        run_id: Unique id for this invocation.
        component: Optional component override.
    """

    session_id: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    component: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "session_id": self.session_id,
            "run_id": self.run_id,
        }
        if self.component is not None:
            result["component"] = self.component
        return result


_current_context: ContextVar[DiagnosticContext | None] = ContextVar(
    "mcpdx_context", default=None
)


def get_current_context() -> DiagnosticContext | None:
    """Return the active DiagnosticContext, if any."""
    return _current_context.get()


@contextmanager
def with_context(ctx: DiagnosticContext) -> Iterator[DiagnosticContext]:
    """Attach ``ctx`` to all log entries emitted inside the block."""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields (one level deep)."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active DiagnosticContext.

    Explicitly bound fields win over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class DxLogger:
    """Component-bound wrapper around a structlog logger.

    The underlying structlog logger is fetched on every call so loggers
    created at import time still honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> DxLogger:
        """Return a new logger with additional bound context."""
        new_logger = DxLogger.__new__(DxLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an error with traceback; call from inside an except block."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 20,
    backup_count: int = 3,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable stderr output, "json" for one
            JSON object per line (to ``file_path`` if given, else stdout).
        file_path: Optional rotating log file. Only used with format="json".
        max_file_size_mb: Size at which the log file rotates.
        backup_count: Number of rotated files to keep.
        include_timestamps: Add an ISO8601 UTC ``timestamp`` field.
        include_context: Merge the active DiagnosticContext into each entry.
    """
    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format == "console":
        handlers.append(logging.StreamHandler(sys.stderr))
        renderer: Processor = structlog.dev.ConsoleRenderer(colors=False)
    else:
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    file_path,
                    maxBytes=max_file_size_mb * 1024 * 1024,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        else:
            handlers.append(logging.StreamHandler(sys.stdout))
        renderer = structlog.processors.JSONRenderer()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> DxLogger:
    """Get a logger bound to ``component``."""
    return DxLogger(component, **initial_context)


__all__ = [
    "DiagnosticContext",
    "DxLogger",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
