"""
Structured JSON logging for the upkeep packages.

Every record under the ``upkeep_kernel`` logger renders as one JSON line:
timestamp, level, logger name and message, then the fields bound through
``LogContext``, then the record's ``extra`` fields.  Records carrying an
exception also get the error's ``code`` and its public attributes, so an
``UpkeepKernelError`` logs its job id, entity or caller as plain keys.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Iterator

ROOT_LOGGER = "upkeep_kernel"
_HANDLER_NAME = "upkeep_structured"

# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class LogContext:
    """Fields attached to every record logged inside a ``bind()`` block.

    The fields live in a single context variable holding a fresh dict per
    binding, so nested binds layer and unwind cleanly across threads and
    tasks.
    """

    FIELDS = frozenset({"manager", "job_id", "actor", "correlation_id"})
    _fields: ContextVar[dict[str, str] | None] = ContextVar("upkeep_log_fields", default=None)

    @classmethod
    def current(cls) -> dict[str, str]:
        return dict(cls._fields.get() or {})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Layer ``fields`` over the current context; None values are skipped.

        Raises:
            TypeError: A field name outside ``FIELDS``.
        """
        unknown = set(fields) - cls.FIELDS
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        merged = cls.current()
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = cls._fields.set(merged)
        try:
            yield
        finally:
            cls._fields.reset(token)

    @classmethod
    def clear(cls) -> None:
        cls._fields.set(None)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


def _to_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.current(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger ``upkeep_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the ``upkeep_kernel`` logger.

    Idempotent: once the handler is installed, later calls change nothing.
    """
    root = logging.getLogger(ROOT_LOGGER)
    with _lock:
        if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
            return
        h = handler or logging.StreamHandler(stream or sys.stderr)
        h.set_name(_HANDLER_NAME)
        h.setFormatter(StructuredFormatter())
        root.addHandler(h)
        root.setLevel(level)
        root.propagate = False


def reset_logging() -> None:
    """Remove every handler from the ``upkeep_kernel`` logger (tests)."""
    root = logging.getLogger(ROOT_LOGGER)
    with _lock:
        root.handlers.clear()
        root.setLevel(logging.WARNING)
