"""
Structured JSON logging for approval routing (``approval_kernel.logging_config``).

Responsibility:
    Render every ``approval_kernel.*`` record as one JSON object carrying the
    routing context bound by the caller (request, step, acting user, token
    fingerprint) plus the record's ``extra=`` fields.

Architecture position:
    Kernel -- imported by every layer.  Depends on ``utils.hashing`` only.

Invariants enforced:
    - Capability tokens never reach a log line.  A ``token`` field is
      replaced by ``token_fingerprint`` and ``token=`` query values inside
      any string (action URLs, exception messages) are masked.
    - Envelope keys (ts, level, logger, message) are never overwritten.  A
      colliding extra is kept under an ``extra_`` prefix instead of dropped.
    - Routing errors are flattened: ``code``, constructor attributes and the
      type of the underlying cause land on the record as ``exc_*`` fields.
"""

__all__ = [
    "ROUTING_CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import re
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from approval_kernel.utils.hashing import token_fingerprint

ROUTING_CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "request_id",
    "step_id",
    "actor",
    "token_fingerprint",
)

_context: ContextVar[dict[str, str] | None] = ContextVar(
    "approval_log_context", default=None
)


class LogContext:
    """Routing fields stamped on every record emitted in the current context.

    Backed by a single ``ContextVar``, so threads and asyncio tasks each see
    their own bindings.  Values are stored as strings; UUIDs may be passed
    directly.
    """

    @staticmethod
    def _accepted(fields: dict[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(ROUTING_CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        return {k: str(v) for k, v in fields.items() if v is not None}

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Merge ``fields`` into the current context.  ``None`` values are ignored."""
        _context.set({**cls.get_all(), **cls._accepted(fields)})

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get() or {})

    @classmethod
    def clear(cls) -> None:
        _context.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind ``fields`` for the duration of a ``with`` block, then restore."""
        token = _context.set({**cls.get_all(), **cls._accepted(fields)})
        try:
            yield cls
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

_TOKEN_QUERY = re.compile(r"(token=)[^&\s\"']+")
_MASK = "<redacted>"


def _mask_tokens(text: str) -> str:
    return _TOKEN_QUERY.sub(rf"\g<1>{_MASK}", text)


def _log_field(key: str, value: Any) -> tuple[str, Any]:
    """Return the (key, value) actually written for one structured field."""
    if key == "token" and isinstance(value, str):
        return "token_fingerprint", token_fingerprint(value)
    if key == "secret":
        return key, _MASK
    if isinstance(value, str):
        return key, _mask_tokens(value)
    return key, value


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for raw_key, raw_value in vars(record).items():
            if raw_key in _STDLIB_KEYS:
                continue
            key, value = _log_field(raw_key, raw_value)
            if key in payload:
                key = f"extra_{key}"
            payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": _mask_tokens(str(exc)),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for raw_key, raw_value in vars(exc).items():
            if raw_key.startswith("_") or raw_key in ("args", "code"):
                continue
            key, value = _log_field(raw_key, raw_value)
            fields[f"exc_{key}"] = value
        if exc.__cause__ is not None:
            fields["exc_cause_type"] = type(exc.__cause__).__name__
        fields["traceback"] = _mask_tokens(self.formatException(record.exc_info))
        return fields


# ---------------------------------------------------------------------------
# Loggers and set-up
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "approval_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.gateway")`` -> ``approval_kernel.services.gateway``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the ``approval_kernel`` logger once per process.

    ``level`` accepts a number or a level name (``RoutingSettings.log_level``).
    Later calls are no-ops until ``reset_logging``.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = level.upper()
    out = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    out.setFormatter(StructuredFormatter())

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(out)


def reset_logging() -> None:
    """Remove installed handlers and allow ``configure_logging`` again.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
