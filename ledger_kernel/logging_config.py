"""
Structured JSON logging for the ledger client.

Every record is one JSON object: timestamp, level, logger, message, the
fields bound in LogContext for the current task (session, account, invoice,
transaction), then the record's ``extra`` fields.  Bound context wins over
``extra`` on a name clash.

Loggers live under ``ledger_kernel``; ``configure_logging`` attaches the one
handler to that subtree and stops propagation to the root logger.
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "ledger_kernel"

CONTEXT_FIELDS = ("session_id", "account", "invoice_id", "tx_hash")

_bound: ContextVar[dict[str, str] | None] = ContextVar("ledger_log_context", default=None)


def _with_fields(fields: dict[str, Any]) -> dict[str, str]:
    # unknown names and None values are dropped
    merged = dict(_bound.get() or {})
    for name, value in fields.items():
        if name in CONTEXT_FIELDS and value is not None:
            merged[name] = str(value)
    return merged


class LogContext:
    """
    Log fields carried by the current task.

    asyncio copies the context into every task it creates, so a poll loop
    started inside ``bind(session_id=..., account=...)`` logs with both.
    """

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound.get() or {})

    @staticmethod
    def set(**fields: Any) -> None:
        _bound.set(_with_fields(fields))

    @staticmethod
    def clear() -> None:
        _bound.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Add fields for the duration of the block, then restore the old set."""
        token = _bound.set(_with_fields(fields))
        try:
            yield
        finally:
            _bound.reset(token)


_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # structured attributes of LedgerClientError subclasses
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRIBUTES and name not in payload:
                payload[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.session")`` -> ``ledger_kernel.services.session``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the ``ledger_kernel`` subtree; later calls are no-ops."""
    global _configured
    if _configured:
        return
    _configured = True

    handler = handler or logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    subtree = logging.getLogger(_LOGGER_PREFIX)
    subtree.setLevel(level)
    subtree.propagate = False
    subtree.addHandler(handler)


def reset_logging() -> None:
    """Detach handlers and allow ``configure_logging`` again. Tests only."""
    global _configured
    _configured = False
    subtree = logging.getLogger(_LOGGER_PREFIX)
    subtree.handlers.clear()
    subtree.setLevel(logging.WARNING)
    subtree.propagate = True
