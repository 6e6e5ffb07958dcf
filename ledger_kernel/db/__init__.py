"""Database layer - engine, base class, column types and immutability."""

from ledger_kernel.db.base import UUID, Base
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.db.types import DecimalString, UTCDateTime, UUIDString

__all__ = [
    "Base",
    "UUID",
    "UUIDString",
    "DecimalString",
    "UTCDateTime",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
