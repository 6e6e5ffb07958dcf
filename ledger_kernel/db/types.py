"""
Module: ledger_kernel.db.types
Responsibility: Column types for ledger data: UUIDs, exact decimals and
    UTC timestamps, plus annotated aliases for account and hash columns.
Architecture position: Kernel > DB.  May be imported by models/ and
    selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - DecimalString round-trips a Decimal exactly; floats are refused.
    - UTCDateTime refuses naive datetimes on write and always returns an
      aware UTC datetime on read, whatever the backend stores.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated
from uuid import UUID as PyUUID

from sqlalchemy import DateTime, String
from sqlalchemy.types import TypeDecorator

# 0x-prefixed 20-byte account, lowercase
AccountAddress = Annotated[str, String(42)]

# 0x-prefixed 32-byte transaction hash
TxHash = Annotated[str, String(66)]

# Contract event or function name
EventName = Annotated[str, String(64)]


class UUIDString(TypeDecorator):
    """UUID stored as String(36) for cross-database portability."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class DecimalString(TypeDecorator):
    """
    Decimal stored as its exact string form.

    Contract:
        process_bind_param: Decimal | int -> str.  Floats raise TypeError.
        process_result_value: str -> Decimal.
    """

    impl = String(96)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("Floats are not accepted for monetary columns")
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is not None:
            return Decimal(value)
        return None


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes are not accepted; use UTC")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
