"""
Module: ledger_kernel.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention and the type annotation map that keeps
    column types consistent across the local cache schema.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
      Ledger identities (tx hash, log index) are ordinary columns because
      fallback-matched records may not have them.
    - Decimal exactness: Decimal maps to DecimalString, which stores the
      exact textual form.  Ledger amounts carry 18 decimals, more than SQLite
      REAL or a portable Numeric can hold.  NEVER use float for amounts.
    - Timestamps: datetime maps to UTCDateTime, always returned tz-aware.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ledger_kernel.db.types import (
    AccountAddress,
    DecimalString,
    EventName,
    TxHash,
    UTCDateTime,
    UUIDString,
)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to DecimalString (exact, string-backed).
        - datetime maps to UTCDateTime (aware UTC in, aware UTC out).
        - int maps to BigInteger; block heights exceed 32 bits on some chains.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: DecimalString(),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
        AccountAddress: String(42),
        TxHash: String(66),
        EventName: String(64),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


UUID = PyUUID
