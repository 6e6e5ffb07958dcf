"""
Pure domain layer.

Value objects and conversions with NO dependencies on:
- ORM (SQLAlchemy)
- The Chain Gateway
- Time/clock (except the injectable Clock itself)

Value objects are immutable and deterministic.  ActionIntent is the one
mutable object; its lifecycle is guarded by an explicit transition table.
"""

from ledger_kernel.domain.actions import ActionIntent, ActionKind, ActionState
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.events import (
    EventSource,
    LedgerEvent,
    PaymentRecord,
    TransactionHandle,
    TransactionReceipt,
)
from ledger_kernel.domain.fixed_point import (
    LEDGER_DECIMALS,
    WEI_PER_UNIT,
    decimal_to_wei,
    mul_div_ceil,
    to_decimal,
    wei_to_decimal,
)
from ledger_kernel.domain.invoice import (
    ROLE_CAPABILITIES,
    ZERO_ADDRESS,
    Capability,
    Invoice,
    InvoiceStatus,
    TokenSnapshot,
    UserRole,
    due_date_from_timestamp,
    is_valid_account,
    normalize_account,
)

__all__ = [
    "ActionIntent",
    "ActionKind",
    "ActionState",
    "Capability",
    "Clock",
    "DeterministicClock",
    "EventSource",
    "Invoice",
    "InvoiceStatus",
    "LEDGER_DECIMALS",
    "LedgerEvent",
    "PaymentRecord",
    "ROLE_CAPABILITIES",
    "SystemClock",
    "TokenSnapshot",
    "TransactionHandle",
    "TransactionReceipt",
    "UserRole",
    "WEI_PER_UNIT",
    "ZERO_ADDRESS",
    "decimal_to_wei",
    "due_date_from_timestamp",
    "is_valid_account",
    "mul_div_ceil",
    "normalize_account",
    "to_decimal",
    "wei_to_decimal",
]
