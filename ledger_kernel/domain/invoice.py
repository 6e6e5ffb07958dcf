"""
Invoice domain types -- the canonical client-side view of ledger records.

Responsibility:
    Immutable value objects for invoices, investment tokens and account
    roles, plus the enums that mirror the contract's uint8 encodings.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Accounts are normalized to lowercase so that comparisons are
      case-insensitive (the ledger's checksum casing is presentation only).
    - ``due_date`` is always timezone-aware UTC.
    - ``TokenSnapshot.total_supply`` never exceeds ``max_supply`` once
      observed; a violating ledger read is clamped by the calculator, not
      here, so the raw figures remain inspectable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_account(account: str) -> str:
    """Lowercase and strip an account identifier."""
    if not account or not isinstance(account, str):
        raise ValueError(f"Invalid account identifier: {account!r}")
    return account.strip().lower()


def is_valid_account(account: str | None) -> bool:
    """True for a 0x-prefixed, 20-byte hex account that is not the zero address."""
    if not account or not isinstance(account, str):
        return False
    value = account.strip().lower()
    if len(value) != 42 or not value.startswith("0x"):
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return value != ZERO_ADDRESS


class InvoiceStatus(IntEnum):
    """Invoice lifecycle as encoded by the contract."""

    PENDING = 0
    VERIFICATION_IN_PROGRESS = 1
    APPROVED = 2  # ready for funding
    REJECTED = 3
    PAID = 4

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    InvoiceStatus.PENDING: "Pending",
    InvoiceStatus.VERIFICATION_IN_PROGRESS: "Verification In Progress",
    InvoiceStatus.APPROVED: "Approved",
    InvoiceStatus.REJECTED: "Rejected",
    InvoiceStatus.PAID: "Paid",
}


class UserRole(IntEnum):
    """Account roles as encoded by the contract."""

    SUPPLIER = 0
    BUYER = 1
    INVESTOR = 2


class Capability(str, Enum):
    """What an account may do, derived from its ledger role."""

    CREATE_INVOICE = "create_invoice"
    REQUEST_VERIFICATION = "request_verification"
    MINT_TOKENS = "mint_tokens"
    PAY_INVOICE = "pay_invoice"
    BUY_TOKENS = "buy_tokens"
    VIEW_MARKETPLACE = "view_marketplace"


ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.SUPPLIER: frozenset({
        Capability.CREATE_INVOICE,
        Capability.REQUEST_VERIFICATION,
        Capability.MINT_TOKENS,
    }),
    UserRole.BUYER: frozenset({Capability.PAY_INVOICE}),
    UserRole.INVESTOR: frozenset({
        Capability.BUY_TOKENS,
        Capability.VIEW_MARKETPLACE,
    }),
}


@dataclass(frozen=True, slots=True)
class Invoice:
    """
    The unit of financing, as last read from the ledger.

    Contract:
        Built only by the InvoiceRepository from a raw ledger record.
        Derived figures (overdue, penalty, total debt) are NOT stored here;
        they come from ledger_engines.accounting.
    """

    id: int
    supplier: str
    buyer: str
    principal_amount: Decimal
    due_date: datetime
    status: InvoiceStatus
    total_investment: Decimal
    is_paid: bool
    investors: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.due_date.tzinfo is None:
            raise ValueError("Invoice.due_date must be timezone-aware")
        if self.principal_amount < 0:
            raise ValueError("Invoice.principal_amount must be non-negative")

    @property
    def is_settled(self) -> bool:
        """Paid by either the status or the terminal flag."""
        return self.is_paid or self.status == InvoiceStatus.PAID

    def involves(self, account: str) -> bool:
        account = normalize_account(account)
        return account in (self.supplier, self.buyer) or account in self.investors


def due_date_from_timestamp(timestamp: int) -> datetime:
    """Unix seconds (as stored on the ledger) to an aware UTC datetime."""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class TokenSnapshot:
    """
    Investment token state for one invoice at one read.

    ``price_of_one_token_in_eth`` is an exchange-rate snapshot and may
    change between reads; never reuse it for a submission.
    """

    invoice_id: int
    token_address: str
    max_supply: Decimal
    total_supply: Decimal
    price_of_one_token_in_eth: Decimal

    @property
    def is_generated(self) -> bool:
        return self.token_address != ZERO_ADDRESS

    @property
    def remaining_capacity(self) -> Decimal:
        return max(self.max_supply - self.total_supply, Decimal(0))
