"""
Ledger event and transaction value objects.

Responsibility:
    Immutable representations of what the Chain Gateway reports: raw
    contract events, the payment records derived from them, transaction
    handles and receipts.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A PaymentRecord is an observed fact: created once, never mutated.
    - Primary identity is ``(transaction_hash, log_index)``; a record that
      lacks either has no primary key and may only be matched by the
      fallback rules in ledger_engines.matching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class EventSource(str, Enum):
    """Channel through which a fact was observed."""

    SUBSCRIPTION = "subscription"
    POLLING = "polling"
    REFRESH = "refresh"


@dataclass(frozen=True)
class LedgerEvent:
    """A decoded contract event as delivered by the gateway."""

    event_name: str
    args: dict[str, Any] = field(default_factory=dict)
    transaction_hash: str | None = None
    log_index: int | None = None
    block_number: int | None = None
    block_timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    """
    A token purchase or payment movement observed on the ledger.

    Contract:
        Scoped to the (account, contract_address) pair whose history it
        belongs to.  ``observed_at`` is the block timestamp when the gateway
        supplies one, otherwise the time the client first saw the event.
    """

    account: str
    contract_address: str
    event_name: str
    invoice_id: int
    counterparty: str
    amount: Decimal
    block_number: int | None
    transaction_hash: str | None
    log_index: int | None
    observed_at: datetime
    source: EventSource

    @property
    def primary_key(self) -> tuple[str, int] | None:
        if self.transaction_hash is None or self.log_index is None:
            return None
        return (self.transaction_hash, self.log_index)


@dataclass(frozen=True, slots=True)
class TransactionHandle:
    """Returned by the gateway once a transaction has been broadcast."""

    tx_hash: str
    function: str
    value_wei: int = 0


@dataclass(frozen=True)
class TransactionReceipt:
    """
    Outcome of a mined transaction.

    ``status`` follows the EVM convention: 1 success, 0 failure.
    """

    tx_hash: str
    status: int
    block_number: int
    logs: tuple[LedgerEvent, ...] = ()
    revert_reason: str | None = None
    gas_used: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1
