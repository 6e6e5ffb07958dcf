"""
Module: ledger_kernel.models.payment_record
Responsibility: ORM persistence for the Payment History: token purchases and
    payment movements observed on the ledger for one (account, contract).
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - Immutable after insert (db/immutability.py).
    - At most one row per (account, contract, transaction_hash, log_index).
      Rows lacking either half of the primary identity are not covered by the
      constraint; the matching engine deduplicates them before insert.
    - A row without a primary identity has at most one link row: the key of
      the keyed representation it absorbed.  Matching uses that key from
      then on, so the row cannot absorb a second distinct payment.

Failure modes:
    - ImmutabilityViolationError on UPDATE or DELETE.
    - IntegrityError on a duplicate primary identity that bypassed the store.
"""

from datetime import datetime
from decimal import Decimal

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.db.types import AccountAddress, EventName, TxHash
from ledger_kernel.domain.events import EventSource, PaymentRecord


class PaymentRecordRow(Base):
    """
    One observed payment fact.

    Contract:
        Written only by PaymentHistoryStore.  Converted to and from the
        frozen PaymentRecord domain object at the store/selector boundary.
    """

    __tablename__ = "payment_records"

    __table_args__ = (
        UniqueConstraint(
            "account",
            "contract_address",
            "transaction_hash",
            "log_index",
            name="uq_payment_record_identity",
        ),
        Index("idx_payment_scope_invoice", "account", "contract_address", "invoice_id"),
        Index("idx_payment_scope_tx", "account", "contract_address", "transaction_hash"),
    )

    account: Mapped[AccountAddress] = mapped_column(nullable=False)
    contract_address: Mapped[AccountAddress] = mapped_column(nullable=False)
    event_name: Mapped[EventName] = mapped_column(nullable=False)
    invoice_id: Mapped[int] = mapped_column(nullable=False)
    counterparty: Mapped[AccountAddress] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    block_number: Mapped[int | None] = mapped_column(nullable=True)
    transaction_hash: Mapped[TxHash | None] = mapped_column(nullable=True)
    log_index: Mapped[int | None] = mapped_column(nullable=True)
    observed_at: Mapped[datetime] = mapped_column(nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<PaymentRecordRow {self.event_name} invoice={self.invoice_id} "
            f"tx={self.transaction_hash}:{self.log_index}>"
        )

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "PaymentRecordRow":
        return cls(
            account=record.account,
            contract_address=record.contract_address,
            event_name=record.event_name,
            invoice_id=record.invoice_id,
            counterparty=record.counterparty,
            amount=record.amount,
            block_number=record.block_number,
            transaction_hash=record.transaction_hash,
            log_index=record.log_index,
            observed_at=record.observed_at,
            source=record.source.value,
        )

    def to_record(self) -> PaymentRecord:
        return PaymentRecord(
            account=self.account,
            contract_address=self.contract_address,
            event_name=self.event_name,
            invoice_id=self.invoice_id,
            counterparty=self.counterparty,
            amount=self.amount,
            block_number=self.block_number,
            transaction_hash=self.transaction_hash,
            log_index=self.log_index,
            observed_at=self.observed_at,
            source=EventSource(self.source),
        )


class PaymentRecordLinkRow(Base):
    """
    The primary identity a keyless payment record absorbed.

    Contract:
        Written by PaymentHistoryStore when a keyed representation is
        suppressed as a duplicate of a row that has no primary identity.
        Immutable like the row it annotates.
    """

    __tablename__ = "payment_record_links"

    __table_args__ = (
        UniqueConstraint("record_id", name="uq_payment_record_link_record"),
        Index("idx_payment_link_tx", "transaction_hash"),
    )

    record_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_records.id"),
        nullable=False,
    )
    transaction_hash: Mapped[TxHash] = mapped_column(nullable=False)
    log_index: Mapped[int] = mapped_column(nullable=False)
    observed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<PaymentRecordLinkRow record={self.record_id} "
            f"tx={self.transaction_hash}:{self.log_index}>"
        )
