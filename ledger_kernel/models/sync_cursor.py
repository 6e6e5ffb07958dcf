"""
Module: ledger_kernel.models.sync_cursor
Responsibility: Last block height fully reconciled by the synchronizer, per
    (account, contract, chain).

Invariants enforced:
    - last_block only moves forward (db/immutability.py).  A full refresh
      deletes the row instead of rewinding it.
"""

from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.db.types import AccountAddress


class SyncCursorRow(Base):
    __tablename__ = "sync_cursors"

    __table_args__ = (
        UniqueConstraint(
            "account",
            "contract_address",
            "chain_id",
            name="uq_sync_cursor_scope",
        ),
    )

    account: Mapped[AccountAddress] = mapped_column(nullable=False)
    contract_address: Mapped[AccountAddress] = mapped_column(nullable=False)
    chain_id: Mapped[int] = mapped_column(nullable=False)
    last_block: Mapped[int] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<SyncCursorRow {self.account}@{self.chain_id} block={self.last_block}>"
