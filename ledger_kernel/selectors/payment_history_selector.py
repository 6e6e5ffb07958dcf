"""
Module: ledger_kernel.selectors.payment_history_selector
Responsibility: Read-only access to the Payment History and Sync Cursor for
    presentation and for components other than the synchronizer.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: no add, delete, flush or commit.
    - DTO return convention: returns frozen PaymentRecord objects, never ORM
      rows.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.events import PaymentRecord
from ledger_kernel.domain.invoice import normalize_account
from ledger_kernel.models.payment_record import PaymentRecordRow
from ledger_kernel.models.sync_cursor import SyncCursorRow


class PaymentHistorySelector:
    """
    Contract:
        Accepts a Session from the caller and returns DTOs.  Ordering is
        ledger order where known (block, log index), then observation time.
    """

    def __init__(self, session: Session):
        self.session = session

    def list_records(
        self,
        account: str,
        contract_address: str,
        invoice_id: int | None = None,
        event_name: str | None = None,
    ) -> list[PaymentRecord]:
        stmt = select(PaymentRecordRow).where(
            PaymentRecordRow.account == normalize_account(account),
            PaymentRecordRow.contract_address == normalize_account(contract_address),
        )
        if invoice_id is not None:
            stmt = stmt.where(PaymentRecordRow.invoice_id == invoice_id)
        if event_name is not None:
            stmt = stmt.where(PaymentRecordRow.event_name == event_name)
        stmt = stmt.order_by(
            PaymentRecordRow.block_number.is_(None),
            PaymentRecordRow.block_number,
            PaymentRecordRow.log_index,
            PaymentRecordRow.observed_at,
        )
        return [row.to_record() for row in self.session.scalars(stmt)]

    def count(self, account: str, contract_address: str) -> int:
        stmt = select(func.count(PaymentRecordRow.id)).where(
            PaymentRecordRow.account == normalize_account(account),
            PaymentRecordRow.contract_address == normalize_account(contract_address),
        )
        return self.session.scalar(stmt) or 0

    def totals_by_invoice(
        self,
        account: str,
        contract_address: str,
        event_name: str,
    ) -> dict[int, Decimal]:
        """
        Sum of amounts per invoice for one event type.

        Summed in Python: amounts are string-backed for exactness.
        """
        totals: dict[int, Decimal] = defaultdict(Decimal)
        for record in self.list_records(account, contract_address, event_name=event_name):
            totals[record.invoice_id] += record.amount
        return dict(totals)

    def cursor(self, account: str, contract_address: str, chain_id: int) -> int | None:
        stmt = select(SyncCursorRow.last_block).where(
            SyncCursorRow.account == normalize_account(account),
            SyncCursorRow.contract_address == normalize_account(contract_address),
            SyncCursorRow.chain_id == chain_id,
        )
        return self.session.scalar(stmt)
