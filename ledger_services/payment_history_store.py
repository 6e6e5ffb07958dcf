"""
PaymentHistoryStore -- the only writer of payment records.

Responsibility:
    Offer a PaymentRecord to the Payment History.  The store loads the
    slice of history the candidate could collide with, asks the matcher
    for a decision, and inserts only when the candidate is new.

Architecture position:
    Services -- persistence over engines + kernel.  Called by
    LedgerEventSynchronizer inside its own transaction; flushes, never
    commits.

Invariants enforced:
    - Idempotent insert: offering a record that is already held returns a
      duplicate outcome and writes nothing to the history.
    - Duplicates are outcomes, not errors: logged at INFO as
      ``duplicate_suppressed``.
    - A keyed record suppressed against a row without a primary identity
      links its key to that row (PaymentRecordLinkRow).  The row is matched
      under that key from then on and absorbs no further keyed payment.

Failure modes:
    - SQLAlchemyError from the session propagates; the caller's transaction
      rolls back and the cursor does not advance.
"""

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from ledger_engines.matching import InsertOutcome, RecordMatcher, with_absorbed_key
from ledger_kernel.domain.events import PaymentRecord
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payment_record import PaymentRecordLinkRow, PaymentRecordRow
from ledger_kernel.services.base import BaseService

logger = get_logger("services.payment_history_store")


class PaymentHistoryStore(BaseService):
    """
    Contract:
        ``insert`` is commutative with respect to any other ``insert`` of
        a representation of the same fact.
    """

    def __init__(self, session: Session, matcher: RecordMatcher | None = None):
        super().__init__(session)
        self._matcher = matcher or RecordMatcher()

    def _collision_candidates(
        self, record: PaymentRecord
    ) -> list[tuple[PaymentRecord, PaymentRecordRow]]:
        """(matching view, row) for every row ``record`` could collide with."""
        same_invoice = and_(
            PaymentRecordRow.invoice_id == record.invoice_id,
            PaymentRecordRow.event_name == record.event_name,
        )
        if record.transaction_hash is not None:
            condition = or_(
                PaymentRecordRow.transaction_hash == record.transaction_hash,
                PaymentRecordLinkRow.transaction_hash == record.transaction_hash,
                same_invoice,
            )
        else:
            condition = same_invoice

        stmt = (
            select(PaymentRecordRow, PaymentRecordLinkRow)
            .outerjoin(
                PaymentRecordLinkRow,
                PaymentRecordLinkRow.record_id == PaymentRecordRow.id,
            )
            .where(
                PaymentRecordRow.account == record.account,
                PaymentRecordRow.contract_address == record.contract_address,
                condition,
            )
        )
        candidates = []
        for row, link in self.session.execute(stmt):
            view = row.to_record()
            if link is not None:
                view = with_absorbed_key(view, link)
            candidates.append((view, row))
        return candidates

    def insert(self, record: PaymentRecord) -> InsertOutcome:
        candidates = self._collision_candidates(record)
        decision = self._matcher.classify(record, [view for view, _ in candidates])
        if decision.outcome.is_duplicate:
            matched = decision.matched
            if decision.absorbs_key:
                row = next(row for view, row in candidates if view is matched)
                self._link(row, record)
            logger.info(
                "duplicate_suppressed",
                extra={
                    "rule": decision.outcome.value,
                    "event_name": record.event_name,
                    "invoice_id": record.invoice_id,
                    "transaction_hash": record.transaction_hash,
                    "log_index": record.log_index,
                    "source": record.source.value,
                    "kept_source": matched.source.value if matched else None,
                    "key_absorbed": decision.absorbs_key,
                },
            )
            return decision.outcome

        self.session.add(PaymentRecordRow.from_record(record))
        self.session.flush()
        logger.info(
            "payment_record_inserted",
            extra={
                "event_name": record.event_name,
                "invoice_id": record.invoice_id,
                "amount": record.amount,
                "transaction_hash": record.transaction_hash,
                "log_index": record.log_index,
                "source": record.source.value,
            },
        )
        return InsertOutcome.INSERTED

    def _link(self, row: PaymentRecordRow, record: PaymentRecord) -> None:
        self.session.add(
            PaymentRecordLinkRow(
                record_id=row.id,
                transaction_hash=record.transaction_hash,
                log_index=record.log_index,
                observed_at=record.observed_at,
            )
        )
        self.session.flush()

    def insert_many(self, records: list[PaymentRecord]) -> list[InsertOutcome]:
        return [self.insert(record) for record in records]
