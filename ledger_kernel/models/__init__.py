"""SQLAlchemy ORM models for the local ledger cache."""

from ledger_kernel.models.payment_record import PaymentRecordLinkRow, PaymentRecordRow
from ledger_kernel.models.sync_cursor import SyncCursorRow

__all__ = [
    "PaymentRecordLinkRow",
    "PaymentRecordRow",
    "SyncCursorRow",
]
