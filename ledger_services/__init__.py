"""
Ledger services: stateful orchestration over the kernel and engines.

    LedgerSession            composition root, one per connected account
    LedgerEventSynchronizer  subscription + polling into Payment History
    ActionSubmitter          prepare / submit / confirm write actions
    PaymentHistoryStore      deduplicating writer used by the synchronizer
"""

from ledger_services.action_submitter import ActionSubmitter
from ledger_services.event_synchronizer import (
    LedgerEventSynchronizer,
    SyncState,
    SyncStatus,
    TickResult,
    block_chunks,
)
from ledger_services.payment_history_store import PaymentHistoryStore
from ledger_services.session import LedgerSession, NoActiveAccountError

__all__ = [
    "ActionSubmitter",
    "LedgerEventSynchronizer",
    "LedgerSession",
    "NoActiveAccountError",
    "PaymentHistoryStore",
    "SyncState",
    "SyncStatus",
    "TickResult",
    "block_chunks",
]
