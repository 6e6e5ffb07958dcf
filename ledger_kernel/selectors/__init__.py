"""Read-only selectors over the local ledger cache."""

from ledger_kernel.selectors.payment_history_selector import PaymentHistorySelector

__all__ = ["PaymentHistorySelector"]
