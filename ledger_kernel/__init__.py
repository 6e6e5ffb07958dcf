"""
Ledger Kernel - invoice-financing ledger client core.

A client-side reconciliation and accounting core for an on-chain invoice
financing contract:
- Idempotent, order-independent merge of live and polled ledger events
- Monotonic sync cursor per (account, contract, chain)
- Fixed-point accounting that agrees with the ledger's own figures
- Guarded, cancellable state-changing actions tracked to confirmation
"""

__version__ = "0.1.0"
