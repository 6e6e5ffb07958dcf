"""Chain Gateway: protocol, contract interface declarations and typed facade."""

from ledger_kernel.gateway.contract import LedgerContract
from ledger_kernel.gateway.interface import (
    EVENTS,
    INTERFACE_VERSION,
    INVOICE_CHANGE_EVENTS,
    PAYMENT_EVENTS,
    PAYMENT_EVENTS_BY_NAME,
    READ_FUNCTIONS,
    WRITE_FUNCTIONS,
    PaymentEventBinding,
)
from ledger_kernel.gateway.protocol import (
    ChainGateway,
    EventCallback,
    ExecutionReverted,
    Subscription,
    TransactionRejected,
)

__all__ = [
    "ChainGateway",
    "EVENTS",
    "EventCallback",
    "ExecutionReverted",
    "INTERFACE_VERSION",
    "INVOICE_CHANGE_EVENTS",
    "LedgerContract",
    "PAYMENT_EVENTS",
    "PAYMENT_EVENTS_BY_NAME",
    "PaymentEventBinding",
    "READ_FUNCTIONS",
    "Subscription",
    "TransactionRejected",
    "WRITE_FUNCTIONS",
]
