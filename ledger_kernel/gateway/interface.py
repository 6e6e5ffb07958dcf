"""
Contract interface, version 1.

Responsibility:
    Declares the function and event signatures the client relies on, and
    which events feed the Payment History versus the invoice cache.  This
    is the one place that knows argument names; services look them up here
    instead of hard-coding them.

Architecture position:
    Kernel > Gateway -- pure data, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

INTERFACE_VERSION = 1


class Mutability(str, Enum):
    VIEW = "view"
    NONPAYABLE = "nonpayable"
    PAYABLE = "payable"


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    inputs: tuple[str, ...]
    outputs: tuple[str, ...] = ()
    mutability: Mutability = Mutability.VIEW

    @property
    def is_write(self) -> bool:
        return self.mutability is not Mutability.VIEW


@dataclass(frozen=True)
class EventSignature:
    name: str
    fields: tuple[str, ...]
    indexed: tuple[str, ...] = ()


# -- Reads -------------------------------------------------------------------

INVOICE_DETAIL_FIELDS = (
    "id",
    "supplier",
    "buyer",
    "amount",
    "investors",
    "status",
    "dueDate",
    "totalInvestment",
    "isPaid",
)

READ_FUNCTIONS: dict[str, FunctionSignature] = {
    f.name: f
    for f in (
        FunctionSignature("getInvoiceDetails", ("uint256 _invoiceId",), INVOICE_DETAIL_FIELDS),
        FunctionSignature("getInvoice", ("uint256 _invoiceId",), INVOICE_DETAIL_FIELDS),
        FunctionSignature("getBuyerInvoiceIds", ("address _buyer",), ("uint256[]",)),
        FunctionSignature("getSupplierInvoices", ("address _supplier",), ("uint256[]",)),
        FunctionSignature("getAllInvoiceIds", (), ("uint256[]",)),
        FunctionSignature("getUserRole", ("address _user",), ("uint8",)),
        FunctionSignature("hasChosenRole", ("address _user",), ("bool",)),
        FunctionSignature("IdExists", ("uint256 _id",), ("bool",)),
        FunctionSignature("getInvoiceTokenAddress", ("uint256 _invoiceId",), ("address",)),
        FunctionSignature("getMaxSupply", ("uint256 _invoiceId",), ("uint256",)),
        FunctionSignature("getTotalSupply", ("uint256 _invoiceId",), ("uint256",)),
        FunctionSignature("getPriceOfTokenInEth", ("uint256 _invoiceId",), ("uint256",)),
        FunctionSignature("_getTotalDebtAmount", ("uint256 _invoiceId",), ("uint256",)),
    )
}

# -- Writes ------------------------------------------------------------------

WRITE_FUNCTIONS: dict[str, FunctionSignature] = {
    f.name: f
    for f in (
        FunctionSignature(
            "createInvoice",
            ("uint256 _id", "address _buyer", "uint256 _amount", "uint256 _dueDate"),
            mutability=Mutability.NONPAYABLE,
        ),
        FunctionSignature("verifyInvoice", ("uint256 invoiceId",), mutability=Mutability.NONPAYABLE),
        FunctionSignature(
            "tokenGeneration",
            ("uint256 _invoiceId", "uint256 _amount"),
            mutability=Mutability.NONPAYABLE,
        ),
        FunctionSignature("buyTokens", ("uint256 _id", "uint256 _amount"), mutability=Mutability.PAYABLE),
        FunctionSignature("buyerPayment", ("uint256 _id",), mutability=Mutability.PAYABLE),
        FunctionSignature("chooseRole", ("uint8 _role",), mutability=Mutability.NONPAYABLE),
    )
}

# -- Events ------------------------------------------------------------------

EVENTS: dict[str, EventSignature] = {
    e.name: e
    for e in (
        EventSignature(
            "InvoiceCreated",
            ("id", "supplier", "buyer", "amount", "dueDate"),
            indexed=("id", "supplier", "buyer"),
        ),
        EventSignature("InvoiceVerified", ("invoiceId", "isValid"), indexed=("invoiceId",)),
        EventSignature(
            "InvoiceTokenCreated",
            ("invoiceId", "tokenAddress"),
            indexed=("invoiceId", "tokenAddress"),
        ),
        EventSignature(
            "SuccessfulTokenPurchase",
            ("invoiceId", "buyer", "amount"),
            indexed=("invoiceId", "buyer"),
        ),
        EventSignature(
            "PaymentDistributed",
            ("invoiceId", "receiver", "amount"),
            indexed=("invoiceId", "receiver"),
        ),
        EventSignature(
            "PaymentReceived",
            ("invoiceId", "buyer", "amount"),
            indexed=("invoiceId", "buyer"),
        ),
        EventSignature(
            "PaymentToSupplier",
            ("invoiceId", "supplier", "amount"),
            indexed=("invoiceId", "supplier"),
        ),
        EventSignature("InvoicePaid", ("invoiceId", "amount"), indexed=("invoiceId",)),
    )
}


@dataclass(frozen=True)
class PaymentEventBinding:
    """
    How a payment event maps onto a PaymentRecord.

    ``account_arg`` names the indexed argument that identifies the watched
    account; it becomes the record's counterparty and the subscription
    filter.
    """

    event_name: str
    account_arg: str
    invoice_arg: str = "invoiceId"
    amount_arg: str = "amount"


PAYMENT_EVENTS: tuple[PaymentEventBinding, ...] = (
    PaymentEventBinding("SuccessfulTokenPurchase", account_arg="buyer"),
    PaymentEventBinding("PaymentDistributed", account_arg="receiver"),
    PaymentEventBinding("PaymentReceived", account_arg="buyer"),
    PaymentEventBinding("PaymentToSupplier", account_arg="supplier"),
)

PAYMENT_EVENTS_BY_NAME: dict[str, PaymentEventBinding] = {
    b.event_name: b for b in PAYMENT_EVENTS
}

# Events that change an invoice's ledger state; value is the invoice id arg.
INVOICE_CHANGE_EVENTS: dict[str, str] = {
    "InvoiceCreated": "id",
    "InvoiceVerified": "invoiceId",
    "InvoiceTokenCreated": "invoiceId",
    "InvoicePaid": "invoiceId",
}
