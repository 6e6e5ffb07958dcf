"""
In-memory ChainGateway for tests.

Simulates block production, an append-only event log, live subscriptions
that drop while disconnected, scripted read failures, reverts and signer
rejections.  Amounts are ledger integers (wei).
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from ledger_kernel.domain.events import LedgerEvent, TransactionHandle, TransactionReceipt
from ledger_kernel.domain.fixed_point import WEI_PER_UNIT
from ledger_kernel.domain.invoice import ZERO_ADDRESS
from ledger_kernel.gateway.protocol import ExecutionReverted, TransactionRejected

SUPPLIER = "0x" + "11" * 20
BUYER = "0x" + "22" * 20
INVESTOR = "0x" + "33" * 20
OTHER = "0x" + "44" * 20
CONTRACT = "0x" + "ab" * 20
CHAIN_ID = 11155111

WEI = WEI_PER_UNIT


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def _norm(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _matches(event: LedgerEvent, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(_norm(event.args.get(k)) == _norm(v) for k, v in filters.items())


class FakeSubscription:
    def __init__(self, gateway: "FakeChainGateway", event: str, callback, filters):
        self._gateway = gateway
        self.event = event
        self.callback = callback
        self.filters = filters
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        self._active = False
        if self in self._gateway.subscriptions:
            self._gateway.subscriptions.remove(self)

    def deliver(self, event: LedgerEvent) -> None:
        if self._active and event.event_name == self.event and _matches(event, self.filters):
            self.callback(event)


@dataclass
class FakeInvoice:
    id: int
    supplier: str
    buyer: str
    amount: int
    due_date: int
    status: int = 0
    total_investment: int = 0
    is_paid: bool = False
    investors: list[str] = field(default_factory=list)

    def record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "supplier": self.supplier,
            "buyer": self.buyer,
            "amount": self.amount,
            "investors": list(self.investors),
            "status": self.status,
            "dueDate": self.due_date,
            "totalInvestment": self.total_investment,
            "isPaid": self.is_paid,
        }


@dataclass
class FakeToken:
    address: str = ZERO_ADDRESS
    max_supply: int = 0
    total_supply: int = 0
    price: int = 0


_EMPTY_RECORD = {
    "id": 0,
    "supplier": ZERO_ADDRESS,
    "buyer": ZERO_ADDRESS,
    "amount": 0,
    "investors": [],
    "status": 0,
    "dueDate": 0,
    "totalInvestment": 0,
    "isPaid": False,
}

WriteHandler = Callable[[tuple, int], list[tuple[str, dict[str, Any]]]]


class FakeChainGateway:
    """Programmable stand-in for a node plus signer."""

    def __init__(self, chain_id: int = CHAIN_ID, block_number: int = 100):
        self._chain_id = chain_id
        self.block_number = block_number
        self.connected = True
        self.invoices: dict[int, FakeInvoice] = {}
        self.tokens: dict[int, FakeToken] = defaultdict(FakeToken)
        self.total_debt: dict[int, int] = {}
        self.roles: dict[str, int] = {}
        self.events: list[LedgerEvent] = []
        self.subscriptions: list[FakeSubscription] = []

        self.call_log: list[tuple[str, tuple]] = []
        self.query_log: list[tuple[str, int, int, dict | None]] = []
        self.sent: list[tuple[str, tuple, int]] = []
        self.fail_next: dict[str, list[BaseException]] = defaultdict(list)
        self.call_delay: dict[str, float] = {}
        self.on_query: Callable[[str, int, int], Awaitable[None] | None] | None = None

        self.estimate_reverts: dict[str, str] = {}
        self.send_errors: dict[str, BaseException] = {}
        self.receipt_reverts: dict[str, str] = {}
        self.write_handlers: dict[str, WriteHandler] = {}
        self.hang_receipts = False
        self._receipts: dict[str, TransactionReceipt] = {}
        self._tx_counter = 0

    # -- scenario helpers -----------------------------------------------------

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def switch_chain(self, chain_id: int) -> None:
        self._chain_id = chain_id

    def mine(self, blocks: int = 1) -> int:
        self.block_number += blocks
        return self.block_number

    def add_invoice(self, invoice: FakeInvoice, total_debt: int | None = None) -> FakeInvoice:
        self.invoices[invoice.id] = invoice
        self.total_debt[invoice.id] = invoice.amount if total_debt is None else total_debt
        return invoice

    def set_role(self, account: str, role: int) -> None:
        self.roles[account.lower()] = role

    def next_tx_hash(self) -> str:
        self._tx_counter += 1
        return tx_hash(self._tx_counter)

    def emit(
        self,
        event_name: str,
        args: dict[str, Any],
        *,
        transaction_hash: str | None = None,
        log_index: int | None = 0,
        block_number: int | None = None,
        block_timestamp: datetime | None = None,
        deliver: bool = True,
    ) -> LedgerEvent:
        """Append to the log and notify live subscribers if connected."""
        event = LedgerEvent(
            event_name=event_name,
            args=dict(args),
            transaction_hash=transaction_hash or self.next_tx_hash(),
            log_index=log_index,
            block_number=self.block_number if block_number is None else block_number,
            block_timestamp=block_timestamp,
        )
        self.events.append(event)
        if deliver and self.connected:
            for subscription in list(self.subscriptions):
                subscription.deliver(event)
        return event

    def disconnect(self) -> None:
        """Drop the transport; live listeners stop receiving silently."""
        self.connected = False

    def reconnect(self) -> None:
        self.connected = True

    # -- ChainGateway ----------------------------------------------------------

    async def _enter(self, operation: str) -> None:
        delay = self.call_delay.get(operation)
        if delay:
            await asyncio.sleep(delay)
        scripted = self.fail_next.get(operation)
        if scripted:
            raise scripted.pop(0)
        if not self.connected:
            raise ConnectionError("transport disconnected")

    async def call(self, function: str, *args: Any) -> Any:
        self.call_log.append((function, args))
        await self._enter(function)
        handler = getattr(self, f"_read_{function.lstrip('_')}")
        return handler(*args)

    async def get_block_number(self) -> int:
        await self._enter("getBlockNumber")
        return self.block_number

    async def query_events(
        self,
        event: str,
        from_block: int,
        to_block: int,
        argument_filters: dict[str, Any] | None = None,
    ) -> list[LedgerEvent]:
        self.query_log.append((event, from_block, to_block, argument_filters))
        if self.on_query is not None:
            result = self.on_query(event, from_block, to_block)
            if asyncio.iscoroutine(result):
                await result
        await self._enter("queryEvents")
        return [
            e
            for e in self.events
            if e.event_name == event
            and e.block_number is not None
            and from_block <= e.block_number <= to_block
            and _matches(e, argument_filters)
        ]

    def subscribe(self, event: str, callback, argument_filters=None) -> FakeSubscription:
        if not self.connected:
            raise ConnectionError("transport disconnected")
        subscription = FakeSubscription(self, event, callback, argument_filters)
        self.subscriptions.append(subscription)
        return subscription

    async def estimate_gas(self, function: str, *args: Any, value: int = 0) -> int:
        await self._enter(f"estimateGas:{function}")
        if function in self.estimate_reverts:
            raise ExecutionReverted(self.estimate_reverts[function])
        return 21_000 + 1_000 * len(args)

    async def send_transaction(self, function: str, *args: Any, value: int = 0) -> TransactionHandle:
        await self._enter(f"send:{function}")
        if function in self.send_errors:
            raise self.send_errors[function]
        self.sent.append((function, args, value))
        handle = TransactionHandle(tx_hash=self.next_tx_hash(), function=function, value_wei=value)

        block = self.mine()
        if function in self.receipt_reverts:
            self._receipts[handle.tx_hash] = TransactionReceipt(
                tx_hash=handle.tx_hash,
                status=0,
                block_number=block,
                revert_reason=self.receipt_reverts[function],
            )
            return handle

        logs = []
        handler = self.write_handlers.get(function)
        if handler is not None:
            for index, (event_name, event_args) in enumerate(handler(args, value)):
                logs.append(
                    self.emit(
                        event_name,
                        event_args,
                        transaction_hash=handle.tx_hash,
                        log_index=index,
                        block_number=block,
                    )
                )
        self._receipts[handle.tx_hash] = TransactionReceipt(
            tx_hash=handle.tx_hash,
            status=1,
            block_number=block,
            logs=tuple(logs),
            gas_used=21_000,
        )
        return handle

    async def wait_for_receipt(
        self, tx_hash: str, confirmations: int = 1, timeout: float | None = None
    ) -> TransactionReceipt:
        await self._enter("waitForReceipt")
        if self.hang_receipts:
            await asyncio.Event().wait()
        return self._receipts[tx_hash]

    # -- read handlers ---------------------------------------------------------

    def _read_getInvoiceDetails(self, invoice_id: int) -> dict[str, Any]:
        invoice = self.invoices.get(invoice_id)
        return invoice.record() if invoice else dict(_EMPTY_RECORD)

    _read_getInvoice = _read_getInvoiceDetails

    def _read_getBuyerInvoiceIds(self, account: str) -> list[int]:
        return [i.id for i in self.invoices.values() if i.buyer == account.lower()]

    def _read_getSupplierInvoices(self, account: str) -> list[int]:
        return [i.id for i in self.invoices.values() if i.supplier == account.lower()]

    def _read_getAllInvoiceIds(self) -> list[int]:
        return list(self.invoices)

    def _read_getUserRole(self, account: str) -> int:
        return self.roles.get(account.lower(), 0)

    def _read_hasChosenRole(self, account: str) -> bool:
        return account.lower() in self.roles

    def _read_IdExists(self, invoice_id: int) -> bool:
        return invoice_id in self.invoices

    def _read_getInvoiceTokenAddress(self, invoice_id: int) -> str:
        return self.tokens[invoice_id].address

    def _read_getMaxSupply(self, invoice_id: int) -> int:
        return self.tokens[invoice_id].max_supply

    def _read_getTotalSupply(self, invoice_id: int) -> int:
        return self.tokens[invoice_id].total_supply

    def _read_getPriceOfTokenInEth(self, invoice_id: int) -> int:
        return self.tokens[invoice_id].price

    def _read_getTotalDebtAmount(self, invoice_id: int) -> int:
        return self.total_debt.get(invoice_id, 0)


def due_timestamp(when: datetime) -> int:
    return int(when.astimezone(timezone.utc).timestamp())


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_invoice(
    invoice_id: int = 42,
    *,
    amount: int = 1000 * WEI,
    status: int = 2,
    due: datetime | None = None,
    is_paid: bool = False,
) -> FakeInvoice:
    """Supplier -> buyer invoice, approved and due in 30 days by default."""
    return FakeInvoice(
        id=invoice_id,
        supplier=SUPPLIER,
        buyer=BUYER,
        amount=amount,
        due_date=due_timestamp(due or NOW + timedelta(days=30)),
        status=int(status),
        is_paid=is_paid,
    )
