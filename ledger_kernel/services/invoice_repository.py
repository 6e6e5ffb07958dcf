"""
InvoiceRepository -- canonical invoices and token snapshots from the ledger.

Responsibility:
    Fetch raw ledger records through LedgerContract, convert fixed-point
    amounts to Decimal and timestamps to aware datetimes, and hold a
    read-through cache of invoices keyed by id.

Architecture position:
    Kernel > Services.  Reads only; never writes to the ledger or to the
    local database.

Invariants enforced:
    - The ledger is authoritative.  A cached Invoice is a convenience for
      display; anything that constructs a transaction reads with
      ``bypass_cache=True``.
    - A zeroed ledger record (id 0, or an id different from the one
      requested) means the invoice does not exist.

Failure modes:
    - InvoiceNotFoundError for ids that do not exist on the ledger.
    - GatewayUnavailableError / GatewayTimeoutError from the gateway.
    - ValueError on a record whose status code is unknown.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

from ledger_kernel.domain.fixed_point import wei_to_decimal
from ledger_kernel.domain.invoice import (
    ZERO_ADDRESS,
    Invoice,
    InvoiceStatus,
    TokenSnapshot,
    UserRole,
    due_date_from_timestamp,
    normalize_account,
)
from ledger_kernel.exceptions import InvoiceNotFoundError
from ledger_kernel.gateway.contract import LedgerContract
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.invoice_repository")


def invoice_from_record(invoice_id: int, raw: dict[str, Any]) -> Invoice:
    """Normalize a raw ``getInvoiceDetails`` record into an Invoice."""
    ledger_id = int(raw["id"])
    supplier = normalize_account(str(raw["supplier"]))
    if ledger_id == 0 or ledger_id != invoice_id or supplier == ZERO_ADDRESS:
        raise InvoiceNotFoundError(invoice_id)

    return Invoice(
        id=ledger_id,
        supplier=supplier,
        buyer=normalize_account(str(raw["buyer"])),
        principal_amount=wei_to_decimal(int(raw["amount"])),
        due_date=due_date_from_timestamp(int(raw["dueDate"])),
        status=InvoiceStatus(int(raw["status"])),
        total_investment=wei_to_decimal(int(raw["totalInvestment"])),
        is_paid=bool(raw["isPaid"]),
        investors=tuple(normalize_account(str(a)) for a in raw.get("investors") or ()),
    )


class InvoiceRepository:
    """
    Read-through cache over the ledger's invoice records.

    Contract:
        One repository per session; the synchronizer and the submitter
        invalidate entries when the ledger state of an invoice changes.
    """

    def __init__(self, contract: LedgerContract):
        self._contract = contract
        self._cache: dict[int, Invoice] = {}

    async def get_invoice(self, invoice_id: int, bypass_cache: bool = False) -> Invoice:
        if not bypass_cache:
            cached = self._cache.get(invoice_id)
            if cached is not None:
                return cached

        raw = await self._contract.get_invoice_details(invoice_id)
        invoice = invoice_from_record(invoice_id, raw)
        self._cache[invoice_id] = invoice
        return invoice

    async def list_invoices_for(self, account: str, role: UserRole) -> list[Invoice]:
        """
        Invoices visible to ``account`` in ``role``.

        Suppliers see the invoices they issued, buyers the invoices billed
        to them, investors the whole marketplace.  Ids listed by the index
        but missing on the ledger are skipped with a warning.
        """
        account = normalize_account(account)
        if role is UserRole.SUPPLIER:
            ids = await self._contract.get_supplier_invoices(account)
        elif role is UserRole.BUYER:
            ids = await self._contract.get_buyer_invoice_ids(account)
        else:
            ids = await self._contract.get_all_invoice_ids()

        results = await asyncio.gather(
            *(self.get_invoice(invoice_id) for invoice_id in ids),
            return_exceptions=True,
        )

        invoices: list[Invoice] = []
        for invoice_id, result in zip(ids, results):
            if isinstance(result, InvoiceNotFoundError):
                logger.warning(
                    "indexed_invoice_missing",
                    extra={"invoice_id": invoice_id, "role": role.name},
                )
                continue
            if isinstance(result, BaseException):
                raise result
            invoices.append(result)

        logger.debug(
            "invoices_listed",
            extra={"role": role.name, "listed": len(ids), "returned": len(invoices)},
        )
        return invoices

    async def get_token_snapshot(self, invoice_id: int) -> TokenSnapshot:
        """Token address, supplies and price, read concurrently and uncached."""
        token_address, max_supply, total_supply, price = await asyncio.gather(
            self._contract.get_invoice_token_address(invoice_id),
            self._contract.get_max_supply(invoice_id),
            self._contract.get_total_supply(invoice_id),
            self._contract.get_price_of_token_in_eth(invoice_id),
        )
        return TokenSnapshot(
            invoice_id=invoice_id,
            token_address=token_address,
            max_supply=wei_to_decimal(max_supply),
            total_supply=wei_to_decimal(total_supply),
            price_of_one_token_in_eth=wei_to_decimal(price),
        )

    async def get_total_debt(self, invoice_id: int) -> Decimal:
        """Ledger-computed principal plus penalty; always a fresh read."""
        return wei_to_decimal(await self._contract.get_total_debt_amount(invoice_id))

    async def get_exchange_rate(self, invoice_id: int) -> Decimal:
        """Native units per ledger unit; always a fresh read."""
        return wei_to_decimal(await self._contract.get_price_of_token_in_eth(invoice_id))

    async def id_exists(self, invoice_id: int) -> bool:
        return await self._contract.id_exists(invoice_id)

    def cached(self, invoice_id: int) -> Invoice | None:
        return self._cache.get(invoice_id)

    def invalidate(self, invoice_id: int) -> None:
        if self._cache.pop(invoice_id, None) is not None:
            logger.debug("invoice_cache_invalidated", extra={"invoice_id": invoice_id})

    def clear(self) -> None:
        self._cache.clear()
