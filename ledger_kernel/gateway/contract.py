"""
LedgerContract -- typed facade over a ChainGateway.

Responsibility:
    One method per contract function the client uses, each bounded by a
    caller-supplied timeout, with transport failures mapped into the
    GatewayError hierarchy.  Raw ledger integers are returned as ints;
    conversion to Decimal belongs to the repository.

Architecture position:
    Kernel > Gateway.  Imports the protocol and interface declarations only.

Failure modes:
    - GatewayTimeoutError when a call outlives its timeout.
    - GatewayUnavailableError on ConnectionError / OSError from the gateway.
    - ExecutionReverted and TransactionRejected pass through unchanged; the
      ActionSubmitter interprets them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any, Awaitable, TypeVar

from ledger_kernel.domain.events import LedgerEvent, TransactionHandle, TransactionReceipt
from ledger_kernel.domain.invoice import normalize_account
from ledger_kernel.exceptions import GatewayTimeoutError, GatewayUnavailableError
from ledger_kernel.gateway.interface import (
    EVENTS,
    INVOICE_DETAIL_FIELDS,
    READ_FUNCTIONS,
    WRITE_FUNCTIONS,
)
from ledger_kernel.gateway.protocol import ChainGateway, EventCallback, Subscription
from ledger_kernel.logging_config import get_logger

logger = get_logger("gateway.contract")

T = TypeVar("T")

DEFAULT_CALL_TIMEOUT_SECONDS = 15.0


class LedgerContract:
    """
    Typed access to the invoice-financing contract at ``address``.

    Contract:
        Stateless apart from its collaborators; safe to share between the
        repository, synchronizer, role guard and submitter of one session.
    """

    def __init__(
        self,
        gateway: ChainGateway,
        address: str,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    ):
        self._gateway = gateway
        self._address = normalize_account(address)
        self._call_timeout = call_timeout

    @property
    def address(self) -> str:
        return self._address

    @property
    def chain_id(self) -> int:
        return self._gateway.chain_id

    async def _bounded(
        self,
        operation: str,
        awaitable: Awaitable[T],
        timeout: float | None = None,
    ) -> T:
        timeout = self._call_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "gateway_call_timed_out",
                extra={"operation": operation, "timeout_seconds": timeout},
            )
            raise GatewayTimeoutError(operation, timeout) from exc
        except (ConnectionError, OSError) as exc:
            logger.warning(
                "gateway_call_failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise GatewayUnavailableError(operation, str(exc)) from exc

    async def _read(self, function: str, *args: Any) -> Any:
        if function not in READ_FUNCTIONS:
            raise ValueError(f"Unknown read function: {function}")
        return await self._bounded(function, self._gateway.call(function, *args))

    # -- invoices ------------------------------------------------------------

    async def get_invoice_details(self, invoice_id: int) -> dict[str, Any]:
        """
        Raw invoice record keyed by field name.

        Accepts either a mapping or a positional tuple from the gateway.
        """
        raw = await self._read("getInvoiceDetails", invoice_id)
        if isinstance(raw, Mapping):
            return {name: raw[name] for name in INVOICE_DETAIL_FIELDS}
        if isinstance(raw, Sequence) and len(raw) == len(INVOICE_DETAIL_FIELDS):
            return dict(zip(INVOICE_DETAIL_FIELDS, raw))
        raise GatewayUnavailableError(
            "getInvoiceDetails", f"malformed invoice record for id {invoice_id}"
        )

    async def get_supplier_invoices(self, account: str) -> list[int]:
        return [int(i) for i in await self._read("getSupplierInvoices", account)]

    async def get_buyer_invoice_ids(self, account: str) -> list[int]:
        return [int(i) for i in await self._read("getBuyerInvoiceIds", account)]

    async def get_all_invoice_ids(self) -> list[int]:
        return [int(i) for i in await self._read("getAllInvoiceIds")]

    async def id_exists(self, invoice_id: int) -> bool:
        return bool(await self._read("IdExists", invoice_id))

    async def get_total_debt_amount(self, invoice_id: int) -> int:
        return int(await self._read("_getTotalDebtAmount", invoice_id))

    # -- tokens --------------------------------------------------------------

    async def get_invoice_token_address(self, invoice_id: int) -> str:
        return normalize_account(await self._read("getInvoiceTokenAddress", invoice_id))

    async def get_max_supply(self, invoice_id: int) -> int:
        return int(await self._read("getMaxSupply", invoice_id))

    async def get_total_supply(self, invoice_id: int) -> int:
        return int(await self._read("getTotalSupply", invoice_id))

    async def get_price_of_token_in_eth(self, invoice_id: int) -> int:
        return int(await self._read("getPriceOfTokenInEth", invoice_id))

    # -- roles ---------------------------------------------------------------

    async def get_user_role(self, account: str) -> int:
        return int(await self._read("getUserRole", account))

    async def has_chosen_role(self, account: str) -> bool:
        return bool(await self._read("hasChosenRole", account))

    # -- events --------------------------------------------------------------

    async def block_number(self) -> int:
        return int(await self._bounded("getBlockNumber", self._gateway.get_block_number()))

    async def query_events(
        self,
        event: str,
        from_block: int,
        to_block: int,
        argument_filters: dict[str, Any] | None = None,
    ) -> list[LedgerEvent]:
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        return await self._bounded(
            f"queryEvents:{event}",
            self._gateway.query_events(event, from_block, to_block, argument_filters),
        )

    def subscribe(
        self,
        event: str,
        callback: EventCallback,
        argument_filters: dict[str, Any] | None = None,
    ) -> Subscription:
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        try:
            return self._gateway.subscribe(event, callback, argument_filters)
        except (ConnectionError, OSError) as exc:
            raise GatewayUnavailableError(f"subscribe:{event}", str(exc)) from exc

    # -- transactions --------------------------------------------------------

    async def estimate_gas(self, function: str, *args: Any, value: int = 0) -> int:
        if function not in WRITE_FUNCTIONS:
            raise ValueError(f"Unknown write function: {function}")
        return int(
            await self._bounded(
                f"estimateGas:{function}",
                self._gateway.estimate_gas(function, *args, value=value),
            )
        )

    async def send_transaction(
        self, function: str, *args: Any, value: int = 0
    ) -> TransactionHandle:
        """Broadcast a write.  Unbounded: the signer may take as long as it needs."""
        if function not in WRITE_FUNCTIONS:
            raise ValueError(f"Unknown write function: {function}")
        try:
            return await self._gateway.send_transaction(function, *args, value=value)
        except (ConnectionError, OSError) as exc:
            raise GatewayUnavailableError(f"send:{function}", str(exc)) from exc

    async def wait_for_receipt(
        self, tx_hash: str, confirmations: int, timeout: float
    ) -> TransactionReceipt:
        return await self._bounded(
            "waitForReceipt",
            self._gateway.wait_for_receipt(tx_hash, confirmations, timeout),
            timeout=timeout,
        )
