"""
ChainGateway protocol -- the client's only view of the ledger.

Contract:
    Every method is a coroutine except ``subscribe``, which attaches a
    listener synchronously and returns a handle.  Implementations raise
    ``ConnectionError`` (or another ``OSError``) on transport failure and
    ``asyncio.TimeoutError`` on expiry; LedgerContract maps both into the
    GatewayError hierarchy.

    Signing failures surface from ``send_transaction`` as
    ``TransactionRejected``; a node-side revert during gas estimation
    surfaces as ``ExecutionReverted`` carrying the raw reason.

Non-goals:
    - No implementation against a real node lives in this package.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from ledger_kernel.domain.events import (
    LedgerEvent,
    TransactionHandle,
    TransactionReceipt,
)

EventCallback = Callable[[LedgerEvent], None]


class TransactionRejected(Exception):
    """Raised by a gateway when the signer declines a transaction."""


class ExecutionReverted(Exception):
    """Raised by a gateway when the node reports a revert (estimate or call)."""

    def __init__(self, raw_reason: str):
        self.raw_reason = raw_reason
        super().__init__(raw_reason)


@runtime_checkable
class Subscription(Protocol):
    """Handle for a live event listener."""

    @property
    def active(self) -> bool: ...

    def unsubscribe(self) -> None:
        """Detach the listener.  No callback fires after this returns."""
        ...


@runtime_checkable
class ChainGateway(Protocol):
    """Read, subscribe, estimate, send and await receipts."""

    @property
    def chain_id(self) -> int: ...

    async def call(self, function: str, *args: Any) -> Any: ...

    async def get_block_number(self) -> int: ...

    async def query_events(
        self,
        event: str,
        from_block: int,
        to_block: int,
        argument_filters: dict[str, Any] | None = None,
    ) -> list[LedgerEvent]: ...

    def subscribe(
        self,
        event: str,
        callback: EventCallback,
        argument_filters: dict[str, Any] | None = None,
    ) -> Subscription: ...

    async def estimate_gas(self, function: str, *args: Any, value: int = 0) -> int: ...

    async def send_transaction(
        self, function: str, *args: Any, value: int = 0
    ) -> TransactionHandle: ...

    async def wait_for_receipt(
        self, tx_hash: str, confirmations: int = 1, timeout: float | None = None
    ) -> TransactionReceipt: ...
