"""
ledger_services.event_synchronizer -- Reconciles live and polled ledger events.

Responsibility:
    Keep the Payment History for one (account, contract, chain) complete and
    duplicate-free by merging two independent channels:

      * a live subscription, which is fast but can drop events while the
        transport is down, and
      * a periodic poll over a block window, which is slow but complete.

    It also invalidates the invoice cache when the ledger reports that an
    invoice changed, and ingests the logs of confirmed actions.

Architecture position:
    Services -- stateful orchestration over kernel + engines.  Sole writer of
    the Payment History and the Sync Cursor.

State:

    IDLE ──start()──> SUBSCRIBED ──tick──> POLLING ──done──> SUBSCRIBED
      ^                   │
      └─────stop()────────┘         close() from any state ──> STOPPED

Invariants enforced:
    - Idempotent, order-independent merge (PaymentHistoryStore + matcher).
    - Cursor monotonicity; the cursor advances to ``current_block`` only
      in the same transaction that inserted every record of the window.
    - Epoch fencing: ``stop()`` bumps the epoch, cancels the polling task
      and detaches listeners before returning.  Any tick or callback that
      started under an older epoch discards its results.
    - A failed tick never raises; it is logged, counted and retried on the
      next tick with the cursor untouched.

Failure modes:
    - RuntimeError from ``start`` once closed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.orm import Session, sessionmaker

from ledger_engines.matching import InsertOutcome, MatchTolerance, RecordMatcher
from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.events import (
    EventSource,
    LedgerEvent,
    PaymentRecord,
    TransactionReceipt,
)
from ledger_kernel.domain.fixed_point import wei_to_decimal
from ledger_kernel.domain.invoice import normalize_account
from ledger_kernel.gateway.contract import LedgerContract
from ledger_kernel.gateway.interface import (
    INVOICE_CHANGE_EVENTS,
    PAYMENT_EVENTS,
    PAYMENT_EVENTS_BY_NAME,
)
from ledger_kernel.gateway.protocol import Subscription
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.invoice_repository import InvoiceRepository
from ledger_kernel.services.sync_cursor_service import SyncCursorService, SyncScope
from ledger_services.payment_history_store import PaymentHistoryStore

logger = get_logger("services.event_synchronizer")


class SyncState(str, Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    POLLING = "polling"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot for presentation: show a staleness indicator, not an error."""

    state: SyncState
    cursor: int | None
    last_success_at: datetime | None
    last_failure_at: datetime | None
    consecutive_failures: int
    total_failures: int
    last_error: str | None
    is_stale: bool


@dataclass(frozen=True)
class TickResult:
    from_block: int
    to_block: int
    outcomes: tuple[InsertOutcome, ...]

    @property
    def inserted(self) -> int:
        return sum(1 for o in self.outcomes if o is InsertOutcome.INSERTED)

    @property
    def suppressed(self) -> int:
        return len(self.outcomes) - self.inserted


def block_chunks(from_block: int, to_block: int, span: int) -> list[tuple[int, int]]:
    """Split ``[from_block, to_block]`` into inclusive chunks of at most ``span``."""
    chunks: list[tuple[int, int]] = []
    start = from_block
    while start <= to_block:
        end = min(start + span - 1, to_block)
        chunks.append((start, end))
        start = end + 1
    return chunks


class _StaleEpoch(Exception):
    """Internal: the synchronizer was stopped while a tick was in flight."""


class LedgerEventSynchronizer:
    """
    One synchronizer per session, shared by every consumer of the history.

    Contract:
        ``start``/``stop``/``close`` are called by the owning LedgerSession.
        Consumers read through PaymentHistorySelector, never through here.
    """

    def __init__(
        self,
        contract: LedgerContract,
        account: str,
        session_factory: sessionmaker[Session],
        clock: Clock,
        repository: InvoiceRepository | None = None,
        *,
        poll_interval_seconds: float = 30.0,
        lookback_blocks: int = 5000,
        max_block_span: int = 2000,
        stale_after_seconds: float = 120.0,
        tolerance: MatchTolerance | None = None,
    ):
        self._contract = contract
        self._account = normalize_account(account)
        self._session_factory = session_factory
        self._clock = clock
        self._repository = repository
        self._poll_interval = poll_interval_seconds
        self._lookback_blocks = lookback_blocks
        self._max_block_span = max_block_span
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._matcher = RecordMatcher(tolerance)

        self._scope = SyncScope(
            account=self._account,
            contract_address=contract.address,
            chain_id=contract.chain_id,
        )

        self._epoch = 0
        self._running = False
        self._closed = False
        self._poll_task: asyncio.Task | None = None
        self._subscriptions: list[Subscription] = []
        self._tick_lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._ticks_in_flight = 0

        self._started_at: datetime | None = None
        self._last_success_at: datetime | None = None
        self._last_failure_at: datetime | None = None
        self._consecutive_failures = 0
        self._total_failures = 0
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def scope(self) -> SyncScope:
        return self._scope

    @property
    def account(self) -> str:
        return self._account

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def subscribed(self) -> bool:
        return bool(self._subscriptions)

    @property
    def state(self) -> SyncState:
        if self._closed:
            return SyncState.STOPPED
        if not self._running:
            return SyncState.IDLE
        if self._ticks_in_flight:
            return SyncState.POLLING
        # also while the transport is down; see ``subscribed``
        return SyncState.SUBSCRIBED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Attach listeners and start the polling task; the first tick runs now."""
        if self._closed:
            raise RuntimeError("Synchronizer is closed and cannot be restarted")
        if self._running:
            logger.warning("synchronizer_already_running")
            return

        self._epoch += 1
        self._running = True
        self._started_at = self._clock.now()
        self._attach_subscriptions()
        self._wake = asyncio.Event()
        self._poll_task = asyncio.create_task(self._poll_loop(self._epoch))
        logger.info(
            "synchronizer_started",
            extra={
                "epoch": self._epoch,
                "poll_interval_seconds": self._poll_interval,
                "chain_id": self._scope.chain_id,
            },
        )

    def stop(self) -> None:
        """
        Cancel the polling task and detach every listener, synchronously.

        Results of any tick or callback already in flight are discarded.
        The synchronizer returns to IDLE and does nothing until ``start``.
        """
        self._epoch += 1
        was_running = self._running
        self._running = False
        self._detach_subscriptions()
        if self._poll_task is not None:
            self._poll_task.cancel()
        if was_running:
            logger.info("synchronizer_stopped", extra={"epoch": self._epoch})

    async def close(self) -> None:
        """Stop, wait for the cancelled task to unwind, and refuse restarts."""
        self.stop()
        task, self._poll_task = self._poll_task, None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._closed = True

    # ------------------------------------------------------------------
    # Transport signals
    # ------------------------------------------------------------------

    def on_transport_lost(self) -> None:
        """Tear down the live subscription; polling keeps its schedule."""
        if not self._subscriptions:
            return
        self._detach_subscriptions()
        logger.warning("transport_lost_subscription_detached")

    async def on_transport_restored(self) -> TickResult | None:
        """Resubscribe and run a bridging poll immediately."""
        if not self._running:
            return None
        self._detach_subscriptions()
        self._attach_subscriptions()
        logger.info("transport_restored_bridging_poll")
        return await self._tick(self._epoch)

    # ------------------------------------------------------------------
    # Subscription channel
    # ------------------------------------------------------------------

    def _attach_subscriptions(self) -> None:
        epoch = self._epoch
        callback = self._make_callback(epoch)
        try:
            for binding in PAYMENT_EVENTS:
                self._subscriptions.append(
                    self._contract.subscribe(
                        binding.event_name,
                        callback,
                        {binding.account_arg: self._account},
                    )
                )
            for event_name in INVOICE_CHANGE_EVENTS:
                self._subscriptions.append(self._contract.subscribe(event_name, callback))
        except Exception:
            # polling covers the gap; the next restore resubscribes
            logger.warning("subscription_attach_failed", exc_info=True)
            self._detach_subscriptions()

    def _detach_subscriptions(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.unsubscribe()

    def _make_callback(self, epoch: int):
        def on_event(event: LedgerEvent) -> None:
            if epoch != self._epoch:
                logger.debug(
                    "stale_callback_ignored",
                    extra={"event_name": event.event_name, "callback_epoch": epoch},
                )
                return
            self._handle_live_event(event)

        return on_event

    def _handle_live_event(self, event: LedgerEvent) -> None:
        try:
            if event.event_name in INVOICE_CHANGE_EVENTS:
                self._invalidate_for(event)
                return
            record = self._to_record(event, EventSource.SUBSCRIPTION)
            if record is None:
                return
            with session_scope(self._session_factory) as session:
                PaymentHistoryStore(session, self._matcher).insert(record)
            if self._repository is not None:
                self._repository.invalidate(record.invoice_id)
        except Exception:
            logger.warning(
                "live_event_failed",
                extra={"event_name": event.event_name},
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Polling channel
    # ------------------------------------------------------------------

    async def _poll_loop(self, epoch: int) -> None:
        try:
            while epoch == self._epoch:
                await self._tick(epoch)
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass
                self._wake.clear()
        except asyncio.CancelledError:
            logger.debug("poll_loop_cancelled", extra={"epoch": epoch})
            raise

    def request_poll(self) -> None:
        """Wake the polling task for an immediate tick."""
        self._wake.set()

    async def poll_once(self) -> TickResult | None:
        """Run one tick under the current epoch (outside the polling task)."""
        return await self._tick(self._epoch)

    def _check_epoch(self, epoch: int) -> None:
        if epoch != self._epoch:
            raise _StaleEpoch()

    def _window_start(self, cursor: int | None, current: int) -> int:
        floor = max(0, current - self._lookback_blocks)
        if cursor is None:
            return floor
        return min(cursor + 1, floor)

    async def _tick(self, epoch: int) -> TickResult | None:
        async with self._tick_lock:
            if epoch != self._epoch:
                return None
            self._ticks_in_flight += 1
            try:
                return await self._reconcile_window(epoch)
            except _StaleEpoch:
                logger.info("poll_result_discarded", extra={"tick_epoch": epoch})
                return None
            except Exception as exc:
                self._record_failure(exc)
                return None
            finally:
                self._ticks_in_flight -= 1

    async def _reconcile_window(self, epoch: int) -> TickResult:
        current = await self._contract.block_number()
        self._check_epoch(epoch)

        with session_scope(self._session_factory) as session:
            cursor = SyncCursorService(session).get(self._scope)
        from_block = self._window_start(cursor, current)

        payment_events: list[LedgerEvent] = []
        change_events: list[LedgerEvent] = []
        for chunk_start, chunk_end in block_chunks(from_block, current, self._max_block_span):
            for binding in PAYMENT_EVENTS:
                payment_events.extend(
                    await self._contract.query_events(
                        binding.event_name,
                        chunk_start,
                        chunk_end,
                        {binding.account_arg: self._account},
                    )
                )
                self._check_epoch(epoch)
            for event_name in INVOICE_CHANGE_EVENTS:
                change_events.extend(
                    await self._contract.query_events(event_name, chunk_start, chunk_end)
                )
                self._check_epoch(epoch)

        records = [
            record
            for record in (self._to_record(e, EventSource.POLLING) for e in payment_events)
            if record is not None
        ]

        with session_scope(self._session_factory) as session:
            outcomes = PaymentHistoryStore(session, self._matcher).insert_many(records)
            SyncCursorService(session).advance(self._scope, current, self._clock.now())

        for event in change_events:
            self._invalidate_for(event)
        if self._repository is not None:
            for record, outcome in zip(records, outcomes):
                if outcome is InsertOutcome.INSERTED:
                    self._repository.invalidate(record.invoice_id)

        result = TickResult(from_block=from_block, to_block=current, outcomes=tuple(outcomes))
        self._record_success(result)
        return result

    async def full_refresh(self) -> TickResult | None:
        """Reset the cursor and re-bootstrap from the look-back window."""
        async with self._tick_lock:
            with session_scope(self._session_factory) as session:
                SyncCursorService(session).reset(self._scope)
            if self._repository is not None:
                self._repository.clear()
        logger.info("full_refresh_requested")
        return await self._tick(self._epoch)

    # ------------------------------------------------------------------
    # Confirmed actions
    # ------------------------------------------------------------------

    def ingest_receipt(self, receipt: TransactionReceipt) -> list[InsertOutcome]:
        """
        Record the payment logs of a confirmed action, source REFRESH.

        Never raises: the action is already confirmed.  A failed write is
        logged and an immediate poll is requested to pick the logs up.
        """
        if self._closed:
            logger.info("receipt_ingest_skipped", extra={"tx_hash": receipt.tx_hash})
            return []
        with LogContext.bind(tx_hash=receipt.tx_hash):
            try:
                return self._ingest_logs(receipt)
            except Exception:
                logger.warning("receipt_ingest_failed", exc_info=True)
                self.request_poll()
                return []

    def _ingest_logs(self, receipt: TransactionReceipt) -> list[InsertOutcome]:
        records: list[PaymentRecord] = []
        for log in receipt.logs:
            if log.event_name in INVOICE_CHANGE_EVENTS:
                self._invalidate_for(log)
                continue
            record = self._to_record(
                log,
                EventSource.REFRESH,
                fallback_tx_hash=receipt.tx_hash,
                fallback_block=receipt.block_number,
            )
            if record is not None:
                records.append(record)

        if not records:
            return []
        with session_scope(self._session_factory) as session:
            return PaymentHistoryStore(session, self._matcher).insert_many(records)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _to_record(
        self,
        event: LedgerEvent,
        source: EventSource,
        fallback_tx_hash: str | None = None,
        fallback_block: int | None = None,
    ) -> PaymentRecord | None:
        binding = PAYMENT_EVENTS_BY_NAME.get(event.event_name)
        if binding is None:
            return None
        counterparty = normalize_account(str(event.args[binding.account_arg]))
        if counterparty != self._account:
            return None
        return PaymentRecord(
            account=self._account,
            contract_address=self._scope.contract_address,
            event_name=event.event_name,
            invoice_id=int(event.args[binding.invoice_arg]),
            counterparty=counterparty,
            amount=wei_to_decimal(int(event.args[binding.amount_arg])),
            block_number=event.block_number if event.block_number is not None else fallback_block,
            transaction_hash=event.transaction_hash or fallback_tx_hash,
            log_index=event.log_index,
            observed_at=event.block_timestamp or self._clock.now(),
            source=source,
        )

    def _invalidate_for(self, event: LedgerEvent) -> None:
        if self._repository is None:
            return
        arg = INVOICE_CHANGE_EVENTS.get(event.event_name)
        if arg is None or arg not in event.args:
            return
        self._repository.invalidate(int(event.args[arg]))

    def _record_success(self, result: TickResult) -> None:
        self._last_success_at = self._clock.now()
        self._consecutive_failures = 0
        self._last_error = None
        logger.info(
            "poll_tick_completed",
            extra={
                "from_block": result.from_block,
                "to_block": result.to_block,
                "inserted": result.inserted,
                "suppressed": result.suppressed,
            },
        )

    def _record_failure(self, exc: Exception) -> None:
        self._last_failure_at = self._clock.now()
        self._consecutive_failures += 1
        self._total_failures += 1
        self._last_error = str(exc)
        logger.warning(
            "poll_tick_failed",
            extra={
                "consecutive_failures": self._consecutive_failures,
                "error_code": getattr(exc, "code", type(exc).__name__),
            },
            exc_info=True,
        )

    def status(self, now: datetime | None = None) -> SyncStatus:
        now = now or self._clock.now()
        reference = self._last_success_at or self._started_at
        is_stale = reference is not None and now - reference > self._stale_after
        with session_scope(self._session_factory) as session:
            cursor = SyncCursorService(session).get(self._scope)
        return SyncStatus(
            state=self.state,
            cursor=cursor,
            last_success_at=self._last_success_at,
            last_failure_at=self._last_failure_at,
            consecutive_failures=self._consecutive_failures,
            total_failures=self._total_failures,
            last_error=self._last_error,
            is_stale=is_stale,
        )
