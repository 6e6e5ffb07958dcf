"""
ledger_services.session -- Per-session composition root.

Responsibility:
    Own exactly one InvoiceRepository, AccountingCalculator, RoleGuard,
    LedgerEventSynchronizer and ActionSubmitter for the connected
    (account, contract, chain), and rebuild them when the provider reports
    a different account or chain.

Architecture position:
    Services -- top of the stack.  The only place where ``ledger_config``
    settings are translated into kernel and engine constructor arguments.

Invariants enforced:
    - No module-level listeners.  Every subscription belongs to the
      session's synchronizer and goes away with it.
    - One synchronizer per session, shared by every consumer of the
      Payment History.
    - An account or chain switch closes the old synchronizer before the
      new one starts, so no callback of the old scope writes afterwards.
    - An account or chain switch starts the new scope from a fresh cursor,
      bootstrapping from the bounded look-back window.

Usage:
    session = LedgerSession(config, gateway, account)
    await session.start()
    intent = await session.submitter.prepare_pay_invoice(42)
    await session.submitter.execute(intent)
    records = session.history(invoice_id=42)
    await session.stop()
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import ClientConfig
from ledger_engines.accounting import AccountingCalculator, PenaltyPolicy
from ledger_engines.matching import MatchTolerance
from ledger_kernel.db.engine import get_session_factory, session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.events import PaymentRecord
from ledger_kernel.domain.invoice import normalize_account
from ledger_kernel.gateway.contract import LedgerContract
from ledger_kernel.gateway.protocol import ChainGateway
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.payment_history_selector import PaymentHistorySelector
from ledger_kernel.services.invoice_repository import InvoiceRepository
from ledger_kernel.services.role_guard import RoleGuard
from ledger_kernel.services.sync_cursor_service import SyncCursorService
from ledger_services.action_submitter import ActionSubmitter
from ledger_services.event_synchronizer import LedgerEventSynchronizer, SyncStatus

logger = get_logger("services.session")


class NoActiveAccountError(RuntimeError):
    """The provider reported no connected account."""


class LedgerSession:
    """
    Everything one connected account needs, wired once.

    Contract:
        ``start`` evaluates the role and starts synchronizing.  Provider
        signals are forwarded to the ``on_*`` handlers.  ``stop`` releases
        every listener and task.  A stopped session starts again only after
        a provider signal rewires it (account or chain change).
    """

    def __init__(
        self,
        config: ClientConfig,
        gateway: ChainGateway,
        account: str,
        clock: Clock | None = None,
        session_factory: sessionmaker[Session] | None = None,
    ):
        self._config = config
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._session_factory = session_factory or get_session_factory()
        self._session_id = str(uuid4())

        self._calculator = AccountingCalculator(
            PenaltyPolicy(
                daily_rate=config.accounting.daily_penalty_rate,
                cap_rate=config.accounting.penalty_cap_rate,
            )
        )
        self._tolerance = MatchTolerance(
            amount_tolerance=config.sync.amount_tolerance,
            fuzzy_window_seconds=config.sync.fuzzy_window_seconds,
        )
        self._contract = LedgerContract(
            gateway,
            config.contract_address,
            call_timeout=config.sync.call_timeout_seconds,
        )
        self._account: str | None = None
        self._started = False
        self._wire(normalize_account(account))

    def _wire(self, account: str) -> None:
        sync = self._config.sync
        actions = self._config.actions
        self._account = account
        self._repository = InvoiceRepository(self._contract)
        self._role_guard = RoleGuard(self._contract, account, self._clock)
        self._synchronizer = LedgerEventSynchronizer(
            self._contract,
            account,
            self._session_factory,
            self._clock,
            self._repository,
            poll_interval_seconds=sync.poll_interval_seconds,
            lookback_blocks=sync.lookback_blocks,
            max_block_span=sync.max_block_span,
            stale_after_seconds=sync.stale_after_seconds,
            tolerance=self._tolerance,
        )
        self._submitter = ActionSubmitter(
            self._contract,
            self._repository,
            self._calculator,
            self._role_guard,
            self._clock,
            self._synchronizer,
            required_confirmations=actions.required_confirmations,
            confirmation_timeout_seconds=actions.confirmation_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def account(self) -> str | None:
        return self._account

    @property
    def chain_id(self) -> int:
        return self._contract.chain_id

    @property
    def contract(self) -> LedgerContract:
        return self._contract

    @property
    def repository(self) -> InvoiceRepository:
        return self._repository

    @property
    def calculator(self) -> AccountingCalculator:
        return self._calculator

    @property
    def role_guard(self) -> RoleGuard:
        return self._role_guard

    @property
    def synchronizer(self) -> LedgerEventSynchronizer:
        return self._synchronizer

    @property
    def submitter(self) -> ActionSubmitter:
        return self._submitter

    @property
    def is_started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _bind_context(self):
        return LogContext.bind(session_id=self._session_id, account=self._account)

    async def start(self) -> None:
        if self._account is None:
            raise NoActiveAccountError("No account connected")
        if self._started:
            return
        with self._bind_context():
            if self._contract.chain_id != self._config.chain_id:
                logger.warning(
                    "chain_differs_from_config",
                    extra={
                        "chain_id": self._contract.chain_id,
                        "configured_chain_id": self._config.chain_id,
                    },
                )
            await self._role_guard.evaluate()
            self._synchronizer.start()
            self._started = True
            logger.info(
                "session_started",
                extra={
                    "contract_address": self._contract.address,
                    "chain_id": self._contract.chain_id,
                    "config_checksum": self._config.checksum,
                },
            )

    async def stop(self) -> None:
        with self._bind_context():
            await self._synchronizer.close()
            was_started, self._started = self._started, False
            if was_started:
                logger.info("session_stopped")

    async def _rewire(self, account: str) -> None:
        """Close the old synchronizer, wire a new scope and give it a fresh cursor."""
        await self._synchronizer.close()
        self._started = False
        self._wire(account)
        with session_scope(self._session_factory) as session:
            SyncCursorService(session).reset(self._synchronizer.scope)

    async def _restart(self, account: str, reason: str) -> None:
        with self._bind_context():
            logger.info("session_restarting", extra={"reason": reason, "new_account": account})
        await self._rewire(account)
        await self.start()

    # ------------------------------------------------------------------
    # Provider signals
    # ------------------------------------------------------------------

    async def on_accounts_changed(self, accounts: list[str]) -> None:
        """
        The provider's account list changed.

        Empty list: stop synchronizing and wait (IDLE).  Same account: no-op.
        Different account: full restart from a fresh cursor for that account.
        """
        if not accounts:
            with self._bind_context():
                self._synchronizer.stop()
                self._started = False
                logger.info("accounts_disconnected")
            self._account = None
            return

        account = normalize_account(accounts[0])
        if account == self._account and self._started:
            return
        await self._restart(account, "account_changed")

    async def on_chain_changed(self, chain_id: int) -> None:
        """Full restart on the new chain, from a fresh cursor."""
        if self._account is None:
            return
        with self._bind_context():
            logger.info("chain_changed", extra={"chain_id": chain_id})
        if not self._started:
            # rescope only; starting stays with the owner
            await self._rewire(self._account)
            return
        await self._restart(self._account, "chain_changed")

    def on_disconnect(self) -> None:
        with self._bind_context():
            self._synchronizer.on_transport_lost()

    async def on_connect(self) -> None:
        with self._bind_context():
            await self._synchronizer.on_transport_restored()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def history(
        self,
        invoice_id: int | None = None,
        event_name: str | None = None,
    ) -> list[PaymentRecord]:
        """Payment History for the current account, in ledger order."""
        if self._account is None:
            return []
        with session_scope(self._session_factory) as session:
            return PaymentHistorySelector(session).list_records(
                self._account,
                self._contract.address,
                invoice_id=invoice_id,
                event_name=event_name,
            )

    def sync_status(self) -> SyncStatus:
        return self._synchronizer.status()
