"""
ledger_services.action_submitter -- State-changing requests to the ledger.

Responsibility:
    Build, submit and track the six write actions (create invoice, request
    verification, mint tokens, buy tokens, pay invoice, choose role) from a
    prepared ActionIntent to confirmation or failure.

Architecture position:
    Services -- orchestration over the InvoiceRepository, the
    AccountingCalculator, the RoleGuard and LedgerContract.  Hands confirmed
    receipts to the LedgerEventSynchronizer; never writes the Payment
    History itself.

Invariants enforced:
    - Every amount sent is computed from a fresh ledger read (invoice,
      total debt, exchange rate), never from a cached Invoice.
    - Client-side guards fail fast with ActionGuardError before anything
      reaches the signer.
    - Gas is estimated before sending.  A failing estimate means nothing
      is sent.
    - Submission errors are surfaced immediately and never retried.
    - ``prepare_*`` returns a cancellable intent; nothing blocks on a
      confirmation dialog.

Failure modes:
    - ActionGuardError, CapabilityDeniedError, RoleAlreadyChosenError while
      preparing.
    - GasEstimationFailedError, ActionRejectedByUserError, ActionRevertedError
      (send-time revert), GatewayUnavailableError from ``submit``; the
      intent ends FAILED.
    - ActionRevertedError from ``wait_for_confirmation`` (intent ends
      REVERTED); GatewayTimeoutError leaves the intent PENDING.
    - ActionCancelledError / InvalidActionStateError when the lifecycle is
      driven out of order.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from ledger_engines.accounting import AccountingCalculator
from ledger_engines.revert_reasons import decode_revert_reason, is_user_rejection
from ledger_kernel.domain.actions import ActionIntent, ActionKind, ActionState
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.events import TransactionReceipt
from ledger_kernel.domain.fixed_point import decimal_to_wei, to_decimal
from ledger_kernel.domain.invoice import (
    Capability,
    Invoice,
    InvoiceStatus,
    UserRole,
    is_valid_account,
    normalize_account,
)
from ledger_kernel.exceptions import (
    ActionGuardError,
    ActionRejectedByUserError,
    ActionRevertedError,
    GasEstimationFailedError,
    GatewayError,
    InvalidActionStateError,
)
from ledger_kernel.gateway.contract import LedgerContract
from ledger_kernel.gateway.protocol import ExecutionReverted, TransactionRejected
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.invoice_repository import InvoiceRepository
from ledger_kernel.services.role_guard import RoleGuard
from ledger_services.event_synchronizer import LedgerEventSynchronizer

logger = get_logger("services.action_submitter")


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


class ActionSubmitter:
    """
    Prepare -> submit -> wait, one ActionIntent at a time.

    Contract:
        ``prepare_*`` validates and prices the action and returns a BUILT
        intent.  The caller either ``cancel()``s it or passes it to
        ``submit`` and then ``wait_for_confirmation`` (or ``execute``,
        which does both).
    Non-goals:
        - No retries.  A failed submission is reported, and the user
          decides whether to try again with a freshly prepared intent.
    """

    def __init__(
        self,
        contract: LedgerContract,
        repository: InvoiceRepository,
        calculator: AccountingCalculator,
        role_guard: RoleGuard,
        clock: Clock,
        synchronizer: LedgerEventSynchronizer | None = None,
        *,
        required_confirmations: int = 1,
        confirmation_timeout_seconds: float = 300.0,
    ):
        self._contract = contract
        self._repository = repository
        self._calculator = calculator
        self._role_guard = role_guard
        self._clock = clock
        self._synchronizer = synchronizer
        self._required_confirmations = required_confirmations
        self._confirmation_timeout = confirmation_timeout_seconds

    @property
    def account(self) -> str:
        return self._role_guard.account

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    async def _require(self, capability: Capability) -> None:
        await self._role_guard.evaluate()
        self._role_guard.require(capability)

    async def _fresh_invoice(self, invoice_id: int) -> Invoice:
        return await self._repository.get_invoice(invoice_id, bypass_cache=True)

    def _build(
        self,
        kind: ActionKind,
        args: tuple[Any, ...],
        *,
        invoice_id: int | None = None,
        value_wei: int = 0,
        summary: dict[str, Any] | None = None,
    ) -> ActionIntent:
        intent = ActionIntent(
            kind=kind,
            account=self.account,
            args=args,
            created_at=self._clock.now(),
            value_wei=value_wei,
            invoice_id=invoice_id,
            summary=summary or {},
        )
        logger.info(
            "action_prepared",
            extra={
                "action": kind.value,
                "intent_id": intent.id,
                "invoice_id": invoice_id,
                "value_wei": value_wei,
            },
        )
        return intent

    async def prepare_pay_invoice(self, invoice_id: int) -> ActionIntent:
        """
        Price a buyer payment from the ledger's own total debt.

        The local penalty estimate is included in the summary for display
        but plays no part in ``value_wei``.
        """
        kind = ActionKind.PAY_INVOICE
        await self._require(Capability.PAY_INVOICE)
        invoice = await self._fresh_invoice(invoice_id)

        if invoice.buyer != self.account:
            raise ActionGuardError(kind.value, invoice_id, "caller is not the buyer")
        if invoice.status is not InvoiceStatus.APPROVED:
            raise ActionGuardError(kind.value, invoice_id, "invoice is not approved")
        if invoice.is_settled:
            raise ActionGuardError(kind.value, invoice_id, "invoice is already paid")

        now = self._clock.now()
        ledger_total_debt = await self._repository.get_total_debt(invoice_id)
        exchange_rate = await self._repository.get_exchange_rate(invoice_id)
        figures = self._calculator.ledger_figures(invoice, ledger_total_debt, now=now)
        estimate = self._calculator.estimate_penalty(invoice, now)
        value_wei = self._calculator.required_payment_in_native_currency(
            figures.total_debt, exchange_rate, invoice_id=invoice_id
        )

        return self._build(
            kind,
            (invoice_id,),
            invoice_id=invoice_id,
            value_wei=value_wei,
            summary={
                "principal": figures.principal,
                "penalty": figures.penalty,
                "estimated_penalty": estimate,
                "total_debt": figures.total_debt,
                "exchange_rate": exchange_rate,
                "days_overdue": figures.days_overdue,
            },
        )

    async def prepare_buy_tokens(
        self, invoice_id: int, amount: Decimal | int | str
    ) -> ActionIntent:
        kind = ActionKind.BUY_TOKENS
        await self._require(Capability.BUY_TOKENS)
        amount = to_decimal(amount)
        if amount <= 0:
            raise ActionGuardError(kind.value, invoice_id, "token amount must be positive")

        invoice = await self._fresh_invoice(invoice_id)
        if invoice.status is not InvoiceStatus.APPROVED:
            raise ActionGuardError(kind.value, invoice_id, "invoice is not approved")

        token = await self._repository.get_token_snapshot(invoice_id)
        if not token.is_generated:
            raise ActionGuardError(kind.value, invoice_id, "investment token not generated")
        if amount > token.remaining_capacity:
            raise ActionGuardError(
                kind.value,
                invoice_id,
                f"only {token.remaining_capacity} tokens remain",
            )

        value_wei = self._calculator.token_purchase_value(
            amount, token.price_of_one_token_in_eth, invoice_id=invoice_id
        )
        return self._build(
            kind,
            (invoice_id, decimal_to_wei(amount)),
            invoice_id=invoice_id,
            value_wei=value_wei,
            summary={
                "amount": amount,
                "price": token.price_of_one_token_in_eth,
                "remaining_capacity": token.remaining_capacity,
            },
        )

    async def prepare_request_verification(self, invoice_id: int) -> ActionIntent:
        kind = ActionKind.REQUEST_VERIFICATION
        await self._require(Capability.REQUEST_VERIFICATION)
        invoice = await self._fresh_invoice(invoice_id)

        if invoice.supplier != self.account:
            raise ActionGuardError(kind.value, invoice_id, "caller is not the supplier")
        if invoice.status is not InvoiceStatus.PENDING:
            raise ActionGuardError(kind.value, invoice_id, "invoice is not pending")

        return self._build(kind, (invoice_id,), invoice_id=invoice_id)

    async def prepare_mint_tokens(
        self, invoice_id: int, amount: Decimal | int | str | None = None
    ) -> ActionIntent:
        """Generate the investment token; supply defaults to the principal."""
        kind = ActionKind.MINT_TOKENS
        await self._require(Capability.MINT_TOKENS)
        invoice = await self._fresh_invoice(invoice_id)

        if invoice.supplier != self.account:
            raise ActionGuardError(kind.value, invoice_id, "caller is not the supplier")
        if invoice.status is not InvoiceStatus.APPROVED:
            raise ActionGuardError(kind.value, invoice_id, "invoice is not approved")

        token = await self._repository.get_token_snapshot(invoice_id)
        if token.is_generated:
            raise ActionGuardError(kind.value, invoice_id, "investment token already generated")

        supply = invoice.principal_amount if amount is None else to_decimal(amount)
        if supply <= 0:
            raise ActionGuardError(kind.value, invoice_id, "token supply must be positive")

        return self._build(
            kind,
            (invoice_id, decimal_to_wei(supply)),
            invoice_id=invoice_id,
            summary={"supply": supply},
        )

    async def prepare_create_invoice(
        self,
        invoice_id: int,
        buyer: str,
        amount: Decimal | int | str,
        due_date: datetime,
    ) -> ActionIntent:
        kind = ActionKind.CREATE_INVOICE
        await self._require(Capability.CREATE_INVOICE)

        if invoice_id <= 0:
            raise ActionGuardError(kind.value, invoice_id, "invoice id must be positive")
        if not is_valid_account(buyer):
            raise ActionGuardError(kind.value, invoice_id, "buyer is not a valid account")
        buyer = normalize_account(buyer)
        if buyer == self.account:
            raise ActionGuardError(kind.value, invoice_id, "buyer cannot be the supplier")
        amount = to_decimal(amount)
        if amount <= 0:
            raise ActionGuardError(kind.value, invoice_id, "amount must be positive")
        if due_date.tzinfo is None:
            raise ValueError("due_date must be timezone-aware")
        if due_date <= self._clock.now():
            raise ActionGuardError(kind.value, invoice_id, "due date must be in the future")
        if await self._repository.id_exists(invoice_id):
            raise ActionGuardError(kind.value, invoice_id, "invoice id already exists")

        return self._build(
            kind,
            (invoice_id, buyer, decimal_to_wei(amount), int(due_date.timestamp())),
            invoice_id=invoice_id,
            summary={"buyer": buyer, "amount": amount, "due_date": due_date},
        )

    async def prepare_choose_role(self, role: UserRole) -> ActionIntent:
        """Register the account's role; the ledger accepts this once."""
        await self._role_guard.evaluate(force=True)
        self._role_guard.ensure_can_choose(role)
        return self._build(
            ActionKind.CHOOSE_ROLE, (int(role),), summary={"role": role.name}
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _fail(self, intent: ActionIntent, error: str) -> None:
        intent.error = error
        intent.advance(ActionState.FAILED)
        logger.warning(
            "action_failed",
            extra={"action": intent.kind.value, "intent_id": intent.id, "error": error},
        )

    async def submit(self, intent: ActionIntent) -> ActionIntent:
        """
        Estimate gas, then hand the transaction to the signer.

        Returns the intent in PENDING with ``tx_hash`` set.
        """
        intent.ensure_submittable()
        intent.advance(ActionState.SUBMITTED)
        function = intent.kind.function

        with LogContext.bind(invoice_id=_as_str(intent.invoice_id)):
            try:
                intent.gas_estimate = await self._contract.estimate_gas(
                    function, *intent.args, value=intent.value_wei
                )
            except ExecutionReverted as exc:
                decoded = decode_revert_reason(exc.raw_reason)
                self._fail(intent, decoded.message)
                raise GasEstimationFailedError(
                    intent.kind.value, decoded.message, raw_reason=exc.raw_reason
                ) from exc
            except GatewayError as exc:
                self._fail(intent, exc.code)
                raise

            try:
                handle = await self._contract.send_transaction(
                    function, *intent.args, value=intent.value_wei
                )
            except TransactionRejected as exc:
                self._fail(intent, ActionRejectedByUserError.code)
                raise ActionRejectedByUserError(intent.kind.value) from exc
            except ExecutionReverted as exc:
                if is_user_rejection(exc.raw_reason):
                    self._fail(intent, ActionRejectedByUserError.code)
                    raise ActionRejectedByUserError(intent.kind.value) from exc
                decoded = decode_revert_reason(exc.raw_reason)
                self._fail(intent, decoded.message)
                raise ActionRevertedError(
                    intent.kind.value, decoded.message, raw_reason=exc.raw_reason
                ) from exc
            except GatewayError as exc:
                self._fail(intent, exc.code)
                raise

            intent.tx_hash = handle.tx_hash
            intent.advance(ActionState.PENDING)
            with LogContext.bind(tx_hash=handle.tx_hash):
                logger.info(
                    "action_submitted",
                    extra={
                        "action": intent.kind.value,
                        "intent_id": intent.id,
                        "gas_estimate": intent.gas_estimate,
                        "value_wei": intent.value_wei,
                    },
                )
        return intent

    async def wait_for_confirmation(
        self,
        intent: ActionIntent,
        confirmations: int | None = None,
        timeout: float | None = None,
    ) -> TransactionReceipt:
        """
        Wait for the receipt of a PENDING intent.

        A timeout leaves the intent PENDING; the caller may wait again.
        """
        if intent.state is not ActionState.PENDING or intent.tx_hash is None:
            raise InvalidActionStateError(intent.kind.value, intent.state.value, "confirm")

        confirmations = confirmations or self._required_confirmations
        timeout = timeout if timeout is not None else self._confirmation_timeout

        with LogContext.bind(invoice_id=_as_str(intent.invoice_id), tx_hash=intent.tx_hash):
            receipt = await self._contract.wait_for_receipt(
                intent.tx_hash, confirmations=confirmations, timeout=timeout
            )
            intent.block_number = receipt.block_number

            if not receipt.succeeded:
                decoded = decode_revert_reason(receipt.revert_reason)
                intent.error = decoded.message
                intent.advance(ActionState.REVERTED)
                logger.warning(
                    "action_reverted",
                    extra={
                        "action": intent.kind.value,
                        "intent_id": intent.id,
                        "error_name": decoded.error_name,
                        "block_number": receipt.block_number,
                    },
                )
                raise ActionRevertedError(
                    intent.kind.value,
                    decoded.message,
                    tx_hash=intent.tx_hash,
                    raw_reason=receipt.revert_reason,
                )

            intent.advance(ActionState.CONFIRMED)
            logger.info(
                "action_confirmed",
                extra={
                    "action": intent.kind.value,
                    "intent_id": intent.id,
                    "block_number": receipt.block_number,
                    "gas_used": receipt.gas_used,
                },
            )
            self._after_confirmation(intent, receipt)
        return receipt

    def _after_confirmation(self, intent: ActionIntent, receipt: TransactionReceipt) -> None:
        if intent.invoice_id is not None:
            self._repository.invalidate(intent.invoice_id)
        if intent.kind is ActionKind.CHOOSE_ROLE:
            self._role_guard.reset()
        if self._synchronizer is not None:
            self._synchronizer.ingest_receipt(receipt)

    async def execute(self, intent: ActionIntent) -> TransactionReceipt:
        """Submit and wait with the configured confirmations and timeout."""
        await self.submit(intent)
        return await self.wait_for_confirmation(intent)
