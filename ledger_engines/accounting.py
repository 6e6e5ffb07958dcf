"""
ledger_engines.accounting -- Accounting calculator for invoice financing.

Responsibility:
    Derive the figures a user sees and pays from an Invoice, a TokenSnapshot
    and a reference time: overdue state, penalty, total debt, funding
    progress and native-currency payment amounts.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel.domain and ledger_kernel.exceptions.

Invariants enforced:
    - Purity: ``now`` is always a parameter; no clock access, no I/O.
    - Two penalty figures exist and are never confused.  The local daily
      accrual is an ESTIMATE for display.  The ledger's total debt minus
      principal is the LEDGER figure and is the only one a payment may be
      built from (``InvoiceFigures.payable``).
    - Payment amounts are computed on ledger integers and rounded UP to the
      next wei, so the client never underpays.
    - Funding progress is clamped to [0, 1].
    - Penalty is non-decreasing in ``now`` while unpaid and zero once paid.

Failure modes:
    - InvalidPricingStateError when max supply is zero or a price/exchange
      rate is not strictly positive.
    - ValueError on a naive ``now`` or an invalid penalty policy.

Usage:
    calculator = AccountingCalculator()
    shown = calculator.estimated_figures(invoice, now=clock.now())
    payable = calculator.ledger_figures(invoice, ledger_total_debt, now=clock.now())
    wei = calculator.required_payment_in_native_currency(
        total_debt=payable.total_debt, exchange_rate=token.price_of_one_token_in_eth,
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from ledger_kernel.domain.fixed_point import WEI_PER_UNIT, decimal_to_wei, mul_div_ceil
from ledger_kernel.domain.invoice import Invoice, TokenSnapshot
from ledger_kernel.exceptions import InvalidPricingStateError
from ledger_kernel.logging_config import get_logger
from ledger_engines.tracer import traced_engine

logger = get_logger("engines.accounting")

_ZERO = Decimal(0)
_ONE = Decimal(1)
_ONE_DAY = timedelta(days=1)


class PenaltySource(str, Enum):
    """Where a penalty figure came from."""

    ESTIMATE = "estimate"  # local daily accrual, display only
    LEDGER = "ledger"  # _getTotalDebtAmount minus principal


@dataclass(frozen=True)
class PenaltyPolicy:
    """
    Local penalty estimate parameters.

    Defaults mirror the published terms: 1% of principal per full day
    overdue, capped at 10% of principal.
    """

    daily_rate: Decimal = Decimal("0.01")
    cap_rate: Decimal = Decimal("0.10")

    def __post_init__(self) -> None:
        if self.daily_rate < 0:
            raise ValueError("daily_rate cannot be negative")
        if self.cap_rate < 0:
            raise ValueError("cap_rate cannot be negative")


@dataclass(frozen=True)
class InvoiceFigures:
    """
    Derived figures for one invoice at one instant.

    Contract:
        ``total_debt == principal + penalty`` always.
        Only figures with ``penalty_source == LEDGER`` are payable.
    """

    invoice_id: int
    as_of: datetime
    principal: Decimal
    is_overdue: bool
    days_overdue: int
    penalty: Decimal
    total_debt: Decimal
    penalty_source: PenaltySource

    @property
    def payable(self) -> bool:
        return self.penalty_source is PenaltySource.LEDGER


class AccountingCalculator:
    """
    Pure accounting calculator.

    Contract:
        Every method is a pure function of its arguments and the
        PenaltyPolicy given at construction.
    Non-goals:
        - Does not read the ledger; callers pass ledger figures in.
        - Does not reproduce the ledger's own penalty rule; the ledger
          total debt is taken as given.
    """

    def __init__(self, policy: PenaltyPolicy | None = None) -> None:
        self._policy = policy or PenaltyPolicy()

    @property
    def policy(self) -> PenaltyPolicy:
        return self._policy

    # -- overdue ---------------------------------------------------------------

    def is_overdue(self, invoice: Invoice, now: datetime) -> bool:
        _require_aware(now)
        return now > invoice.due_date and not invoice.is_settled

    def days_overdue(self, invoice: Invoice, now: datetime) -> int:
        """Whole days past the due date; 0 when not overdue."""
        if not self.is_overdue(invoice, now):
            return 0
        return (now - invoice.due_date) // _ONE_DAY

    # -- penalty ---------------------------------------------------------------

    def estimate_penalty(self, invoice: Invoice, now: datetime) -> Decimal:
        """
        Display-only penalty: ``min(principal * rate * days, principal * cap)``.

        Never use this to construct a payment.
        """
        days = self.days_overdue(invoice, now)
        if days == 0:
            return _ZERO
        accrued = invoice.principal_amount * self._policy.daily_rate * days
        cap = invoice.principal_amount * self._policy.cap_rate
        return min(accrued, cap)

    def authoritative_penalty(self, invoice: Invoice, ledger_total_debt: Decimal) -> Decimal:
        """Ledger total debt minus principal; never negative, zero once paid."""
        if invoice.is_settled:
            return _ZERO
        return max(ledger_total_debt - invoice.principal_amount, _ZERO)

    @traced_engine("accounting", "1.0", fingerprint_fields=("invoice", "now"))
    def estimated_figures(self, invoice: Invoice, *, now: datetime) -> InvoiceFigures:
        penalty = self.estimate_penalty(invoice, now)
        return InvoiceFigures(
            invoice_id=invoice.id,
            as_of=now,
            principal=invoice.principal_amount,
            is_overdue=self.is_overdue(invoice, now),
            days_overdue=self.days_overdue(invoice, now),
            penalty=penalty,
            total_debt=invoice.principal_amount + penalty,
            penalty_source=PenaltySource.ESTIMATE,
        )

    @traced_engine(
        "accounting", "1.0", fingerprint_fields=("invoice", "ledger_total_debt", "now"),
    )
    def ledger_figures(
        self,
        invoice: Invoice,
        ledger_total_debt: Decimal,
        *,
        now: datetime,
    ) -> InvoiceFigures:
        penalty = self.authoritative_penalty(invoice, ledger_total_debt)
        estimate = self.estimate_penalty(invoice, now)
        if penalty != estimate:
            logger.info(
                "penalty_estimate_diverges",
                extra={
                    "invoice_id": invoice.id,
                    "estimate": estimate,
                    "ledger": penalty,
                },
            )
        return InvoiceFigures(
            invoice_id=invoice.id,
            as_of=now,
            principal=invoice.principal_amount,
            is_overdue=self.is_overdue(invoice, now),
            days_overdue=self.days_overdue(invoice, now),
            penalty=penalty,
            total_debt=invoice.principal_amount + penalty,
            penalty_source=PenaltySource.LEDGER,
        )

    # -- funding ---------------------------------------------------------------

    def funding_progress(self, token: TokenSnapshot) -> Decimal:
        """``total_supply / max_supply`` clamped to [0, 1]."""
        if token.max_supply <= 0:
            raise InvalidPricingStateError(token.invoice_id, "max supply is zero")
        ratio = token.total_supply / token.max_supply
        return min(max(ratio, _ZERO), _ONE)

    def funding_percent(self, token: TokenSnapshot) -> Decimal:
        """Funding progress as a percentage with two decimals, for display."""
        return (self.funding_progress(token) * 100).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )

    # -- native-currency amounts -----------------------------------------------

    def required_payment_in_native_currency(
        self,
        total_debt: Decimal,
        exchange_rate: Decimal,
        invoice_id: int | None = None,
    ) -> int:
        """
        Native-currency wei to send for ``total_debt`` at ``exchange_rate``.

        ``exchange_rate`` is native units per ledger unit and must be read
        fresh immediately before submission.
        """
        if exchange_rate <= 0:
            raise InvalidPricingStateError(invoice_id, "exchange rate is not positive")
        if total_debt <= 0:
            raise InvalidPricingStateError(invoice_id, "total debt is not positive")
        return mul_div_ceil(
            decimal_to_wei(total_debt), decimal_to_wei(exchange_rate), WEI_PER_UNIT
        )

    def token_purchase_value(
        self,
        amount: Decimal,
        price: Decimal,
        invoice_id: int | None = None,
    ) -> int:
        """Native-currency wei to send for ``amount`` tokens at ``price`` each."""
        if price <= 0:
            raise InvalidPricingStateError(invoice_id, "token price is not positive")
        if amount <= 0:
            raise ValueError("Token amount must be positive")
        return mul_div_ceil(decimal_to_wei(amount), decimal_to_wei(price), WEI_PER_UNIT)


def _require_aware(now: datetime) -> None:
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
