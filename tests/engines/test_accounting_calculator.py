"""
Tests for the AccountingCalculator.

Covers:
- Overdue detection and whole-day counting
- Display estimate vs ledger-authoritative penalty (scenario #100)
- Funding progress bounds and the zero-supply pricing error
- Native-currency payment amounts rounded up to the next wei
- Engine trace emission
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger_engines.accounting import AccountingCalculator, PenaltyPolicy, PenaltySource
from ledger_kernel.domain.fixed_point import WEI_PER_UNIT
from ledger_kernel.domain.invoice import Invoice, InvoiceStatus, TokenSnapshot
from ledger_kernel.exceptions import InvalidPricingStateError

DUE = datetime(2024, 5, 1, tzinfo=timezone.utc)
TOKEN_ADDRESS = "0x" + "cd" * 20


def _invoice(principal="1000", *, is_paid=False, status=InvoiceStatus.APPROVED) -> Invoice:
    return Invoice(
        id=100,
        supplier="0x" + "11" * 20,
        buyer="0x" + "22" * 20,
        principal_amount=Decimal(principal),
        due_date=DUE,
        status=status,
        total_investment=Decimal("0"),
        is_paid=is_paid,
    )


def _token(max_supply, total_supply, price="0.001") -> TokenSnapshot:
    return TokenSnapshot(
        invoice_id=100,
        token_address=TOKEN_ADDRESS,
        max_supply=Decimal(max_supply),
        total_supply=Decimal(total_supply),
        price_of_one_token_in_eth=Decimal(price),
    )


@pytest.fixture
def calculator():
    return AccountingCalculator()


class TestOverdue:
    def test_not_overdue_before_due(self, calculator):
        assert not calculator.is_overdue(_invoice(), DUE - timedelta(seconds=1))

    def test_not_overdue_at_due_instant(self, calculator):
        assert not calculator.is_overdue(_invoice(), DUE)

    def test_overdue_after_due(self, calculator):
        assert calculator.is_overdue(_invoice(), DUE + timedelta(seconds=1))

    def test_paid_never_overdue(self, calculator):
        assert not calculator.is_overdue(_invoice(is_paid=True), DUE + timedelta(days=30))

    def test_days_are_whole(self, calculator):
        assert calculator.days_overdue(_invoice(), DUE + timedelta(days=2, hours=23)) == 2

    def test_naive_now_rejected(self, calculator):
        with pytest.raises(ValueError):
            calculator.is_overdue(_invoice(), datetime(2024, 6, 1))


class TestPenalty:
    def test_estimate_one_percent_per_day(self, calculator):
        assert calculator.estimate_penalty(_invoice(), DUE + timedelta(days=3)) == Decimal("30.00")

    def test_estimate_capped_at_ten_percent(self, calculator):
        assert calculator.estimate_penalty(_invoice(), DUE + timedelta(days=45)) == Decimal("100.00")

    def test_custom_policy(self):
        calculator = AccountingCalculator(PenaltyPolicy(Decimal("0.02"), Decimal("0.05")))
        assert calculator.estimate_penalty(_invoice(), DUE + timedelta(days=2)) == Decimal("40.00")
        assert calculator.estimate_penalty(_invoice(), DUE + timedelta(days=10)) == Decimal("50.00")

    def test_negative_policy_rejected(self):
        with pytest.raises(ValueError):
            PenaltyPolicy(daily_rate=Decimal("-0.01"))

    def test_scenario_100_ledger_total_debt_wins(self, calculator):
        """Estimate says 100; the ledger says 1070, so 70 is what gets paid."""
        now = DUE + timedelta(days=10)
        invoice = _invoice()

        shown = calculator.estimated_figures(invoice, now=now)
        payable = calculator.ledger_figures(invoice, Decimal("1070"), now=now)

        assert shown.penalty == Decimal("100.00")
        assert shown.penalty_source is PenaltySource.ESTIMATE
        assert not shown.payable

        assert payable.penalty == Decimal("70")
        assert payable.total_debt == Decimal("1070")
        assert payable.days_overdue == 10
        assert payable.payable

    def test_divergence_is_logged(self, calculator, captured_logs):
        calculator.ledger_figures(_invoice(), Decimal("1070"), now=DUE + timedelta(days=10))
        logs = [r for r in captured_logs() if r["message"] == "penalty_estimate_diverges"]
        assert len(logs) == 1
        assert logs[0]["ledger"] == "70"

    def test_ledger_debt_below_principal_clamped(self, calculator):
        assert calculator.authoritative_penalty(_invoice(), Decimal("900")) == Decimal("0")

    def test_paid_penalty_is_zero(self, calculator):
        invoice = _invoice(is_paid=True)
        assert calculator.authoritative_penalty(invoice, Decimal("1070")) == Decimal("0")
        assert calculator.estimate_penalty(invoice, DUE + timedelta(days=5)) == Decimal("0")

    def test_total_debt_is_principal_plus_penalty(self, calculator):
        figures = calculator.estimated_figures(_invoice(), now=DUE + timedelta(days=4))
        assert figures.total_debt == figures.principal + figures.penalty

    def test_engine_trace_emitted(self, calculator, captured_logs):
        calculator.estimated_figures(_invoice(), now=DUE)
        traces = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert traces
        assert traces[0]["engine_name"] == "accounting"
        assert len(traces[0]["input_fingerprint"]) == 16


class TestFunding:
    def test_progress(self, calculator):
        assert calculator.funding_progress(_token("1000", "250")) == Decimal("0.25")

    def test_progress_clamped_when_oversupplied(self, calculator):
        assert calculator.funding_progress(_token("1000", "1200")) == Decimal("1")

    def test_percent_rounded(self, calculator):
        assert calculator.funding_percent(_token("3", "1")) == Decimal("33.33")

    def test_zero_max_supply_is_pricing_error(self, calculator):
        with pytest.raises(InvalidPricingStateError) as exc_info:
            calculator.funding_progress(_token("0", "0"))
        assert exc_info.value.code == "INVALID_PRICING_STATE"
        assert exc_info.value.invoice_id == 100


class TestNativeCurrencyAmounts:
    def test_payment_exact(self, calculator):
        wei = calculator.required_payment_in_native_currency(Decimal("1070"), Decimal("0.001"))
        assert wei == 1070 * WEI_PER_UNIT // 1000

    def test_payment_rounds_up(self, calculator):
        # 1 * 1/3 is not representable; the client must never underpay
        rate = Decimal("0.333333333333333333")
        wei = calculator.required_payment_in_native_currency(Decimal("1.000000000000000001"), rate)
        exact = Decimal("1.000000000000000001") * rate * WEI_PER_UNIT
        assert wei >= exact
        assert wei - exact < 1

    def test_zero_rate_rejected(self, calculator):
        with pytest.raises(InvalidPricingStateError):
            calculator.required_payment_in_native_currency(Decimal("10"), Decimal("0"), invoice_id=7)

    def test_zero_debt_rejected(self, calculator):
        with pytest.raises(InvalidPricingStateError):
            calculator.required_payment_in_native_currency(Decimal("0"), Decimal("1"))

    def test_token_purchase_value(self, calculator):
        assert calculator.token_purchase_value(Decimal("10"), Decimal("0.001")) == WEI_PER_UNIT // 100

    def test_token_purchase_non_positive_amount(self, calculator):
        with pytest.raises(ValueError):
            calculator.token_purchase_value(Decimal("0"), Decimal("0.001"))
