"""
ledger_engines.matching -- Duplicate detection for observed payment records.

Responsibility:
    Decide whether a candidate PaymentRecord describes a fact already held in
    the Payment History.  The same ledger log may arrive through the live
    subscription, through polling, and through a confirmed action's receipt;
    it must be stored once.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel.domain.

Invariants enforced:
    - Symmetry: ``same_fact(a, b) == same_fact(b, a)``, so the merged history
      does not depend on which channel delivered a fact first.
    - Idempotence: a record classified against a history that already holds
      it is always a duplicate.
    - Rules, strongest first:
        1. PRIMARY_KEY  -- identical (transaction_hash, log_index).
        2. TRANSACTION  -- identical transaction_hash.
        3. FUZZY        -- at least one side has no primary key, neither
           side's known transaction hash contradicts the other, same event
           and invoice, amounts within ``amount_tolerance`` and observation
           times within ``fuzzy_window_seconds``.
    - A record without a primary key absorbs at most one keyed counterpart.
      Once it has, it is matched under that counterpart's key
      (``with_absorbed_key``), so a second distinct keyed payment is kept
      whichever order the three arrive in.

Failure modes:
    - None.  Classification never raises; a duplicate is an outcome.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from enum import Enum

from ledger_kernel.domain.events import PaymentRecord

DEFAULT_FUZZY_WINDOW_SECONDS = 300


class InsertOutcome(str, Enum):
    """Result of offering a record to the Payment History."""

    INSERTED = "inserted"
    DUPLICATE_PRIMARY_KEY = "duplicate_primary_key"
    DUPLICATE_TRANSACTION = "duplicate_transaction"
    DUPLICATE_FUZZY = "duplicate_fuzzy"

    @property
    def is_duplicate(self) -> bool:
        return self is not InsertOutcome.INSERTED


@dataclass(frozen=True)
class MatchTolerance:
    """Bounds for the fuzzy fallback rule."""

    amount_tolerance: Decimal = Decimal("0")
    fuzzy_window_seconds: int = DEFAULT_FUZZY_WINDOW_SECONDS

    def __post_init__(self) -> None:
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")
        if self.fuzzy_window_seconds < 0:
            raise ValueError("fuzzy_window_seconds cannot be negative")

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.fuzzy_window_seconds)


@dataclass(frozen=True)
class MatchDecision:
    outcome: InsertOutcome
    matched: PaymentRecord | None = None
    absorbs_key: bool = False


def same_fact(
    a: PaymentRecord,
    b: PaymentRecord,
    tolerance: MatchTolerance,
) -> InsertOutcome | None:
    """The rule under which ``a`` and ``b`` describe one fact, or None."""
    if a.account != b.account or a.contract_address != b.contract_address:
        return None

    key_a, key_b = a.primary_key, b.primary_key
    if key_a is not None and key_a == key_b:
        return InsertOutcome.DUPLICATE_PRIMARY_KEY

    if a.transaction_hash is not None and a.transaction_hash == b.transaction_hash:
        return InsertOutcome.DUPLICATE_TRANSACTION

    if key_a is not None and key_b is not None:
        return None
    if (
        a.transaction_hash is not None
        and b.transaction_hash is not None
        and a.transaction_hash != b.transaction_hash
    ):
        return None
    if a.event_name != b.event_name or a.invoice_id != b.invoice_id:
        return None
    if abs(a.amount - b.amount) > tolerance.amount_tolerance:
        return None
    if abs(a.observed_at - b.observed_at) > tolerance.window:
        return None
    return InsertOutcome.DUPLICATE_FUZZY


def with_absorbed_key(kept: PaymentRecord, absorbed) -> PaymentRecord:
    """
    The view of ``kept`` used for matching once it absorbed ``absorbed``.

    ``absorbed`` is anything carrying ``transaction_hash`` and ``log_index``:
    the suppressed record itself, or the stored link row.
    """
    return replace(
        kept,
        transaction_hash=absorbed.transaction_hash,
        log_index=absorbed.log_index,
    )


_RULE_STRENGTH = {
    InsertOutcome.DUPLICATE_PRIMARY_KEY: 0,
    InsertOutcome.DUPLICATE_TRANSACTION: 1,
    InsertOutcome.DUPLICATE_FUZZY: 2,
}


class RecordMatcher:
    """
    Classifies candidates against an existing history.

    Contract:
        Pure; the caller supplies the relevant slice of history (same
        account and contract, and for the fallback rule the same invoice).
    Guarantees:
        - When several existing records match, the strongest rule wins.
    """

    def __init__(self, tolerance: MatchTolerance | None = None) -> None:
        self._tolerance = tolerance or MatchTolerance()

    @property
    def tolerance(self) -> MatchTolerance:
        return self._tolerance

    def classify(
        self,
        candidate: PaymentRecord,
        existing: Iterable[PaymentRecord],
    ) -> MatchDecision:
        best: MatchDecision | None = None
        for record in existing:
            outcome = same_fact(candidate, record, self._tolerance)
            if outcome is None:
                continue
            if best is None or _RULE_STRENGTH[outcome] < _RULE_STRENGTH[best.outcome]:
                best = MatchDecision(outcome, record)
                if outcome is InsertOutcome.DUPLICATE_PRIMARY_KEY:
                    break
        if best is None:
            return MatchDecision(InsertOutcome.INSERTED)
        if candidate.primary_key is not None and best.matched.primary_key is None:
            return MatchDecision(best.outcome, best.matched, absorbs_key=True)
        return best

    def merge(self, records: Iterable[PaymentRecord]) -> list[PaymentRecord]:
        """Fold records into a deduplicated list, first representation kept."""
        kept: list[PaymentRecord] = []
        views: list[PaymentRecord] = []
        for record in records:
            decision = self.classify(record, views)
            if not decision.outcome.is_duplicate:
                kept.append(record)
                views.append(record)
            elif decision.absorbs_key:
                index = next(i for i, v in enumerate(views) if v is decision.matched)
                views[index] = with_absorbed_key(views[index], record)
        return kept
