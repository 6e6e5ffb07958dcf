"""
Module: ledger_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines: the
    accounting calculator, the payment-record matcher and the revert-reason
    decoder.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel.domain and ledger_kernel.exceptions.
    MUST NOT import ledger_kernel.services or ledger_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``; the current time is
      passed in by services.
    - Decimal-only arithmetic; floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.
"""

from ledger_engines.accounting import (
    AccountingCalculator,
    InvoiceFigures,
    PenaltyPolicy,
    PenaltySource,
)
from ledger_engines.matching import (
    InsertOutcome,
    MatchDecision,
    MatchTolerance,
    RecordMatcher,
    same_fact,
    with_absorbed_key,
)
from ledger_engines.revert_reasons import (
    CUSTOM_ERROR_MESSAGES,
    GENERIC_REVERT_MESSAGE,
    DecodedReason,
    decode_revert_reason,
    is_user_rejection,
)

__all__ = [
    "AccountingCalculator",
    "CUSTOM_ERROR_MESSAGES",
    "DecodedReason",
    "GENERIC_REVERT_MESSAGE",
    "InsertOutcome",
    "InvoiceFigures",
    "MatchDecision",
    "MatchTolerance",
    "PenaltyPolicy",
    "PenaltySource",
    "RecordMatcher",
    "decode_revert_reason",
    "is_user_rejection",
    "same_fact",
    "with_absorbed_key",
]
