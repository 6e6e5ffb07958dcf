"""
ledger_engines.revert_reasons -- Human-readable reasons for ledger rejections.

Responsibility:
    Turn whatever a gateway reports for a failed estimate or a reverted
    transaction into a message a user can act on.  Known custom contract
    errors map to fixed messages; anything else falls back to a generic one.

Architecture position:
    Engines -- pure, zero I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

GENERIC_REVERT_MESSAGE = "Transaction failed. Please try again."

CUSTOM_ERROR_MESSAGES: dict[str, str] = {
    "Main__InvoiceStatusMustBeApproved": "Invoice must be approved before this action.",
    "Main__InvoiceStatusMustBePending": "Invoice must be pending for verification.",
    "Main__InsufficientPayment": "Insufficient payment amount.",
    "Main__CallerMustBeSupplier": "Only the supplier can perform this action.",
    "Main__InvoiceNotExist": "Invoice does not exist.",
    "Main__MustBeUnique": "Invoice ID already exists.",
    "Main__DueDateMustBeInFuture": "Due date must be in the future.",
    "Main__MoreThanZero": "Amount must be greater than zero.",
    "Main__MustBeValidAddress": "Address must be a valid, non-zero account.",
}

_INSUFFICIENT_FUNDS_MESSAGE = "Insufficient funds in wallet."

_CUSTOM_ERROR_PATTERN = re.compile(r"\b(Main__[A-Za-z0-9_]+)\b")
_REASON_STRING_PATTERN = re.compile(r"reverted with reason string ['\"](.+?)['\"]")
_USER_REJECTION_MARKERS = ("user rejected", "user denied", "action_rejected")


@dataclass(frozen=True)
class DecodedReason:
    """``message`` is user-facing; ``error_name`` is the custom error, if any."""

    message: str
    error_name: str | None = None
    raw: str | None = None

    @property
    def recognized(self) -> bool:
        return self.error_name is not None


def is_user_rejection(raw: str | None) -> bool:
    if not raw:
        return False
    lowered = raw.lower()
    return any(marker in lowered for marker in _USER_REJECTION_MARKERS)


def decode_revert_reason(raw: str | None) -> DecodedReason:
    """
    Decode a raw revert report.

    Examples:
        "execution reverted: Main__InsufficientPayment()"
            -> "Insufficient payment amount."
        "reverted with reason string 'Not enough tokens'"
            -> "Not enough tokens"
    """
    if not raw:
        return DecodedReason(GENERIC_REVERT_MESSAGE)

    match = _CUSTOM_ERROR_PATTERN.search(raw)
    if match:
        name = match.group(1)
        message = CUSTOM_ERROR_MESSAGES.get(name)
        if message is not None:
            return DecodedReason(message, error_name=name, raw=raw)

    if "insufficient funds" in raw.lower():
        return DecodedReason(_INSUFFICIENT_FUNDS_MESSAGE, raw=raw)

    match = _REASON_STRING_PATTERN.search(raw)
    if match:
        return DecodedReason(match.group(1), raw=raw)

    return DecodedReason(GENERIC_REVERT_MESSAGE, raw=raw)
