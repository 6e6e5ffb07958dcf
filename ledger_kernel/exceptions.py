"""
Typed Exception Hierarchy for the Ledger Client.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The client sits between a user and a ledger it does not control.  Callers
must tell apart "the network is down", "the ledger said no" and "the user
said no" without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, UI-safe)
  3. Exceptions carry structured DATA (invoice id, tx hash, decoded reason)

Example - WRONG way to handle errors:
    try:
        await submitter.submit(intent)
    except Exception as e:
        if "user rejected" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        await submitter.submit(intent)
    except ActionRejectedByUserError:
        show_notice("Transaction was rejected")
    except ActionRevertedError as e:
        show_notice(e.reason)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LedgerClientError:

    LedgerClientError (base)
    |
    +-- GatewayError
    |   +-- GatewayUnavailableError
    |   +-- GatewayTimeoutError
    |
    +-- InvoiceError
    |   +-- InvoiceNotFoundError
    |
    +-- PricingError
    |   +-- InvalidPricingStateError
    |   +-- FixedPointPrecisionError
    |
    +-- ActionError
    |   +-- ActionGuardError
    |   +-- ActionRejectedByUserError
    |   +-- ActionRevertedError
    |   +-- GasEstimationFailedError
    |   +-- ActionCancelledError
    |   +-- InvalidActionStateError
    |
    +-- RoleError
    |   +-- StaleRoleStateError
    |   +-- CapabilityDeniedError
    |   +-- RoleAlreadyChosenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

A duplicate event suppressed by the synchronizer is NOT an error; it is
reported as ``InsertOutcome`` (see ledger_engines.matching) and logged at
INFO as ``duplicate_suppressed``.

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Gateway         | GATEWAY_UNAVAILABLE         | Transport / provider failure
                | GATEWAY_TIMEOUT             | Call exceeded caller-supplied timeout
----------------|-----------------------------|-----------------------------------------
Invoice         | INVOICE_NOT_FOUND           | Id does not exist on the ledger
----------------|-----------------------------|-----------------------------------------
Pricing         | INVALID_PRICING_STATE       | Zero supply, zero/negative price
                | FIXED_POINT_PRECISION       | Amount finer than the ledger unit
----------------|-----------------------------|-----------------------------------------
Action          | ACTION_GUARD_FAILED         | Client-side precondition not met
                | ACTION_REJECTED_BY_USER     | Signer declined
                | ACTION_REVERTED             | Ledger rejected (decoded reason)
                | GAS_ESTIMATION_FAILED       | Doomed transaction caught pre-send
                | ACTION_CANCELLED            | Intent withdrawn before submission
                | INVALID_ACTION_STATE        | Lifecycle step out of order
----------------|-----------------------------|-----------------------------------------
Role            | STALE_ROLE_STATE            | Cached role differs from ledger
                | CAPABILITY_DENIED           | Role lacks the capability
                | ROLE_ALREADY_CHOSEN         | Ledger roles are write-once
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of a payment record

===============================================================================
PROPAGATION
===============================================================================

Calculator and repository errors are raised to the caller synchronously.
Synchronizer errors are logged and retried on the next cycle; they are
never thrown into a rendering layer.
"""

from decimal import Decimal


class LedgerClientError(Exception):
    """
    Base exception for all ledger client errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_CLIENT_ERROR"


# Gateway exceptions


class GatewayError(LedgerClientError):
    """Base exception for Chain Gateway failures."""

    code: str = "GATEWAY_ERROR"


class GatewayUnavailableError(GatewayError):
    """Transport or provider failure while talking to the ledger."""

    code: str = "GATEWAY_UNAVAILABLE"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"Gateway unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class GatewayTimeoutError(GatewayError):
    """A ledger call did not answer within the caller-supplied timeout."""

    code: str = "GATEWAY_TIMEOUT"

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Gateway call {operation} timed out after {timeout_seconds}s"
        )


# Invoice exceptions


class InvoiceError(LedgerClientError):
    """Base exception for invoice lookups."""

    code: str = "INVOICE_ERROR"


class InvoiceNotFoundError(InvoiceError):
    """Invoice id does not exist on the ledger."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


# Pricing exceptions


class PricingError(LedgerClientError):
    """Base exception for accounting figures that cannot be computed."""

    code: str = "PRICING_ERROR"


class InvalidPricingStateError(PricingError):
    """
    Supply or price is in a state that would yield a divide-by-zero or a
    zero-value payment.
    """

    code: str = "INVALID_PRICING_STATE"

    def __init__(self, invoice_id: int | None, reason: str):
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(
            f"Invalid pricing state for invoice {invoice_id}: {reason}"
        )


class FixedPointPrecisionError(PricingError):
    """Amount carries more precision than the ledger's fixed-point unit."""

    code: str = "FIXED_POINT_PRECISION"

    def __init__(self, amount: Decimal, decimals: int):
        self.amount = amount
        self.decimals = decimals
        super().__init__(
            f"Amount {amount} exceeds {decimals} decimal places"
        )


# Action exceptions


class ActionError(LedgerClientError):
    """Base exception for state-changing actions."""

    code: str = "ACTION_ERROR"


class ActionGuardError(ActionError):
    """A client-side precondition for the action does not hold."""

    code: str = "ACTION_GUARD_FAILED"

    def __init__(self, action: str, invoice_id: int | None, reason: str):
        self.action = action
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(f"{action} refused for invoice {invoice_id}: {reason}")


class ActionRejectedByUserError(ActionError):
    """The signer declined the transaction."""

    code: str = "ACTION_REJECTED_BY_USER"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Transaction for {action} was rejected by user")


class ActionRevertedError(ActionError):
    """
    The ledger rejected the transaction.

    ``reason`` is the decoded, human-readable reason when one could be
    recovered; ``raw_reason`` is what the gateway reported.
    """

    code: str = "ACTION_REVERTED"

    def __init__(
        self,
        action: str,
        reason: str,
        tx_hash: str | None = None,
        raw_reason: str | None = None,
    ):
        self.action = action
        self.reason = reason
        self.tx_hash = tx_hash
        self.raw_reason = raw_reason
        super().__init__(f"{action} reverted: {reason}")


class GasEstimationFailedError(ActionError):
    """
    Gas estimation failed, so the transaction was not sent.

    Surfacing this before submission keeps the user from paying for a
    transaction the ledger would reject.
    """

    code: str = "GAS_ESTIMATION_FAILED"

    def __init__(self, action: str, reason: str, raw_reason: str | None = None):
        self.action = action
        self.reason = reason
        self.raw_reason = raw_reason
        super().__init__(f"Gas estimation failed for {action}: {reason}")


class ActionCancelledError(ActionError):
    """The intent was cancelled before it was submitted."""

    code: str = "ACTION_CANCELLED"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"{action} was cancelled before submission")


class InvalidActionStateError(ActionError):
    """A lifecycle step was requested from the wrong state."""

    code: str = "INVALID_ACTION_STATE"

    def __init__(self, action: str, current_state: str, attempted: str):
        self.action = action
        self.current_state = current_state
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} {action} in state {current_state}"
        )


# Role exceptions


class RoleError(LedgerClientError):
    """Base exception for role and capability checks."""

    code: str = "ROLE_ERROR"


class StaleRoleStateError(RoleError):
    """The cached role no longer matches the ledger."""

    code: str = "STALE_ROLE_STATE"

    def __init__(self, account: str, cached_role: str | None, ledger_role: str | None):
        self.account = account
        self.cached_role = cached_role
        self.ledger_role = ledger_role
        super().__init__(
            f"Role for {account} changed on ledger: "
            f"cached {cached_role}, ledger {ledger_role}"
        )


class CapabilityDeniedError(RoleError):
    """The account's role does not grant the requested capability."""

    code: str = "CAPABILITY_DENIED"

    def __init__(self, account: str, capability: str, role: str | None):
        self.account = account
        self.capability = capability
        self.role = role
        super().__init__(
            f"Account {account} with role {role} cannot {capability}"
        )


class RoleAlreadyChosenError(RoleError):
    """Ledger roles are chosen once and cannot be changed."""

    code: str = "ROLE_ALREADY_CHOSEN"

    def __init__(self, account: str, existing_role: str, requested_role: str):
        self.account = account
        self.existing_role = existing_role
        self.requested_role = requested_role
        super().__init__(
            f"Account {account} already registered as {existing_role}; "
            f"cannot become {requested_role}"
        )


# Immutability exceptions


class ImmutabilityError(LedgerClientError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to update or delete an observed ledger fact."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


_GENERIC_MESSAGES: dict[str, str] = {
    GatewayUnavailableError.code: "The ledger could not be reached. Please try again.",
    GatewayTimeoutError.code: "The ledger took too long to answer. Please try again.",
    InvoiceNotFoundError.code: "Invoice does not exist.",
    InvalidPricingStateError.code: "Pricing for this invoice is not available yet.",
    ActionRejectedByUserError.code: "Transaction was rejected by user.",
    ActionCancelledError.code: "Action was cancelled.",
}


def user_message(exc: BaseException) -> str:
    """
    User-facing text for an exception.

    Decoded revert and guard reasons are shown verbatim; everything else
    falls back to a generic message keyed by error code.
    """
    if isinstance(exc, (ActionRevertedError, GasEstimationFailedError, ActionGuardError)):
        return exc.reason
    code = getattr(exc, "code", None)
    if code in _GENERIC_MESSAGES:
        return _GENERIC_MESSAGES[code]
    return "Something went wrong. Please try again."
