"""
Action intents -- state-changing requests on their way to the ledger.

Lifecycle:

    BUILT ──submit──> SUBMITTED ──sent──> PENDING(tx_hash) ──> CONFIRMED
      │                   │                   │
      └──cancel──> CANCELLED                  └──────────────> REVERTED
                          └──error──> FAILED

Invariants enforced:
    - Transitions follow the table above; anything else raises
      InvalidActionStateError.
    - Only a BUILT intent can be cancelled.  Once submitted, the user's
      signer owns the decision.
    - Terminal states (CONFIRMED, REVERTED, CANCELLED, FAILED) are final.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from ledger_kernel.exceptions import ActionCancelledError, InvalidActionStateError


class ActionKind(str, Enum):
    """Each kind maps to one contract write function."""

    CREATE_INVOICE = "createInvoice"
    REQUEST_VERIFICATION = "verifyInvoice"
    MINT_TOKENS = "tokenGeneration"
    BUY_TOKENS = "buyTokens"
    PAY_INVOICE = "buyerPayment"
    CHOOSE_ROLE = "chooseRole"

    @property
    def function(self) -> str:
        return self.value


class ActionState(str, Enum):
    BUILT = "built"
    SUBMITTED = "submitted"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({
    ActionState.CONFIRMED,
    ActionState.REVERTED,
    ActionState.CANCELLED,
    ActionState.FAILED,
})

_TRANSITIONS: dict[ActionState, frozenset[ActionState]] = {
    ActionState.BUILT: frozenset({ActionState.SUBMITTED, ActionState.CANCELLED}),
    ActionState.SUBMITTED: frozenset({ActionState.PENDING, ActionState.FAILED}),
    ActionState.PENDING: frozenset({ActionState.CONFIRMED, ActionState.REVERTED}),
}


@dataclass
class ActionIntent:
    """
    A prepared, not-yet-final request.

    Contract:
        Built by ActionSubmitter.prepare_*; the caller decides whether to
        submit or cancel it.  ``args`` and ``value_wei`` are exactly what
        will be sent; amounts were computed from a fresh ledger read.
    """

    kind: ActionKind
    account: str
    args: tuple[Any, ...]
    created_at: datetime
    value_wei: int = 0
    invoice_id: int | None = None
    summary: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    state: ActionState = ActionState.BUILT
    tx_hash: str | None = None
    gas_estimate: int | None = None
    block_number: int | None = None
    error: str | None = None
    history: list[ActionState] = field(default_factory=lambda: [ActionState.BUILT])

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def advance(self, to: ActionState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if to not in allowed:
            raise InvalidActionStateError(self.kind.value, self.state.value, to.value)
        self.state = to
        self.history.append(to)

    def cancel(self) -> None:
        """Withdraw the intent before submission."""
        self.advance(ActionState.CANCELLED)

    def ensure_submittable(self) -> None:
        if self.state is ActionState.CANCELLED:
            raise ActionCancelledError(self.kind.value)
        if self.state is not ActionState.BUILT:
            raise InvalidActionStateError(self.kind.value, self.state.value, "submit")
