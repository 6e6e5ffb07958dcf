"""
RoleGuard -- one role policy per session, evaluated against the ledger.

Responsibility:
    Read the account's ledger role once, expose the capabilities it grants,
    and detect when the cached role no longer matches the ledger.

Architecture position:
    Kernel > Services.  Read-only against the ledger; registration itself
    (``chooseRole``) is an action and goes through the ActionSubmitter.

Invariants enforced:
    - An account without a chosen role has no capabilities.  The ledger
      reports role 0 for unregistered accounts, so ``hasChosenRole`` is
      always read alongside ``getUserRole``.
    - Roles are write-once on the ledger; asking to choose a role when one
      is already chosen fails before anything is sent.

Failure modes:
    - CapabilityDeniedError from ``require``.
    - StaleRoleStateError from ``verify_fresh`` when the ledger disagrees
      with the cached assessment.
    - RoleAlreadyChosenError from ``ensure_can_choose``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.invoice import (
    ROLE_CAPABILITIES,
    Capability,
    UserRole,
    normalize_account,
)
from ledger_kernel.exceptions import (
    CapabilityDeniedError,
    RoleAlreadyChosenError,
    StaleRoleStateError,
)
from ledger_kernel.gateway.contract import LedgerContract
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.role_guard")


@dataclass(frozen=True)
class RoleAssessment:
    account: str
    role: UserRole | None
    capabilities: frozenset[Capability]
    evaluated_at: datetime

    @property
    def has_chosen_role(self) -> bool:
        return self.role is not None


def _role_name(role: UserRole | None) -> str | None:
    return role.name if role is not None else None


class RoleGuard:
    def __init__(self, contract: LedgerContract, account: str, clock: Clock):
        self._contract = contract
        self._account = normalize_account(account)
        self._clock = clock
        self._assessment: RoleAssessment | None = None

    @property
    def account(self) -> str:
        return self._account

    @property
    def assessment(self) -> RoleAssessment | None:
        return self._assessment

    @property
    def capabilities(self) -> frozenset[Capability]:
        if self._assessment is None:
            return frozenset()
        return self._assessment.capabilities

    async def _read(self) -> RoleAssessment:
        chosen, raw_role = await asyncio.gather(
            self._contract.has_chosen_role(self._account),
            self._contract.get_user_role(self._account),
        )
        role = UserRole(raw_role) if chosen else None
        return RoleAssessment(
            account=self._account,
            role=role,
            capabilities=ROLE_CAPABILITIES.get(role, frozenset()) if role is not None else frozenset(),
            evaluated_at=self._clock.now(),
        )

    async def evaluate(self, force: bool = False) -> RoleAssessment:
        """Read the ledger role unless already evaluated this session."""
        if self._assessment is not None and not force:
            return self._assessment
        self._assessment = await self._read()
        logger.info(
            "role_evaluated",
            extra={
                "role": _role_name(self._assessment.role),
                "capabilities": sorted(c.value for c in self._assessment.capabilities),
            },
        )
        return self._assessment

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        if not self.has(capability):
            role = self._assessment.role if self._assessment else None
            raise CapabilityDeniedError(self._account, capability.value, _role_name(role))

    async def verify_fresh(self) -> RoleAssessment:
        """
        Re-read the ledger role and compare with the cached assessment.

        On mismatch the cache is replaced by the fresh reading before
        StaleRoleStateError is raised, so the caller can re-render.
        """
        fresh = await self._read()
        cached = self._assessment
        self._assessment = fresh
        if cached is not None and cached.role != fresh.role:
            logger.warning(
                "role_state_stale",
                extra={
                    "cached_role": _role_name(cached.role),
                    "ledger_role": _role_name(fresh.role),
                },
            )
            raise StaleRoleStateError(
                self._account, _role_name(cached.role), _role_name(fresh.role)
            )
        return fresh

    def ensure_can_choose(self, requested: UserRole) -> None:
        if self._assessment is not None and self._assessment.role is not None:
            raise RoleAlreadyChosenError(
                self._account, self._assessment.role.name, requested.name
            )

    def reset(self) -> None:
        self._assessment = None
