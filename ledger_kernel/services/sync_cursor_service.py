"""
SyncCursorService -- owns the last reconciled block height per scope.

Invariants enforced:
    - Monotonic: ``advance`` never lowers the cursor.  A node that reports
      a lower head than the cursor leaves the cursor where it is.
    - Reset is explicit: ``reset`` deletes the row; the next advance starts
      a new cursor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sync_cursor import SyncCursorRow
from ledger_kernel.services.base import BaseService

logger = get_logger("services.sync_cursor")


@dataclass(frozen=True)
class SyncScope:
    """What a synchronizer reconciles: one account on one contract and chain."""

    account: str
    contract_address: str
    chain_id: int


class SyncCursorService(BaseService):
    def __init__(self, session: Session):
        super().__init__(session)

    def _row(self, scope: SyncScope) -> SyncCursorRow | None:
        stmt = select(SyncCursorRow).where(
            SyncCursorRow.account == scope.account,
            SyncCursorRow.contract_address == scope.contract_address,
            SyncCursorRow.chain_id == scope.chain_id,
        )
        return self.session.scalars(stmt).one_or_none()

    def get(self, scope: SyncScope) -> int | None:
        row = self._row(scope)
        return row.last_block if row is not None else None

    def advance(self, scope: SyncScope, block: int, now: datetime) -> int:
        """Move the cursor to ``block`` if that is forward; return the cursor."""
        row = self._row(scope)
        if row is None:
            self.session.add(
                SyncCursorRow(
                    account=scope.account,
                    contract_address=scope.contract_address,
                    chain_id=scope.chain_id,
                    last_block=block,
                    updated_at=now,
                )
            )
            self.session.flush()
            logger.info("sync_cursor_created", extra={"block": block})
            return block

        if block <= row.last_block:
            if block < row.last_block:
                logger.warning(
                    "sync_cursor_regression_ignored",
                    extra={"cursor": row.last_block, "reported_block": block},
                )
            return row.last_block

        previous = row.last_block
        row.last_block = block
        row.updated_at = now
        self.session.flush()
        logger.debug(
            "sync_cursor_advanced",
            extra={"from_block": previous, "to_block": block},
        )
        return block

    def reset(self, scope: SyncScope) -> None:
        self.session.execute(
            delete(SyncCursorRow).where(
                SyncCursorRow.account == scope.account,
                SyncCursorRow.contract_address == scope.contract_address,
                SyncCursorRow.chain_id == scope.chain_id,
            )
        )
        self.session.flush()
        logger.info("sync_cursor_reset")
