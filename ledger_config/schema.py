"""
ClientConfig schema.

Frozen dataclasses for the client's runtime configuration.  YAML is parsed
into these types by ``ledger_config.loader``; every section has defaults so
a file only needs the contract address and chain id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


# ---------------------------------------------------------------------------
# Synchronizer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncSettings:
    """Polling cadence, windows and dedup tolerances."""

    poll_interval_seconds: float = 30.0
    lookback_blocks: int = 5000
    max_block_span: int = 2000
    fuzzy_window_seconds: int = 300
    amount_tolerance: Decimal = Decimal("0")
    call_timeout_seconds: float = 15.0
    stale_after_seconds: float = 120.0

    def __post_init__(self) -> None:
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.lookback_blocks < 0:
            raise ValueError("lookback_blocks cannot be negative")
        if self.max_block_span <= 0:
            raise ValueError("max_block_span must be positive")
        if self.fuzzy_window_seconds < 0:
            raise ValueError("fuzzy_window_seconds cannot be negative")
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")
        if self.call_timeout_seconds <= 0:
            raise ValueError("call_timeout_seconds must be positive")
        if self.stale_after_seconds < self.poll_interval_seconds:
            raise ValueError("stale_after_seconds must be at least poll_interval_seconds")


# ---------------------------------------------------------------------------
# Accounting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountingSettings:
    """Parameters of the display-only penalty estimate."""

    daily_penalty_rate: Decimal = Decimal("0.01")
    penalty_cap_rate: Decimal = Decimal("0.10")

    def __post_init__(self) -> None:
        if self.daily_penalty_rate < 0:
            raise ValueError("daily_penalty_rate cannot be negative")
        if self.penalty_cap_rate < 0:
            raise ValueError("penalty_cap_rate cannot be negative")


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionSettings:
    required_confirmations: int = 1
    confirmation_timeout_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.required_confirmations < 1:
            raise ValueError("required_confirmations must be at least 1")
        if self.confirmation_timeout_seconds <= 0:
            raise ValueError("confirmation_timeout_seconds must be positive")


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientConfig:
    """
    Complete client configuration.

    ``checksum`` identifies the source document; it is empty for configs
    built in code.
    """

    contract_address: str
    chain_id: int
    database_url: str = DEFAULT_DATABASE_URL
    sync: SyncSettings = field(default_factory=SyncSettings)
    accounting: AccountingSettings = field(default_factory=AccountingSettings)
    actions: ActionSettings = field(default_factory=ActionSettings)
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.contract_address:
            raise ValueError("contract_address is required")
        if self.chain_id <= 0:
            raise ValueError("chain_id must be positive")
