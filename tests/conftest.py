"""
Pytest fixtures for the ledger client test suite.

Provides:
- An in-memory SQLite engine created once per suite, tables rebuilt per test
- A deterministic clock and an in-memory ledger (tests/fakes.py)
- Wired kernel components (contract, repository, role guard, synchronizer)
- Structured log capture
"""

import json
import logging
from io import StringIO

import pytest

from ledger_config.schema import ClientConfig, SyncSettings
from ledger_engines.accounting import AccountingCalculator
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.invoice import UserRole
from ledger_kernel.gateway.contract import LedgerContract
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.services.invoice_repository import InvoiceRepository

from tests.fakes import (
    BUYER,
    CONTRACT,
    INVESTOR,
    NOW,
    SUPPLIER,
    WEI,
    FakeChainGateway,
    FakeToken,
    make_invoice,
)
from tests.wiring import make_synchronizer


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, synchronizer):
            ...
            logs = captured_logs()
            assert any(r["message"] == "duplicate_suppressed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def _engine():
    engine = init_engine_from_url("sqlite+pysqlite:///:memory:")
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(_engine):
    """Fresh tables for every test."""
    drop_tables()
    create_tables()
    yield get_session_factory()
    drop_tables()


@pytest.fixture
def session(session_factory):
    with session_scope(session_factory) as s:
        yield s


# =============================================================================
# Clock and ledger
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(NOW)


@pytest.fixture
def gateway():
    return FakeChainGateway()


@pytest.fixture
def contract(gateway):
    return LedgerContract(gateway, CONTRACT, call_timeout=1.0)


@pytest.fixture
def repository(contract):
    return InvoiceRepository(contract)


@pytest.fixture
def calculator():
    return AccountingCalculator()


@pytest.fixture
def approved_invoice(gateway):
    """Invoice #42: 1000 units, approved, token generated and half funded."""
    invoice = gateway.add_invoice(make_invoice(42))
    gateway.tokens[42] = FakeToken(
        address="0x" + "cd" * 20,
        max_supply=1000 * WEI,
        total_supply=500 * WEI,
        price=WEI // 1000,
    )
    return invoice


@pytest.fixture
def roles(gateway):
    gateway.set_role(SUPPLIER, int(UserRole.SUPPLIER))
    gateway.set_role(BUYER, int(UserRole.BUYER))
    gateway.set_role(INVESTOR, int(UserRole.INVESTOR))


@pytest.fixture
async def synchronizer(contract, session_factory, clock, repository):
    """Synchronizer for the investor account; the poll loop sleeps for an hour."""
    sync = make_synchronizer(contract, INVESTOR, session_factory, clock, repository)
    yield sync
    await sync.close()


@pytest.fixture
def client_config():
    return ClientConfig(
        contract_address=CONTRACT,
        chain_id=11155111,
        sync=SyncSettings(
            poll_interval_seconds=3600.0,
            lookback_blocks=50,
            max_block_span=20,
            stale_after_seconds=3600.0,
            call_timeout_seconds=1.0,
        ),
    )
