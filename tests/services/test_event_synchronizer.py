"""
Tests for LedgerEventSynchronizer.

Covers:
- One record per fact whichever channel sees it first
- Polling windows, chunking and cursor advancement
- Failed ticks: counted, logged, cursor untouched, never raised
- Stop mid-poll: result discarded, no further ticks, stale callbacks ignored
- Transport loss and the bridging poll on restore
- Invoice cache invalidation from change events
- Receipt ingestion, its failure handling, and full refresh
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from ledger_engines.matching import InsertOutcome
from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.events import EventSource, LedgerEvent, TransactionReceipt
from ledger_kernel.gateway.contract import LedgerContract
from ledger_kernel.selectors.payment_history_selector import PaymentHistorySelector
from ledger_services.event_synchronizer import SyncState, block_chunks
from ledger_services.payment_history_store import PaymentHistoryStore

from tests.fakes import CONTRACT, INVESTOR, NOW, OTHER, WEI, tx_hash
from tests.wiring import make_synchronizer, wait_until


def _history(session_factory, account=INVESTOR):
    with session_scope(session_factory) as session:
        return PaymentHistorySelector(session).list_records(account, CONTRACT)


def _purchase(gateway, *, buyer=INVESTOR, amount=5, tx=None, deliver=True, **kwargs):
    return gateway.emit(
        "SuccessfulTokenPurchase",
        {"invoiceId": 42, "buyer": buyer, "amount": amount * WEI},
        transaction_hash=tx,
        deliver=deliver,
        **kwargs,
    )


class TestBlockChunks:
    def test_single_block(self):
        assert block_chunks(7, 7, 5) == [(7, 7)]

    def test_empty_range(self):
        assert block_chunks(5, 4, 3) == []

    def test_uneven_split(self):
        assert block_chunks(1, 10, 3) == [(1, 3), (4, 6), (7, 9), (10, 10)]


class TestDeduplicationAcrossChannels:
    async def test_subscription_then_poll_keeps_one_record(
        self, gateway, synchronizer, session_factory, clock
    ):
        synchronizer.start()
        gateway.mine()
        _purchase(gateway, tx=tx_hash(900))

        clock.advance(30)
        await synchronizer.poll_once()

        history = _history(session_factory)
        assert len(history) == 1
        assert history[0].invoice_id == 42
        assert history[0].source is EventSource.SUBSCRIPTION

    async def test_poll_then_subscription_keeps_one_record(
        self, gateway, synchronizer, session_factory
    ):
        event = _purchase(gateway, tx=tx_hash(901), deliver=False)
        await synchronizer.poll_once()

        synchronizer.start()
        gateway.subscriptions[0].deliver(event)

        history = _history(session_factory)
        assert len(history) == 1
        assert history[0].source is EventSource.POLLING

    async def test_other_accounts_ignored(self, gateway, synchronizer, session_factory):
        synchronizer.start()
        _purchase(gateway, buyer=OTHER)
        await synchronizer.poll_once()
        assert _history(session_factory) == []

    async def test_bad_live_event_is_logged(self, gateway, synchronizer, captured_logs):
        synchronizer.start()
        gateway.emit("SuccessfulTokenPurchase", {"invoiceId": 42, "buyer": INVESTOR})
        assert any(r["message"] == "live_event_failed" for r in captured_logs())


class TestPolling:
    async def test_first_tick_uses_lookback(self, gateway, synchronizer, session_factory):
        result = await synchronizer.poll_once()

        assert (result.from_block, result.to_block) == (50, 100)
        assert synchronizer.status().cursor == 100

    async def test_window_chunked(self, gateway, synchronizer):
        await synchronizer.poll_once()
        ranges = sorted({(f, t) for _, f, t, _ in gateway.query_log})
        assert ranges == [(50, 69), (70, 89), (90, 100)]

    async def test_payment_queries_filtered_by_account(self, gateway, synchronizer):
        await synchronizer.poll_once()
        purchase_filters = [
            filters for name, _, _, filters in gateway.query_log
            if name == "SuccessfulTokenPurchase"
        ]
        assert all(f == {"buyer": INVESTOR} for f in purchase_filters)

    async def test_conservative_window_overlaps(self, gateway, synchronizer):
        await synchronizer.poll_once()
        gateway.mine(10)
        result = await synchronizer.poll_once()
        assert (result.from_block, result.to_block) == (60, 110)

    async def test_cursor_far_behind(self, gateway, synchronizer):
        await synchronizer.poll_once()
        gateway.mine(200)
        result = await synchronizer.poll_once()
        assert result.from_block == 101
        assert synchronizer.status().cursor == 300

    async def test_inserts_counted(self, gateway, synchronizer):
        _purchase(gateway, tx=tx_hash(1))
        _purchase(gateway, tx=tx_hash(2))
        result = await synchronizer.poll_once()
        assert result.inserted == 2
        assert result.suppressed == 0

        again = await synchronizer.poll_once()
        assert again.outcomes == (InsertOutcome.DUPLICATE_PRIMARY_KEY,) * 2

    async def test_cursor_never_moves_back(self, gateway, synchronizer):
        await synchronizer.poll_once()
        gateway.block_number = 90
        await synchronizer.poll_once()
        assert synchronizer.status().cursor == 100

    async def test_success_logged(self, synchronizer, captured_logs):
        await synchronizer.poll_once()
        completed = [r for r in captured_logs() if r["message"] == "poll_tick_completed"]
        assert completed[0]["from_block"] == 50
        assert completed[0]["to_block"] == 100


class TestFailedTicks:
    async def test_failure_counted_not_raised(self, gateway, synchronizer, captured_logs):
        gateway.fail_next["getBlockNumber"].append(ConnectionError("reset"))

        assert await synchronizer.poll_once() is None

        status = synchronizer.status()
        assert status.consecutive_failures == 1
        assert status.cursor is None
        assert status.last_failure_at == NOW
        failed = [r for r in captured_logs() if r["message"] == "poll_tick_failed"]
        assert failed[0]["error_code"] == "GATEWAY_UNAVAILABLE"

    async def test_mid_window_failure_keeps_cursor(self, gateway, synchronizer, session_factory):
        await synchronizer.poll_once()
        gateway.mine(5)
        _purchase(gateway, tx=tx_hash(3), deliver=False)
        gateway.fail_next["queryEvents"].append(ConnectionError("reset"))

        await synchronizer.poll_once()
        assert synchronizer.status().cursor == 100
        assert _history(session_factory) == []

        await synchronizer.poll_once()
        assert synchronizer.status().cursor == 105
        assert len(_history(session_factory)) == 1

    async def test_success_resets_consecutive(self, gateway, synchronizer):
        gateway.fail_next["getBlockNumber"].append(ConnectionError("reset"))
        await synchronizer.poll_once()
        await synchronizer.poll_once()

        status = synchronizer.status()
        assert status.consecutive_failures == 0
        assert status.total_failures == 1
        assert status.last_error is None

    async def test_timeout_is_a_failure(self, gateway, session_factory, clock):
        gateway.call_delay["getBlockNumber"] = 5.0
        contract = LedgerContract(gateway, CONTRACT, call_timeout=0.01)
        sync = make_synchronizer(contract, INVESTOR, session_factory, clock)

        assert await sync.poll_once() is None
        assert sync.status().consecutive_failures == 1


class TestStatus:
    async def test_not_stale_before_start(self, synchronizer, clock):
        assert not synchronizer.status(NOW + timedelta(hours=1)).is_stale

    async def test_stale_after_threshold(self, synchronizer):
        await synchronizer.poll_once()
        assert not synchronizer.status(NOW + timedelta(seconds=60)).is_stale
        assert synchronizer.status(NOW + timedelta(seconds=121)).is_stale

    async def test_states(self, synchronizer):
        assert synchronizer.state is SyncState.IDLE
        synchronizer.start()
        assert synchronizer.state is SyncState.SUBSCRIBED
        synchronizer.stop()
        assert synchronizer.state is SyncState.IDLE
        await synchronizer.close()
        assert synchronizer.state is SyncState.STOPPED


class TestLifecycle:
    async def test_start_runs_first_tick(self, synchronizer):
        synchronizer.start()
        await wait_until(lambda: synchronizer.status().cursor == 100)
        assert synchronizer.subscribed

    async def test_request_poll_wakes_loop(self, gateway, synchronizer):
        synchronizer.start()
        await wait_until(lambda: synchronizer.status().cursor == 100)
        gateway.mine(3)

        synchronizer.request_poll()
        await wait_until(lambda: synchronizer.status().cursor == 103)

    async def test_double_start_warns(self, synchronizer, captured_logs):
        synchronizer.start()
        epoch = synchronizer.epoch
        synchronizer.start()
        assert synchronizer.epoch == epoch
        assert any(r["message"] == "synchronizer_already_running" for r in captured_logs())

    async def test_closed_cannot_restart(self, synchronizer):
        synchronizer.start()
        await synchronizer.close()
        with pytest.raises(RuntimeError):
            synchronizer.start()

    async def test_stop_detaches_listeners(self, gateway, synchronizer):
        synchronizer.start()
        assert gateway.subscriptions
        synchronizer.stop()
        assert gateway.subscriptions == []
        assert not synchronizer.subscribed

    async def test_attach_failure_leaves_polling(self, gateway, synchronizer, captured_logs):
        gateway.disconnect()
        synchronizer.start()
        assert synchronizer.is_running
        assert not synchronizer.subscribed
        assert any(r["message"] == "subscription_attach_failed" for r in captured_logs())


class TestStopMidPoll:
    async def test_in_flight_result_discarded(
        self, gateway, synchronizer, session_factory, captured_logs
    ):
        _purchase(gateway, tx=tx_hash(4), deliver=False)
        gateway.on_query = lambda event, f, t: synchronizer.stop()

        assert await synchronizer.poll_once() is None

        assert synchronizer.state is SyncState.IDLE
        assert synchronizer.status().cursor is None
        assert _history(session_factory) == []
        assert any(r["message"] == "poll_result_discarded" for r in captured_logs())

    async def test_no_ticks_after_stop(self, gateway, synchronizer, session_factory):
        _purchase(gateway, tx=tx_hash(5), deliver=False)

        def disconnect_account(event, from_block, to_block):
            synchronizer.stop()

        gateway.on_query = disconnect_account
        synchronizer.start()
        await wait_until(lambda: gateway.query_log)
        await asyncio.sleep(0.05)
        queries = len(gateway.query_log)

        synchronizer.request_poll()
        await asyncio.sleep(0.05)

        assert len(gateway.query_log) == queries
        assert synchronizer.state is SyncState.IDLE
        assert synchronizer.status().cursor is None
        assert _history(session_factory) == []

    async def test_stale_callback_ignored(self, gateway, synchronizer, session_factory, captured_logs):
        synchronizer.start()
        stale = gateway.subscriptions[0].callback
        synchronizer.stop()

        stale(_purchase(gateway, tx=tx_hash(6), deliver=False))

        assert _history(session_factory) == []
        assert any(r["message"] == "stale_callback_ignored" for r in captured_logs())


class TestTransport:
    async def test_bridging_poll_recovers_missed_event(
        self, gateway, synchronizer, session_factory
    ):
        synchronizer.start()
        await wait_until(lambda: synchronizer.status().cursor == 100)

        gateway.disconnect()
        synchronizer.on_transport_lost()
        assert not synchronizer.subscribed
        gateway.mine(2)
        _purchase(gateway, tx=tx_hash(7))
        assert _history(session_factory) == []

        gateway.reconnect()
        result = await synchronizer.on_transport_restored()

        assert result.inserted == 1
        assert synchronizer.subscribed
        assert synchronizer.status().cursor == 102
        assert _history(session_factory)[0].source is EventSource.POLLING

    async def test_restore_when_not_running(self, synchronizer):
        assert await synchronizer.on_transport_restored() is None
        assert not synchronizer.subscribed

    async def test_lost_logged_once(self, synchronizer, captured_logs):
        synchronizer.start()
        synchronizer.on_transport_lost()
        synchronizer.on_transport_lost()
        lost = [r for r in captured_logs() if r["message"] == "transport_lost_subscription_detached"]
        assert len(lost) == 1


class TestInvoiceInvalidation:
    async def test_live_change_event(self, gateway, synchronizer, repository, approved_invoice):
        await repository.get_invoice(42)
        synchronizer.start()

        gateway.emit("InvoicePaid", {"invoiceId": 42, "amount": 1070 * WEI})

        assert repository.cached(42) is None

    async def test_polled_change_event(self, gateway, synchronizer, repository, approved_invoice):
        gateway.emit("InvoiceVerified", {"invoiceId": 42, "isValid": True}, deliver=False)
        await repository.get_invoice(42)

        await synchronizer.poll_once()

        assert repository.cached(42) is None

    async def test_inserted_payment_invalidates(
        self, gateway, synchronizer, repository, approved_invoice
    ):
        await repository.get_invoice(42)
        _purchase(gateway, tx=tx_hash(8), deliver=False)
        await synchronizer.poll_once()
        assert repository.cached(42) is None


class TestIngestReceipt:
    def _receipt(self, *logs):
        return TransactionReceipt(tx_hash=tx_hash(77), status=1, block_number=101, logs=logs)

    async def test_logs_recorded_as_refresh(self, synchronizer, session_factory):
        log = LedgerEvent(
            "SuccessfulTokenPurchase",
            {"invoiceId": 42, "buyer": INVESTOR, "amount": 5 * WEI},
            log_index=0,
        )
        outcomes = synchronizer.ingest_receipt(self._receipt(log))

        assert outcomes == [InsertOutcome.INSERTED]
        record = _history(session_factory)[0]
        assert record.source is EventSource.REFRESH
        assert record.transaction_hash == tx_hash(77)
        assert record.block_number == 101

    async def test_later_poll_suppressed(self, gateway, synchronizer, session_factory):
        event = _purchase(gateway, tx=tx_hash(77), deliver=False)
        synchronizer.ingest_receipt(self._receipt(event))

        await synchronizer.poll_once()
        assert len(_history(session_factory)) == 1

    async def test_change_logs_only_invalidate(
        self, synchronizer, repository, approved_invoice, session_factory
    ):
        await repository.get_invoice(42)
        log = LedgerEvent("InvoicePaid", {"invoiceId": 42, "amount": 1}, log_index=0)

        assert synchronizer.ingest_receipt(self._receipt(log)) == []
        assert repository.cached(42) is None
        assert _history(session_factory) == []

    async def test_write_failure_logged_not_raised(
        self, synchronizer, session_factory, captured_logs, monkeypatch
    ):
        def locked(store, records):
            raise OperationalError(
                "INSERT INTO payment_records", {}, Exception("database is locked")
            )

        monkeypatch.setattr(PaymentHistoryStore, "insert_many", locked)
        log = LedgerEvent(
            "SuccessfulTokenPurchase",
            {"invoiceId": 42, "buyer": INVESTOR, "amount": 5 * WEI},
            log_index=0,
        )

        assert synchronizer.ingest_receipt(self._receipt(log)) == []
        failed = [r for r in captured_logs() if r["message"] == "receipt_ingest_failed"]
        assert failed[0]["level"] == "WARNING"
        assert failed[0]["tx_hash"] == tx_hash(77)
        assert synchronizer._wake.is_set()

    async def test_closed_synchronizer_writes_nothing(self, synchronizer, session_factory):
        await synchronizer.close()
        log = LedgerEvent(
            "SuccessfulTokenPurchase",
            {"invoiceId": 42, "buyer": INVESTOR, "amount": 5 * WEI},
            log_index=0,
        )

        assert synchronizer.ingest_receipt(self._receipt(log)) == []
        assert _history(session_factory) == []


class TestFullRefresh:
    async def test_resets_cursor_and_cache(self, gateway, synchronizer, repository, approved_invoice):
        await synchronizer.poll_once()
        await repository.get_invoice(42)
        gateway.mine(100)

        result = await synchronizer.full_refresh()

        assert result.from_block == 150
        assert repository.cached(42) is None
        assert synchronizer.status().cursor == 200

    async def test_history_survives(self, gateway, synchronizer, session_factory):
        _purchase(gateway, tx=tx_hash(9), deliver=False)
        await synchronizer.poll_once()
        await synchronizer.full_refresh()
        assert len(_history(session_factory)) == 1
