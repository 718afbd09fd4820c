"""Unit tests for PositionReconciler (fill-driven position lifecycle)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from trade_core.errors import PositionStoreError
from trade_core.models.position import PositionIdentity, PositionSide, PositionStatus, TradeFill
from trade_core.reconciler import PositionReconciler, sync_position_id, weighted_average_entry
from trade_core.store import InMemoryPositionStore

_T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    return InMemoryPositionStore()


@pytest.fixture
def reconciler(store):
    return PositionReconciler(store)


def fill(action: str, quantity: float, price: float, **overrides) -> TradeFill:
    side = "LONG" if action.endswith("long") else "SHORT"
    data = {
        "trader_id": "t1",
        "exchange_id": "binance",
        "exchange_type": "futures",
        "symbol": "BTCUSDT",
        "side": side,
        "action": action,
        "quantity": quantity,
        "price": price,
        "fee": 0.5,
        "trade_time": _T0,
        "order_id": f"o-{action}-{quantity}",
    }
    data.update(overrides)
    return TradeFill(**data)


LONG_ID = PositionIdentity(trader_id="t1", symbol="BTCUSDT", side="LONG")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_weighted_average(self):
        assert weighted_average_entry(1.0, 100.0, 3.0, 200.0) == pytest.approx(175.0)

    def test_weighted_average_from_empty(self):
        assert weighted_average_entry(0.0, 0.0, 2.0, 50.0) == 50.0

    def test_sync_position_id(self):
        f = fill("open_long", 1.0, 100.0)
        assert sync_position_id(f) == f"sync_BTCUSDT_LONG_{int(_T0.timestamp() * 1000)}"

    def test_identity_side_case_insensitive(self):
        assert PositionIdentity(trader_id="t1", symbol="BTCUSDT", side="long") == LONG_ID


# ---------------------------------------------------------------------------
# Opens
# ---------------------------------------------------------------------------


class TestOpen:
    async def test_first_open_creates(self, reconciler, store):
        record = await reconciler.process_trade(fill("open_long", 0.5, 90000.0))

        assert record.id is not None
        assert record.status == PositionStatus.OPEN
        assert record.quantity == 0.5
        assert record.entry_price == 90000.0
        assert record.fee == 0.5
        assert record.leverage == 1
        assert record.source == "sync"
        assert record.entry_order_id == "o-open_long-0.5"
        assert record.exchange_position_id.startswith("sync_BTCUSDT_LONG_")
        assert (await store.get_open_position(LONG_ID)).id == record.id

    async def test_second_open_averages(self, reconciler, store):
        await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        record = await reconciler.process_trade(fill("open_long", 3.0, 200.0, fee=1.0))

        assert record.quantity == pytest.approx(4.0)
        assert record.entry_price == pytest.approx(175.0)
        assert record.fee == pytest.approx(1.5)
        assert len(store.records) == 1

    async def test_long_and_short_are_separate(self, reconciler, store):
        await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        await reconciler.process_trade(fill("open_short", 2.0, 110.0))
        assert len(store.records) == 2
        short = await store.get_open_position(
            PositionIdentity(trader_id="t1", symbol="BTCUSDT", side="SHORT")
        )
        assert short.quantity == 2.0

    async def test_traders_are_separate(self, reconciler, store):
        await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        await reconciler.process_trade(fill("open_long", 1.0, 100.0, trader_id="t2"))
        assert len(store.records) == 2


# ---------------------------------------------------------------------------
# Closes
# ---------------------------------------------------------------------------


class TestClose:
    async def test_close_without_position_is_noop(self, reconciler, store):
        result = await reconciler.process_trade(fill("close_long", 1.0, 100.0))
        assert result is None
        assert store.records == {}

    async def test_partial_close_reduces(self, reconciler):
        await reconciler.process_trade(fill("open_long", 2.0, 100.0))
        record = await reconciler.process_trade(fill("close_long", 0.5, 120.0, fee=0.25))

        assert record.status == PositionStatus.OPEN
        assert record.quantity == pytest.approx(1.5)
        assert record.entry_price == 100.0
        assert record.fee == pytest.approx(0.75)

    async def test_full_close(self, reconciler, store):
        await reconciler.process_trade(fill("open_long", 2.0, 100.0))
        exit_time = _T0 + timedelta(hours=2)
        record = await reconciler.process_trade(
            fill("close_long", 2.0, 120.0, realized_pnl=40.0, trade_time=exit_time, order_id="x1")
        )

        assert record.status == PositionStatus.CLOSED
        assert record.quantity == 2.0
        assert record.exit_price == 120.0
        assert record.exit_order_id == "x1"
        assert record.exit_time == exit_time
        assert record.realized_pnl == 40.0
        assert record.fee == pytest.approx(1.0)
        assert record.close_reason == "sync"
        assert await store.get_open_position(LONG_ID) is None

    async def test_close_within_tolerance_is_full(self, reconciler):
        await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        record = await reconciler.process_trade(fill("close_long", 1.0 - 0.00001, 110.0))
        assert record.status == PositionStatus.CLOSED

    async def test_close_just_outside_tolerance_is_partial(self, reconciler):
        await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        record = await reconciler.process_trade(fill("close_long", 0.999, 110.0))
        assert record.status == PositionStatus.OPEN
        assert record.quantity == pytest.approx(0.001)

    async def test_over_close_clamps(self, reconciler, store):
        await reconciler.process_trade(fill("open_short", 1.0, 100.0))
        with capture_logs() as logs:
            record = await reconciler.process_trade(fill("close_short", 5.0, 90.0))

        assert record.status == PositionStatus.CLOSED
        assert record.quantity == 1.0
        assert len(store.records) == 1
        warning = next(e for e in logs if e["event"] == "close_quantity_exceeds_position")
        assert warning["close_quantity"] == 5.0
        assert warning["position_quantity"] == 1.0

    async def test_over_close_within_tolerance_still_logged(self, reconciler):
        await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        with capture_logs() as logs:
            record = await reconciler.process_trade(fill("close_long", 1.00005, 110.0))

        assert record.status == PositionStatus.CLOSED
        events = [e["event"] for e in logs]
        assert "close_quantity_exceeds_position" in events
        assert "position_closed" in events

    async def test_exact_close_not_flagged(self, reconciler):
        await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        with capture_logs() as logs:
            await reconciler.process_trade(fill("close_long", 1.0, 110.0))

        assert "close_quantity_exceeds_position" not in [e["event"] for e in logs]

    async def test_reopen_after_close_creates_new_record(self, reconciler, store):
        await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        closed = await reconciler.process_trade(fill("close_long", 1.0, 110.0))
        reopened = await reconciler.process_trade(fill("open_long", 1.0, 105.0))

        assert reopened.id != closed.id
        assert store.records[closed.id].status == PositionStatus.CLOSED
        assert reopened.entry_price == 105.0


# ---------------------------------------------------------------------------
# Ignored fills
# ---------------------------------------------------------------------------


class TestIgnored:
    async def test_unknown_action(self, reconciler, store):
        result = await reconciler.process_trade(fill("hold_long", 1.0, 100.0))
        assert result is None
        assert store.records == {}

    async def test_non_positive_quantity(self, reconciler, store):
        assert await reconciler.process_trade(fill("open_long", 0.0, 100.0)) is None
        assert store.records == {}


# ---------------------------------------------------------------------------
# Concurrency + store failures
# ---------------------------------------------------------------------------


class YieldingStore(InMemoryPositionStore):
    """Yields to the loop between read and write, exposing lost updates."""

    async def get_open_position(self, identity):
        result = await super().get_open_position(identity)
        await asyncio.sleep(0)
        return result


class TestConcurrency:
    async def test_same_identity_serialized(self):
        store = YieldingStore()
        reconciler = PositionReconciler(store)

        await asyncio.gather(
            *(reconciler.process_trade(fill("open_long", 1.0, 100.0 + i)) for i in range(5))
        )

        assert len(store.records) == 1
        record = await store.get_open_position(LONG_ID)
        assert record.quantity == pytest.approx(5.0)
        assert record.entry_price == pytest.approx(102.0)

    async def test_open_then_close_concurrently(self):
        store = YieldingStore()
        reconciler = PositionReconciler(store)

        await asyncio.gather(
            reconciler.process_trade(fill("open_long", 1.0, 100.0)),
            reconciler.process_trade(fill("close_long", 1.0, 110.0)),
        )

        assert len(store.records) == 1
        assert next(iter(store.records.values())).status == PositionStatus.CLOSED

    async def test_locks_released_after_fills(self):
        store = YieldingStore()
        reconciler = PositionReconciler(store)

        await asyncio.gather(
            *(
                reconciler.process_trade(fill("open_long", 1.0, 100.0, symbol=f"COIN{i}USDT"))
                for i in range(20)
            ),
            reconciler.process_trade(fill("open_long", 1.0, 100.0)),
            reconciler.process_trade(fill("open_long", 1.0, 101.0)),
        )

        assert reconciler._locks == {}
        assert not reconciler._lock_users


class TestStoreFailures:
    async def test_read_failure_wrapped(self):
        store = AsyncMock()
        store.get_open_position.side_effect = RuntimeError("db down")
        reconciler = PositionReconciler(store)

        with pytest.raises(PositionStoreError, match="db down"):
            await reconciler.process_trade(fill("open_long", 1.0, 100.0))

    async def test_write_failure_wrapped(self):
        store = AsyncMock()
        store.get_open_position.return_value = None
        store.create_open_position.side_effect = RuntimeError("constraint")
        reconciler = PositionReconciler(store)

        with pytest.raises(PositionStoreError, match="failed to create position"):
            await reconciler.process_trade(fill("open_long", 1.0, 100.0))

    async def test_lock_released_after_failure(self):
        store = AsyncMock()
        store.get_open_position.side_effect = [RuntimeError("db down"), None]
        store.create_open_position.side_effect = lambda record: record
        reconciler = PositionReconciler(store)

        with pytest.raises(PositionStoreError):
            await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        record = await reconciler.process_trade(fill("open_long", 1.0, 100.0))
        assert record.quantity == 1.0
        assert reconciler._locks == {}
