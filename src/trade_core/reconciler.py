"""Fill-driven position bookkeeping.

Every executed order reported by the exchange layer goes through
`PositionReconciler.process_trade`, which keeps exactly one OPEN record per
(trader, symbol, side):

- open_*  : create the record, or fold the fill in at a weighted average entry
- close_* : reduce the record, or close it when the remaining quantity is
            within tolerance of the stored quantity

Fills for the same identity are processed one at a time.
"""

from __future__ import annotations

import asyncio
import functools
from collections import Counter
from collections.abc import Awaitable, Callable

import structlog

from trade_core.errors import PositionStoreError
from trade_core.models.position import (
    PositionIdentity,
    PositionRecord,
    PositionStatus,
    TradeFill,
)
from trade_core.store import PositionStore

logger = structlog.get_logger()

QUANTITY_TOLERANCE = 0.0001
SYNC_SOURCE = "sync"
SYNC_CLOSE_REASON = "sync"

ProcessFn = Callable[["PositionReconciler", TradeFill], Awaitable["PositionRecord | None"]]


def serialized_by_identity(func: ProcessFn) -> ProcessFn:
    """Hold the fill's identity lock for the whole read-modify-write.

    A lock lives only while some fill for its identity is in flight.
    """

    @functools.wraps(func)
    async def wrapper(self: PositionReconciler, fill: TradeFill) -> PositionRecord | None:
        identity = fill.identity
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        self._lock_users[identity] += 1
        try:
            async with lock:
                return await func(self, fill)
        finally:
            self._lock_users[identity] -= 1
            if not self._lock_users[identity]:
                del self._lock_users[identity]
                del self._locks[identity]

    return wrapper


def weighted_average_entry(
    quantity: float, entry_price: float, add_quantity: float, add_price: float
) -> float:
    total = quantity + add_quantity
    if total <= 0:
        return add_price
    return (quantity * entry_price + add_quantity * add_price) / total


def sync_position_id(fill: TradeFill) -> str:
    return f"sync_{fill.symbol}_{fill.side.value}_{int(fill.trade_time.timestamp() * 1000)}"


class PositionReconciler:
    def __init__(
        self, store: PositionStore, quantity_tolerance: float = QUANTITY_TOLERANCE
    ) -> None:
        self.store = store
        self.quantity_tolerance = quantity_tolerance
        self._locks: dict[PositionIdentity, asyncio.Lock] = {}
        self._lock_users: Counter[PositionIdentity] = Counter()

    @serialized_by_identity
    async def process_trade(self, fill: TradeFill) -> PositionRecord | None:
        """Apply one fill. Returns the affected record, or None when nothing changed."""
        if fill.quantity <= 0:
            logger.warning(
                "fill_ignored",
                reason="non-positive quantity",
                symbol=fill.symbol,
                quantity=fill.quantity,
            )
            return None

        if fill.action.startswith("open_"):
            return await self._apply_open(fill)
        if fill.action.startswith("close_"):
            return await self._apply_close(fill)

        logger.warning(
            "fill_ignored",
            reason="unknown action",
            action=fill.action,
            symbol=fill.symbol,
            order_id=fill.order_id,
        )
        return None

    async def _apply_open(self, fill: TradeFill) -> PositionRecord:
        existing = await self._get_open(fill.identity)

        if existing is None:
            record = PositionRecord(
                trader_id=fill.trader_id,
                exchange_id=fill.exchange_id,
                exchange_type=fill.exchange_type,
                exchange_position_id=sync_position_id(fill),
                symbol=fill.symbol,
                side=fill.side,
                quantity=fill.quantity,
                entry_price=fill.price,
                entry_order_id=fill.order_id,
                entry_time=fill.trade_time,
                fee=fill.fee,
                leverage=1,
                status=PositionStatus.OPEN,
                source=SYNC_SOURCE,
            )
            try:
                created = await self.store.create_open_position(record)
            except Exception as exc:
                raise PositionStoreError(f"failed to create position: {exc}") from exc
            logger.info(
                "position_opened",
                symbol=fill.symbol,
                side=fill.side.value,
                quantity=fill.quantity,
                price=fill.price,
                order_id=fill.order_id,
            )
            return created

        new_quantity = existing.quantity + fill.quantity
        new_entry = weighted_average_entry(
            existing.quantity, existing.entry_price, fill.quantity, fill.price
        )
        try:
            updated = await self.store.update_open_position(
                existing.id, new_quantity, new_entry, existing.fee + fill.fee
            )
        except Exception as exc:
            raise PositionStoreError(f"failed to update position: {exc}") from exc
        logger.info(
            "position_increased",
            symbol=fill.symbol,
            side=fill.side.value,
            quantity_before=existing.quantity,
            quantity_after=new_quantity,
            entry_price=new_entry,
        )
        return updated

    async def _apply_close(self, fill: TradeFill) -> PositionRecord | None:
        existing = await self._get_open(fill.identity)

        if existing is None:
            # Closed elsewhere, or opened before tracking began
            logger.warning(
                "close_without_open_position",
                symbol=fill.symbol,
                side=fill.side.value,
                quantity=fill.quantity,
                order_id=fill.order_id,
            )
            return None

        total_fee = existing.fee + fill.fee

        if fill.quantity < existing.quantity - self.quantity_tolerance:
            remaining = existing.quantity - fill.quantity
            try:
                updated = await self.store.update_open_position(
                    existing.id, remaining, existing.entry_price, total_fee
                )
            except Exception as exc:
                raise PositionStoreError(f"failed to reduce position: {exc}") from exc
            logger.info(
                "position_reduced",
                symbol=fill.symbol,
                side=fill.side.value,
                closed=fill.quantity,
                remaining=remaining,
            )
            return updated

        if fill.quantity > existing.quantity:
            logger.warning(
                "close_quantity_exceeds_position",
                symbol=fill.symbol,
                side=fill.side.value,
                close_quantity=fill.quantity,
                position_quantity=existing.quantity,
            )

        try:
            closed = await self.store.close_position(
                existing.id,
                exit_price=fill.price,
                exit_order_id=fill.order_id,
                exit_time=fill.trade_time,
                realized_pnl=fill.realized_pnl,
                fee=total_fee,
                close_reason=SYNC_CLOSE_REASON,
            )
        except Exception as exc:
            raise PositionStoreError(f"failed to close position: {exc}") from exc
        logger.info(
            "position_closed",
            symbol=fill.symbol,
            side=fill.side.value,
            quantity=existing.quantity,
            exit_price=fill.price,
            realized_pnl=fill.realized_pnl,
        )
        return closed

    async def _get_open(self, identity: PositionIdentity) -> PositionRecord | None:
        try:
            return await self.store.get_open_position(identity)
        except Exception as exc:
            raise PositionStoreError(f"failed to get open position: {exc}") from exc
