"""Position store protocol + in-process implementation."""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Protocol

import structlog

from trade_core.models.position import PositionIdentity, PositionRecord, PositionStatus

logger = structlog.get_logger()


class PositionStore(Protocol):
    async def get_open_position(self, identity: PositionIdentity) -> PositionRecord | None: ...

    async def create_open_position(self, record: PositionRecord) -> PositionRecord: ...

    async def update_open_position(
        self, record_id: int, quantity: float, entry_price: float, fee: float
    ) -> PositionRecord: ...

    async def close_position(
        self,
        record_id: int,
        exit_price: float,
        exit_order_id: str,
        exit_time: datetime,
        realized_pnl: float,
        fee: float,
        close_reason: str,
    ) -> PositionRecord: ...

    async def get_open_positions(self, trader_id: str) -> list[PositionRecord]: ...

    async def get_closed_positions(self, trader_id: str, limit: int = 100) -> list[PositionRecord]: ...


class InMemoryPositionStore:
    """Dict-backed store for a single process (paper trading, tests)."""

    def __init__(self) -> None:
        self.records: dict[int, PositionRecord] = {}
        self._ids = itertools.count(1)

    async def get_open_position(self, identity: PositionIdentity) -> PositionRecord | None:
        matches = [
            r
            for r in self.records.values()
            if r.status == PositionStatus.OPEN and r.identity == identity
        ]
        if not matches:
            return None
        return max(matches, key=lambda r: r.entry_time or r.created_at).model_copy()

    async def create_open_position(self, record: PositionRecord) -> PositionRecord:
        stored = record.model_copy(update={"id": next(self._ids), "status": PositionStatus.OPEN})
        self.records[stored.id] = stored
        return stored.model_copy()

    async def update_open_position(
        self, record_id: int, quantity: float, entry_price: float, fee: float
    ) -> PositionRecord:
        record = self._get(record_id)
        record.quantity = quantity
        record.entry_price = entry_price
        record.fee = fee
        record.updated_at = datetime.now(timezone.utc)
        return record.model_copy()

    async def close_position(
        self,
        record_id: int,
        exit_price: float,
        exit_order_id: str,
        exit_time: datetime,
        realized_pnl: float,
        fee: float,
        close_reason: str,
    ) -> PositionRecord:
        record = self._get(record_id)
        record.exit_price = exit_price
        record.exit_order_id = exit_order_id
        record.exit_time = exit_time
        record.realized_pnl = realized_pnl
        record.fee = fee
        record.close_reason = close_reason
        record.status = PositionStatus.CLOSED
        record.updated_at = datetime.now(timezone.utc)
        return record.model_copy()

    async def get_open_positions(self, trader_id: str) -> list[PositionRecord]:
        return [
            r.model_copy()
            for r in self.records.values()
            if r.trader_id == trader_id and r.status == PositionStatus.OPEN
        ]

    async def get_closed_positions(self, trader_id: str, limit: int = 100) -> list[PositionRecord]:
        """Closed records, most recent exit first."""
        closed = [
            r
            for r in self.records.values()
            if r.trader_id == trader_id and r.status == PositionStatus.CLOSED
        ]
        closed.sort(key=lambda r: r.exit_time or r.updated_at, reverse=True)
        return [r.model_copy() for r in closed[:limit]]

    def _get(self, record_id: int) -> PositionRecord:
        record = self.records.get(record_id)
        if record is None:
            raise ValueError(f"Position not found: {record_id}")
        return record
