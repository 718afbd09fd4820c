"""DB repositories: PositionRepository, DecisionRecordRepository."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trade_core.db.models import DecisionRecordORM, PositionORM
from trade_core.errors import PositionStoreError
from trade_core.models.decision import FullDecision
from trade_core.models.position import (
    PositionIdentity,
    PositionRecord,
    PositionStatus,
    RecentTrade,
    TraderStats,
)
from trade_core.stats import build_trader_stats, to_recent_trade

logger = structlog.get_logger()


def _orm_to_position_record(orm: PositionORM) -> PositionRecord:
    return PositionRecord(
        id=orm.id,
        trader_id=orm.trader_id,
        exchange_id=orm.exchange_id or "",
        exchange_type=orm.exchange_type or "",
        exchange_position_id=orm.exchange_position_id or "",
        symbol=orm.symbol,
        side=orm.side,
        quantity=orm.quantity,
        entry_price=orm.entry_price,
        entry_order_id=orm.entry_order_id or "",
        entry_time=orm.entry_time,
        exit_price=orm.exit_price or 0.0,
        exit_order_id=orm.exit_order_id or "",
        exit_time=orm.exit_time,
        realized_pnl=orm.realized_pnl or 0.0,
        fee=orm.fee or 0.0,
        leverage=orm.leverage or 1,
        status=orm.status,
        source=orm.source or "",
        close_reason=orm.close_reason or "",
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


class PositionRepository:
    """SQL-backed PositionStore over the trader_positions table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_open_position(self, identity: PositionIdentity) -> PositionRecord | None:
        """Most recent OPEN record for the identity, or None."""
        async with self.session_factory() as session:
            stmt = (
                select(PositionORM)
                .where(
                    PositionORM.trader_id == identity.trader_id,
                    PositionORM.symbol == identity.symbol,
                    PositionORM.side == identity.side.value,
                    PositionORM.status == PositionStatus.OPEN.value,
                )
                .order_by(PositionORM.entry_time.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            orm = result.scalar_one_or_none()
            return _orm_to_position_record(orm) if orm is not None else None

    async def create_open_position(self, record: PositionRecord) -> PositionRecord:
        async with self.session_factory() as session:
            data = record.model_dump(exclude={"id"})
            data["side"] = record.side.value
            data["status"] = PositionStatus.OPEN.value
            orm = PositionORM(**data)
            session.add(orm)
            await session.flush()
            await session.refresh(orm)
            created = _orm_to_position_record(orm)
            await session.commit()
            logger.info(
                "position_created",
                id=created.id,
                symbol=created.symbol,
                side=created.side.value,
            )
            return created

    async def update_open_position(
        self, record_id: int, quantity: float, entry_price: float, fee: float
    ) -> PositionRecord:
        async with self.session_factory() as session:
            orm = await self._get_for_update(session, record_id)
            orm.quantity = quantity
            orm.entry_price = entry_price
            orm.fee = fee
            orm.updated_at = datetime.now(timezone.utc)
            await session.flush()
            updated = _orm_to_position_record(orm)
            await session.commit()
            logger.debug("position_updated", id=record_id, quantity=quantity)
            return updated

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
        async with self.session_factory() as session:
            orm = await self._get_for_update(session, record_id)
            orm.exit_price = exit_price
            orm.exit_order_id = exit_order_id
            orm.exit_time = exit_time
            orm.realized_pnl = realized_pnl
            orm.fee = fee
            orm.close_reason = close_reason
            orm.status = PositionStatus.CLOSED.value
            orm.updated_at = datetime.now(timezone.utc)
            await session.flush()
            closed = _orm_to_position_record(orm)
            await session.commit()
            logger.info("position_record_closed", id=record_id, realized_pnl=realized_pnl)
            return closed

    async def get_open_positions(self, trader_id: str) -> list[PositionRecord]:
        async with self.session_factory() as session:
            stmt = (
                select(PositionORM)
                .where(
                    PositionORM.trader_id == trader_id,
                    PositionORM.status == PositionStatus.OPEN.value,
                )
                .order_by(PositionORM.entry_time.desc())
            )
            result = await session.execute(stmt)
            return [_orm_to_position_record(p) for p in result.scalars().all()]

    async def get_closed_positions(self, trader_id: str, limit: int = 100) -> list[PositionRecord]:
        """Closed records, ordered by exit_time desc."""
        async with self.session_factory() as session:
            stmt = (
                select(PositionORM)
                .where(
                    PositionORM.trader_id == trader_id,
                    PositionORM.status == PositionStatus.CLOSED.value,
                )
                .order_by(PositionORM.exit_time.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_orm_to_position_record(p) for p in result.scalars().all()]

    async def get_full_stats(self, trader_id: str) -> TraderStats:
        """Statistics over every closed position of the trader."""
        try:
            async with self.session_factory() as session:
                stmt = (
                    select(PositionORM)
                    .where(
                        PositionORM.trader_id == trader_id,
                        PositionORM.status == PositionStatus.CLOSED.value,
                    )
                    .order_by(PositionORM.exit_time.asc())
                )
                result = await session.execute(stmt)
                records = [_orm_to_position_record(p) for p in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise PositionStoreError(f"failed to query position statistics: {exc}") from exc
        return build_trader_stats(records)

    async def get_recent_trades(self, trader_id: str, limit: int = 10) -> list[RecentTrade]:
        try:
            records = await self.get_closed_positions(trader_id, limit=limit)
        except SQLAlchemyError as exc:
            raise PositionStoreError(f"failed to query recent trades: {exc}") from exc
        return [to_recent_trade(r) for r in records]

    @staticmethod
    async def _get_for_update(session: AsyncSession, record_id: int) -> PositionORM:
        stmt = select(PositionORM).where(PositionORM.id == record_id)
        result = await session.execute(stmt)
        orm = result.scalar_one_or_none()
        if orm is None:
            raise ValueError(f"Position not found: {record_id}")
        return orm


class DecisionRecordRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def save(
        self,
        trader_id: str,
        cycle_number: int,
        full_decision: FullDecision | None,
        success: bool,
        error_message: str | None = None,
    ) -> int:
        """Persist one decision cycle (successful or not). Returns id."""
        data: dict = {
            "trader_id": trader_id,
            "cycle_number": cycle_number,
            "success": success,
            "error_message": error_message,
        }
        if full_decision is not None:
            data.update(
                system_prompt=full_decision.system_prompt,
                user_prompt=full_decision.user_prompt,
                cot_trace=full_decision.cot_trace,
                raw_response=full_decision.raw_response,
                decisions_json=[d.model_dump() for d in full_decision.decisions],
                ai_request_duration_ms=full_decision.ai_request_duration_ms,
            )

        async with self.session_factory() as session:
            orm = DecisionRecordORM(**data)
            session.add(orm)
            await session.flush()
            await session.refresh(orm)
            record_id = orm.id
            await session.commit()
            logger.info(
                "decision_record_saved", id=record_id, cycle=cycle_number, success=success
            )
            return record_id
