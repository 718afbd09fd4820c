"""SQLAlchemy ORM models for trade-core tables."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class PositionORM(Base):
    __tablename__ = "trader_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    trader_id: Mapped[str] = mapped_column(String(64), nullable=False)
    exchange_id: Mapped[str] = mapped_column(String(32), default="")
    exchange_type: Mapped[str] = mapped_column(String(32), default="")
    exchange_position_id: Mapped[str] = mapped_column(String(128), default="")
    symbol: Mapped[str] = mapped_column(String(30), nullable=False)
    side: Mapped[str] = mapped_column(
        String(5),
        CheckConstraint("side IN ('LONG', 'SHORT')"),
        nullable=False,
    )
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    entry_order_id: Mapped[str] = mapped_column(String(64), default="")
    entry_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    exit_price: Mapped[float] = mapped_column(Float, default=0.0)
    exit_order_id: Mapped[str] = mapped_column(String(64), default="")
    exit_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    realized_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    fee: Mapped[float] = mapped_column(Float, default=0.0)
    leverage: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("status IN ('OPEN', 'CLOSED')"),
        default="OPEN",
    )
    source: Mapped[str] = mapped_column(String(20), default="")
    close_reason: Mapped[str] = mapped_column(String(30), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_positions_trader", "trader_id"),
        Index("idx_positions_status", "trader_id", "status"),
        Index("idx_positions_identity", "trader_id", "symbol", "side", "status"),
        Index("idx_positions_entry", entry_time.desc()),
        Index("idx_positions_exit", exit_time.desc()),
    )


class DecisionRecordORM(Base):
    __tablename__ = "decision_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    trader_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cycle_number: Mapped[int] = mapped_column(Integer, default=0)
    system_prompt: Mapped[str | None] = mapped_column(Text)
    user_prompt: Mapped[str | None] = mapped_column(Text)
    cot_trace: Mapped[str | None] = mapped_column(Text)
    raw_response: Mapped[str | None] = mapped_column(Text)
    decisions_json: Mapped[list | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"))
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    ai_request_duration_ms: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_decision_trader", "trader_id"),
        Index("idx_decision_created", created_at.desc()),
    )
