"""PositionIdentity, PositionRecord, TradeFill, TraderStats Pydantic models."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PositionSide(str, enum.Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class PositionStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class PositionIdentity(BaseModel):
    """(trader, symbol, side) key; at most one OPEN record per identity."""

    model_config = ConfigDict(frozen=True)

    trader_id: str
    symbol: str
    side: PositionSide

    @field_validator("side", mode="before")
    @classmethod
    def normalize_side(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value


class PositionRecord(BaseModel):
    id: int | None = None
    trader_id: str
    exchange_id: str = ""
    exchange_type: str = ""
    exchange_position_id: str = ""
    symbol: str
    side: PositionSide
    quantity: float
    entry_price: float
    entry_order_id: str = ""
    entry_time: datetime | None = None
    exit_price: float = 0.0
    exit_order_id: str = ""
    exit_time: datetime | None = None
    realized_pnl: float = 0.0
    fee: float = 0.0
    leverage: int = 1
    status: PositionStatus = PositionStatus.OPEN
    source: str = ""
    close_reason: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def identity(self) -> PositionIdentity:
        return PositionIdentity(trader_id=self.trader_id, symbol=self.symbol, side=self.side)


class TradeFill(BaseModel):
    """Executed order reported by the execution/exchange layer."""

    trader_id: str
    exchange_id: str = ""
    exchange_type: str = ""
    symbol: str
    side: PositionSide
    action: str  # open_long, open_short, close_long, close_short
    quantity: float
    price: float
    fee: float = 0.0
    realized_pnl: float = 0.0
    trade_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    order_id: str = ""

    @field_validator("side", mode="before")
    @classmethod
    def normalize_side(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @property
    def identity(self) -> PositionIdentity:
        return PositionIdentity(trader_id=self.trader_id, symbol=self.symbol, side=self.side)


class TraderStats(BaseModel):
    total_trades: int = 0
    win_trades: int = 0
    loss_trades: int = 0
    win_rate: float = 0.0  # percent
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    total_pnl: float = 0.0
    total_fee: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    max_drawdown_pct: float = 0.0


class RecentTrade(BaseModel):
    symbol: str
    side: str  # long, short
    entry_price: float
    exit_price: float
    realized_pnl: float
    pnl_pct: float = 0.0
    exit_time: datetime | None = None
