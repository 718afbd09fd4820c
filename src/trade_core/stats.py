"""Performance statistics over closed position records."""

from __future__ import annotations

import math
from collections.abc import Iterable

from trade_core.models.position import (
    PositionRecord,
    PositionSide,
    PositionStatus,
    RecentTrade,
    TraderStats,
)


def calculate_sharpe_ratio(pnls: list[float]) -> float:
    """Simplified Sharpe: mean / sample std of per-trade PnL."""
    if len(pnls) < 2:
        return 0.0
    mean_pnl = sum(pnls) / len(pnls)
    variance = sum((p - mean_pnl) ** 2 for p in pnls) / (len(pnls) - 1)
    std_pnl = math.sqrt(variance) if variance > 0 else 0.0
    return mean_pnl / std_pnl if std_pnl > 0 else 0.0


def calculate_max_drawdown_pct(pnls: list[float]) -> float:
    """Largest drop from a cumulative-PnL peak, as % of that peak."""
    cumulative = 0.0
    peak = 0.0
    max_dd = 0.0
    for p in pnls:
        cumulative += p
        if cumulative > peak:
            peak = cumulative
        if peak > 0:
            dd = (peak - cumulative) / peak * 100
            if dd > max_dd:
                max_dd = dd
    return max_dd


def build_trader_stats(records: Iterable[PositionRecord]) -> TraderStats:
    """Aggregate CLOSED records, oldest exit first. Open records are skipped."""
    closed = [r for r in records if r.status == PositionStatus.CLOSED]
    closed.sort(key=lambda r: r.exit_time or r.updated_at)

    stats = TraderStats()
    pnls: list[float] = []
    total_win = 0.0
    total_loss = 0.0

    for record in closed:
        pnl = record.realized_pnl
        stats.total_trades += 1
        stats.total_pnl += pnl
        stats.total_fee += record.fee
        pnls.append(pnl)
        if pnl > 0:
            stats.win_trades += 1
            total_win += pnl
        elif pnl < 0:
            stats.loss_trades += 1
            total_loss += -pnl

    if stats.total_trades > 0:
        stats.win_rate = stats.win_trades / stats.total_trades * 100
    if total_loss > 0:
        stats.profit_factor = total_win / total_loss
    if stats.win_trades > 0:
        stats.avg_win = total_win / stats.win_trades
    if stats.loss_trades > 0:
        stats.avg_loss = total_loss / stats.loss_trades

    stats.sharpe_ratio = calculate_sharpe_ratio(pnls)
    stats.max_drawdown_pct = calculate_max_drawdown_pct(pnls)
    return stats


def to_recent_trade(record: PositionRecord) -> RecentTrade:
    side = "long" if record.side == PositionSide.LONG else "short"
    pnl_pct = 0.0
    if record.entry_price > 0:
        move = (record.exit_price - record.entry_price) / record.entry_price * 100
        if side == "short":
            move = -move
        pnl_pct = move * (record.leverage or 1)
    return RecentTrade(
        symbol=record.symbol,
        side=side,
        entry_price=record.entry_price,
        exit_price=record.exit_price,
        realized_pnl=record.realized_pnl,
        pnl_pct=pnl_pct,
        exit_time=record.exit_time,
    )
