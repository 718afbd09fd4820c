"""Hard safety rules for model decisions: the model CANNOT override these.

| Rule               | Threshold                                  | Action                |
|--------------------|--------------------------------------------|-----------------------|
| Valid action       | open/close long/short, hold, wait          | REJECT                |
| Leverage           | > 0                                        | REJECT                |
| Leverage ceiling   | BTC/ETH vs altcoin ceiling                 | CLAMP to ceiling      |
| Position size      | > 0                                        | REJECT                |
| Min position size  | 60 USD BTC/ETH, 12 USD altcoin             | REJECT                |
| Max position value | 10x / 1.5x equity, +1% tolerance           | REJECT                |
| Price levels       | stop loss and take profit > 0              | REJECT                |
| SL/TP ordering     | long: SL < TP, short: SL > TP              | REJECT                |
| Min R:R ratio      | 3.0 at the heuristic entry price           | REJECT                |

Only open actions are checked past the action rule. Batches are fail-fast:
the first rejected decision aborts validation of the remaining ones.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from trade_core.errors import InvalidDecisionError
from trade_core.models.decision import VALID_ACTIONS, Action, Decision

if TYPE_CHECKING:
    from trade_core.config import Settings

logger = structlog.get_logger()


class RuleCheck(BaseModel):
    passed: bool
    rule: str
    reason: str


class ValidationLimits(BaseModel):
    btc_eth_symbols: frozenset[str] = frozenset({"BTCUSDT", "ETHUSDT"})
    min_position_usd_btc_eth: float = 60.0
    min_position_usd_altcoin: float = 12.0
    max_position_equity_mult_btc_eth: float = 10.0
    max_position_equity_mult_altcoin: float = 1.5
    position_value_tolerance_pct: float = 0.01
    min_rr_ratio: float = 3.0
    # Heuristic entry: this far from the stop loss towards the take profit
    rr_entry_fraction: float = 0.2

    @classmethod
    def from_settings(cls, settings: Settings) -> ValidationLimits:
        return cls(
            btc_eth_symbols=frozenset(settings.BTC_ETH_SYMBOLS),
            min_position_usd_btc_eth=settings.MIN_POSITION_USD_BTC_ETH,
            min_position_usd_altcoin=settings.MIN_POSITION_USD_ALTCOIN,
            max_position_equity_mult_btc_eth=settings.MAX_POSITION_EQUITY_MULT_BTC_ETH,
            max_position_equity_mult_altcoin=settings.MAX_POSITION_EQUITY_MULT_ALTCOIN,
            position_value_tolerance_pct=settings.POSITION_VALUE_TOLERANCE_PCT,
            min_rr_ratio=settings.MIN_RR_RATIO,
            rr_entry_fraction=settings.RR_ENTRY_FRACTION,
        )


class SymbolProfile(BaseModel):
    """Ceilings that apply to one symbol class."""

    is_btc_eth: bool
    max_leverage: int
    min_position_usd: float
    max_position_value: float


class RiskReward(BaseModel):
    entry_price: float
    risk_pct: float
    reward_pct: float
    ratio: float


def estimate_risk_reward(
    action: str, stop_loss: float, take_profit: float, entry_fraction: float = 0.2
) -> RiskReward:
    """Risk/reward at an assumed entry `entry_fraction` of the way from SL to TP."""
    if action == Action.OPEN_LONG.value:
        entry = stop_loss + (take_profit - stop_loss) * entry_fraction
        risk_pct = (entry - stop_loss) / entry * 100
        reward_pct = (take_profit - entry) / entry * 100
    else:
        entry = stop_loss - (stop_loss - take_profit) * entry_fraction
        risk_pct = (stop_loss - entry) / entry * 100
        reward_pct = (entry - take_profit) / entry * 100

    ratio = reward_pct / risk_pct if risk_pct > 0 else 0.0
    return RiskReward(entry_price=entry, risk_pct=risk_pct, reward_pct=reward_pct, ratio=ratio)


class DecisionValidator:
    def __init__(self, limits: ValidationLimits | None = None) -> None:
        self.limits = limits or ValidationLimits()

    def validate(
        self,
        decisions: list[Decision],
        account_equity: float,
        btc_eth_leverage: int,
        altcoin_leverage: int,
    ) -> list[Decision]:
        """Validate in order, auto-correcting in place. Raises on the first rejection."""
        for index, decision in enumerate(decisions, start=1):
            check = self.validate_decision(
                decision, account_equity, btc_eth_leverage, altcoin_leverage
            )
            if not check.passed:
                logger.warning(
                    "decision_rejected",
                    index=index,
                    symbol=decision.symbol,
                    action=decision.action,
                    rule=check.rule,
                    reason=check.reason,
                )
                raise InvalidDecisionError(
                    index=index,
                    rule=check.rule,
                    reason=check.reason,
                    decision=decision,
                    processed=decisions[: index - 1],
                )
        return decisions

    def validate_decision(
        self,
        decision: Decision,
        account_equity: float,
        btc_eth_leverage: int,
        altcoin_leverage: int,
    ) -> RuleCheck:
        """Run the rules for one decision. May clamp `decision.leverage`."""
        if decision.action not in VALID_ACTIONS:
            return RuleCheck(
                passed=False, rule="action", reason=f"invalid action: {decision.action!r}"
            )

        # hold / wait / close_* carry no numeric parameters worth checking
        if not decision.is_open:
            return RuleCheck(passed=True, rule="action", reason="OK")

        profile = self.symbol_profile(
            decision.symbol, account_equity, btc_eth_leverage, altcoin_leverage
        )
        for check in (
            self._check_leverage,
            self._check_position_size,
            self._check_price_levels,
            self._check_sl_tp_order,
            self._check_risk_reward,
        ):
            result = check(decision, profile)
            if not result.passed:
                return result

        return RuleCheck(passed=True, rule="all", reason="OK")

    def symbol_profile(
        self,
        symbol: str,
        account_equity: float,
        btc_eth_leverage: int,
        altcoin_leverage: int,
    ) -> SymbolProfile:
        if symbol in self.limits.btc_eth_symbols:
            return SymbolProfile(
                is_btc_eth=True,
                max_leverage=btc_eth_leverage,
                min_position_usd=self.limits.min_position_usd_btc_eth,
                max_position_value=account_equity * self.limits.max_position_equity_mult_btc_eth,
            )
        return SymbolProfile(
            is_btc_eth=False,
            max_leverage=altcoin_leverage,
            min_position_usd=self.limits.min_position_usd_altcoin,
            max_position_value=account_equity * self.limits.max_position_equity_mult_altcoin,
        )

    def _check_leverage(self, decision: Decision, profile: SymbolProfile) -> RuleCheck:
        if decision.leverage <= 0:
            return RuleCheck(
                passed=False,
                rule="leverage",
                reason=f"leverage must be greater than 0, got {decision.leverage}",
            )
        if decision.leverage > profile.max_leverage:
            logger.warning(
                "leverage_clamped",
                symbol=decision.symbol,
                requested=decision.leverage,
                ceiling=profile.max_leverage,
            )
            decision.leverage = profile.max_leverage
        return RuleCheck(passed=True, rule="leverage", reason="OK")

    def _check_position_size(self, decision: Decision, profile: SymbolProfile) -> RuleCheck:
        size = decision.position_size_usd
        if size <= 0:
            return RuleCheck(
                passed=False,
                rule="position_size",
                reason=f"position size must be greater than 0, got {size:.2f}",
            )

        if size < profile.min_position_usd:
            return RuleCheck(
                passed=False,
                rule="min_position_size",
                reason=(
                    f"{decision.symbol} position size too small ({size:.2f} USDT), "
                    f"must be >= {profile.min_position_usd:.2f} USDT"
                ),
            )

        tolerance = profile.max_position_value * self.limits.position_value_tolerance_pct
        if size > profile.max_position_value + tolerance:
            klass = "BTC/ETH" if profile.is_btc_eth else "altcoin"
            mult = (
                self.limits.max_position_equity_mult_btc_eth
                if profile.is_btc_eth
                else self.limits.max_position_equity_mult_altcoin
            )
            return RuleCheck(
                passed=False,
                rule="max_position_value",
                reason=(
                    f"{klass} position value cannot exceed {profile.max_position_value:.0f} USDT "
                    f"({mult:g}x account equity), got {size:.0f}"
                ),
            )
        return RuleCheck(passed=True, rule="position_size", reason="OK")

    def _check_price_levels(self, decision: Decision, profile: SymbolProfile) -> RuleCheck:
        if decision.stop_loss <= 0 or decision.take_profit <= 0:
            return RuleCheck(
                passed=False,
                rule="price_levels",
                reason=(
                    "stop loss and take profit must be greater than 0, got "
                    f"SL={decision.stop_loss} TP={decision.take_profit}"
                ),
            )
        return RuleCheck(passed=True, rule="price_levels", reason="OK")

    def _check_sl_tp_order(self, decision: Decision, profile: SymbolProfile) -> RuleCheck:
        sl, tp = decision.stop_loss, decision.take_profit
        if decision.action == Action.OPEN_LONG.value and sl >= tp:
            return RuleCheck(
                passed=False,
                rule="sl_tp_order",
                reason=f"long stop loss ({sl}) must be less than take profit ({tp})",
            )
        if decision.action == Action.OPEN_SHORT.value and sl <= tp:
            return RuleCheck(
                passed=False,
                rule="sl_tp_order",
                reason=f"short stop loss ({sl}) must be greater than take profit ({tp})",
            )
        return RuleCheck(passed=True, rule="sl_tp_order", reason="OK")

    def _check_risk_reward(self, decision: Decision, profile: SymbolProfile) -> RuleCheck:
        rr = estimate_risk_reward(
            decision.action,
            decision.stop_loss,
            decision.take_profit,
            self.limits.rr_entry_fraction,
        )
        if rr.ratio < self.limits.min_rr_ratio:
            return RuleCheck(
                passed=False,
                rule="risk_reward",
                reason=(
                    f"risk/reward ratio too low ({rr.ratio:.2f}:1), must be "
                    f">= {self.limits.min_rr_ratio:.1f}:1 "
                    f"[risk: {rr.risk_pct:.2f}% reward: {rr.reward_pct:.2f}%] "
                    f"[entry: {rr.entry_price:.2f} stop loss: {decision.stop_loss:.2f} "
                    f"take profit: {decision.take_profit:.2f}]"
                ),
            )
        return RuleCheck(passed=True, rule="risk_reward", reason=f"R:R {rr.ratio:.2f}")


def validate_decisions(
    decisions: list[Decision],
    account_equity: float,
    btc_eth_leverage: int,
    altcoin_leverage: int,
    limits: ValidationLimits | None = None,
) -> list[Decision]:
    return DecisionValidator(limits).validate(
        decisions, account_equity, btc_eth_leverage, altcoin_leverage
    )
