"""Decision, FullDecision, DecisionRequest Pydantic models."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Action(str, enum.Enum):
    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"
    HOLD = "hold"
    WAIT = "wait"


VALID_ACTIONS = {a.value for a in Action}
OPEN_ACTIONS = {Action.OPEN_LONG.value, Action.OPEN_SHORT.value}
CLOSE_ACTIONS = {Action.CLOSE_LONG.value, Action.CLOSE_SHORT.value}


class Decision(BaseModel):
    """One trading instruction for one symbol, as emitted by the model."""

    model_config = ConfigDict(allow_inf_nan=False)

    symbol: str = ""
    action: str = ""  # kept raw so unknown actions reach the validator

    # Opening parameters
    leverage: int = 0
    position_size_usd: float = 0.0
    stop_loss: float = 0.0
    take_profit: float = 0.0

    # Advisory
    confidence: int = 0
    risk_usd: float = 0.0
    reasoning: str = ""

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: object) -> object:
        """`null` fields fall back to their defaults."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @property
    def is_open(self) -> bool:
        return self.action in OPEN_ACTIONS

    @property
    def is_close(self) -> bool:
        return self.action in CLOSE_ACTIONS


class FullDecision(BaseModel):
    system_prompt: str = ""
    user_prompt: str = ""
    cot_trace: str = ""
    decisions: list[Decision] = []
    raw_response: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ai_request_duration_ms: int | None = None


class DecisionRequest(BaseModel):
    """Prompt pair and account context for one decision cycle (ai:prompts payload).

    Leverage ceilings left unset fall back to Settings.
    """

    model_config = ConfigDict(allow_inf_nan=False)

    system_prompt: str
    user_prompt: str
    account_equity: float = Field(gt=0)
    btc_eth_leverage: int | None = Field(default=None, gt=0)
    altcoin_leverage: int | None = Field(default=None, gt=0)
