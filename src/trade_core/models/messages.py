"""Redis Stream message schemas."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class StreamMessage(BaseModel):
    """Envelope for every stream entry, stored as one JSON `data` field."""

    msg_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = ""
    type: str = ""
    payload: dict = {}
    metadata: dict = {}

    def to_redis(self) -> dict[str, str]:
        """Serialize to flat dict for XADD."""
        return {"data": self.model_dump_json()}

    @classmethod
    def from_redis(cls, data: dict[bytes | str, bytes | str]) -> StreamMessage:
        """Deserialize from an XREADGROUP / XREVRANGE entry."""
        raw = data.get(b"data") or data.get("data")
        if raw is None:
            raise ValueError("stream entry has no 'data' field")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls.model_validate_json(raw)


class TradeFillMessage(StreamMessage):
    """Published by the execution layer to trade:fills. Payload = TradeFill fields."""

    source: str = "execution"
    type: str = "trade_fill"


class DecisionRequestMessage(StreamMessage):
    """Published to ai:prompts by the prompt builder. Payload = DecisionRequest fields."""

    source: str = "prompt_builder"
    type: str = "decision_request"


class TradeOrderMessage(StreamMessage):
    """Published to trade:orders, one per actionable validated decision."""

    source: str = "trade_core"
    type: str = "trade_order"


class AIDecisionMessage(StreamMessage):
    """Published to ai:decisions once per decision cycle."""

    source: str = "trade_core"
    type: str = "ai_decision"


class SystemAlertMessage(StreamMessage):
    """Published to system:alerts by any component."""

    source: str = "trade_core"
    type: str = "system_alert"
