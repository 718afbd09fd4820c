"""trade:fills stream -> PositionReconciler."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from trade_core.models.messages import StreamMessage
from trade_core.models.position import PositionRecord, TradeFill
from trade_core.reconciler import PositionReconciler
from trade_core.redis_client import FILLS_STREAM

logger = structlog.get_logger()


class FillConsumer:
    def __init__(
        self,
        reconciler: PositionReconciler,
        trader_id: str,
        exchange_id: str = "",
        exchange_type: str = "",
    ) -> None:
        self.reconciler = reconciler
        self.defaults = {
            "trader_id": trader_id,
            "exchange_id": exchange_id,
            "exchange_type": exchange_type,
        }

    async def handle(self, stream: str, message: StreamMessage) -> PositionRecord | None:
        """trade:fills handler for RedisClient.consume.

        Malformed fills are logged and dropped so they are acknowledged.
        Store failures propagate, leaving the entry pending for redelivery.
        """
        if stream != FILLS_STREAM:
            logger.debug("fill_consumer_skip", stream=stream, type=message.type)
            return None

        try:
            fill = TradeFill.model_validate({**self.defaults, **message.payload})
        except ValidationError as exc:
            logger.warning(
                "fill_payload_invalid",
                msg_id=message.msg_id,
                errors=[e["msg"] for e in exc.errors()],
            )
            return None

        logger.debug(
            "fill_received",
            symbol=fill.symbol,
            side=fill.side.value,
            action=fill.action,
            quantity=fill.quantity,
            order_id=fill.order_id,
        )
        return await self.reconciler.process_trade(fill)
