"""One decision cycle: model call, audit record, order fan-out; ai:prompts handler."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from trade_core.errors import TradeCoreError
from trade_core.models.decision import DecisionRequest, FullDecision
from trade_core.models.messages import (
    AIDecisionMessage,
    StreamMessage,
    SystemAlertMessage,
    TradeOrderMessage,
)
from trade_core.redis_client import ALERTS_STREAM, DECISIONS_STREAM, ORDERS_STREAM

if TYPE_CHECKING:
    from trade_core.config import Settings
    from trade_core.db.repository import DecisionRecordRepository
    from trade_core.llm_client import DecisionClient
    from trade_core.redis_client import RedisClient

logger = structlog.get_logger()


class DecisionService:
    def __init__(
        self,
        settings: Settings,
        client: DecisionClient,
        redis: RedisClient,
        decision_repo: DecisionRecordRepository | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.redis = redis
        self.decision_repo = decision_repo
        self.cycle_number = 0

    async def run_cycle(
        self,
        system_prompt: str,
        user_prompt: str,
        account_equity: float,
        btc_eth_leverage: int | None = None,
        altcoin_leverage: int | None = None,
    ) -> FullDecision:
        """Ask the model, record the outcome, publish orders.

        Failed cycles are recorded with whatever was recovered, alerted on
        system:alerts, then re-raised. No order is published for a failed batch.
        """
        self.cycle_number += 1
        cycle = self.cycle_number

        try:
            full = await self.client.decide(
                system_prompt,
                user_prompt,
                account_equity,
                btc_eth_leverage=btc_eth_leverage,
                altcoin_leverage=altcoin_leverage,
            )
        except TradeCoreError as exc:
            error = str(exc)
            logger.warning(
                "decision_cycle_failed",
                cycle=cycle,
                error_type=type(exc).__name__,
                error=error.splitlines()[0],
            )
            await self._record(cycle, exc.partial, success=False, error_message=error)
            await self.redis.publish(
                ALERTS_STREAM,
                SystemAlertMessage(
                    payload={
                        "reason": f"decision cycle {cycle} failed: {error.splitlines()[0]}",
                        "severity": "WARNING",
                        "trader_id": self.settings.TRADER_ID,
                    },
                ),
            )
            raise

        await self._record(cycle, full, success=True)

        orders = 0
        for decision in full.decisions:
            if not (decision.is_open or decision.is_close):
                continue
            order_msg = TradeOrderMessage(
                payload={
                    "trader_id": self.settings.TRADER_ID,
                    "cycle_number": cycle,
                    **decision.model_dump(mode="json"),
                },
            )
            await self.redis.publish(ORDERS_STREAM, order_msg)
            orders += 1

        decision_msg = AIDecisionMessage(
            payload={
                "trader_id": self.settings.TRADER_ID,
                "cycle_number": cycle,
                **full.model_dump(
                    mode="json", exclude={"system_prompt", "user_prompt", "raw_response"}
                ),
            },
        )
        await self.redis.publish(DECISIONS_STREAM, decision_msg)

        logger.info(
            "decision_cycle_complete",
            cycle=cycle,
            decisions=len(full.decisions),
            orders=orders,
            duration_ms=full.ai_request_duration_ms,
        )
        return full

    async def handle(self, stream: str, message: StreamMessage) -> FullDecision | None:
        """ai:prompts callback: one decision cycle per request.

        Malformed requests are dropped. A failed cycle is already recorded and
        alerted by run_cycle, so its entry is acknowledged as well. Redis and
        database errors propagate, leaving the entry pending.
        """
        try:
            request = DecisionRequest.model_validate(message.payload)
        except ValidationError as exc:
            logger.warning(
                "decision_request_invalid",
                msg_id=message.msg_id,
                errors=[e["msg"] for e in exc.errors()],
            )
            return None

        try:
            return await self.run_cycle(
                request.system_prompt,
                request.user_prompt,
                request.account_equity,
                btc_eth_leverage=request.btc_eth_leverage,
                altcoin_leverage=request.altcoin_leverage,
            )
        except TradeCoreError:
            return None

    async def _record(
        self,
        cycle: int,
        full: FullDecision | None,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        if self.decision_repo is None:
            return
        await self.decision_repo.save(
            trader_id=self.settings.TRADER_ID,
            cycle_number=cycle,
            full_decision=full,
            success=success,
            error_message=error_message,
        )
