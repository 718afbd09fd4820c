"""Anthropic AsyncClient wrapper producing validated FullDecisions."""

from __future__ import annotations

import asyncio
import time

import structlog
from anthropic import AsyncAnthropic
from tenacity import retry, stop_after_attempt, wait_exponential

from trade_core.config import Settings
from trade_core.errors import LLMCallError, TradeCoreError
from trade_core.models.decision import FullDecision
from trade_core.pipeline import parse_full_decision_response
from trade_core.validator import ValidationLimits

logger = structlog.get_logger()


class DecisionClient:
    """Sends a prepared prompt pair and runs the reply through the decision pipeline.

    Prompt construction belongs to the caller.
    """

    def __init__(self, settings: Settings, limits: ValidationLimits | None = None) -> None:
        self.settings = settings
        self.limits = limits or ValidationLimits.from_settings(settings)

    async def decide(
        self,
        system_prompt: str,
        user_prompt: str,
        account_equity: float,
        btc_eth_leverage: int | None = None,
        altcoin_leverage: int | None = None,
    ) -> FullDecision:
        """One model round-trip. Leverage ceilings default to Settings.

        Raises LLMCallError, DecisionParseError or DecisionValidationError; the
        latter two carry `partial` with prompts and timing filled in.
        """
        start = time.monotonic()
        text = await self._call(system_prompt, user_prompt)
        duration_ms = int((time.monotonic() - start) * 1000)

        context = {
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "ai_request_duration_ms": duration_ms,
        }
        try:
            full = parse_full_decision_response(
                text,
                account_equity,
                btc_eth_leverage if btc_eth_leverage is not None else self.settings.BTC_ETH_LEVERAGE,
                altcoin_leverage if altcoin_leverage is not None else self.settings.ALTCOIN_LEVERAGE,
                limits=self.limits,
                summary_chars=self.settings.FALLBACK_SUMMARY_CHARS,
            )
        except TradeCoreError as exc:
            if exc.partial is not None:
                exc.partial = exc.partial.model_copy(update=context)
            raise

        return full.model_copy(update=context)

    async def _call(self, system: str, user: str) -> str:
        """API call bounded by MAX_AI_TIMEOUT_SECONDS across all retries."""
        timeout = self.settings.MAX_AI_TIMEOUT_SECONDS
        try:
            response = await asyncio.wait_for(self._call_api(system, user), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("llm_timeout", timeout=timeout)
            raise LLMCallError(f"model call timed out after {timeout}s") from exc
        except Exception as exc:
            logger.warning("llm_error", error=str(exc))
            raise LLMCallError(f"model call failed: {exc}") from exc

        if not response.content:
            raise LLMCallError("model returned an empty response")
        text = response.content[0].text
        logger.info("llm_call", model=self.settings.DECISION_MODEL, chars=len(text))
        return text

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10), reraise=True)
    async def _call_api(self, system: str, user: str):
        client = AsyncAnthropic(api_key=self.settings.ANTHROPIC_API_KEY)
        return await client.messages.create(
            model=self.settings.DECISION_MODEL,
            max_tokens=self.settings.DECISION_MAX_TOKENS,
            temperature=self.settings.DECISION_TEMPERATURE,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
