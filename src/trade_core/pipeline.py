"""Raw model response -> validated FullDecision."""

from __future__ import annotations

import structlog

from trade_core.errors import DecisionParseError, DecisionValidationError
from trade_core.extractor import DEFAULT_SUMMARY_CHARS, extract_cot_trace, extract_decisions
from trade_core.models.decision import FullDecision
from trade_core.validator import DecisionValidator, ValidationLimits

logger = structlog.get_logger()


def parse_full_decision_response(
    response: str,
    account_equity: float,
    btc_eth_leverage: int,
    altcoin_leverage: int,
    limits: ValidationLimits | None = None,
    summary_chars: int = DEFAULT_SUMMARY_CHARS,
) -> FullDecision:
    """Extract the chain-of-thought and decisions, then validate them.

    On failure the raised error carries `partial`: a FullDecision with the
    chain-of-thought and whatever decisions were recovered, for audit logging.
    """
    cot_trace = extract_cot_trace(response)

    try:
        decisions = extract_decisions(response, summary_chars=summary_chars)
    except DecisionParseError as exc:
        logger.warning("decision_extraction_failed", error=str(exc).splitlines()[0])
        exc.partial = FullDecision(cot_trace=cot_trace, decisions=[], raw_response=response)
        raise

    try:
        DecisionValidator(limits).validate(
            decisions, account_equity, btc_eth_leverage, altcoin_leverage
        )
    except DecisionValidationError as exc:
        exc.partial = FullDecision(
            cot_trace=cot_trace, decisions=decisions, raw_response=response
        )
        raise

    return FullDecision(cot_trace=cot_trace, decisions=decisions, raw_response=response)
