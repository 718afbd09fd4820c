"""Error hierarchy for the decision pipeline and position reconciliation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trade_core.models.decision import Decision, FullDecision

__all__ = [
    "TradeCoreError",
    "DecisionParseError",
    "MalformedPayloadError",
    "DecisionValidationError",
    "InvalidDecisionError",
    "LLMCallError",
    "PositionStoreError",
]


class TradeCoreError(Exception):
    """Base error. `partial` holds whatever FullDecision could be recovered."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.partial: FullDecision | None = None


class DecisionParseError(TradeCoreError):
    """The model response could not be turned into a decision list."""


class MalformedPayloadError(DecisionParseError):
    """Decision payload found but rejected as structurally invalid."""

    def __init__(self, reason: str, snippet: str, raw_response: str) -> None:
        super().__init__(f"{reason}\nJSON content: {snippet}")
        self.reason = reason
        self.snippet = snippet
        self.raw_response = raw_response


class DecisionValidationError(TradeCoreError):
    """A decision batch failed the safety rules."""


class InvalidDecisionError(DecisionValidationError):
    """Decision #index (1-based) violated `rule`."""

    def __init__(
        self,
        index: int,
        rule: str,
        reason: str,
        decision: Decision,
        processed: list[Decision] | None = None,
    ) -> None:
        super().__init__(f"decision #{index} validation failed [{rule}]: {reason}")
        self.index = index
        self.rule = rule
        self.reason = reason
        self.decision = decision
        self.processed = processed or []


class LLMCallError(TradeCoreError):
    """The model call failed or timed out."""


class PositionStoreError(TradeCoreError):
    """The position store could not be read or written."""
