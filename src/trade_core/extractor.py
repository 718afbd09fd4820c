"""Locate and parse the structured decision payload inside model text.

Extraction is an ordered list of named strategies composed with
`first_success`:

    chain-of-thought : reasoning_tag -> before_decision_tag -> before_first_bracket
    payload region   : decision_tag (else the whole text)
    decision array   : fenced_block -> bracket_scan
    nothing found    : fallback "wait" decision
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence

import structlog
from pydantic import TypeAdapter, ValidationError

from trade_core.errors import MalformedPayloadError
from trade_core.models.decision import Action, Decision
from trade_core.sanitizer import normalize_punctuation, sanitize

logger = structlog.get_logger()

RE_REASONING_TAG = re.compile(r"<reasoning>(.*?)</reasoning>", re.DOTALL)
RE_DECISION_TAG = re.compile(r"<decision>(.*?)</decision>", re.DOTALL)
RE_JSON_FENCE = re.compile(r"```json\s*(\[\s*\{.*?\}\s*\])\s*```", re.IGNORECASE | re.DOTALL)
RE_ARRAY_HEAD = re.compile(r"\[\s*\{")
RE_ARRAY_OPEN_SPACE = re.compile(r"^\[\s+\{")
RE_THOUSANDS_SEPARATOR = re.compile(r"[0-9],[0-9]{3}")

DEFAULT_SUMMARY_CHARS = 240
EMPTY_SUMMARY = "model returned no reasoning"
FALLBACK_PREFIX = "no structured decision in model output, entering safe wait; summary: "

Strategy = Callable[[str], "str | None"]

_DECISION_LIST = TypeAdapter(list[Decision])


def first_success(
    strategies: Sequence[tuple[str, Strategy]], text: str
) -> tuple[str, str] | None:
    """Run strategies in order; return (name, result) of the first non-empty result."""
    for name, strategy in strategies:
        result = strategy(text)
        if result:
            return name, result
    return None


# ---------------------------------------------------------------------------
# Chain-of-thought
# ---------------------------------------------------------------------------


def reasoning_tag(text: str) -> str | None:
    match = RE_REASONING_TAG.search(text)
    return match.group(1).strip() if match else None


def before_decision_tag(text: str) -> str | None:
    idx = text.find("<decision>")
    return text[:idx].strip() if idx > 0 else None


def before_first_bracket(text: str) -> str | None:
    idx = text.find("[")
    return text[:idx].strip() if idx > 0 else None


COT_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("reasoning_tag", reasoning_tag),
    ("before_decision_tag", before_decision_tag),
    ("before_first_bracket", before_first_bracket),
)


def extract_cot_trace(response: str) -> str:
    found = first_success(COT_STRATEGIES, response)
    if found is None:
        return response.strip()
    name, cot = found
    logger.debug("cot_extracted", strategy=name, chars=len(cot))
    return cot


# ---------------------------------------------------------------------------
# Decision payload
# ---------------------------------------------------------------------------


def decision_tag(text: str) -> str | None:
    match = RE_DECISION_TAG.search(text)
    return match.group(1).strip() if match else None


def fenced_block(text: str) -> str | None:
    match = RE_JSON_FENCE.search(text)
    return match.group(1).strip() if match else None


def bracket_scan(text: str) -> str | None:
    """First complete `[{ ... }]` span, nested arrays included."""
    for head in RE_ARRAY_HEAD.finditer(text):
        end = find_matching_bracket(text, head.start())
        if end != -1:
            return text[head.start() : end + 1].strip()
    return None


ARRAY_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("fenced_block", fenced_block),
    ("bracket_scan", bracket_scan),
)


def find_matching_bracket(text: str, start: int) -> int:
    """Index of the `]` closing the `[` at `start`, or -1.

    Nested arrays are skipped by depth counting. Brackets inside JSON string
    literals are ignored.
    """
    if start < 0 or start >= len(text) or text[start] != "[":
        return -1

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return i
    return -1


def compact_array_open(text: str) -> str:
    """Normalize an opening `[ {` to `[{`."""
    return RE_ARRAY_OPEN_SPACE.sub("[{", text.strip())


def validate_json_format(payload: str, raw_response: str = "") -> None:
    """Coarse checks before deserializing. Raises MalformedPayloadError."""
    trimmed = payload.strip()

    if not RE_ARRAY_HEAD.match(trimmed):
        if trimmed.startswith("[") and "{" not in trimmed[:20]:
            raise MalformedPayloadError(
                "not a valid decision array (must contain objects {})",
                trimmed[:50],
                raw_response,
            )
        raise MalformedPayloadError(
            "JSON must start with [{ (whitespace allowed)", trimmed[:20], raw_response
        )

    if "~" in payload:
        raise MalformedPayloadError(
            "JSON cannot contain range symbol ~, all numbers must be precise single values",
            payload,
            raw_response,
        )

    match = RE_THOUSANDS_SEPARATOR.search(payload)
    if match:
        raise MalformedPayloadError(
            "JSON numbers cannot contain thousands separator commas",
            payload[match.start() : match.start() + 10],
            raw_response,
        )


def parse_decisions(payload: str, raw_response: str = "") -> list[Decision]:
    try:
        return _DECISION_LIST.validate_json(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        reason = f"JSON parsing failed: {first.get('msg', 'invalid')}"
        if loc:
            reason = f"{reason} at {loc}"
        raise MalformedPayloadError(reason, payload, raw_response) from exc


def fallback_decision(cot_trace: str, summary_chars: int = DEFAULT_SUMMARY_CHARS) -> Decision:
    """Synthetic wait for all symbols when the model produced only prose."""
    reasoning = FALLBACK_PREFIX + (cot_trace.strip() or EMPTY_SUMMARY)
    if len(reasoning) > summary_chars:
        reasoning = reasoning[: summary_chars - 3] + "..."
    return Decision(symbol="ALL", action=Action.WAIT.value, reasoning=reasoning)


def extract_decisions(
    response: str, summary_chars: int = DEFAULT_SUMMARY_CHARS
) -> list[Decision]:
    """Recover the decision list from a model response.

    Returns a single fallback "wait" decision when no object array exists.
    Raises MalformedPayloadError when an array is found but is not usable.
    """
    text = sanitize(response).strip()

    region = decision_tag(text)
    if region is None:
        logger.info("decision_tag_missing", action="searching full text")
        region = text
    region = normalize_punctuation(region)

    found = first_success(ARRAY_STRATEGIES, region)
    if found is None:
        logger.warning("decision_fallback_wait", reason="no JSON decision array in response")
        return [fallback_decision(extract_cot_trace(text), summary_chars)]

    strategy, payload = found
    payload = normalize_punctuation(compact_array_open(payload))
    validate_json_format(payload, response)
    decisions = parse_decisions(payload, response)

    logger.info("decisions_extracted", strategy=strategy, count=len(decisions))
    return decisions
