"""Normalize raw model output before any structural parsing.

Models regularly emit zero-width characters, a BOM, curly quotes, or JSON
written with full-width / CJK punctuation. A strict JSON parser rejects all of
these, so they are mapped to their ASCII equivalents. Every replacement target
is plain ASCII, which keeps `sanitize` idempotent.
"""

from __future__ import annotations

# Zero-width space / non-joiner / joiner, BOM
INVISIBLE_CHARS = "\u200b\u200c\u200d\ufeff"

PUNCTUATION_MAP = {
    # Curly quotes
    "\u201c": '"',
    "\u201d": '"',
    "\u2018": "'",
    "\u2019": "'",
    # Full-width brackets, braces, colon, comma
    "\uff3b": "[",
    "\uff3d": "]",
    "\uff5b": "{",
    "\uff5d": "}",
    "\uff1a": ":",
    "\uff0c": ",",
    # CJK lenticular / tortoise-shell brackets, ideographic comma
    "\u3010": "[",
    "\u3011": "]",
    "\u3014": "[",
    "\u3015": "]",
    "\u3001": ",",
    # Ideographic space
    "\u3000": " ",
}

_INVISIBLE_TABLE = str.maketrans("", "", INVISIBLE_CHARS)
_PUNCTUATION_TABLE = str.maketrans(PUNCTUATION_MAP)


def remove_invisible(text: str) -> str:
    """Drop zero-width characters and byte-order marks."""
    return text.translate(_INVISIBLE_TABLE)


def normalize_punctuation(text: str) -> str:
    """Map curly quotes and full-width/CJK punctuation to ASCII."""
    return text.translate(_PUNCTUATION_TABLE)


def sanitize(text: str) -> str:
    return normalize_punctuation(remove_invisible(text))
