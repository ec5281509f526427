"""Description clean-up helpers: whitespace collapsing and merchant extraction."""

from __future__ import annotations

import re

_WS_RE = re.compile(r"\s+")

# Payment-processor prefixes that precede the real merchant name.
_PROCESSOR_PREFIXES: tuple[re.Pattern[str], ...] = (
    re.compile(r"^SQ\s*\*\s*", re.IGNORECASE),
    re.compile(r"^TST\s*\*\s*", re.IGNORECASE),
    re.compile(r"^PAR\s*\*\s*", re.IGNORECASE),
    re.compile(r"^PY\s*\*\s*", re.IGNORECASE),
    re.compile(r"^AMAZON\s+MKTPL?\s*\*\s*", re.IGNORECASE),
    re.compile(r"^AMZN\s+MKTP\s+US\s*\*?\s*", re.IGNORECASE),
)
_TRAILING_PHONE_RE = re.compile(r"\s+\(?\d{3}\)?[-.\s]?\d{3}-\d{4}.*$")
_TRAILING_STATE_RE = re.compile(r"\s+[A-Z]{2}$")
_TRAILING_NULL_RE = re.compile(r"\s+null\b.*$", re.IGNORECASE)
# Column gap, or a mid-string state code followed by more text.
_SPLIT_RE = re.compile(r"\s{2,}|\s+[A-Z]{2}\s+(?=\S)")


def collapse_whitespace(text: str | None) -> str:
    """Trim and replace internal whitespace runs with a single space."""

    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()


def extract_merchant(description: str | None) -> str:
    """Best-effort merchant name from a raw bank description.

    Strips processor prefixes (``SQ *``, ``TST*``...), trailing phone numbers
    and trailing state codes, then keeps the first column-like segment. Falls
    back to the collapsed description when nothing sensible remains.
    """

    raw = (description or "").strip()
    if not raw:
        return ""

    text = raw
    for prefix in _PROCESSOR_PREFIXES:
        text = prefix.sub("", text, count=1)
    text = _TRAILING_NULL_RE.sub("", text)
    text = _TRAILING_PHONE_RE.sub("", text)
    text = _TRAILING_STATE_RE.sub("", text.rstrip())

    first = _SPLIT_RE.split(text, maxsplit=1)[0]
    merchant = collapse_whitespace(first)
    return merchant or collapse_whitespace(raw)


__all__ = ["collapse_whitespace", "extract_merchant"]
