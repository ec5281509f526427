"""Date token parsing under an explicit ambiguity policy.

:func:`parse_date` resolves a token in this order:

1. The caller's known format (e.g. from a saved template), unless it is a
   day-first format and the token is shaped like an unambiguous US date
   (second group > 12), in which case the template is clearly wrong for it.
2. A slash- or dash-separated token whose first group is <= 12 is read
   month-first only. ``"11/01/2025"`` is November 1, never January 11. This
   is a deliberate policy for the US-centric sources we ingest, not a
   universal rule; a failed month-first read returns no date rather than
   silently trying day-first.
3. An ordered list of formats (ISO, textual month, day-first). A candidate is
   accepted only when re-extracting the numeric groups from the token gives
   back the parsed month/day.
4. ISO-shaped prefixes (``2024-03-04T10:00:00Z``) are built directly from the
   leading ``(year, month, day)`` integers.
5. Otherwise the result carries no date and confidence ``0.0``; callers treat
   that as an unusable row.

All dates are constructed as ``date(year, month, day)`` from integers, so no
timezone can shift a day. Two-digit years pivot at 50 (``"51"`` is 1951,
``"50"`` is 2050). Years outside 1900-2100 are rejected.

Confidence values: ``1.0`` known format, ``0.9`` policy/ordered list,
``0.7`` ISO-prefix fallback, ``0.0`` failure.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from typing import Literal

# ---------------------------------------------------------------------------
# Format table
# ---------------------------------------------------------------------------

type Part = Literal["y", "m", "d", "mon"]

_MONTHS: dict[str, int] = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "sept": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

MIN_YEAR = 1900
MAX_YEAR = 2100
_TWO_DIGIT_PIVOT = 50


@dataclass(frozen=True, slots=True)
class DateFormat:
    name: str
    pattern: re.Pattern[str]
    parts: tuple[Part, Part, Part]
    day_first_numeric: bool = False


def _fmt(name: str, regex: str, parts: tuple[Part, Part, Part], *, day_first: bool = False):
    return DateFormat(name, re.compile(regex, re.IGNORECASE), parts, day_first)


_MON = r"([A-Za-z]{3,9})\.?"

FORMATS: dict[str, DateFormat] = {
    f.name: f
    for f in (
        _fmt("MM/DD/YYYY", r"^(\d{1,2})/(\d{1,2})/(\d{4})$", ("m", "d", "y")),
        _fmt("MM/DD/YY", r"^(\d{1,2})/(\d{1,2})/(\d{2})$", ("m", "d", "y")),
        _fmt("MM-DD-YYYY", r"^(\d{1,2})-(\d{1,2})-(\d{4})$", ("m", "d", "y")),
        _fmt("MM-DD-YY", r"^(\d{1,2})-(\d{1,2})-(\d{2})$", ("m", "d", "y")),
        _fmt("YYYY-MM-DD", r"^(\d{4})-(\d{1,2})-(\d{1,2})$", ("y", "m", "d")),
        _fmt("YYYY/MM/DD", r"^(\d{4})/(\d{1,2})/(\d{1,2})$", ("y", "m", "d")),
        _fmt("MMM DD, YYYY", rf"^{_MON}\s+(\d{{1,2}}),?\s+(\d{{4}})$", ("mon", "d", "y")),
        _fmt("DD MMM YYYY", rf"^(\d{{1,2}})[\s-]+{_MON},?[\s-]+(\d{{4}})$", ("d", "mon", "y")),
        _fmt("DD/MM/YYYY", r"^(\d{1,2})/(\d{1,2})/(\d{4})$", ("d", "m", "y"), day_first=True),
        _fmt("DD/MM/YY", r"^(\d{1,2})/(\d{1,2})/(\d{2})$", ("d", "m", "y"), day_first=True),
        _fmt("DD-MM-YYYY", r"^(\d{1,2})-(\d{1,2})-(\d{4})$", ("d", "m", "y"), day_first=True),
        _fmt("DD.MM.YYYY", r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$", ("d", "m", "y"), day_first=True),
    )
}

# Step 2 candidates, keyed by separator.
_MONTH_FIRST: dict[str, tuple[str, ...]] = {
    "/": ("MM/DD/YYYY", "MM/DD/YY"),
    "-": ("MM-DD-YYYY", "MM-DD-YY"),
}

# Step 3 order: ISO, textual month, then day-first.
_ORDERED: tuple[str, ...] = (
    "YYYY-MM-DD",
    "YYYY/MM/DD",
    "MMM DD, YYYY",
    "DD MMM YYYY",
    "DD/MM/YYYY",
    "DD-MM-YYYY",
    "DD.MM.YYYY",
    "DD/MM/YY",
)

_NUMERIC_SEP_RE = re.compile(r"^(\d{1,2})([/-])(\d{1,2})\2(\d{2}|\d{4})$")
_ISO_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:$|[T\s_].*$|Z$)")
_SPACE_TIME_RE = re.compile(r"^(?P<date>\S.*?\d)\s+\d{1,2}:\d{2}(?::\d{2})?(?:\s*[AaPp][Mm])?$")
_DIGITS_RE = re.compile(r"\d+")

AUTO_FORMAT = "auto"


@dataclass(frozen=True, slots=True)
class DateParseResult:
    value: date | None
    format: str | None
    confidence: float

    @property
    def ok(self) -> bool:
        return self.value is not None


_FAILED = DateParseResult(None, None, 0.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def expand_year(raw: str) -> int:
    """Expand a 2- or 4-digit year token."""

    y = int(raw)
    if len(raw) == 2:
        return 1900 + y if y > _TWO_DIGIT_PIVOT else 2000 + y
    return y


def build_date(year: int, month: int, day: int) -> date | None:
    """Construct a date from integers, or ``None`` when out of range/invalid."""

    if not (MIN_YEAR <= year <= MAX_YEAR):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _month_from_name(raw: str) -> int | None:
    key = raw.lower().rstrip(".")
    return _MONTHS.get(key) or _MONTHS.get(key[:3])


def _apply(fmt: DateFormat, token: str) -> date | None:
    m = fmt.pattern.match(token)
    if m is None:
        return None
    year = month = day = None
    for part, raw in zip(fmt.parts, m.groups(), strict=True):
        match part:
            case "y":
                year = expand_year(raw)
            case "m":
                month = int(raw)
            case "d":
                day = int(raw)
            case "mon":
                month = _month_from_name(raw)
    if year is None or month is None or day is None:
        return None
    parsed = build_date(year, month, day)
    if parsed is None or not _round_trips(fmt, token, parsed):
        return None
    return parsed


def _round_trips(fmt: DateFormat, token: str, parsed: date) -> bool:
    """Re-extract numeric groups from ``token`` and compare with ``parsed``."""

    numbers = [int(n) for n in _DIGITS_RE.findall(token)]
    numeric_parts = [p for p in fmt.parts if p != "mon"]
    if len(numbers) != len(numeric_parts):
        return False
    for part, n in zip(numeric_parts, numbers, strict=True):
        if part == "m" and n != parsed.month:
            return False
        if part == "d" and n != parsed.day:
            return False
    return True


def _strip_time(token: str) -> str:
    m = _SPACE_TIME_RE.match(token)
    return m.group("date") if m else token


def looks_like_unambiguous_us(token: str) -> bool:
    """True for ``MM/DD/...`` tokens whose second group can only be a day (> 12)."""

    m = _NUMERIC_SEP_RE.match(token.strip())
    if m is None:
        return False
    first, second = int(m.group(1)), int(m.group(3))
    return 1 <= first <= 12 and 12 < second <= 31


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_date(token: str | None, known_format: str | None = None) -> DateParseResult:
    """Parse ``token`` into a calendar date following the module's policy.

    Parameters
    ----------
    token:
        Raw cell text. Surrounding whitespace and a trailing ``HH:MM[:SS]``
        time are ignored.
    known_format:
        Optional format name from :data:`FORMATS` (usually a saved template's).

    Returns
    -------
    DateParseResult
        ``value`` is ``None`` (confidence ``0.0``) when nothing applies.
    """

    if token is None:
        return _FAILED
    s = _strip_time(token.strip())
    if not s:
        return _FAILED

    # 1) Known format first, unless it is day-first and the token is clearly US.
    known = FORMATS.get(known_format) if known_format else None
    if known is not None and not (known.day_first_numeric and looks_like_unambiguous_us(s)):
        parsed = _apply(known, s)
        if parsed is not None:
            return DateParseResult(parsed, known.name, 1.0)

    # 2) Month-first only for N/N/N tokens with a first group <= 12.
    m = _NUMERIC_SEP_RE.match(s)
    if m is not None and int(m.group(1)) <= 12:
        for name in _MONTH_FIRST[m.group(2)]:
            parsed = _apply(FORMATS[name], s)
            if parsed is not None:
                return DateParseResult(parsed, name, 0.9)
        return _FAILED

    # 3) Ordered formats with round-trip validation.
    for name in _ORDERED:
        parsed = _apply(FORMATS[name], s)
        if parsed is not None:
            return DateParseResult(parsed, name, 0.9)

    # 4) ISO-shaped prefix, built from integers.
    iso = _ISO_PREFIX_RE.match(s)
    if iso is not None:
        parsed = build_date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        if parsed is not None:
            return DateParseResult(parsed, AUTO_FORMAT, 0.7)

    # 5) Unusable.
    return _FAILED


def is_date_token(token: str | None) -> bool:
    return parse_date(token).ok


def detect_date_format(values: Iterable[str | None]) -> str | None:
    """Most common concrete format among ``values`` (ties go to the earliest seen)."""

    counts: Counter[str] = Counter()
    for v in values:
        res = parse_date(v)
        if res.format and res.format != AUTO_FORMAT:
            counts[res.format] += 1
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def render_date(value: date, fmt_name: str) -> str:
    """Render ``value`` in one of the :data:`FORMATS` layouts."""

    fmt = FORMATS[fmt_name]
    sep = "/" if "/" in fmt_name else "." if "." in fmt_name else "-"
    four_digit_year = "YYYY" in fmt_name
    rendered: list[str] = []
    for part in fmt.parts:
        match part:
            case "y":
                rendered.append(str(value.year) if four_digit_year else f"{value.year % 100:02d}")
            case "m":
                rendered.append(f"{value.month:02d}")
            case "d":
                rendered.append(f"{value.day:02d}")
            case "mon":
                rendered.append(_MONTH_ABBR[value.month - 1])
    if fmt_name == "MMM DD, YYYY":
        return f"{rendered[0]} {rendered[1]}, {rendered[2]}"
    if fmt_name == "DD MMM YYYY":
        return " ".join(rendered)
    return sep.join(rendered)


def infer_year(month: int, today: date) -> int:
    """Year for a month/day token lacking one: months after ``today``'s belong to last year.

    This is an approximation; statements older than twelve months resolve to
    the wrong year, which is why callers flag such dates as inferred.
    """

    return today.year - 1 if month > today.month else today.year


_MONTH_DAY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})(?:[/-](\d{2}|\d{4}))?$")


def parse_month_day(token: str, today: date) -> tuple[date | None, bool]:
    """Parse a statement date (``MM/DD`` or ``MM/DD/YY[YY]``).

    Returns ``(date, year_inferred)``. Statement grammars are month-first.
    """

    m = _MONTH_DAY_RE.match(token.strip())
    if m is None:
        return None, False
    month, day = int(m.group(1)), int(m.group(2))
    if m.group(3):
        return build_date(expand_year(m.group(3)), month, day), False
    if not (1 <= month <= 12):
        return None, False
    return build_date(infer_year(month, today), month, day), True


__all__ = [
    "FORMATS",
    "AUTO_FORMAT",
    "DateFormat",
    "DateParseResult",
    "parse_date",
    "is_date_token",
    "detect_date_format",
    "render_date",
    "expand_year",
    "build_date",
    "infer_year",
    "parse_month_day",
    "looks_like_unambiguous_us",
]
