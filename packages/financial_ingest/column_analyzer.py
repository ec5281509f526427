"""Infer header presence, per-column roles and a structural fingerprint.

Input is a 2-D list of string cells from any tabular source. The analyzer
never raises on odd input: when no date or amount column can be identified
confidently, those roles are ``None`` and :meth:`AnalysisResult.to_mapping`
returns ``None`` so callers can show "format not recognized" or fall back.

Scoring
-------
- Content score: fraction of non-empty sampled cells (up to
  :data:`SAMPLE_ROWS` data rows) that match the role's token shape.
- Header score: match against a synonym table; exact 1.0, substring 0.85,
  otherwise ``difflib.SequenceMatcher`` similarity mapped to 0.7/0.5/0.
- Combined: ``0.6 * header + 0.4 * content`` when the file has a header row,
  content only otherwise. A role is accepted only above 0.5.

Roles are assigned with fixed precedence: date, then amount (or a
debit/credit pair when both headers clearly name one), then description from
whatever remains. Among equally scored date columns the later one wins, so a
"Transaction Date, Post Date" export resolves to the post date; amount and
description ties go to the leftmost column.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Literal

from .dates import detect_date_format, is_date_token
from .models import ColumnMapping, RawRow, SignConvention
from .normalizers import parse_amount

type Role = Literal[
    "date", "amount", "description", "debit", "credit", "balance", "type", "status"
]

SAMPLE_ROWS = 10
ACCEPT_THRESHOLD = 0.5
_HEADER_WEIGHT = 0.6
_CONTENT_WEIGHT = 0.4

_HEADER_SYNONYMS: dict[Role, tuple[str, ...]] = {
    "date": (
        "date",
        "transaction date",
        "trans date",
        "posted date",
        "post date",
        "posting date",
        "value date",
        "booking date",
        "effective date",
    ),
    "amount": ("amount", "transaction amount", "amt", "value", "net amount"),
    "description": (
        "description",
        "desc",
        "memo",
        "details",
        "narrative",
        "payee",
        "merchant",
        "name",
        "particulars",
        "transaction description",
        "appears on your statement as",
    ),
    "debit": (
        "debit",
        "debits",
        "withdrawal",
        "withdrawals",
        "money out",
        "paid out",
        "debit amount",
    ),
    "credit": ("credit", "credits", "deposit", "deposits", "money in", "paid in", "credit amount"),
    "balance": ("balance", "running balance", "available balance", "ledger balance"),
    "type": ("type", "transaction type", "dr/cr", "debit/credit", "direction"),
    "status": ("status", "state"),
}

_PUNCT_RE = re.compile(r"[._:#*()\[\]]+")
_WS_RE = re.compile(r"\s+")
_LETTER_RE = re.compile(r"[A-Za-z]")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ColumnAnalysis:
    index: int
    header: str
    role: Role | None
    confidence: float
    scores: dict[str, float] = field(default_factory=dict)
    samples: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    has_headers: bool
    headers: tuple[str, ...]
    columns: tuple[ColumnAnalysis, ...]
    column_count: int
    fingerprint: str
    date_column: int | None = None
    amount_column: int | None = None
    description_column: int | None = None
    debit_column: int | None = None
    credit_column: int | None = None
    transaction_type_column: int | None = None
    status_column: int | None = None
    date_format: str | None = None
    sign_convention: SignConvention | None = None

    @property
    def recognized(self) -> bool:
        has_amount = self.amount_column is not None or (
            self.debit_column is not None and self.credit_column is not None
        )
        return self.date_column is not None and has_amount

    @property
    def confidence(self) -> float:
        assigned = [c.confidence for c in self.columns if c.role is not None]
        return sum(assigned) / len(assigned) if assigned else 0.0

    def to_mapping(self) -> ColumnMapping | None:
        """Column mapping for the detected roles, or ``None`` when unrecognized."""

        if not self.recognized or self.date_column is None or self.sign_convention is None:
            return None
        return ColumnMapping(
            date_column=self.date_column,
            description_column=self.description_column,
            amount_column=self.amount_column,
            debit_column=self.debit_column,
            credit_column=self.credit_column,
            transaction_type_column=(
                self.transaction_type_column
                if self.sign_convention is SignConvention.TYPE_COLUMN
                else None
            ),
            status_column=self.status_column,
            sign_convention=self.sign_convention,
            date_format=self.date_format,
            has_headers=self.has_headers,
        )


# ---------------------------------------------------------------------------
# Token shapes and header matching
# ---------------------------------------------------------------------------


def _normalize_header(text: str) -> str:
    return _WS_RE.sub(" ", _PUNCT_RE.sub(" ", text.lower())).strip()


def header_score(header: str, role: Role) -> float:
    """Similarity of ``header`` to the synonyms for ``role`` in ``[0, 1]``."""

    h = _normalize_header(header)
    if not h:
        return 0.0
    best = 0.0
    for syn in _HEADER_SYNONYMS[role]:
        if h == syn:
            return 1.0
        if re.search(rf"\b{re.escape(syn)}\b", h):
            best = max(best, 0.85)
            continue
        ratio = SequenceMatcher(None, h, syn).ratio()
        if ratio >= 0.85:
            best = max(best, 0.7)
        elif ratio >= 0.75:
            best = max(best, 0.5)
    return best


def _is_amount(cell: str) -> bool:
    return parse_amount(cell) is not None and not is_date_token(cell)


def _is_description(cell: str) -> bool:
    return (
        2 <= len(cell) <= 200
        and _LETTER_RE.search(cell) is not None
        and not is_date_token(cell)
        and not _is_amount(cell)
    )


def _fraction(cells: Sequence[str], pred) -> float:
    values = [c for c in cells if c]
    if not values:
        return 0.0
    return sum(1 for c in values if pred(c)) / len(values)


def _sparse_amount_fraction(cells: Sequence[str]) -> float:
    """Debit/credit columns are half blank; blanks count as matching."""

    if not cells:
        return 0.0
    ok = sum(1 for c in cells if not c or _is_amount(c))
    return ok / len(cells) if any(cells) else 0.0


def _typed_cells(row: RawRow) -> int:
    return sum(1 for c in row if c and (is_date_token(c) or _is_amount(c)))


def detect_headers(rows: Sequence[RawRow]) -> bool:
    """True when row 0 has fewer date/amount cells than the typical later row."""

    if not rows:
        return False
    first = _typed_cells([_clean(c) for c in rows[0]])
    if len(rows) == 1:
        return first == 0
    later = sorted(_typed_cells([_clean(c) for c in r]) for r in rows[1 : 1 + SAMPLE_ROWS])
    median = later[len(later) // 2]
    return first < median


def _clean(cell: object) -> str:
    return str(cell).strip() if cell is not None else ""


def _shape(cells: Sequence[str]) -> str:
    values = [c for c in cells if c]
    if not values:
        return "empty"
    if _fraction(values, is_date_token) > 0.5:
        return "date"
    if _fraction(values, _is_amount) > 0.5:
        return "amount"
    return "text"


def compute_fingerprint(column_count: int, pattern_parts: Sequence[str]) -> str:
    """``"<ncols>-<16 hex>"`` over the column-count and header/shape pattern."""

    pattern = "|".join(pattern_parts)
    digest = hashlib.sha256(f"{column_count}:{pattern}".encode()).hexdigest()[:16]
    return f"{column_count}-{digest}"


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def _best(
    candidates: dict[int, float],
    *,
    prefer_later: bool,
) -> int | None:
    accepted = {i: s for i, s in candidates.items() if s > ACCEPT_THRESHOLD}
    if not accepted:
        return None
    if prefer_later:
        return max(accepted, key=lambda i: (accepted[i], i))
    return max(accepted, key=lambda i: (accepted[i], -i))


def analyze_columns(rows: Sequence[RawRow]) -> AnalysisResult:
    """Analyze tabular ``rows`` and return roles, date format and fingerprint."""

    table = [[_clean(c) for c in r] for r in rows]
    if not table or not any(any(r) for r in table):
        return AnalysisResult(
            has_headers=False,
            headers=(),
            columns=(),
            column_count=0,
            fingerprint=compute_fingerprint(0, ()),
        )

    has_headers = detect_headers(table)
    start = 1 if has_headers else 0
    sample = table[start : start + SAMPLE_ROWS]
    ncols = max(len(r) for r in table[: start + SAMPLE_ROWS])

    if has_headers:
        headers = tuple(table[0][i] if i < len(table[0]) else "" for i in range(ncols))
    else:
        headers = tuple(f"Column {i + 1}" for i in range(ncols))

    def column(i: int) -> list[str]:
        return [r[i] if i < len(r) else "" for r in sample]

    cols = [column(i) for i in range(ncols)]

    def combined(i: int, role: Role, content: float) -> float:
        if not has_headers:
            return content
        return _HEADER_WEIGHT * header_score(headers[i], role) + _CONTENT_WEIGHT * content

    scores: list[dict[str, float]] = []
    for i in range(ncols):
        scores.append(
            {
                "date": combined(i, "date", _fraction(cols[i], is_date_token)),
                "amount": combined(i, "amount", _fraction(cols[i], _is_amount)),
                "description": combined(i, "description", _fraction(cols[i], _is_description)),
                "debit": combined(i, "debit", _sparse_amount_fraction(cols[i])),
                "credit": combined(i, "credit", _sparse_amount_fraction(cols[i])),
            }
        )

    taken: set[int] = set()
    assigned: dict[int, Role] = {}

    def assign(i: int | None, role: Role) -> int | None:
        if i is not None:
            taken.add(i)
            assigned[i] = role
        return i

    # Header-only roles never compete for amount/description; they need an
    # exact or whole-word header match, fuzzy similarity is not enough.
    reserved: dict[Role, int | None] = {"balance": None, "type": None, "status": None}
    if has_headers:
        for role in reserved:
            strict = {
                i: s for i in range(ncols) if (s := header_score(headers[i], role)) >= 0.85
            }
            reserved[role] = _best(strict, prefer_later=False)
    excluded = {i for i in reserved.values() if i is not None}

    # 1) Date.
    date_scores = {i: s["date"] for i, s in enumerate(scores) if i not in excluded}
    date_col = assign(_best(date_scores, prefer_later=True), "date")

    # 2) Amount, or a debit/credit pair named by the headers.
    debit_col = credit_col = amount_col = None
    if has_headers:
        debit_h = {
            i: header_score(headers[i], "debit")
            for i in range(ncols)
            if i not in taken and i not in excluded
        }
        credit_h = {
            i: header_score(headers[i], "credit")
            for i in range(ncols)
            if i not in taken and i not in excluded
        }
        d = _best(debit_h, prefer_later=False)
        c = _best(credit_h, prefer_later=False)
        if d is not None and c is not None and d != c:
            if scores[d]["debit"] > ACCEPT_THRESHOLD and scores[c]["credit"] > ACCEPT_THRESHOLD:
                debit_col = assign(d, "debit")
                credit_col = assign(c, "credit")
    if debit_col is None:
        amount_col = assign(
            _best(
                {
                    i: s["amount"]
                    for i, s in enumerate(scores)
                    if i not in taken and i not in excluded
                },
                prefer_later=False,
            ),
            "amount",
        )

    # 3) Description from what remains; fall back to the most text-like column.
    desc_candidates = {
        i: s["description"] for i, s in enumerate(scores) if i not in taken and i not in excluded
    }
    desc_col = _best(desc_candidates, prefer_later=False)
    if desc_col is None:
        text_like = {
            i: _fraction(cols[i], _is_description) for i in desc_candidates if any(cols[i])
        }
        text_like = {i: f for i, f in text_like.items() if f > 0}
        if text_like:
            desc_col = max(text_like, key=lambda i: (text_like[i], -i))
    assign(desc_col, "description")

    for role, idx in reserved.items():
        assign(idx, role)
    type_col = reserved["type"]
    status_col = reserved["status"]

    sign: SignConvention | None = None
    if debit_col is not None:
        sign = SignConvention.SEPARATE_DEBIT_CREDIT
    elif amount_col is not None:
        amounts = [parse_amount(c) for c in cols[amount_col] if c]
        all_non_negative = all(a is not None and a >= 0 for a in amounts)
        if type_col is not None and amounts and all_non_negative:
            sign = SignConvention.TYPE_COLUMN
        else:
            sign = SignConvention.POSITIVE_IS_INCOME

    columns = tuple(
        ColumnAnalysis(
            index=i,
            header=headers[i],
            role=assigned.get(i),
            confidence=round(
                _role_confidence(assigned.get(i), scores[i], headers[i], has_headers), 3
            ),
            scores={k: round(v, 3) for k, v in scores[i].items()},
            samples=tuple(cols[i][:3]),
        )
        for i in range(ncols)
    )

    if has_headers:
        pattern = [_normalize_header(h) for h in headers]
    else:
        pattern = [_shape(cols[i]) for i in range(ncols)]

    return AnalysisResult(
        has_headers=has_headers,
        headers=headers,
        columns=columns,
        column_count=ncols,
        fingerprint=compute_fingerprint(ncols, pattern),
        date_column=date_col,
        amount_column=amount_col,
        description_column=desc_col,
        debit_column=debit_col,
        credit_column=credit_col,
        transaction_type_column=type_col,
        status_column=status_col,
        date_format=detect_date_format(cols[date_col]) if date_col is not None else None,
        sign_convention=sign,
    )


def _role_confidence(
    role: Role | None, scores: dict[str, float], header: str, has_headers: bool
) -> float:
    if role is None:
        return 0.0
    if role in scores:
        return scores[role]
    return header_score(header, role) if has_headers else 0.0


__all__ = [
    "SAMPLE_ROWS",
    "ColumnAnalysis",
    "AnalysisResult",
    "analyze_columns",
    "detect_headers",
    "header_score",
    "compute_fingerprint",
]
