"""Row mapping: raw tabular rows + a :class:`ColumnMapping` → canonical transactions.

One malformed row never aborts a file. :func:`map_row` raises ``ValueError``
with a short reason for rows it cannot use (bad date, bad amount, zero
amount) and returns ``None`` for rows that are intentionally ignored (blank
lines, pending-status rows). :func:`map_rows` collects both outcomes into a
:class:`MappingResult` and logs skipped rows at debug level.

Direction is resolved from the mapping's :class:`SignConvention` with an
exhaustive ``match``; the stored amount is always the positive magnitude.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from .ctv import CanonicalTransaction, make_transaction
from .dates import parse_date
from .logging_setup import get_logger
from .models import ColumnMapping, Direction, RawRow, SignConvention

_logger = get_logger("financial_ingest.normalizers")

# ---------------------------------------------------------------------------
# Amount parsing
# ---------------------------------------------------------------------------

_CURRENCY_RE = re.compile(r"^(?:USD|EUR|GBP|CAD|[$€£])\s*", re.IGNORECASE)
_EUROPEAN_RE = re.compile(r"^\d{1,3}(?:\.\d{3})*,\d{1,2}$|^\d+,\d{2}$")


def _to_decimal(raw: str | None) -> Decimal:
    if raw is None:
        raise ValueError("amount is required")
    s = raw.strip()
    if not s:
        raise ValueError("amount is empty")
    negative = False

    # Strip sign, currency marker and surrounding parentheses in any order,
    # so "-($1,234.56)", "$(12.00)" and "12.00-" all work.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        elif s.endswith("-"):
            negative = True
            s = s[:-1].rstrip()
            changed = True
        stripped = _CURRENCY_RE.sub("", s, count=1)
        if stripped != s:
            s = stripped
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    if _EUROPEAN_RE.match(s):
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")

    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


def parse_amount(raw: str | None) -> Decimal | None:
    """Parse a money cell; ``None`` when it is blank or not a number."""

    try:
        return _to_decimal(raw)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Direction keywords for type columns
# ---------------------------------------------------------------------------

_INCOME_TYPES = frozenset({"credit", "cr", "deposit", "income", "refund", "return", "inflow"})
_EXPENSE_TYPES = frozenset(
    {"debit", "dr", "withdrawal", "purchase", "sale", "expense", "fee", "outflow", "payment"}
)


def _direction_from_type(raw: str) -> Direction:
    words = set(re.findall(r"[a-z]+", raw.lower()))
    if words & _INCOME_TYPES:
        return Direction.INCOME
    if words & _EXPENSE_TYPES:
        return Direction.EXPENSE
    raise ValueError(f"unrecognized transaction type {raw!r}")


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SkippedRow:
    index: int
    reason: str


@dataclass(slots=True)
class MappingResult:
    transactions: list[CanonicalTransaction] = field(default_factory=list)
    skipped: list[SkippedRow] = field(default_factory=list)
    ignored: int = 0
    date_confidences: list[float] = field(default_factory=list)

    @property
    def mean_date_confidence(self) -> float:
        if not self.date_confidences:
            return 0.0
        return sum(self.date_confidences) / len(self.date_confidences)

    @property
    def attempted(self) -> int:
        return len(self.transactions) + len(self.skipped)


def _cell(row: RawRow, idx: int | None) -> str:
    if idx is None or idx >= len(row):
        return ""
    value = row[idx]
    return value.strip() if isinstance(value, str) else str(value or "").strip()


def raw_row_text(row: RawRow) -> str:
    """Verbatim raw-row representation used for hashing (JSON list of cells)."""

    return json.dumps([str(c) if c is not None else "" for c in row], ensure_ascii=False)


def _resolve_amount(row: RawRow, mapping: ColumnMapping) -> tuple[Decimal, Direction]:
    match mapping.sign_convention:
        case SignConvention.POSITIVE_IS_EXPENSE:
            amount = _to_decimal(_cell(row, mapping.amount_column))
            return amount, Direction.EXPENSE if amount > 0 else Direction.INCOME
        case SignConvention.POSITIVE_IS_INCOME:
            amount = _to_decimal(_cell(row, mapping.amount_column))
            return amount, Direction.INCOME if amount > 0 else Direction.EXPENSE
        case SignConvention.SEPARATE_DEBIT_CREDIT:
            debit_raw = _cell(row, mapping.debit_column)
            credit_raw = _cell(row, mapping.credit_column)
            debit = abs(_to_decimal(debit_raw)) if debit_raw else Decimal("0")
            credit = abs(_to_decimal(credit_raw)) if credit_raw else Decimal("0")
            if debit and credit:
                raise ValueError("both debit and credit are populated")
            if debit:
                return debit, Direction.EXPENSE
            return credit, Direction.INCOME
        case SignConvention.TYPE_COLUMN:
            amount = _to_decimal(_cell(row, mapping.amount_column))
            return amount, _direction_from_type(_cell(row, mapping.transaction_type_column))


def map_row(
    row: RawRow,
    mapping: ColumnMapping,
    *,
    source: str = "csv",
) -> tuple[CanonicalTransaction, float] | None:
    """Map one row to ``(transaction, date_confidence)``.

    Returns ``None`` for rows that should be ignored silently (blank rows,
    rows whose status column says pending). Raises ``ValueError`` with a
    reason for rows that cannot be mapped.
    """

    if not any(str(c or "").strip() for c in row):
        return None
    status = _cell(row, mapping.status_column).lower()
    if "pending" in status:
        return None

    date_cell = _cell(row, mapping.date_column)
    parsed = parse_date(date_cell, mapping.date_format)
    if parsed.value is None:
        raise ValueError(f"unparseable date {date_cell!r}")

    amount, direction = _resolve_amount(row, mapping)
    if amount == 0:
        raise ValueError("zero amount")

    tx = make_transaction(
        tx_date=parsed.value,
        description=_cell(row, mapping.description_column),
        amount=amount,
        direction=direction,
        raw_row=raw_row_text(row),
        source=source,
    )
    return tx, parsed.confidence


def data_rows(rows: Sequence[RawRow], mapping: ColumnMapping) -> list[tuple[int, RawRow]]:
    """Rows after ``skip_rows`` and the header, paired with their absolute index."""

    start = mapping.skip_rows + (1 if mapping.has_headers else 0)
    return [(i, rows[i]) for i in range(start, len(rows))]


def map_rows(
    rows: Sequence[RawRow],
    mapping: ColumnMapping,
    *,
    source: str = "csv",
) -> MappingResult:
    """Map every data row, skipping (and recording) rows that fail."""

    result = MappingResult()
    for idx, row in data_rows(rows, mapping):
        try:
            mapped = map_row(row, mapping, source=source)
        except ValueError as e:
            result.skipped.append(SkippedRow(index=idx, reason=str(e)))
            _logger.debug("row %d skipped: %s", idx, e)
            continue
        if mapped is None:
            result.ignored += 1
            continue
        tx, confidence = mapped
        result.transactions.append(tx)
        result.date_confidences.append(confidence)

    if result.skipped:
        _logger.info(
            "mapped %d rows, skipped %d malformed rows",
            len(result.transactions),
            len(result.skipped),
        )
    return result


__all__ = [
    "parse_amount",
    "raw_row_text",
    "SkippedRow",
    "MappingResult",
    "map_row",
    "map_rows",
    "data_rows",
]
