"""Recover transactions from plain statement text (PDF or OCR output).

Statement text has no reliable structure, so extraction runs heuristic
grammars in strict priority order and stops at the first one that yields at
least one transaction. Specific grammars are higher precision and are never
overridden by looser ones:

1. ``card_statement`` -- a card transaction table (``Trans. date`` /
   ``Post date`` headers); lines look like ``MM/DD [MM/DD] DESCRIPTION AMOUNT``.
2. ``bank_statement`` -- a checking/savings activity table, either with
   separate debit and credit columns or a single signed amount.
3. ``date_amount_scan`` -- any line holding a full date and a money token.
4. ``keyword_scan`` -- lines mentioning a finance keyword, last resort.

What a sign means differs by grammar and is fixed per grammar:

==================  ==========================================
card_statement      negative (``-$``, parentheses) is income
bank_statement      credit column is income; a single signed
                    amount uses deposit semantics (negative is
                    expense)
date_amount_scan    negative is income (statement semantics)
keyword_scan        deposit/refund/credit lines are income
==================  ==========================================

Dates without a year (``03/12``) get one by month rollover relative to
``today``: a month later than today's belongs to last year. Such transactions
carry ``year_inferred=True`` and each one adds a warning to the result, since
the guess is wrong for statements older than twelve months.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum

from .ctv import CanonicalTransaction, make_transaction
from .dates import parse_date, parse_month_day
from .logging_setup import get_logger
from .merchants import collapse_whitespace
from .models import Direction
from .normalizers import parse_amount

_logger = get_logger("financial_ingest.statement_text")


class Strategy(StrEnum):
    CARD_STATEMENT = "card_statement"
    BANK_STATEMENT = "bank_statement"
    DATE_AMOUNT_SCAN = "date_amount_scan"
    KEYWORD_SCAN = "keyword_scan"


@dataclass(slots=True)
class StatementExtraction:
    transactions: list[CanonicalTransaction] = field(default_factory=list)
    strategy: Strategy | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.transactions)


# ---------------------------------------------------------------------------
# Shared token patterns
# ---------------------------------------------------------------------------

_MONEY_WITH_CENTS_RE = re.compile(
    r"^\(?[-+]?\$?[-+]?(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2}\)?-?$"
)
_TOKEN_RE = re.compile(r"\S+")
# Column cells: runs of text separated by two or more spaces (or a tab).
_SEGMENT_RE = re.compile(r"\S+(?: \S+)*")

_MIN_DESCRIPTION = 3


def _split_lines(text: str) -> list[str]:
    return [ln.strip() for ln in text.replace("\r\n", "\n").split("\n") if ln.strip()]


def _is_money(token: str) -> bool:
    return bool(_MONEY_WITH_CENTS_RE.match(token)) and parse_amount(token) is not None


def _has_letters(text: str) -> bool:
    return any(ch.isalpha() for ch in text)


def _inferred_warning(line_no: int, token: str, value: date) -> str:
    return f"line {line_no}: no year in {token!r}; assumed {value.isoformat()}"


@dataclass(slots=True)
class _Collector:
    strategy: Strategy
    transactions: list[CanonicalTransaction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add(
        self,
        *,
        line_no: int,
        line: str,
        date_token: str,
        tx_date: date,
        year_inferred: bool,
        description: str,
        amount: Decimal,
        direction: Direction,
    ) -> None:
        self.transactions.append(
            make_transaction(
                tx_date=tx_date,
                description=description,
                amount=amount,
                direction=direction,
                raw_row=line,
                source=self.strategy.value,
                year_inferred=year_inferred,
            )
        )
        if year_inferred:
            self.warnings.append(_inferred_warning(line_no, date_token, tx_date))


# ---------------------------------------------------------------------------
# 1. Card statement
# ---------------------------------------------------------------------------

_CARD_HEADER_RE = re.compile(r"Standard Purchases|Trans\.?\s*date|Post\s*date", re.IGNORECASE)
# "Description ... Amount" alone is shared with checking statements; a header that
# also names a bank money column belongs to the bank grammar.
_CARD_GENERIC_HEADER_RE = re.compile(r"Description.*Amount", re.IGNORECASE)
_BANK_COLUMN_WORDS_RE = re.compile(
    r"\b(?:Balance|Debits?|Credits?|Withdrawals?|Deposits?)\b", re.IGNORECASE
)
_CARD_END_RE = re.compile(
    r"Fees charged|Interest charged|Account Summary|Page \d+ of"
    r"|^Total fees|^Total interest|^Interest charge calculation",
    re.IGNORECASE,
)
_CARD_DATES_RE = re.compile(
    r"^(?P<trans>\d{1,2}/\d{1,2}(?:/\d{2,4})?)(?:\s+(?P<post>\d{1,2}/\d{1,2}(?:/\d{2,4})?))?"
)
_CARD_PAREN_AMOUNT_RE = re.compile(
    r"\(\s*\$?(?P<num>\d{1,3}(?:,\d{3})*\.\d{2}|\d+\.\d{2})\s*\)\s*$"
)
# The minus may be glued to the description ("THANK YOU-$2,430.98").
_CARD_AMOUNT_RE = re.compile(
    r"(?P<minus>-)?\s*(?P<dollar>\$)?(?P<num>\d{1,3}(?:,\d{3})+(?:\.\d{2})?|\d+\.\d{2}|\d+)\s*$"
)
_CARD_HEADER_WORDS_RE = re.compile(r"^(?:Trans\.|Post\b|Description\b)|Amount$", re.IGNORECASE)


def _card_amount(line: str, start: int) -> tuple[Decimal, int] | None:
    """Signed amount at the end of ``line`` and where it starts."""

    tail = line[start:]
    m = _CARD_PAREN_AMOUNT_RE.search(tail)
    if m is not None:
        value = Decimal(m.group("num").replace(",", ""))
        return -value, start + m.start()
    m = _CARD_AMOUNT_RE.search(tail)
    if m is None:
        return None
    num = m.group("num")
    if not m.group("dollar") and "." not in num:
        return None
    value = Decimal(num.replace(",", ""))
    return (-value if m.group("minus") else value), start + m.start()


def _is_card_header(line: str) -> bool:
    if _CARD_HEADER_RE.search(line):
        return True
    return bool(_CARD_GENERIC_HEADER_RE.search(line)) and not _BANK_COLUMN_WORDS_RE.search(line)


def _card_statement(lines: Sequence[str], today: date) -> _Collector:
    out = _Collector(Strategy.CARD_STATEMENT)
    in_section = False
    for line_no, line in enumerate(lines, start=1):
        if _is_card_header(line):
            in_section = True
            continue
        if in_section and _CARD_END_RE.search(line):
            in_section = False
            continue
        if not in_section:
            continue

        dates = _CARD_DATES_RE.match(line)
        if dates is None:
            continue
        found = _card_amount(line, dates.end())
        if found is None:
            continue
        amount, amount_start = found
        if amount == 0:
            continue
        description = collapse_whitespace(line[dates.end() : amount_start])
        if len(description) < _MIN_DESCRIPTION or _CARD_HEADER_WORDS_RE.search(description):
            continue

        # The post date is the canonical date when both are printed.
        token = dates.group("post") or dates.group("trans")
        tx_date, inferred = parse_month_day(token, today)
        if tx_date is None:
            _logger.debug("card line %d: bad date %r", line_no, token)
            continue
        out.add(
            line_no=line_no,
            line=line,
            date_token=token,
            tx_date=tx_date,
            year_inferred=inferred,
            description=description,
            amount=amount,
            direction=Direction.INCOME if amount < 0 else Direction.EXPENSE,
        )
    return out


# ---------------------------------------------------------------------------
# 2. Bank statement
# ---------------------------------------------------------------------------

_BANK_HEADER_RE = re.compile(
    r"Transactions?|Activity|Date.*Description|Debit.*Credit", re.IGNORECASE
)
_BANK_DEBIT_CREDIT_RE = re.compile(r"Debit.*Credit|Credit.*Debit", re.IGNORECASE)
_BANK_END_RE = re.compile(
    r"^(?:Ending|Closing|Beginning|Opening) Balance|^Total\b|Summary|Page \d+ of|^End of",
    re.IGNORECASE,
)
_BANK_DATE_RE = re.compile(r"^(\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?)")
_BANK_COLUMNS = ("debit", "credit", "balance")


@dataclass(frozen=True, slots=True)
class _BankLayout:
    debit_credit: bool
    # Centre offset of each money column label found in the header line.
    columns: dict[str, float]

    @property
    def has_balance(self) -> bool:
        return "balance" in self.columns


def _bank_layout(header: str) -> _BankLayout:
    columns: dict[str, float] = {}
    for name in _BANK_COLUMNS:
        m = re.search(name, header, re.IGNORECASE)
        if m is not None:
            columns[name] = (m.start() + m.end()) / 2
    return _BankLayout(debit_credit=bool(_BANK_DEBIT_CREDIT_RE.search(header)), columns=columns)


def _trailing_money(spans: list[re.Match[str]], after: int) -> list[re.Match[str]]:
    trailing: list[re.Match[str]] = []
    for m in reversed(spans):
        if m.start() < after or not _is_money(m.group()):
            break
        trailing.insert(0, m)
    return trailing


def _nearest_column(seg: re.Match[str], columns: dict[str, float]) -> str:
    centre = (seg.start() + seg.end()) / 2
    return min(columns, key=lambda name: abs(columns[name] - centre))


def _bank_debit_credit(
    line: str, date_end: int, layout: _BankLayout
) -> tuple[Decimal, Direction, int] | None:
    segments = list(_SEGMENT_RE.finditer(line))
    trailing = _trailing_money(segments, date_end)
    if not trailing:
        return None

    expected = 3 if layout.has_balance else 2
    cells: dict[str, str] = {}
    if len(trailing) >= expected:
        used = trailing[-expected:]
        cells["debit"], cells["credit"] = used[0].group(), used[1].group()
        desc_end = used[0].start()
    else:
        # Blank debit or credit cells: place each number under its header.
        for seg in trailing:
            cells.setdefault(_nearest_column(seg, layout.columns), seg.group())
        desc_end = trailing[0].start()

    debit = abs(parse_amount(cells.get("debit")) or Decimal("0"))
    credit = abs(parse_amount(cells.get("credit")) or Decimal("0"))
    if debit and credit:
        return None
    if credit:
        return credit, Direction.INCOME, desc_end
    if debit:
        return debit, Direction.EXPENSE, desc_end
    return None


def _bank_signed(
    line: str, date_end: int, layout: _BankLayout
) -> tuple[Decimal, Direction, int] | None:
    trailing = _trailing_money(list(_TOKEN_RE.finditer(line)), date_end)
    if not trailing:
        return None
    expected = 2 if layout.has_balance else 1
    token = trailing[-expected] if len(trailing) >= expected else trailing[0]
    value = parse_amount(token.group())
    if value is None or value == 0:
        return None
    # Deposit-account sign: a minus is money out, unlike card statements.
    return abs(value), Direction.EXPENSE if value < 0 else Direction.INCOME, token.start()


def _bank_statement(lines: Sequence[str], today: date) -> _Collector:
    out = _Collector(Strategy.BANK_STATEMENT)
    layout: _BankLayout | None = None
    for line_no, line in enumerate(lines, start=1):
        if layout is not None and _BANK_END_RE.search(line):
            layout = None
            continue
        if _BANK_HEADER_RE.search(line) and not _BANK_DATE_RE.match(line):
            layout = _bank_layout(line)
            continue
        if layout is None:
            continue

        m = _BANK_DATE_RE.match(line)
        if m is None:
            continue
        if layout.debit_credit:
            found = _bank_debit_credit(line, m.end(), layout)
        else:
            found = _bank_signed(line, m.end(), layout)
        if found is None:
            continue
        amount, direction, desc_end = found
        description = collapse_whitespace(line[m.end() : desc_end])
        if len(description) < _MIN_DESCRIPTION:
            continue

        token = m.group(1)
        tx_date, inferred = parse_month_day(token, today)
        if tx_date is None:
            _logger.debug("bank line %d: bad date %r", line_no, token)
            continue
        out.add(
            line_no=line_no,
            line=line,
            date_token=token,
            tx_date=tx_date,
            year_inferred=inferred,
            description=description,
            amount=amount,
            direction=direction,
        )
    return out


# ---------------------------------------------------------------------------
# 3 and 4. Header-free scans
# ---------------------------------------------------------------------------

_FULL_DATE_RE = re.compile(
    r"\b(\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}-\d{2}-\d{2}|[A-Z][a-z]{2,8}\.? \d{1,2}, \d{4})\b"
)
_SHORT_DATE_RE = re.compile(r"(?<![\d/])(\d{1,2}/\d{1,2})(?![\d/])")
_SCAN_AMOUNT_RE = re.compile(
    r"\(?-?\$?-?(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2}\)?-?|\(?-?\$(?:\d{1,3}(?:,\d{3})+|\d+)\)?"
)

KEYWORDS = (
    "purchase",
    "payment",
    "transfer",
    "deposit",
    "withdrawal",
    "fee",
    "charge",
    "refund",
    "credit",
    "debit",
)
_KEYWORD_RE = re.compile("|".join(KEYWORDS), re.IGNORECASE)
_INCOME_KEYWORD_RE = re.compile(r"deposit|refund|credit", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class _Scanned:
    token: str
    tx_date: date
    year_inferred: bool
    amount: Decimal
    description: str


def _scan_line(line: str, today: date, *, allow_short_date: bool) -> _Scanned | None:
    inferred = False
    dm = _FULL_DATE_RE.search(line)
    tx_date = parse_date(dm.group(1)).value if dm is not None else None
    if tx_date is None and allow_short_date:
        dm = _SHORT_DATE_RE.search(line)
        if dm is not None:
            tx_date, inferred = parse_month_day(dm.group(1), today)
    if dm is None or tx_date is None:
        return None

    amounts = [
        m
        for m in _SCAN_AMOUNT_RE.finditer(line)
        if m.end() <= dm.start() or m.start() >= dm.end()
    ]
    if not amounts:
        return None
    am = amounts[-1]
    amount = parse_amount(am.group())
    if amount is None or amount == 0:
        return None

    spans = sorted([(dm.start(), dm.end()), (am.start(), am.end())])
    pieces = [line[: spans[0][0]], line[spans[0][1] : spans[1][0]], line[spans[1][1] :]]
    description = collapse_whitespace(" ".join(pieces))
    if not _has_letters(description):
        return None
    return _Scanned(
        token=dm.group(1),
        tx_date=tx_date,
        year_inferred=inferred,
        amount=amount,
        description=description,
    )


def _date_amount_scan(lines: Sequence[str], today: date) -> _Collector:
    out = _Collector(Strategy.DATE_AMOUNT_SCAN)
    for line_no, line in enumerate(lines, start=1):
        found = _scan_line(line, today, allow_short_date=False)
        if found is None:
            continue
        out.add(
            line_no=line_no,
            line=line,
            date_token=found.token,
            tx_date=found.tx_date,
            year_inferred=found.year_inferred,
            description=found.description,
            amount=found.amount,
            direction=Direction.INCOME if found.amount < 0 else Direction.EXPENSE,
        )
    return out


def _keyword_scan(lines: Sequence[str], today: date) -> _Collector:
    out = _Collector(Strategy.KEYWORD_SCAN)
    for line_no, line in enumerate(lines, start=1):
        if not _KEYWORD_RE.search(line):
            continue
        found = _scan_line(line, today, allow_short_date=True)
        if found is None:
            continue
        income = _INCOME_KEYWORD_RE.search(line) is not None
        out.add(
            line_no=line_no,
            line=line,
            date_token=found.token,
            tx_date=found.tx_date,
            year_inferred=found.year_inferred,
            description=found.description,
            amount=found.amount,
            direction=Direction.INCOME if income else Direction.EXPENSE,
        )
    return out


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

_STRATEGIES: tuple[Callable[[Sequence[str], date], _Collector], ...] = (
    _card_statement,
    _bank_statement,
    _date_amount_scan,
    _keyword_scan,
)


def extract_statement_transactions(text: str, *, today: date) -> StatementExtraction:
    """Run the grammars in order and return the first non-empty result.

    Returns an empty :class:`StatementExtraction` (``strategy`` is ``None``)
    when no grammar finds anything; callers report that as "no transactions
    found" rather than an error.
    """

    lines = _split_lines(text or "")
    if not lines:
        return StatementExtraction()

    for run in _STRATEGIES:
        collected = run(lines, today)
        if collected.transactions:
            _logger.info(
                "%s found %d transactions (%d with inferred year)",
                collected.strategy,
                len(collected.transactions),
                len(collected.warnings),
            )
            return StatementExtraction(
                transactions=collected.transactions,
                strategy=collected.strategy,
                warnings=collected.warnings,
            )
    _logger.info("no statement grammar matched %d lines", len(lines))
    return StatementExtraction()


__all__ = [
    "Strategy",
    "StatementExtraction",
    "KEYWORDS",
    "extract_statement_transactions",
]
