"""Canonical transaction record produced by every extraction path.

``CanonicalTransaction`` is a frozen ``dataclass``: mapping and extraction
build one through :func:`make_transaction`, which normalizes the description,
derives the merchant, forces a positive two-decimal amount and computes the
dedup hash. Later stages (dedup, review) produce updated copies via
``dataclasses.replace`` helpers instead of mutating.

Field order:
    - date: calendar date (``datetime.date``)
    - description: whitespace-collapsed source description
    - merchant: cleaned merchant name (falls back to the description)
    - amount: ``Decimal`` > 0, two decimal places
    - direction: :class:`~financial_ingest.models.Direction`
    - raw_row: verbatim source row text, when the source has one
    - hash: dedup identity (see :mod:`financial_ingest.persistence`)
    - dedup_status / review_status: pipeline statuses
    - splits: category splits assigned during review
    - year_inferred: the year came from month-rollover inference
    - source: label of the extraction path (``csv``, ``card_statement`` ...)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from .merchants import collapse_whitespace, extract_merchant
from .models import CategorySplit, DedupStatus, Direction, ReviewStatus, quantize_amount
from .persistence import compute_transaction_hash


@dataclass(frozen=True, slots=True)
class CanonicalTransaction:
    date: date
    description: str
    merchant: str
    amount: Decimal
    direction: Direction
    raw_row: str | None
    hash: str
    dedup_status: DedupStatus = DedupStatus.UNIQUE
    review_status: ReviewStatus = ReviewStatus.PENDING
    splits: tuple[CategorySplit, ...] = ()
    year_inferred: bool = False
    source: str = "unknown"

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"transaction amount must be positive, got {self.amount}")

    @property
    def signed_amount(self) -> Decimal:
        """Amount with expenses negative, as a ledger would show it."""

        return -self.amount if self.direction is Direction.EXPENSE else self.amount

    @property
    def is_duplicate(self) -> bool:
        return self.dedup_status is not DedupStatus.UNIQUE

    def with_dedup_status(self, status: DedupStatus) -> CanonicalTransaction:
        return replace(self, dedup_status=status)

    def with_splits(self, splits: tuple[CategorySplit, ...] | list[CategorySplit]):
        return replace(self, splits=tuple(splits))


def make_transaction(
    *,
    tx_date: date,
    description: str,
    amount: Decimal,
    direction: Direction,
    raw_row: str | None,
    source: str,
    merchant: str | None = None,
    year_inferred: bool = False,
) -> CanonicalTransaction:
    """Build a :class:`CanonicalTransaction` with normalized fields and its hash.

    ``amount`` may be signed; only its magnitude is kept (direction carries the
    sign). Raises ``ValueError`` for a zero amount.
    """

    desc = collapse_whitespace(description) or "Unknown"
    amt = quantize_amount(abs(amount))
    return CanonicalTransaction(
        date=tx_date,
        description=desc,
        merchant=collapse_whitespace(merchant) or extract_merchant(desc),
        amount=amt,
        direction=direction,
        raw_row=raw_row,
        hash=compute_transaction_hash(
            tx_date=tx_date, description=desc, amount=amt, raw_row=raw_row
        ),
        year_inferred=year_inferred,
        source=source,
    )


__all__ = ["CanonicalTransaction", "make_transaction"]
