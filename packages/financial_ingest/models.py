"""Data models and type aliases for ``financial_ingest``.

Closed vocabularies (direction, sign convention, dedup and review status) are
``StrEnum`` types so their string values can be stored as-is and every branch
over them is an exhaustive ``match``. ``ColumnMapping`` is a frozen pydantic
model because it round-trips through the template table as JSON; the rest are
frozen dataclasses.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------

type RawRow = Sequence[str]
"""One source line as an ordered list of string cells."""

type AccountId = str

CENT = Decimal("0.01")


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------


class Direction(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


class SignConvention(StrEnum):
    """How a mapped row expresses direction.

    - ``POSITIVE_IS_EXPENSE``: one signed amount column, positive values are
      spending (typical card exports).
    - ``POSITIVE_IS_INCOME``: one signed amount column, negative values are
      spending (typical checking exports).
    - ``SEPARATE_DEBIT_CREDIT``: two unsigned columns.
    - ``TYPE_COLUMN``: unsigned amount plus a column naming the direction.
    """

    POSITIVE_IS_EXPENSE = "positive_is_expense"
    POSITIVE_IS_INCOME = "positive_is_income"
    SEPARATE_DEBIT_CREDIT = "separate_debit_credit"
    TYPE_COLUMN = "type_column"


class DedupStatus(StrEnum):
    UNIQUE = "unique"
    DUPLICATE_WITHIN_FILE = "duplicate_within_file"
    DUPLICATE_DATABASE = "duplicate_database"
    DUPLICATE_QUEUE = "duplicate_queue"


class ReviewStatus(StrEnum):
    PENDING = "pending"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPORTED = "imported"


class BatchStatus(StrEnum):
    PENDING = "pending"
    REVIEWING = "reviewing"
    PARTIALLY_APPROVED = "partially_approved"
    APPROVED = "approved"


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------


class ColumnMapping(BaseModel):
    """Zero-based column indices plus how to read sign and dates.

    Invariant: ``amount_column`` is set XOR both ``debit_column`` and
    ``credit_column`` are set, as dictated by ``sign_convention``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    date_column: int = Field(ge=0)
    description_column: int | None = Field(default=None, ge=0)
    amount_column: int | None = Field(default=None, ge=0)
    debit_column: int | None = Field(default=None, ge=0)
    credit_column: int | None = Field(default=None, ge=0)
    transaction_type_column: int | None = Field(default=None, ge=0)
    status_column: int | None = Field(default=None, ge=0)
    sign_convention: SignConvention = SignConvention.POSITIVE_IS_INCOME
    date_format: str | None = None
    has_headers: bool = True
    skip_rows: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_amount_columns(self) -> ColumnMapping:
        has_pair = self.debit_column is not None and self.credit_column is not None
        has_any_pair = self.debit_column is not None or self.credit_column is not None
        match self.sign_convention:
            case SignConvention.SEPARATE_DEBIT_CREDIT:
                if not has_pair or self.amount_column is not None:
                    raise ValueError(
                        "separate_debit_credit requires debit_column and credit_column "
                        "and no amount_column"
                    )
            case SignConvention.POSITIVE_IS_EXPENSE | SignConvention.POSITIVE_IS_INCOME:
                if self.amount_column is None or has_any_pair:
                    raise ValueError(
                        f"{self.sign_convention} requires amount_column and no debit/credit columns"
                    )
            case SignConvention.TYPE_COLUMN:
                if self.amount_column is None or has_any_pair:
                    raise ValueError(
                        "type_column requires amount_column and no debit/credit columns"
                    )
                if self.transaction_type_column is None:
                    raise ValueError("type_column requires transaction_type_column")
        return self


# ---------------------------------------------------------------------------
# Category splits
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategorySplit:
    """A share of a transaction's amount assigned to one category code."""

    category: str
    amount: Decimal

    def __post_init__(self) -> None:
        if not self.category or not self.category.strip():
            raise ValueError("split category is required")
        if self.amount <= 0:
            raise ValueError(f"split amount must be positive, got {self.amount}")

    def to_json(self) -> dict[str, str]:
        return {"category": self.category, "amount": f"{quantize_amount(self.amount):.2f}"}

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> CategorySplit:
        try:
            amount = Decimal(str(data["amount"]))
        except (KeyError, InvalidOperation) as exc:
            raise ValueError(f"invalid split payload: {dict(data)!r}") from exc
        return cls(category=str(data.get("category") or ""), amount=amount)


def splits_total(splits: Sequence[CategorySplit]) -> Decimal:
    return quantize_amount(sum((s.amount for s in splits), Decimal("0")))


# ---------------------------------------------------------------------------
# Queue read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class QueuedItem:
    """Read-only view of a row in the review queue."""

    id: int
    account_id: AccountId
    setup_id: int | None
    batch_id: str
    date: date
    description: str
    merchant: str | None
    amount: Decimal
    direction: Direction
    hash: str
    status: ReviewStatus
    splits: tuple[CategorySplit, ...] = ()
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    is_historical: bool = False
    year_inferred: bool = False
    imported_at: datetime | None = None
    ledger_transaction_id: str | None = None


@dataclass(frozen=True, slots=True)
class ImportBatch:
    """Derived grouping of queue items sharing a batch id (never stored)."""

    batch_id: str
    account_id: AccountId
    setup_id: int | None
    status: BatchStatus
    count: int
    date_start: date | None
    date_end: date | None
    status_counts: dict[ReviewStatus, int] = field(default_factory=dict)


__all__ = [
    "RawRow",
    "AccountId",
    "CENT",
    "quantize_amount",
    "Direction",
    "SignConvention",
    "DedupStatus",
    "ReviewStatus",
    "BatchStatus",
    "ColumnMapping",
    "CategorySplit",
    "splits_total",
    "QueuedItem",
    "ImportBatch",
]
