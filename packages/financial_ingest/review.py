# ruff: noqa: I001
"""Review state machine and the commit handoff to the ledger.

Queue items move only along these edges::

    pending ──▶ reviewing ──▶ approved ──▶ imported
                     │
                     └──────▶ rejected

``transition`` handles the reviewer-driven edges and records who moved the
item and when. ``imported`` is reachable only through
:func:`approve_and_commit`, which refuses (before writing anything) unless
every requested item is ``approved`` and carries category splits summing to
its amount. The manual upload flow, which never stores queue rows, commits
through :func:`commit_transactions` with the same split rule and an explicit
force-include list for flagged duplicates.

:func:`update_item` corrects a misparsed item in place; an edit returns the
item to ``reviewing`` whatever editable state it was in.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.imports import FiQueuedImport
from .ctv import CanonicalTransaction
from .errors import CommitValidationError, IngestError, InvalidTransitionError
from .ledger import LedgerWriter
from .logging_setup import get_logger
from .merchants import collapse_whitespace
from .models import (
    AccountId,
    CategorySplit,
    Direction,
    QueuedItem,
    ReviewStatus,
    quantize_amount,
    splits_total,
)
from .persistence import link_ledger_transaction, record_committed
from .queue import to_item, to_transaction

_logger = get_logger("financial_ingest.review")

ALLOWED_TRANSITIONS: dict[ReviewStatus, frozenset[ReviewStatus]] = {
    ReviewStatus.PENDING: frozenset({ReviewStatus.REVIEWING}),
    ReviewStatus.REVIEWING: frozenset({ReviewStatus.APPROVED, ReviewStatus.REJECTED}),
    ReviewStatus.APPROVED: frozenset(),
    ReviewStatus.REJECTED: frozenset(),
    ReviewStatus.IMPORTED: frozenset(),
}

_EDITABLE = frozenset({ReviewStatus.PENDING, ReviewStatus.REVIEWING, ReviewStatus.APPROVED})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _load(session: Session, *, account_id: AccountId, item_id: int) -> FiQueuedImport:
    row = session.get(FiQueuedImport, item_id)
    if row is None or row.account_id != account_id:
        raise IngestError(f"queue item {item_id} not found")
    return row


def can_transition(current: ReviewStatus, requested: ReviewStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def transition(
    session: Session,
    *,
    account_id: AccountId,
    item_id: int,
    status: ReviewStatus,
    reviewer: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> QueuedItem:
    """Move one item along a reviewer edge; raises ``InvalidTransitionError`` otherwise."""

    row = _load(session, account_id=account_id, item_id=item_id)
    current = ReviewStatus(row.status)
    if not can_transition(current, status):
        raise InvalidTransitionError(item_id, current.value, status.value)
    if not reviewer or not reviewer.strip():
        raise IngestError("reviewer is required")

    row.status = status.value
    row.reviewed_by = reviewer.strip()
    row.reviewed_at = now or _utcnow()
    if notes:
        row.review_notes = notes
    session.flush()
    _logger.info("queue item %s: %s -> %s by %s", item_id, current, status, row.reviewed_by)
    return to_item(row)


def set_splits(
    session: Session,
    *,
    account_id: AccountId,
    item_id: int,
    splits: Sequence[CategorySplit],
) -> QueuedItem:
    """Replace the category splits of an item that has not been committed or rejected."""

    row = _load(session, account_id=account_id, item_id=item_id)
    current = ReviewStatus(row.status)
    if current not in _EDITABLE:
        raise IngestError(f"queue item {item_id} is {current} and can no longer be edited")
    row.splits = [s.to_json() for s in splits]
    session.flush()
    return to_item(row)


def update_item(
    session: Session,
    *,
    account_id: AccountId,
    item_id: int,
    tx_date: date | None = None,
    description: str | None = None,
    merchant: str | None = None,
    amount: Decimal | None = None,
    direction: Direction | None = None,
) -> QueuedItem:
    """Correct the transaction fields of a queued item.

    Only the fields passed are changed. Any edit puts the item (back) into
    ``reviewing``, so an approved item must be approved again. The stored hash
    is kept: it identifies what the source delivered, and re-fetching that
    source must still be recognized as a queue duplicate.
    """

    row = _load(session, account_id=account_id, item_id=item_id)
    current = ReviewStatus(row.status)
    if current not in _EDITABLE:
        raise IngestError(f"queue item {item_id} is {current} and can no longer be edited")
    if amount is not None:
        if not amount.is_finite():
            raise IngestError("amount must be a finite number")
        amount = quantize_amount(abs(amount))
        if amount == 0:
            raise IngestError("amount must be non-zero")
        row.amount = amount
    if description is not None:
        cleaned = collapse_whitespace(description)
        if not cleaned:
            raise IngestError("description must not be empty")
        row.description = cleaned
    if merchant is not None:
        row.merchant = collapse_whitespace(merchant) or None
    if tx_date is not None:
        row.transaction_date = tx_date
        row.year_inferred = False
    if direction is not None:
        row.direction = direction.value

    row.status = ReviewStatus.REVIEWING.value
    session.flush()
    _logger.info("queue item %s edited (%s -> reviewing)", item_id, current)
    return to_item(row)


def _split_problem(amount: Decimal, splits: Sequence[CategorySplit]) -> str | None:
    if not splits:
        return "no category splits"
    total = splits_total(splits)
    if total != amount:
        return f"splits total {total:.2f} does not equal amount {amount:.2f}"
    return None


@dataclass(slots=True)
class CommitResult:
    # (item id or hash, ledger transaction id) per committed transaction.
    committed: list[tuple[int | str, str]] = field(default_factory=list)
    skipped_duplicates: int = 0

    @property
    def imported(self) -> int:
        return len(self.committed)


def _commit_one(
    session: Session,
    *,
    account_id: AccountId,
    tx: CanonicalTransaction,
    splits: Sequence[CategorySplit],
    ledger: LedgerWriter,
) -> str:
    imported, created = record_committed(session, account_id=account_id, tx=tx)
    if not created:
        _logger.info("hash %s already committed; adding another ledger link", tx.hash[:12])
    ledger_id = ledger.commit(account_id, tx, splits)
    link_ledger_transaction(session, imported=imported, ledger_transaction_id=ledger_id)
    return ledger_id


def approve_and_commit(
    session: Session,
    *,
    account_id: AccountId,
    item_ids: Iterable[int],
    ledger: LedgerWriter,
    splits_by_id: Mapping[int, Sequence[CategorySplit]] | None = None,
    now: datetime | None = None,
) -> CommitResult:
    """Commit approved queue items to the ledger and mark them ``imported``.

    ``splits_by_id`` optionally supplies splits chosen at approval time; they
    replace the stored ones. All items are validated first: any item that is
    missing, not ``approved``, or lacks splits summing to its amount aborts the
    whole call with :class:`CommitValidationError` and nothing is written.
    """

    ids = list(dict.fromkeys(item_ids))
    if not ids:
        raise CommitValidationError("no queue items given")
    overrides = dict(splits_by_id or {})

    rows = {
        r.id: r
        for r in session.execute(
            select(FiQueuedImport).where(
                FiQueuedImport.account_id == account_id,
                FiQueuedImport.id.in_(ids),
            )
        ).scalars()
    }

    problems: dict[int | str, str] = {}
    planned: list[tuple[FiQueuedImport, tuple[CategorySplit, ...]]] = []
    for item_id in ids:
        row = rows.get(item_id)
        if row is None:
            problems[item_id] = "not found"
            continue
        if row.status != ReviewStatus.APPROVED.value:
            problems[item_id] = f"status is {row.status}, expected approved"
            continue
        if item_id in overrides:
            splits = tuple(overrides[item_id])
        else:
            splits = tuple(CategorySplit.from_json(s) for s in (row.splits or []))
        problem = _split_problem(row.amount, splits)
        if problem:
            problems[item_id] = problem
            continue
        planned.append((row, splits))

    if problems:
        raise CommitValidationError("commit refused", problems)

    when = now or _utcnow()
    result = CommitResult()
    for row, splits in planned:
        row.splits = [s.to_json() for s in splits]
        tx = to_transaction(row).with_splits(splits)
        ledger_id = _commit_one(
            session, account_id=account_id, tx=tx, splits=splits, ledger=ledger
        )
        row.status = ReviewStatus.IMPORTED.value
        row.imported_at = when
        row.ledger_transaction_id = ledger_id
        session.flush()
        result.committed.append((row.id, ledger_id))

    _logger.info("committed %d queue items for %s", result.imported, account_id)
    return result


def commit_transactions(
    session: Session,
    *,
    account_id: AccountId,
    transactions: Sequence[CanonicalTransaction],
    ledger: LedgerWriter,
    force_include_hashes: Collection[str] = (),
) -> CommitResult:
    """Commit a reviewed manual batch.

    Flagged duplicates are left out unless their hash is in
    ``force_include_hashes``. Every included transaction must carry splits
    summing to its amount; otherwise :class:`CommitValidationError` (keyed by
    hash) is raised before any write.
    """

    forced = set(force_include_hashes)
    included: list[CanonicalTransaction] = []
    skipped = 0
    for tx in transactions:
        if tx.is_duplicate and tx.hash not in forced:
            skipped += 1
            continue
        included.append(tx)

    problems: dict[int | str, str] = {}
    for tx in included:
        problem = _split_problem(tx.amount, tx.splits)
        if problem:
            problems[tx.hash] = problem
    if problems:
        raise CommitValidationError("commit refused", problems)

    result = CommitResult(skipped_duplicates=skipped)
    for tx in included:
        ledger_id = _commit_one(
            session, account_id=account_id, tx=tx, splits=tx.splits, ledger=ledger
        )
        result.committed.append((tx.hash, ledger_id))

    _logger.info(
        "committed %d transactions for %s (%d duplicates left out)",
        result.imported,
        account_id,
        skipped,
    )
    return result


__all__ = [
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "transition",
    "set_splits",
    "update_item",
    "CommitResult",
    "approve_and_commit",
    "commit_transactions",
]
