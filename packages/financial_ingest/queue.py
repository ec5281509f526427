# ruff: noqa: I001
"""Import queue: pending-review storage for pushed and pulled transactions.

Automatic sources (email, bank API) and manual uploads that the user chooses to
review later land here as ``fi_queued_imports`` rows grouped by a source batch
id. Enqueue runs the three dedup tiers first and inserts unique items only, so
re-delivering the same fetch is a no-op. Each insert runs in a savepoint; a
concurrent insert of the same live ``(account_id, hash)`` trips the partial
unique index and is reported as ``duplicate_queue`` instead of failing the
batch.

Batches are views: their aggregate status is derived from member statuses at
read time and never stored. The review state machine lives in
:mod:`financial_ingest.review`.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models.imports import FiImportSetup, FiQueueBatchSource, FiQueuedImport
from .ctv import CanonicalTransaction
from .duplicates import flag_duplicates
from .errors import IngestError
from .logging_setup import get_logger
from .models import (
    AccountId,
    BatchStatus,
    CategorySplit,
    ColumnMapping,
    DedupStatus,
    Direction,
    ImportBatch,
    QueuedItem,
    RawRow,
    ReviewStatus,
)
from .normalizers import map_rows
from .run_context import ImportRunContext

_logger = get_logger("financial_ingest.queue")

# Statuses that still belong to an open batch.
_OPEN_STATUSES = (ReviewStatus.PENDING, ReviewStatus.REVIEWING, ReviewStatus.APPROVED)

MANUAL_INTEGRATION_NAME = "Manual Upload"


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


def to_item(row: FiQueuedImport) -> QueuedItem:
    return QueuedItem(
        id=row.id,
        account_id=row.account_id,
        setup_id=row.import_setup_id,
        batch_id=row.source_batch_id,
        date=row.transaction_date,
        description=row.description,
        merchant=row.merchant,
        amount=row.amount,
        direction=Direction(row.direction),
        hash=row.hash,
        status=ReviewStatus(row.status),
        splits=tuple(CategorySplit.from_json(s) for s in (row.splits or [])),
        reviewed_by=row.reviewed_by,
        reviewed_at=row.reviewed_at,
        review_notes=row.review_notes,
        is_historical=bool(row.is_historical),
        year_inferred=bool(row.year_inferred),
        imported_at=row.imported_at,
        ledger_transaction_id=row.ledger_transaction_id,
    )


def to_transaction(row: FiQueuedImport) -> CanonicalTransaction:
    """Rebuild the canonical transaction a queue row was created from."""

    return CanonicalTransaction(
        date=row.transaction_date,
        description=row.description,
        merchant=row.merchant or row.description,
        amount=row.amount,
        direction=Direction(row.direction),
        raw_row=row.raw_row,
        hash=row.hash,
        review_status=ReviewStatus(row.status),
        splits=tuple(CategorySplit.from_json(s) for s in (row.splits or [])),
        year_inferred=bool(row.year_inferred),
        source=row.source,
    )


# ---------------------------------------------------------------------------
# Setups
# ---------------------------------------------------------------------------


def get_or_create_manual_setup(session: Session, *, account_id: AccountId) -> int:
    """Id of the single shared manual-upload setup for the account."""

    existing = session.execute(
        select(FiImportSetup.id).where(
            FiImportSetup.account_id == account_id,
            FiImportSetup.source_type == "manual",
        )
    ).scalar()
    if existing is not None:
        return int(existing)

    setup = FiImportSetup(
        account_id=account_id,
        source_type="manual",
        source_identifier=f"manual-{account_id}",
        integration_name=MANUAL_INTEGRATION_NAME,
        is_active=True,
        is_historical=False,
        source_config={},
    )
    session.add(setup)
    session.flush()
    _logger.info("created manual import setup %s for %s", setup.id, account_id)
    return setup.id


def create_setup(
    session: Session,
    *,
    account_id: AccountId,
    source_type: str,
    source_identifier: str | None,
    integration_name: str,
    is_historical: bool = False,
    source_config: dict[str, Any] | None = None,
) -> FiImportSetup:
    setup = FiImportSetup(
        account_id=account_id,
        source_type=source_type,
        source_identifier=source_identifier,
        integration_name=integration_name,
        is_active=True,
        is_historical=is_historical,
        source_config=source_config or {},
    )
    session.add(setup)
    session.flush()
    return setup


def find_setup(
    session: Session, *, source_type: str, source_identifier: str
) -> FiImportSetup | None:
    """Active setup for an inbound source (email address, provider account id)."""

    return (
        session.execute(
            select(FiImportSetup)
            .where(
                FiImportSetup.source_type == source_type,
                FiImportSetup.source_identifier == source_identifier,
                FiImportSetup.is_active.is_(True),
            )
            .order_by(FiImportSetup.id.asc())
        )
        .scalars()
        .first()
    )


# ---------------------------------------------------------------------------
# Enqueue
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class EnqueueResult:
    inserted_ids: list[int] = field(default_factory=list)
    duplicates: list[CanonicalTransaction] = field(default_factory=list)
    # Every input transaction in order, with its final dedup status.
    flagged: list[CanonicalTransaction] = field(default_factory=list)

    @property
    def queued(self) -> int:
        return len(self.inserted_ids)


def enqueue_transactions(
    session: Session,
    ctx: ImportRunContext,
    *,
    setup_id: int | None,
    batch_id: str,
    transactions: Sequence[CanonicalTransaction],
    is_historical: bool = False,
    fetched_at: datetime | None = None,
) -> EnqueueResult:
    """Dedup ``transactions`` and insert the unique ones as pending queue items.

    Enqueuing the same transactions again inserts nothing: every hash is by
    then either in the run's seen set or live in the queue.
    """

    result = EnqueueResult()
    fetched_at = fetched_at or ctx.now()
    for tx in flag_duplicates(session, ctx, transactions):
        if tx.is_duplicate:
            result.duplicates.append(tx)
            result.flagged.append(tx)
            continue
        row = FiQueuedImport(
            account_id=ctx.account_id,
            import_setup_id=setup_id,
            source_batch_id=batch_id,
            transaction_date=tx.date,
            description=tx.description,
            merchant=tx.merchant,
            amount=tx.amount,
            direction=tx.direction.value,
            hash=tx.hash,
            raw_row=tx.raw_row,
            source=tx.source,
            year_inferred=tx.year_inferred,
            splits=[s.to_json() for s in tx.splits] or None,
            status=ReviewStatus.PENDING.value,
            is_historical=is_historical,
            source_fetched_at=fetched_at,
        )
        try:
            with session.begin_nested():
                session.add(row)
                session.flush()
        except IntegrityError:
            _logger.info("hash %s queued concurrently; treating as duplicate", tx.hash[:12])
            raced = tx.with_dedup_status(DedupStatus.DUPLICATE_QUEUE)
            result.duplicates.append(raced)
            result.flagged.append(raced)
            continue
        result.inserted_ids.append(row.id)
        result.flagged.append(tx)

    _logger.info(
        "batch %s: queued %d, skipped %d duplicates",
        batch_id,
        result.queued,
        len(result.duplicates),
    )
    return result


def save_batch_source(
    session: Session,
    *,
    account_id: AccountId,
    batch_id: str,
    rows: Sequence[RawRow],
    fingerprint: str | None = None,
    file_name: str | None = None,
    template_id: int | None = None,
) -> FiQueueBatchSource:
    """Keep the raw cells of a tabular batch so it can be re-mapped later."""

    src = FiQueueBatchSource(
        account_id=account_id,
        source_batch_id=batch_id,
        rows=[[str(c) if c is not None else "" for c in r] for r in rows],
        fingerprint=fingerprint,
        file_name=file_name,
        template_id=template_id,
    )
    session.add(src)
    session.flush()
    return src


def get_batch_source(
    session: Session, *, account_id: AccountId, batch_id: str
) -> FiQueueBatchSource | None:
    return session.execute(
        select(FiQueueBatchSource).where(
            FiQueueBatchSource.account_id == account_id,
            FiQueueBatchSource.source_batch_id == batch_id,
        )
    ).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def list_items(
    session: Session,
    *,
    account_id: AccountId,
    status: ReviewStatus | None = None,
    setup_id: int | None = None,
    batch_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[QueuedItem]:
    stmt = select(FiQueuedImport).where(FiQueuedImport.account_id == account_id)
    if status is not None:
        stmt = stmt.where(FiQueuedImport.status == status.value)
    if setup_id is not None:
        stmt = stmt.where(FiQueuedImport.import_setup_id == setup_id)
    if batch_id is not None:
        stmt = stmt.where(FiQueuedImport.source_batch_id == batch_id)
    stmt = (
        stmt.order_by(FiQueuedImport.transaction_date.desc(), FiQueuedImport.id.asc())
        .limit(limit)
        .offset(offset)
    )
    return [to_item(r) for r in session.execute(stmt).scalars()]


def batch_status(statuses: Iterable[ReviewStatus]) -> BatchStatus:
    """Aggregate status of a batch from its open members' statuses."""

    members = list(statuses)
    if members and all(s is ReviewStatus.APPROVED for s in members):
        return BatchStatus.APPROVED
    if any(s is ReviewStatus.APPROVED for s in members):
        return BatchStatus.PARTIALLY_APPROVED
    if any(s is ReviewStatus.REVIEWING for s in members):
        return BatchStatus.REVIEWING
    return BatchStatus.PENDING


def list_batches(session: Session, *, account_id: AccountId) -> list[ImportBatch]:
    """Open batches (with pending, reviewing or approved members), newest first."""

    rows = session.execute(
        select(
            FiQueuedImport.source_batch_id,
            FiQueuedImport.import_setup_id,
            FiQueuedImport.status,
            FiQueuedImport.transaction_date,
            FiQueuedImport.id,
        ).where(
            FiQueuedImport.account_id == account_id,
            FiQueuedImport.status.in_([s.value for s in _OPEN_STATUSES]),
        )
    ).all()

    grouped: dict[str, list[Any]] = defaultdict(list)
    for r in rows:
        grouped[r.source_batch_id].append(r)

    batches: list[ImportBatch] = []
    for batch_id, members in grouped.items():
        statuses = [ReviewStatus(m.status) for m in members]
        dates = sorted(m.transaction_date for m in members)
        batches.append(
            ImportBatch(
                batch_id=batch_id,
                account_id=account_id,
                setup_id=members[0].import_setup_id,
                status=batch_status(statuses),
                count=len(members),
                date_start=dates[0],
                date_end=dates[-1],
                status_counts=dict(Counter(statuses)),
            )
        )
    newest = {b: max(m.id for m in ms) for b, ms in grouped.items()}
    batches.sort(key=lambda b: newest[b.batch_id], reverse=True)
    return batches


# ---------------------------------------------------------------------------
# Batch maintenance
# ---------------------------------------------------------------------------


def _batch_statuses(session: Session, *, account_id: AccountId, batch_id: str) -> list[str]:
    return list(
        session.execute(
            select(FiQueuedImport.status).where(
                FiQueuedImport.account_id == account_id,
                FiQueuedImport.source_batch_id == batch_id,
            )
        ).scalars()
    )


def delete_batch(session: Session, *, account_id: AccountId, batch_id: str) -> int:
    """Delete a batch whose items are all still pending; returns rows removed."""

    statuses = _batch_statuses(session, account_id=account_id, batch_id=batch_id)
    if any(s != ReviewStatus.PENDING.value for s in statuses):
        raise IngestError(f"batch {batch_id} has reviewed items and cannot be deleted")
    removed = session.execute(
        delete(FiQueuedImport).where(
            FiQueuedImport.account_id == account_id,
            FiQueuedImport.source_batch_id == batch_id,
        )
    ).rowcount
    session.execute(
        delete(FiQueueBatchSource).where(
            FiQueueBatchSource.account_id == account_id,
            FiQueueBatchSource.source_batch_id == batch_id,
        )
    )
    session.flush()
    _logger.info("deleted batch %s (%d items)", batch_id, removed or 0)
    return int(removed or 0)


def remap_batch(
    session: Session,
    ctx: ImportRunContext,
    *,
    batch_id: str,
    mapping: ColumnMapping,
) -> EnqueueResult:
    """Re-map a pending tabular batch from its saved cells with a corrected mapping.

    The existing pending items are replaced. Raises ``IngestError`` when the
    batch has no saved source or has already been reviewed.
    """

    src = get_batch_source(session, account_id=ctx.account_id, batch_id=batch_id)
    if src is None:
        raise IngestError(f"batch {batch_id} has no saved source rows")
    statuses = _batch_statuses(session, account_id=ctx.account_id, batch_id=batch_id)
    if any(s != ReviewStatus.PENDING.value for s in statuses):
        raise IngestError(f"batch {batch_id} has reviewed items and cannot be re-mapped")

    setup_id = session.execute(
        select(FiQueuedImport.import_setup_id)
        .where(
            FiQueuedImport.account_id == ctx.account_id,
            FiQueuedImport.source_batch_id == batch_id,
        )
        .limit(1)
    ).scalar()
    session.execute(
        delete(FiQueuedImport).where(
            FiQueuedImport.account_id == ctx.account_id,
            FiQueuedImport.source_batch_id == batch_id,
        )
    )
    session.flush()

    mapped = map_rows(src.rows, mapping)
    result = enqueue_transactions(
        session,
        ctx,
        setup_id=setup_id,
        batch_id=batch_id,
        transactions=mapped.transactions,
    )
    _logger.info(
        "remapped batch %s: %d queued, %d rows skipped",
        batch_id,
        result.queued,
        len(mapped.skipped),
    )
    return result


__all__ = [
    "MANUAL_INTEGRATION_NAME",
    "EnqueueResult",
    "to_item",
    "to_transaction",
    "get_or_create_manual_setup",
    "create_setup",
    "find_setup",
    "enqueue_transactions",
    "save_batch_source",
    "get_batch_source",
    "list_items",
    "batch_status",
    "list_batches",
    "delete_batch",
    "remap_batch",
]
