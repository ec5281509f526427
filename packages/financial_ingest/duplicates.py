# ruff: noqa: I001
"""Three-tier duplicate detection shared by the manual and queued flows.

Tiers, all checked before a transaction is accepted:

1. Within the run: the first occurrence of a hash wins, later ones are
   ``duplicate_within_file``. The seen set lives on the
   :class:`~financial_ingest.run_context.ImportRunContext`, so several files in
   one email batch dedup against each other.
2. Committed store: hashes in ``fi_imported_transactions`` for the account are
   ``duplicate_database``.
3. Pending queue: hashes of live (not rejected) rows in ``fi_queued_imports``
   for the account are ``duplicate_queue``. This guards re-fetch races where
   the first delivery has not been reviewed yet.

Duplicates are statuses, never errors and never deleted. Lookups are batched
in chunks to keep ``IN`` lists bounded.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.imports import FiImportedTransaction, FiQueuedImport
from .ctv import CanonicalTransaction
from .logging_setup import get_logger
from .models import AccountId, DedupStatus, ReviewStatus
from .run_context import ImportRunContext

_logger = get_logger("financial_ingest.duplicates")

_CHUNK = 500


def _chunks(values: Sequence[str], size: int = _CHUNK) -> Iterable[Sequence[str]]:
    for i in range(0, len(values), size):
        yield values[i : i + size]


def committed_hashes(session: Session, *, account_id: AccountId, hashes: Iterable[str]) -> set[str]:
    """Subset of ``hashes`` already committed for the account."""

    wanted = sorted(set(hashes))
    found: set[str] = set()
    for chunk in _chunks(wanted):
        found.update(
            session.execute(
                select(FiImportedTransaction.hash).where(
                    FiImportedTransaction.account_id == account_id,
                    FiImportedTransaction.hash.in_(chunk),
                )
            ).scalars()
        )
    return found


def queued_hashes(session: Session, *, account_id: AccountId, hashes: Iterable[str]) -> set[str]:
    """Subset of ``hashes`` present on live (not rejected) queue rows for the account."""

    wanted = sorted(set(hashes))
    found: set[str] = set()
    for chunk in _chunks(wanted):
        found.update(
            session.execute(
                select(FiQueuedImport.hash).where(
                    FiQueuedImport.account_id == account_id,
                    FiQueuedImport.hash.in_(chunk),
                    FiQueuedImport.status != ReviewStatus.REJECTED.value,
                )
            ).scalars()
        )
    return found


@dataclass(frozen=True, slots=True)
class DedupSummary:
    unique: int
    within_file: int
    database: int
    queue: int

    @property
    def duplicates(self) -> int:
        return self.within_file + self.database + self.queue


def flag_duplicates(
    session: Session,
    ctx: ImportRunContext,
    transactions: Sequence[CanonicalTransaction],
) -> list[CanonicalTransaction]:
    """Return copies of ``transactions`` with ``dedup_status`` set by the three tiers.

    Order is preserved. Unique hashes are added to ``ctx.seen_hashes`` so a
    later call in the same run treats them as already seen.
    """

    hashes = [tx.hash for tx in transactions]
    in_store = committed_hashes(session, account_id=ctx.account_id, hashes=hashes)
    in_queue = queued_hashes(session, account_id=ctx.account_id, hashes=hashes)

    out: list[CanonicalTransaction] = []
    for tx in transactions:
        if tx.hash in ctx.seen_hashes:
            status = DedupStatus.DUPLICATE_WITHIN_FILE
        elif tx.hash in in_store:
            status = DedupStatus.DUPLICATE_DATABASE
        elif tx.hash in in_queue:
            status = DedupStatus.DUPLICATE_QUEUE
        else:
            status = DedupStatus.UNIQUE
        ctx.seen_hashes.add(tx.hash)
        out.append(tx.with_dedup_status(status))

    summary = summarize(out)
    if summary.duplicates:
        _logger.info(
            "dedup for %s: %d unique, %d within file, %d committed, %d queued",
            ctx.account_id,
            summary.unique,
            summary.within_file,
            summary.database,
            summary.queue,
        )
    return out


def summarize(transactions: Iterable[CanonicalTransaction]) -> DedupSummary:
    counts = dict.fromkeys(DedupStatus, 0)
    for tx in transactions:
        counts[tx.dedup_status] += 1
    return DedupSummary(
        unique=counts[DedupStatus.UNIQUE],
        within_file=counts[DedupStatus.DUPLICATE_WITHIN_FILE],
        database=counts[DedupStatus.DUPLICATE_DATABASE],
        queue=counts[DedupStatus.DUPLICATE_QUEUE],
    )


__all__ = [
    "committed_hashes",
    "queued_hashes",
    "flag_duplicates",
    "summarize",
    "DedupSummary",
]
