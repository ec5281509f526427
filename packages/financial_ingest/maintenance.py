# ruff: noqa: I001
"""Repair jobs for the import tables.

An import that fails after recording a transaction hash but before the ledger
write leaves an *orphan*: a ``fi_imported_transactions`` row with no
``fi_imported_transaction_links`` row. Orphans make later imports of the same
transaction look like database duplicates, so :func:`sweep_orphaned_imports`
removes them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models.imports import FiImportedTransaction, FiImportedTransactionLink
from .logging_setup import get_logger
from .models import AccountId

_logger = get_logger("financial_ingest.maintenance")


@dataclass(frozen=True, slots=True)
class OrphanRecord:
    id: int
    account_id: str
    transaction_date: date
    description: str
    amount: Decimal


def find_orphaned_imports(
    session: Session, *, account_id: AccountId | None = None
) -> list[OrphanRecord]:
    linked = select(FiImportedTransactionLink.imported_transaction_id)
    stmt = (
        select(FiImportedTransaction)
        .where(FiImportedTransaction.id.not_in(linked))
        .order_by(FiImportedTransaction.id)
    )
    if account_id is not None:
        stmt = stmt.where(FiImportedTransaction.account_id == account_id)
    return [
        OrphanRecord(
            id=row.id,
            account_id=row.account_id,
            transaction_date=row.transaction_date,
            description=row.description,
            amount=row.amount,
        )
        for row in session.execute(stmt).scalars()
    ]


def sweep_orphaned_imports(
    session: Session, *, account_id: AccountId | None = None, dry_run: bool = False
) -> list[OrphanRecord]:
    """Delete unlinked imported-transaction records and return what was found.

    With ``dry_run`` nothing is deleted. The caller owns the transaction.
    """

    orphans = find_orphaned_imports(session, account_id=account_id)
    if not orphans:
        _logger.info("no orphaned import records")
        return orphans
    if dry_run:
        _logger.info("found %d orphaned import records (dry run)", len(orphans))
        return orphans

    session.execute(
        delete(FiImportedTransaction).where(
            FiImportedTransaction.id.in_([o.id for o in orphans])
        )
    )
    session.flush()
    _logger.info("deleted %d orphaned import records", len(orphans))
    return orphans


__all__ = ["OrphanRecord", "find_orphaned_imports", "sweep_orphaned_imports"]
