# ruff: noqa: I001
"""Transaction identity and the committed-hash index.

The hash defined here is the single dedup identity for every ingestion path
(CSV upload, statement text, image, bank API). It is computed over the
normalized ``(date, description, abs(amount), raw_row)`` tuple so that:

- the same transaction seen through two paths hashes identically when the
  normalized inputs agree;
- the sign of the amount never matters;
- two genuinely repeated transactions that differ only in incidental raw
  fields (time of day, running balance) do not collide.

The write helpers maintain ``fi_imported_transactions`` (one row per committed
``(account_id, hash)``) and ``fi_imported_transaction_links`` (which ledger
transaction a committed row produced). Callers own the transaction scope.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models.imports import FiImportedTransaction, FiImportedTransactionLink
from .merchants import collapse_whitespace
from .models import AccountId, quantize_amount

if TYPE_CHECKING:
    from .ctv import CanonicalTransaction


def compute_transaction_hash(
    *,
    tx_date: date,
    description: str,
    amount: Decimal,
    raw_row: str | None,
) -> str:
    """Return the SHA-256 hex digest identifying one transaction.

    Fields used: ISO date, whitespace-collapsed description, absolute amount
    (2 dp string) and the verbatim raw row (or ``None``).
    """

    payload = {
        "date": tx_date.isoformat(),
        "description": collapse_whitespace(description),
        "amount": f"{quantize_amount(abs(amount)):.2f}",
        "raw": raw_row,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def find_committed(
    session: Session, *, account_id: AccountId, tx_hash: str
) -> FiImportedTransaction | None:
    return session.execute(
        select(FiImportedTransaction).where(
            FiImportedTransaction.account_id == account_id,
            FiImportedTransaction.hash == tx_hash,
        )
    ).scalar_one_or_none()


def record_committed(
    session: Session,
    *,
    account_id: AccountId,
    tx: CanonicalTransaction,
) -> tuple[FiImportedTransaction, bool]:
    """Insert the committed-hash row for ``tx`` or return the existing one.

    Returns ``(row, created)``. The insert runs inside a savepoint so a
    concurrent commit of the same hash (unique ``(account_id, hash)``) is
    absorbed instead of aborting the caller's transaction.
    """

    existing = find_committed(session, account_id=account_id, tx_hash=tx.hash)
    if existing is not None:
        return existing, False

    row = FiImportedTransaction(
        account_id=account_id,
        hash=tx.hash,
        transaction_date=tx.date,
        description=tx.description,
        amount=tx.amount,
        direction=tx.direction.value,
        source=tx.source,
    )
    try:
        with session.begin_nested():
            session.add(row)
            session.flush()
    except IntegrityError:
        raced = find_committed(session, account_id=account_id, tx_hash=tx.hash)
        if raced is None:
            raise
        return raced, False
    return row, True


def link_ledger_transaction(
    session: Session,
    *,
    imported: FiImportedTransaction,
    ledger_transaction_id: str,
) -> FiImportedTransactionLink:
    link = FiImportedTransactionLink(
        imported_transaction_id=imported.id,
        ledger_transaction_id=ledger_transaction_id,
    )
    session.add(link)
    session.flush()
    return link


__all__ = [
    "compute_transaction_hash",
    "find_committed",
    "record_committed",
    "link_ledger_transaction",
]
