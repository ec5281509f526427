"""DB helpers for tests: bootstrap a temporary SQLite DB and seed import rows."""

from __future__ import annotations

import os
from datetime import date
from decimal import Decimal
from pathlib import Path

from db import Base
from db.client import get_engine
from db.models.imports import FiImportedTransaction, FiImportedTransactionLink
from sqlalchemy.orm import Session


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)
    Base.metadata.create_all(bind=engine)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def add_imported(
    session: Session,
    *,
    account_id: str,
    tx_hash: str,
    linked_to: str | None = None,
    description: str = "SEEDED",
    amount: str = "1.00",
) -> FiImportedTransaction:
    """Insert one committed-transaction record, optionally with its ledger link."""

    row = FiImportedTransaction(
        account_id=account_id,
        hash=tx_hash,
        transaction_date=date(2025, 1, 1),
        description=description,
        amount=Decimal(amount),
        direction="expense",
        source="test",
    )
    session.add(row)
    session.flush()
    if linked_to is not None:
        session.add(
            FiImportedTransactionLink(
                imported_transaction_id=row.id, ledger_transaction_id=linked_to
            )
        )
        session.flush()
    return row
