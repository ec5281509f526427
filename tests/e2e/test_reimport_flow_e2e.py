# ruff: noqa: E402, I001
from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

# Make sure the workspace dirs are on sys.path so `financial_ingest` and `db` import
_ROOT = Path(__file__).resolve().parents[2]
_PKG_DIRS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src"]
sys.path[:0] = [p for p in [*map(str, _PKG_DIRS), str(_ROOT)] if p not in sys.path]

from db.client import dispose_engine, session_scope  # noqa: E402
from db.models.imports import FiImportedTransactionLink  # noqa: E402
from sqlalchemy import delete, select  # noqa: E402

from financial_ingest.api import (  # noqa: E402
    JsonlLedgerWriter,
    SqlTemplateStore,
    commit_transactions,
    prepare_tabular_import,
    sweep_orphaned_imports,
)
from financial_ingest.ingest.utils import read_csv_file  # noqa: E402
from financial_ingest.models import CategorySplit, DedupStatus, Direction  # noqa: E402

from tests.helpers.context import ACCOUNT, make_ctx  # noqa: E402
from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402


def _categorize(tx):
    """Deterministic single-category split for each fixture row."""

    desc = tx.description.upper()
    if "PAYROLL" in desc:
        cat = "INCOME_SALARY"
    elif "COFFEE" in desc:
        cat = "FOOD_COFFEE"
    elif "SHELL" in desc:
        cat = "AUTO_FUEL"
    elif "TRANSFER" in desc:
        cat = "TRANSFER"
    else:
        cat = "GENERAL"
    return tx.with_splits([CategorySplit(cat, tx.amount)])


def test_e2e_reimport_of_committed_statement_adds_nothing(tmp_path: Path):
    csv_path = Path(__file__).resolve().parents[1] / "data/checking_2025_01.csv"
    rows = read_csv_file(csv_path)

    db_url = bootstrap_sqlite_db(tmp_path / "fi-e2e.db")
    ledger = JsonlLedgerWriter(tmp_path / "ledger.jsonl")

    try:
        # -------------------------
        # First import: preview, categorize, commit
        # -------------------------
        with session_scope(database_url=db_url) as session:
            preview = prepare_tabular_import(
                session, make_ctx(), rows, templates=SqlTemplateStore(session)
            )
            assert preview.recognized
            assert len(preview.transactions) == 8
            # Same merchant, date and amount twice: the balance column keeps them apart.
            assert len(preview.unique) == 8

            payroll = preview.transactions[0]
            assert payroll.direction is Direction.INCOME
            assert payroll.amount == Decimal("2450.00")

            result = commit_transactions(
                session,
                account_id=ACCOUNT,
                transactions=[_categorize(t) for t in preview.transactions],
                ledger=ledger,
            )
            assert result.imported == 8

        entries = ledger.read_all()
        assert len(entries) == 8
        assert sum(Decimal(e["amount"]) for e in entries) == Decimal("1722.49")

        # -------------------------
        # Second import of the same file: everything is a database duplicate
        # -------------------------
        with session_scope(database_url=db_url) as session:
            again = prepare_tabular_import(
                session, make_ctx(), rows, templates=SqlTemplateStore(session)
            )
            assert again.unique == []
            assert {t.dedup_status for t in again.transactions} == {
                DedupStatus.DUPLICATE_DATABASE
            }

        # -------------------------
        # A commit that lost its ledger link is swept and becomes importable again
        # -------------------------
        with session_scope(database_url=db_url) as session:
            link_id = session.execute(
                select(FiImportedTransactionLink.id).order_by(FiImportedTransactionLink.id)
            ).scalars().first()
            session.execute(
                delete(FiImportedTransactionLink).where(FiImportedTransactionLink.id == link_id)
            )

        with session_scope(database_url=db_url) as session:
            dry = sweep_orphaned_imports(session, account_id=ACCOUNT, dry_run=True)
            assert len(dry) == 1
            swept = sweep_orphaned_imports(session, account_id=ACCOUNT)
            assert [o.id for o in swept] == [o.id for o in dry]
            assert sweep_orphaned_imports(session, account_id=ACCOUNT) == []

        with session_scope(database_url=db_url) as session:
            third = prepare_tabular_import(
                session, make_ctx(), rows, templates=SqlTemplateStore(session)
            )
            assert [t.description for t in third.unique] == [swept[0].description]
    finally:
        dispose_engine(database_url=db_url)
