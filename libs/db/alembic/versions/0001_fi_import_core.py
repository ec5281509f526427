# ruff: noqa: I001
"""Import pipeline tables: setups, templates, committed hashes, review queue.

Revision ID: 0001_fi_import_core
Revises: None
Create Date: 2025-10-02
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_fi_import_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "fi_import_setups",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("source_type", sa.String(), nullable=False),
        sa.Column("source_identifier", sa.String(), nullable=True),
        sa.Column("integration_name", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_historical", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source_config", sa.JSON(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "source_type in ('manual','email','teller')", name="ck_fi_setup_source_type"
        ),
    )

    op.create_table(
        "fi_import_templates",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("template_name", sa.String(), nullable=False),
        sa.Column("fingerprint", sa.String(), nullable=False),
        sa.Column("column_count", sa.Integer(), nullable=False),
        sa.Column("mapping", sa.JSON(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("account_id", "fingerprint", name="uq_fi_template_account_fp"),
    )

    op.create_table(
        "fi_imported_transactions",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("hash", sa.CHAR(64), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False, server_default=sa.text("'unknown'")),
        _created_at(),
        sa.UniqueConstraint("account_id", "hash", name="uq_fi_imported_account_hash"),
        sa.CheckConstraint("direction in ('income','expense')", name="ck_fi_imported_direction"),
    )

    op.create_table(
        "fi_imported_transaction_links",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column(
            "imported_transaction_id",
            _PK,
            sa.ForeignKey("fi_imported_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ledger_transaction_id", sa.String(), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_fi_links_imported_id",
        "fi_imported_transaction_links",
        ["imported_transaction_id"],
    )

    op.create_table(
        "fi_queued_imports",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column(
            "import_setup_id", _PK, sa.ForeignKey("fi_import_setups.id"), nullable=True
        ),
        sa.Column("source_batch_id", sa.String(), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("hash", sa.CHAR(64), nullable=False),
        sa.Column("raw_row", sa.Text(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default=sa.text("'unknown'")),
        sa.Column("year_inferred", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("splits", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("is_historical", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source_fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("imported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ledger_transaction_id", sa.String(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "status in ('pending','reviewing','approved','rejected','imported')",
            name="ck_fi_queued_status",
        ),
        sa.CheckConstraint("direction in ('income','expense')", name="ck_fi_queued_direction"),
        sa.CheckConstraint("amount > 0", name="ck_fi_queued_amount_positive"),
    )
    # Partial unique index: rejected rows do not block a later re-queue.
    op.create_index(
        "uq_fi_queued_account_hash_live",
        "fi_queued_imports",
        ["account_id", "hash"],
        unique=True,
        sqlite_where=sa.text("status <> 'rejected'"),
        postgresql_where=sa.text("status <> 'rejected'"),
    )
    op.create_index("ix_fi_queued_batch", "fi_queued_imports", ["source_batch_id"])

    op.create_table(
        "fi_queue_batch_sources",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("source_batch_id", sa.String(), nullable=False),
        sa.Column("rows", sa.JSON(), nullable=False),
        sa.Column("fingerprint", sa.String(), nullable=True),
        sa.Column("file_name", sa.String(), nullable=True),
        sa.Column(
            "template_id",
            _PK,
            sa.ForeignKey("fi_import_templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at(),
        sa.UniqueConstraint("account_id", "source_batch_id", name="uq_fi_batch_source"),
    )


def downgrade() -> None:
    op.drop_table("fi_queue_batch_sources")
    op.drop_index("ix_fi_queued_batch", table_name="fi_queued_imports")
    op.drop_index("uq_fi_queued_account_hash_live", table_name="fi_queued_imports")
    op.drop_table("fi_queued_imports")
    op.drop_index("ix_fi_links_imported_id", table_name="fi_imported_transaction_links")
    op.drop_table("fi_imported_transaction_links")
    op.drop_table("fi_imported_transactions")
    op.drop_table("fi_import_templates")
    op.drop_table("fi_import_setups")
