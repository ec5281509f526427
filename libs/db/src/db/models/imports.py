from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# BIGINT on Postgres; INTEGER on SQLite so the rowid alias autoincrements.
_PK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Sources: fi_import_setups
# ---------------------------


class FiImportSetup(Base):
    __tablename__ = "fi_import_setups"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    source_type: Mapped[str] = mapped_column(String, nullable=False)
    # Email address for email setups, provider account id for Teller.
    source_identifier: Mapped[str | None] = mapped_column(String, nullable=True)
    integration_name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.true()
    )
    is_historical: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    source_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "source_type in ('manual','email','teller')",
            name="ck_fi_setup_source_type",
        ),
    )


# ---------------------------
# Learned mappings: fi_import_templates
# ---------------------------


class FiImportTemplate(Base):
    __tablename__ = "fi_import_templates"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    template_name: Mapped[str] = mapped_column(String, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String, nullable=False)
    column_count: Mapped[int] = mapped_column(Integer, nullable=False)
    mapping: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("account_id", "fingerprint", name="uq_fi_template_account_fp"),
    )


# ---------------------------
# Committed hash index: fi_imported_transactions
# ---------------------------


class FiImportedTransaction(Base):
    __tablename__ = "fi_imported_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'unknown'"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    # Concurrent imports for one account serialize on this constraint.
    __table_args__ = (
        UniqueConstraint("account_id", "hash", name="uq_fi_imported_account_hash"),
        CheckConstraint("direction in ('income','expense')", name="ck_fi_imported_direction"),
    )


class FiImportedTransactionLink(Base):
    __tablename__ = "fi_imported_transaction_links"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    imported_transaction_id: Mapped[int] = mapped_column(
        _PK,
        ForeignKey("fi_imported_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    ledger_transaction_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (Index("ix_fi_links_imported_id", "imported_transaction_id"),)


# ---------------------------
# Pending review: fi_queued_imports
# ---------------------------


class FiQueuedImport(Base):
    __tablename__ = "fi_queued_imports"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    import_setup_id: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("fi_import_setups.id"), nullable=True
    )
    source_batch_id: Mapped[str] = mapped_column(String, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    raw_row: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'unknown'"))
    year_inferred: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    # List of {"category": str, "amount": "12.34"} objects.
    splits: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_historical: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    source_fetched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    imported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ledger_transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('pending','reviewing','approved','rejected','imported')",
            name="ck_fi_queued_status",
        ),
        CheckConstraint("direction in ('income','expense')", name="ck_fi_queued_direction"),
        CheckConstraint("amount > 0", name="ck_fi_queued_amount_positive"),
        # Rejected rows may be re-queued by a later fetch.
        Index(
            "uq_fi_queued_account_hash_live",
            "account_id",
            "hash",
            unique=True,
            sqlite_where=text("status <> 'rejected'"),
            postgresql_where=text("status <> 'rejected'"),
        ),
        Index("ix_fi_queued_batch", "source_batch_id"),
    )


class FiQueueBatchSource(Base):
    __tablename__ = "fi_queue_batch_sources"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    source_batch_id: Mapped[str] = mapped_column(String, nullable=False)
    # Raw tabular cells as received, kept for re-mapping a pending batch.
    rows: Mapped[list[list[str]]] = mapped_column(JSON, nullable=False)
    fingerprint: Mapped[str | None] = mapped_column(String, nullable=True)
    file_name: Mapped[str | None] = mapped_column(String, nullable=True)
    template_id: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("fi_import_templates.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("account_id", "source_batch_id", name="uq_fi_batch_source"),
    )


__all__ = [
    "Base",
    "FiImportSetup",
    "FiImportTemplate",
    "FiImportedTransaction",
    "FiImportedTransactionLink",
    "FiQueuedImport",
    "FiQueueBatchSource",
]
