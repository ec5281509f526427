# ruff: noqa: I001
"""Template store: fingerprint → learned column mapping, per account.

A template is created the first time a user confirms (or corrects) the
mapping for a new file structure and is reused whenever a later file has the
same structural fingerprint (see :mod:`financial_ingest.column_analyzer`).
Reuse bumps ``usage_count`` and ``last_used_at``. Templates are deleted only
explicitly.

The contract is a small key-value interface (:class:`TemplateStore`); the
shipped implementation, :class:`SqlTemplateStore`, persists to
``fi_import_templates`` through the caller's SQLAlchemy session. Mappings are
stored as the JSON dump of :class:`~financial_ingest.models.ColumnMapping`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.imports import FiImportTemplate
from .errors import IngestError
from .logging_setup import get_logger
from .models import AccountId, ColumnMapping

_logger = get_logger("financial_ingest.templates")


@dataclass(frozen=True, slots=True)
class ImportTemplate:
    id: int
    account_id: AccountId
    name: str
    fingerprint: str
    column_count: int
    mapping: ColumnMapping
    usage_count: int
    last_used_at: datetime | None
    created_at: datetime | None


class TemplateStore(Protocol):
    def get(self, account_id: AccountId, fingerprint: str) -> ImportTemplate | None: ...

    def get_by_id(self, template_id: int) -> ImportTemplate | None: ...

    def save(
        self,
        account_id: AccountId,
        *,
        fingerprint: str,
        mapping: ColumnMapping,
        name: str,
        column_count: int,
    ) -> ImportTemplate: ...

    def record_usage(self, template_id: int) -> ImportTemplate | None: ...

    def list(self, account_id: AccountId) -> list[ImportTemplate]: ...

    def delete(self, template_id: int, *, account_id: AccountId) -> bool: ...


def _to_template(row: FiImportTemplate) -> ImportTemplate | None:
    try:
        mapping = ColumnMapping.model_validate(row.mapping)
    except ValidationError as e:
        # A stored mapping that no longer validates is treated as absent so
        # the file goes back through detection.
        _logger.warning("template %s has an invalid mapping: %s", row.id, e)
        return None
    return ImportTemplate(
        id=row.id,
        account_id=row.account_id,
        name=row.template_name,
        fingerprint=row.fingerprint,
        column_count=row.column_count,
        mapping=mapping,
        usage_count=row.usage_count or 0,
        last_used_at=row.last_used_at,
        created_at=row.created_at,
    )


class SqlTemplateStore:
    """:class:`TemplateStore` over ``fi_import_templates`` (commit at caller)."""

    def __init__(self, session: Session, *, clock=None) -> None:
        self._session = session
        self._clock = clock or (lambda: datetime.now(UTC))

    def _row(self, account_id: AccountId, fingerprint: str) -> FiImportTemplate | None:
        return self._session.execute(
            select(FiImportTemplate).where(
                FiImportTemplate.account_id == account_id,
                FiImportTemplate.fingerprint == fingerprint,
            )
        ).scalar_one_or_none()

    def get(self, account_id: AccountId, fingerprint: str) -> ImportTemplate | None:
        row = self._row(account_id, fingerprint)
        return _to_template(row) if row is not None else None

    def get_by_id(self, template_id: int) -> ImportTemplate | None:
        row = self._session.get(FiImportTemplate, template_id)
        return _to_template(row) if row is not None else None

    def save(
        self,
        account_id: AccountId,
        *,
        fingerprint: str,
        mapping: ColumnMapping,
        name: str,
        column_count: int,
    ) -> ImportTemplate:
        """Create the template for ``fingerprint`` or replace its mapping/name."""

        name = name.strip() or f"Template {fingerprint}"
        payload = mapping.model_dump(mode="json")
        row = self._row(account_id, fingerprint)
        if row is None:
            row = FiImportTemplate(
                account_id=account_id,
                template_name=name,
                fingerprint=fingerprint,
                column_count=column_count,
                mapping=payload,
                usage_count=0,
                created_at=self._clock(),
            )
            self._session.add(row)
            _logger.info("template saved for %s (%s)", account_id, fingerprint)
        else:
            row.template_name = name
            row.mapping = payload
            row.column_count = column_count
            _logger.info("template %s updated for %s", row.id, account_id)
        self._session.flush()
        saved = _to_template(row)
        if saved is None:
            raise IngestError(f"template {row.id} could not be read back after saving")
        return saved

    def record_usage(self, template_id: int) -> ImportTemplate | None:
        row = self._session.get(FiImportTemplate, template_id)
        if row is None:
            return None
        row.usage_count = (row.usage_count or 0) + 1
        row.last_used_at = self._clock()
        self._session.flush()
        return _to_template(row)

    def list(self, account_id: AccountId) -> list[ImportTemplate]:
        rows = self._session.execute(
            select(FiImportTemplate)
            .where(FiImportTemplate.account_id == account_id)
            .order_by(FiImportTemplate.usage_count.desc(), FiImportTemplate.id.asc())
        ).scalars()
        return [t for t in (_to_template(r) for r in rows) if t is not None]

    def delete(self, template_id: int, *, account_id: AccountId) -> bool:
        row = self._session.get(FiImportTemplate, template_id)
        if row is None or row.account_id != account_id:
            return False
        self._session.delete(row)
        self._session.flush()
        _logger.info("template %s deleted for %s", template_id, account_id)
        return True


__all__ = ["ImportTemplate", "TemplateStore", "SqlTemplateStore"]
