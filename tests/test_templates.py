import pytest

from financial_ingest import templates
from financial_ingest.column_analyzer import analyze_columns
from financial_ingest.errors import IngestError
from financial_ingest.models import ColumnMapping, Direction, SignConvention
from financial_ingest.templates import SqlTemplateStore
from financial_ingest.workflows.import_flow import (
    FORMAT_NOT_RECOGNIZED,
    prepare_tabular_import,
    save_template_for,
)

from tests.helpers.context import ACCOUNT, NOW, make_ctx

CARD_ROWS = [
    ["Date", "Description", "Amount"],
    ["01/15/2025", "AIRLINE TICKETS", "300.00"],
    ["01/16/2025", "BOOKSTORE", "12.00"],
]
NEXT_MONTH = [
    ["Date", "Description", "Amount"],
    ["02/14/2025", "FLORIST", "45.00"],
    ["02/17/2025", "HARDWARE", "19.99"],
    ["02/18/2025", "STORE REFUND", "-10.00"],
]
CARD_MAPPING = ColumnMapping(
    date_column=0,
    description_column=1,
    amount_column=2,
    sign_convention=SignConvention.POSITIVE_IS_EXPENSE,
)


def _store(session):
    return SqlTemplateStore(session, clock=lambda: NOW)


def test_store_roundtrip_and_usage(session):
    store = _store(session)
    fp = analyze_columns(CARD_ROWS).fingerprint
    saved = store.save(ACCOUNT, fingerprint=fp, mapping=CARD_MAPPING, name="Visa", column_count=3)
    assert saved.usage_count == 0

    got = store.get(ACCOUNT, fp)
    assert got is not None
    assert got.mapping == CARD_MAPPING
    assert store.get("acct-2", fp) is None

    used = store.record_usage(saved.id)
    assert used.usage_count == 1
    assert used.last_used_at is not None

    renamed = store.save(
        ACCOUNT, fingerprint=fp, mapping=CARD_MAPPING, name="Visa card", column_count=3
    )
    assert renamed.id == saved.id
    assert [t.name for t in store.list(ACCOUNT)] == ["Visa card"]

    assert store.delete(saved.id, account_id="acct-2") is False
    assert store.delete(saved.id, account_id=ACCOUNT) is True
    assert store.get_by_id(saved.id) is None


def test_saved_template_is_reused_for_the_same_structure(session):
    store = _store(session)
    first = prepare_tabular_import(session, make_ctx(), CARD_ROWS, templates=store)
    assert first.template_id is None
    template = save_template_for(
        make_ctx(), first, templates=store, name="Visa", mapping=CARD_MAPPING
    )

    second = prepare_tabular_import(session, make_ctx(), NEXT_MONTH, templates=store)
    assert second.template_id == template.id
    assert second.mapping == CARD_MAPPING
    directions = [t.direction for t in second.transactions]
    assert directions == [Direction.EXPENSE, Direction.EXPENSE, Direction.INCOME]
    assert store.get_by_id(template.id).usage_count == 1


def test_template_that_does_not_fit_falls_back_to_detection(session):
    store = _store(session)
    fp = analyze_columns(NEXT_MONTH).fingerprint
    broken = ColumnMapping(date_column=1, description_column=0, amount_column=2)
    template = store.save(ACCOUNT, fingerprint=fp, mapping=broken, name="Old", column_count=3)

    preview = prepare_tabular_import(session, make_ctx(), NEXT_MONTH, templates=store)
    assert preview.template_id is None
    assert len(preview.transactions) == 3
    assert preview.mapping.date_column == 0
    assert any("did not match" in w for w in preview.warnings)
    assert store.get_by_id(template.id).usage_count == 0


def test_unrecognized_format_is_a_message_not_an_error(session):
    preview = prepare_tabular_import(
        session,
        make_ctx(),
        [["Name", "Notes"], ["alpha", "first"]],
        templates=_store(session),
    )
    assert preview.transactions == []
    assert preview.message == FORMAT_NOT_RECOGNIZED
    assert preview.recognized is False


def test_save_reports_an_unreadable_stored_mapping(session, monkeypatch):
    monkeypatch.setattr(templates, "_to_template", lambda row: None)
    with pytest.raises(IngestError, match="could not be read back"):
        _store(session).save(
            ACCOUNT, fingerprint="3-abc", mapping=CARD_MAPPING, name="Visa", column_count=3
        )
