from datetime import date
from decimal import Decimal

import pytest

from financial_ingest.ctv import make_transaction
from financial_ingest.duplicates import flag_duplicates, summarize
from financial_ingest.errors import IngestError
from financial_ingest.models import (
    BatchStatus,
    ColumnMapping,
    DedupStatus,
    Direction,
    ReviewStatus,
    SignConvention,
)
from financial_ingest.normalizers import map_rows
from financial_ingest.queue import (
    batch_status,
    create_setup,
    delete_batch,
    enqueue_transactions,
    find_setup,
    get_or_create_manual_setup,
    list_batches,
    list_items,
    remap_batch,
    save_batch_source,
)
from financial_ingest.review import transition

from tests.helpers.context import ACCOUNT, make_ctx
from tests.helpers.db import add_imported


def _tx(desc: str = "COFFEE", amount: str = "4.50", day: int = 15):
    return make_transaction(
        tx_date=date(2025, 1, day),
        description=desc,
        amount=Decimal(amount),
        direction=Direction.EXPENSE,
        raw_row=f'["01/{day:02d}/2025", "{desc}", "-{amount}"]',
        source="csv",
    )


def _statuses(txs):
    return [t.dedup_status for t in txs]


def test_first_occurrence_in_a_run_wins(session, ctx):
    a, b = _tx(), _tx("BAGEL", "3.00")
    flagged = flag_duplicates(session, ctx, [a, a, b])
    assert _statuses(flagged) == [
        DedupStatus.UNIQUE,
        DedupStatus.DUPLICATE_WITHIN_FILE,
        DedupStatus.UNIQUE,
    ]
    # The run context remembers hashes across files of the same run.
    again = flag_duplicates(session, ctx, [b])
    assert _statuses(again) == [DedupStatus.DUPLICATE_WITHIN_FILE]


def test_committed_hash_is_a_database_duplicate_per_account(session):
    a = _tx()
    add_imported(session, account_id=ACCOUNT, tx_hash=a.hash)
    assert _statuses(flag_duplicates(session, make_ctx(), [a])) == [
        DedupStatus.DUPLICATE_DATABASE
    ]
    assert _statuses(flag_duplicates(session, make_ctx("acct-2"), [a])) == [DedupStatus.UNIQUE]


def test_enqueue_is_idempotent(session):
    setup_id = get_or_create_manual_setup(session, account_id=ACCOUNT)
    txs = [_tx(), _tx("BAGEL", "3.00", day=16)]

    first = enqueue_transactions(
        session, make_ctx(), setup_id=setup_id, batch_id="b1", transactions=txs
    )
    assert first.queued == 2

    second = enqueue_transactions(
        session, make_ctx(), setup_id=setup_id, batch_id="b2", transactions=txs
    )
    assert second.queued == 0
    assert _statuses(second.duplicates) == [DedupStatus.DUPLICATE_QUEUE] * 2
    assert len(list_items(session, account_id=ACCOUNT)) == 2


def test_committed_tier_wins_over_queue_tier(session):
    a = _tx()
    enqueue_transactions(session, make_ctx(), setup_id=None, batch_id="b1", transactions=[a])
    add_imported(session, account_id=ACCOUNT, tx_hash=a.hash)
    flagged = flag_duplicates(session, make_ctx(), [a])
    assert _statuses(flagged) == [DedupStatus.DUPLICATE_DATABASE]
    assert summarize(flagged).database == 1


def test_rejected_items_do_not_block_requeue(session):
    a = _tx()
    first = enqueue_transactions(
        session, make_ctx(), setup_id=None, batch_id="b1", transactions=[a]
    )
    (item_id,) = first.inserted_ids
    transition(
        session,
        account_id=ACCOUNT,
        item_id=item_id,
        status=ReviewStatus.REVIEWING,
        reviewer="sam",
    )
    transition(
        session,
        account_id=ACCOUNT,
        item_id=item_id,
        status=ReviewStatus.REJECTED,
        reviewer="sam",
        notes="looks wrong",
    )

    again = enqueue_transactions(
        session, make_ctx(), setup_id=None, batch_id="b2", transactions=[a]
    )
    assert again.queued == 1
    pending = list_items(session, account_id=ACCOUNT, status=ReviewStatus.PENDING)
    assert [i.batch_id for i in pending] == ["b2"]


def test_manual_setup_is_shared(session):
    first = get_or_create_manual_setup(session, account_id=ACCOUNT)
    assert get_or_create_manual_setup(session, account_id=ACCOUNT) == first
    assert get_or_create_manual_setup(session, account_id="acct-2") != first


def test_find_setup_skips_inactive(session):
    setup = create_setup(
        session,
        account_id=ACCOUNT,
        source_type="email",
        source_identifier="import+abc@example.com",
        integration_name="Bank emails",
    )
    found = find_setup(
        session, source_type="email", source_identifier="import+abc@example.com"
    )
    assert found is not None and found.id == setup.id

    setup.is_active = False
    session.flush()
    assert (
        find_setup(session, source_type="email", source_identifier="import+abc@example.com")
        is None
    )


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


def test_batch_status_aggregation():
    p, r, a = ReviewStatus.PENDING, ReviewStatus.REVIEWING, ReviewStatus.APPROVED
    assert batch_status([p, p]) is BatchStatus.PENDING
    assert batch_status([p, r]) is BatchStatus.REVIEWING
    assert batch_status([a, r]) is BatchStatus.PARTIALLY_APPROVED
    assert batch_status([a, a]) is BatchStatus.APPROVED
    assert batch_status([]) is BatchStatus.PENDING


def test_list_batches_derives_status_from_members(session):
    first = enqueue_transactions(
        session,
        make_ctx(),
        setup_id=None,
        batch_id="b1",
        transactions=[_tx(day=10), _tx("BAGEL", "3.00", day=12)],
    )
    enqueue_transactions(
        session, make_ctx(), setup_id=None, batch_id="b2", transactions=[_tx("TEA", "2.00")]
    )

    batches = list_batches(session, account_id=ACCOUNT)
    assert [b.batch_id for b in batches] == ["b2", "b1"]
    b1 = batches[1]
    assert b1.count == 2
    assert (b1.date_start, b1.date_end) == (date(2025, 1, 10), date(2025, 1, 12))
    assert b1.status is BatchStatus.PENDING

    item_id = first.inserted_ids[0]
    for status in (ReviewStatus.REVIEWING, ReviewStatus.APPROVED):
        transition(session, account_id=ACCOUNT, item_id=item_id, status=status, reviewer="sam")
    b1 = {b.batch_id: b for b in list_batches(session, account_id=ACCOUNT)}["b1"]
    assert b1.status is BatchStatus.PARTIALLY_APPROVED
    assert b1.status_counts == {ReviewStatus.APPROVED: 1, ReviewStatus.PENDING: 1}


def test_delete_batch_only_while_untouched(session):
    first = enqueue_transactions(
        session, make_ctx(), setup_id=None, batch_id="b1", transactions=[_tx()]
    )
    enqueue_transactions(
        session, make_ctx(), setup_id=None, batch_id="b2", transactions=[_tx("TEA", "2.00")]
    )
    transition(
        session,
        account_id=ACCOUNT,
        item_id=first.inserted_ids[0],
        status=ReviewStatus.REVIEWING,
        reviewer="sam",
    )

    with pytest.raises(IngestError, match="cannot be deleted"):
        delete_batch(session, account_id=ACCOUNT, batch_id="b1")
    assert delete_batch(session, account_id=ACCOUNT, batch_id="b2") == 1
    assert [b.batch_id for b in list_batches(session, account_id=ACCOUNT)] == ["b1"]


def test_remap_batch_replaces_pending_items(session):
    rows = [
        ["Date", "Description", "Amount"],
        ["01/15/2025", "REFUND SHOP", "25.00"],
        ["01/16/2025", "GROCERY", "-40.00"],
    ]
    save_batch_source(session, account_id=ACCOUNT, batch_id="b1", rows=rows)
    wrong = ColumnMapping(
        date_column=0,
        description_column=1,
        amount_column=2,
        sign_convention=SignConvention.POSITIVE_IS_EXPENSE,
    )
    enqueue_transactions(
        session,
        make_ctx(),
        setup_id=None,
        batch_id="b1",
        transactions=map_rows(rows, wrong).transactions,
    )
    before = {i.description: i.direction for i in list_items(session, account_id=ACCOUNT)}
    assert before["REFUND SHOP"] is Direction.EXPENSE

    fixed = ColumnMapping(date_column=0, description_column=1, amount_column=2)
    result = remap_batch(session, make_ctx(), batch_id="b1", mapping=fixed)
    assert result.queued == 2
    after = {i.description: i.direction for i in list_items(session, account_id=ACCOUNT)}
    assert after == {"REFUND SHOP": Direction.INCOME, "GROCERY": Direction.EXPENSE}


def test_remap_requires_saved_rows(session):
    with pytest.raises(IngestError, match="no saved source rows"):
        remap_batch(
            session,
            make_ctx(),
            batch_id="missing",
            mapping=ColumnMapping(date_column=0, amount_column=1),
        )
