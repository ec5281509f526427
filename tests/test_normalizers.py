from datetime import date
from decimal import Decimal

import pytest

from financial_ingest.column_analyzer import analyze_columns
from financial_ingest.models import ColumnMapping, Direction, SignConvention
from financial_ingest.normalizers import map_row, map_rows, parse_amount
from financial_ingest.persistence import compute_transaction_hash


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("-52.10", Decimal("-52.10")),
        ("$1,234.56", Decimal("1234.56")),
        ("($12.00)", Decimal("-12.00")),
        ("12.00-", Decimal("-12.00")),
        ("-($1,234.56)", Decimal("-1234.56")),
        ("1.234,56", Decimal("1234.56")),
        ("USD 7", Decimal("7")),
    ],
)
def test_parse_amount_formats(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", None, "abc", "NaN", "Infinity"])
def test_parse_amount_rejects_non_numbers(raw):
    assert parse_amount(raw) is None


def test_signed_amount_negative_is_expense_for_checking_exports():
    mapping = ColumnMapping(date_column=0, description_column=1, amount_column=2)
    tx, confidence = map_row(["01/17/2025", "SHELL OIL", "-52.10"], mapping)
    assert tx.amount == Decimal("52.10")
    assert tx.direction is Direction.EXPENSE
    assert tx.signed_amount == Decimal("-52.10")
    assert tx.date == date(2025, 1, 17)
    assert confidence == pytest.approx(0.9)


def test_positive_is_expense_for_card_exports():
    mapping = ColumnMapping(
        date_column=0,
        description_column=1,
        amount_column=2,
        sign_convention=SignConvention.POSITIVE_IS_EXPENSE,
    )
    tx, _ = map_row(["01/17/2025", "AIRLINE", "300.00"], mapping)
    assert tx.direction is Direction.EXPENSE
    refund, _ = map_row(["01/18/2025", "AIRLINE REFUND", "-300.00"], mapping)
    assert refund.direction is Direction.INCOME
    assert refund.amount == Decimal("300.00")


def test_debit_zero_credit_hundred_is_income():
    mapping = ColumnMapping(
        date_column=0,
        description_column=1,
        debit_column=2,
        credit_column=3,
        sign_convention=SignConvention.SEPARATE_DEBIT_CREDIT,
    )
    tx, _ = map_row(["02/03/2025", "SALARY", "0", "100"], mapping)
    assert tx.direction is Direction.INCOME
    assert tx.amount == Decimal("100.00")


def test_both_debit_and_credit_populated_is_rejected():
    mapping = ColumnMapping(
        date_column=0,
        debit_column=1,
        credit_column=2,
        sign_convention=SignConvention.SEPARATE_DEBIT_CREDIT,
    )
    with pytest.raises(ValueError, match="both debit and credit"):
        map_row(["02/03/2025", "5.00", "6.00"], mapping)


def test_type_column_direction():
    mapping = ColumnMapping(
        date_column=0,
        amount_column=1,
        transaction_type_column=2,
        sign_convention=SignConvention.TYPE_COLUMN,
    )
    tx, _ = map_row(["05/01/2025", "20.00", "CR"], mapping)
    assert tx.direction is Direction.INCOME
    with pytest.raises(ValueError, match="unrecognized transaction type"):
        map_row(["05/01/2025", "20.00", "???"], mapping)


def test_mapping_requires_consistent_amount_columns():
    with pytest.raises(ValueError):
        ColumnMapping(date_column=0, debit_column=1, credit_column=2)
    with pytest.raises(ValueError):
        ColumnMapping(
            date_column=0, amount_column=1, sign_convention=SignConvention.TYPE_COLUMN
        )


def test_map_rows_skips_bad_rows_and_ignores_pending():
    mapping = ColumnMapping(
        date_column=0, description_column=1, amount_column=2, status_column=3
    )
    rows = [
        ["Date", "Description", "Amount", "Status"],
        ["01/15/2025", "COFFEE", "-4.50", "Posted"],
        ["not a date", "BROKEN", "-1.00", "Posted"],
        ["01/16/2025", "ZERO", "0.00", "Posted"],
        ["01/17/2025", "HOLD", "-9.00", "Pending"],
        ["", "", "", ""],
        ["01/18/2025", "BOOKS", "-20.00", "Posted"],
    ]
    result = map_rows(rows, mapping)
    assert [t.description for t in result.transactions] == ["COFFEE", "BOOKS"]
    assert [s.index for s in result.skipped] == [2, 3]
    assert "unparseable date" in result.skipped[0].reason
    assert result.skipped[1].reason == "zero amount"
    assert result.ignored == 2
    assert result.attempted == 4


def test_hash_covers_the_raw_row():
    mapping = ColumnMapping(date_column=0, description_column=1, amount_column=2)
    a, _ = map_row(["01/15/2025", "COFFEE", "-4.50"], mapping)
    b, _ = map_row(["01/15/2025", "COFFEE", "-4.50"], mapping)
    c, _ = map_row(["01/15/2025", "COFFEE", "-4.50", "ref 2"], mapping)
    assert a.hash == b.hash
    assert a.hash != c.hash


def test_detected_mapping_for_date_amount_description_export():
    rows = [["Date", "Amount", "Description"], ["03/04/2024", "-52.10", "COFFEE SHOP"]]
    mapping = analyze_columns(rows).to_mapping()
    assert (mapping.date_column, mapping.amount_column, mapping.description_column) == (0, 1, 2)

    (tx,) = map_rows(rows, mapping).transactions
    assert tx.date == date(2024, 3, 4)
    assert tx.amount == Decimal("52.10")
    assert tx.direction is Direction.EXPENSE
    assert tx.description == "COFFEE SHOP"


def test_hash_ignores_the_amount_sign():
    fields = {"tx_date": date(2025, 1, 15), "description": "COFFEE", "raw_row": '["x"]'}
    positive = compute_transaction_hash(amount=Decimal("4.50"), **fields)
    negative = compute_transaction_hash(amount=Decimal("-4.50"), **fields)
    assert positive == negative
    assert positive != compute_transaction_hash(amount=Decimal("4.51"), **fields)
