from financial_ingest.column_analyzer import analyze_columns, header_score
from financial_ingest.models import SignConvention


def test_headed_signed_amount_file():
    rows = [
        ["Date", "Description", "Amount"],
        ["01/15/2025", "STARBUCKS #123", "-4.50"],
        ["01/16/2025", "PAYROLL DEPOSIT", "2500.00"],
        ["01/17/2025", "SHELL OIL 5551", "-52.10"],
    ]
    res = analyze_columns(rows)
    assert res.has_headers is True
    assert (res.date_column, res.description_column, res.amount_column) == (0, 1, 2)
    assert res.sign_convention is SignConvention.POSITIVE_IS_INCOME
    assert res.date_format == "MM/DD/YYYY"
    mapping = res.to_mapping()
    assert mapping is not None
    assert mapping.amount_column == 2
    assert mapping.has_headers is True


def test_debit_credit_columns_are_paired():
    rows = [
        ["Posting Date", "Details", "Debit", "Credit", "Balance"],
        ["02/01/2025", "RENT", "1200.00", "", "800.00"],
        ["02/03/2025", "SALARY", "", "3000.00", "3800.00"],
        ["02/04/2025", "GROCERY MART", "86.40", "", "3713.60"],
    ]
    res = analyze_columns(rows)
    assert res.date_column == 0
    assert res.description_column == 1
    assert (res.debit_column, res.credit_column) == (2, 3)
    assert res.amount_column is None
    assert res.sign_convention is SignConvention.SEPARATE_DEBIT_CREDIT
    assert res.columns[4].role == "balance"


def test_post_date_wins_over_transaction_date():
    rows = [
        ["Transaction Date", "Post Date", "Description", "Amount"],
        ["03/01/2025", "03/02/2025", "AMAZON MKTPLACE", "19.99"],
        ["03/03/2025", "03/04/2025", "NETFLIX.COM", "15.49"],
    ]
    res = analyze_columns(rows)
    assert res.date_column == 1
    assert res.amount_column == 3
    assert res.description_column == 2


def test_headerless_file_is_detected_from_content():
    rows = [
        ["2025-04-01", "COFFEE SHOP", "3.75"],
        ["2025-04-02", "BOOKSTORE", "12.00"],
        ["2025-04-03", "TRAIN TICKET", "2.90"],
    ]
    res = analyze_columns(rows)
    assert res.has_headers is False
    assert (res.date_column, res.description_column, res.amount_column) == (0, 1, 2)
    assert res.headers == ("Column 1", "Column 2", "Column 3")
    assert res.to_mapping().has_headers is False


def test_type_column_with_unsigned_amounts():
    rows = [
        ["Date", "Description", "Amount", "Type"],
        ["05/01/2025", "REFUND STORE", "20.00", "Credit"],
        ["05/02/2025", "HARDWARE", "45.00", "Debit"],
    ]
    res = analyze_columns(rows)
    assert res.transaction_type_column == 3
    assert res.sign_convention is SignConvention.TYPE_COLUMN
    assert res.to_mapping().transaction_type_column == 3


def test_unrecognized_file_yields_no_mapping():
    rows = [["Name", "Notes"], ["alpha", "first"], ["beta", "second"]]
    res = analyze_columns(rows)
    assert res.recognized is False
    assert res.to_mapping() is None


def test_empty_input_does_not_raise():
    res = analyze_columns([])
    assert res.column_count == 0
    assert res.to_mapping() is None


def test_fingerprint_depends_on_headers_not_data():
    a = analyze_columns([["Date", "Memo", "Amount"], ["01/01/2025", "A", "1.00"]])
    b = analyze_columns([["date", "memo", "amount"], ["12/31/2024", "BBB", "-9.99"]])
    c = analyze_columns([["Date", "Payee", "Amount"], ["01/01/2025", "A", "1.00"]])
    assert a.fingerprint == b.fingerprint
    assert a.fingerprint != c.fingerprint
    assert a.fingerprint.startswith("3-")


def test_header_score_tiers():
    assert header_score("Amount", "amount") == 1.0
    assert header_score("Transaction Amount (USD)", "amount") == 0.85
    assert header_score("Zip Code", "amount") == 0.0
