import json
from pathlib import Path

from typer.testing import CliRunner

from financial_ingest.cli import app

CSV = Path(__file__).resolve().parent / "data" / "checking_2025_01.csv"

runner = CliRunner()


def _invoke(*args: str):
    result = runner.invoke(app, list(args))
    assert result.exit_code == 0, result.output
    return result


def test_analyze_prints_detected_mapping():
    result = _invoke("analyze", "--file", str(CSV))
    assert "fingerprint\t4-" in result.output
    mapping = json.loads(result.output[result.output.index("{") :])
    assert mapping["date_column"] == 0
    assert mapping["amount_column"] == 2
    assert mapping["sign_convention"] == "positive_is_income"


def test_missing_file_is_reported(tmp_path):
    result = runner.invoke(
        app, ["import-file", "--file", str(tmp_path / "nope.csv"), "--account", "acct-1"]
    )
    assert result.exit_code == 1
    assert "Error: File not found" in result.output


def test_queue_review_and_commit(database_url, tmp_path):
    db = ("--database-url", database_url)
    result = _invoke(
        "import-file", "--file", str(CSV), "--account", "acct-1", "--queue", *db
    )
    assert "8 new, 0 duplicates, batch manual-" in result.output

    listing = _invoke("queue-list", "--account", "acct-1", *db).output
    rows = [line.split("\t") for line in listing.splitlines() if "\tpending\t" in line]
    assert len(rows) == 8
    (coffee,) = [r for r in rows if "BLUE BOTTLE" in r[5]]
    item = coffee[0]

    for status in ("reviewing", "approved"):
        _invoke(
            "transition",
            "--account",
            "acct-1",
            "--item",
            item,
            "--status",
            status,
            "--reviewer",
            "sam",
            *db,
        )
    _invoke("set-split", "--account", "acct-1", "--item", item, "--split", "FOOD=6.75", *db)

    ledger = tmp_path / "ledger.jsonl"
    committed = _invoke(
        "approve-commit", "--account", "acct-1", "--item", item, "--ledger", str(ledger), *db
    )
    assert committed.output.startswith(f"{item}\t")
    (entry,) = [json.loads(line) for line in ledger.read_text().splitlines()]
    assert entry["amount"] == "-6.75"

    again = _invoke("import-file", "--file", str(CSV), "--account", "acct-1", "--queue", *db)
    assert "0 new, 8 duplicates" in again.output


def test_commit_refusal_lists_problems(database_url, tmp_path):
    db = ("--database-url", database_url)
    _invoke("import-file", "--file", str(CSV), "--account", "acct-1", "--queue", *db)
    listing = _invoke("queue-list", "--account", "acct-1", *db).output
    item = listing.splitlines()[0].split("\t")[0]

    args = ["approve-commit", "--account", "acct-1", "--item", item]
    result = runner.invoke(app, [*args, "--ledger", str(tmp_path / "l.jsonl"), *db])
    assert result.exit_code == 1
    assert "expected approved" in result.output


def test_edit_item_corrects_a_queued_row(database_url):
    db = ("--database-url", database_url)
    _invoke("import-file", "--file", str(CSV), "--account", "acct-1", "--queue", *db)
    listing = _invoke("queue-list", "--account", "acct-1", *db).output
    item = listing.splitlines()[0].split("\t")[0]

    args = ["edit-item", "--account", "acct-1", "--item", item]
    edited = _invoke(*args, "--amount", "12.34", "--direction", "income", *db).output
    fields = edited.strip().split("\t")
    assert fields[:2] == [item, "reviewing"]
    assert fields[3:5] == ["income", "12.34"]

    bad = runner.invoke(app, [*args, "--date", "yesterday", *db])
    assert bad.exit_code == 1
    assert "--date must be YYYY-MM-DD" in bad.output
