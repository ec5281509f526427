# ruff: noqa: I001
"""CLI for the ``financial_ingest`` package.

A Typer console interface over :mod:`financial_ingest.api`. The root callback
loads a local ``.env`` with ``python-dotenv`` (existing environment variables
win) and configures logging; commands open one database session each through
:func:`db.client.session_scope`, so a command either commits fully or not at
all. Errors are printed to stderr as ``Error: ...`` with exit status 1.
"""

from __future__ import annotations

import json
import os
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging


def _fail(message: str) -> NoReturn:
    print(f"Error: {message}", file=sys.stderr)
    raise typer.Exit(1)


def _parse_splits(values: list[str]) -> list:
    """Parse ``CATEGORY=AMOUNT`` pairs into category splits."""

    from .models import CategorySplit

    splits = []
    for raw in values:
        category, sep, amount = raw.rpartition("=")
        if not sep or not category.strip():
            raise ValueError(f"split must look like CATEGORY=AMOUNT, got {raw!r}")
        try:
            splits.append(CategorySplit(category=category.strip(), amount=Decimal(amount)))
        except InvalidOperation as e:
            raise ValueError(f"invalid split amount in {raw!r}") from e
    return splits


def _print_transactions(transactions) -> None:
    for tx in transactions:
        flag = "" if tx.dedup_status.value == "unique" else f"\t[{tx.dedup_status.value}]"
        print(
            f"{tx.date.isoformat()}\t{tx.signed_amount:.2f}\t{tx.description}"
            f"{' (year inferred)' if tx.year_inferred else ''}{flag}"
        )


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank and card transactions from CSV, PDF, statement text and images "
        "into a review queue. Loads DATABASE_URL and API keys from a local .env."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
FILE_OPTION: OptionInfo = typer.Option(
    ...,
    "--file",
    help="Path to a CSV, PDF, text or image statement file",
    dir_okay=False,
    file_okay=True,
    exists=False,
    readable=True,
)
ACCOUNT_OPTION: OptionInfo = typer.Option(..., "--account", help="Budget account identifier.")
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
LEDGER_OPTION: OptionInfo = typer.Option(
    Path("ledger.jsonl"), "--ledger", help="JSON-lines ledger file committed entries go to."
)


@app.command("analyze")
def analyze_cmd(file: Annotated[Path, FILE_OPTION]) -> None:
    """Detect column roles of a CSV file and print the inferred mapping."""

    from .column_analyzer import analyze_columns
    from .ingest.utils import read_csv_file

    try:
        rows = read_csv_file(file)
    except OSError as e:
        _fail(f"cannot read {file}: {e}")

    result = analyze_columns(rows)
    print(f"fingerprint\t{result.fingerprint}")
    print(f"columns\t{result.column_count}")
    print(f"headers\t{'yes' if result.has_headers else 'no'}")
    for col in result.columns:
        header = col.header or "(no header)"
        print(f"  [{col.index}] {header}\t{col.role or '-'}\t{col.confidence:.2f}")
    mapping = result.to_mapping()
    if mapping is None:
        _fail("file format not recognized: no date or amount column")
    print(json.dumps(mapping.model_dump(mode="json"), indent=2))


@app.command("import-file")
def import_file_cmd(
    file: Annotated[Path, FILE_OPTION],
    account: Annotated[str, ACCOUNT_OPTION],
    *,
    queue: bool = typer.Option(
        False, help="Queue the transactions for review instead of previewing them."
    ),
    template_name: str | None = typer.Option(
        None, help="Save the detected CSV mapping as a template with this name."
    ),
    today: str | None = typer.Option(
        None, help="Reference date (YYYY-MM-DD) for statements that omit the year."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Extract transactions from a file, flag duplicates, and preview or queue them."""

    from db.client import session_scope

    from .errors import ExternalServiceError
    from .ingest.adapters.pdf_text import extract_pdf_text
    from .ingest.utils import decode_text, image_media_type, looks_like_pdf, read_csv_rows
    from .queue import get_or_create_manual_setup
    from .run_context import ImportRunContext
    from .templates import SqlTemplateStore
    from .workflows import import_flow as flow

    try:
        data = file.read_bytes()
    except FileNotFoundError:
        _fail(f"File not found: {file}")
    except PermissionError:
        _fail(f"Permission denied: {file}")

    ctx = ImportRunContext(account_id=account)
    if today:
        try:
            ctx.today = date.fromisoformat(today)
        except ValueError:
            _fail(f"invalid --today {today!r}; expected YYYY-MM-DD")

    suffix = file.suffix.lower()
    media_type = image_media_type(file.name, None)
    if media_type is not None and not os.getenv("OPENAI_API_KEY"):
        _fail("OPENAI_API_KEY is not set in the environment.")

    try:
        with session_scope(database_url=database_url) as session:
            templates = SqlTemplateStore(session)
            batch_id = flow.new_batch_id("manual", now=ctx.now(), name=file.name)
            setup_id = get_or_create_manual_setup(session, account_id=account) if queue else None

            if suffix in {".csv", ".tsv"}:
                rows = read_csv_rows(decode_text(data))
                if queue:
                    outcome = flow.queue_tabular_rows(
                        session,
                        ctx,
                        rows,
                        setup_id=setup_id,
                        batch_id=batch_id,
                        templates=templates,
                        file_name=file.name,
                    )
                    preview = outcome.preview
                else:
                    preview = flow.prepare_tabular_import(session, ctx, rows, templates=templates)
                if template_name and preview.mapping is not None:
                    saved = flow.save_template_for(
                        ctx, preview, templates=templates, name=template_name
                    )
                    print(f"template\t{saved.id}\t{saved.name}")
            elif looks_like_pdf(file.name, None) or suffix == ".txt":
                text = (
                    extract_pdf_text(data, timeout_sec=ctx.timeout_sec)
                    if suffix == ".pdf"
                    else decode_text(data)
                )
                if queue:
                    preview = flow.queue_statement_text(
                        session, ctx, text, setup_id=setup_id, batch_id=batch_id
                    ).preview
                else:
                    preview = flow.import_statement_text(session, ctx, text)
            elif media_type is not None:
                if queue:
                    _fail("images can only be previewed; re-run without --queue")
                preview = flow.import_image(session, ctx, data, media_type=media_type)
            else:
                _fail(f"Unsupported file type: {suffix or '(none)'}")
    except ExternalServiceError as e:
        _fail(str(e))

    flow.log_preview(preview)
    _print_transactions(preview.transactions)
    for w in preview.warnings:
        print(f"warning: {w}", file=sys.stderr)
    for s in preview.skipped:
        print(f"skipped row {s.index}: {s.reason}", file=sys.stderr)
    if preview.message:
        print(preview.message, file=sys.stderr)
    print(
        f"{len(preview.unique)} new, {len(preview.duplicates)} duplicates"
        + (f", batch {batch_id}" if queue else "")
    )


@app.command("queue-list")
def queue_list_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    *,
    status: str | None = typer.Option(None, help="Filter by review status."),
    batch: str | None = typer.Option(None, help="Filter by source batch id."),
    limit: int = typer.Option(100, min=1, help="Maximum rows to print."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """List queued transactions."""

    from db.client import session_scope

    from .models import ReviewStatus
    from .queue import list_items

    try:
        wanted = ReviewStatus(status) if status else None
    except ValueError:
        _fail(f"unknown status {status!r}")

    with session_scope(database_url=database_url) as session:
        items = list_items(session, account_id=account, status=wanted, batch_id=batch, limit=limit)
    for it in items:
        splits = ",".join(f"{s.category}={s.amount}" for s in it.splits)
        print(
            f"{it.id}\t{it.status.value}\t{it.date.isoformat()}\t{it.direction.value}\t"
            f"{it.amount:.2f}\t{it.description}\t{splits}"
        )


@app.command("batches")
def batches_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """List open import batches, newest first."""

    from db.client import session_scope

    from .queue import list_batches

    with session_scope(database_url=database_url) as session:
        batches = list_batches(session, account_id=account)
    for b in batches:
        span = f"{b.date_start}..{b.date_end}" if b.date_start else "-"
        print(f"{b.batch_id}\t{b.status.value}\t{b.count}\t{span}")


@app.command("delete-batch")
def delete_batch_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    batch: str = typer.Option(..., help="Source batch id."),
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Delete a batch whose items are all still pending."""

    from db.client import session_scope

    from .errors import IngestError
    from .queue import delete_batch

    try:
        with session_scope(database_url=database_url) as session:
            removed = delete_batch(session, account_id=account, batch_id=batch)
    except IngestError as e:
        _fail(str(e))
    print(f"deleted {removed} items")


@app.command("remap-batch")
def remap_batch_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    batch: str = typer.Option(..., help="Source batch id."),
    mapping_json: str = typer.Option(..., help="Corrected column mapping as JSON."),
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Re-map a pending CSV batch from its saved cells with a corrected mapping."""

    from pydantic import ValidationError

    from db.client import session_scope

    from .errors import IngestError
    from .models import ColumnMapping
    from .queue import remap_batch
    from .run_context import ImportRunContext

    try:
        mapping = ColumnMapping.model_validate_json(mapping_json)
    except ValidationError as e:
        _fail(f"invalid mapping: {e.errors()[0].get('msg')}")

    ctx = ImportRunContext(account_id=account)
    try:
        with session_scope(database_url=database_url) as session:
            result = remap_batch(session, ctx, batch_id=batch, mapping=mapping)
    except IngestError as e:
        _fail(str(e))
    print(f"queued {result.queued}, {len(result.duplicates)} duplicates")


@app.command("transition")
def transition_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    item: int = typer.Option(..., help="Queue item id."),
    status: str = typer.Option(..., help="Target status: reviewing, approved or rejected."),
    reviewer: str = typer.Option(..., help="Who is making the change."),
    *,
    notes: str | None = typer.Option(None, help="Optional review notes."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Move a queue item along the review state machine."""

    from db.client import session_scope

    from .errors import IngestError
    from .models import ReviewStatus
    from .review import transition

    try:
        target = ReviewStatus(status)
    except ValueError:
        _fail(f"unknown status {status!r}")

    try:
        with session_scope(database_url=database_url) as session:
            updated = transition(
                session,
                account_id=account,
                item_id=item,
                status=target,
                reviewer=reviewer,
                notes=notes,
            )
    except IngestError as e:
        _fail(str(e))
    print(f"{updated.id}\t{updated.status.value}")


@app.command("set-split")
def set_split_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    item: int = typer.Option(..., help="Queue item id."),
    split: list[str] = typer.Option(..., help="CATEGORY=AMOUNT; repeat for several."),
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Assign category splits to a queue item."""

    from db.client import session_scope

    from .errors import IngestError
    from .review import set_splits

    try:
        splits = _parse_splits(split)
        with session_scope(database_url=database_url) as session:
            updated = set_splits(session, account_id=account, item_id=item, splits=splits)
    except (ValueError, IngestError) as e:
        _fail(str(e))
    print(f"{updated.id}\t{len(updated.splits)} splits")


@app.command("edit-item")
def edit_item_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    item: int = typer.Option(..., help="Queue item id."),
    tx_date: str | None = typer.Option(None, "--date", help="Corrected date (YYYY-MM-DD)."),
    description: str | None = typer.Option(None, help="Corrected description."),
    merchant: str | None = typer.Option(None, help="Corrected merchant."),
    amount: str | None = typer.Option(None, help="Corrected absolute amount."),
    direction: str | None = typer.Option(None, help="income or expense."),
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Correct a misparsed queue item; the item goes back to reviewing."""

    from db.client import session_scope

    from .errors import IngestError
    from .models import Direction
    from .review import update_item

    try:
        parsed_date = date.fromisoformat(tx_date) if tx_date else None
        parsed_amount = Decimal(amount) if amount is not None else None
        parsed_direction = Direction(direction.lower()) if direction else None
    except (ValueError, InvalidOperation):
        _fail("--date must be YYYY-MM-DD, --amount a number, --direction income or expense")
    try:
        with session_scope(database_url=database_url) as session:
            updated = update_item(
                session,
                account_id=account,
                item_id=item,
                tx_date=parsed_date,
                description=description,
                merchant=merchant,
                amount=parsed_amount,
                direction=parsed_direction,
            )
    except IngestError as e:
        _fail(str(e))
    print(
        f"{updated.id}\t{updated.status.value}\t{updated.date.isoformat()}\t"
        f"{updated.direction.value}\t{updated.amount:.2f}\t{updated.description}"
    )


@app.command("approve-commit")
def approve_commit_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    item: list[int] = typer.Option(..., help="Approved queue item id; repeat for several."),
    *,
    ledger: Path = LEDGER_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Commit approved queue items to the ledger file."""

    from db.client import session_scope

    from .errors import CommitValidationError, IngestError
    from .ledger import JsonlLedgerWriter
    from .review import approve_and_commit

    writer = JsonlLedgerWriter(ledger)
    try:
        with session_scope(database_url=database_url) as session:
            result = approve_and_commit(
                session, account_id=account, item_ids=item, ledger=writer
            )
    except CommitValidationError as e:
        for item_id, problem in e.problems.items():
            print(f"  {item_id}: {problem}", file=sys.stderr)
        _fail(str(e))
    except IngestError as e:
        _fail(str(e))
    for item_id, ledger_id in result.committed:
        print(f"{item_id}\t{ledger_id}")


@app.command("sweep-orphans")
def sweep_orphans_cmd(
    *,
    account: str | None = typer.Option(None, help="Limit to one account."),
    dry_run: bool = typer.Option(False, help="Only list orphaned records."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Remove imported-transaction records that never reached the ledger."""

    from db.client import session_scope

    from .maintenance import sweep_orphaned_imports

    with session_scope(database_url=database_url) as session:
        orphans = sweep_orphaned_imports(session, account_id=account, dry_run=dry_run)
    for o in orphans:
        print(f"{o.id}\t{o.transaction_date.isoformat()}\t{o.amount:.2f}\t{o.description}")
    verb = "found" if dry_run else "deleted"
    print(f"{verb} {len(orphans)} orphaned records")


@app.command("templates-list")
def templates_list_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """List saved column-mapping templates."""

    from db.client import session_scope

    from .templates import SqlTemplateStore

    with session_scope(database_url=database_url) as session:
        templates = SqlTemplateStore(session).list(account)
    for t in templates:
        last = t.last_used_at.isoformat() if t.last_used_at else "-"
        print(f"{t.id}\t{t.name}\t{t.column_count} cols\tused {t.usage_count}x\t{last}")


@app.command("templates-delete")
def templates_delete_cmd(
    account: Annotated[str, ACCOUNT_OPTION],
    template_id: int = typer.Option(..., "--id", help="Template id."),
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Delete a saved template."""

    from db.client import session_scope

    from .templates import SqlTemplateStore

    with session_scope(database_url=database_url) as session:
        deleted = SqlTemplateStore(session).delete(template_id, account_id=account)
    if not deleted:
        _fail(f"template {template_id} not found")
    print(f"deleted template {template_id}")


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # Load environment from .env in CWD (override=False to keep existing env)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m financial_ingest.cli`
    app()
