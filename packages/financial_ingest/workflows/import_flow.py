# ruff: noqa: I001
"""End-to-end import flows: tabular files, statement text, PDFs and images.

Two shapes of flow share the same extraction steps:

- **Preview** (manual upload): extract, map, run the three dedup tiers and
  return an :class:`ImportPreview` the user reviews before committing with
  :func:`financial_ingest.review.commit_transactions`.
- **Queue** (email, bank API, "review later" uploads): extract, map and
  enqueue unique transactions as pending queue items in one batch.

Tabular extraction order:

1. Analyze columns and compute the structural fingerprint.
2. If the account has a template for that fingerprint, map with it. A
   template that yields nothing, skips more than half the rows or parses dates
   with low confidence is ignored for this file and detection is used instead.
3. Otherwise map with the detected columns. No date or amount column means
   zero transactions and a "format not recognized" message, never an error.

Only external-service failures raise (as
:class:`~financial_ingest.errors.ExternalServiceError`); row failures are
recorded as skipped rows.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from ..column_analyzer import AnalysisResult, analyze_columns
from ..ctv import CanonicalTransaction
from ..duplicates import flag_duplicates, summarize
from ..ingest.adapters.pdf_text import extract_pdf_text
from ..ingest.adapters.vision import extract_image_transactions
from ..logging_setup import account_logger, get_logger
from ..models import ColumnMapping, RawRow
from ..normalizers import MappingResult, SkippedRow, map_rows
from ..queue import EnqueueResult, enqueue_transactions, save_batch_source
from ..run_context import ImportRunContext
from ..statement_text import StatementExtraction, Strategy, extract_statement_transactions
from ..templates import ImportTemplate, TemplateStore

_logger = get_logger("financial_ingest.workflows.import_flow")

FORMAT_NOT_RECOGNIZED = (
    "File format not recognized: no date or amount column could be identified. "
    "Map the columns manually."
)

# Template results below these bounds fall back to fresh detection.
_TEMPLATE_MAX_SKIP_RATIO = 0.5
_TEMPLATE_MIN_DATE_CONFIDENCE = 0.75

_BATCH_NAME_RE = re.compile(r"[^A-Za-z0-9]+")


def new_batch_id(prefix: str, *, now: datetime, name: str | None = None) -> str:
    """``<prefix>-<unix ms>[-<sanitized name>]``, e.g. ``manual-1718000000000-stmt-csv``."""

    stamp = int(now.timestamp() * 1000)
    cleaned = _BATCH_NAME_RE.sub("-", name or "").strip("-").lower()
    return f"{prefix}-{stamp}-{cleaned}" if cleaned else f"{prefix}-{stamp}"


@dataclass(slots=True)
class ImportPreview:
    """Reviewable result of one extraction, with dedup statuses set."""

    source: str
    transactions: list[CanonicalTransaction] = field(default_factory=list)
    fingerprint: str | None = None
    column_count: int | None = None
    mapping: ColumnMapping | None = None
    template_id: int | None = None
    analysis: AnalysisResult | None = None
    strategy: Strategy | None = None
    skipped: list[SkippedRow] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    message: str | None = None

    @property
    def unique(self) -> list[CanonicalTransaction]:
        return [t for t in self.transactions if not t.is_duplicate]

    @property
    def duplicates(self) -> list[CanonicalTransaction]:
        return [t for t in self.transactions if t.is_duplicate]

    @property
    def recognized(self) -> bool:
        return self.message != FORMAT_NOT_RECOGNIZED


# ---------------------------------------------------------------------------
# Tabular
# ---------------------------------------------------------------------------


def _template_usable(mapped: MappingResult) -> bool:
    if not mapped.transactions:
        return False
    if mapped.attempted and len(mapped.skipped) / mapped.attempted > _TEMPLATE_MAX_SKIP_RATIO:
        return False
    return mapped.mean_date_confidence >= _TEMPLATE_MIN_DATE_CONFIDENCE


def _extract_tabular(
    ctx: ImportRunContext,
    rows: Sequence[RawRow],
    *,
    templates: TemplateStore,
    source: str,
    mapping_override: ColumnMapping | None = None,
) -> ImportPreview:
    log = account_logger(_logger, ctx.account_id)
    analysis = analyze_columns(rows)
    preview = ImportPreview(
        source=source,
        fingerprint=analysis.fingerprint,
        column_count=analysis.column_count,
        analysis=analysis,
    )

    if mapping_override is not None:
        mapped = map_rows(rows, mapping_override, source=source)
        preview.mapping = mapping_override
    else:
        mapped = None
        template = templates.get(ctx.account_id, analysis.fingerprint)
        if template is not None:
            candidate = map_rows(rows, template.mapping, source=source)
            if _template_usable(candidate):
                templates.record_usage(template.id)
                mapped = candidate
                preview.mapping = template.mapping
                preview.template_id = template.id
                log.info("using template %s (%s)", template.id, template.name)
            else:
                log.warning(
                    "template %s did not fit this file (%d mapped, %d skipped); re-detecting",
                    template.id,
                    len(candidate.transactions),
                    len(candidate.skipped),
                )
                preview.warnings.append(
                    f"Saved template {template.name!r} did not match this file; "
                    "columns were detected again."
                )

        if mapped is None:
            detected = analysis.to_mapping()
            if detected is None:
                log.info("format not recognized (%d columns)", analysis.column_count)
                preview.message = FORMAT_NOT_RECOGNIZED
                return preview
            mapped = map_rows(rows, detected, source=source)
            preview.mapping = detected

    preview.transactions = mapped.transactions
    preview.skipped = mapped.skipped
    if not mapped.transactions:
        preview.message = "No transactions found"
    return preview


def prepare_tabular_import(
    session: Session,
    ctx: ImportRunContext,
    rows: Sequence[RawRow],
    *,
    templates: TemplateStore,
    source: str = "csv",
    mapping: ColumnMapping | None = None,
) -> ImportPreview:
    """Manual flow: map ``rows`` and flag duplicates for review.

    Pass ``mapping`` to apply a user-corrected mapping instead of a template or
    detection.
    """

    preview = _extract_tabular(
        ctx, rows, templates=templates, source=source, mapping_override=mapping
    )
    preview.transactions = flag_duplicates(session, ctx, preview.transactions)
    preview.warnings.extend(ctx.warnings)
    return preview


def save_template_for(
    ctx: ImportRunContext,
    preview: ImportPreview,
    *,
    templates: TemplateStore,
    name: str,
    mapping: ColumnMapping | None = None,
) -> ImportTemplate:
    """Remember the (confirmed or corrected) mapping for this file structure."""

    chosen = mapping or preview.mapping
    if chosen is None or preview.fingerprint is None or preview.column_count is None:
        raise ValueError("preview has no mapping to save")
    return templates.save(
        ctx.account_id,
        fingerprint=preview.fingerprint,
        mapping=chosen,
        name=name,
        column_count=preview.column_count,
    )


@dataclass(slots=True)
class QueueOutcome:
    preview: ImportPreview
    enqueue: EnqueueResult

    @property
    def queued(self) -> int:
        return self.enqueue.queued


def queue_tabular_rows(
    session: Session,
    ctx: ImportRunContext,
    rows: Sequence[RawRow],
    *,
    setup_id: int | None,
    batch_id: str,
    templates: TemplateStore,
    file_name: str | None = None,
    source: str = "csv",
    is_historical: bool = False,
) -> QueueOutcome:
    """Queue flow for tabular data; the raw cells are kept for later re-mapping."""

    preview = _extract_tabular(ctx, rows, templates=templates, source=source)
    enqueued = enqueue_transactions(
        session,
        ctx,
        setup_id=setup_id,
        batch_id=batch_id,
        transactions=preview.transactions,
        is_historical=is_historical,
    )
    if enqueued.queued:
        save_batch_source(
            session,
            account_id=ctx.account_id,
            batch_id=batch_id,
            rows=rows,
            fingerprint=preview.fingerprint,
            file_name=file_name,
            template_id=preview.template_id,
        )
    preview.transactions = enqueued.flagged
    preview.warnings.extend(ctx.warnings)
    return QueueOutcome(preview=preview, enqueue=enqueued)


# ---------------------------------------------------------------------------
# Statement text, PDF, image
# ---------------------------------------------------------------------------


def _from_extraction(extraction: StatementExtraction, ctx: ImportRunContext) -> ImportPreview:
    for w in extraction.warnings:
        ctx.warn(w)
    preview = ImportPreview(
        source=extraction.strategy.value if extraction.strategy else "statement_text",
        transactions=list(extraction.transactions),
        strategy=extraction.strategy,
        warnings=list(extraction.warnings),
    )
    if not extraction.found:
        preview.message = "No transactions found"
    return preview


def import_statement_text(session: Session, ctx: ImportRunContext, text: str) -> ImportPreview:
    """Manual flow for extracted statement text."""

    preview = _from_extraction(extract_statement_transactions(text, today=ctx.today), ctx)
    preview.transactions = flag_duplicates(session, ctx, preview.transactions)
    return preview


def import_pdf(session: Session, ctx: ImportRunContext, data: bytes) -> ImportPreview:
    text = extract_pdf_text(data, timeout_sec=ctx.timeout_sec)
    return import_statement_text(session, ctx, text)


def import_image(
    session: Session, ctx: ImportRunContext, data: bytes, *, media_type: str
) -> ImportPreview:
    txs = extract_image_transactions(
        data,
        media_type=media_type,
        model=ctx.settings.vision_model,
        timeout_sec=ctx.timeout_sec,
    )
    preview = ImportPreview(source="vision", transactions=flag_duplicates(session, ctx, txs))
    if not txs:
        preview.message = "No transactions found"
    return preview


def queue_statement_text(
    session: Session,
    ctx: ImportRunContext,
    text: str,
    *,
    setup_id: int | None,
    batch_id: str,
    is_historical: bool = False,
) -> QueueOutcome:
    preview = _from_extraction(extract_statement_transactions(text, today=ctx.today), ctx)
    enqueued = enqueue_transactions(
        session,
        ctx,
        setup_id=setup_id,
        batch_id=batch_id,
        transactions=preview.transactions,
        is_historical=is_historical,
    )
    preview.transactions = enqueued.flagged
    return QueueOutcome(preview=preview, enqueue=enqueued)


def log_preview(preview: ImportPreview) -> None:
    summary = summarize(preview.transactions)
    _logger.info(
        "%s preview: %d unique, %d duplicates, %d skipped rows",
        preview.source,
        summary.unique,
        summary.duplicates,
        len(preview.skipped),
    )


__all__ = [
    "FORMAT_NOT_RECOGNIZED",
    "ImportPreview",
    "QueueOutcome",
    "new_batch_id",
    "prepare_tabular_import",
    "save_template_for",
    "queue_tabular_rows",
    "import_statement_text",
    "import_pdf",
    "import_image",
    "queue_statement_text",
    "log_preview",
]
