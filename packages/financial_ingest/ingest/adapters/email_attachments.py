# ruff: noqa: I001
"""Email-forwarded statements: attachments to queued transactions.

An inbound message is addressed to a per-setup import address. Each attachment
is routed by type:

- CSV (``text/csv`` or ``.csv``): column analysis, template reuse, row mapping;
- PDF (``application/pdf`` or ``.pdf``): ``pdfplumber`` text, then the
  statement grammars;
- anything else: reported as ``Unsupported file type: ...``.

All attachments of one message share a run context, so a transaction that
appears in two attached files is queued once. A failing attachment (bad file,
PDF timeout) is reported and the rest are still processed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses

from sqlalchemy.orm import Session

from ...errors import ExternalServiceError
from ...logging_setup import get_logger
from ...queue import find_setup
from ...run_context import ImportRunContext
from ...settings import Settings
from ...templates import TemplateStore
from ...workflows.import_flow import (
    QueueOutcome,
    new_batch_id,
    queue_statement_text,
    queue_tabular_rows,
)
from ..utils import decode_text, looks_like_csv, looks_like_pdf, read_csv_rows
from .pdf_text import extract_pdf_text

_logger = get_logger("financial_ingest.ingest.email")


@dataclass(frozen=True, slots=True)
class EmailAttachment:
    filename: str
    content_type: str
    data: bytes


@dataclass(slots=True)
class EmailProcessResult:
    processed: int = 0
    queued: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)
    batch_ids: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_message(raw: bytes) -> EmailMessage:
    return BytesParser(policy=policy.default).parsebytes(raw)  # type: ignore[return-value]


def attachments_from_message(msg: EmailMessage) -> list[EmailAttachment]:
    out: list[EmailAttachment] = []
    for part in msg.iter_attachments():
        payload = part.get_payload(decode=True) or b""
        out.append(
            EmailAttachment(
                filename=part.get_filename() or "attachment",
                content_type=part.get_content_type(),
                data=payload,
            )
        )
    return out


def recipient_addresses(msg: EmailMessage) -> list[str]:
    pairs = getaddresses([str(v) for k in ("To", "Delivered-To", "Cc") for v in msg.get_all(k, [])])
    return [addr.strip().lower() for _, addr in pairs if addr]


def _process_one(
    session: Session,
    ctx: ImportRunContext,
    att: EmailAttachment,
    *,
    setup_id: int | None,
    batch_id: str,
    templates: TemplateStore,
    is_historical: bool,
) -> QueueOutcome | None:
    if looks_like_csv(att.filename, att.content_type):
        rows = read_csv_rows(decode_text(att.data))
        return queue_tabular_rows(
            session,
            ctx,
            rows,
            setup_id=setup_id,
            batch_id=batch_id,
            templates=templates,
            file_name=att.filename,
            is_historical=is_historical,
        )
    if looks_like_pdf(att.filename, att.content_type):
        text = extract_pdf_text(att.data, timeout_sec=ctx.timeout_sec)
        return queue_statement_text(
            session,
            ctx,
            text,
            setup_id=setup_id,
            batch_id=batch_id,
            is_historical=is_historical,
        )
    return None


def process_email_attachments(
    session: Session,
    ctx: ImportRunContext,
    *,
    setup_id: int | None,
    batch_id: str,
    attachments: Sequence[EmailAttachment],
    templates: TemplateStore,
    is_historical: bool = False,
) -> EmailProcessResult:
    """Queue the transactions of every supported attachment.

    With several attachments each file gets its own batch
    (``<batch_id>-<n>``) so a tabular file can be re-mapped on its own.
    """

    result = EmailProcessResult()
    if not attachments:
        result.errors.append("No attachments found")
        return result

    for n, att in enumerate(attachments, start=1):
        att_batch = batch_id if len(attachments) == 1 else f"{batch_id}-{n}"
        try:
            outcome = _process_one(
                session,
                ctx,
                att,
                setup_id=setup_id,
                batch_id=att_batch,
                templates=templates,
                is_historical=is_historical,
            )
        except ExternalServiceError as e:
            _logger.warning("attachment %s failed: %s", att.filename, e)
            result.errors.append(f"{att.filename}: {e}")
            continue

        if outcome is None:
            result.errors.append(f"Unsupported file type: {att.content_type} ({att.filename})")
            continue
        if not outcome.preview.transactions:
            result.errors.append(f"No transactions found in {att.filename}")
            continue

        result.processed += 1
        result.queued += outcome.queued
        result.duplicates += len(outcome.enqueue.duplicates)
        if outcome.queued:
            result.batch_ids.append(att_batch)

    _logger.info(
        "email batch %s: %d processed, %d queued, %d errors",
        batch_id,
        result.processed,
        result.queued,
        len(result.errors),
    )
    return result


def handle_inbound_email(
    session: Session,
    raw: bytes,
    *,
    templates: TemplateStore,
    settings: Settings | None = None,
) -> EmailProcessResult:
    """Route a raw RFC 822 message to its email setup and queue its attachments."""

    msg = parse_message(raw)
    setup = None
    for addr in recipient_addresses(msg):
        setup = find_setup(session, source_type="email", source_identifier=addr)
        if setup is not None:
            break
    if setup is None:
        _logger.warning("no email import setup for recipients of %s", msg.get("Message-ID"))
        return EmailProcessResult(errors=["No import setup matches this email address"])

    ctx = ImportRunContext(account_id=setup.account_id, settings=settings or Settings.from_env())
    batch_id = new_batch_id("email", now=ctx.now(), name=str(msg.get("Subject") or ""))
    return process_email_attachments(
        session,
        ctx,
        setup_id=setup.id,
        batch_id=batch_id,
        attachments=attachments_from_message(msg),
        templates=templates,
        is_historical=bool(setup.is_historical),
    )


__all__ = [
    "EmailAttachment",
    "EmailProcessResult",
    "parse_message",
    "attachments_from_message",
    "recipient_addresses",
    "process_email_attachments",
    "handle_inbound_email",
]
