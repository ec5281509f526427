from email.message import EmailMessage

from financial_ingest.ingest.adapters.email_attachments import (
    EmailAttachment,
    handle_inbound_email,
    process_email_attachments,
    recipient_addresses,
)
from financial_ingest.queue import create_setup, get_batch_source, list_items
from financial_ingest.settings import Settings
from financial_ingest.templates import SqlTemplateStore

from tests.helpers.context import ACCOUNT, make_ctx

CSV = b"Date,Description,Amount\n01/15/2025,COFFEE,-4.50\n01/16/2025,BOOKS,-20.00\n"
ADDRESS = "import+abc@example.com"


def _csv(name: str = "jan.csv") -> EmailAttachment:
    return EmailAttachment(filename=name, content_type="text/csv", data=CSV)


def _message(*attachments: tuple[str, str, bytes], to: str = "Imports <Import+ABC@example.com>"):
    msg = EmailMessage()
    msg["From"] = "bank@example.org"
    msg["To"] = to
    msg["Subject"] = "January statement"
    msg.set_content("Statement attached.")
    for filename, ctype, data in attachments:
        maintype, subtype = ctype.split("/")
        msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)
    return msg


def test_csv_attachment_is_queued_and_unsupported_is_reported(session):
    result = process_email_attachments(
        session,
        make_ctx(),
        setup_id=None,
        batch_id="email-1",
        attachments=[
            _csv(),
            EmailAttachment("notes.doc", "application/msword", b"\x00\x01"),
        ],
        templates=SqlTemplateStore(session),
    )
    assert result.processed == 1
    assert result.queued == 2
    assert result.errors == ["Unsupported file type: application/msword (notes.doc)"]
    assert result.batch_ids == ["email-1-1"]
    assert get_batch_source(session, account_id=ACCOUNT, batch_id="email-1-1") is not None


def test_same_rows_in_two_attachments_are_queued_once(session):
    result = process_email_attachments(
        session,
        make_ctx(),
        setup_id=None,
        batch_id="email-2",
        attachments=[_csv("a.csv"), _csv("b.csv")],
        templates=SqlTemplateStore(session),
    )
    assert result.ok
    assert result.queued == 2
    assert result.duplicates == 2
    assert len(list_items(session, account_id=ACCOUNT)) == 2


def test_no_attachments(session):
    result = process_email_attachments(
        session,
        make_ctx(),
        setup_id=None,
        batch_id="email-3",
        attachments=[],
        templates=SqlTemplateStore(session),
    )
    assert result.errors == ["No attachments found"]


def test_unreadable_pdf_does_not_stop_other_files(session):
    result = process_email_attachments(
        session,
        make_ctx(),
        setup_id=None,
        batch_id="email-4",
        attachments=[
            EmailAttachment("statement.pdf", "application/pdf", b"not really a pdf"),
            _csv(),
        ],
        templates=SqlTemplateStore(session),
    )
    assert result.queued == 2
    assert len(result.errors) == 1
    assert result.errors[0].startswith("statement.pdf: pdf_text:")


def test_csv_without_transactions_is_reported(session):
    result = process_email_attachments(
        session,
        make_ctx(),
        setup_id=None,
        batch_id="email-5",
        attachments=[EmailAttachment("list.csv", "text/csv", b"Name,Notes\nalpha,first\n")],
        templates=SqlTemplateStore(session),
    )
    assert result.errors == ["No transactions found in list.csv"]


def test_recipient_addresses_are_normalized():
    msg = _message()
    msg["Cc"] = "Other <other@example.com>"
    assert recipient_addresses(msg) == [ADDRESS, "other@example.com"]


def test_inbound_email_routes_to_its_setup(session):
    setup = create_setup(
        session,
        account_id=ACCOUNT,
        source_type="email",
        source_identifier=ADDRESS,
        integration_name="Bank emails",
    )
    raw = _message(("jan.csv", "text/csv", CSV)).as_bytes()

    result = handle_inbound_email(
        session, raw, templates=SqlTemplateStore(session), settings=Settings()
    )
    assert result.queued == 2
    items = list_items(session, account_id=ACCOUNT)
    assert {i.setup_id for i in items} == {setup.id}
    assert all(i.batch_id.startswith("email-") for i in items)
    assert items[0].batch_id.endswith("-january-statement")


def test_inbound_email_without_setup(session):
    raw = _message(("jan.csv", "text/csv", CSV), to="nobody@example.com").as_bytes()
    result = handle_inbound_email(
        session, raw, templates=SqlTemplateStore(session), settings=Settings()
    )
    assert result.errors == ["No import setup matches this email address"]
    assert list_items(session, account_id=ACCOUNT) == []
