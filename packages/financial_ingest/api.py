"""Public API surface for the ``financial_ingest`` package.

The concrete implementations live in the topic modules and are re-exported
here so callers (the CLI, web handlers, tests) have one stable import path:

- file and statement imports: :mod:`financial_ingest.workflows.import_flow`;
- review queue: :mod:`financial_ingest.queue` and :mod:`financial_ingest.review`;
- push/pull sources: :mod:`financial_ingest.ingest.adapters`.

Database-backed calls take an open SQLAlchemy ``Session`` and never commit it;
entrypoints wrap them in :func:`db.client.session_scope`.
"""

from __future__ import annotations

from .column_analyzer import AnalysisResult, analyze_columns
from .ctv import CanonicalTransaction, make_transaction
from .dates import parse_date, parse_month_day
from .duplicates import DedupSummary, flag_duplicates, summarize
from .errors import (
    CommitValidationError,
    ExternalServiceError,
    ExternalTimeoutError,
    IngestError,
    InvalidTransitionError,
    RateLimitedError,
)
from .ingest.adapters.email_attachments import (
    EmailAttachment,
    EmailProcessResult,
    handle_inbound_email,
    process_email_attachments,
)
from .ingest.adapters.teller import (
    FetchResult,
    TellerClient,
    fetch_and_queue,
    handle_webhook_event,
    sync_accounts,
    verify_webhook_signature,
)
from .ledger import JsonlLedgerWriter, LedgerWriter
from .maintenance import sweep_orphaned_imports
from .normalizers import map_rows
from .persistence import compute_transaction_hash
from .queue import (
    EnqueueResult,
    create_setup,
    delete_batch,
    enqueue_transactions,
    get_or_create_manual_setup,
    list_batches,
    list_items,
    remap_batch,
)
from .review import (
    CommitResult,
    approve_and_commit,
    commit_transactions,
    set_splits,
    transition,
    update_item,
)
from .run_context import ImportRunContext
from .settings import Settings
from .statement_text import StatementExtraction, extract_statement_transactions
from .templates import ImportTemplate, SqlTemplateStore, TemplateStore
from .workflows.import_flow import (
    ImportPreview,
    QueueOutcome,
    import_image,
    import_pdf,
    import_statement_text,
    new_batch_id,
    prepare_tabular_import,
    queue_statement_text,
    queue_tabular_rows,
    save_template_for,
)

__all__ = [
    # Detection and mapping
    "analyze_columns",
    "AnalysisResult",
    "parse_date",
    "parse_month_day",
    "map_rows",
    "make_transaction",
    "compute_transaction_hash",
    "CanonicalTransaction",
    # Templates
    "TemplateStore",
    "SqlTemplateStore",
    "ImportTemplate",
    # Statement text
    "extract_statement_transactions",
    "StatementExtraction",
    # Dedup
    "flag_duplicates",
    "summarize",
    "DedupSummary",
    # Import flows
    "ImportRunContext",
    "Settings",
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
    # Queue and review
    "EnqueueResult",
    "create_setup",
    "get_or_create_manual_setup",
    "enqueue_transactions",
    "list_items",
    "list_batches",
    "delete_batch",
    "remap_batch",
    "transition",
    "set_splits",
    "update_item",
    "approve_and_commit",
    "commit_transactions",
    "CommitResult",
    "LedgerWriter",
    "JsonlLedgerWriter",
    # Sources
    "EmailAttachment",
    "EmailProcessResult",
    "process_email_attachments",
    "handle_inbound_email",
    "TellerClient",
    "FetchResult",
    "fetch_and_queue",
    "sync_accounts",
    "verify_webhook_signature",
    "handle_webhook_event",
    # Maintenance
    "sweep_orphaned_imports",
    # Errors
    "IngestError",
    "ExternalServiceError",
    "ExternalTimeoutError",
    "RateLimitedError",
    "InvalidTransitionError",
    "CommitValidationError",
]
