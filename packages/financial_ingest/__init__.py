"""Public interface for the ``financial_ingest`` package.

This module re-exports the most used entry points from
:mod:`financial_ingest.api`; there is no runtime logic here. Import the topic
modules directly for everything else.
"""

from .api import (
    CanonicalTransaction,
    ImportPreview,
    ImportRunContext,
    IngestError,
    analyze_columns,
    approve_and_commit,
    commit_transactions,
    enqueue_transactions,
    extract_statement_transactions,
    prepare_tabular_import,
    queue_tabular_rows,
    transition,
)

__all__ = [
    # API
    "analyze_columns",
    "extract_statement_transactions",
    "prepare_tabular_import",
    "queue_tabular_rows",
    "enqueue_transactions",
    "transition",
    "approve_and_commit",
    "commit_transactions",
    # Models / types
    "CanonicalTransaction",
    "ImportPreview",
    "ImportRunContext",
    "IngestError",
]
