"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the import-pipeline models used by ``financial_ingest``.
"""

from .imports import (
    Base,
    FiImportedTransaction,
    FiImportedTransactionLink,
    FiImportSetup,
    FiImportTemplate,
    FiQueueBatchSource,
    FiQueuedImport,
)

__all__ = [
    "Base",
    "FiImportSetup",
    "FiImportTemplate",
    "FiImportedTransaction",
    "FiImportedTransactionLink",
    "FiQueuedImport",
    "FiQueueBatchSource",
]
