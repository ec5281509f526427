"""Ledger-commit collaborator.

The ledger that finally stores categorized transactions is outside this
package. Commit code talks to it through :class:`LedgerWriter`, which takes a
canonical transaction with its category splits and returns the ledger's id for
the new entry. :class:`JsonlLedgerWriter` is a file-backed writer used by the
CLI and tests.
"""

from __future__ import annotations

import json
import threading
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from .ctv import CanonicalTransaction
from .models import AccountId, CategorySplit


class LedgerWriter(Protocol):
    def commit(
        self,
        account_id: AccountId,
        tx: CanonicalTransaction,
        splits: Sequence[CategorySplit],
    ) -> str: ...


class JsonlLedgerWriter:
    """Append one JSON object per committed transaction to ``path``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def commit(
        self,
        account_id: AccountId,
        tx: CanonicalTransaction,
        splits: Sequence[CategorySplit],
    ) -> str:
        ledger_id = uuid.uuid4().hex
        record = {
            "id": ledger_id,
            "account_id": account_id,
            "date": tx.date.isoformat(),
            "description": tx.description,
            "merchant": tx.merchant,
            "amount": f"{tx.signed_amount:.2f}",
            "direction": tx.direction.value,
            "hash": tx.hash,
            "splits": [s.to_json() for s in splits],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self.path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, ensure_ascii=False) + "\n")
        return ledger_id

    def read_all(self) -> list[dict]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]


__all__ = ["LedgerWriter", "JsonlLedgerWriter"]
