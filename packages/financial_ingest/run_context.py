"""Per-run state for one import (one file, one email, one API pull).

An :class:`ImportRunContext` is created at the start of a run and dropped at
the end. It carries everything a run needs that is not persisted: the account,
"today" for year inference, remote-call timeout, the hashes already seen in
this run (within-batch dedup) and accumulated warnings. Nothing here is shared
between runs; the persisted template and dedup tables are the only
cross-run synchronization points.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from .models import AccountId
from .settings import Settings


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class ImportRunContext:
    account_id: AccountId
    today: date = field(default_factory=date.today)
    settings: Settings = field(default_factory=Settings.from_env)
    clock: Callable[[], datetime] = _utcnow
    seen_hashes: set[str] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)

    @property
    def timeout_sec(self) -> float:
        return self.settings.remote_timeout_sec

    def now(self) -> datetime:
        return self.clock()

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


__all__ = ["ImportRunContext"]
