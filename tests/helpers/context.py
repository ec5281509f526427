"""Run-context factory with a fixed clock, "today" and default settings."""

from __future__ import annotations

from datetime import UTC, date, datetime

from financial_ingest.run_context import ImportRunContext
from financial_ingest.settings import Settings

ACCOUNT = "acct-1"
TODAY = date(2025, 11, 15)
NOW = datetime(2025, 11, 15, 12, 0, tzinfo=UTC)


def make_ctx(account_id: str = ACCOUNT, *, today: date = TODAY, **settings) -> ImportRunContext:
    return ImportRunContext(
        account_id=account_id,
        today=today,
        settings=Settings(**settings),
        clock=lambda: NOW,
    )
