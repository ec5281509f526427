"""Pytest configuration for test isolation.

Every test that touches the database gets its own file-backed SQLite database
under ``tmp_path`` (in-memory SQLite is per-connection, and the import code
may open more than one). Environment variables the package reads are cleared
so a developer's ``.env`` or shell cannot change test outcomes.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Make the workspace packages importable without an install: `packages/` for
# `financial_ingest`, `libs/db/src` for `db`, and the repo root for `tests.*`.
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

from db.client import dispose_engine, get_session  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from financial_ingest.run_context import ImportRunContext  # noqa: E402

from tests.helpers.context import make_ctx  # noqa: E402
from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402

_ENV_VARS = (
    "DATABASE_URL",
    "FI_REMOTE_TIMEOUT_SEC",
    "FI_TELLER_MAX_WORKERS",
    "TELLER_API_URL",
    "TELLER_ENV",
    "TELLER_CLIENT_CERT",
    "TELLER_CLIENT_KEY",
    "TELLER_WEBHOOK_SECRET",
    "FI_VISION_MODEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def database_url(tmp_path: Path) -> Iterator[str]:
    url = bootstrap_sqlite_db(tmp_path / "ingest.db")
    yield url
    dispose_engine(database_url=url)


@pytest.fixture()
def session(database_url: str) -> Iterator[Session]:
    s = get_session(database_url=database_url)
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture()
def ctx() -> ImportRunContext:
    return make_ctx()
