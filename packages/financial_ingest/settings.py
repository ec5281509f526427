"""Environment-driven settings for ``financial_ingest``.

Values are read from the process environment. Entrypoints load a local
``.env`` with ``python-dotenv`` (``override=False``) before calling
:meth:`Settings.from_env`, so explicit environment variables always win.

Variables
---------
``FI_REMOTE_TIMEOUT_SEC``
    Per-call timeout for remote collaborators (default ``30``).
``FI_TELLER_MAX_WORKERS``
    Concurrency cap for multi-account bank syncs (default ``4``, max ``16``).
``TELLER_API_URL`` / ``TELLER_ENV``
    Bank API base URL (default ``https://api.teller.io``) and environment
    (``sandbox``, ``development`` or ``production``).
``TELLER_CLIENT_CERT`` / ``TELLER_CLIENT_KEY``
    Paths to the mTLS certificate and key; optional in ``sandbox``.
``TELLER_WEBHOOK_SECRET``
    Shared secret for webhook signature verification.
``FI_VISION_MODEL``
    OpenAI model used for statement images (default ``gpt-4o``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass

_DEFAULT_TIMEOUT_SEC = 30.0
_DEFAULT_TELLER_URL = "https://api.teller.io"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_workers(name: str, default: int, cap: int) -> int:
    raw = os.getenv(name)
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return max(1, min(value, cap))


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


@dataclass(frozen=True, slots=True)
class Settings:
    remote_timeout_sec: float = _DEFAULT_TIMEOUT_SEC
    teller_max_workers: int = 4
    teller_api_url: str = _DEFAULT_TELLER_URL
    teller_env: str = "sandbox"
    teller_client_cert: str | None = None
    teller_client_key: str | None = None
    teller_webhook_secret: str | None = None
    vision_model: str = "gpt-4o"

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            remote_timeout_sec=_env_float("FI_REMOTE_TIMEOUT_SEC", _DEFAULT_TIMEOUT_SEC),
            teller_max_workers=_env_workers("FI_TELLER_MAX_WORKERS", 4, 16),
            teller_api_url=(_env_str("TELLER_API_URL") or _DEFAULT_TELLER_URL).rstrip("/"),
            teller_env=(_env_str("TELLER_ENV") or "sandbox").lower(),
            teller_client_cert=_env_str("TELLER_CLIENT_CERT"),
            teller_client_key=_env_str("TELLER_CLIENT_KEY"),
            teller_webhook_secret=_env_str("TELLER_WEBHOOK_SECRET"),
            vision_model=_env_str("FI_VISION_MODEL") or "gpt-4o",
        )


__all__ = ["Settings"]
