"""Teller bank-aggregator adapter: pull and webhook ingestion.

Pull
    :class:`TellerClient` calls ``GET /accounts/{id}/transactions`` with HTTP
    Basic auth (the access token as user name, empty password) and, outside the
    sandbox, a client certificate for mutual TLS. HTTP 429 raises
    :class:`~financial_ingest.errors.RateLimitedError` carrying
    ``Retry-After``; other failures raise
    :class:`~financial_ingest.errors.ExternalServiceError`. Every request runs
    under the run's remote timeout.

Push
    Webhooks are authenticated with ``Teller-Signature: t=<unix>,v1=<hex>``:
    HMAC-SHA256 of ``"<t>.<raw body>"`` under the shared secret, accepted
    within a 180 second window. ``transactions.processed`` events carry the
    transactions inline and are queued without another fetch.

Sign convention: a positive Teller amount is money in (income). Pending
transactions are skipped; they are queued once they post. Re-fetching or
re-delivering the same transactions is absorbed by queue dedup.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import Session

from ...ctv import CanonicalTransaction, make_transaction
from ...dates import parse_date
from ...errors import (
    ExternalServiceError,
    ExternalTimeoutError,
    RateLimitedError,
)
from ...logging_setup import get_logger
from ...models import Direction
from ...queue import enqueue_transactions, find_setup
from ...remote import call_with_timeout, settle_map
from ...run_context import ImportRunContext
from ...settings import Settings
from ...workflows.import_flow import new_batch_id

SERVICE = "teller"
SIGNATURE_TOLERANCE_SEC = 180

_logger = get_logger("financial_ingest.ingest.teller")


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class TellerCounterparty(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    type: str | None = None


class TellerDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str | None = None
    counterparty: TellerCounterparty | None = None
    processing_status: str | None = None


class TellerTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    account_id: str
    amount: str
    date: str
    description: str
    status: str = "posted"
    type: str | None = None
    details: TellerDetails | None = None
    running_balance: str | None = None

    @property
    def is_pending(self) -> bool:
        processing = self.details.processing_status if self.details else None
        return self.status == "pending" or processing == "pending"


def parse_transactions(payload: Any) -> list[TellerTransaction]:
    if not isinstance(payload, list):
        raise ExternalServiceError(SERVICE, "expected a JSON array of transactions")
    out: list[TellerTransaction] = []
    for item in payload:
        try:
            out.append(TellerTransaction.model_validate(item))
        except ValidationError as e:
            _logger.warning("skipping malformed Teller transaction: %s", e.errors()[0].get("msg"))
    return out


def teller_to_transaction(t: TellerTransaction) -> CanonicalTransaction | None:
    """Canonical form of a posted Teller transaction; ``None`` for unusable ones."""

    if t.is_pending:
        return None
    try:
        signed = Decimal(t.amount)
    except InvalidOperation:
        _logger.warning("Teller transaction %s has invalid amount %r", t.id, t.amount)
        return None
    tx_date = parse_date(t.date).value
    if tx_date is None or signed == 0:
        return None

    # Only fields Teller never rewrites go into the raw row, so a redelivered
    # transaction hashes the same.
    raw = json.dumps(
        {
            "id": t.id,
            "account_id": t.account_id,
            "date": t.date,
            "amount": t.amount,
            "description": t.description,
        },
        sort_keys=True,
    )
    counterparty = t.details.counterparty.name if t.details and t.details.counterparty else None
    return make_transaction(
        tx_date=tx_date,
        description=t.description,
        amount=signed,
        direction=Direction.INCOME if signed > 0 else Direction.EXPENSE,
        raw_row=raw,
        source=SERVICE,
        merchant=counterparty,
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class TellerClient:
    """Minimal Teller REST client over ``urllib``."""

    def __init__(self, access_token: str, *, settings: Settings) -> None:
        if not access_token:
            raise ValueError("access_token is required")
        self._token = access_token
        self._settings = settings

    def _ssl_context(self) -> ssl.SSLContext | None:
        cert, key = self._settings.teller_client_cert, self._settings.teller_client_key
        if cert and key:
            context = ssl.create_default_context()
            context.load_cert_chain(certfile=cert, keyfile=key)
            return context
        if self._settings.teller_env == "sandbox":
            return None
        raise ExternalServiceError(
            SERVICE,
            "TELLER_CLIENT_CERT and TELLER_CLIENT_KEY are required outside the sandbox",
        )

    def _request(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        query = urllib.parse.urlencode({k: v for k, v in (params or {}).items() if v is not None})
        url = f"{self._settings.teller_api_url}{path}" + (f"?{query}" if query else "")
        req = urllib.request.Request(url, method="GET")
        auth = base64.b64encode(f"{self._token}:".encode()).decode("ascii")
        req.add_header("Authorization", f"Basic {auth}")
        req.add_header("Accept", "application/json")
        timeout = self._settings.remote_timeout_sec

        try:
            with urllib.request.urlopen(req, timeout=timeout, context=self._ssl_context()) as resp:
                body = resp.read()
        except urllib.error.HTTPError as e:
            try:
                err_body = e.read().decode("utf-8", errors="replace")
            except Exception:  # noqa: BLE001 - error body is best effort
                err_body = ""
            if e.code == 429:
                raise RateLimitedError(SERVICE, retry_after=_retry_after(e.headers)) from e
            raise ExternalServiceError(SERVICE, f"{e.code} {e.reason}: {err_body}") from e
        except TimeoutError as e:
            raise ExternalTimeoutError(SERVICE, timeout) from e
        except urllib.error.URLError as e:
            raise ExternalServiceError(SERVICE, f"request failed: {e.reason}") from e

        try:
            return json.loads(body.decode("utf-8"))
        except json.JSONDecodeError as e:
            raise ExternalServiceError(SERVICE, "response was not valid JSON") from e

    def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return call_with_timeout(
            lambda: self._request(path, params),
            timeout_sec=self._settings.remote_timeout_sec,
            service=SERVICE,
        )

    def list_transactions(
        self,
        account_id: str,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        count: int | None = None,
    ) -> list[TellerTransaction]:
        payload = self._get(
            f"/accounts/{urllib.parse.quote(account_id, safe='')}/transactions",
            {
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
                "count": count,
            },
        )
        return parse_transactions(payload)


def _retry_after(headers: Any) -> float | None:
    raw = headers.get("Retry-After") if headers is not None else None
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Pull flow
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class FetchResult:
    fetched: int = 0
    queued: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)
    batch_id: str | None = None


def _queue_fetched(
    session: Session,
    ctx: ImportRunContext,
    fetched: Sequence[TellerTransaction],
    *,
    setup_id: int | None,
    batch_id: str,
    is_historical: bool,
    result: FetchResult,
) -> None:
    converted = [c for c in (teller_to_transaction(t) for t in fetched) if c is not None]
    skipped = len(fetched) - len(converted)
    if skipped:
        _logger.info("skipped %d pending or unusable Teller transactions", skipped)
    enqueued = enqueue_transactions(
        session,
        ctx,
        setup_id=setup_id,
        batch_id=batch_id,
        transactions=converted,
        is_historical=is_historical,
    )
    result.fetched += len(fetched)
    result.queued += enqueued.queued
    result.duplicates += len(enqueued.duplicates)


def fetch_and_queue(
    session: Session,
    ctx: ImportRunContext,
    *,
    client: TellerClient,
    teller_account_id: str,
    setup_id: int | None,
    start_date: date | None = None,
    end_date: date | None = None,
    batch_id: str | None = None,
    is_historical: bool = False,
) -> FetchResult:
    """Fetch one Teller account and queue its posted transactions.

    External failures are reported in ``errors`` rather than raised.
    """

    result = FetchResult(batch_id=batch_id or new_batch_id(SERVICE, now=ctx.now()))
    try:
        fetched = client.list_transactions(
            teller_account_id, start_date=start_date, end_date=end_date
        )
    except ExternalServiceError as e:
        _logger.warning("Teller fetch for %s failed: %s", teller_account_id, e)
        result.errors.append(f"Error fetching Teller transactions: {e}")
        return result

    _queue_fetched(
        session,
        ctx,
        fetched,
        setup_id=setup_id,
        batch_id=result.batch_id,
        is_historical=is_historical,
        result=result,
    )
    return result


def sync_accounts(
    session: Session,
    ctx: ImportRunContext,
    *,
    client: TellerClient,
    teller_account_ids: Iterable[str],
    setup_id: int | None,
    start_date: date | None = None,
    end_date: date | None = None,
    is_historical: bool = False,
) -> FetchResult:
    """Fetch several accounts concurrently, then queue them in one batch.

    Fetches run on worker threads (capped by ``FI_TELLER_MAX_WORKERS``); all
    database work stays on the caller's thread and session. One failing
    account is reported and does not stop the others.
    """

    result = FetchResult(batch_id=new_batch_id(SERVICE, now=ctx.now()))
    outcomes = settle_map(
        list(teller_account_ids),
        lambda acct: client.list_transactions(acct, start_date=start_date, end_date=end_date),
        concurrency=ctx.settings.teller_max_workers,
    )
    for outcome in outcomes:
        if not outcome.ok:
            _logger.warning("Teller fetch for %s failed: %s", outcome.item, outcome.error)
            result.errors.append(f"{outcome.item}: {outcome.error}")
            continue
        _queue_fetched(
            session,
            ctx,
            outcome.value or [],
            setup_id=setup_id,
            batch_id=result.batch_id,
            is_historical=is_historical,
            result=result,
        )
    return result


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def verify_webhook_signature(
    secret: str,
    signature_header: str | None,
    body: bytes,
    *,
    now: float | None = None,
    tolerance_sec: int = SIGNATURE_TOLERANCE_SEC,
) -> bool:
    """Check a ``Teller-Signature`` header against the raw request body."""

    if not secret or not signature_header:
        return False
    timestamp: str | None = None
    candidates: list[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            candidates.append(value)
    if timestamp is None or not candidates:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - ts) > tolerance_sec:
        return False

    signed = f"{timestamp}.".encode() + body
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, c) for c in candidates)


@dataclass(slots=True)
class WebhookResult:
    event_type: str
    handled: bool = False
    results: dict[str, FetchResult] = field(default_factory=dict)

    @property
    def queued(self) -> int:
        return sum(r.queued for r in self.results.values())


def handle_webhook_event(
    session: Session,
    event: Mapping[str, Any],
    *,
    settings: Settings | None = None,
    make_context: Callable[[str], ImportRunContext] | None = None,
) -> WebhookResult:
    """Queue the transactions carried by a ``transactions.processed`` event.

    Transactions are grouped by Teller account and routed to the Teller setup
    whose ``source_identifier`` is that account id. Other event types are
    acknowledged and ignored.
    """

    event_type = str(event.get("type") or "")
    out = WebhookResult(event_type=event_type)
    if event_type != "transactions.processed":
        _logger.info("ignoring Teller webhook event %r", event_type)
        return out

    payload = event.get("payload") or {}
    by_account: dict[str, list[TellerTransaction]] = defaultdict(list)
    for t in parse_transactions(payload.get("transactions") or []):
        by_account[t.account_id].append(t)

    resolved = settings or Settings.from_env()
    for teller_account_id, txs in by_account.items():
        setup = find_setup(session, source_type=SERVICE, source_identifier=teller_account_id)
        if setup is None:
            _logger.warning("no Teller setup for account %s; dropping event", teller_account_id)
            continue
        ctx = (
            make_context(setup.account_id)
            if make_context is not None
            else ImportRunContext(account_id=setup.account_id, settings=resolved)
        )
        result = FetchResult(batch_id=new_batch_id(SERVICE, now=ctx.now()))
        _queue_fetched(
            session,
            ctx,
            txs,
            setup_id=setup.id,
            batch_id=result.batch_id,
            is_historical=bool(setup.is_historical),
            result=result,
        )
        out.results[teller_account_id] = result
    out.handled = True
    return out


__all__ = [
    "SERVICE",
    "SIGNATURE_TOLERANCE_SEC",
    "TellerTransaction",
    "parse_transactions",
    "teller_to_transaction",
    "TellerClient",
    "FetchResult",
    "fetch_and_queue",
    "sync_accounts",
    "verify_webhook_signature",
    "WebhookResult",
    "handle_webhook_event",
]
