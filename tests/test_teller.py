import base64
import hashlib
import hmac
import io
import json
import urllib.error
import urllib.request
from datetime import date
from decimal import Decimal

import pytest

from financial_ingest.errors import ExternalServiceError, RateLimitedError
from financial_ingest.ingest.adapters.teller import (
    TellerClient,
    TellerTransaction,
    fetch_and_queue,
    handle_webhook_event,
    sync_accounts,
    teller_to_transaction,
    verify_webhook_signature,
)
from financial_ingest.models import Direction
from financial_ingest.queue import create_setup, list_items
from financial_ingest.settings import Settings

from tests.helpers.context import ACCOUNT, make_ctx


def _teller(id_: str, amount: str, *, account: str = "acc_1", status: str = "posted", **extra):
    return {
        "id": id_,
        "account_id": account,
        "amount": amount,
        "date": "2025-01-15",
        "description": f"TX {id_}",
        "status": status,
        **extra,
    }


PAYLOAD = [
    _teller("txn_1", "1500.00", details={"counterparty": {"name": "ACME PAYROLL"}}),
    _teller("txn_2", "-42.10"),
    _teller("txn_3", "-9.99", status="pending"),
]


def _http_ok(payload, captured=None):
    def fake_urlopen(req, timeout=None, context=None):
        if captured is not None:
            captured.append({"req": req, "timeout": timeout, "context": context})
        return io.BytesIO(json.dumps(payload).encode())

    return fake_urlopen


def _http_error(code: int, headers=None, body: bytes = b"nope"):
    def fake_urlopen(req, timeout=None, context=None):
        raise urllib.error.HTTPError(
            req.full_url, code, "Error", headers or {}, io.BytesIO(body)
        )

    return fake_urlopen


def test_positive_amount_is_income_and_pending_is_skipped():
    income = teller_to_transaction(TellerTransaction.model_validate(PAYLOAD[0]))
    expense = teller_to_transaction(TellerTransaction.model_validate(PAYLOAD[1]))
    assert income.direction is Direction.INCOME
    assert income.amount == Decimal("1500.00")
    assert income.merchant == "ACME PAYROLL"
    assert income.source == "teller"
    assert expense.direction is Direction.EXPENSE
    assert expense.amount == Decimal("42.10")
    assert teller_to_transaction(TellerTransaction.model_validate(PAYLOAD[2])) is None


def test_hash_ignores_fields_teller_may_rewrite():
    a = dict(PAYLOAD[1], running_balance="100.00")
    b = dict(PAYLOAD[1], running_balance="57.90")
    ta = teller_to_transaction(TellerTransaction.model_validate(a))
    tb = teller_to_transaction(TellerTransaction.model_validate(b))
    assert ta.hash == tb.hash


def test_client_sends_basic_auth_and_date_range(monkeypatch):
    captured: list[dict] = []
    monkeypatch.setattr(urllib.request, "urlopen", _http_ok(PAYLOAD, captured))
    client = TellerClient("tok_abc", settings=Settings())

    txs = client.list_transactions(
        "acc_1", start_date=date(2025, 1, 1), end_date=date(2025, 1, 31)
    )
    assert [t.id for t in txs] == ["txn_1", "txn_2", "txn_3"]

    (call,) = captured
    req = call["req"]
    assert req.full_url == (
        "https://api.teller.io/accounts/acc_1/transactions"
        "?start_date=2025-01-01&end_date=2025-01-31"
    )
    expected = base64.b64encode(b"tok_abc:").decode("ascii")
    assert req.get_header("Authorization") == f"Basic {expected}"
    assert call["context"] is None
    assert call["timeout"] == 30.0


def test_rate_limit_carries_retry_after(monkeypatch):
    monkeypatch.setattr(urllib.request, "urlopen", _http_error(429, {"Retry-After": "30"}))
    client = TellerClient("tok_abc", settings=Settings())
    with pytest.raises(RateLimitedError) as exc:
        client.list_transactions("acc_1")
    assert exc.value.retry_after == 30.0


def test_server_error_is_an_external_service_error(monkeypatch):
    monkeypatch.setattr(urllib.request, "urlopen", _http_error(500, body=b"boom"))
    client = TellerClient("tok_abc", settings=Settings())
    with pytest.raises(ExternalServiceError, match="500 Error: boom"):
        client.list_transactions("acc_1")


def test_client_certificate_required_outside_sandbox(monkeypatch):
    monkeypatch.setattr(urllib.request, "urlopen", _http_ok([]))
    client = TellerClient("tok_abc", settings=Settings(teller_env="production"))
    with pytest.raises(ExternalServiceError, match="TELLER_CLIENT_CERT"):
        client.list_transactions("acc_1")


def test_fetch_and_queue_is_idempotent(session, monkeypatch):
    monkeypatch.setattr(urllib.request, "urlopen", _http_ok(PAYLOAD))
    client = TellerClient("tok_abc", settings=Settings())

    first = fetch_and_queue(
        session, make_ctx(), client=client, teller_account_id="acc_1", setup_id=None
    )
    assert (first.fetched, first.queued, first.duplicates) == (3, 2, 0)
    assert first.batch_id.startswith("teller-")

    second = fetch_and_queue(
        session, make_ctx(), client=client, teller_account_id="acc_1", setup_id=None
    )
    assert (second.queued, second.duplicates) == (0, 2)
    assert len(list_items(session, account_id=ACCOUNT)) == 2


def test_fetch_failure_is_reported_not_raised(session, monkeypatch):
    monkeypatch.setattr(urllib.request, "urlopen", _http_error(503))
    client = TellerClient("tok_abc", settings=Settings())
    result = fetch_and_queue(
        session, make_ctx(), client=client, teller_account_id="acc_1", setup_id=None
    )
    assert result.queued == 0
    assert result.errors == ["Error fetching Teller transactions: teller: 503 Error: nope"]


class _FakeClient:
    def list_transactions(self, account_id, *, start_date=None, end_date=None):
        if account_id == "acc_bad":
            raise ExternalServiceError("teller", "boom")
        tx = _teller(f"{account_id}-1", "-5.00", account=account_id)
        return [TellerTransaction.model_validate(tx)]


def test_sync_accounts_reports_failures_per_account(session):
    result = sync_accounts(
        session,
        make_ctx(teller_max_workers=2),
        client=_FakeClient(),
        teller_account_ids=["acc_1", "acc_bad", "acc_2"],
        setup_id=None,
    )
    assert result.queued == 2
    assert result.errors == ["acc_bad: teller: boom"]


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

SECRET = "whsec_test"
BODY = b'{"type":"transactions.processed"}'


def _sign(ts: int, body: bytes = BODY, secret: str = SECRET) -> str:
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def test_webhook_signature_checks():
    now = 1_736_900_000
    assert verify_webhook_signature(SECRET, _sign(now), BODY, now=now + 10)
    assert not verify_webhook_signature(SECRET, _sign(now, secret="other"), BODY, now=now)
    assert not verify_webhook_signature(SECRET, _sign(now), BODY + b" ", now=now)
    assert not verify_webhook_signature(SECRET, _sign(now), BODY, now=now + 181)
    assert not verify_webhook_signature(SECRET, None, BODY, now=now)
    rotated = f"{_sign(now)},v1={'0' * 64}"
    assert verify_webhook_signature(SECRET, rotated, BODY, now=now)


def test_webhook_event_queues_for_known_accounts(session):
    setup = create_setup(
        session,
        account_id=ACCOUNT,
        source_type="teller",
        source_identifier="acc_1",
        integration_name="Checking",
    )
    event = {
        "type": "transactions.processed",
        "payload": {
            "transactions": [
                _teller("txn_1", "-12.00"),
                _teller("txn_2", "-3.00"),
                _teller("txn_9", "-1.00", account="acc_unknown"),
            ]
        },
    }

    result = handle_webhook_event(session, event, make_context=make_ctx)
    assert result.handled
    assert list(result.results) == ["acc_1"]
    assert result.queued == 2
    assert {i.setup_id for i in list_items(session, account_id=ACCOUNT)} == {setup.id}

    again = handle_webhook_event(session, event, make_context=make_ctx)
    assert again.queued == 0


def test_other_webhook_events_are_ignored(session):
    result = handle_webhook_event(session, {"type": "enrollment.disconnected", "payload": {}})
    assert result.handled is False
    assert result.results == {}
