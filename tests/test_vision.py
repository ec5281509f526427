from datetime import date
from decimal import Decimal

import pytest

from financial_ingest.errors import ExternalServiceError, RateLimitedError
from financial_ingest.ingest.adapters import vision
from financial_ingest.models import Direction

from tests.helpers.openai_stub import OpenAIStub, StatusError

REPLY = (
    "```json\n"
    '[{"date": "2025-02-03", "description": "CORNER CAFE", "amount": 6.25},'
    ' {"date": "02/04/2025", "description": "PARKING", "amount": "$3.00"},'
    ' {"date": "someday", "description": "BROKEN", "amount": 1},'
    ' {"description": "NO DATE", "amount": 2}]\n'
    "```"
)


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch):
    monkeypatch.setattr(vision, "_sleep_backoff", lambda attempt: None)


def _install(monkeypatch, replies):
    stub = OpenAIStub(replies)
    monkeypatch.setattr(vision, "_create_client", lambda: stub)
    return stub


def _extract():
    return vision.extract_image_transactions(
        b"\x89PNG fake", media_type="image/png", model="gpt-4o", timeout_sec=5
    )


def test_fenced_reply_becomes_expense_transactions(monkeypatch):
    stub = _install(monkeypatch, [REPLY])
    txs = _extract()
    assert [t.description for t in txs] == ["CORNER CAFE", "PARKING"]
    assert txs[0].date == date(2025, 2, 3)
    assert txs[1].amount == Decimal("3.00")
    assert all(t.direction is Direction.EXPENSE for t in txs)
    assert all(t.source == "vision" for t in txs)

    (call,) = stub.calls
    assert call["model"] == "gpt-4o"
    image = call["input"][0]["content"][1]
    assert image["type"] == "input_image"
    assert image["image_url"].startswith("data:image/png;base64,")


def test_object_wrapper_is_accepted():
    rows = vision.parse_vision_rows(
        '{"transactions": [{"date": "2025-02-03", "description": "A", "amount": 1.5}]}'
    )
    assert [r.description for r in rows] == ["A"]


def test_non_json_reply_is_an_external_error():
    with pytest.raises(ExternalServiceError, match="not valid JSON"):
        vision.parse_vision_rows("I could not read this image")


def test_server_errors_are_retried(monkeypatch):
    stub = _install(monkeypatch, [StatusError(503), StatusError(500), REPLY])
    assert len(_extract()) == 2
    assert len(stub.calls) == 3


def test_rate_limit_after_last_attempt(monkeypatch):
    stub = _install(monkeypatch, [StatusError(429, {"retry-after": "12"})])
    with pytest.raises(RateLimitedError) as exc:
        _extract()
    assert exc.value.retry_after == 12.0
    assert len(stub.calls) == 3


def test_client_errors_are_not_retried(monkeypatch):
    stub = _install(monkeypatch, [StatusError(400)])
    with pytest.raises(ExternalServiceError) as exc:
        _extract()
    assert not isinstance(exc.value, RateLimitedError)
    assert len(stub.calls) == 1
