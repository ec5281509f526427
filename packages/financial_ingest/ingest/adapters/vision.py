"""Statement images to transactions via an OpenAI vision model.

The image is sent as a base64 data URI through the Responses API with a short
instruction asking for a JSON array of ``{date, description, amount}``
objects. Replies wrapped in markdown code fences are unwrapped. Each element is
validated with pydantic; invalid elements are skipped, not fatal. Vision rows
carry no sign semantics, so every row becomes an expense.

Failure handling follows the categorizer's client loop: only HTTP 429 and 5xx
responses are retried (with jittered backoff). A final 429 becomes
:class:`~financial_ingest.errors.RateLimitedError` (with ``retry_after`` when
the server sent one); anything else becomes
:class:`~financial_ingest.errors.ExternalServiceError`.
"""

from __future__ import annotations

import base64
import json
import random
import re
import time
from datetime import date
from decimal import Decimal
from typing import Any

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ...ctv import CanonicalTransaction, make_transaction
from ...dates import parse_date
from ...errors import (
    ExternalServiceError,
    ExternalTimeoutError,
    RateLimitedError,
)
from ...logging_setup import get_logger
from ...models import Direction
from ...normalizers import parse_amount
from ...remote import call_with_timeout

SERVICE = "vision"

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_INSTRUCTIONS = (
    "You read bank and card statements. Extract every transaction visible in the "
    "image. Reply with only a JSON array; each element is an object with keys "
    '"date" (YYYY-MM-DD or as printed), "description" (string) and "amount" '
    "(number, positive). Reply with [] when there are no transactions."
)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(?P<body>.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)

_logger = get_logger("financial_ingest.ingest.vision")


class VisionRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str
    description: str
    amount: Decimal

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v: Any) -> Any:
        if isinstance(v, str):
            parsed = parse_amount(v)
            if parsed is None:
                raise ValueError(f"invalid amount {v!r}")
            return parsed
        return v


def _create_client() -> OpenAI:
    return OpenAI()


def _is_retryable(exc: BaseException) -> bool:
    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    base = _BACKOFF_SCHEDULE_SEC[min(attempt_no - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _retry_after(exc: BaseException) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    raw = headers.get("retry-after")
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _response_text(resp: Any) -> str:
    text = getattr(resp, "output_text", None)
    if isinstance(text, str) and text:
        return text
    try:
        return resp.output[0].content[0].text
    except Exception as e:  # noqa: BLE001 - tolerate SDK shape differences
        raise ExternalServiceError(SERVICE, "response had no text output") from e


def strip_code_fences(text: str) -> str:
    m = _FENCE_RE.match(text)
    return m.group("body") if m else text.strip()


def parse_vision_rows(text: str) -> list[VisionRow]:
    """Decode the model reply into validated rows, skipping invalid elements."""

    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ExternalServiceError(SERVICE, "model reply was not valid JSON") from e
    if isinstance(data, dict):
        data = data.get("transactions", [])
    if not isinstance(data, list):
        raise ExternalServiceError(SERVICE, "model reply was not a JSON array")

    rows: list[VisionRow] = []
    for i, item in enumerate(data):
        try:
            rows.append(VisionRow.model_validate(item))
        except ValidationError as e:
            _logger.debug("vision row %d skipped: %s", i, e.errors()[0].get("msg"))
    return rows


def rows_to_transactions(rows: list[VisionRow]) -> list[CanonicalTransaction]:
    out: list[CanonicalTransaction] = []
    for row in rows:
        parsed: date | None = parse_date(row.date).value
        if parsed is None or row.amount == 0:
            continue
        raw = json.dumps(
            {"date": row.date, "description": row.description, "amount": f"{row.amount}"},
            sort_keys=True,
        )
        out.append(
            make_transaction(
                tx_date=parsed,
                description=row.description,
                amount=row.amount,
                direction=Direction.EXPENSE,
                raw_row=raw,
                source=SERVICE,
            )
        )
    return out


def extract_image_transactions(
    data: bytes,
    *,
    media_type: str,
    model: str,
    timeout_sec: float,
) -> list[CanonicalTransaction]:
    """Send one statement image to the vision model and map its reply."""

    data_uri = f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"
    request = {
        "model": model,
        "instructions": _INSTRUCTIONS,
        "input": [
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": "Extract the transactions."},
                    {"type": "input_image", "image_url": data_uri},
                ],
            }
        ],
    }

    client = _create_client()
    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            resp = call_with_timeout(
                lambda: client.responses.create(**request),
                timeout_sec=timeout_sec,
                service=SERVICE,
            )
            break
        except ExternalTimeoutError:
            raise
        except Exception as e:  # noqa: BLE001
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                _logger.error(
                    "vision:failed_terminal latency_ms=%.2f error=%s attempt=%d",
                    dt_ms,
                    e.__class__.__name__,
                    attempt,
                )
                if getattr(e, "status_code", None) == 429:
                    raise RateLimitedError(SERVICE, retry_after=_retry_after(e)) from e
                raise ExternalServiceError(SERVICE, str(e)) from e
            _logger.warning(
                "vision:retry latency_ms=%.2f error=%s attempt=%d",
                dt_ms,
                e.__class__.__name__,
                attempt,
            )
            _sleep_backoff(attempt)
            attempt += 1

    rows = parse_vision_rows(_response_text(resp))
    txs = rows_to_transactions(rows)
    _logger.info("vision:done rows=%d transactions=%d", len(rows), len(txs))
    return txs


__all__ = [
    "SERVICE",
    "VisionRow",
    "strip_code_fences",
    "parse_vision_rows",
    "rows_to_transactions",
    "extract_image_transactions",
]
