"""Test helpers to stub the OpenAI Responses client used by the vision adapter.

The stub returns canned ``output_text`` replies (or raises canned errors) in
order and records each call's kwargs so tests can assert on the request shape
(model, data URI) without network access.
"""

from __future__ import annotations

from typing import Any


class StatusError(Exception):
    """Exception shaped like ``openai.APIStatusError`` (``status_code`` + ``response``)."""

    def __init__(self, status_code: int, headers: dict[str, str] | None = None) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code

        class _Response:
            pass

        self.response = _Response()
        self.response.headers = headers or {}


class OpenAIStub:
    """Minimal stub matching the ``openai.OpenAI`` shape the vision adapter uses.

    Parameters
    ----------
    replies:
        Items returned (strings, as ``output_text``) or raised (exceptions) by
        successive ``responses.create`` calls. The last item repeats.
    calls_out:
        Optional list that receives each call's kwargs.
    """

    def __init__(
        self,
        replies: list[str | BaseException],
        calls_out: list[dict[str, Any]] | None = None,
    ) -> None:
        self._replies = list(replies)
        self._calls = calls_out if calls_out is not None else []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs):
                outer = self._outer
                outer._calls.append(kwargs)
                idx = min(len(outer._calls) - 1, len(outer._replies) - 1)
                reply = outer._replies[idx]
                if isinstance(reply, BaseException):
                    raise reply

                class _Resp:
                    output_text: str

                resp = _Resp()
                resp.output_text = reply
                return resp

        self.responses = _Responses(self)

    # Expose the captured calls list for assertions
    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls
