"""Exception types raised by the import pipeline.

Only conditions a caller must act on are exceptions. Row-level parse failures
are skipped and logged, and duplicate detection is a status, so neither has a
type here. External-service failures are raised by adapters as
:class:`ExternalServiceError` (or a subclass) and converted by workflows into
reported processing errors.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for pipeline errors."""


class ExternalServiceError(IngestError):
    """A remote collaborator (text extraction, vision, bank API) failed."""

    def __init__(self, service: str, detail: str) -> None:
        self.service = service
        self.detail = detail
        super().__init__(f"{service}: {detail}")


class RateLimitedError(ExternalServiceError):
    """The remote service asked us to back off.

    ``retry_after`` carries the server-provided delay in seconds when known so
    callers can tell users when to retry.
    """

    def __init__(
        self, service: str, detail: str = "rate limited", *, retry_after: float | None = None
    ) -> None:
        super().__init__(service, detail)
        self.retry_after = retry_after


class ExternalTimeoutError(ExternalServiceError):
    """A remote call did not finish within its time budget."""

    def __init__(self, service: str, timeout_sec: float) -> None:
        super().__init__(service, f"timed out after {timeout_sec:g}s")
        self.timeout_sec = timeout_sec


class InvalidTransitionError(IngestError):
    """A queue item was asked to move along an edge the state machine lacks."""

    def __init__(self, item_id: int, current: str, requested: str) -> None:
        self.item_id = item_id
        self.current = current
        self.requested = requested
        super().__init__(f"queue item {item_id}: cannot move from {current!r} to {requested!r}")


class CommitValidationError(IngestError):
    """Commit refused; nothing was written.

    ``problems`` maps each offending item id (or transaction hash in the manual
    flow) to a human-readable reason.
    """

    def __init__(self, message: str, problems: dict[int | str, str] | None = None) -> None:
        self.problems = dict(problems or {})
        if self.problems:
            detail = "; ".join(f"{k}: {v}" for k, v in self.problems.items())
            message = f"{message} ({detail})"
        super().__init__(message)

    @property
    def item_ids(self) -> list[int | str]:
        return list(self.problems)


__all__ = [
    "IngestError",
    "ExternalServiceError",
    "RateLimitedError",
    "ExternalTimeoutError",
    "InvalidTransitionError",
    "CommitValidationError",
]
