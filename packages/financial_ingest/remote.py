"""Time-bounded remote calls over ``ThreadPoolExecutor``.

Remote collaborators (PDF text extraction, the vision model, the bank API) are
the only suspending operations in an import run. Each call goes through
:func:`call_with_timeout`, which turns a hang into
:class:`~financial_ingest.errors.ExternalTimeoutError` so the run can report a
processing error and move on. A timed-out worker thread is abandoned rather
than joined; its eventual result is discarded.

:func:`settle_map` runs several such calls with a concurrency cap and returns
one :class:`Settled` per input in input order, never raising for a single
failed item (used by multi-account bank syncs).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Generic, TypeVar

from .errors import ExternalTimeoutError
from .logging_setup import get_logger

InT = TypeVar("InT")
OutT = TypeVar("OutT")

_logger = get_logger("financial_ingest.remote")


def call_with_timeout(
    fn: Callable[[], OutT],
    *,
    timeout_sec: float,
    service: str,
) -> OutT:
    """Run ``fn`` on a worker thread and wait at most ``timeout_sec`` seconds.

    Exceptions raised by ``fn`` propagate unchanged. On timeout an
    :class:`ExternalTimeoutError` naming ``service`` is raised.
    """

    if timeout_sec <= 0:
        raise ValueError("timeout_sec must be positive")

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"fi-{service}")
    fut = pool.submit(fn)
    try:
        return fut.result(timeout=timeout_sec)
    except FutureTimeoutError as e:
        fut.cancel()
        _logger.warning("%s call exceeded %.1fs; abandoning worker", service, timeout_sec)
        raise ExternalTimeoutError(service, timeout_sec) from e
    finally:
        # Never block on a hung worker.
        pool.shutdown(wait=False, cancel_futures=True)


@dataclass(frozen=True, slots=True)
class Settled(Generic[InT, OutT]):
    """Outcome of one mapped call: either ``value`` or ``error`` is set."""

    item: InT
    value: OutT | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def settle_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[Settled[InT, OutT]]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` calls in flight.

    Every input yields exactly one :class:`Settled` in input order. Mapper
    exceptions are captured on the outcome instead of propagating, so one
    failing account does not abort the others.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = list(iterable)
    outcomes: dict[int, Settled[InT, OutT]] = {}
    pending = iter(enumerate(items))
    future_to_idx: dict[Future, int] = {}

    def _submit(pool: ThreadPoolExecutor) -> Future | None:
        try:
            idx, item = next(pending)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: set[Future] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    outcomes[idx] = Settled(item=items[idx], value=fut.result())
                except Exception as e:  # noqa: BLE001 - captured per item
                    outcomes[idx] = Settled(item=items[idx], error=e)
            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)

    return [outcomes[i] for i in range(len(items))]


__all__ = ["call_with_timeout", "settle_map", "Settled"]
