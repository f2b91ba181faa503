"""Operation ledger — at-most-one in-flight execution per key.

Created: 2026-10-19

Every backend call goes through ``OperationLedger.run()``. While an
operation key is pending, further calls with the same key await the
in-flight outcome instead of invoking their function again. The ledger
also keeps the shared ``loading`` / ``error`` / ``last_updated`` fields a
store exposes to its consumers.

Design notes:
- The pending check and the pending mark happen with no ``await`` in
  between, so two callers on the same event loop can never both execute.
- Results are cached per key for replay; the cache is bounded.
- ``run_batch()`` never short-circuits: it returns a ``BatchReport``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from accountsync.errors import OperationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Once the result cache grows past MAX_RESULTS it is trimmed to TRIM_TO entries
MAX_RESULTS = 100
TRIM_TO = 50


@dataclass
class BatchReport:
    """Outcome of ``OperationLedger.run_batch()``.

    ``results`` holds one ``("fulfilled", value)`` or ``("rejected", error)``
    tuple per operation, in submission order.
    """

    successful: int = 0
    failed: int = 0
    total: int = 0
    errors: list[BaseException] = field(default_factory=list)
    results: list[tuple[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class OperationLedger:
    """Tracks in-flight async operations by key."""

    def __init__(self, max_results: int = MAX_RESULTS, trim_to: int = TRIM_TO):
        self._pending: dict[str, asyncio.Future] = {}
        self._results: OrderedDict[str, Any] = OrderedDict()
        self._max_results = max_results
        self._trim_to = trim_to
        self._loading_count = 0
        self._batch_seq = itertools.count(1)

        self.error: str | None = None
        self.last_updated: float | None = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def loading(self) -> bool:
        return self._loading_count > 0

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def get_result(self, key: str) -> Any:
        """Last cached outcome for *key*: a value, or ``{"error": exc}``."""
        return self._results.get(key)

    def clear_error(self) -> None:
        self.error = None

    def reset(self) -> None:
        """Forget cached results and shared state. Pending calls keep running."""
        self._results.clear()
        self.error = None
        self.last_updated = None

    # =========================================================================
    # Execution
    # =========================================================================

    async def run(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        *,
        track_loading: bool = True,
        track_errors: bool = True,
        stamp: bool = True,
    ) -> T:
        """Run *fn* under *key*, joining the in-flight call if there is one.

        Args:
            key: Operation identifier, usually ``"<verb>-<entity id>"``.
            fn: Zero-argument coroutine function performing the work.
            track_loading: Count this call in the shared ``loading`` flag.
            track_errors: Clear ``error`` on start and set it on failure.
            stamp: Update ``last_updated`` on success.

        Raises:
            OperationError: *fn* raised; the original is chained as the cause.
        """
        in_flight = self._pending.get(key)
        if in_flight is not None:
            logger.debug("Operation %s already pending, joining", key)
            return await asyncio.shield(in_flight)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[key] = future

        if track_loading:
            self._loading_count += 1
        if track_errors:
            self.error = None

        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            logger.error("Operation %s failed: %s", key, e)
            if isinstance(e, OperationError):
                error = e
            else:
                error = OperationError(key, str(e) or f"Operation {key} failed")
                error.__cause__ = e
            if track_errors:
                self.error = str(error)
            self._store_result(key, {"error": error})
            future.set_exception(error)
            # mark retrieved: nobody may have joined
            future.exception()
            raise error
        else:
            self._store_result(key, result)
            if stamp:
                self.last_updated = time.time()
            future.set_result(result)
            return result
        finally:
            self._pending.pop(key, None)
            if track_loading:
                self._loading_count -= 1

    async def run_batch(
        self,
        operations: Iterable[tuple[str, Callable[[], Awaitable[Any]]]],
        batch_id: str | None = None,
    ) -> BatchReport:
        """Run all *operations* concurrently and report partial failures.

        Each item is ``(key, fn)``. Items run without loading/error
        tracking; the batch as a whole is tracked under *batch_id*
        (default ``"batch-<ms>-<n>"``, unique per ledger).
        """
        items = list(operations)
        batch_id = batch_id or f"batch-{int(time.time() * 1000)}-{next(self._batch_seq)}"

        async def _fan_out() -> BatchReport:
            outcomes = await asyncio.gather(
                *(
                    self.run(key, fn, track_loading=False, track_errors=False)
                    for key, fn in items
                ),
                return_exceptions=True,
            )
            report = BatchReport(total=len(outcomes))
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    report.failed += 1
                    report.errors.append(outcome)
                    report.results.append(("rejected", outcome))
                else:
                    report.successful += 1
                    report.results.append(("fulfilled", outcome))
            return report

        report = await self.run(batch_id, _fan_out)
        if report.failed:
            logger.warning(
                "Batch %s: %d/%d operations failed", batch_id, report.failed, report.total
            )
        return report

    def _store_result(self, key: str, value: Any) -> None:
        self._results[key] = value
        self._results.move_to_end(key)
        if len(self._results) > self._max_results:
            while len(self._results) > self._trim_to:
                self._results.popitem(last=False)
