"""Progressive, pausable batch loader for routing-API orders.

The loader owns one :class:`ProgressState` and one accumulator list. Batches
are fetched strictly one after another: each request carries the continuation
token of the previous response, so at most one request is ever in flight.

Every run is tagged with an epoch. ``reset()`` and each fresh ``load_data()``
advance the epoch, and any response or failure that arrives for an older epoch
is logged and dropped instead of being applied. Any exception raised while
fetching or applying a batch ends the run with ``is_loading`` false and
``error`` set.
"""
from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from fieldops.bulk_orders.fetcher import BatchFetcher
from fieldops.bulk_orders.models import (
    DEFAULT_VALID_STATUSES,
    BatchRequest,
    BatchResponse,
    CanonicalWorkOrder,
    ProgressState,
)
from fieldops.bulk_orders.normalizer import normalize_many
from fieldops.bulk_orders.retry import error_message
from fieldops.common.json_logger import JsonLogger, log_event

DEFAULT_BATCH_DELAY_MS = 300
DEFAULT_BATCH_SIZE = 500

ProgressCallback = Callable[[ProgressState], None]
CompleteCallback = Callable[[List[CanonicalWorkOrder]], None]
ErrorCallback = Callable[[str], None]


class ProgressiveLoader:
    def __init__(
        self,
        fetcher: BatchFetcher,
        *,
        batch_delay_ms: int = DEFAULT_BATCH_DELAY_MS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        logger: JsonLogger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self.batch_delay_ms = batch_delay_ms
        self.batch_size = batch_size
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_error = on_error
        self._logger = logger
        self._sleep = sleep

        self._state = ProgressState()
        self._orders: List[CanonicalWorkOrder] = []
        self._request: Optional[BatchRequest] = None
        self._epoch = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._task_epoch: Optional[int] = None

    # ------------------------------------------------------------------
    # observers

    @property
    def state(self) -> ProgressState:
        return self._state.snapshot()

    @property
    def all_orders(self) -> List[CanonicalWorkOrder]:
        return list(self._orders)

    @property
    def epoch(self) -> int:
        return self._epoch

    # ------------------------------------------------------------------
    # controls

    def load_data(
        self,
        start_date: date,
        end_date: date,
        valid_statuses: Iterable[str] = DEFAULT_VALID_STATUSES,
    ) -> None:
        """Start (or continue a paused) load. Must be called from a running event loop."""

        if self._state.is_loading:
            self._log("fetch", "warn", "load requested while already loading; ignored")
            return

        request = BatchRequest(
            start_date=start_date,
            end_date=end_date,
            valid_statuses=tuple(valid_statuses),
            batch_size=self.batch_size,
        )
        resuming = self._state.is_paused
        if not resuming:
            self._reset_state()

        self._request = request
        self._state.is_loading = True
        self._state.is_paused = False
        self._state.error = None
        self._log(
            "fetch",
            "ok",
            "load resumed" if resuming else "load started",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            valid_statuses=list(request.valid_statuses),
            continuation_token=self._state.continuation_token,
        )
        self._ensure_running()

    def pause(self) -> None:
        if not self._state.is_loading or self._state.is_complete:
            return
        self._state.is_paused = True
        self._state.is_loading = False
        self._log("fetch", "ok", "load paused", processed_orders=self._state.processed_orders)
        self._notify_progress()

    def resume(self) -> None:
        if not self._state.is_paused or self._request is None:
            return
        self._state.is_paused = False
        self._state.is_loading = True
        self._log(
            "fetch",
            "ok",
            "load resumed",
            continuation_token=self._state.continuation_token,
        )
        self._notify_progress()
        self._ensure_running()

    def reset(self) -> None:
        self._reset_state()
        self._request = None
        self._log("fetch", "ok", "loader reset", epoch=self._epoch)

    async def wait(self) -> None:
        """Wait until the current run stops (complete, paused, failed or superseded)."""

        while True:
            task = self._task
            if task is None or task.done():
                return
            await task

    # ------------------------------------------------------------------
    # internals

    def _reset_state(self) -> None:
        self._epoch += 1
        self._state = ProgressState()
        self._orders = []

    def _ensure_running(self) -> None:
        if self._task is not None and not self._task.done() and self._task_epoch == self._epoch:
            return
        loop = asyncio.get_running_loop()
        self._task_epoch = self._epoch
        self._task = loop.create_task(self._run(self._epoch))

    def _is_stale(self, epoch: int) -> bool:
        return epoch != self._epoch

    async def _run(self, epoch: int) -> None:
        while True:
            if self._is_stale(epoch) or not self._state.is_loading or self._request is None:
                return

            request = self._request.with_token(self._state.continuation_token)

            def _on_retry(retry_number: int, max_retries: int, message: str) -> None:
                if self._is_stale(epoch):
                    return
                self._state.error = message
                self._notify_progress()

            try:
                response = await self._fetcher.fetch_batch(request, on_retry=_on_retry)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._is_stale(epoch):
                    self._log_stale(epoch, error=error_message(exc))
                    return
                self._fail(error_message(exc))
                return

            if self._is_stale(epoch):
                self._log_stale(epoch, orders=len(response.orders))
                return

            try:
                finished = self._apply(response)
            except Exception as exc:
                self._fail(error_message(exc))
                return
            if finished:
                return
            if self._state.is_paused:
                return

            await self._sleep(self.batch_delay_ms / 1000)

    def _apply(self, response: BatchResponse) -> bool:
        """Fold one response into state; return True when the run is finished."""

        state = self._state
        batch = normalize_many(response.orders, logger=self._logger)
        self._orders.extend(batch)

        state.processed_orders += len(batch)
        state.current_page = response.current_page or state.current_page + 1
        state.total_pages = response.total_pages or state.total_pages
        estimated_total = response.estimated_total or state.total_orders
        if estimated_total:
            state.total_orders = max(estimated_total, state.processed_orders)
            state.progress = min(state.processed_orders / state.total_orders * 100, 100.0)
        state.continuation_token = response.continuation_token
        state.error = None

        finished = response.is_complete or not response.continuation_token
        self._log(
            "fetch",
            "ok",
            "batch applied",
            orders_in_batch=len(batch),
            processed_orders=state.processed_orders,
            current_page=state.current_page,
            total_pages=state.total_pages,
            has_token=bool(response.continuation_token),
            is_complete=response.is_complete,
        )

        if finished:
            state.is_complete = True
            state.is_loading = False
            state.is_paused = False
            state.progress = 100.0
            if not response.is_complete:
                self._log(
                    "fetch",
                    "warn",
                    "response without continuation token treated as complete",
                    current_page=state.current_page,
                )
            self._notify_progress()
            self._log(
                "progress",
                "ok",
                "load complete",
                processed_orders=state.processed_orders,
                pages=state.current_page,
            )
            if self._on_complete is not None:
                self._on_complete(self.all_orders)
            return True

        self._notify_progress()
        return False

    def _fail(self, message: str) -> None:
        self._state.is_loading = False
        self._state.is_paused = False
        self._state.error = message
        self._log(
            "fetch",
            "error",
            "load failed",
            error=message,
            processed_orders=self._state.processed_orders,
        )
        self._notify_progress()
        if self._on_error is not None:
            self._on_error(message)

    def _notify_progress(self) -> None:
        if self._on_progress is not None:
            self._on_progress(self._state.snapshot())

    def _log_stale(self, epoch: int, **fields: Any) -> None:
        self._log(
            "fetch",
            "warn",
            "discarded result from superseded load",
            dispatched_epoch=epoch,
            current_epoch=self._epoch,
            **fields,
        )

    def _log(self, phase: str, status: str, message: str, **fields: Any) -> None:
        if self._logger is None:
            return
        log_event(logger=self._logger, phase=phase, status=status, message=message, **fields)

