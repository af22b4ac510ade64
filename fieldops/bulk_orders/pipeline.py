from __future__ import annotations

import asyncio
import contextlib
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from playwright.async_api import async_playwright
from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError

from fieldops.bulk_orders.dedupe import deduplicate_orders
from fieldops.bulk_orders.fetcher import BatchFetcher, SearchFn
from fieldops.bulk_orders.importer import import_work_orders
from fieldops.bulk_orders.loader import ProgressiveLoader
from fieldops.bulk_orders.optimoroute import OptimoRouteClient, OrderSearchService
from fieldops.bulk_orders.retry import RetryController
from fieldops.common.db import session_scope
from fieldops.common.json_logger import JsonLogger, log_event, timed_event
from fieldops.common.models import AutoImportLog
from fieldops.common.query_cache import QueryCache
from fieldops.config import Config

Sleep = Callable[[float], Awaitable[None]]


def monday_of_week(today: date) -> date:
    """Monday of the week containing ``today``; Sunday belongs to the week that started six days earlier."""

    return today - timedelta(days=today.weekday())


def _empty_summary(start: date, end: date, statuses: Iterable[str]) -> Dict[str, Any]:
    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "valid_statuses": list(statuses),
        "fetched": 0,
        "unique": 0,
        "imported": 0,
        "duplicates": 0,
        "errors": 0,
        "success": False,
        "error": None,
    }


async def _load_orders(
    loader: ProgressiveLoader,
    *,
    start: date,
    end: date,
    statuses: tuple[str, ...],
) -> None:
    loader.load_data(start, end, statuses)
    await loader.wait()


async def run_bulk_import(
    start: date,
    end: date,
    valid_statuses: Optional[Iterable[str]] = None,
    *,
    config: Config,
    logger: JsonLogger,
    search: Optional[SearchFn] = None,
    cache: Optional[QueryCache] = None,
    sleep: Sleep = asyncio.sleep,
) -> Dict[str, Any]:
    """Fetch every page for the date range, dedupe the orders and import them."""

    statuses = tuple(valid_statuses or config.fetch_valid_statuses)
    summary = _empty_summary(start, end, statuses)
    retry = RetryController(
        max_retries=config.fetch_max_retries,
        retry_delay_ms=config.fetch_retry_delay_ms,
        sleep=sleep,
        logger=logger.bind(component="retry"),
    )

    async with contextlib.AsyncExitStack() as stack:
        if search is None:
            playwright = await stack.enter_async_context(async_playwright())
            request_context = await playwright.request.new_context()
            stack.push_async_callback(request_context.dispose)
            client = OptimoRouteClient(
                request_context=request_context,
                base_url=config.optimoroute_base_url,
                api_key=config.optimoroute_api_key,
                logger=logger,
            )
            search = OrderSearchService(client=client, logger=logger)

        loader = ProgressiveLoader(
            BatchFetcher(search=search, retry=retry),
            batch_delay_ms=config.fetch_batch_delay_ms,
            logger=logger,
            sleep=sleep,
        )
        with timed_event(logger=logger, phase="fetch", message="order fetch", start_date=start, end_date=end):
            await _load_orders(loader, start=start, end=end, statuses=statuses)

    state = loader.state
    orders = loader.all_orders
    summary["fetched"] = len(orders)
    if not state.is_complete:
        summary["error"] = state.error or "fetch stopped before completion"
        log_event(
            logger=logger,
            phase="orchestrator",
            status="error",
            message="fetch did not complete; skipping import",
            error=summary["error"],
            processed_orders=state.processed_orders,
        )
        return summary

    unique, stats = deduplicate_orders(orders, logger=logger)
    summary["unique"] = stats.unique_count
    if not unique:
        summary["success"] = True
        log_event(
            logger=logger,
            phase="orchestrator",
            message="no orders to import",
            fetched=len(orders),
        )
        return summary

    result = await import_work_orders(
        unique,
        database_url=config.database_url,
        batch_size=config.import_batch_size,
        logger=logger,
        cache=cache,
    )
    summary.update(
        imported=result.imported,
        duplicates=result.duplicates,
        errors=result.errors,
        success=result.success,
        error=None if result.success else "; ".join(result.error_details) or None,
    )
    log_event(
        logger=logger,
        phase="orchestrator",
        status="ok" if result.success else "warn",
        message="bulk import finished",
        **{key: summary[key] for key in ("fetched", "unique", "imported", "duplicates", "errors")},
    )
    return summary


async def _record_auto_import(
    *,
    database_url: str,
    execution_time: datetime,
    result: Dict[str, Any],
    logger: JsonLogger,
) -> bool:
    try:
        async with session_scope(database_url) as session:
            async with session.begin():
                await session.execute(
                    insert(AutoImportLog).values(
                        execution_time=execution_time,
                        result=result,
                        run_id=logger.run_id,
                    )
                )
    except SQLAlchemyError as exc:
        log_event(
            logger=logger,
            phase="auto_import",
            status="error",
            message="failed to record auto import log",
            error=str(exc),
        )
        return False
    return True


async def run_auto_import(
    *,
    config: Config,
    logger: JsonLogger,
    today: Optional[date] = None,
    search: Optional[SearchFn] = None,
    cache: Optional[QueryCache] = None,
    sleep: Sleep = asyncio.sleep,
) -> Dict[str, Any]:
    """Import the Monday of the current week and record the outcome in ``auto_import_logs``."""

    execution_time = datetime.now(timezone.utc)
    target = monday_of_week(today or config.today())
    log_event(logger=logger, phase="auto_import", message="auto import started", date=target)

    try:
        summary = await run_bulk_import(
            target,
            target,
            config.fetch_valid_statuses,
            config=config,
            logger=logger,
            search=search,
            cache=cache,
            sleep=sleep,
        )
    except Exception as exc:
        summary = _empty_summary(target, target, config.fetch_valid_statuses)
        summary["error"] = str(exc)
        summary["date"] = target.isoformat()
        log_event(
            logger=logger,
            phase="auto_import",
            status="error",
            message="auto import failed",
            error=str(exc),
            exc_type=type(exc).__name__,
        )
        await _record_auto_import(
            database_url=config.database_url,
            execution_time=execution_time,
            result=summary,
            logger=logger,
        )
        raise

    summary["date"] = target.isoformat()
    await _record_auto_import(
        database_url=config.database_url,
        execution_time=execution_time,
        result=summary,
        logger=logger,
    )
    log_event(
        logger=logger,
        phase="auto_import",
        status="ok" if summary["success"] else "warn",
        message="auto import finished",
        date=target,
        imported=summary["imported"],
        duplicates=summary["duplicates"],
        errors=summary["errors"],
    )
    return summary
