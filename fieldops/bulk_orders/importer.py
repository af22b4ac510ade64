from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError

from fieldops.bulk_orders.models import CanonicalWorkOrder, ImportResult, WorkOrderStatus
from fieldops.bulk_orders.normalizer import normalize
from fieldops.common.db import session_scope
from fieldops.common.json_logger import JsonLogger, log_event
from fieldops.common.models import WorkOrder
from fieldops.common.query_cache import QueryCache

IMPORT_BATCH_SIZE = 50
MAX_ERROR_DETAILS = 20
WORK_ORDERS_CACHE_PREFIX = ("work_orders",)

OrderInput = Union[CanonicalWorkOrder, Mapping[str, Any]]


def _batched(items: Sequence[Dict[str, Any]], size: int) -> Iterable[List[Dict[str, Any]]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    raw = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def work_order_row(order: CanonicalWorkOrder, *, run_id: str | None = None) -> Dict[str, Any]:
    """Build the ``work_orders`` row for one canonical order; imports start in review."""

    location_name = order.location.name if order.location.name != "N/A" else None
    record = order.to_record()
    return {
        "order_no": order.order_no,
        "status": WorkOrderStatus.PENDING_REVIEW.value,
        "timestamp": datetime.now(timezone.utc),
        "service_date": order.service_date,
        "end_time": _parse_timestamp(order.end_time),
        "driver_name": order.driver.name if order.driver else None,
        "location_name": location_name,
        "optimoroute_status": order.optimoroute_status,
        "completion_status": order.completion_status,
        "has_images": order.has_images,
        "signature_url": order.signature_url,
        "tracking_url": order.tracking_url,
        "service_notes": order.service_notes or None,
        "tech_notes": order.tech_notes or None,
        "search_response": record["search_response"],
        "completion_response": record["completion_response"],
        "run_id": run_id,
    }


def _as_canonical(order: OrderInput) -> CanonicalWorkOrder:
    if isinstance(order, CanonicalWorkOrder):
        return order
    return normalize(order)


async def _existing_order_numbers(session: Any, order_numbers: Sequence[str]) -> set[str]:
    result = await session.execute(select(WorkOrder.order_no).where(WorkOrder.order_no.in_(order_numbers)))
    return set(result.scalars().all())


async def import_work_orders(
    orders: Sequence[OrderInput],
    *,
    database_url: str,
    batch_size: int = IMPORT_BATCH_SIZE,
    logger: JsonLogger,
    cache: QueryCache | None = None,
) -> ImportResult:
    """Insert new work orders, counting existing order numbers as duplicates.

    Each chunk is its own transaction. A failing chunk counts all of its
    pending rows as errors and the import moves on to the next chunk.
    """

    if not orders:
        log_event(
            logger=logger,
            phase="import",
            status="warn",
            message="no valid orders provided",
        )
        return ImportResult(success=False, total=0, error_details=["No valid orders provided"])

    result = ImportResult(total=len(orders))
    rows: List[Dict[str, Any]] = []
    for order in orders:
        canonical = _as_canonical(order)
        if canonical.order_no_generated:
            result.errors += 1
            result.error_details.append(f"{canonical.order_no}: missing order number")
            continue
        rows.append(work_order_row(canonical, run_id=logger.run_id))

    seen_in_run: set[str] = set()
    for chunk_index, chunk in enumerate(_batched(rows, max(batch_size, 1)), start=1):
        pending: List[Dict[str, Any]] = []
        chunk_duplicates = 0
        try:
            async with session_scope(database_url) as session:
                async with session.begin():
                    existing = await _existing_order_numbers(
                        session, [row["order_no"] for row in chunk]
                    )
                    for row in chunk:
                        order_no = row["order_no"]
                        if order_no in existing or order_no in seen_in_run:
                            chunk_duplicates += 1
                            continue
                        seen_in_run.add(order_no)
                        pending.append(row)
                    if pending:
                        await session.execute(insert(WorkOrder), pending)
        except SQLAlchemyError as exc:
            for row in pending:
                seen_in_run.discard(row["order_no"])
            failed = len(chunk) - chunk_duplicates
            result.errors += failed
            result.duplicates += chunk_duplicates
            if len(result.error_details) < MAX_ERROR_DETAILS:
                result.error_details.append(f"chunk {chunk_index}: {exc.__class__.__name__}: {exc}")
            log_event(
                logger=logger,
                phase="import",
                status="error",
                message="work order chunk failed",
                chunk=chunk_index,
                rows=len(chunk),
                failed=failed,
                error=str(exc),
            )
            continue

        result.imported += len(pending)
        result.duplicates += chunk_duplicates
        log_event(
            logger=logger,
            phase="import",
            message="work order chunk imported",
            chunk=chunk_index,
            rows=len(chunk),
            imported=len(pending),
            duplicates=chunk_duplicates,
        )

    result.success = result.errors == 0
    if cache is not None and result.imported:
        cache.invalidate(WORK_ORDERS_CACHE_PREFIX)

    log_event(
        logger=logger,
        phase="import",
        status="ok" if result.success else "warn",
        message="work order import finished",
        total=result.total,
        imported=result.imported,
        duplicates=result.duplicates,
        errors=result.errors,
    )
    return result
