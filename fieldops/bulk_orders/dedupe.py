from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from fieldops.bulk_orders.models import CanonicalWorkOrder
from fieldops.bulk_orders.normalizer import (
    ANY_SHAPE,
    ORDER_NO_RULES,
    Rule,
    classify_shape,
    extract,
)
from fieldops.common.json_logger import JsonLogger, log_event

OrderLike = Union[CanonicalWorkOrder, Mapping[str, Any]]
T = TypeVar("T", CanonicalWorkOrder, Mapping[str, Any])

DEDUPE_ORDER_NO_RULES = ORDER_NO_RULES + (Rule(ANY_SHAPE, ("extracted", "orderNo")),)


@dataclass
class DedupeStats:
    original_count: int = 0
    unique_count: int = 0
    removed_count: int = 0
    missing_order_no: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "original_count": self.original_count,
            "unique_count": self.unique_count,
            "removed_count": self.removed_count,
            "missing_order_no": self.missing_order_no,
        }


def order_number_of(order: OrderLike) -> Optional[str]:
    if isinstance(order, CanonicalWorkOrder):
        if order.order_no_generated:
            return None
        order_no = order.order_no
    elif order.get("order_no_generated") is True:
        return None
    else:
        value = extract(order, classify_shape(order), DEDUPE_ORDER_NO_RULES)
        order_no = str(value).strip() if value is not None else None
    if not order_no:
        return None
    return order_no


def deduplicate_orders(
    orders: Sequence[T],
    *,
    logger: JsonLogger | None = None,
) -> Tuple[List[T], DedupeStats]:
    """Keep the first order seen for each order number; drop orders without one."""

    seen: Dict[str, T] = {}
    missing = 0
    for order in orders:
        order_no = order_number_of(order)
        if order_no is None:
            missing += 1
            continue
        seen.setdefault(order_no, order)

    unique = list(seen.values())
    stats = DedupeStats(
        original_count=len(orders),
        unique_count=len(unique),
        removed_count=len(orders) - len(unique),
        missing_order_no=missing,
    )
    if logger is not None:
        log_event(logger=logger, phase="dedupe", message="orders deduplicated", **stats.as_dict())
    return unique, stats
