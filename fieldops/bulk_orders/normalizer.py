"""Map raw routing-API order payloads onto ``CanonicalWorkOrder``.

Upstream orders arrive in three shapes: a search result merged with its
completion details, a bare search result, or the flat legacy bulk payload.
Each canonical field is read through an ordered tuple of :class:`Rule` entries;
the first rule that applies to the payload's shape and yields a non-empty value
of an accepted type wins. Lookups never raise: missing or malformed paths
simply fall through to the next rule and finally to the field default.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from fieldops.bulk_orders.models import (
    CanonicalWorkOrder,
    OrderDriver,
    OrderLocation,
    WorkOrderStatus,
)
from fieldops.common.json_logger import JsonLogger, log_event

__all__ = [
    "OrderShape",
    "Rule",
    "classify_shape",
    "extract",
    "normalize",
    "normalize_many",
]


class OrderShape(str, Enum):
    WITH_COMPLETION = "with_completion"
    SEARCH_ONLY = "search_only"
    LEGACY_BULK = "legacy_bulk"


ANY_SHAPE = frozenset(OrderShape)
COMPLETION = frozenset({OrderShape.WITH_COMPLETION})

TEXT = (str, int, float)
MAPPING = (Mapping,)


class Rule(NamedTuple):
    shapes: frozenset
    path: Tuple[Any, ...]
    types: Tuple[type, ...] = TEXT


def classify_shape(raw: Any) -> OrderShape:
    if not isinstance(raw, Mapping):
        return OrderShape.LEGACY_BULK
    if raw.get("completionDetails") or raw.get("completion_response"):
        return OrderShape.WITH_COMPLETION
    if raw.get("data") or raw.get("searchResponse"):
        return OrderShape.SEARCH_ONLY
    return OrderShape.LEGACY_BULK


def _dig(raw: Any, path: Sequence[Any]) -> Any:
    current = raw
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, (list, tuple)) or not -len(current) <= step < len(current):
                return None
            current = current[step]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(step)
        if current is None:
            return None
    return current


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (Mapping, list, tuple)):
        return len(value) == 0
    return False


def extract(raw: Any, shape: OrderShape, rules: Iterable[Rule]) -> Any:
    for rule in rules:
        if shape not in rule.shapes:
            continue
        value = _dig(raw, rule.path)
        if isinstance(value, bool) and bool not in rule.types:
            continue
        if not isinstance(value, rule.types) or _is_empty(value):
            continue
        return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _completion_paths(*tail: Any) -> Tuple[Rule, ...]:
    return (
        Rule(COMPLETION, ("completionDetails", "data", *tail)),
        Rule(COMPLETION, ("completion_response", "orders", 0, "data", *tail)),
        Rule(COMPLETION, ("completion_response", "data", *tail)),
    )


def _with_types(rules: Iterable[Rule], types: Tuple[type, ...]) -> Tuple[Rule, ...]:
    return tuple(rule._replace(types=types) for rule in rules)


ORDER_NO_RULES = (
    Rule(ANY_SHAPE, ("data", "orderNo")),
    Rule(ANY_SHAPE, ("orderNo",)),
    Rule(COMPLETION, ("completionDetails", "orderNo")),
    Rule(ANY_SHAPE, ("searchResponse", "data", "orderNo")),
    Rule(ANY_SHAPE, ("order_no",)),
)

ID_RULES = (
    Rule(ANY_SHAPE, ("id",)),
    Rule(ANY_SHAPE, ("orderId",)),
    Rule(ANY_SHAPE, ("data", "id")),
)

COMPLETION_STATUS_RULES = _completion_paths("status") + (
    Rule(ANY_SHAPE, ("completion_status",)),
)

OPTIMOROUTE_STATUS_RULES = COMPLETION_STATUS_RULES + (
    Rule(ANY_SHAPE, ("optimoroute_status",)),
)

SERVICE_DATE_RULES = (
    Rule(ANY_SHAPE, ("data", "date")),
    Rule(ANY_SHAPE, ("searchResponse", "data", "date")),
    Rule(ANY_SHAPE, ("data", "scheduled_date")),
    Rule(ANY_SHAPE, ("scheduleInformation", "date")),
    Rule(ANY_SHAPE, ("searchResponse", "scheduleInformation", "date")),
    Rule(ANY_SHAPE, ("service_date",)),
    Rule(ANY_SHAPE, ("date",)),
)

END_TIME_RULES = _completion_paths("endTime", "localTime") + (
    Rule(ANY_SHAPE, ("end_time",)),
)

SERVICE_NOTES_RULES = (
    Rule(ANY_SHAPE, ("data", "notes")),
    Rule(ANY_SHAPE, ("searchResponse", "data", "notes")),
    Rule(ANY_SHAPE, ("data", "serviceNotes")),
    Rule(ANY_SHAPE, ("service_notes",)),
)

TECH_NOTES_RULES = (
    _completion_paths("form", "note") + _completion_paths("note") + (Rule(ANY_SHAPE, ("tech_notes",)),)
)

SIGNATURE_RULES = _completion_paths("form", "signature", "url") + (
    Rule(ANY_SHAPE, ("signature_url",)),
)

TRACKING_RULES = _completion_paths("tracking_url") + (
    Rule(ANY_SHAPE, ("tracking_url",)),
)

FORM_RULES = _with_types(_completion_paths("form"), MAPPING) + (
    Rule(ANY_SHAPE, ("form",), MAPPING),
)

LOCATION_OBJECT_RULES = (
    Rule(ANY_SHAPE, ("data", "location"), MAPPING),
    Rule(ANY_SHAPE, ("searchResponse", "data", "location"), MAPPING),
    Rule(ANY_SHAPE, ("location",), MAPPING),
    Rule(ANY_SHAPE, ("data", "customer", "location"), MAPPING),
)

LOCATION_NAME_RULES = (
    Rule(ANY_SHAPE, ("data", "location", "name")),
    Rule(ANY_SHAPE, ("data", "location", "locationName")),
    Rule(ANY_SHAPE, ("data", "location"), (str,)),
    Rule(ANY_SHAPE, ("searchResponse", "data", "location", "name")),
    Rule(ANY_SHAPE, ("searchResponse", "data", "location", "locationName")),
    Rule(ANY_SHAPE, ("data", "locationName")),
    Rule(ANY_SHAPE, ("data", "location_name")),
    Rule(ANY_SHAPE, ("location", "name")),
    Rule(ANY_SHAPE, ("location", "locationName")),
    Rule(ANY_SHAPE, ("location",), (str,)),
    Rule(ANY_SHAPE, ("location_name",)),
    Rule(ANY_SHAPE, ("data", "customer", "name")),
)

DRIVER_NAME_RULES = (
    Rule(ANY_SHAPE, ("scheduleInformation", "driverName")),
    Rule(ANY_SHAPE, ("searchResponse", "scheduleInformation", "driverName")),
    Rule(ANY_SHAPE, ("data", "driver", "name")),
    Rule(ANY_SHAPE, ("data", "driver", "driverName")),
    Rule(ANY_SHAPE, ("data", "driverName")),
    Rule(ANY_SHAPE, ("driver", "name")),
    Rule(ANY_SHAPE, ("driver_name",)),
)

DRIVER_ID_RULES = (
    Rule(ANY_SHAPE, ("scheduleInformation", "driverId")),
    Rule(ANY_SHAPE, ("scheduleInformation", "driverSerial")),
    Rule(ANY_SHAPE, ("searchResponse", "scheduleInformation", "driverId")),
    Rule(ANY_SHAPE, ("searchResponse", "scheduleInformation", "driverSerial")),
    Rule(ANY_SHAPE, ("data", "driver", "id")),
    Rule(ANY_SHAPE, ("data", "driver", "driverId")),
    Rule(ANY_SHAPE, ("data", "driverId")),
    Rule(ANY_SHAPE, ("driver", "id")),
)

_STATUS_MAP = {
    "success": WorkOrderStatus.COMPLETED,
    "failed": WorkOrderStatus.REJECTED,
}


def derive_status(completion_status: Optional[str]) -> WorkOrderStatus:
    if not completion_status:
        return WorkOrderStatus.IMPORTED
    return _STATUS_MAP.get(completion_status, WorkOrderStatus.IMPORTED)


def _images_present(form: Any) -> bool:
    if not isinstance(form, Mapping):
        return False
    images = form.get("images")
    if isinstance(images, (list, tuple)) and images:
        return True
    for key in ("barcode", "barcode_collections"):
        entries = form.get(key)
        if not isinstance(entries, (list, tuple)):
            continue
        for entry in entries:
            scan_images = _dig(entry, ("scanInfo", "images"))
            if isinstance(scan_images, (list, tuple)) and scan_images:
                return True
    return False


def _iso_utc(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_iso(value: str) -> Optional[datetime]:
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def _end_time(raw: Mapping[str, Any], shape: OrderShape, service_date: Optional[str]) -> Optional[str]:
    for rule in END_TIME_RULES:
        value = extract(raw, shape, (rule,))
        if isinstance(value, str):
            parsed = _parse_iso(value)
            if parsed is not None:
                return _iso_utc(parsed)
    if service_date:
        parsed = _parse_iso(f"{service_date[:10]}T23:59:59+00:00")
        if parsed is not None:
            return _iso_utc(parsed)
    return None


def _location(raw: Mapping[str, Any], shape: OrderShape) -> OrderLocation:
    location_obj = extract(raw, shape, LOCATION_OBJECT_RULES) or {}

    def _part(key: str) -> Optional[str]:
        own = _text(location_obj.get(key))
        if own is not None:
            return own
        return _text(
            extract(raw, shape, (Rule(ANY_SHAPE, ("data", key)), Rule(ANY_SHAPE, (key,))))
        )

    return OrderLocation(
        name=_text(extract(raw, shape, LOCATION_NAME_RULES)) or "N/A",
        address=_part("address"),
        city=_part("city"),
        state=_part("state"),
        zip=_part("zip"),
    )


def _driver(raw: Mapping[str, Any], shape: OrderShape) -> Optional[OrderDriver]:
    name = _text(extract(raw, shape, DRIVER_NAME_RULES))
    driver_id = _text(extract(raw, shape, DRIVER_ID_RULES))
    if name is None and driver_id is None:
        return None
    return OrderDriver(id=driver_id, name=name)


def _search_response(raw: Mapping[str, Any], shape: OrderShape) -> Optional[Any]:
    if raw.get("searchResponse"):
        return raw["searchResponse"]
    if shape is OrderShape.LEGACY_BULK:
        return raw.get("search_response")
    return {
        key: value
        for key, value in raw.items()
        if key not in {"completionDetails", "completion_response", "completion_status"}
    }


def _placeholder(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def normalize(raw: Any, *, logger: JsonLogger | None = None) -> CanonicalWorkOrder:
    """Return the canonical work order for one raw upstream order. Never raises."""

    if not isinstance(raw, Mapping):
        if logger is not None:
            log_event(
                logger=logger,
                phase="normalize",
                status="warn",
                message="raw order is not an object; using defaults",
                raw_type=type(raw).__name__,
            )
        raw = {}

    shape = classify_shape(raw)
    order_no = _text(extract(raw, shape, ORDER_NO_RULES))
    generated = order_no is None or raw.get("order_no_generated") is True
    if order_no is None:
        order_no = _placeholder("TEMP")
        if logger is not None:
            log_event(
                logger=logger,
                phase="normalize",
                status="warn",
                message="order number missing; generated placeholder",
                order_no=order_no,
                shape=shape.value,
            )

    completion_status = _text(extract(raw, shape, COMPLETION_STATUS_RULES))
    service_date = _text(extract(raw, shape, SERVICE_DATE_RULES))
    completion_response = raw.get("completionDetails") or raw.get("completion_response") or None

    return CanonicalWorkOrder(
        id=_text(extract(raw, shape, ID_RULES)) or _placeholder("temp"),
        order_no=order_no,
        order_no_generated=generated,
        status=derive_status(completion_status),
        timestamp=_iso_utc(datetime.now(timezone.utc)),
        service_date=service_date,
        end_time=_end_time(raw, shape, service_date),
        service_notes=_text(extract(raw, shape, SERVICE_NOTES_RULES)) or "",
        tech_notes=_text(extract(raw, shape, TECH_NOTES_RULES)) or "",
        notes=_text(raw.get("notes")) or "",
        qc_notes=_text(raw.get("qc_notes")) or "",
        resolution_notes=_text(raw.get("resolution_notes")) or "",
        location=_location(raw, shape),
        driver=_driver(raw, shape),
        has_images=_images_present(extract(raw, shape, FORM_RULES)),
        signature_url=_text(extract(raw, shape, SIGNATURE_RULES)),
        tracking_url=_text(extract(raw, shape, TRACKING_RULES)),
        completion_status=completion_status,
        optimoroute_status=_text(extract(raw, shape, OPTIMOROUTE_STATUS_RULES)),
        search_response=_search_response(raw, shape),
        completion_response=completion_response,
    )


def normalize_many(raws: Iterable[Any], *, logger: JsonLogger | None = None) -> List[CanonicalWorkOrder]:
    orders = [normalize(raw, logger=logger) for raw in raws]
    if logger is not None:
        log_event(
            logger=logger,
            phase="normalize",
            message="normalized batch",
            orders=len(orders),
            placeholders=sum(1 for order in orders if order.order_no_generated),
        )
    return orders
