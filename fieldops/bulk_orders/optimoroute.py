"""OptimoRoute search and completion-details access.

``OptimoRouteClient`` is a thin wrapper over a Playwright ``APIRequestContext``.
``OrderSearchService`` turns one :class:`BatchRequest` into the page payload the
loader consumes: it runs one ``search_orders`` page, merges completion details
into each order, filters by completion status and hands back ``after_tag`` as
the continuation token. OptimoRoute pages by ``after_tag`` alone, so
``BatchRequest.batch_size`` is not forwarded.
"""
from __future__ import annotations

from collections import Counter
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from playwright.async_api import APIRequestContext

from fieldops.bulk_orders.models import BatchRequest
from fieldops.common.json_logger import JsonLogger, log_event

SEARCH_ENDPOINT = "/search_orders"
COMPLETION_ENDPOINT = "/get_completion_details"
COMPLETION_CHUNK_SIZE = 500
REQUEST_TIMEOUT_MS = 90_000
ERROR_BODY_PREVIEW = 200


class OptimoRouteApiError(RuntimeError):
    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class OptimoRouteClient:
    def __init__(
        self,
        *,
        request_context: APIRequestContext,
        base_url: str,
        api_key: str,
        logger: JsonLogger,
        timeout_ms: int = REQUEST_TIMEOUT_MS,
    ) -> None:
        self._request = request_context
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._logger = logger
        self._timeout_ms = timeout_ms

    async def _post(self, endpoint: str, body: Mapping[str, Any]) -> Mapping[str, Any]:
        url = f"{self._base_url}{endpoint}"
        response = await self._request.post(
            url,
            params={"key": self._api_key},
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            data=dict(body),
            timeout=self._timeout_ms,
        )
        status = response.status
        if not response.ok:
            body_text = await response.text()
            log_event(
                logger=self._logger,
                phase="fetch",
                status="warn",
                message="OptimoRoute request failed",
                endpoint=endpoint,
                status_code=status,
            )
            raise OptimoRouteApiError(
                f"OptimoRoute {endpoint.lstrip('/')} API Error ({status}): {body_text[:ERROR_BODY_PREVIEW]}",
                status=status,
            )
        try:
            payload = await response.json()
        except ValueError as exc:
            raise OptimoRouteApiError(
                f"OptimoRoute {endpoint.lstrip('/')} returned invalid JSON: {exc}",
                status=status,
            ) from exc
        if not isinstance(payload, Mapping):
            raise OptimoRouteApiError(
                f"OptimoRoute {endpoint.lstrip('/')} returned {type(payload).__name__}, expected an object",
                status=status,
            )
        if payload.get("success") is False:
            detail = payload.get("message") or payload.get("code") or "request unsuccessful"
            raise OptimoRouteApiError(
                f"OptimoRoute {endpoint.lstrip('/')} API Error: {detail}",
                status=status,
            )
        return payload

    async def search_orders(
        self,
        start_date: date,
        end_date: date,
        *,
        after_tag: Optional[str] = None,
    ) -> Mapping[str, Any]:
        body: Dict[str, Any] = {
            "dateRange": {"from": start_date.isoformat(), "to": end_date.isoformat()},
            "includeOrderData": True,
            "includeScheduleInformation": True,
        }
        if after_tag:
            body["after_tag"] = after_tag
        payload = await self._post(SEARCH_ENDPOINT, body)
        orders = payload.get("orders")
        log_event(
            logger=self._logger,
            phase="fetch",
            message="search_orders page received",
            orders=len(orders) if isinstance(orders, list) else 0,
            has_after_tag=bool(payload.get("after_tag")),
        )
        return payload

    async def get_completion_details(self, order_numbers: Sequence[str]) -> Dict[str, Any]:
        """Fetch completion details, splitting the lookup into chunks of 500 order numbers."""

        combined: List[Mapping[str, Any]] = []
        for chunk in _chunks(list(order_numbers), COMPLETION_CHUNK_SIZE):
            payload = await self._post(
                COMPLETION_ENDPOINT,
                {"orders": [{"orderNo": order_no} for order_no in chunk]},
            )
            entries = payload.get("orders")
            if isinstance(entries, list):
                combined.extend(entry for entry in entries if isinstance(entry, Mapping))
        log_event(
            logger=self._logger,
            phase="fetch",
            message="completion details received",
            requested=len(order_numbers),
            received=len(combined),
        )
        return {"success": True, "orders": combined}


def _search_order_no(order: Mapping[str, Any]) -> Optional[str]:
    data = order.get("data")
    if isinstance(data, Mapping):
        value = data.get("orderNo")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _completion_map(completion: Mapping[str, Any]) -> Dict[str, Mapping[str, Any]]:
    mapped: Dict[str, Mapping[str, Any]] = {}
    for entry in completion.get("orders") or []:
        order_no = entry.get("orderNo") if isinstance(entry, Mapping) else None
        if isinstance(order_no, str) and order_no:
            mapped[order_no] = entry
    return mapped


def merge_completion(
    orders: Iterable[Mapping[str, Any]],
    completion_map: Mapping[str, Mapping[str, Any]],
) -> List[Dict[str, Any]]:
    merged: List[Dict[str, Any]] = []
    for order in orders:
        order_no = _search_order_no(order)
        details = completion_map.get(order_no) if order_no else None
        status = None
        if details is not None:
            data = details.get("data")
            if isinstance(data, Mapping):
                status = data.get("status") or None
        merged.append(
            {
                **order,
                "completionDetails": details,
                "completion_response": {"success": True, "orders": [details]} if details else None,
                "completion_status": status,
            }
        )
    return merged


class OrderSearchService:
    """Callable search collaborator for :class:`BatchFetcher`."""

    def __init__(self, *, client: OptimoRouteClient, logger: JsonLogger) -> None:
        self._client = client
        self._logger = logger

    async def __call__(self, request: BatchRequest) -> Dict[str, Any]:
        return await self.search(request)

    async def search(self, request: BatchRequest) -> Dict[str, Any]:
        search_payload = await self._client.search_orders(
            request.start_date,
            request.end_date,
            after_tag=request.continuation_token,
        )
        raw_orders = search_payload.get("orders")
        orders = [order for order in raw_orders if isinstance(order, Mapping)] if isinstance(raw_orders, list) else []
        order_numbers = [order_no for order_no in map(_search_order_no, orders) if order_no]

        completion_map: Dict[str, Mapping[str, Any]] = {}
        completion_error: Optional[str] = None
        if order_numbers:
            try:
                completion = await self._client.get_completion_details(order_numbers)
            except OptimoRouteApiError as exc:
                completion_error = str(exc)
                log_event(
                    logger=self._logger,
                    phase="fetch",
                    status="warn",
                    message="completion details unavailable; returning orders without completion data",
                    error=completion_error,
                    status_code=exc.status,
                    orders=len(orders),
                )
            else:
                completion_map = _completion_map(completion)

        merged = merge_completion(orders, completion_map)
        if completion_error is None:
            valid = set(request.valid_statuses)
            filtered = [order for order in merged if order.get("completion_status") in valid]
        else:
            filtered = merged

        status_counts = Counter(str(order.get("completion_status")) for order in merged)
        after_tag = search_payload.get("after_tag") or None
        log_event(
            logger=self._logger,
            phase="fetch",
            message="search page filtered",
            unfiltered=len(merged),
            filtered=len(filtered),
            with_completion=len(completion_map),
            has_more=bool(after_tag),
        )
        return {
            "orders": filtered,
            "continuationToken": after_tag,
            "isComplete": after_tag is None,
            "filteringMetadata": {
                "unfilteredOrderCount": len(merged),
                "filteredOrderCount": len(filtered),
                "completionDetailsCount": len(completion_map),
                "statusCounts": dict(status_counts),
                "validStatuses": list(request.valid_statuses),
                "completionError": completion_error,
            },
        }
