from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional

from fieldops.bulk_orders.models import BatchRequest, BatchResponse
from fieldops.bulk_orders.retry import RetryCallback, RetryController

SearchFn = Callable[[BatchRequest], Awaitable[Mapping[str, Any]]]


class BatchFetcher:
    """Fetch one page of orders through the retry controller.

    Holds no paging state: the continuation token travels in the request and
    comes back in the response.
    """

    def __init__(self, *, search: SearchFn, retry: RetryController | None = None) -> None:
        self._search = search
        self._retry = retry or RetryController()

    @property
    def retry(self) -> RetryController:
        return self._retry

    async def fetch_batch(
        self,
        request: BatchRequest,
        on_retry: Optional[RetryCallback] = None,
    ) -> BatchResponse:
        request.validate()

        async def _call() -> Mapping[str, Any]:
            return await self._search(request)

        payload = await self._retry.run(_call, on_retry=on_retry)
        return BatchResponse.from_payload(payload)
