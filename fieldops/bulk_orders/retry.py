from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, TypeVar

from fieldops.common.json_logger import JsonLogger, log_event

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 2000

RetryCallback = Callable[[int, int, str], None]
Sleep = Callable[[float], Awaitable[None]]


class RetryExhaustedError(RuntimeError):
    """Raised once every attempt of a retried operation has failed."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.message = message
        self.attempts = attempts


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class RetryController:
    """Run an async operation with bounded exponential backoff.

    Attempt 0 runs immediately. After failure ``k`` (``1 <= k <= max_retries``)
    the controller reports ``"Retry k/N: <message>"`` through ``on_retry`` and
    waits ``retry_delay_ms * 2 ** (k - 1)`` milliseconds before trying again.
    The failure after the last retry raises :class:`RetryExhaustedError`.
    """

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        sleep: Sleep = asyncio.sleep,
        logger: JsonLogger | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0; got {max_retries}")
        if retry_delay_ms < 0:
            raise ValueError(f"retry_delay_ms must be >= 0; got {retry_delay_ms}")
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self._sleep = sleep
        self._logger = logger

    def delay_ms(self, retry_number: int) -> int:
        return self.retry_delay_ms * 2 ** (retry_number - 1)

    def backoff_schedule(self) -> List[int]:
        return [self.delay_ms(k) for k in range(1, self.max_retries + 1)]

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        total_attempts = self.max_retries + 1
        for attempt in range(1, total_attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                message = error_message(exc)
                if attempt == total_attempts:
                    if self._logger is not None:
                        log_event(
                            logger=self._logger,
                            phase="retry",
                            status="error",
                            message="retries exhausted",
                            attempts=attempt,
                            error=message,
                        )
                    raise RetryExhaustedError(message, attempts=attempt) from exc

                retry_number = attempt
                retry_message = f"Retry {retry_number}/{self.max_retries}: {message}"
                delay = self.delay_ms(retry_number)
                if self._logger is not None:
                    log_event(
                        logger=self._logger,
                        phase="retry",
                        status="warn",
                        message=retry_message,
                        retry=retry_number,
                        max_retries=self.max_retries,
                        delay_ms=delay,
                        exc_type=type(exc).__name__,
                    )
                if on_retry is not None:
                    on_retry(retry_number, self.max_retries, retry_message)
                await self._sleep(delay / 1000)

        raise AssertionError("unreachable")  # pragma: no cover
