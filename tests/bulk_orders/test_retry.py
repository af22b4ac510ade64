from __future__ import annotations

import io
import json

import pytest

from fieldops.bulk_orders.retry import RetryController, RetryExhaustedError
from fieldops.common.json_logger import JsonLogger


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class _FlakyOperation:
    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom {self.calls}")
        return self.result


@pytest.mark.asyncio
async def test_backoff_schedule_then_success_on_fourth_attempt():
    sleep = _RecordingSleep()
    controller = RetryController(max_retries=3, retry_delay_ms=2000, sleep=sleep)
    operation = _FlakyOperation(failures=3)
    retries: list[tuple[int, int, str]] = []

    result = await controller.run(operation, on_retry=lambda k, n, msg: retries.append((k, n, msg)))

    assert result == "ok"
    assert operation.calls == 4
    assert sleep.delays == [2.0, 4.0, 8.0]
    assert retries == [
        (1, 3, "Retry 1/3: boom 1"),
        (2, 3, "Retry 2/3: boom 2"),
        (3, 3, "Retry 3/3: boom 3"),
    ]


@pytest.mark.asyncio
async def test_unconditional_failure_exhausts_after_four_attempts():
    sleep = _RecordingSleep()
    controller = RetryController(max_retries=3, retry_delay_ms=2000, sleep=sleep)
    operation = _FlakyOperation(failures=100)

    with pytest.raises(RetryExhaustedError) as excinfo:
        await controller.run(operation)

    assert operation.calls == 4
    assert len(sleep.delays) == 3
    assert excinfo.value.attempts == 4
    assert excinfo.value.message == "boom 4"
    assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_first_attempt_success_never_sleeps():
    sleep = _RecordingSleep()
    controller = RetryController(sleep=sleep)
    operation = _FlakyOperation(failures=0, result="first")

    assert await controller.run(operation) == "first"
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_zero_retries_fails_immediately():
    sleep = _RecordingSleep()
    controller = RetryController(max_retries=0, sleep=sleep)

    with pytest.raises(RetryExhaustedError) as excinfo:
        await controller.run(_FlakyOperation(failures=1))

    assert excinfo.value.attempts == 1
    assert sleep.delays == []


def test_backoff_schedule_reports_delays():
    assert RetryController(max_retries=3, retry_delay_ms=2000).backoff_schedule() == [2000, 4000, 8000]
    assert RetryController(max_retries=2, retry_delay_ms=100).backoff_schedule() == [100, 200]


def test_rejects_negative_settings():
    with pytest.raises(ValueError):
        RetryController(max_retries=-1)
    with pytest.raises(ValueError):
        RetryController(retry_delay_ms=-5)


@pytest.mark.asyncio
async def test_retry_events_are_logged():
    stream = io.StringIO()
    logger = JsonLogger(run_id="test", stream=stream, log_file_path=None)
    controller = RetryController(max_retries=1, retry_delay_ms=10, sleep=_RecordingSleep(), logger=logger)

    with pytest.raises(RetryExhaustedError):
        await controller.run(_FlakyOperation(failures=5))

    events = [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]
    assert [e["status"] for e in events] == ["warn", "error"]
    assert events[0]["message"] == "Retry 1/1: boom 1"
    assert events[0]["delay_ms"] == 10
    assert events[1]["attempts"] == 2
