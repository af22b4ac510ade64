from __future__ import annotations

import io
import json
from datetime import date

import pytest

from fieldops.common.json_logger import JsonLogger, log_event, timed_event


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_events_carry_run_id_and_fields():
    stream = io.StringIO()
    logger = JsonLogger(run_id="run-1", stream=stream, log_file_path=None)

    log_event(logger=logger, phase="fetch", message="page received", orders=3, day=date(2024, 1, 1))

    (event,) = _events(stream)
    assert event["run_id"] == "run-1"
    assert event["phase"] == "fetch"
    assert event["status"] == "ok"
    assert event["orders"] == 3
    assert event["day"] == "2024-01-01"
    assert "ts" in event


def test_bound_logger_shares_outputs(tmp_path):
    stream = io.StringIO()
    log_file = tmp_path / "logs" / "run.jsonl"
    logger = JsonLogger(run_id="run-2", stream=stream, log_file_path=str(log_file))
    child = logger.bind(component="retry")

    log_event(logger=child, phase="retry", status="warn", message="Retry 1/3: timeout")
    child.close()
    log_event(logger=logger, phase="fetch", status="error", message="load failed")
    logger.close()
    logger.info(phase="fetch", message="after close")

    events = _events(stream)
    assert [e["status"] for e in events] == ["warn", "error"]
    assert events[0]["component"] == "retry"
    assert "component" not in events[1]
    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2


def test_timed_event_logs_duration_and_failure():
    stream = io.StringIO()
    logger = JsonLogger(run_id="run-3", stream=stream, log_file_path=None)

    with timed_event(logger=logger, phase="fetch", message="order fetch"):
        pass
    with pytest.raises(ValueError):
        with timed_event(logger=logger, phase="import", message="work order import"):
            raise ValueError("bad row")

    ok, failed = _events(stream)
    assert ok["status"] == "ok"
    assert isinstance(ok["duration_ms"], int)
    assert failed["status"] == "error"
    assert failed["message"] == "work order import failed: bad row"
    assert failed["exc_type"] == "ValueError"
