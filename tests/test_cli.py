import io
import json
from datetime import date
from pathlib import Path

import pytest

from fieldops import cli
from fieldops.common.json_logger import JsonLogger
from fieldops.config import Config, ConfigError


def _config(tmp_path: Path) -> Config:
    return Config(
        run_env="test",
        pipeline_timezone="UTC",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cli.sqlite'}",
        alembic_config="alembic.ini",
        json_log_file="",
        optimoroute_base_url="https://api.optimoroute.test/v1",
        optimoroute_api_key="unused",
        fetch_max_retries=3,
        fetch_retry_delay_ms=2000,
        fetch_batch_delay_ms=300,
        fetch_valid_statuses=["success", "failed", "rejected"],
        import_batch_size=50,
    )


@pytest.fixture
def log_stream(monkeypatch):
    stream = io.StringIO()
    monkeypatch.setattr(
        cli,
        "get_logger",
        lambda run_id: JsonLogger(run_id=run_id, stream=stream, log_file_path=None),
    )
    return stream


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_fetch_passes_dates_and_statuses(monkeypatch, tmp_path, log_stream):
    observed: dict[str, object] = {}
    runtime_config = _config(tmp_path)

    async def fake_run_bulk_import(start, end, valid_statuses=None, *, config, logger):
        observed.update(start=start, end=end, statuses=valid_statuses, config=config, run_id=logger.run_id)
        return {"success": True}

    monkeypatch.setattr(cli, "_load_config", lambda: runtime_config)
    monkeypatch.setattr(cli, "run_bulk_import", fake_run_bulk_import)

    result = cli.main(
        ["fetch", "--from", "2024-01-01", "--to", "2024-01-07", "--status", "success", "--run-id", "run-cli"]
    )

    assert result == cli.EXIT_OK
    assert observed == {
        "start": date(2024, 1, 1),
        "end": date(2024, 1, 7),
        "statuses": ["success"],
        "config": runtime_config,
        "run_id": "run-cli",
    }


def test_fetch_without_status_uses_configured_default(monkeypatch, tmp_path, log_stream):
    observed: dict[str, object] = {}

    async def fake_run_bulk_import(start, end, valid_statuses=None, *, config, logger):
        observed["statuses"] = valid_statuses
        return {"success": False}

    monkeypatch.setattr(cli, "_load_config", lambda: _config(tmp_path))
    monkeypatch.setattr(cli, "run_bulk_import", fake_run_bulk_import)

    result = cli.main(["fetch", "--from", "2024-01-01", "--to", "2024-01-01"])

    assert result == cli.EXIT_FAILED
    assert observed["statuses"] is None


def test_fetch_rejects_inverted_range(monkeypatch, log_stream):
    def fail_load():
        raise AssertionError("config should not be loaded")

    monkeypatch.setattr(cli, "_load_config", fail_load)

    result = cli.main(["fetch", "--from", "2024-01-05", "--to", "2024-01-01"])

    assert result == cli.EXIT_PREREQ
    assert _events(log_stream)[0]["phase"] == "prereq"


def test_config_error_is_prereq_failure(monkeypatch, log_stream):
    def broken_load():
        raise ConfigError("Missing required environment variable: SECRET_KEY")

    monkeypatch.setattr(cli, "_load_config", broken_load)

    result = cli.main(["auto-import"])

    assert result == cli.EXIT_PREREQ
    event = _events(log_stream)[0]
    assert event["phase"] == "config"
    assert event["status"] == "error"


def test_unexpected_error_maps_to_failure(monkeypatch, tmp_path, log_stream):
    async def exploding(start, end, valid_statuses=None, *, config, logger):
        raise RuntimeError("browser crashed")

    monkeypatch.setattr(cli, "_load_config", lambda: _config(tmp_path))
    monkeypatch.setattr(cli, "run_bulk_import", exploding)

    result = cli.main(["fetch", "--from", "2024-01-01", "--to", "2024-01-01"])

    assert result == cli.EXIT_FAILED
    event = _events(log_stream)[-1]
    assert event["message"] == "bulk import failed with unexpected error"
    assert event["exc_type"] == "RuntimeError"


def test_auto_import_passes_today_override(monkeypatch, tmp_path, log_stream):
    observed: dict[str, object] = {}

    async def fake_run_auto_import(*, config, logger, today):
        observed["today"] = today
        return {"success": True}

    monkeypatch.setattr(cli, "_load_config", lambda: _config(tmp_path))
    monkeypatch.setattr(cli, "run_auto_import", fake_run_auto_import)

    result = cli.main(["auto-import", "--today", "2024-01-04"])

    assert result == cli.EXIT_OK
    assert observed["today"] == date(2024, 1, 4)


def test_run_migrations_flag_upgrades_before_fetch(monkeypatch, tmp_path, log_stream):
    calls: list[str] = []

    def fake_upgrade(revision, *, database_url, alembic_config_path):
        calls.append(f"upgrade:{revision}:{alembic_config_path}")

    async def fake_run_bulk_import(start, end, valid_statuses=None, *, config, logger):
        calls.append("fetch")
        return {"success": True}

    monkeypatch.setattr(cli, "_load_config", lambda: _config(tmp_path))
    monkeypatch.setattr(cli, "run_alembic_upgrade", fake_upgrade)
    monkeypatch.setattr(cli, "run_bulk_import", fake_run_bulk_import)

    result = cli.main(["fetch", "--from", "2024-01-01", "--to", "2024-01-01", "--run-migrations"])

    assert result == cli.EXIT_OK
    assert calls == ["upgrade:head:alembic.ini", "fetch"]


def test_db_upgrade_uses_configured_paths(monkeypatch, tmp_path):
    observed: dict[str, object] = {}
    runtime_config = _config(tmp_path)

    def fake_upgrade(revision, *, database_url, alembic_config_path):
        observed.update(revision=revision, database_url=database_url, path=alembic_config_path)

    monkeypatch.setattr(cli, "_load_config", lambda: runtime_config)
    monkeypatch.setattr(cli, "run_alembic_upgrade", fake_upgrade)

    assert cli.main(["db", "upgrade", "--revision", "0001_init"]) == cli.EXIT_OK
    assert observed == {
        "revision": "0001_init",
        "database_url": runtime_config.database_url,
        "path": "alembic.ini",
    }


def test_main_rejects_bad_arguments():
    with pytest.raises(SystemExit):
        cli.main(["fetch", "--from", "01/02/2024", "--to", "2024-01-02"])

    with pytest.raises(SystemExit):
        cli.main(["fetch", "--to", "2024-01-02"])

    with pytest.raises(SystemExit):
        cli.main([])
