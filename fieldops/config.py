"""
CONFIG.PY — SINGLE SOURCE OF TRUTH

This module is the ONLY place allowed to:
- Read environment variables
- Query the system_config table
- Decrypt DB-stored encrypted values

All required variables must exist; there are no defaults. A missing or invalid
value (env or DB) raises ConfigError before any fetch or import starts.

Config is loaded once, on first access of ``fieldops.config.config``, and cached
in a single in-memory Config object.

OPTIMOROUTE_API_KEY is stored encrypted in system_config and is decrypted here
using SECRET_KEY from the environment.

To use a config value, import:

    from fieldops.config import config
"""

from __future__ import annotations

import asyncio
import binascii
import logging
import os
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, TypeVar
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from fieldops.crypto import decrypt_secret

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# OS env overrides values from .env
load_dotenv(PROJECT_ROOT / ".env")

logger = logging.getLogger(__name__)

ENV_ONLY_KEYS = [
    "SECRET_KEY",
    "RUN_ENV",
    "PIPELINE_TIMEZONE",
    "DATABASE_URL",
    "ALEMBIC_CONFIG",
    "JSON_LOG_FILE",
]

PLAINTEXT_DB_KEYS = [
    "OPTIMOROUTE_BASE_URL",
    "FETCH_MAX_RETRIES",
    "FETCH_RETRY_DELAY_MS",
    "FETCH_BATCH_DELAY_MS",
    "FETCH_VALID_STATUSES",
    "IMPORT_BATCH_SIZE",
]

ENCRYPTED_DB_KEYS = [
    "OPTIMOROUTE_API_KEY",
]

REQUIRED_DB_KEYS = PLAINTEXT_DB_KEYS + ENCRYPTED_DB_KEYS


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


def _fail(message: str) -> ConfigError:
    logger.error(message)
    return ConfigError(message)


def _require_env(key: str) -> str:
    value = os.getenv(key)
    if value is None:
        raise _fail(f"Missing required environment variable: {key}")
    stripped = value.strip()
    if not stripped:
        raise _fail(f"Environment variable {key} cannot be blank")
    return stripped


def _load_env_values() -> Dict[str, str]:
    return {key: _require_env(key) for key in ENV_ONLY_KEYS}


def _parse_int(value: str, *, key: str, minimum: int | None = None) -> int:
    try:
        parsed = int(value.strip())
    except (AttributeError, TypeError, ValueError):
        raise _fail(f"Config key {key} must be an integer; got {value!r}")
    if minimum is not None and parsed < minimum:
        raise _fail(f"Config key {key} must be >= {minimum}; got {parsed}")
    return parsed


def _parse_list(value: str) -> list[str]:
    if not value:
        return []
    tokens = re.split(r"[,\n]", value)
    return [token.strip() for token in tokens if token and token.strip()]


def _clean_url(value: str, *, key: str) -> str:
    stripped = value.strip().rstrip("/")
    if not stripped:
        raise _fail(f"Config key {key} cannot be blank")
    return stripped


def _clean_text(value: str, *, key: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise _fail(f"Config key {key} cannot be blank")
    return stripped


T = TypeVar("T")


def _run_async_blocking(task_factory: Callable[[], Awaitable[T]]) -> T:
    result: dict[str, Any] = {}

    def _runner() -> None:
        try:
            result["value"] = asyncio.run(task_factory())
        except BaseException as exc:  # pragma: no cover - re-raised in caller
            result["error"] = exc

    thread = threading.Thread(target=_runner, name="config-db-loader", daemon=True)
    thread.start()
    thread.join()

    if "error" in result:
        raise result["error"]
    return result["value"]


async def _fetch_system_config_async(database_url: str) -> Dict[str, str]:
    engine: AsyncEngine | None = None
    try:
        engine = create_async_engine(database_url)
        async with engine.connect() as connection:
            rows = await connection.execute(
                text("SELECT key, value FROM system_config WHERE is_active = TRUE")
            )
            return {row.key: row.value for row in rows}
    except SQLAlchemyError as exc:
        message = "Unable to load configuration from system_config"
        logger.exception(message)
        raise ConfigError(message) from exc
    finally:
        if engine is not None:
            await engine.dispose()


def _load_system_config(database_url: str) -> Dict[str, str]:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_fetch_system_config_async(database_url))
    else:
        return _run_async_blocking(lambda: _fetch_system_config_async(database_url))


def _decrypt_db_values(secret_key: str, db_values: Mapping[str, str]) -> Dict[str, str]:
    decrypted: Dict[str, str] = {}
    for key in ENCRYPTED_DB_KEYS:
        ciphertext = db_values.get(key)
        if ciphertext is None:
            raise _fail(f"Missing encrypted system_config key: {key}")
        try:
            decrypted[key] = decrypt_secret(secret_key, ciphertext)
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            message = f"Failed to decrypt system_config key: {key}"
            logger.exception(message)
            raise ConfigError(message) from exc
    return decrypted


@dataclass(slots=True, frozen=True)
class Config:
    run_env: str
    pipeline_timezone: str
    database_url: str
    alembic_config: str
    json_log_file: str

    optimoroute_base_url: str
    optimoroute_api_key: str
    fetch_max_retries: int
    fetch_retry_delay_ms: int
    fetch_batch_delay_ms: int
    fetch_valid_statuses: list[str]
    import_batch_size: int

    def today(self) -> date:
        """Current date in the pipeline timezone."""

        return datetime.now(ZoneInfo(self.pipeline_timezone)).date()

    @classmethod
    def load_from_env_and_db(cls) -> Config:
        env_values = _load_env_values()
        secret_key = env_values["SECRET_KEY"]
        database_url = env_values["DATABASE_URL"]
        db_values = _load_system_config(database_url)

        missing = [key for key in REQUIRED_DB_KEYS if key not in db_values]
        if missing:
            raise _fail(f"Missing required system_config keys: {', '.join(sorted(missing))}")

        decrypted_values = _decrypt_db_values(secret_key, db_values)

        valid_statuses = _parse_list(db_values["FETCH_VALID_STATUSES"])
        if not valid_statuses:
            raise _fail("Config key FETCH_VALID_STATUSES must list at least one status")

        return cls(
            run_env=env_values["RUN_ENV"],
            pipeline_timezone=env_values["PIPELINE_TIMEZONE"],
            database_url=database_url,
            alembic_config=env_values["ALEMBIC_CONFIG"],
            json_log_file=env_values["JSON_LOG_FILE"],
            optimoroute_base_url=_clean_url(
                db_values["OPTIMOROUTE_BASE_URL"], key="OPTIMOROUTE_BASE_URL"
            ),
            optimoroute_api_key=_clean_text(
                decrypted_values["OPTIMOROUTE_API_KEY"], key="OPTIMOROUTE_API_KEY"
            ),
            fetch_max_retries=_parse_int(
                db_values["FETCH_MAX_RETRIES"], key="FETCH_MAX_RETRIES", minimum=0
            ),
            fetch_retry_delay_ms=_parse_int(
                db_values["FETCH_RETRY_DELAY_MS"], key="FETCH_RETRY_DELAY_MS", minimum=0
            ),
            fetch_batch_delay_ms=_parse_int(
                db_values["FETCH_BATCH_DELAY_MS"], key="FETCH_BATCH_DELAY_MS", minimum=0
            ),
            fetch_valid_statuses=valid_statuses,
            import_batch_size=_parse_int(
                db_values["IMPORT_BATCH_SIZE"], key="IMPORT_BATCH_SIZE", minimum=1
            ),
        )


_config_lock = threading.Lock()
_loaded: Config | None = None


def __getattr__(name: str) -> Any:
    global _loaded
    if name == "config":
        with _config_lock:
            if _loaded is None:
                _loaded = Config.load_from_env_and_db()
        return _loaded
    raise AttributeError(name)
