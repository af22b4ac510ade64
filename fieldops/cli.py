from __future__ import annotations

import argparse
import asyncio
from datetime import date
from typing import List, Optional

from fieldops.bulk_orders.pipeline import run_auto_import, run_bulk_import
from fieldops.common.db import dispose_engines, run_alembic_upgrade
from fieldops.common.json_logger import JsonLogger, get_logger, log_event, new_run_id
from fieldops.config import Config, ConfigError

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PREREQ = 2


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}; expected YYYY-MM-DD") from exc


def _load_config() -> Config:
    from fieldops.config import config as runtime_config

    return runtime_config


def _resolve_config(logger: JsonLogger) -> Config | None:
    try:
        return _load_config()
    except ConfigError as exc:
        log_event(logger=logger, phase="config", status="error", message=str(exc))
        return None


async def _maybe_run_migrations(args: argparse.Namespace, runtime_config: Config, logger: JsonLogger) -> None:
    if not getattr(args, "run_migrations", False):
        return
    log_event(logger=logger, phase="db", message="running migrations")
    await asyncio.to_thread(
        run_alembic_upgrade,
        revision="head",
        database_url=runtime_config.database_url,
        alembic_config_path=runtime_config.alembic_config,
    )


def _summary_exit_code(summary: dict) -> int:
    return EXIT_OK if summary.get("success") else EXIT_FAILED


async def _run_fetch_async(args: argparse.Namespace) -> int:
    run_id = args.run_id or new_run_id()
    logger = get_logger(run_id=run_id)
    try:
        if args.from_date > args.to_date:
            log_event(
                logger=logger,
                phase="prereq",
                status="error",
                message="--from must not be after --to",
                from_date=args.from_date,
                to_date=args.to_date,
            )
            return EXIT_PREREQ

        runtime_config = _resolve_config(logger)
        if runtime_config is None:
            return EXIT_PREREQ

        await _maybe_run_migrations(args, runtime_config, logger)

        try:
            summary = await run_bulk_import(
                args.from_date,
                args.to_date,
                args.statuses or None,
                config=runtime_config,
                logger=logger,
            )
        except Exception as exc:
            log_event(
                logger=logger,
                phase="orchestrator",
                status="error",
                message="bulk import failed with unexpected error",
                error=str(exc),
                exc_type=type(exc).__name__,
            )
            return EXIT_FAILED
        return _summary_exit_code(summary)
    finally:
        await dispose_engines()
        logger.close()


async def _run_auto_import_async(args: argparse.Namespace) -> int:
    run_id = args.run_id or new_run_id()
    logger = get_logger(run_id=run_id)
    try:
        runtime_config = _resolve_config(logger)
        if runtime_config is None:
            return EXIT_PREREQ

        await _maybe_run_migrations(args, runtime_config, logger)

        try:
            summary = await run_auto_import(config=runtime_config, logger=logger, today=args.today)
        except Exception as exc:
            log_event(
                logger=logger,
                phase="orchestrator",
                status="error",
                message="auto import failed with unexpected error",
                error=str(exc),
                exc_type=type(exc).__name__,
            )
            return EXIT_FAILED
        return _summary_exit_code(summary)
    finally:
        await dispose_engines()
        logger.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fieldops", description="Bulk work-order fetch and import")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch orders for a date range and import them")
    fetch_parser.add_argument("--from", dest="from_date", type=_parse_date, required=True, help="Start date (YYYY-MM-DD)")
    fetch_parser.add_argument("--to", dest="to_date", type=_parse_date, required=True, help="End date (YYYY-MM-DD)")
    fetch_parser.add_argument(
        "--status",
        dest="statuses",
        action="append",
        default=[],
        help="Completion status to keep (repeatable); defaults to FETCH_VALID_STATUSES",
    )
    fetch_parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
    fetch_parser.add_argument(
        "--run-migrations",
        action="store_true",
        dest="run_migrations",
        help="Run Alembic migrations before fetching",
    )

    auto_parser = subparsers.add_parser("auto-import", help="Import the Monday of the current week")
    auto_parser.add_argument(
        "--today",
        dest="today",
        type=_parse_date,
        default=None,
        help="Override today's date (YYYY-MM-DD) in the pipeline timezone",
    )
    auto_parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
    auto_parser.add_argument(
        "--run-migrations",
        action="store_true",
        dest="run_migrations",
        help="Run Alembic migrations before importing",
    )

    db_parser = subparsers.add_parser("db", help="Database operations")
    db_sub = db_parser.add_subparsers(dest="db_command", required=True)
    upgrade_parser = db_sub.add_parser("upgrade", help="Run Alembic upgrade")
    upgrade_parser.add_argument("--revision", default="head")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "fetch":
        return asyncio.run(_run_fetch_async(args))

    if args.command == "auto-import":
        return asyncio.run(_run_auto_import_async(args))

    if args.command == "db" and args.db_command == "upgrade":
        try:
            runtime_config = _load_config()
        except ConfigError:
            return EXIT_PREREQ
        run_alembic_upgrade(
            revision=args.revision,
            database_url=runtime_config.database_url,
            alembic_config_path=runtime_config.alembic_config,
        )
        return EXIT_OK

    parser.error("Unknown command")
    return EXIT_FAILED


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
