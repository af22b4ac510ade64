"""Top-level package for field-service order ingestion and import orchestration."""

from typing import Any

__all__ = ["run_bulk_import", "run_auto_import"]


def __getattr__(name: str) -> Any:
    if name == "run_bulk_import":
        from fieldops.bulk_orders.pipeline import run_bulk_import as _run_bulk_import

        return _run_bulk_import
    if name == "run_auto_import":
        from fieldops.bulk_orders.pipeline import run_auto_import as _run_auto_import

        return _run_auto_import
    raise AttributeError(name)
