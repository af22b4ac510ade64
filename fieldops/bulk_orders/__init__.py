"""Progressive bulk-order fetch, normalization and import."""

from typing import Any

__all__ = [
    "BatchFetcher",
    "ProgressiveLoader",
    "RetryController",
    "normalize",
]


def __getattr__(name: str) -> Any:
    if name == "BatchFetcher":
        from .fetcher import BatchFetcher as _BatchFetcher

        return _BatchFetcher
    if name == "ProgressiveLoader":
        from .loader import ProgressiveLoader as _ProgressiveLoader

        return _ProgressiveLoader
    if name == "RetryController":
        from .retry import RetryController as _RetryController

        return _RetryController
    if name == "normalize":
        from .normalizer import normalize as _normalize

        return _normalize
    raise AttributeError(name)
