"""
docrepo

Generic data-access layer over a remote document store: typed results,
a per-collection TTL read cache, bounded exponential-backoff retry,
optional schema validation and timestamp normalization.
"""

from .constants import APP_VERSION as __version__
from .repositories import BaseRepository, OperationResult, Page

__all__ = [
    "BaseRepository",
    "OperationResult",
    "Page",
    "__version__",
]
