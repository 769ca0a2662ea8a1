"""
Repository Pattern Implementation

All data access goes through repositories, which return OperationResult
values instead of raising.
"""

from .base import BaseRepository
from .results import OperationResult, Page

__all__ = [
    "BaseRepository",
    "OperationResult",
    "Page",
]
