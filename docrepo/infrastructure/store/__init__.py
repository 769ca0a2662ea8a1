"""
Document Store Infrastructure Module

Store contract, query and batch value types, store exceptions and the
in-memory store used for tests and local development.
"""

from .exceptions import (
    DataAccessException,
    StoreConnectionException,
    StoreOperationException,
    ValidationException,
)
from .interfaces import (
    BatchDelete,
    BatchInsert,
    BatchUpdate,
    DocumentStore,
    Limit,
    OrderBy,
    StartAfter,
    StoreDocument,
    Where,
)
from .memory_store import InMemoryDocumentStore, Timestamp

__all__ = [
    "BatchDelete",
    "BatchInsert",
    "BatchUpdate",
    "DataAccessException",
    "DocumentStore",
    "InMemoryDocumentStore",
    "Limit",
    "OrderBy",
    "StartAfter",
    "StoreConnectionException",
    "StoreDocument",
    "StoreOperationException",
    "Timestamp",
    "ValidationException",
    "Where",
]
