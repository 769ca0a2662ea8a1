"""
Document store interfaces.

Contract for the remote document database the repository layer sits in
front of. Concrete stores (managed databases, the in-memory store used in
tests) implement ``DocumentStore``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)


@runtime_checkable
class StoreTimestamp(Protocol):
    """Store-native timestamp value that must be converted explicitly on read."""

    def to_datetime(self) -> datetime: ...


@dataclass(frozen=True)
class StoreDocument:
    """Snapshot of a single stored document."""

    id: str
    data: Optional[Dict[str, Any]]

    @property
    def exists(self) -> bool:
        return self.data is not None


# Query constraints


@dataclass(frozen=True)
class Where:
    """Field filter. Supported operators: ==, !=, <, <=, >, >=, in, array-contains."""

    field: str
    op: str
    value: Any

    SUPPORTED_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "array-contains")

    def __post_init__(self) -> None:
        if self.op not in self.SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported query operator: {self.op}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Limit:
    count: int

    def __post_init__(self) -> None:
        if self.count < 1:
            raise ValueError("Limit must be at least 1")


@dataclass(frozen=True)
class StartAfter:
    """Cursor: continue after the document with this id in the current ordering."""

    document_id: str


QueryConstraint = Union[Where, OrderBy, Limit, StartAfter]


# Batch operations


@dataclass(frozen=True)
class BatchInsert:
    collection: str
    document_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchUpdate:
    collection: str
    document_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchDelete:
    collection: str
    document_id: str


BatchOperation = Union[BatchInsert, BatchUpdate, BatchDelete]

TransactionFunction = Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]


class DocumentStore(ABC):
    """
    Abstract interface for a remote document database.

    Implementations raise ``StoreOperationException`` for failures surfaced by
    the store and assign document identifiers themselves.
    """

    @abstractmethod
    async def fetch_all(
        self, collection: str, constraints: Sequence[QueryConstraint] = ()
    ) -> List[StoreDocument]:
        """
        Fetch every document of a collection matching the constraints.

        Args:
            collection: Collection name
            constraints: Filters, ordering, limit and cursor

        Returns:
            Matching document snapshots in query order
        """
        pass

    @abstractmethod
    async def fetch_one(self, collection: str, document_id: str) -> Optional[StoreDocument]:
        """
        Fetch a single document.

        Returns:
            Document snapshot, or None when no such document exists
        """
        pass

    @abstractmethod
    async def insert(self, collection: str, payload: Dict[str, Any]) -> str:
        """
        Insert a new document.

        Returns:
            Store-assigned document id
        """
        pass

    @abstractmethod
    async def update(
        self, collection: str, document_id: str, payload: Dict[str, Any]
    ) -> None:
        """Merge a partial payload into an existing document."""
        pass

    @abstractmethod
    async def remove(self, collection: str, document_id: str) -> None:
        """Delete a document. Deleting a missing document succeeds."""
        pass

    @abstractmethod
    def allocate_id(self, collection: str) -> str:
        """Generate a fresh store-side identifier for a batch insert."""
        pass

    @abstractmethod
    async def run_batch(self, operations: Sequence[BatchOperation]) -> None:
        """Apply all operations atomically: all succeed or none are applied."""
        pass

    @abstractmethod
    async def run_transaction(
        self, collection: str, document_id: str, fn: TransactionFunction
    ) -> None:
        """
        Atomic read-modify-write of one document.

        ``fn`` receives the current data (None when the document is missing)
        and returns the partial update to commit, or None to write nothing.
        """
        pass
