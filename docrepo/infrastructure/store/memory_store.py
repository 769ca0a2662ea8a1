"""
In-memory document store.

Process-local implementation of ``DocumentStore`` with the semantics the
repository layer expects from a managed document database: store-assigned
ids, native timestamp values, idempotent deletes, all-or-nothing batches and
per-document transaction isolation. Used by tests and local development.
"""

import asyncio
import copy
from collections import Counter, defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

import structlog

from .exceptions import StoreOperationException
from .interfaces import (
    BatchDelete,
    BatchInsert,
    BatchOperation,
    BatchUpdate,
    DocumentStore,
    Limit,
    OrderBy,
    QueryConstraint,
    StartAfter,
    StoreDocument,
    TransactionFunction,
    Where,
)

logger = structlog.get_logger()


@dataclass(frozen=True, order=True)
class Timestamp:
    """Store-native timestamp: seconds and nanoseconds since the Unix epoch (UTC)."""

    seconds: int
    nanoseconds: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.nanoseconds < 1_000_000_000:
            raise ValueError("nanoseconds must be in [0, 1e9)")

    @classmethod
    def from_datetime(cls, value: datetime) -> "Timestamp":
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        epoch_delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
        seconds = epoch_delta.days * 86400 + epoch_delta.seconds
        return cls(seconds=seconds, nanoseconds=epoch_delta.microseconds * 1000)

    @classmethod
    def now(cls) -> "Timestamp":
        return cls.from_datetime(datetime.now(timezone.utc))

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.seconds, tz=timezone.utc).replace(
            microsecond=self.nanoseconds // 1000
        )


def _to_store_value(value: Any) -> Any:
    """Convert client values into their stored representation."""
    if isinstance(value, datetime):
        return Timestamp.from_datetime(value)
    if isinstance(value, dict):
        return {k: _to_store_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_store_value(v) for v in value]
    return value


def _sort_key(value: Any) -> Tuple[int, Any]:
    # Missing values sort first; mixed types group by type name
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, Timestamp):
        return (3, (value.seconds, value.nanoseconds))
    return (4, str(value))


def _matches(data: Dict[str, Any], where: Where) -> bool:
    if where.field not in data:
        return False
    actual = data[where.field]
    expected = where.value
    if isinstance(expected, datetime):
        expected = Timestamp.from_datetime(expected)

    if where.op == "==":
        return actual == expected
    if where.op == "!=":
        return actual != expected
    if where.op == "in":
        return actual in expected
    if where.op == "array-contains":
        return isinstance(actual, list) and expected in actual
    try:
        if where.op == "<":
            return actual < expected
        if where.op == "<=":
            return actual <= expected
        if where.op == ">":
            return actual > expected
        if where.op == ">=":
            return actual >= expected
    except TypeError:
        return False
    return False


class InMemoryDocumentStore(DocumentStore):
    """
    Document store kept in process memory.

    Args:
        latency: Seconds to await inside every call, to surface interleavings
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._document_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._faults: Dict[str, Deque[Exception]] = defaultdict(deque)
        self.calls: Counter = Counter()

    # Test hooks

    def fail_next(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        for _ in range(times):
            self._faults[operation].append(error)

    def seed(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        """Write a document directly, bypassing call accounting."""
        self._collections[collection][document_id] = _to_store_value(copy.deepcopy(data))

    def raw(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Stored representation of a document (store-native values)."""
        data = self._collections[collection].get(document_id)
        return copy.deepcopy(data) if data is not None else None

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self._faults[operation]:
            error = self._faults[operation].popleft()
            logger.debug("Injected store fault", operation=operation, error=str(error))
            raise error

    # DocumentStore implementation

    async def fetch_all(
        self, collection: str, constraints: Sequence[QueryConstraint] = ()
    ) -> List[StoreDocument]:
        await self._enter("fetch_all")

        rows = list(self._collections[collection].items())
        for constraint in constraints:
            if isinstance(constraint, Where):
                rows = [(doc_id, data) for doc_id, data in rows if _matches(data, constraint)]

        orderings = [c for c in constraints if isinstance(c, OrderBy)]
        for ordering in reversed(orderings):
            rows.sort(
                key=lambda row: _sort_key(row[1].get(ordering.field)),
                reverse=ordering.descending,
            )

        for constraint in constraints:
            if isinstance(constraint, StartAfter):
                ids = [doc_id for doc_id, _ in rows]
                if constraint.document_id not in ids:
                    raise StoreOperationException(
                        f"Cursor document {constraint.document_id} not found",
                        code="invalid-argument",
                        collection=collection,
                        document_id=constraint.document_id,
                    )
                rows = rows[ids.index(constraint.document_id) + 1 :]

        for constraint in constraints:
            if isinstance(constraint, Limit):
                rows = rows[: constraint.count]

        return [StoreDocument(id=doc_id, data=copy.deepcopy(data)) for doc_id, data in rows]

    async def fetch_one(self, collection: str, document_id: str) -> Optional[StoreDocument]:
        await self._enter("fetch_one")
        data = self._collections[collection].get(document_id)
        if data is None:
            return None
        return StoreDocument(id=document_id, data=copy.deepcopy(data))

    async def insert(self, collection: str, payload: Dict[str, Any]) -> str:
        await self._enter("insert")
        document_id = self.allocate_id(collection)
        self._collections[collection][document_id] = _to_store_value(copy.deepcopy(payload))
        return document_id

    async def update(
        self, collection: str, document_id: str, payload: Dict[str, Any]
    ) -> None:
        await self._enter("update")
        self._apply_update(self._collections[collection], collection, document_id, payload)

    async def remove(self, collection: str, document_id: str) -> None:
        await self._enter("remove")
        self._collections[collection].pop(document_id, None)

    def allocate_id(self, collection: str) -> str:
        return uuid4().hex

    async def run_batch(self, operations: Sequence[BatchOperation]) -> None:
        await self._enter("run_batch")

        staged = {
            name: dict(docs)
            for name, docs in self._collections.items()
        }
        for operation in operations:
            documents = staged.setdefault(operation.collection, {})
            if isinstance(operation, BatchInsert):
                documents[operation.document_id] = _to_store_value(
                    copy.deepcopy(operation.payload)
                )
            elif isinstance(operation, BatchUpdate):
                self._apply_update(
                    documents, operation.collection, operation.document_id, operation.payload
                )
            elif isinstance(operation, BatchDelete):
                documents.pop(operation.document_id, None)
            else:
                raise StoreOperationException(
                    f"Unsupported batch operation: {type(operation).__name__}",
                    code="invalid-argument",
                )

        # Commit only after every operation applied cleanly
        self._collections = defaultdict(dict, staged)

    async def run_transaction(
        self, collection: str, document_id: str, fn: TransactionFunction
    ) -> None:
        await self._enter("run_transaction")

        async with self._lock_for(collection, document_id):
            current = self._collections[collection].get(document_id)
            snapshot = copy.deepcopy(current) if current is not None else None
            if self.latency:
                await asyncio.sleep(self.latency)

            update = fn(snapshot)
            if not update:
                return
            self._apply_update(self._collections[collection], collection, document_id, update)

    # Internals

    def _lock_for(self, collection: str, document_id: str) -> asyncio.Lock:
        key = (collection, document_id)
        if key not in self._document_locks:
            self._document_locks[key] = asyncio.Lock()
        return self._document_locks[key]

    @staticmethod
    def _apply_update(
        documents: Dict[str, Dict[str, Any]],
        collection: str,
        document_id: str,
        payload: Dict[str, Any],
    ) -> None:
        current = documents.get(document_id)
        if current is None:
            raise StoreOperationException(
                f"No document to update: {collection}/{document_id}",
                code="not-found",
                collection=collection,
                document_id=document_id,
            )
        merged = dict(current)
        merged.update(_to_store_value(copy.deepcopy(payload)))
        documents[document_id] = merged
