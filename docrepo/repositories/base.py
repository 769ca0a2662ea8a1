"""
Base Repository over a remote document store.

Implements the generic data-access pipeline every entity service builds on:
reads go through a per-collection TTL cache and a retrying fetch with
timestamp normalization; writes are schema-validated, stamped, retried and
followed by invalidation of the collection's whole cache namespace.

Public operations never raise: they return an ``OperationResult``.
"""

import copy
import dataclasses
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel

from ..constants import (
    CREATED_AT_FIELD,
    ID_FIELD,
    PROTECTED_UPDATE_FIELDS,
    UPDATED_AT_FIELD,
    get_current_timestamp,
)
from ..core.config import Settings, get_settings
from ..domain.cache.value_objects import CacheConfig, CacheKey, CacheStats
from ..infrastructure.store.exceptions import (
    StoreConnectionException,
    ValidationException,
)
from ..infrastructure.store.interfaces import (
    BatchDelete,
    BatchInsert,
    BatchUpdate,
    DocumentStore,
    Limit,
    OrderBy,
    QueryConstraint,
    StartAfter,
    Where,
)
from ..services.cache.ttl_cache import TTLCache
from ..services.errors import describe_error, is_retryable_error, retry_all_errors
from ..services.retry import RetryExecutor, RetryPolicy
from ..services.timestamps import normalize_timestamps, process_document
from ..services.validation import SchemaValidator
from .results import OperationResult, Page

logger = structlog.get_logger()
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

StoreSource = Union[DocumentStore, Callable[[], Optional[DocumentStore]], None]
UpdateItem = Union[Tuple[str, Mapping[str, Any]], Mapping[str, Any]]
TransactionUpdate = Callable[[Optional[Dict[str, Any]]], Optional[Mapping[str, Any]]]


def _constraint_params(constraints: Sequence[QueryConstraint]) -> List[Dict[str, Any]]:
    return [
        {"type": type(constraint).__name__, **dataclasses.asdict(constraint)}
        for constraint in constraints
    ]


class BaseRepository:
    """
    Repository bound to a single collection of a document store.

    Args:
        collection: Collection name (fixed for the repository's lifetime)
        store: Document store, or a zero-argument callable returning one
            (None when the store is not configured)
        schema: Optional pydantic model validated against write payloads
        cache_config: Cache settings; defaults come from ``Settings``
        retry_policy: Retry settings; defaults come from ``Settings``
        settings: Settings instance, defaults to ``get_settings()``
        is_retryable: Retry predicate; defaults to transient-only unless
            ``RETRY_TRANSIENT_ONLY`` is disabled
        sleep: Awaitable sleep used between retries
        clock: Monotonic time source for the cache

    Usage::

        async with BaseRepository("crew_members", store) as repo:
            result = await repo.get_all()
            if result.success:
                ...
    """

    def __init__(
        self,
        collection: str,
        store: StoreSource,
        *,
        schema: Optional[Type[BaseModel]] = None,
        cache_config: Optional[CacheConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        settings: Optional[Settings] = None,
        is_retryable: Optional[Callable[[BaseException], bool]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        # Fail fast on construction errors
        if not isinstance(collection, str) or not collection:
            raise ValueError("collection must be a non-empty string")

        settings = settings or get_settings()

        self.collection = collection
        self._store = store
        self.cache_config = cache_config or settings.cache_config()
        self.cache = TTLCache(
            collection,
            enabled=self.cache_config.enabled,
            default_ttl=self.cache_config.ttl_seconds,
            max_size=self.cache_config.max_size,
            eviction_policy=self.cache_config.eviction_policy,
            clock=clock or time.monotonic,
        )
        self.validator = SchemaValidator(schema, collection=collection)

        if is_retryable is None:
            is_retryable = (
                is_retryable_error if settings.RETRY_TRANSIENT_ONLY else retry_all_errors
            )
        self.retry = RetryExecutor(
            retry_policy or settings.retry_policy(),
            is_retryable=is_retryable,
            sleep=sleep,
        )
        self.convert_sequences = settings.NORMALIZE_TIMESTAMPS_IN_SEQUENCES

    # Lifecycle

    async def start(self) -> None:
        """Start the cache sweeper. Requires a running event loop."""
        if self.cache.enabled:
            self.cache.start_sweeper(self.cache_config.sweep_interval_seconds)

    async def close(self) -> None:
        """Stop the cache sweeper and drop cached entries."""
        await self.cache.stop_sweeper()
        self.cache.clear()

    async def __aenter__(self) -> "BaseRepository":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Connection

    def _get_store(self) -> DocumentStore:
        store = self._store
        if store is not None and not isinstance(store, DocumentStore) and callable(store):
            store = store()
        if store is None:
            raise StoreConnectionException(collection=self.collection)
        return store

    # Cache management

    def cache_key(self, operation: str, params: Optional[Mapping[str, Any]] = None) -> str:
        return CacheKey.for_operation(self.collection, operation, params).value

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def invalidate_cache(self, pattern: Optional[str] = None) -> int:
        return self.cache.invalidate(pattern)

    async def refresh_cache(self) -> int:
        """Drop every cached read of this collection."""
        count = self.cache.invalidate()
        logger.info(
            "Repository: Cache refreshed", collection=self.collection, removed=count
        )
        return count

    # Pipeline helpers

    def _failure(self, error: Exception, label: str, span=None) -> OperationResult:
        logger.error(
            "Repository: Operation failed",
            collection=self.collection,
            **describe_error(error, label),
        )
        if span is not None:
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))
        return OperationResult.from_exception(error, label)

    async def _read(
        self,
        operation: str,
        params: Optional[Mapping[str, Any]],
        fetch: Callable[[DocumentStore], Awaitable[T]],
        label: str,
        use_cache: bool = True,
    ) -> OperationResult[T]:
        key = self.cache_key(operation, params)

        with tracer.start_as_current_span(f"repository.{operation}") as span:
            span.set_attribute("collection", self.collection)

            if use_cache:
                cached = self.cache.get(key)
                if cached is not None:
                    span.set_attribute("cache_hit", True)
                    logger.debug(
                        "Repository: Cache hit", collection=self.collection, key=key
                    )
                    return OperationResult.ok(copy.deepcopy(cached), cached=True)
            span.set_attribute("cache_hit", False)

            try:
                store = self._get_store()
                data = await self.retry.with_retry(lambda: fetch(store), label)
            except Exception as e:
                return self._failure(e, label, span)

            # Not-found results are never cached
            if use_cache and data is not None:
                self.cache.set(key, copy.deepcopy(data))

            return OperationResult.ok(data, cached=False)

    async def _write(
        self,
        operation: str,
        perform: Callable[[DocumentStore], Awaitable[T]],
        label: str,
        prepare: Optional[Callable[[], None]] = None,
    ) -> OperationResult[T]:
        with tracer.start_as_current_span(f"repository.{operation}") as span:
            span.set_attribute("collection", self.collection)

            try:
                if prepare is not None:
                    prepare()
                store = self._get_store()
                result = await self.retry.with_retry(lambda: perform(store), label)
            except Exception as e:
                return self._failure(e, label, span)

            removed = self.cache.invalidate()
            span.set_attribute("cache_invalidated", removed)
            logger.info(
                "Repository: Write committed",
                collection=self.collection,
                operation=operation,
                invalidated=removed,
            )
            return OperationResult.ok(result)

    def _process(self, document) -> Dict[str, Any]:
        return process_document(document, convert_sequences=self.convert_sequences)

    def _require_id(self, document_id: Any) -> None:
        if not isinstance(document_id, str) or not document_id:
            raise ValidationException(
                ["id: must be a non-empty string"], collection=self.collection
            )

    def _strip(self, data: Mapping[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
        if not isinstance(data, Mapping):
            raise ValidationException(
                [f"payload: expected a mapping, got {type(data).__name__}"],
                collection=self.collection,
            )
        fields = set(fields)
        stripped = sorted(fields.intersection(data))
        if stripped:
            logger.debug(
                "Repository: Ignoring client-controlled fields",
                collection=self.collection,
                fields=stripped,
            )
        return {k: v for k, v in data.items() if k not in fields}

    def _prepare_create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        clean = self._strip(data, (ID_FIELD,))
        self.validator.validate(clean)
        now = get_current_timestamp()
        return {**clean, CREATED_AT_FIELD: now, UPDATED_AT_FIELD: now}

    def _prepare_update(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        clean = self._strip(data, PROTECTED_UPDATE_FIELDS)
        self.validator.validate(clean, partial=True)
        return {**clean, UPDATED_AT_FIELD: get_current_timestamp()}

    # Reads

    async def get_all(
        self,
        constraints: Optional[Sequence[QueryConstraint]] = None,
        *,
        use_cache: bool = True,
    ) -> OperationResult[List[Dict[str, Any]]]:
        """
        Fetch every document of the collection.

        Args:
            constraints: Optional filters, ordering and limit
            use_cache: Serve from and populate the read cache

        Returns:
            Result with the list of documents
        """
        constraints = list(constraints or ())
        params = {"constraints": _constraint_params(constraints)} if constraints else None

        async def fetch(store: DocumentStore) -> List[Dict[str, Any]]:
            documents = await store.fetch_all(self.collection, constraints)
            return [self._process(document) for document in documents]

        return await self._read(
            "get_all", params, fetch, f"get_all from {self.collection}", use_cache
        )

    async def get_by_id(
        self, document_id: str, *, use_cache: bool = True
    ) -> OperationResult[Optional[Dict[str, Any]]]:
        """
        Fetch one document.

        A missing document is a success with ``data=None``, not a failure.
        """
        label = f"get_by_id {document_id} from {self.collection}"
        try:
            self._require_id(document_id)
        except ValidationException as e:
            return self._failure(e, label)

        async def fetch(store: DocumentStore) -> Optional[Dict[str, Any]]:
            document = await store.fetch_one(self.collection, document_id)
            if document is None or not document.exists:
                return None
            return self._process(document)

        return await self._read(
            "get_by_id", {"id": document_id}, fetch, label, use_cache
        )

    async def query_by_field(
        self,
        field: str,
        value: Any,
        *,
        order_by: Optional[str] = None,
        descending: bool = True,
        use_cache: bool = True,
    ) -> OperationResult[List[Dict[str, Any]]]:
        """Fetch documents whose ``field`` equals ``value``, optionally ordered."""
        constraints: List[QueryConstraint] = [Where(field, "==", value)]
        if order_by:
            constraints.append(OrderBy(order_by, descending=descending))

        params = {
            "field": field,
            "value": value,
            "order_by": order_by,
            "descending": descending,
        }

        async def fetch(store: DocumentStore) -> List[Dict[str, Any]]:
            documents = await store.fetch_all(self.collection, constraints)
            return [self._process(document) for document in documents]

        return await self._read(
            "query_by_field",
            params,
            fetch,
            f"query_by_field {field}={value!s} from {self.collection}",
            use_cache,
        )

    async def get_paginated(
        self,
        page_size: int = 10,
        start_after: Optional[str] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        use_cache: bool = True,
    ) -> OperationResult[Page[Dict[str, Any]]]:
        """
        Fetch one page of documents.

        Args:
            page_size: Maximum documents per page
            start_after: Cursor returned as ``next_cursor`` by the previous page
            order_by: Optional ordering field

        Returns:
            Result with a ``Page``; ``next_cursor`` is None on the last page
        """
        label = f"get_paginated from {self.collection}"
        if not isinstance(page_size, int) or page_size < 1:
            return self._failure(
                ValidationException(
                    ["page_size: must be a positive integer"], collection=self.collection
                ),
                label,
            )

        constraints: List[QueryConstraint] = []
        if order_by:
            constraints.append(OrderBy(order_by, descending=descending))
        if start_after:
            constraints.append(StartAfter(start_after))
        # One extra document tells whether another page exists
        constraints.append(Limit(page_size + 1))

        params = {
            "page_size": page_size,
            "start_after": start_after,
            "order_by": order_by,
            "descending": descending,
        }

        async def fetch(store: DocumentStore) -> Page[Dict[str, Any]]:
            documents = await store.fetch_all(self.collection, constraints)
            items = [self._process(document) for document in documents[:page_size]]
            has_more = len(documents) > page_size
            return Page(
                items=items,
                page_size=page_size,
                next_cursor=items[-1][ID_FIELD] if has_more and items else None,
            )

        return await self._read("get_paginated", params, fetch, label, use_cache)

    async def count(
        self,
        constraints: Optional[Sequence[QueryConstraint]] = None,
        *,
        use_cache: bool = True,
    ) -> OperationResult[int]:
        """Count documents, optionally filtered."""
        constraints = list(constraints or ())
        params = {"constraints": _constraint_params(constraints)} if constraints else None

        async def fetch(store: DocumentStore) -> int:
            return len(await store.fetch_all(self.collection, constraints))

        return await self._read(
            "count", params, fetch, f"count in {self.collection}", use_cache
        )

    async def exists(self, document_id: str, *, use_cache: bool = True) -> OperationResult[bool]:
        """Check whether a document exists."""
        label = f"exists {document_id} in {self.collection}"
        try:
            self._require_id(document_id)
        except ValidationException as e:
            return self._failure(e, label)

        async def fetch(store: DocumentStore) -> bool:
            document = await store.fetch_one(self.collection, document_id)
            return document is not None and document.exists

        return await self._read("exists", {"id": document_id}, fetch, label, use_cache)

    async def health_check(self) -> OperationResult[bool]:
        """Probe the collection with a single-document read. Never cached."""

        async def fetch(store: DocumentStore) -> bool:
            await store.fetch_all(self.collection, [Limit(1)])
            return True

        return await self._read(
            "health_check",
            None,
            fetch,
            f"health_check for {self.collection}",
            use_cache=False,
        )

    # Writes

    async def create(self, data: Mapping[str, Any]) -> OperationResult[str]:
        """
        Insert a document.

        The store assigns the id. ``createdAt`` and ``updatedAt`` are stamped
        with the same client time. A retried insert may duplicate a document
        if an earlier attempt succeeded remotely before failing locally.

        Returns:
            Result with the new document id
        """
        payload: Dict[str, Any] = {}

        def prepare() -> None:
            payload.update(self._prepare_create(data))

        async def perform(store: DocumentStore) -> str:
            document_id = await store.insert(self.collection, payload)
            logger.info(
                "Repository: Document created",
                collection=self.collection,
                document_id=document_id,
            )
            return document_id

        return await self._write(
            "create", perform, f"create in {self.collection}", prepare
        )

    async def update(self, document_id: str, data: Mapping[str, Any]) -> OperationResult[None]:
        """Merge ``data`` into a document, refreshing ``updatedAt``.

        ``id`` and ``createdAt`` in ``data`` are ignored.
        """
        payload: Dict[str, Any] = {}

        def prepare() -> None:
            self._require_id(document_id)
            payload.update(self._prepare_update(data))

        async def perform(store: DocumentStore) -> None:
            await store.update(self.collection, document_id, payload)

        return await self._write(
            "update", perform, f"update {document_id} in {self.collection}", prepare
        )

    async def delete(self, document_id: str) -> OperationResult[None]:
        """Delete a document. Deleting a missing document succeeds."""

        def prepare() -> None:
            self._require_id(document_id)

        async def perform(store: DocumentStore) -> None:
            await store.remove(self.collection, document_id)

        return await self._write(
            "delete", perform, f"delete {document_id} from {self.collection}", prepare
        )

    async def batch_create(
        self, items: Sequence[Mapping[str, Any]]
    ) -> OperationResult[List[str]]:
        """
        Insert several documents atomically.

        Every item is validated before anything is sent. Ids are allocated by
        the store afresh on each attempt.

        Returns:
            Result with the new ids, in item order
        """
        payloads: List[Dict[str, Any]] = []

        def prepare() -> None:
            violations: List[str] = []
            for index, item in enumerate(items):
                try:
                    payloads.append(self._prepare_create(item))
                except ValidationException as e:
                    violations.extend(f"[{index}] {v}" for v in e.violations)
            if violations:
                raise ValidationException(violations, collection=self.collection)

        async def perform(store: DocumentStore) -> List[str]:
            if not payloads:
                return []
            operations = [
                BatchInsert(self.collection, store.allocate_id(self.collection), payload)
                for payload in payloads
            ]
            await store.run_batch(operations)
            return [operation.document_id for operation in operations]

        return await self._write(
            "batch_create", perform, f"batch_create in {self.collection}", prepare
        )

    async def batch_update(self, updates: Sequence[UpdateItem]) -> OperationResult[None]:
        """
        Update several documents atomically.

        Args:
            updates: ``(id, data)`` pairs or ``{"id": ..., "data": ...}`` mappings
        """
        prepared: List[Tuple[str, Dict[str, Any]]] = []

        def prepare() -> None:
            violations: List[str] = []
            for index, item in enumerate(updates):
                if isinstance(item, Mapping):
                    document_id, data = item.get(ID_FIELD), item.get("data", {})
                else:
                    document_id, data = item
                try:
                    self._require_id(document_id)
                    prepared.append((document_id, self._prepare_update(data)))
                except ValidationException as e:
                    violations.extend(f"[{index}] {v}" for v in e.violations)
            if violations:
                raise ValidationException(violations, collection=self.collection)

        async def perform(store: DocumentStore) -> None:
            if not prepared:
                return None
            await store.run_batch(
                [
                    BatchUpdate(self.collection, document_id, payload)
                    for document_id, payload in prepared
                ]
            )

        return await self._write(
            "batch_update", perform, f"batch_update in {self.collection}", prepare
        )

    async def batch_delete(self, document_ids: Sequence[str]) -> OperationResult[None]:
        """Delete several documents atomically."""

        def prepare() -> None:
            for document_id in document_ids:
                self._require_id(document_id)

        async def perform(store: DocumentStore) -> None:
            if not document_ids:
                return None
            await store.run_batch(
                [BatchDelete(self.collection, document_id) for document_id in document_ids]
            )

        return await self._write(
            "batch_delete", perform, f"batch_delete in {self.collection}", prepare
        )

    async def transactional_update(
        self, document_id: str, fn: TransactionUpdate
    ) -> OperationResult[None]:
        """
        Read-modify-write one document under the store's transaction.

        ``fn`` receives the current document (timestamps normalized, None when
        missing) and returns a partial update, or None to write nothing. It
        must be pure: the store may call it again when the transaction is
        retried. The cache is invalidated only after a commit that wrote data.

        Returns:
            Result whose metadata has ``committed`` set when data was written
        """
        label = f"transactional_update {document_id} in {self.collection}"
        committed = False

        def apply(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            nonlocal committed
            snapshot = (
                normalize_timestamps(current, convert_sequences=self.convert_sequences)
                if current is not None
                else None
            )
            update = fn(snapshot)
            if not update:
                committed = False
                return None
            payload = self._prepare_update(update)
            committed = True
            return payload

        with tracer.start_as_current_span("repository.transactional_update") as span:
            span.set_attribute("collection", self.collection)
            try:
                self._require_id(document_id)
                store = self._get_store()
                await self.retry.with_retry(
                    lambda: store.run_transaction(self.collection, document_id, apply),
                    label,
                )
            except Exception as e:
                return self._failure(e, label, span)

            span.set_attribute("committed", committed)
            if committed:
                removed = self.cache.invalidate()
                logger.info(
                    "Repository: Transaction committed",
                    collection=self.collection,
                    document_id=document_id,
                    invalidated=removed,
                )
            return OperationResult.ok(None, committed=committed)
