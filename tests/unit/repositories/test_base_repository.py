"""
Unit tests for BaseRepository.

Runs the repository against the in-memory store with a fake cache clock
and a recorded retry sleep.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest
from pydantic import BaseModel

from docrepo.domain.cache.value_objects import CacheConfig
from docrepo.infrastructure.store.exceptions import StoreOperationException
from docrepo.infrastructure.store.interfaces import OrderBy, Where
from docrepo.infrastructure.store.memory_store import InMemoryDocumentStore, Timestamp
from docrepo.core.config import Settings
from docrepo.repositories.base import BaseRepository
from docrepo.repositories.results import Page

COLLECTION = "crew_members"
ENLISTED = datetime(2122, 6, 3, 8, 0, 0, tzinfo=timezone.utc)


class CrewMember(BaseModel):
    name: str
    rank: int
    station: Optional[str] = None


def unavailable():
    return StoreOperationException("Service unavailable", code="unavailable")


@pytest.fixture
def repository(make_repository):
    return make_repository()


@pytest.fixture
def crew(store):
    """Seed three crew members."""
    store.seed(COLLECTION, "dallas", {"name": "Dallas", "rank": 1, "createdAt": ENLISTED})
    store.seed(COLLECTION, "kane", {"name": "Kane", "rank": 2, "createdAt": ENLISTED})
    store.seed(COLLECTION, "ripley", {"name": "Ripley", "rank": 3, "createdAt": ENLISTED})
    return store


class TestConstruction:
    """Test repository construction."""

    def test_empty_collection_rejected(self, store):
        with pytest.raises(ValueError):
            BaseRepository("", store)

    def test_defaults_from_settings(self, store):
        settings = Settings(CACHE_MAX_SIZE=7, RETRY_MAX_RETRIES=1)
        repository = BaseRepository(COLLECTION, store, settings=settings)

        assert repository.cache.max_size == 7
        assert repository.retry.policy.max_retries == 1

    def test_cache_key(self, repository):
        assert repository.cache_key("get_all") == "crew_members:get_all:"
        assert (
            repository.cache_key("get_by_id", {"id": "x"})
            == 'crew_members:get_by_id:{"id":"x"}'
        )


class TestReads:
    """Test read operations and read caching."""

    @pytest.mark.asyncio
    async def test_get_all_second_read_hits_cache(self, repository, crew):
        """Test a second identical read within TTL makes no network call."""
        first = await repository.get_all()
        second = await repository.get_all()

        assert first.success and second.success
        assert first.data == second.data
        assert len(first.data) == 3
        assert crew.calls["fetch_all"] == 1
        assert second.metadata["cached"] is True

    @pytest.mark.asyncio
    async def test_cache_expires_after_ttl(self, repository, crew, clock):
        await repository.get_all()
        clock.advance(301)
        await repository.get_all()

        assert crew.calls["fetch_all"] == 2

    @pytest.mark.asyncio
    async def test_cached_data_is_isolated_from_callers(self, repository, crew):
        first = await repository.get_all()
        first.data.clear()

        second = await repository.get_all()
        assert len(second.data) == 3

    @pytest.mark.asyncio
    async def test_use_cache_false_bypasses_cache(self, repository, crew):
        await repository.get_all()
        await repository.get_all(use_cache=False)

        assert crew.calls["fetch_all"] == 2

    @pytest.mark.asyncio
    async def test_disabled_cache(self, make_repository, crew):
        repository = make_repository(cache_config=CacheConfig(enabled=False))

        await repository.get_all()
        await repository.get_all()

        assert crew.calls["fetch_all"] == 2

    @pytest.mark.asyncio
    async def test_empty_collection_is_cached(self, repository, store):
        """Test an empty list is a cache hit."""
        await repository.get_all()
        result = await repository.get_all()

        assert result.data == []
        assert store.calls["fetch_all"] == 1

    @pytest.mark.asyncio
    async def test_get_all_with_constraints(self, repository, crew):
        result = await repository.get_all([Where("rank", ">", 1), OrderBy("rank")])

        assert [doc["id"] for doc in result.data] == ["kane", "ripley"]

    @pytest.mark.asyncio
    async def test_timestamps_normalized(self, repository, crew):
        """Test store timestamps come back as aware datetimes."""
        result = await repository.get_by_id("ripley")

        assert result.data == {
            "id": "ripley",
            "name": "Ripley",
            "rank": 3,
            "createdAt": ENLISTED,
        }
        assert isinstance(crew.raw(COLLECTION, "ripley")["createdAt"], Timestamp)

    @pytest.mark.asyncio
    async def test_get_by_id_not_found(self, repository, store):
        """Test missing documents succeed with no data and are not cached."""
        first = await repository.get_by_id("nobody")
        second = await repository.get_by_id("nobody")

        assert first.success
        assert first.data is None
        assert second.data is None
        assert store.calls["fetch_one"] == 2

    @pytest.mark.asyncio
    async def test_get_by_id_rejects_empty_id(self, repository, store):
        result = await repository.get_by_id("")

        assert not result.success
        assert result.metadata["error_code"] == "VALIDATION_ERROR"
        assert store.calls["fetch_one"] == 0

    @pytest.mark.asyncio
    async def test_query_by_field(self, repository, store):
        store.seed(COLLECTION, "a", {"station": "bridge", "rank": 1})
        store.seed(COLLECTION, "b", {"station": "bridge", "rank": 4})
        store.seed(COLLECTION, "c", {"station": "engine", "rank": 2})

        result = await repository.query_by_field("station", "bridge", order_by="rank")

        assert [doc["id"] for doc in result.data] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_count_and_exists(self, repository, crew):
        count = await repository.count()
        present = await repository.exists("kane")
        absent = await repository.exists("ash")

        assert count.data == 3
        assert present.data is True
        assert absent.data is False

    @pytest.mark.asyncio
    async def test_health_check_never_cached(self, repository, store):
        assert (await repository.health_check()).data is True
        assert (await repository.health_check()).data is True
        assert store.calls["fetch_all"] == 2


class TestPagination:
    """Test cursor pagination."""

    @pytest.fixture
    def roster(self, store):
        for rank in range(1, 6):
            store.seed(COLLECTION, f"member-{rank}", {"rank": rank})
        return store

    @pytest.mark.asyncio
    async def test_walk_all_pages(self, repository, roster):
        """Test pages follow each other through next_cursor."""
        first = await repository.get_paginated(2, order_by="rank")
        assert isinstance(first.data, Page)
        assert [doc["rank"] for doc in first.data.items] == [1, 2]
        assert first.data.next_cursor == "member-2"
        assert first.data.has_more

        second = await repository.get_paginated(
            2, start_after=first.data.next_cursor, order_by="rank"
        )
        assert [doc["rank"] for doc in second.data.items] == [3, 4]

        third = await repository.get_paginated(
            2, start_after=second.data.next_cursor, order_by="rank"
        )
        assert [doc["rank"] for doc in third.data.items] == [5]
        assert third.data.next_cursor is None
        assert not third.data.has_more

    @pytest.mark.asyncio
    async def test_exact_final_page(self, repository, roster):
        result = await repository.get_paginated(5, order_by="rank")

        assert len(result.data.items) == 5
        assert result.data.next_cursor is None

    @pytest.mark.asyncio
    async def test_invalid_page_size(self, repository, roster):
        result = await repository.get_paginated(0)

        assert not result.success
        assert roster.calls["fetch_all"] == 0

    @pytest.mark.asyncio
    async def test_unknown_cursor_fails_without_retry(self, repository, roster):
        result = await repository.get_paginated(2, start_after="nobody")

        assert not result.success
        assert result.metadata["error_code"] == "invalid-argument"
        assert roster.calls["fetch_all"] == 1


class TestRetries:
    """Test retry behavior observed through the repository."""

    @pytest.mark.asyncio
    async def test_transient_failures_recovered(self, repository, crew, no_sleep):
        """Test two unavailable errors then success: three attempts, waits 1s and 2s."""
        crew.fail_next("fetch_all", unavailable(), times=2)

        result = await repository.get_all()

        assert result.success
        assert len(result.data) == 3
        assert crew.calls["fetch_all"] == 3
        assert [call.args[0] for call in no_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_failure(self, repository, store):
        store.fail_next("fetch_all", unavailable(), times=4)

        result = await repository.get_all()

        assert not result.success
        assert result.error == "Service unavailable"
        assert result.metadata["retryable"] is True
        assert store.calls["fetch_all"] == 4

    @pytest.mark.asyncio
    async def test_permanent_error_returns_original_message(self, repository, store):
        """Test permission errors fail after one attempt with the store message."""
        store.fail_next(
            "fetch_all", StoreOperationException("Firestore error", code="permission-denied")
        )

        result = await repository.get_all()

        assert not result.success
        assert result.error == "Firestore error"
        assert result.metadata["error_code"] == "permission-denied"
        assert result.metadata["retryable"] is False
        assert store.calls["fetch_all"] == 1

    @pytest.mark.asyncio
    async def test_retry_everything_mode(self, make_repository, store):
        repository = make_repository(
            settings=Settings(RETRY_TRANSIENT_ONLY=False)
        )
        store.fail_next(
            "fetch_all", StoreOperationException("denied", code="permission-denied"), 2
        )

        result = await repository.get_all()

        assert result.success
        assert store.calls["fetch_all"] == 3

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, repository, store):
        store.fail_next("fetch_all", unavailable(), times=4)

        await repository.get_all()
        result = await repository.get_all()

        assert result.success
        assert store.calls["fetch_all"] == 5


class TestConnection:
    """Test unconfigured stores."""

    @pytest.mark.asyncio
    async def test_missing_store(self, make_repository, no_sleep):
        repository = make_repository(store=None)

        result = await repository.get_all()

        assert not result.success
        assert "not initialized" in result.error
        assert result.metadata["error_code"] == "STORE_CONNECTION_ERROR"
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_provider(self, make_repository, crew):
        """Test the store may be resolved lazily per operation."""
        current = {"store": None}
        repository = make_repository(store=lambda: current["store"])

        assert not (await repository.create({"name": "Ash", "rank": 4})).success

        current["store"] = crew
        assert (await repository.create({"name": "Ash", "rank": 4})).success


class TestWrites:
    """Test writes, stamping and invalidation."""

    @pytest.mark.asyncio
    async def test_create_invalidates_cached_reads(self, repository, crew):
        """Test a create makes the next read go to the store."""
        before = await repository.get_all()
        created = await repository.create({"name": "Ash", "rank": 4})
        after = await repository.get_all()

        assert created.success
        assert len(before.data) == 3
        assert len(after.data) == 4
        assert created.data in {doc["id"] for doc in after.data}
        assert crew.calls["fetch_all"] == 2

    @pytest.mark.asyncio
    async def test_create_stamps_and_strips_id(self, repository, store):
        result = await repository.create({"id": "forged", "name": "Ash", "rank": 4})

        stored = store.raw(COLLECTION, result.data)
        assert result.data != "forged"
        assert "id" not in stored
        assert stored["createdAt"] == stored["updatedAt"]
        assert isinstance(stored["createdAt"], Timestamp)

    @pytest.mark.asyncio
    async def test_created_document_reads_back_with_equal_timestamps(
        self, repository, store
    ):
        """Test create then get_by_id returns matching createdAt/updatedAt datetimes."""
        created = await repository.create({"name": "x"})
        fetched = await repository.get_by_id(created.data)

        data = fetched.data
        assert fetched.success
        assert data["id"] == created.data
        assert data["name"] == "x"
        assert isinstance(data["createdAt"], datetime)
        assert data["createdAt"].tzinfo is not None
        assert data["createdAt"] == data["updatedAt"]

    @pytest.mark.asyncio
    async def test_update_protects_created_at(self, repository, crew):
        """Test updates cannot rewrite createdAt and refresh updatedAt."""
        forged = datetime(1999, 1, 1, tzinfo=timezone.utc)

        result = await repository.update(
            "kane", {"createdAt": forged, "id": "other", "station": "medbay"}
        )

        stored = crew.raw(COLLECTION, "kane")
        assert result.success
        assert stored["createdAt"] == Timestamp.from_datetime(ENLISTED)
        assert stored["station"] == "medbay"
        assert "updatedAt" in stored
        assert "id" not in stored

    @pytest.mark.asyncio
    async def test_update_missing_document(self, repository, store):
        result = await repository.update("nobody", {"rank": 1})

        assert not result.success
        assert result.metadata["error_code"] == "not-found"
        assert store.calls["update"] == 1

    @pytest.mark.asyncio
    async def test_update_invalidates_get_by_id(self, repository, crew):
        await repository.get_by_id("kane")
        await repository.update("kane", {"rank": 7})
        result = await repository.get_by_id("kane")

        assert result.data["rank"] == 7
        assert crew.calls["fetch_one"] == 2

    @pytest.mark.asyncio
    async def test_delete(self, repository, crew):
        await repository.count()
        result = await repository.delete("dallas")
        count = await repository.count()

        assert result.success
        assert count.data == 2

    @pytest.mark.asyncio
    async def test_failed_write_keeps_cache(self, repository, crew):
        await repository.get_all()
        crew.fail_next("remove", StoreOperationException("denied", code="permission-denied"))

        result = await repository.delete("dallas")
        await repository.get_all()

        assert not result.success
        assert crew.calls["fetch_all"] == 1


class TestValidation:
    """Test schema validation gate on writes."""

    @pytest.fixture
    def repository(self, make_repository):
        return make_repository(schema=CrewMember)

    @pytest.mark.asyncio
    async def test_invalid_create_never_reaches_store(self, repository, store, no_sleep):
        result = await repository.create({"name": "Ash", "rank": "science officer"})

        assert not result.success
        assert result.error.startswith("Validation failed: rank: ")
        assert result.metadata["error_code"] == "VALIDATION_ERROR"
        assert store.calls["insert"] == 0
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_partial_update_allowed(self, repository, crew):
        result = await repository.update("kane", {"station": "medbay"})
        assert result.success

    @pytest.mark.asyncio
    async def test_invalid_update_rejected(self, repository, crew):
        result = await repository.update("kane", {"rank": "high"})

        assert not result.success
        assert crew.calls["update"] == 0


class TestBatches:
    """Test batch writes."""

    @pytest.mark.asyncio
    async def test_batch_create(self, repository, store):
        await repository.count()

        result = await repository.batch_create(
            [{"name": "Parker", "rank": 5}, {"name": "Brett", "rank": 6}]
        )
        count = await repository.count()

        assert result.success
        assert len(result.data) == 2
        assert store.raw(COLLECTION, result.data[0])["name"] == "Parker"
        assert count.data == 2
        assert store.calls["run_batch"] == 1

    @pytest.mark.asyncio
    async def test_batch_create_validates_every_item(self, make_repository, store):
        repository = make_repository(schema=CrewMember)

        result = await repository.batch_create(
            [{"name": "Parker", "rank": 5}, {"name": "Brett"}]
        )

        assert not result.success
        assert "[1] rank: " in result.error
        assert store.calls["run_batch"] == 0

    @pytest.mark.asyncio
    async def test_batch_update_accepts_pairs_and_mappings(self, repository, crew):
        result = await repository.batch_update(
            [("dallas", {"rank": 10}), {"id": "kane", "data": {"rank": 20}}]
        )

        assert result.success
        assert crew.raw(COLLECTION, "dallas")["rank"] == 10
        assert crew.raw(COLLECTION, "kane")["rank"] == 20

    @pytest.mark.asyncio
    async def test_batch_update_is_atomic(self, repository, crew):
        result = await repository.batch_update(
            [("dallas", {"rank": 10}), ("nobody", {"rank": 20})]
        )

        assert not result.success
        assert crew.raw(COLLECTION, "dallas")["rank"] == 1

    @pytest.mark.asyncio
    async def test_batch_delete(self, repository, crew):
        result = await repository.batch_delete(["dallas", "kane"])
        remaining = await repository.get_all()

        assert result.success
        assert [doc["id"] for doc in remaining.data] == ["ripley"]

    @pytest.mark.asyncio
    async def test_batch_update_invalidates_cached_reads(self, repository, crew):
        """Test a batch update makes the next read go to the store."""
        before = await repository.get_all([OrderBy("rank")])

        result = await repository.batch_update([("dallas", {"rank": 10})])
        after = await repository.get_all([OrderBy("rank")])

        assert result.success
        assert before.data[0]["id"] == "dallas"
        assert (after.data[-1]["id"], after.data[-1]["rank"]) == ("dallas", 10)
        assert crew.calls["fetch_all"] == 2

    @pytest.mark.asyncio
    async def test_batch_delete_invalidates_cached_reads(self, repository, crew):
        """Test a batch delete makes the next read go to the store."""
        before = await repository.get_all()

        result = await repository.batch_delete(["dallas", "kane"])
        after = await repository.get_all()

        assert result.success
        assert len(before.data) == 3
        assert [doc["id"] for doc in after.data] == ["ripley"]
        assert crew.calls["fetch_all"] == 2

    @pytest.mark.asyncio
    async def test_batch_retried_with_fresh_ids(self, repository, store):
        store.fail_next("run_batch", unavailable())

        result = await repository.batch_create([{"name": "Parker", "rank": 5}])

        assert result.success
        assert store.calls["run_batch"] == 2
        assert store.raw(COLLECTION, result.data[0]) is not None


class TestTransactions:
    """Test transactional read-modify-write."""

    @pytest.mark.asyncio
    async def test_increment(self, repository, store):
        store.seed(COLLECTION, "counter", {"value": 1})

        result = await repository.transactional_update(
            "counter", lambda current: {"value": current["value"] + 1}
        )

        assert result.success
        assert result.metadata["committed"] is True
        assert store.raw(COLLECTION, "counter")["value"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_updates_not_lost(self, make_repository):
        store = InMemoryDocumentStore(latency=0.001)
        store.seed(COLLECTION, "counter", {"value": 0})
        repository = make_repository(store=store)

        results = await asyncio.gather(
            *(
                repository.transactional_update(
                    "counter", lambda current: {"value": current["value"] + 1}
                )
                for _ in range(5)
            )
        )

        assert all(result.success for result in results)
        assert store.raw(COLLECTION, "counter")["value"] == 5

    @pytest.mark.asyncio
    async def test_function_sees_normalized_document(self, repository, crew):
        seen = {}

        def capture(current):
            seen.update(current)
            return None

        await repository.transactional_update("ripley", capture)

        assert seen["createdAt"] == ENLISTED

    @pytest.mark.asyncio
    async def test_no_update_keeps_cache(self, repository, crew):
        await repository.get_all()

        result = await repository.transactional_update("ripley", lambda current: None)
        await repository.get_all()

        assert result.success
        assert result.metadata["committed"] is False
        assert crew.calls["fetch_all"] == 1

    @pytest.mark.asyncio
    async def test_commit_invalidates_cache(self, repository, crew):
        await repository.get_all()

        await repository.transactional_update("ripley", lambda current: {"rank": 0})
        await repository.get_all()

        assert crew.calls["fetch_all"] == 2

    @pytest.mark.asyncio
    async def test_missing_document(self, repository, store):
        seen = []

        def update(current):
            seen.append(current)
            return {"value": 1}

        result = await repository.transactional_update("nobody", update)

        assert seen == [None]
        assert not result.success
        assert result.metadata["error_code"] == "not-found"

    @pytest.mark.asyncio
    async def test_invalid_update_rejected(self, make_repository, crew):
        repository = make_repository(schema=CrewMember)

        result = await repository.transactional_update(
            "ripley", lambda current: {"rank": "captain"}
        )

        assert not result.success
        assert crew.raw(COLLECTION, "ripley")["rank"] == 3


class TestCacheManagement:
    """Test cache statistics, refresh and lifecycle."""

    @pytest.mark.asyncio
    async def test_stats_and_refresh(self, repository, crew):
        await repository.get_all()
        await repository.get_all()
        await repository.count()

        stats = repository.get_cache_stats()
        assert stats.size == 2
        assert stats.hits == 1
        assert stats.namespace == COLLECTION

        assert await repository.refresh_cache() == 2
        assert repository.get_cache_stats().size == 0

    @pytest.mark.asyncio
    async def test_invalidate_pattern(self, repository, crew):
        await repository.get_all()
        await repository.count()

        assert repository.invalidate_cache("count") == 1
        assert repository.get_cache_stats().size == 1

    @pytest.mark.asyncio
    async def test_sweeper_tied_to_lifecycle(self, make_repository, crew):
        """Test the sweeper runs only while the repository is open."""
        repository = make_repository()

        async with repository as repo:
            assert repo is repository
            assert repository.cache.sweeper_running
            await repository.get_all()

        assert not repository.cache.sweeper_running
        assert repository.get_cache_stats().size == 0
