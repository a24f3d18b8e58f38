"""
Tests for the remote document store backends.
"""
import datetime as dt

import pytest

from triptuner.infrastructure.database import create_engine_and_sessions, init_models
from triptuner.infrastructure.memory_store import InMemoryRemoteStore
from triptuner.infrastructure.remote_store import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentNotFoundError,
    Increment,
    OrderBy,
    RemoteStoreError,
    Where,
    collection_of,
)
from triptuner.infrastructure.sql_store import SqlRemoteStore

from conftest import NOW


class TestPaths:
    """Tests for path helpers."""

    def test_collection_of_document(self):
        assert collection_of("itineraries/a/comments/c1") == "itineraries/a/comments"

    def test_collection_of_rejects_collection_path(self):
        with pytest.raises(ValueError):
            collection_of("itineraries/a/comments")


class TestInMemoryRemoteStore:
    """Tests for InMemoryRemoteStore reads, writes and transforms."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        await store.set("users/alice", {"name": "Alice"})

        snapshot = await store.get("users/alice")

        assert snapshot.exists
        assert snapshot.id == "alice"
        assert snapshot.get("name") == "Alice"

    @pytest.mark.asyncio
    async def test_get_missing_document(self, store):
        snapshot = await store.get("users/nobody")
        assert not snapshot.exists
        assert snapshot.get("name", "fallback") == "fallback"

    @pytest.mark.asyncio
    async def test_server_timestamp_resolves_to_clock(self, store):
        await store.set("users/alice", {"createdAt": SERVER_TIMESTAMP})
        assert store.document_data("users/alice")["createdAt"] == NOW

    @pytest.mark.asyncio
    async def test_update_missing_document_fails(self, store):
        with pytest.raises(DocumentNotFoundError):
            await store.update("users/nobody", {"name": "X"})

    @pytest.mark.asyncio
    async def test_create_existing_document_fails(self, store):
        await store.create("handles/alice", {"userID": "alice"})
        with pytest.raises(DocumentExistsError):
            await store.create("handles/alice", {"userID": "bob"})

    @pytest.mark.asyncio
    async def test_increment_treats_missing_field_as_zero(self, store):
        await store.set("itineraries/a", {"title": "A"})

        await store.increment("itineraries/a", "likes", 2)
        await store.increment("itineraries/a", "likes", -1)

        assert store.document_data("itineraries/a")["likes"] == 1

    @pytest.mark.asyncio
    async def test_set_with_merge_keeps_other_fields(self, store):
        await store.set("users/alice", {"name": "Alice", "points": 3})
        await store.set("users/alice", {"points": 4}, merge=True)
        assert store.document_data("users/alice") == {"name": "Alice", "points": 4}

    @pytest.mark.asyncio
    async def test_batch_is_all_or_nothing(self, store):
        await store.set("itineraries/a", {"likes": 1})

        batch = store.batch()
        batch.set("users/alice/likedItineraries/a", {"itineraryID": "a"})
        batch.update("itineraries/missing", {"likes": Increment(1)})
        with pytest.raises(DocumentNotFoundError):
            await batch.commit()

        assert store.document_data("users/alice/likedItineraries/a") is None
        assert len(store.commit_log) == 1

    @pytest.mark.asyncio
    async def test_batch_cannot_commit_twice(self, store):
        batch = store.batch().set("users/alice", {"name": "Alice"})
        await batch.commit()
        with pytest.raises(RemoteStoreError):
            await batch.commit()

    @pytest.mark.asyncio
    async def test_injected_write_failure(self, store):
        store.inject_failure("users/alice")
        with pytest.raises(RemoteStoreError):
            await store.set("users/alice/savedItineraries/a", {})

        store.clear_failures()
        await store.set("users/alice/savedItineraries/a", {})
        assert store.document_data("users/alice/savedItineraries/a") == {}

    @pytest.mark.asyncio
    async def test_query_order_and_filter(self, store):
        await store.set("itineraries/old", {"createdAt": NOW - dt.timedelta(days=2), "likes": 5})
        await store.set("itineraries/new", {"createdAt": NOW, "likes": 1})
        await store.set("itineraries/undated", {"likes": 9})

        ordered = await store.get_collection(
            "itineraries", order_by=OrderBy("createdAt", descending=True)
        )
        filtered = await store.get_collection("itineraries", where=[Where("likes", ">=", 5)])

        assert [doc.id for doc in ordered] == ["new", "old", "undated"]
        assert sorted(doc.id for doc in filtered) == ["old", "undated"]

    def test_where_rejects_unknown_operator(self):
        with pytest.raises(ValueError):
            Where("likes", "~", 1)


class TestListeners:
    """Tests for collection listeners."""

    @pytest.mark.asyncio
    async def test_initial_and_follow_up_snapshots(self, store):
        received = []

        async def on_snapshot(snapshot):
            received.append(sorted(doc.id for doc in snapshot))

        store.subscribe("itineraries", on_snapshot)
        await store.drain()
        await store.set("itineraries/a", {"title": "A"})
        await store.drain()

        assert received == [[], ["a"]]

    @pytest.mark.asyncio
    async def test_writes_elsewhere_do_not_notify(self, store):
        received = []

        async def on_snapshot(snapshot):
            received.append(len(snapshot))

        store.subscribe("itineraries", on_snapshot)
        await store.drain()
        await store.set("users/alice", {"name": "Alice"})
        await store.drain()

        assert received == [0]

    @pytest.mark.asyncio
    async def test_removed_listener_gets_nothing_more(self, store):
        received = []

        async def on_snapshot(snapshot):
            received.append(len(snapshot))

        registration = store.subscribe("itineraries", on_snapshot)
        registration.remove()
        registration.remove()
        await store.set("itineraries/a", {"title": "A"})
        await store.drain()

        assert received == []
        assert store.listener_count == 0

    @pytest.mark.asyncio
    async def test_rapid_writes_are_coalesced(self, store):
        received = []

        async def on_snapshot(snapshot):
            received.append(len(snapshot))

        store.subscribe("itineraries", on_snapshot)
        for index in range(5):
            await store.set(f"itineraries/i{index}", {"title": str(index)})
        await store.drain()

        assert received[-1] == 5
        assert len(received) < 6

    @pytest.mark.asyncio
    async def test_read_failure_is_delivered_as_error(self, store):
        received = []

        async def on_snapshot(snapshot):
            received.append(snapshot.error)

        store.inject_failure("itineraries", reads=True)
        store.subscribe("itineraries", on_snapshot)
        await store.drain()

        assert isinstance(received[0], RemoteStoreError)


class TestSqlRemoteStore:
    """Tests for the SQLAlchemy-backed store on SQLite."""

    @pytest.fixture
    def database_url(self, tmp_path):
        return f"sqlite+aiosqlite:///{tmp_path / 'documents.db'}"

    @pytest.mark.asyncio
    async def test_round_trip_with_timestamps(self, database_url):
        engine, sessions = create_engine_and_sessions(database_url, echo=False)
        await init_models(engine)
        store = SqlRemoteStore(sessions, clock=lambda: NOW)
        try:
            await store.set("itineraries/a", {"title": "A", "createdAt": SERVER_TIMESTAMP})

            snapshot = await store.get("itineraries/a")

            assert snapshot.get("title") == "A"
            assert snapshot.get("createdAt") == NOW
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_batch_rolls_back_on_failure(self, database_url):
        engine, sessions = create_engine_and_sessions(database_url, echo=False)
        await init_models(engine)
        store = SqlRemoteStore(sessions, clock=lambda: NOW)
        try:
            await store.set("itineraries/a", {"likes": 1})

            batch = store.batch()
            batch.update("itineraries/a", {"likes": Increment(1)})
            batch.create("itineraries/a", {"likes": 0})
            with pytest.raises(DocumentExistsError):
                await batch.commit()

            assert (await store.get("itineraries/a")).get("likes") == 1
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_collection_query_and_listener(self, database_url):
        engine, sessions = create_engine_and_sessions(database_url, echo=False)
        await init_models(engine)
        store = SqlRemoteStore(sessions, clock=lambda: NOW)
        received = []

        async def on_snapshot(snapshot):
            received.append(sorted(doc.id for doc in snapshot))

        try:
            store.subscribe("itineraries/a/comments", on_snapshot)
            await store.drain()
            await store.set("itineraries/a/comments/c1", {"content": "hi"})
            await store.set("itineraries/b/comments/c2", {"content": "elsewhere"})
            await store.drain()

            assert received[0] == []
            assert received[-1] == ["c1"]
        finally:
            await engine.dispose()


class TestFreshStore:
    """Store construction does not need a running loop."""

    def test_construct_without_loop(self):
        store = InMemoryRemoteStore()
        assert store.listener_count == 0
