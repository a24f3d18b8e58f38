"""
Tests for ItinerariesManager.
"""
import asyncio
import datetime as dt

import pytest
from unittest.mock import patch

from triptuner.application.completed_itineraries import CompletedItinerariesManager
from triptuner.application.itineraries_manager import ItinerariesManager
from triptuner.application.liked_itineraries import LikedItinerariesManager
from triptuner.application.saved_itineraries import SavedItinerariesManager
from triptuner.auth.session import AuthSession
from triptuner.domain.models import Author, Itinerary, ItineraryCategory, Stop

from conftest import NOW


@pytest.fixture
def liked(store, auth):
    return LikedItinerariesManager(store, auth)


@pytest.fixture
def saved(store, auth):
    return SavedItinerariesManager(store, auth)


@pytest.fixture
def completed(store, auth):
    return CompletedItinerariesManager(store, auth)


@pytest.fixture
def manager(store, auth, liked, saved, completed):
    return ItinerariesManager(
        store,
        auth,
        liked=liked,
        saved=saved,
        completed=completed,
        profile_fetch_timeout=1.0,
    )


def new_itinerary(itinerary_id: str, author_id: str = "alice", **overrides) -> Itinerary:
    fields = {
        "id": itinerary_id,
        "title": f"Trip {itinerary_id}",
        "category": ItineraryCategory.ATTRACTIONS,
        "author": Author(id=author_id, name=author_id.title(), handle=f"@{author_id}"),
        "stops": [
            Stop(location_name="Museum", latitude=39.96, longitude=-75.18, order=4),
            Stop(location_name="Steps", latitude=39.96, longitude=-75.18, order=9),
        ],
    }
    fields.update(overrides)
    return Itinerary(**fields)


class TestProjection:
    """Tests for subscribing and merging pushes."""

    @pytest.mark.asyncio
    async def test_newest_first_with_fresh_profile_pictures(self, manager, seed, settle):
        await seed.user("bob", picture="https://img/bob-new.png")
        await seed.user("carol")
        await seed.itinerary("a", "bob", created_at=NOW - dt.timedelta(days=1),
                             authorProfileImageURL="https://img/bob-old.png")
        await seed.itinerary("b", "carol", authorProfileImageURL="https://img/carol-old.png")

        manager.subscribe()
        await settle(manager)

        itineraries = manager.itineraries
        assert [itinerary.id for itinerary in itineraries] == ["b", "a"]
        assert itineraries[1].author.profile_image_url == "https://img/bob-new.png"
        # An empty fresh value keeps the picture the record already had
        assert itineraries[0].author.profile_image_url == "https://img/carol-old.png"

    @pytest.mark.asyncio
    async def test_malformed_records_are_skipped(self, manager, store, seed, settle):
        await seed.itinerary("good", "bob")
        await store.set("itineraries/broken", {"title": "No author or date"})

        manager.subscribe()
        await settle(manager)

        assert [itinerary.id for itinerary in manager.itineraries] == ["good"]

    @pytest.mark.asyncio
    async def test_slow_profile_fetch_times_out(self, store, auth, liked, seed, settle):
        manager = ItinerariesManager(store, auth, liked=liked, profile_fetch_timeout=0.01)
        await seed.itinerary("a", "bob", authorProfileImageURL="https://img/bob.png")
        real_get = store.get

        async def slow_get(path):
            if path.startswith("users/"):
                await asyncio.sleep(1)
            return await real_get(path)

        with patch.object(store, "get", slow_get):
            manager.subscribe()
            await settle(manager)

        assert manager.get("a").author.profile_image_url == "https://img/bob.png"

    @pytest.mark.asyncio
    async def test_projection_follows_pushes(self, manager, seed, settle):
        manager.subscribe()
        await settle(manager)
        assert manager.itineraries == []

        await seed.itinerary("a", "bob")
        await settle(manager)

        assert manager.get("a") is not None

    @pytest.mark.asyncio
    async def test_listener_error_keeps_last_projection(self, manager, store, seed, settle):
        await seed.itinerary("a", "bob")
        manager.subscribe()
        await settle(manager)

        store.inject_failure("itineraries", reads=True)
        await store.set("itineraries/b", {"title": "ignored"})
        await settle(manager)

        assert [itinerary.id for itinerary in manager.itineraries] == ["a"]
        assert manager.error_message is not None

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_updates(self, manager, store, seed, settle):
        await seed.itinerary("a", "bob")
        manager.subscribe()
        await settle(manager)

        manager.unsubscribe()
        await seed.itinerary("b", "bob")
        await settle(manager)

        assert manager.itineraries == []
        assert store.listener_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_before_first_push(self, manager, seed, settle):
        await seed.itinerary("a", "bob")

        manager.subscribe()
        manager.unsubscribe()
        await settle(manager)

        assert manager.itineraries == []

    @pytest.mark.asyncio
    async def test_signed_out_projection_is_empty(self, store, seed, settle):
        auth = AuthSession()
        manager = ItinerariesManager(store, auth, liked=LikedItinerariesManager(store, auth))
        await seed.itinerary("a", "bob")

        manager.subscribe()
        await settle(manager)

        assert manager.itineraries == []
        assert store.listener_count == 0

    @pytest.mark.asyncio
    async def test_itineraries_by_author(self, manager, seed, settle):
        await seed.itinerary("a", "bob")
        await seed.itinerary("b", "carol")
        manager.subscribe()
        await settle(manager)

        assert [itinerary.id for itinerary in manager.itineraries_by_author("carol")] == ["b"]


class TestViewsAndLikes:
    """Tests for read-time joins with the membership caches."""

    @pytest.mark.asyncio
    async def test_views_join_membership_sets(self, manager, liked, saved, completed, store, seed, settle):
        await seed.itinerary("a", "bob")
        await seed.itinerary("b", "bob")
        await store.set("users/alice/likedItineraries/a", {})
        await store.set("users/alice/savedItineraries/b", {})
        await store.set("users/alice/completedItineraries/b", {})
        for cache in (liked, saved, completed, manager):
            cache.subscribe()
        await settle(liked, saved, completed, manager)

        views = {view.id: view for view in manager.views()}

        assert views["a"].is_liked and not views["a"].is_saved
        assert views["b"].is_saved and views["b"].is_completed and not views["b"].is_liked

    @pytest.mark.asyncio
    async def test_saved_flag_tracks_cache_without_push(self, manager, saved, seed, settle):
        await seed.itinerary("a", "bob")
        saved.subscribe()
        manager.subscribe()
        await settle(saved, manager)

        saved.toggle_save("a")

        assert manager.views()[0].is_saved

    @pytest.mark.asyncio
    async def test_local_like_count_wins_until_write_lands(self, manager, liked, store, seed, settle):
        await seed.itinerary("a", "bob", likes=10)
        liked.subscribe()
        manager.subscribe()
        await settle(liked, manager)

        new_count = liked.toggle_like("a", manager.get("a").likes)

        assert new_count == 11
        assert manager.get("a").likes == 11
        assert manager.views()[0].is_liked
        await settle(liked, manager)
        assert manager.get("a").likes == 11
        assert store.document_data("itineraries/a")["likes"] == 11

    @pytest.mark.asyncio
    async def test_failed_like_restores_count(self, manager, liked, store, seed, settle):
        await seed.itinerary("a", "bob", likes=10)
        liked.subscribe()
        manager.subscribe()
        await settle(liked, manager)
        store.inject_failure("itineraries/a")

        liked.toggle_like("a", 10)
        await settle(liked, manager)

        assert manager.get("a").likes == 10
        assert not manager.views()[0].is_liked

    @pytest.mark.asyncio
    async def test_update_like_count(self, manager, seed, settle):
        await seed.itinerary("a", "bob", likes=3)
        manager.subscribe()
        await settle(manager)

        manager.update_like_count("a", -4)

        assert manager.get("a").likes == 0


class TestCreateAndUpdate:
    """Tests for optimistic create and update."""

    @pytest.mark.asyncio
    async def test_create_shows_at_top_and_persists(self, manager, store, seed, settle):
        await seed.itinerary("old", "bob", created_at=NOW - dt.timedelta(days=3))
        manager.subscribe()
        await settle(manager)

        created = manager.create(new_itinerary("fresh", likes=8))

        assert manager.itineraries[0].id == "fresh"
        assert created.likes == 0
        assert [stop.order for stop in created.stops] == [1, 2]
        await settle(manager)
        assert [itinerary.id for itinerary in manager.itineraries] == ["fresh", "old"]
        assert store.document_data("itineraries/fresh")["createdAt"] == NOW

    @pytest.mark.asyncio
    async def test_failed_create_is_removed(self, manager, store, settle):
        manager.subscribe()
        await settle(manager)
        store.inject_failure("itineraries/fresh")

        manager.create(new_itinerary("fresh"))
        assert manager.get("fresh") is not None
        await settle(manager)

        assert manager.get("fresh") is None
        assert "Failed to create" in manager.error_message

    @pytest.mark.asyncio
    async def test_create_requires_sign_in(self, store):
        auth = AuthSession()
        manager = ItinerariesManager(store, auth, liked=LikedItinerariesManager(store, auth))
        assert manager.create(new_itinerary("x")) is None

    @pytest.mark.asyncio
    async def test_update_by_author(self, manager, store, seed, settle):
        await seed.itinerary("a", "alice", likes=5)
        manager.subscribe()
        await settle(manager)

        edited = manager.get("a").model_copy(update={"title": "Renamed", "likes": 0})
        assert manager.update(edited)
        assert manager.get("a").title == "Renamed"
        await settle(manager)

        stored = store.document_data("itineraries/a")
        assert stored["title"] == "Renamed"
        assert stored["likes"] == 5
        assert stored["createdAt"] == NOW

    @pytest.mark.asyncio
    async def test_update_by_other_user_is_refused(self, manager, store, seed, settle):
        await seed.itinerary("a", "bob")
        manager.subscribe()
        await settle(manager)

        edited = manager.get("a").model_copy(update={"title": "Hijacked"})

        assert not manager.update(edited)
        assert manager.get("a").title == "Trip a"

    @pytest.mark.asyncio
    async def test_failed_update_restores_previous(self, manager, store, seed, settle):
        await seed.itinerary("a", "alice")
        manager.subscribe()
        await settle(manager)
        store.inject_failure("itineraries/a")

        manager.update(manager.get("a").model_copy(update={"title": "Renamed"}))
        await settle(manager)

        assert manager.get("a").title == "Trip a"
        assert "Failed to update" in manager.error_message


class TestDelete:
    """Tests for cascade delete."""

    async def seed_tree(self, store, seed):
        await seed.itinerary("a", "alice")
        await seed.comment("a", "c1", "bob")
        await seed.comment("a", "c2", "carol")
        await seed.vote("a", "c1", "carol", 1)
        await seed.vote("a", "c1", "dave", -1)
        for user_id in ("bob", "carol"):
            await store.set(f"itineraries/a/likes/{user_id}", {"userID": user_id})
            await store.set(f"users/{user_id}/likedItineraries/a", {"itineraryID": "a"})

    @pytest.mark.asyncio
    async def test_delete_cascades(self, manager, store, seed, settle):
        await self.seed_tree(store, seed)
        await seed.itinerary("other", "alice")
        manager.subscribe()
        await settle(manager)

        assert await manager.delete("a")

        assert manager.get("a") is None
        for path in (
            "itineraries/a",
            "itineraries/a/comments/c1",
            "itineraries/a/comments/c2",
            "itineraries/a/comments/c1/votes/carol",
            "itineraries/a/comments/c1/votes/dave",
            "itineraries/a/likes/bob",
            "users/carol/likedItineraries/a",
        ):
            assert store.document_data(path) is None
        assert store.document_data("itineraries/other") is not None

    @pytest.mark.asyncio
    async def test_delete_respects_batch_limit(self, store, auth, liked, seed, settle):
        manager = ItinerariesManager(store, auth, liked=liked, max_batch_operations=3)
        await self.seed_tree(store, seed)
        log_start = len(store.commit_log)

        assert await manager.delete("a")

        batches = store.commit_log[log_start:]
        assert all(len(batch) <= 3 for batch in batches)
        assert sum(len(batch) for batch in batches) == 9
        assert batches[-1][-1].path == "itineraries/a"

    @pytest.mark.asyncio
    async def test_delete_by_other_user_is_refused(self, manager, store, seed, settle):
        await seed.itinerary("a", "bob")
        manager.subscribe()
        await settle(manager)

        assert not await manager.delete("a")

        assert manager.get("a") is not None
        assert store.document_data("itineraries/a") is not None

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_itinerary(self, manager, store, seed, settle):
        await seed.itinerary("a", "alice")
        manager.subscribe()
        await settle(manager)
        store.inject_failure("itineraries/a")

        assert not await manager.delete("a")

        assert manager.get("a") is not None
        assert "Failed to delete" in manager.error_message

    @pytest.mark.asyncio
    async def test_partial_delete_keeps_itinerary_record(self, store, auth, liked, seed):
        manager = ItinerariesManager(store, auth, liked=liked, max_batch_operations=2)
        await seed.itinerary("a", "alice")
        await seed.comment("a", "c1", "bob")
        await store.set("itineraries/a/likes/bob", {"userID": "bob"})
        await store.set("users/bob/likedItineraries/a", {"itineraryID": "a"})
        store.inject_failure("users/bob")

        assert not await manager.delete("a")

        assert store.document_data("itineraries/a/comments/c1") is None
        assert store.document_data("itineraries/a") is not None

    @pytest.mark.asyncio
    async def test_delete_of_missing_itinerary(self, manager):
        assert await manager.delete("ghost")
