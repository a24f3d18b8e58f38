"""
Tests for the home feed and profile projections.
"""
import datetime as dt

import pytest

from triptuner.application.completed_itineraries import CompletedItinerariesManager
from triptuner.application.content_moderation import ContentModerationManager
from triptuner.application.home import HomeViewModel
from triptuner.application.itineraries_manager import ItinerariesManager
from triptuner.application.liked_itineraries import LikedItinerariesManager
from triptuner.application.profile import ProfileViewModel
from triptuner.application.saved_itineraries import SavedItinerariesManager
from triptuner.domain.models import (
    Achievement,
    ItineraryCategory,
    PhiladelphiaRegion,
    TimeEstimate,
    User,
)

from conftest import NOW


@pytest.fixture
def caches(store, auth):
    liked = LikedItinerariesManager(store, auth)
    saved = SavedItinerariesManager(store, auth)
    completed = CompletedItinerariesManager(store, auth)
    moderation = ContentModerationManager(store, auth)
    itineraries = ItinerariesManager(
        store, auth, liked=liked, saved=saved, completed=completed, profile_fetch_timeout=1.0
    )
    return liked, saved, completed, moderation, itineraries


async def subscribe_all(caches, settle):
    for cache in caches:
        cache.subscribe()
    await settle(*caches)


async def seed_feed(seed):
    await seed.itinerary("cafe", "bob", likes=3, category="Cafes", region="Fishtown",
                         created_at=NOW - dt.timedelta(hours=1), timeEstimate=2)
    await seed.itinerary("food", "carol", likes=9, category="Restaurants", region="Old City",
                         created_at=NOW - dt.timedelta(hours=2), timeEstimate=5,
                         stops=[{"locationName": "Reading Terminal Market", "latitude": 39.95,
                                 "longitude": -75.15, "order": 1}])
    await seed.itinerary("art", "alice", likes=5, category="Attractions",
                         created_at=NOW - dt.timedelta(hours=3), timeEstimate=3)


class TestHomeViewModel:
    """Tests for HomeViewModel filtering."""

    @pytest.mark.asyncio
    async def test_category_filter(self, caches, seed, settle):
        await seed_feed(seed)
        await subscribe_all(caches, settle)
        home = HomeViewModel(caches[4], caches[3])

        home.select_category(ItineraryCategory.CAFES)

        assert [view.id for view in home.filtered_itineraries] == ["cafe"]

    @pytest.mark.asyncio
    async def test_all_category_keeps_feed_order(self, caches, seed, settle):
        await seed_feed(seed)
        await subscribe_all(caches, settle)
        home = HomeViewModel(caches[4], caches[3])

        assert [view.id for view in home.filtered_itineraries] == ["cafe", "food", "art"]

    @pytest.mark.asyncio
    async def test_region_and_time_filters(self, caches, seed, settle):
        await seed_feed(seed)
        await subscribe_all(caches, settle)
        home = HomeViewModel(caches[4], caches[3])

        home.select_region(PhiladelphiaRegion.OLD_CITY)
        assert [view.id for view in home.filtered_itineraries] == ["food"]

        home.select_region(PhiladelphiaRegion.ALL)
        home.select_time(TimeEstimate.MEDIUM)
        assert [view.id for view in home.filtered_itineraries] == ["art"]

    @pytest.mark.asyncio
    async def test_search_matches_stops_and_authors(self, caches, seed, settle):
        await seed_feed(seed)
        await subscribe_all(caches, settle)
        home = HomeViewModel(caches[4], caches[3])

        home.search_text = "terminal"
        assert [view.id for view in home.filtered_itineraries] == ["food"]

        home.search_text = "@BOB"
        assert [view.id for view in home.filtered_itineraries] == ["cafe"]

    @pytest.mark.asyncio
    async def test_top_itineraries_by_likes(self, caches, seed, settle):
        await seed_feed(seed)
        await subscribe_all(caches, settle)
        home = HomeViewModel(caches[4], caches[3])

        assert [view.id for view in home.top_itineraries] == ["food", "art", "cafe"]

    @pytest.mark.asyncio
    async def test_blocked_authors_hidden(self, caches, seed, settle):
        await seed_feed(seed)
        await subscribe_all(caches, settle)
        home = HomeViewModel(caches[4], caches[3])

        caches[3].block_user("carol", "Carol", "@carol")

        assert "food" not in [view.id for view in home.filtered_itineraries]
        assert "food" not in [view.id for view in home.top_itineraries]


class TestProfileViewModel:
    """Tests for ProfileViewModel."""

    @pytest.mark.asyncio
    async def test_lists_and_counts(self, caches, store, seed, settle):
        await seed_feed(seed)
        await store.set("users/alice/savedItineraries/food", {})
        await store.set("users/alice/completedItineraries/cafe", {})
        await store.set("users/alice/completedItineraries/food", {})
        await subscribe_all(caches, settle)
        user = User(
            id="alice",
            name="Alice",
            handle="@alice",
            achievements=[
                Achievement(title="Explorer", description="", emoji="🧭", unlocked_at=NOW),
                Achievement(title="Critic", description="", emoji="📝"),
            ],
        )
        _, saved, completed, _, itineraries = caches

        profile = ProfileViewModel(user, itineraries, saved, completed)

        assert [itinerary.id for itinerary in profile.saved_itineraries] == ["food"]
        assert [itinerary.id for itinerary in profile.completed_itineraries] == ["cafe", "food"]
        assert profile.trips_completed == 2
        assert [itinerary.id for itinerary in profile.authored_itineraries] == ["art"]
        assert profile.total_likes_received == 5
        assert [achievement.title for achievement in profile.unlocked_achievements] == ["Explorer"]
