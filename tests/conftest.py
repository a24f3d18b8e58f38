"""
Shared fixtures: an in-memory store with a controllable clock, a signed-in
auth session and helpers to seed remote records.
"""
import datetime as dt
from typing import Optional

import pytest

from triptuner.auth.session import AuthSession
from triptuner.infrastructure import paths
from triptuner.infrastructure.memory_store import InMemoryRemoteStore

NOW = dt.datetime(2026, 3, 15, 12, 0, tzinfo=dt.timezone.utc)


class FakeClock:
    """Clock standing in for the server's time."""

    def __init__(self, start: dt.datetime = NOW):
        self.current = start

    def __call__(self) -> dt.datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += dt.timedelta(**kwargs)


class Seeder:
    """Writes records the way other clients would have stored them."""

    def __init__(self, store: InMemoryRemoteStore):
        self.store = store

    async def user(
        self,
        user_id: str,
        name: Optional[str] = None,
        picture: Optional[str] = None,
        **extra,
    ) -> None:
        await self.store.set(paths.user_doc(user_id), {
            "name": name or user_id.title(),
            "handle": f"@{user_id}",
            "email": f"{user_id}@example.com",
            "profileImageURL": picture,
            **extra,
        })

    async def itinerary(
        self,
        itinerary_id: str,
        author_id: str,
        likes: int = 0,
        created_at: Optional[dt.datetime] = None,
        **extra,
    ) -> None:
        await self.store.set(paths.itinerary_doc(itinerary_id), {
            "title": f"Trip {itinerary_id}",
            "description": "A day out",
            "category": "Restaurants",
            "authorID": author_id,
            "authorName": author_id.title(),
            "authorHandle": f"@{author_id}",
            "stops": [],
            "likes": likes,
            "comments": 0,
            "timeEstimate": 2,
            "createdAt": created_at or NOW,
            **extra,
        })

    async def comment(
        self,
        itinerary_id: str,
        comment_id: str,
        author_id: str,
        score: int = 0,
        created_at: Optional[dt.datetime] = None,
        content: str = "Great trip",
    ) -> None:
        await self.store.set(paths.comment_doc(itinerary_id, comment_id), {
            "authorID": author_id,
            "authorName": author_id.title(),
            "authorHandle": f"@{author_id}",
            "itineraryID": itinerary_id,
            "content": content,
            "score": score,
            "createdAt": created_at or NOW,
        })

    async def vote(self, itinerary_id: str, comment_id: str, user_id: str, value: int) -> None:
        await self.store.set(paths.comment_vote_doc(itinerary_id, comment_id, user_id), {
            "userID": user_id,
            "value": value,
            "createdAt": NOW,
        })


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryRemoteStore(clock=clock)


@pytest.fixture
def auth():
    """Session signed in as alice."""
    return AuthSession("alice")


@pytest.fixture
def seed(store):
    return Seeder(store)


@pytest.fixture
def settle(store):
    """Wait until background writes finished and every push was delivered."""
    async def _settle(*caches):
        for _ in range(3):
            for cache in caches:
                await cache.wait_for_pending_writes()
            await store.drain()
    return _settle
