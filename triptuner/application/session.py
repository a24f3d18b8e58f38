"""
Application session: builds every cache once and binds them to the auth session.
"""
import logging
from typing import Callable, Optional

from triptuner.application.comments import CommentsViewModel
from triptuner.application.completed_itineraries import CompletedItinerariesManager
from triptuner.application.content_moderation import ContentModerationManager
from triptuner.application.entity_cache import SyncedCache
from triptuner.application.home import HomeViewModel
from triptuner.application.itineraries_manager import ItinerariesManager
from triptuner.application.leaderboard import LeaderboardViewModel
from triptuner.application.liked_itineraries import LikedItinerariesManager
from triptuner.application.profile import ProfileViewModel
from triptuner.application.saved_itineraries import SavedItinerariesManager
from triptuner.auth.service import AccountService
from triptuner.auth.session import AuthSession
from triptuner.domain.models import User
from triptuner.infrastructure.remote_store import RemoteStore

logger = logging.getLogger(__name__)


class AppSession:
    """
    Owns one instance of each cache for the lifetime of the app.

    Consumers receive the caches from here instead of reaching for globals.
    Signing out unsubscribes and clears every cache; signing in reloads every
    cache from scratch.
    """

    def __init__(self, store: RemoteStore, auth: AuthSession):
        self.store = store
        self.auth = auth
        self.accounts = AccountService(store, auth)

        self.liked = LikedItinerariesManager(store, auth)
        self.saved = SavedItinerariesManager(store, auth)
        self.completed = CompletedItinerariesManager(store, auth)
        self.moderation = ContentModerationManager(store, auth)
        self.itineraries = ItinerariesManager(
            store, auth, liked=self.liked, saved=self.saved, completed=self.completed
        )
        self.leaderboard = LeaderboardViewModel(store, auth, self.itineraries)
        self.home = HomeViewModel(self.itineraries, self.moderation)

        self._comment_models: dict[str, CommentsViewModel] = {}
        self._remove_auth_listener: Optional[Callable[[], None]] = None
        self._leaderboard_started = False

    @property
    def caches(self) -> list[SyncedCache]:
        return [
            self.liked,
            self.saved,
            self.completed,
            self.moderation,
            self.itineraries,
            *self._comment_models.values(),
        ]

    def start(self) -> None:
        """Follow the auth session and load everything for the current user."""
        if self._remove_auth_listener is None:
            self._remove_auth_listener = self.auth.on_change(self._on_auth_change)
        self._on_auth_change(self.auth.current_user_id)

    async def close(self) -> None:
        """Stop following auth, cancel every listener and flush pending writes."""
        if self._remove_auth_listener is not None:
            self._remove_auth_listener()
            self._remove_auth_listener = None
        self.leaderboard.stop()
        for cache in self.caches:
            cache.unsubscribe()
        await self.wait_for_pending_writes()

    def _on_auth_change(self, user_id: Optional[str]) -> None:
        if user_id is None:
            logger.info("Signed out, clearing all caches")
            self.leaderboard.reset()
            for cache in self.caches:
                cache.unsubscribe()
            return

        logger.info(f"Loading caches for user {user_id}")
        for cache in self.caches:
            cache.subscribe()
        if self._leaderboard_started:
            self.leaderboard.attach()
            self.leaderboard.schedule_refresh()

    async def start_leaderboard(self) -> None:
        self._leaderboard_started = True
        await self.leaderboard.start()

    def comments_for(self, itinerary_id: str) -> CommentsViewModel:
        """Open (or reuse) the live comment list of an itinerary."""
        model = self._comment_models.get(itinerary_id)
        if model is None:
            model = CommentsViewModel(self.store, self.auth, itinerary_id, moderation=self.moderation)
            self._comment_models[itinerary_id] = model
        if not model.is_subscribed:
            model.subscribe()
        return model

    def close_comments(self, itinerary_id: str) -> None:
        model = self._comment_models.pop(itinerary_id, None)
        if model is not None:
            model.close()

    def profile_for(self, user: User) -> ProfileViewModel:
        return ProfileViewModel(user, self.itineraries, self.saved, self.completed)

    async def wait_for_pending_writes(self) -> None:
        """Wait for background writes of every cache and the resulting pushes."""
        for cache in self.caches:
            await cache.wait_for_pending_writes()
        await self.store.drain()
