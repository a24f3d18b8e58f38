"""
Liked itineraries: the signed-in user's liked set and the like counters it moves.
"""
import logging
from typing import Optional

from triptuner.application.entity_cache import MembershipCache
from triptuner.auth.session import AuthSession
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import (
    SERVER_TIMESTAMP,
    Increment,
    RemoteStore,
    RemoteStoreError,
)

logger = logging.getLogger(__name__)


class LikedItinerariesManager(MembershipCache):
    """
    Per-user liked set plus optimistic like counts.

    A like writes three records in one batch: the user's own like record, the
    itinerary's like record and the itinerary's `likes` counter. While such a
    batch is in flight the locally computed count overrides whatever count the
    itinerary cache last received; once every write for an itinerary has
    settled the override is dropped and server pushes are authoritative again.
    """

    name = "liked_itineraries"
    collection_name = paths.LIKED_ITINERARIES

    def __init__(self, store: RemoteStore, auth: AuthSession):
        super().__init__(store, auth)
        self._like_counts: dict[str, int] = {}
        self._in_flight: dict[str, int] = {}

    @property
    def liked_ids(self) -> frozenset[str]:
        return self.ids

    @property
    def like_counts(self) -> dict[str, int]:
        """Optimistic counts for itineraries with like writes in flight."""
        return dict(self._like_counts)

    def is_liked(self, itinerary_id: str) -> bool:
        return self.is_member(itinerary_id)

    def like_count(self, itinerary_id: str, default: int) -> int:
        """Optimistic count for `itinerary_id` if one is pending, else `default`."""
        return self._like_counts.get(itinerary_id, default)

    def _reset(self) -> None:
        super()._reset()
        self._like_counts = {}
        self._in_flight = {}

    def toggle_like(self, itinerary_id: str, current_count: int) -> int:
        """
        Like or unlike an itinerary.

        The returned count is computed locally and is provisional: the remote
        writes are still in flight and a later push may correct it.

        Args:
            itinerary_id: Itinerary to toggle
            current_count: Like count currently shown for it

        Returns:
            New like count, never below 0
        """
        user_id = self.auth.current_user_id
        if user_id is None:
            return current_count

        was_liked = itinerary_id in self._ids
        if was_liked:
            new_count = max(0, current_count - 1)
            self._ids.discard(itinerary_id)
        else:
            new_count = current_count + 1
            self._ids.add(itinerary_id)
        self._like_counts[itinerary_id] = new_count
        self._in_flight[itinerary_id] = self._in_flight.get(itinerary_id, 0) + 1
        self._notify()

        batch = self.store.batch()
        user_like = f"{paths.user_collection(user_id, self.collection_name)}/{itinerary_id}"
        itinerary_like = paths.itinerary_like_doc(itinerary_id, user_id)
        if was_liked:
            batch.delete(user_like)
            batch.delete(itinerary_like)
            if current_count <= 0:
                batch.update(paths.itinerary_doc(itinerary_id), {"likes": 0})
            else:
                batch.update(paths.itinerary_doc(itinerary_id), {"likes": Increment(-1)})
        else:
            batch.set(user_like, {"itineraryID": itinerary_id, "likedAt": SERVER_TIMESTAMP})
            batch.set(itinerary_like, {"userID": user_id, "likedAt": SERVER_TIMESTAMP})
            batch.update(paths.itinerary_doc(itinerary_id), {"likes": Increment(1)})

        self._spawn(self._commit_like(batch, itinerary_id, was_liked, current_count, self._generation))
        return new_count

    async def _commit_like(
        self,
        batch,
        itinerary_id: str,
        was_liked: bool,
        previous_count: int,
        generation: int,
    ) -> None:
        try:
            await batch.commit()
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: like toggle for {itinerary_id} failed, rolling back: {e}")
            self.error_message = str(e)
            if not self._is_current(generation):
                return
            if was_liked:
                self._ids.add(itinerary_id)
            else:
                self._ids.discard(itinerary_id)
            self._like_counts[itinerary_id] = previous_count
            self._notify()
            self._settle(itinerary_id)
            return

        self.error_message = None
        if self._is_current(generation):
            self._settle(itinerary_id)

    def _settle(self, itinerary_id: str) -> None:
        remaining = self._in_flight.get(itinerary_id, 1) - 1
        if remaining > 0:
            self._in_flight[itinerary_id] = remaining
            return
        self._in_flight.pop(itinerary_id, None)
        self._like_counts.pop(itinerary_id, None)

    async def recount_likes(self, itinerary_id: str) -> Optional[int]:
        """
        Repair an itinerary's stored `likes` counter from its like records.

        Returns:
            The recomputed count, or None if it could not be stored
        """
        try:
            likes = await self.store.get_collection(paths.itinerary_likes(itinerary_id))
            count = len(likes)
            await self.store.update(paths.itinerary_doc(itinerary_id), {"likes": count})
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: recount for {itinerary_id} failed: {e}")
            return None
        logger.info(f"{self.name}: itinerary {itinerary_id} has {count} likes")
        return count
