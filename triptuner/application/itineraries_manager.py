"""
Canonical cache of all itineraries.

Every push of the itineraries collection is parsed, merged with the authors'
current profile pictures and the pending like counts, and only then published.
Consumers therefore observe at most one complete projection per push.
"""
import logging
from typing import Optional

from triptuner.application.completed_itineraries import CompletedItinerariesManager
from triptuner.application.entity_cache import SyncedCache
from triptuner.application.liked_itineraries import LikedItinerariesManager
from triptuner.application.profiles import fetch_profile_pictures, resolve_picture
from triptuner.application.saved_itineraries import SavedItinerariesManager
from triptuner.auth.session import AuthSession
from triptuner.config import settings
from triptuner.domain.documents import itinerary_to_document, parse_documents, parse_itinerary
from triptuner.domain.models import Itinerary, renumber_stops
from triptuner.domain.schemas import ItineraryView
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import (
    SERVER_TIMESTAMP,
    ListenerRegistration,
    OrderBy,
    QuerySnapshot,
    RemoteStore,
    RemoteStoreError,
)

logger = logging.getLogger(__name__)

# Counters and creation time are owned by other flows, never by an edit
_UPDATE_EXCLUDED_FIELDS = ("likes", "comments", "createdAt")


class ItinerariesManager(SyncedCache):
    """
    Cache of the whole itineraries collection, newest first.

    Creates and edits are applied locally first and rolled back if the write
    fails. Deletes cascade through the itinerary's comments, votes and likes
    and only take effect locally once the server confirmed them.
    """

    name = "itineraries"

    def __init__(
        self,
        store: RemoteStore,
        auth: AuthSession,
        liked: LikedItinerariesManager,
        saved: Optional[SavedItinerariesManager] = None,
        completed: Optional[CompletedItinerariesManager] = None,
        profile_fetch_timeout: Optional[float] = None,
        max_batch_operations: Optional[int] = None,
    ):
        super().__init__(store, auth)
        self.liked = liked
        self.saved = saved
        self.completed = completed
        self.profile_fetch_timeout = profile_fetch_timeout or settings.profile_fetch_timeout_seconds
        self.max_batch_operations = max_batch_operations or settings.max_batch_operations
        self._itineraries: list[Itinerary] = []
        self._pending_creates: dict[str, Itinerary] = {}

        self.liked.add_observer(self._on_likes_changed)
        for membership in (saved, completed):
            if membership is not None:
                membership.add_observer(self._notify)

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def itineraries(self) -> list[Itinerary]:
        return list(self._itineraries)

    def get(self, itinerary_id: str) -> Optional[Itinerary]:
        for itinerary in self._itineraries:
            if itinerary.id == itinerary_id:
                return itinerary
        return None

    def itineraries_by_author(self, user_id: str) -> list[Itinerary]:
        return [itinerary for itinerary in self._itineraries if itinerary.author.id == user_id]

    def views(self) -> list[ItineraryView]:
        """Itineraries joined with the current user's liked, saved and completed sets."""
        return [self._view(itinerary) for itinerary in self._itineraries]

    def _view(self, itinerary: Itinerary) -> ItineraryView:
        likes = self.liked.like_count(itinerary.id, default=itinerary.likes)
        if likes != itinerary.likes:
            itinerary = itinerary.model_copy(update={"likes": likes})
        return ItineraryView(
            itinerary=itinerary,
            is_liked=self.liked.is_liked(itinerary.id),
            is_saved=self.saved.is_saved(itinerary.id) if self.saved else False,
            is_completed=self.completed.is_completed(itinerary.id) if self.completed else False,
        )

    # =========================================================================
    # Subscription
    # =========================================================================

    def _reset(self) -> None:
        self._itineraries = []
        self._pending_creates = {}

    def _open_listeners(self, user_id: str, generation: int) -> list[ListenerRegistration]:
        async def on_snapshot(snapshot: QuerySnapshot) -> None:
            await self._apply_snapshot(snapshot, generation)

        return [
            self.store.subscribe(
                paths.ITINERARIES,
                on_snapshot,
                order_by=OrderBy("createdAt", descending=True),
            )
        ]

    async def _apply_snapshot(self, snapshot: QuerySnapshot, generation: int) -> None:
        if not self._is_current(generation):
            return
        if snapshot.error is not None:
            logger.warning(f"{self.name}: listener error, keeping last projection: {snapshot.error}")
            self.error_message = str(snapshot.error)
            return

        parsed = parse_documents(snapshot, parse_itinerary)
        pictures = await fetch_profile_pictures(
            self.store,
            (itinerary.author.id for itinerary in parsed),
            self.profile_fetch_timeout,
        )
        # A newer push or an unsubscribe happened while the fetches ran
        if not self._is_current(generation):
            return

        merged = [self._merge(itinerary, pictures) for itinerary in parsed]
        known_ids = {itinerary.id for itinerary in merged}
        unconfirmed = [
            itinerary for itinerary_id, itinerary in self._pending_creates.items()
            if itinerary_id not in known_ids
        ]
        self._itineraries = unconfirmed + merged
        self._notify()

    def _merge(self, itinerary: Itinerary, pictures: dict[str, Optional[str]]) -> Itinerary:
        author = itinerary.author
        picture = resolve_picture(pictures.get(author.id), author.profile_image_url)
        likes = self.liked.like_count(itinerary.id, default=itinerary.likes)
        return itinerary.model_copy(update={
            "author": author.model_copy(update={"profile_image_url": picture}),
            "likes": likes,
        })

    def _on_likes_changed(self) -> None:
        for itinerary_id, count in self.liked.like_counts.items():
            self._replace_likes(itinerary_id, count)
        self._notify()

    # =========================================================================
    # Mutations
    # =========================================================================

    def update_like_count(self, itinerary_id: str, new_count: int) -> None:
        """Set the like counter of a cached itinerary (local projection only)."""
        if self._replace_likes(itinerary_id, new_count):
            self._notify()

    def _replace_likes(self, itinerary_id: str, new_count: int) -> bool:
        for index, itinerary in enumerate(self._itineraries):
            if itinerary.id == itinerary_id:
                if itinerary.likes != max(0, new_count):
                    self._itineraries[index] = itinerary.model_copy(update={"likes": max(0, new_count)})
                    return True
                return False
        return False

    def create(self, itinerary: Itinerary) -> Optional[Itinerary]:
        """
        Add a new itinerary. It is shown at the top immediately and removed
        again if the write fails.

        Returns:
            The itinerary as cached, or None if nobody is signed in
        """
        if self.auth.current_user_id is None:
            return None

        itinerary = itinerary.model_copy(update={
            "stops": renumber_stops(itinerary.stops),
            "likes": 0,
            "comments": 0,
        })
        self._pending_creates[itinerary.id] = itinerary
        self._itineraries.insert(0, itinerary)
        self._notify()

        self._spawn(self._persist_create(itinerary, self._generation))
        return itinerary

    async def _persist_create(self, itinerary: Itinerary, generation: int) -> None:
        document = {**itinerary_to_document(itinerary), "createdAt": SERVER_TIMESTAMP}
        try:
            await self.store.create(paths.itinerary_doc(itinerary.id), document)
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: create of {itinerary.id} failed, removing it: {e}")
            self.error_message = f"Failed to create itinerary: {e}"
            if self._is_current(generation):
                self._pending_creates.pop(itinerary.id, None)
                self._itineraries = [item for item in self._itineraries if item.id != itinerary.id]
                self._notify()
            return

        self.error_message = None
        if self._is_current(generation):
            self._pending_creates.pop(itinerary.id, None)
        logger.info(f"{self.name}: created itinerary {itinerary.id}")

    def update(self, itinerary: Itinerary) -> bool:
        """
        Edit an itinerary owned by the signed-in user.

        The edit is shown immediately; if the write fails the previous version
        is restored.

        Returns:
            False if the itinerary is unknown or not owned by the current user
        """
        user_id = self.auth.current_user_id
        previous = self.get(itinerary.id)
        if user_id is None or previous is None:
            return False
        if previous.author.id != user_id:
            logger.warning(f"{self.name}: user {user_id} may not edit itinerary {itinerary.id}")
            return False

        edited = itinerary.model_copy(update={
            "author": previous.author,
            "stops": renumber_stops(itinerary.stops),
            "likes": previous.likes,
            "comments": previous.comments,
            "created_at": previous.created_at,
        })
        self._swap(previous.id, edited)
        self._notify()

        self._spawn(self._persist_update(previous, edited, self._generation))
        return True

    async def _persist_update(self, previous: Itinerary, edited: Itinerary, generation: int) -> None:
        fields = {
            key: value for key, value in itinerary_to_document(edited).items()
            if key not in _UPDATE_EXCLUDED_FIELDS
        }
        try:
            await self.store.update(paths.itinerary_doc(edited.id), fields)
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: update of {edited.id} failed, restoring previous version: {e}")
            self.error_message = f"Failed to update itinerary: {e}"
            # Only undo our own edit, not a newer push or edit
            if self._is_current(generation) and self.get(edited.id) is edited:
                self._swap(edited.id, previous)
                self._notify()
            return
        self.error_message = None

    def _swap(self, itinerary_id: str, replacement: Itinerary) -> None:
        self._itineraries = [
            replacement if item.id == itinerary_id else item for item in self._itineraries
        ]

    async def delete(self, itinerary_id: str) -> bool:
        """
        Delete an itinerary together with its comments, votes and likes.

        Writes are grouped in batches of at most `max_batch_operations`, with
        the itinerary record itself in the final batch. The local projection
        only changes once every batch committed.

        Returns:
            True if the itinerary no longer exists on the server
        """
        user_id = self.auth.current_user_id
        if user_id is None:
            return False

        try:
            snapshot = await self.store.get(paths.itinerary_doc(itinerary_id))
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: could not read itinerary {itinerary_id} for delete: {e}")
            self.error_message = f"Failed to delete itinerary: {e}"
            return False
        if snapshot.exists and snapshot.get("authorID") != user_id:
            logger.warning(f"{self.name}: user {user_id} may not delete itinerary {itinerary_id}")
            return False

        if snapshot.exists:
            try:
                doc_paths = await self._cascade_paths(itinerary_id)
            except RemoteStoreError as e:
                logger.warning(f"{self.name}: could not list children of {itinerary_id}: {e}")
                self.error_message = f"Failed to delete itinerary: {e}"
                return False
            if not await self._delete_in_batches(itinerary_id, doc_paths):
                return False

        self.error_message = None
        self._pending_creates.pop(itinerary_id, None)
        self._itineraries = [item for item in self._itineraries if item.id != itinerary_id]
        self._notify()
        logger.info(f"{self.name}: deleted itinerary {itinerary_id}")
        return True

    async def _cascade_paths(self, itinerary_id: str) -> list[str]:
        """Every document removed with the itinerary, the itinerary itself last."""
        doc_paths = []
        comments = await self.store.get_collection(paths.comments(itinerary_id))
        for comment in comments:
            votes = await self.store.get_collection(paths.comment_votes(itinerary_id, comment.id))
            doc_paths.extend(vote.path for vote in votes)
            doc_paths.append(comment.path)

        likes = await self.store.get_collection(paths.itinerary_likes(itinerary_id))
        for like in likes:
            doc_paths.append(like.path)
            # Like records are keyed by the liking user's ID
            doc_paths.append(
                f"{paths.user_collection(like.id, paths.LIKED_ITINERARIES)}/{itinerary_id}"
            )

        doc_paths.append(paths.itinerary_doc(itinerary_id))
        return doc_paths

    async def _delete_in_batches(self, itinerary_id: str, doc_paths: list[str]) -> bool:
        size = self.max_batch_operations
        chunks = [doc_paths[start:start + size] for start in range(0, len(doc_paths), size)]
        for index, chunk in enumerate(chunks):
            batch = self.store.batch()
            for path in chunk:
                batch.delete(path)
            try:
                await batch.commit()
            except RemoteStoreError as e:
                if index == 0:
                    logger.warning(f"{self.name}: delete of {itinerary_id} failed, nothing removed: {e}")
                else:
                    deleted = sum(len(done) for done in chunks[:index])
                    logger.error(
                        f"{self.name}: delete of {itinerary_id} partially applied, "
                        f"{deleted} of {len(doc_paths)} records removed: {e}"
                    )
                self.error_message = f"Failed to delete itinerary: {e}"
                return False
        return True
