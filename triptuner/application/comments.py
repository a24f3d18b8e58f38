"""
Comments on one itinerary, with the current user's votes.

Scores come from the server; the current user's own vote is kept locally and
survives re-parses of the comment list. A vote is applied to the local score
immediately and written as one batch: the vote record plus an atomic increment
of the comment score.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional

from triptuner.application.content_moderation import ContentModerationManager
from triptuner.application.entity_cache import SyncedCache
from triptuner.application.profiles import fetch_profile_pictures, resolve_picture
from triptuner.auth.session import AuthSession
from triptuner.config import settings
from triptuner.domain.documents import (
    MalformedDocumentError,
    comment_to_document,
    parse_comment,
    parse_documents,
    parse_user,
    parse_vote,
)
from triptuner.domain.models import Comment, VoteState
from triptuner.domain.schemas import CommentView
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import (
    SERVER_TIMESTAMP,
    Increment,
    ListenerRegistration,
    OrderBy,
    QuerySnapshot,
    RemoteStore,
    RemoteStoreError,
)

logger = logging.getLogger(__name__)


class VoteAction(str, Enum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


def vote_transition(state: VoteState, action: VoteAction) -> tuple[VoteState, int]:
    """
    Apply a vote action to the current user's vote.

    Repeating the vote already cast withdraws it; the opposite vote replaces it.

    Args:
        state: Current vote
        action: Upvote or downvote

    Returns:
        (new vote, score delta)
    """
    target = VoteState.LIKED if action is VoteAction.UPVOTE else VoteState.DISLIKED
    new_state = VoteState.NEUTRAL if state is target else target
    return new_state, new_state.contribution - state.contribution


class CommentsViewModel(SyncedCache):
    """Live comment list of a single itinerary."""

    name = "comments"

    def __init__(
        self,
        store: RemoteStore,
        auth: AuthSession,
        itinerary_id: str,
        moderation: Optional[ContentModerationManager] = None,
        profile_fetch_timeout: Optional[float] = None,
    ):
        super().__init__(store, auth)
        self.itinerary_id = itinerary_id
        self.moderation = moderation
        self.profile_fetch_timeout = profile_fetch_timeout or settings.profile_fetch_timeout_seconds
        self._comments: list[Comment] = []
        self._votes: dict[str, VoteState] = {}
        self._remove_moderation_observer = None
        if moderation is not None:
            self._remove_moderation_observer = moderation.add_observer(self._notify)

    def close(self) -> None:
        """Unsubscribe and detach from the moderation cache."""
        self.unsubscribe()
        if self._remove_moderation_observer is not None:
            self._remove_moderation_observer()
            self._remove_moderation_observer = None

    @property
    def comments(self) -> list[CommentView]:
        """Visible comments, newest first, without blocked authors."""
        views = [
            CommentView(comment=comment, vote=self._votes.get(comment.id, VoteState.NEUTRAL))
            for comment in self._comments
        ]
        if self.moderation is not None:
            views = self.moderation.filter_blocked_content(views, lambda view: view.author_id)
        return sorted(views, key=lambda view: view.comment.created_at, reverse=True)

    def vote_state(self, comment_id: str) -> VoteState:
        return self._votes.get(comment_id, VoteState.NEUTRAL)

    def _find(self, comment_id: str) -> Optional[Comment]:
        for comment in self._comments:
            if comment.id == comment_id:
                return comment
        return None

    # =========================================================================
    # Subscription
    # =========================================================================

    def _reset(self) -> None:
        self._comments = []
        self._votes = {}

    def _open_listeners(self, user_id: str, generation: int) -> list[ListenerRegistration]:
        async def on_snapshot(snapshot: QuerySnapshot) -> None:
            await self._apply_snapshot(snapshot, user_id, generation)

        return [
            self.store.subscribe(
                paths.comments(self.itinerary_id),
                on_snapshot,
                order_by=OrderBy("createdAt", descending=True),
            )
        ]

    async def _apply_snapshot(self, snapshot: QuerySnapshot, user_id: str, generation: int) -> None:
        if not self._is_current(generation):
            return
        if snapshot.error is not None:
            logger.warning(f"{self.name}: listener error on {self.itinerary_id}: {snapshot.error}")
            return

        parsed = parse_documents(snapshot, lambda doc: parse_comment(doc, self.itinerary_id))
        unseen = [comment.id for comment in parsed if comment.id not in self._votes]
        fetched_votes, pictures = await asyncio.gather(
            self._fetch_votes(unseen, user_id),
            fetch_profile_pictures(
                self.store,
                (comment.author.id for comment in parsed),
                self.profile_fetch_timeout,
            ),
        )
        if not self._is_current(generation):
            return

        # Known comments keep the local vote, new ones take the fetched vote
        votes = {}
        for comment in parsed:
            if comment.id in self._votes:
                votes[comment.id] = self._votes[comment.id]
            else:
                votes[comment.id] = fetched_votes.get(comment.id, VoteState.NEUTRAL)

        self._votes = votes
        self._comments = sorted(
            (self._with_picture(comment, pictures) for comment in parsed),
            key=lambda comment: comment.created_at,
            reverse=True,
        )
        self._notify()

    async def _fetch_votes(self, comment_ids: list[str], user_id: str) -> dict[str, VoteState]:
        async def fetch(comment_id: str) -> tuple[str, VoteState]:
            try:
                snapshot = await self.store.get(
                    paths.comment_vote_doc(self.itinerary_id, comment_id, user_id)
                )
            except RemoteStoreError as e:
                logger.warning(f"{self.name}: vote fetch for {comment_id} failed: {e}")
                return comment_id, VoteState.NEUTRAL
            return comment_id, parse_vote(snapshot)

        if not comment_ids:
            return {}
        return dict(await asyncio.gather(*(fetch(comment_id) for comment_id in comment_ids)))

    @staticmethod
    def _with_picture(comment: Comment, pictures: dict[str, Optional[str]]) -> Comment:
        author = comment.author
        picture = resolve_picture(pictures.get(author.id), author.profile_image_url)
        if picture == author.profile_image_url:
            return comment
        return comment.model_copy(update={
            "author": author.model_copy(update={"profile_image_url": picture}),
        })

    # =========================================================================
    # Votes
    # =========================================================================

    def upvote(self, comment_id: str) -> Optional[CommentView]:
        return self._vote(comment_id, VoteAction.UPVOTE)

    def downvote(self, comment_id: str) -> Optional[CommentView]:
        return self._vote(comment_id, VoteAction.DOWNVOTE)

    def _vote(self, comment_id: str, action: VoteAction) -> Optional[CommentView]:
        """
        Apply a vote locally and write it in the background.

        Returns:
            The comment as now shown, or None if nobody is signed in or the
            comment is unknown
        """
        user_id = self.auth.current_user_id
        comment = self._find(comment_id)
        if user_id is None or comment is None:
            return None

        old_state = self._votes.get(comment_id, VoteState.NEUTRAL)
        new_state, delta = vote_transition(old_state, action)
        self._votes[comment_id] = new_state
        self._set_score(comment_id, comment.score + delta)
        self._notify()

        vote_path = paths.comment_vote_doc(self.itinerary_id, comment_id, user_id)
        batch = self.store.batch()
        if new_state is VoteState.NEUTRAL:
            batch.delete(vote_path)
        else:
            batch.set(vote_path, {
                "userID": user_id,
                "value": new_state.contribution,
                "createdAt": SERVER_TIMESTAMP,
            })
        batch.update(paths.comment_doc(self.itinerary_id, comment_id), {"score": Increment(delta)})

        self._spawn(self._commit_vote(batch, comment_id, old_state, new_state, delta, self._generation))
        return CommentView(comment=self._find(comment_id), vote=new_state)

    async def _commit_vote(
        self,
        batch,
        comment_id: str,
        old_state: VoteState,
        new_state: VoteState,
        delta: int,
        generation: int,
    ) -> None:
        try:
            await batch.commit()
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: vote on {comment_id} failed, rolling back: {e}")
            self.error_message = str(e)
            if not self._is_current(generation) or self._votes.get(comment_id) is not new_state:
                return
            self._votes[comment_id] = old_state
            comment = self._find(comment_id)
            if comment is not None:
                self._set_score(comment_id, comment.score - delta)
            self._notify()
            return
        self.error_message = None

    def _set_score(self, comment_id: str, score: int) -> None:
        self._comments = [
            comment.model_copy(update={"score": score}) if comment.id == comment_id else comment
            for comment in self._comments
        ]

    # =========================================================================
    # Comment CRUD
    # =========================================================================

    async def add_comment(self, content: str) -> Optional[Comment]:
        """
        Post a comment as the signed-in user.

        The comment appears once the listener delivers it. The itinerary's
        comment counter is recomputed afterwards.

        Returns:
            The stored comment, or None if it could not be posted
        """
        user_id = self.auth.current_user_id
        content = content.strip()
        if user_id is None or not content:
            return None

        try:
            author = parse_user(await self.store.get(paths.user_doc(user_id))).as_author()
        except (RemoteStoreError, MalformedDocumentError) as e:
            logger.warning(f"{self.name}: cannot load author {user_id} for comment: {e}")
            self.error_message = f"Failed to add comment: {e}"
            return None

        comment = Comment(author=author, itinerary_id=self.itinerary_id, content=content)
        try:
            await self.store.set(paths.comment_doc(self.itinerary_id, comment.id), {
                **comment_to_document(comment),
                "createdAt": SERVER_TIMESTAMP,
            })
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: add comment on {self.itinerary_id} failed: {e}")
            self.error_message = f"Failed to add comment: {e}"
            return None

        self.error_message = None
        self._votes.setdefault(comment.id, VoteState.NEUTRAL)
        await self._sync_comment_count()
        return comment

    async def delete_comment(self, comment_id: str) -> bool:
        """
        Delete one of the signed-in user's own comments together with its votes.

        Returns:
            False if the comment is unknown, owned by someone else, or the
            delete failed
        """
        user_id = self.auth.current_user_id
        comment = self._find(comment_id)
        if user_id is None or comment is None:
            return False
        if comment.author.id != user_id:
            logger.warning(f"{self.name}: user {user_id} may not delete comment {comment_id}")
            return False

        try:
            votes = await self.store.get_collection(paths.comment_votes(self.itinerary_id, comment_id))
            batch = self.store.batch()
            for vote in votes:
                batch.delete(vote.path)
            batch.delete(paths.comment_doc(self.itinerary_id, comment_id))
            await batch.commit()
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: delete of comment {comment_id} failed: {e}")
            self.error_message = f"Failed to delete comment: {e}"
            return False

        self.error_message = None
        self._comments = [item for item in self._comments if item.id != comment_id]
        self._votes.pop(comment_id, None)
        self._notify()
        await self._sync_comment_count()
        return True

    async def _sync_comment_count(self) -> None:
        try:
            snapshot = await self.store.get_collection(paths.comments(self.itinerary_id))
            await self.store.update(paths.itinerary_doc(self.itinerary_id), {"comments": len(snapshot)})
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: comment count for {self.itinerary_id} not updated: {e}")
