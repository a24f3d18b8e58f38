"""
Content moderation: blocked users, content filtering and flag submission.
"""
import logging
from typing import Callable, Iterable, Optional, TypeVar

from triptuner.application.entity_cache import MembershipCache
from triptuner.auth.session import AuthSession
from triptuner.config import settings
from triptuner.domain.models import FlagReason
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import SERVER_TIMESTAMP, RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

FLAG_STATUS_PENDING = "pending"


class ContentModerationManager(MembershipCache):
    """
    Per-user blocked-user set plus flagging.

    Blocking is optimistic: the blocked author's content disappears from every
    filtered view immediately, and reappears if the block cannot be stored.
    """

    name = "content_moderation"
    collection_name = paths.BLOCKED_USERS

    def __init__(
        self,
        store: RemoteStore,
        auth: AuthSession,
        flag_preview_length: Optional[int] = None,
    ):
        super().__init__(store, auth)
        self.flag_preview_length = flag_preview_length or settings.flag_preview_length

    @property
    def blocked_ids(self) -> frozenset[str]:
        return self.ids

    def is_user_blocked(self, user_id: str) -> bool:
        return self.is_member(user_id)

    # =========================================================================
    # Blocking
    # =========================================================================

    def block_user(self, user_id: str, user_name: str, user_handle: str) -> bool:
        """
        Block `user_id`. A moderation notification is filed once the block is stored.

        Returns:
            False if nobody is signed in, the user blocks themselves, or the
            user is already blocked
        """
        blocker_id = self.auth.current_user_id
        if blocker_id is None:
            return False
        if user_id == blocker_id:
            logger.warning(f"User {blocker_id} tried to block themselves")
            return False

        async def notify() -> None:
            await self._notify_developers_of_block(blocker_id, user_id, user_name, user_handle)

        return self._set_membership(
            user_id,
            True,
            record={
                "blockedUserID": user_id,
                "blockedUserName": user_name,
                "blockedUserHandle": user_handle,
                "blockedAt": SERVER_TIMESTAMP,
            },
            on_success=notify,
        )

    def unblock_user(self, user_id: str) -> bool:
        return self._set_membership(user_id, False)

    async def _notify_developers_of_block(
        self,
        blocked_by: str,
        blocked_user_id: str,
        blocked_user_name: str,
        blocked_user_handle: str,
    ) -> None:
        """File a review record for the moderation team. Failures are only logged."""
        try:
            blocker = await self.store.get(paths.user_doc(blocked_by))
            await self.store.add(paths.DEVELOPER_NOTIFICATIONS, {
                "type": "user_blocked",
                "blockedBy": blocked_by,
                "blockerName": blocker.get("name", "Unknown"),
                "blockerHandle": blocker.get("handle", "@unknown"),
                "blockedUserID": blocked_user_id,
                "blockedUserName": blocked_user_name,
                "blockedUserHandle": blocked_user_handle,
                "createdAt": SERVER_TIMESTAMP,
                "reviewed": False,
            })
        except RemoteStoreError as e:
            logger.warning(f"Failed to file block notification for {blocked_user_id}: {e}")
            return
        logger.info(f"Moderation team notified of block of {blocked_user_id}")

    # =========================================================================
    # Filtering
    # =========================================================================

    def filter_blocked_content(
        self,
        items: Iterable[T],
        author_id: Callable[[T], str],
    ) -> list[T]:
        """
        Drop items whose author is blocked, keeping the input order.

        Args:
            items: Content items
            author_id: Accessor returning an item's author ID

        Returns:
            Items by authors that are not blocked
        """
        blocked = self._ids
        return [item for item in items if author_id(item) not in blocked]

    # =========================================================================
    # Flagging
    # =========================================================================

    async def flag_itinerary(
        self,
        itinerary_id: str,
        reason: FlagReason,
        additional_info: Optional[str] = None,
    ) -> Optional[str]:
        """
        Flag an itinerary for review with a snapshot of its current author and title.

        Returns:
            ID of the flag record, or None if nothing was filed
        """
        flagged_by = self.auth.current_user_id
        if flagged_by is None:
            return None

        try:
            snapshot = await self.store.get(paths.itinerary_doc(itinerary_id))
        except RemoteStoreError as e:
            logger.warning(f"Error fetching itinerary {itinerary_id} for flagging: {e}")
            return None
        author_id = snapshot.get("authorID")
        title = snapshot.get("title")
        if not author_id or not title:
            logger.warning(f"Itinerary {itinerary_id} missing or incomplete, not flagged")
            return None

        return await self._file_flag({
            "contentType": "itinerary",
            "contentID": itinerary_id,
            "contentTitle": title,
            "authorID": author_id,
            "authorName": snapshot.get("authorName") or "Unknown",
            "authorHandle": snapshot.get("authorHandle") or "@unknown",
            "flaggedBy": flagged_by,
            "reason": reason.value,
            "additionalInfo": additional_info,
            "flaggedAt": SERVER_TIMESTAMP,
            "status": FLAG_STATUS_PENDING,
        })

    async def flag_comment(
        self,
        comment_id: str,
        itinerary_id: str,
        reason: FlagReason,
        additional_info: Optional[str] = None,
    ) -> Optional[str]:
        """
        Flag a comment for review with a preview of its content at flag time.

        Returns:
            ID of the flag record, or None if nothing was filed
        """
        flagged_by = self.auth.current_user_id
        if flagged_by is None:
            return None

        try:
            snapshot = await self.store.get(paths.comment_doc(itinerary_id, comment_id))
        except RemoteStoreError as e:
            logger.warning(f"Error fetching comment {comment_id} for flagging: {e}")
            return None
        author_id = snapshot.get("authorID")
        content = snapshot.get("content")
        if not author_id or not content:
            logger.warning(f"Comment {comment_id} missing or incomplete, not flagged")
            return None

        return await self._file_flag({
            "contentType": "comment",
            "contentID": comment_id,
            "itineraryID": itinerary_id,
            "contentPreview": content[:self.flag_preview_length],
            "authorID": author_id,
            "authorName": snapshot.get("authorName") or "Unknown",
            "authorHandle": snapshot.get("authorHandle") or "@unknown",
            "flaggedBy": flagged_by,
            "reason": reason.value,
            "additionalInfo": additional_info,
            "flaggedAt": SERVER_TIMESTAMP,
            "status": FLAG_STATUS_PENDING,
        })

    async def _file_flag(self, record: dict) -> Optional[str]:
        try:
            flag_id = await self.store.add(paths.FLAGS, record)
        except RemoteStoreError as e:
            logger.warning(f"Error flagging {record['contentType']} {record['contentID']}: {e}")
            self.error_message = str(e)
            return None
        logger.info(f"Flagged {record['contentType']} {record['contentID']} as {record['reason']}")
        return flag_id
