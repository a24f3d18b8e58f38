"""
Account service - user directory writes that sit next to authentication.
"""
import logging
from typing import Optional

from triptuner.auth.handles import HandleRegistry, HandleReservationError, display_handle
from triptuner.auth.session import AuthSession
from triptuner.domain.documents import parse_user, user_to_document
from triptuner.domain.models import User
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import SERVER_TIMESTAMP, RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)


class AccountService:
    """Service class for user account operations."""

    def __init__(
        self,
        store: RemoteStore,
        auth: AuthSession,
        handles: Optional[HandleRegistry] = None,
    ):
        self.store = store
        self.auth = auth
        self.handles = handles or HandleRegistry(store)

    async def register(
        self,
        user_id: str,
        name: str,
        handle: str,
        email: str,
        year: Optional[str] = None,
    ) -> User:
        """
        Create the user record for a freshly authenticated account.

        The handle is reserved first, the user record written second, and the
        reservation confirmed last. If the user write fails the reservation is
        released again; if the confirmation fails the user record is deleted
        as well.

        Args:
            user_id: Auth subject of the new account
            name: Display name
            handle: Requested handle, with or without a leading '@'
            email: Email address
            year: Optional graduation year

        Returns:
            The created User

        Raises:
            HandleError: If the handle is invalid or taken
            HandleReservationError: If the reservation lapsed before confirmation
            RemoteStoreError: If the user record could not be written
        """
        await self.handles.reserve(handle, user_id)

        user = User(
            id=user_id,
            name=name.strip(),
            handle=display_handle(handle),
            email=email.strip().lower(),
            year=year,
        )
        try:
            await self.store.set(paths.user_doc(user_id), {
                **user_to_document(user),
                "createdAt": SERVER_TIMESTAMP,
            })
        except RemoteStoreError as e:
            logger.warning(f"User record write failed for {user_id}, releasing handle: {e}")
            await self.handles.abort(handle, user_id)
            raise

        try:
            await self.handles.finalize(handle, user_id)
        except (HandleReservationError, RemoteStoreError) as e:
            logger.warning(f"Handle confirmation failed for {user_id}, rolling back sign-up: {e}")
            await self._rollback_registration(handle, user_id)
            raise

        logger.info(f"Registered user {user_id} as {user.handle}")
        return user

    async def _rollback_registration(self, handle: str, user_id: str) -> None:
        try:
            await self.store.delete(paths.user_doc(user_id))
            await self.handles.abort(handle, user_id)
        except RemoteStoreError as e:
            logger.error(f"Could not roll back sign-up of {user_id}: {e}")

    async def get_user(self, user_id: str) -> Optional[User]:
        snapshot = await self.store.get(paths.user_doc(user_id))
        if not snapshot.exists:
            return None
        return parse_user(snapshot)

    async def current_user(self) -> Optional[User]:
        if not self.auth.is_authenticated:
            return None
        return await self.get_user(self.auth.current_user_id)

    async def update_profile_picture(self, url: Optional[str]) -> bool:
        """
        Store a new profile picture URL for the signed-in user.

        Caches pick the new value up on their next merge.

        Returns:
            True on success
        """
        user_id = self.auth.current_user_id
        if user_id is None:
            return False
        try:
            await self.store.update(paths.user_doc(user_id), {"profileImageURL": url})
        except RemoteStoreError as e:
            logger.warning(f"Failed to update profile picture for {user_id}: {e}")
            return False
        return True
