"""
Unique handle registry.

Handles are reserved in two phases. A reservation record keyed by the
normalized handle is written in the PENDING state before the user record
exists, then CONFIRMED once the account is in place. A pending reservation
expires after a TTL so an abandoned sign-up never locks a handle forever.
"""
import datetime as dt
import logging
import re
from enum import Enum
from typing import Optional

from triptuner.config import settings
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    RemoteStore,
    RemoteStoreError,
    Where,
)

logger = logging.getLogger(__name__)

HANDLE_PATTERN = re.compile(r"^[a-z0-9_.]{3,30}$")


class HandleError(Exception):
    """Base exception for handle registry errors."""
    pass


class InvalidHandleError(HandleError):
    """Handle does not satisfy the allowed format."""
    pass


class HandleTakenError(HandleError):
    """Handle is confirmed or actively reserved by another user."""
    pass


class HandleReservationError(HandleError):
    """Reservation is missing, owned by someone else, or in the wrong state."""
    pass


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


def normalize_handle(handle: str) -> str:
    """
    Normalize a handle for uniqueness checks.

    Trims whitespace, drops a leading '@' and lowercases.

    Raises:
        InvalidHandleError: If the result is not 3-30 of [a-z0-9_.]
    """
    normalized = (handle or "").strip().lstrip("@").lower()
    if not HANDLE_PATTERN.match(normalized):
        raise InvalidHandleError(
            f"Handle '{handle}' must be 3-30 characters of letters, digits, '_' or '.'"
        )
    return normalized


def display_handle(handle: str) -> str:
    """Canonical display form, e.g. '@ben'."""
    return f"@{normalize_handle(handle)}"


class HandleRegistry:
    """Reserve, confirm and release handles in the remote store."""

    def __init__(self, store: RemoteStore, ttl_minutes: Optional[int] = None):
        self.store = store
        self.ttl = dt.timedelta(minutes=ttl_minutes or settings.handle_reservation_ttl_minutes)

    def _now(self) -> dt.datetime:
        return self.store.now()

    def _is_expired(self, data: dict) -> bool:
        expires_at = data.get("expiresAt")
        return (
            data.get("status") == ReservationStatus.PENDING.value
            and isinstance(expires_at, dt.datetime)
            and expires_at <= self._now()
        )

    async def is_available(self, handle: str, user_id: Optional[str] = None) -> bool:
        """True when nobody else holds a confirmed or live pending reservation."""
        snapshot = await self.store.get(paths.handle_doc(normalize_handle(handle)))
        if not snapshot.exists:
            return True
        if user_id is not None and snapshot.get("userID") == user_id:
            return True
        return self._is_expired(snapshot.data)

    async def reserve(self, handle: str, user_id: str) -> str:
        """
        Write a pending reservation for `handle`.

        Returns:
            The normalized handle

        Raises:
            InvalidHandleError: Bad format
            HandleTakenError: Held by another user
        """
        normalized = normalize_handle(handle)
        path = paths.handle_doc(normalized)
        record = {
            "userID": user_id,
            "status": ReservationStatus.PENDING.value,
            "reservedAt": SERVER_TIMESTAMP,
            "expiresAt": self._now() + self.ttl,
        }

        try:
            await self.store.create(path, record)
            logger.info(f"Reserved handle '{normalized}' for {user_id}")
            return normalized
        except DocumentExistsError:
            pass

        existing = await self.store.get(path)
        if existing.exists and existing.get("userID") != user_id and not self._is_expired(existing.data):
            raise HandleTakenError(f"Handle '{normalized}' is already taken")
        if existing.get("status") == ReservationStatus.CONFIRMED.value:
            # Already confirmed for this user; nothing to do
            return normalized

        await self.store.set(path, record)
        logger.info(f"Re-reserved handle '{normalized}' for {user_id}")
        return normalized

    async def finalize(self, handle: str, user_id: str) -> None:
        """Confirm a pending reservation owned by `user_id`."""
        normalized = normalize_handle(handle)
        path = paths.handle_doc(normalized)
        existing = await self.store.get(path)
        if not existing.exists or existing.get("userID") != user_id:
            raise HandleReservationError(f"No reservation of '{normalized}' for {user_id}")
        if existing.get("status") == ReservationStatus.CONFIRMED.value:
            return
        if self._is_expired(existing.data):
            raise HandleReservationError(f"Reservation of '{normalized}' expired")

        await self.store.update(path, {
            "status": ReservationStatus.CONFIRMED.value,
            "confirmedAt": SERVER_TIMESTAMP,
            "expiresAt": None,
        })
        logger.info(f"Confirmed handle '{normalized}' for {user_id}")

    async def abort(self, handle: str, user_id: str) -> bool:
        """
        Release a pending reservation owned by `user_id`.

        Returns:
            True if a reservation was removed
        """
        normalized = normalize_handle(handle)
        path = paths.handle_doc(normalized)
        existing = await self.store.get(path)
        if (
            not existing.exists
            or existing.get("userID") != user_id
            or existing.get("status") != ReservationStatus.PENDING.value
        ):
            return False
        await self.store.delete(path)
        logger.info(f"Released handle '{normalized}' reserved by {user_id}")
        return True

    async def cleanup_expired(self) -> int:
        """
        Delete pending reservations past their expiry.

        Returns:
            Number of reservations removed
        """
        snapshot = await self.store.get_collection(
            paths.HANDLES,
            where=[Where("status", "==", ReservationStatus.PENDING.value)],
        )
        expired = [doc for doc in snapshot if self._is_expired(doc.data)]
        if not expired:
            return 0

        batch = self.store.batch()
        for doc in expired:
            batch.delete(doc.path)
        try:
            await batch.commit()
        except RemoteStoreError as e:
            logger.warning(f"Failed to clean up {len(expired)} expired handle reservations: {e}")
            return 0
        logger.info(f"Cleaned up {len(expired)} expired handle reservations")
        return len(expired)
