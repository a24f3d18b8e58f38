"""
Current-user identity for the sync core.

The hosted auth provider is external; this object only tracks who is signed in
on this device and tells interested caches when that changes.
"""
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

AuthListener = Callable[[Optional[str]], None]


class AuthSession:
    """Holds the signed-in user ID and fans out sign-in/sign-out events."""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._listeners: list[AuthListener] = []

    @property
    def current_user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def on_change(self, callback: AuthListener) -> Callable[[], None]:
        """
        Register a callback fired with the new user ID (None on sign-out).

        Returns:
            Function that unregisters the callback
        """
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def sign_in(self, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id is required to sign in")
        if user_id == self._user_id:
            return
        logger.info(f"User {user_id} signed in")
        self._user_id = user_id
        self._emit()

    def sign_out(self) -> None:
        if self._user_id is None:
            return
        logger.info(f"User {self._user_id} signed out")
        self._user_id = None
        self._emit()

    def _emit(self) -> None:
        for callback in list(self._listeners):
            callback(self._user_id)
