"""
Shared synchronization pattern for locally cached projections of remote
collections.

A cache owns one or more live listeners, replaces its whole projection on
every push, applies user mutations optimistically and then writes them in the
background. All state changes happen on the running event loop, so handlers
never interleave partial updates of the same projection.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Coroutine, Optional

from triptuner.auth.session import AuthSession
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import (
    SERVER_TIMESTAMP,
    ListenerRegistration,
    QuerySnapshot,
    RemoteStore,
    RemoteStoreError,
)

logger = logging.getLogger(__name__)

Observer = Callable[[], None]


class SyncedCache(ABC):
    """
    Base class for every cache bound to the auth session.

    Subclasses open their listeners in `_open_listeners` and clear their
    projection in `_reset`. Listener handlers must compare the generation they
    were opened with against `self._generation` before publishing, so a push
    that was already in flight when the cache unsubscribed is dropped.
    """

    name = "cache"

    def __init__(self, store: RemoteStore, auth: AuthSession):
        self.store = store
        self.auth = auth
        self.error_message: Optional[str] = None
        self._registrations: list[ListenerRegistration] = []
        self._generation = 0
        self._observers: list[Observer] = []
        self._pending_writes: set[asyncio.Task] = set()

    # --- subscription lifecycle ---

    @property
    def is_subscribed(self) -> bool:
        return any(registration.active for registration in self._registrations)

    def subscribe(self) -> None:
        """
        Open this cache's live listeners, replacing any existing ones.

        Without a signed-in user the projection is cleared and nothing is opened.
        """
        self._cancel_listeners()
        user_id = self.auth.current_user_id
        if user_id is None:
            self._reset()
            self._notify()
            return
        self._registrations = self._open_listeners(user_id, self._generation)
        logger.info(f"{self.name}: subscribed for user {user_id}")

    def unsubscribe(self) -> None:
        """Cancel listeners and clear the projection. Safe to call repeatedly."""
        had_listeners = self.is_subscribed
        self._cancel_listeners()
        self._reset()
        self._notify()
        if had_listeners:
            logger.info(f"{self.name}: unsubscribed")

    def _cancel_listeners(self) -> None:
        for registration in self._registrations:
            registration.remove()
        self._registrations = []
        # Invalidate pushes and write completions tied to the old listeners
        self._generation += 1

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    @abstractmethod
    def _open_listeners(self, user_id: str, generation: int) -> list[ListenerRegistration]:
        ...

    @abstractmethod
    def _reset(self) -> None:
        ...

    # --- observers ---

    def add_observer(self, callback: Observer) -> Callable[[], None]:
        """
        Register a callback fired after every change to the projection.

        Returns:
            Function that unregisters the callback
        """
        self._observers.append(callback)

        def remove() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return remove

    def _notify(self) -> None:
        for callback in list(self._observers):
            try:
                callback()
            except Exception as e:
                logger.error(f"{self.name}: observer raised: {e}")

    # --- background writes ---

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)
        return task

    async def wait_for_pending_writes(self) -> None:
        """Wait for every fire-and-forget write issued so far."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)


class MembershipCache(SyncedCache):
    """
    A per-user set of IDs mirrored from `users/{uid}/{collection_name}`.

    The document IDs of the sub-collection are the members.
    """

    collection_name: str = ""

    def __init__(self, store: RemoteStore, auth: AuthSession):
        super().__init__(store, auth)
        self._ids: set[str] = set()

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(self._ids)

    def is_member(self, item_id: str) -> bool:
        """Local membership test. Never touches the network."""
        return item_id in self._ids

    def _reset(self) -> None:
        self._ids = set()

    def _open_listeners(self, user_id: str, generation: int) -> list[ListenerRegistration]:
        async def on_snapshot(snapshot: QuerySnapshot) -> None:
            await self._apply_snapshot(snapshot, generation)

        return [
            self.store.subscribe(paths.user_collection(user_id, self.collection_name), on_snapshot)
        ]

    async def _apply_snapshot(self, snapshot: QuerySnapshot, generation: int) -> None:
        if not self._is_current(generation):
            return
        if snapshot.error is not None:
            logger.warning(f"{self.name}: listener error, keeping last projection: {snapshot.error}")
            return
        self._ids = {doc.id for doc in snapshot}
        self._notify()

    def _set_membership(
        self,
        item_id: str,
        present: bool,
        record: Optional[dict] = None,
        on_success: Optional[Callable[[], Coroutine[Any, Any, Any]]] = None,
    ) -> bool:
        """
        Optimistically add or remove `item_id`, then persist in the background.

        On write failure the local change is reverted, unless the cache has
        been reset or re-subscribed since.

        Args:
            item_id: Member ID
            present: Target membership
            record: Extra fields stored on the membership document
            on_success: Coroutine factory run after a successful write

        Returns:
            False when there is no signed-in user or nothing changed
        """
        user_id = self.auth.current_user_id
        if user_id is None:
            return False
        if (item_id in self._ids) == present:
            return False

        if present:
            self._ids.add(item_id)
        else:
            self._ids.discard(item_id)
        self._notify()

        path = f"{paths.user_collection(user_id, self.collection_name)}/{item_id}"
        self._spawn(self._persist_membership(path, item_id, present, record, on_success, self._generation))
        return True

    async def _persist_membership(
        self,
        path: str,
        item_id: str,
        present: bool,
        record: Optional[dict],
        on_success: Optional[Callable[[], Coroutine[Any, Any, Any]]],
        generation: int,
    ) -> None:
        try:
            if present:
                await self.store.set(path, {**(record or {}), "addedAt": SERVER_TIMESTAMP})
            else:
                await self.store.delete(path)
        except RemoteStoreError as e:
            logger.warning(f"{self.name}: write for {item_id} failed, rolling back: {e}")
            self.error_message = str(e)
            if self._is_current(generation):
                if present:
                    self._ids.discard(item_id)
                else:
                    self._ids.add(item_id)
                self._notify()
            return

        self.error_message = None
        if on_success is not None:
            await on_success()
