"""
Profile picture fan-out shared by the caches that embed author identities.
"""
import asyncio
import logging
from typing import Iterable, Optional

from triptuner.config import settings
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)


async def fetch_profile_pictures(
    store: RemoteStore,
    user_ids: Iterable[str],
    timeout_seconds: Optional[float] = None,
) -> dict[str, Optional[str]]:
    """
    Fetch the current profile picture URL of every user, in parallel.

    Returns only once every fetch has finished or timed out, so callers never
    see a partial result. A failed or timed-out fetch maps to None.

    Args:
        store: Remote store holding the user directory
        user_ids: User IDs to look up (duplicates are fetched once)
        timeout_seconds: Per-fetch timeout (defaults to settings)

    Returns:
        Mapping of user ID to picture URL or None
    """
    timeout = timeout_seconds or settings.profile_fetch_timeout_seconds

    async def fetch(user_id: str) -> tuple[str, Optional[str]]:
        try:
            snapshot = await asyncio.wait_for(store.get(paths.user_doc(user_id)), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Profile fetch for {user_id} timed out after {timeout}s")
            return user_id, None
        except RemoteStoreError as e:
            logger.warning(f"Profile fetch for {user_id} failed: {e}")
            return user_id, None
        return user_id, snapshot.get("profileImageURL") or None

    unique_ids = list(dict.fromkeys(user_ids))
    if not unique_ids:
        return {}
    results = await asyncio.gather(*(fetch(user_id) for user_id in unique_ids))
    return dict(results)


def resolve_picture(fresh: Optional[str], cached: Optional[str]) -> Optional[str]:
    """A non-empty fresh URL wins; otherwise keep what was already known."""
    return fresh or cached or None
