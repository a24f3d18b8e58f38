"""
Leaderboard: users ranked by likes received on their itineraries.

Points come from the itinerary cache; the user directory contributes identity
fields and the users that have no itineraries at all. Profile pictures are
remembered across refreshes so a picture, once seen, never disappears because
a later fetch came back empty.
"""
import asyncio
import calendar
import datetime as dt
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from triptuner.application.itineraries_manager import ItinerariesManager
from triptuner.application.profiles import resolve_picture
from triptuner.auth.session import AuthSession
from triptuner.config import settings
from triptuner.domain.documents import parse_documents, parse_user
from triptuner.domain.models import Author, Itinerary, LeaderboardEntry, User
from triptuner.infrastructure import paths
from triptuner.infrastructure.remote_store import RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)


class LeaderboardPeriod(str, Enum):
    THIS_MONTH = "This Month"
    ALL_TIME = "All Time"


def one_month_before(moment: dt.datetime) -> dt.datetime:
    """Same time one calendar month earlier, clamping the day (Mar 31 -> Feb 28/29)."""
    if moment.month == 1:
        year, month = moment.year - 1, 12
    else:
        year, month = moment.year, moment.month - 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_start(period: LeaderboardPeriod, now: dt.datetime) -> Optional[dt.datetime]:
    """Earliest creation time counted for `period`, or None for no limit."""
    if period is LeaderboardPeriod.THIS_MONTH:
        return one_month_before(now)
    return None


class Debouncer:
    """
    Runs `action` once the triggers stop for `delay` seconds.

    Each trigger cancels a pending run that is still waiting and schedules a
    new one. An action that already started is left to finish.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[None]]):
        self.delay = delay
        self.action = action
        self._waiting: Optional[asyncio.Task] = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._waiting is not None and not self._waiting.done()

    def trigger(self) -> None:
        self.cancel()
        self._waiting = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._waiting is not None:
            self._waiting.cancel()
            self._waiting = None

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        self._waiting = None
        task = asyncio.current_task()
        self._running.add(task)
        try:
            await self.action()
        finally:
            self._running.discard(task)

    async def wait(self) -> None:
        """Wait for a scheduled run and any running action to finish."""
        while self.pending or self._running:
            tasks = list(self._running)
            if self._waiting is not None:
                tasks.append(self._waiting)
            await asyncio.gather(*tasks, return_exceptions=True)


class LeaderboardViewModel:
    """Ranked leaderboard for the selected period."""

    def __init__(
        self,
        store: RemoteStore,
        auth: AuthSession,
        itineraries: ItinerariesManager,
        debounce_seconds: Optional[float] = None,
        podium_size: Optional[int] = None,
        public_size: Optional[int] = None,
    ):
        self.store = store
        self.auth = auth
        self.itineraries = itineraries
        self.podium_size = podium_size or settings.leaderboard_podium_size
        self.public_size = public_size or settings.leaderboard_public_size
        self.selected_period = LeaderboardPeriod.THIS_MONTH
        self.is_loading = False
        self.error_message: Optional[str] = None
        self._entries: list[LeaderboardEntry] = []
        self._picture_cache: dict[str, str] = {}
        self._generation = 0
        self._observers: list[Callable[[], None]] = []
        self._remove_itineraries_observer: Optional[Callable[[], None]] = None
        self._debouncer = Debouncer(
            debounce_seconds or settings.leaderboard_debounce_seconds,
            self.refresh,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def attach(self) -> None:
        """Re-rank whenever itinerary changes settle for the debounce period."""
        if self._remove_itineraries_observer is None:
            self._remove_itineraries_observer = self.itineraries.add_observer(self._debouncer.trigger)

    async def start(self) -> None:
        """Load the leaderboard and keep it current."""
        self.attach()
        await self.refresh()

    def stop(self) -> None:
        if self._remove_itineraries_observer is not None:
            self._remove_itineraries_observer()
            self._remove_itineraries_observer = None
        self._debouncer.cancel()
        self._generation += 1
        self.is_loading = False

    def reset(self) -> None:
        """Stop and forget the ranking and every remembered picture."""
        self.stop()
        self._entries = []
        self._picture_cache = {}
        self.error_message = None
        self._notify()

    def schedule_refresh(self) -> None:
        """Refresh once the debounce period passes without further changes."""
        self._debouncer.trigger()

    async def select_period(self, period: LeaderboardPeriod) -> None:
        self.selected_period = period
        await self.refresh()

    async def wait_for_refresh(self) -> None:
        await self._debouncer.wait()

    def add_observer(self, callback: Callable[[], None]) -> Callable[[], None]:
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
                logger.error(f"leaderboard: observer raised: {e}")

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def entries(self) -> list[LeaderboardEntry]:
        return list(self._entries)

    @property
    def podium(self) -> list[LeaderboardEntry]:
        return self._entries[:self.podium_size]

    @property
    def public_entries(self) -> list[LeaderboardEntry]:
        """Entries after the podium, up to the public cut-off."""
        return self._entries[self.podium_size:self.public_size]

    @property
    def remaining_entries(self) -> list[LeaderboardEntry]:
        return self._entries[self.podium_size:]

    @property
    def my_entry(self) -> Optional[LeaderboardEntry]:
        """The current user's entry, only when it falls outside the public list."""
        user_id = self.auth.current_user_id
        if user_id is None:
            return None
        for entry in self._entries:
            if entry.id == user_id:
                return entry if entry.rank > self.public_size else None
        return None

    # =========================================================================
    # Ranking
    # =========================================================================

    async def refresh(self) -> None:
        """Recompute the ranking. A newer refresh or stop() discards this one."""
        self._generation += 1
        generation = self._generation
        self.is_loading = True

        for entry in self._entries:
            if entry.user.profile_image_url:
                self._picture_cache[entry.id] = entry.user.profile_image_url

        start = period_start(self.selected_period, self.store.now())
        totals = self._itinerary_totals(self.itineraries.itineraries, start)
        directory = await self._fetch_directory()
        if generation != self._generation:
            return

        self._entries = self._rank(totals, directory)
        self.is_loading = False
        self._notify()
        logger.info(
            f"leaderboard: ranked {len(self._entries)} users for {self.selected_period.value}"
        )

    @staticmethod
    def _itinerary_totals(
        itineraries: list[Itinerary],
        start: Optional[dt.datetime],
    ) -> dict[str, tuple[Author, int, int]]:
        """Per author, in order of first appearance: (author, points, trip count)."""
        totals: dict[str, tuple[Author, int, int]] = {}
        for itinerary in itineraries:
            if start is not None and itinerary.created_at < start:
                continue
            author, points, trips = totals.get(itinerary.author.id, (itinerary.author, 0, 0))
            totals[itinerary.author.id] = (author, points + itinerary.likes, trips + 1)
        return totals

    async def _fetch_directory(self) -> dict[str, User]:
        try:
            snapshot = await self.store.get_collection(paths.USERS)
        except RemoteStoreError as e:
            logger.warning(f"leaderboard: user directory unavailable, ranking authors only: {e}")
            self.error_message = str(e)
            return {}
        self.error_message = None
        return {user.id: user for user in parse_documents(snapshot, parse_user)}

    def _rank(
        self,
        totals: dict[str, tuple[Author, int, int]],
        directory: dict[str, User],
    ) -> list[LeaderboardEntry]:
        entries = []
        for user_id, (author, points, trips) in totals.items():
            user = directory.get(user_id) or User(
                id=user_id,
                name=author.name,
                handle=author.handle,
                profile_image_url=author.profile_image_url,
            )
            entries.append(self._entry(user, points, trips))
        for user_id, user in directory.items():
            if user_id not in totals:
                entries.append(self._entry(user, 0, 0))

        # Stable: equal points keep insertion order
        entries.sort(key=lambda entry: entry.points, reverse=True)
        return [
            entry.model_copy(update={"rank": position})
            for position, entry in enumerate(entries, start=1)
        ]

    def _entry(self, user: User, points: int, trips: int) -> LeaderboardEntry:
        picture = resolve_picture(user.profile_image_url, self._picture_cache.get(user.id))
        if picture:
            self._picture_cache[user.id] = picture
        return LeaderboardEntry(
            id=user.id,
            user=user.model_copy(update={"profile_image_url": picture}),
            points=points,
            trip_count=trips,
        )
