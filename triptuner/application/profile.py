"""
Profile screen data for a user.
"""
from typing import Optional

from triptuner.application.completed_itineraries import CompletedItinerariesManager
from triptuner.application.itineraries_manager import ItinerariesManager
from triptuner.application.saved_itineraries import SavedItinerariesManager
from triptuner.domain.models import Achievement, Itinerary, User


class ProfileViewModel:
    """Pure projection of the caches for one user's profile."""

    def __init__(
        self,
        user: User,
        itineraries: ItinerariesManager,
        saved: SavedItinerariesManager,
        completed: CompletedItinerariesManager,
    ):
        self.user = user
        self.itineraries = itineraries
        self.saved = saved
        self.completed = completed
        self.selected_achievement: Optional[Achievement] = None

    @property
    def authored_itineraries(self) -> list[Itinerary]:
        return self.itineraries.itineraries_by_author(self.user.id)

    @property
    def saved_itineraries(self) -> list[Itinerary]:
        return self.saved.saved_itineraries(self.itineraries.itineraries)

    @property
    def completed_itineraries(self) -> list[Itinerary]:
        return self.completed.completed_itineraries(self.itineraries.itineraries)

    @property
    def trips_completed(self) -> int:
        return len(self.completed_itineraries)

    @property
    def total_likes_received(self) -> int:
        return sum(itinerary.likes for itinerary in self.authored_itineraries)

    @property
    def unlocked_achievements(self) -> list[Achievement]:
        return [achievement for achievement in self.user.achievements if achievement.is_unlocked]

    def show_achievement(self, achievement: Achievement) -> None:
        self.selected_achievement = achievement
