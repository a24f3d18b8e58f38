"""
Home feed: filtered and searchable projection of the itinerary cache.
"""
from typing import Optional

from triptuner.application.content_moderation import ContentModerationManager
from triptuner.application.itineraries_manager import ItinerariesManager
from triptuner.domain.models import ItineraryCategory, PhiladelphiaRegion, TimeEstimate
from triptuner.domain.schemas import ItineraryView

TOP_ITINERARIES_LIMIT = 5


class HomeViewModel:
    """Read-only view over ItinerariesManager with the user's filters applied."""

    def __init__(
        self,
        itineraries: ItinerariesManager,
        moderation: Optional[ContentModerationManager] = None,
    ):
        self.itineraries = itineraries
        self.moderation = moderation
        self.selected_category = ItineraryCategory.ALL
        self.selected_region = PhiladelphiaRegion.ALL
        self.selected_time = TimeEstimate.ANY
        self.search_text = ""

    def select_category(self, category: ItineraryCategory) -> None:
        self.selected_category = category

    def select_region(self, region: PhiladelphiaRegion) -> None:
        self.selected_region = region

    def select_time(self, time_estimate: TimeEstimate) -> None:
        self.selected_time = time_estimate

    def _visible(self) -> list[ItineraryView]:
        views = self.itineraries.views()
        if self.moderation is None:
            return views
        return self.moderation.filter_blocked_content(views, lambda view: view.author_id)

    @property
    def top_itineraries(self) -> list[ItineraryView]:
        """Most liked itineraries, ties keeping feed order."""
        ranked = sorted(self._visible(), key=lambda view: view.likes, reverse=True)
        return ranked[:TOP_ITINERARIES_LIMIT]

    @property
    def filtered_itineraries(self) -> list[ItineraryView]:
        views = self._visible()
        if self.selected_category is not ItineraryCategory.ALL:
            views = [view for view in views if view.itinerary.category is self.selected_category]
        if self.selected_region is not PhiladelphiaRegion.ALL:
            views = [view for view in views if view.itinerary.region is self.selected_region]
        if self.selected_time is not TimeEstimate.ANY:
            views = [
                view for view in views
                if self.selected_time.contains(view.itinerary.time_estimate_hours)
            ]
        query = self.search_text.strip().lower()
        if query:
            views = [view for view in views if self._matches(view, query)]
        return views

    @staticmethod
    def _matches(view: ItineraryView, query: str) -> bool:
        itinerary = view.itinerary
        haystack = [
            itinerary.title,
            itinerary.description,
            itinerary.author.name,
            itinerary.author.handle,
            *(stop.location_name for stop in itinerary.stops),
        ]
        return any(query in text.lower() for text in haystack)
