"""
Completed itineraries: trips the signed-in user has finished.
"""
from typing import Iterable

from triptuner.application.entity_cache import MembershipCache
from triptuner.domain.models import Itinerary
from triptuner.infrastructure import paths


class CompletedItinerariesManager(MembershipCache):
    """Per-user completed set mirrored from users/{uid}/completedItineraries."""

    name = "completed_itineraries"
    collection_name = paths.COMPLETED_ITINERARIES

    @property
    def completed_ids(self) -> frozenset[str]:
        return self.ids

    def is_completed(self, itinerary_id: str) -> bool:
        return self.is_member(itinerary_id)

    def mark_completed(self, itinerary_id: str) -> bool:
        """Returns False if already completed or nobody is signed in."""
        return self._set_membership(itinerary_id, True, record={"itineraryID": itinerary_id})

    def unmark_completed(self, itinerary_id: str) -> bool:
        return self._set_membership(itinerary_id, False)

    def completed_itineraries(self, itineraries: Iterable[Itinerary]) -> list[Itinerary]:
        return [itinerary for itinerary in itineraries if itinerary.id in self._ids]
