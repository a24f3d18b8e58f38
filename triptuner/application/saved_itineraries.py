"""
Saved itineraries: the signed-in user's bookmarks.
"""
from typing import Iterable

from triptuner.application.entity_cache import MembershipCache
from triptuner.domain.models import Itinerary
from triptuner.infrastructure import paths


class SavedItinerariesManager(MembershipCache):
    """Per-user saved set mirrored from users/{uid}/savedItineraries."""

    name = "saved_itineraries"
    collection_name = paths.SAVED_ITINERARIES

    @property
    def saved_ids(self) -> frozenset[str]:
        return self.ids

    def is_saved(self, itinerary_id: str) -> bool:
        return self.is_member(itinerary_id)

    def toggle_save(self, itinerary_id: str) -> bool:
        """
        Flip the saved state. Applied locally at once and rolled back if the
        write fails.

        Returns:
            The new (optimistic) saved state
        """
        target = not self.is_saved(itinerary_id)
        self._set_membership(itinerary_id, target, record={"itineraryID": itinerary_id})
        return self.is_saved(itinerary_id)

    def saved_itineraries(self, itineraries: Iterable[Itinerary]) -> list[Itinerary]:
        """Saved itineraries in the order given."""
        return [itinerary for itinerary in itineraries if itinerary.id in self._ids]
