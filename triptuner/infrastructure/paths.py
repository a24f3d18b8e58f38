"""
Document and collection paths used by the sync core.
"""

ITINERARIES = "itineraries"
USERS = "users"
HANDLES = "handles"
FLAGS = "flags"
DEVELOPER_NOTIFICATIONS = "developerNotifications"

# Per-user membership sub-collections
LIKED_ITINERARIES = "likedItineraries"
SAVED_ITINERARIES = "savedItineraries"
COMPLETED_ITINERARIES = "completedItineraries"
BLOCKED_USERS = "blockedUsers"


def itinerary_doc(itinerary_id: str) -> str:
    return f"{ITINERARIES}/{itinerary_id}"


def itinerary_likes(itinerary_id: str) -> str:
    return f"{ITINERARIES}/{itinerary_id}/likes"


def itinerary_like_doc(itinerary_id: str, user_id: str) -> str:
    return f"{itinerary_likes(itinerary_id)}/{user_id}"


def comments(itinerary_id: str) -> str:
    return f"{ITINERARIES}/{itinerary_id}/comments"


def comment_doc(itinerary_id: str, comment_id: str) -> str:
    return f"{comments(itinerary_id)}/{comment_id}"


def comment_votes(itinerary_id: str, comment_id: str) -> str:
    return f"{comment_doc(itinerary_id, comment_id)}/votes"


def comment_vote_doc(itinerary_id: str, comment_id: str, user_id: str) -> str:
    return f"{comment_votes(itinerary_id, comment_id)}/{user_id}"


def user_doc(user_id: str) -> str:
    return f"{USERS}/{user_id}"


def user_collection(user_id: str, name: str) -> str:
    """A per-user sub-collection such as likedItineraries."""
    return f"{USERS}/{user_id}/{name}"


def handle_doc(normalized_handle: str) -> str:
    return f"{HANDLES}/{normalized_handle}"
