"""
Conversion between remote document payloads and domain models.

Remote payloads use the camelCase keys written by the mobile clients.
Parsers raise MalformedDocumentError for records that lack required fields;
projection code skips such records instead of failing the whole push.
"""
import datetime as dt
import logging
from typing import Callable, Iterable, Optional, TypeVar

from pydantic import ValidationError

from triptuner.domain.models import (
    Achievement,
    Address,
    Author,
    Comment,
    CostLevel,
    Itinerary,
    ItineraryCategory,
    NoiseLevel,
    PhiladelphiaRegion,
    Stop,
    User,
    VoteState,
    as_utc,
)
from triptuner.infrastructure.remote_store import DocumentSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MalformedDocumentError(ValueError):
    """A remote record could not be turned into a domain model."""
    pass


def _required(data: dict, key: str):
    value = data.get(key)
    if value is None or value == "":
        raise MalformedDocumentError(f"Missing required field '{key}'")
    return value


def _timestamp(value) -> Optional[dt.datetime]:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return as_utc(value)
    if isinstance(value, str):
        return as_utc(dt.datetime.fromisoformat(value))
    raise MalformedDocumentError(f"Unsupported timestamp value: {value!r}")


def _author_from(data: dict) -> Author:
    return Author(
        id=_required(data, "authorID"),
        name=_required(data, "authorName"),
        handle=_required(data, "authorHandle"),
        profile_image_url=data.get("authorProfileImageURL") or None,
    )


def _author_fields(author: Author) -> dict:
    return {
        "authorID": author.id,
        "authorName": author.name,
        "authorHandle": author.handle,
        "authorProfileImageURL": author.profile_image_url,
    }


# =============================================================================
# Itineraries
# =============================================================================

def parse_stop(data: dict) -> Stop:
    components = data.get("addressComponents")
    return Stop(
        id=data.get("id") or _required(data, "locationName"),
        location_name=_required(data, "locationName"),
        address=data.get("address", ""),
        address_components=Address(
            street=components.get("street", ""),
            city=components.get("city", "Philadelphia"),
            state=components.get("state", "PA"),
            zip_code=components.get("zipCode", ""),
        ) if components else None,
        latitude=float(_required(data, "latitude")),
        longitude=float(_required(data, "longitude")),
        notes=data.get("notes"),
        order=int(_required(data, "order")),
    )


def stop_to_document(stop: Stop) -> dict:
    components = stop.address_components
    return {
        "id": stop.id,
        "locationName": stop.location_name,
        "address": stop.address,
        "addressComponents": {
            "street": components.street,
            "city": components.city,
            "state": components.state,
            "zipCode": components.zip_code,
        } if components else None,
        "latitude": stop.latitude,
        "longitude": stop.longitude,
        "notes": stop.notes,
        "order": stop.order,
    }


def parse_itinerary(snapshot: DocumentSnapshot) -> Itinerary:
    """
    Build an Itinerary from a stored record.

    Raises:
        MalformedDocumentError: If a required field is missing or invalid
    """
    data = snapshot.data or {}
    try:
        created_at = _timestamp(_required(data, "createdAt"))
        stops = sorted(
            (parse_stop(stop) for stop in data.get("stops") or []),
            key=lambda stop: stop.order,
        )
        return Itinerary(
            id=snapshot.id,
            title=_required(data, "title"),
            description=data.get("description", ""),
            category=ItineraryCategory(_required(data, "category")),
            author=_author_from(data),
            stops=stops,
            photos=list(data.get("photos") or []),
            likes=max(0, int(data.get("likes", 0))),
            comments=max(0, int(data.get("comments", 0))),
            time_estimate_hours=int(data.get("timeEstimate", 1)),
            cost=data.get("cost"),
            cost_level=CostLevel(data["costLevel"]) if data.get("costLevel") else None,
            noise_level=NoiseLevel(data["noiseLevel"]) if data.get("noiseLevel") else None,
            region=PhiladelphiaRegion(data["region"]) if data.get("region") else None,
            created_at=created_at,
        )
    except (ValidationError, ValueError, TypeError, AttributeError) as e:
        if isinstance(e, MalformedDocumentError):
            raise
        raise MalformedDocumentError(f"Invalid itinerary {snapshot.id}: {e}") from e


def itinerary_to_document(itinerary: Itinerary) -> dict:
    """Serialize an itinerary. Session-local flags are never part of the payload."""
    return {
        "title": itinerary.title,
        "description": itinerary.description,
        "category": itinerary.category.value,
        **_author_fields(itinerary.author),
        "stops": [stop_to_document(stop) for stop in itinerary.stops],
        "photos": list(itinerary.photos),
        "likes": itinerary.likes,
        "comments": itinerary.comments,
        "timeEstimate": itinerary.time_estimate_hours,
        "cost": itinerary.cost,
        "costLevel": itinerary.cost_level.value if itinerary.cost_level else None,
        "noiseLevel": int(itinerary.noise_level) if itinerary.noise_level else None,
        "region": itinerary.region.value if itinerary.region else None,
        "createdAt": itinerary.created_at,
    }


# =============================================================================
# Comments and votes
# =============================================================================

def parse_comment(snapshot: DocumentSnapshot, itinerary_id: str) -> Comment:
    data = snapshot.data or {}
    try:
        return Comment(
            id=snapshot.id,
            author=_author_from(data),
            itinerary_id=data.get("itineraryID") or itinerary_id,
            content=_required(data, "content"),
            # Older records stored the net score under "likes"
            score=int(data.get("score", data.get("likes", 0))),
            created_at=_timestamp(_required(data, "createdAt")),
        )
    except (ValidationError, ValueError, TypeError, AttributeError) as e:
        if isinstance(e, MalformedDocumentError):
            raise
        raise MalformedDocumentError(f"Invalid comment {snapshot.id}: {e}") from e


def comment_to_document(comment: Comment) -> dict:
    return {
        **_author_fields(comment.author),
        "itineraryID": comment.itinerary_id,
        "content": comment.content,
        "score": comment.score,
        "createdAt": comment.created_at,
    }


def parse_vote(snapshot: DocumentSnapshot) -> VoteState:
    """Read a vote record; a missing or unrecognised record counts as no vote."""
    if not snapshot.exists:
        return VoteState.NEUTRAL
    value = snapshot.get("value")
    if value == 1:
        return VoteState.LIKED
    if value == -1:
        return VoteState.DISLIKED
    return VoteState.NEUTRAL


# =============================================================================
# Users
# =============================================================================

def parse_achievement(data: dict) -> Achievement:
    return Achievement(
        id=_required(data, "id"),
        title=_required(data, "title"),
        description=data.get("description", ""),
        emoji=data.get("emoji", ""),
        unlocked_at=_timestamp(data.get("unlockedAt")),
    )


def parse_user(snapshot: DocumentSnapshot) -> User:
    data = snapshot.data or {}
    try:
        return User(
            id=snapshot.id,
            name=data.get("name") or data.get("username") or _required(data, "name"),
            handle=_required(data, "handle"),
            email=data.get("email", ""),
            profile_image_url=data.get("profileImageURL") or None,
            year=data.get("year"),
            streak=int(data.get("streak", 0)),
            points=int(data.get("points", 0)),
            achievements=[parse_achievement(item) for item in data.get("achievements") or []],
        )
    except (ValidationError, ValueError, TypeError, AttributeError) as e:
        if isinstance(e, MalformedDocumentError):
            raise
        raise MalformedDocumentError(f"Invalid user {snapshot.id}: {e}") from e


def user_to_document(user: User) -> dict:
    return {
        "name": user.name,
        "handle": user.handle,
        "email": user.email,
        "profileImageURL": user.profile_image_url,
        "year": user.year,
        "streak": user.streak,
        "points": user.points,
        "achievements": [
            {
                "id": achievement.id,
                "title": achievement.title,
                "description": achievement.description,
                "emoji": achievement.emoji,
                "unlockedAt": achievement.unlocked_at,
            }
            for achievement in user.achievements
        ],
    }


def parse_documents(
    documents: Iterable[DocumentSnapshot],
    parser: Callable[[DocumentSnapshot], T],
) -> list[T]:
    """Parse every document, skipping (and logging) malformed ones."""
    parsed = []
    for snapshot in documents:
        try:
            parsed.append(parser(snapshot))
        except MalformedDocumentError as e:
            logger.warning(f"Skipping malformed record {snapshot.path}: {e}")
    return parsed
