"""
Core domain models for the TripTuner sync core.
All models use Pydantic v2 for type safety and validation.

Session-local flags (liked, saved, vote state) are deliberately absent here:
they are joined in at read time, see triptuner.domain.schemas.
"""
import datetime as dt
import math
from typing import Optional
from enum import Enum, IntEnum
from pydantic import BaseModel, Field, field_validator
from uuid import uuid4


# Philadelphia city centre, used when a stop carries unusable coordinates
PHILADELPHIA_LAT = 39.9526
PHILADELPHIA_LON = -75.1652


def new_id() -> str:
    """Generate an opaque document ID."""
    return str(uuid4())


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(moment: dt.datetime) -> dt.datetime:
    """Treat a naive datetime as UTC."""
    return moment if moment.tzinfo else moment.replace(tzinfo=dt.timezone.utc)


# Enums for constrained values
class ItineraryCategory(str, Enum):
    """Itinerary category. ALL is a filter value only."""
    RESTAURANTS = "Restaurants"
    CAFES = "Cafes"
    ATTRACTIONS = "Attractions"
    ALL = "All"

    @property
    def emoji(self) -> str:
        return {
            ItineraryCategory.RESTAURANTS: "🍽️",
            ItineraryCategory.CAFES: "☕",
            ItineraryCategory.ATTRACTIONS: "🎯",
            ItineraryCategory.ALL: "📍",
        }[self]


class CostLevel(str, Enum):
    """Rough price bucket for an itinerary."""
    FREE = "Free"
    LOW = "$"
    MEDIUM = "$$"
    HIGH = "$$$"

    @property
    def numeric_value(self) -> float:
        """Representative spend in dollars."""
        return {
            CostLevel.FREE: 0.0,
            CostLevel.LOW: 15.0,
            CostLevel.MEDIUM: 40.0,
            CostLevel.HIGH: 75.0,
        }[self]

    @property
    def description(self) -> str:
        return {
            CostLevel.FREE: "Free",
            CostLevel.LOW: "$ (Under $25)",
            CostLevel.MEDIUM: "$$ ($25-$50)",
            CostLevel.HIGH: "$$$ (Over $50)",
        }[self]


class NoiseLevel(IntEnum):
    QUIET = 1
    MODERATE = 2
    LOUD = 3
    VERY_LOUD = 4

    @property
    def display_name(self) -> str:
        return self.name.replace("_", " ").title()


class PhiladelphiaRegion(str, Enum):
    """Neighbourhood an itinerary belongs to. ALL is a filter value only."""
    ALL = "All Regions"
    CENTER_CITY = "Center City"
    UNIVERSITY_CITY = "University City"
    FISHTOWN = "Fishtown"
    NORTHERN_LIBERTIES = "Northern Liberties"
    OLD_CITY = "Old City"
    RITTENHOUSE = "Rittenhouse"
    SOUTH_PHILLY = "South Philly"
    MANAYUNK = "Manayunk"
    FAIRMOUNT = "Fairmount"


class TimeEstimate(str, Enum):
    """Duration buckets used by the time filter."""
    ANY = "Any"
    SHORT = "1-2 hours"
    MEDIUM = "3-4 hours"
    LONG = "5-6 hours"
    VERY_LONG = "7+ hours"

    def contains(self, hours: int) -> bool:
        """Check whether an itinerary of `hours` falls into this bucket."""
        if self is TimeEstimate.ANY:
            return True
        if self is TimeEstimate.SHORT:
            return 1 <= hours <= 2
        if self is TimeEstimate.MEDIUM:
            return 3 <= hours <= 4
        if self is TimeEstimate.LONG:
            return 5 <= hours <= 6
        return hours >= 7


class FlagReason(str, Enum):
    """Reason a user gives when flagging content for review."""
    SPAM = "Spam"
    HARASSMENT = "Harassment or Bullying"
    INAPPROPRIATE = "Inappropriate Content"
    MISINFORMATION = "Misinformation"
    OTHER = "Other"

    @property
    def description(self) -> str:
        return {
            FlagReason.SPAM: "Repetitive, unwanted, or promotional content",
            FlagReason.HARASSMENT: "Content that targets, threatens, or harasses others",
            FlagReason.INAPPROPRIATE: "Content that violates community guidelines",
            FlagReason.MISINFORMATION: "False or misleading information",
            FlagReason.OTHER: "Other reason not listed above",
        }[self]


class VoteState(str, Enum):
    """The current user's vote on a single comment."""
    NEUTRAL = "neutral"
    LIKED = "liked"
    DISLIKED = "disliked"

    @property
    def contribution(self) -> int:
        """Signed contribution of this vote to the comment score."""
        return {VoteState.NEUTRAL: 0, VoteState.LIKED: 1, VoteState.DISLIKED: -1}[self]


# Domain Models

class Address(BaseModel):
    """Structured street address."""
    street: str = Field(default="", description="Street line")
    city: str = Field(default="Philadelphia", description="City")
    state: str = Field(default="PA", description="State code")
    zip_code: str = Field(default="", description="ZIP code")

    @property
    def full_address(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.zip_code}"


class Stop(BaseModel):
    """A single stop within an itinerary."""
    id: str = Field(default_factory=new_id, description="Unique stop ID")
    location_name: str = Field(description="Display name of the place")
    address: str = Field(default="", description="Address as a single line")
    address_components: Optional[Address] = Field(default=None, description="Structured address")
    latitude: float = Field(description="Latitude")
    longitude: float = Field(description="Longitude")
    notes: Optional[str] = Field(default=None, description="Author notes for this stop")
    order: int = Field(ge=1, description="1-based position within the itinerary")

    @property
    def is_valid_coordinate(self) -> bool:
        return (
            math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and -90 <= self.latitude <= 90
            and -180 <= self.longitude <= 180
        )

    @property
    def coordinate(self) -> tuple[float, float]:
        """(lat, lon), with non-finite components replaced by the city centre."""
        lat = self.latitude if math.isfinite(self.latitude) else PHILADELPHIA_LAT
        lon = self.longitude if math.isfinite(self.longitude) else PHILADELPHIA_LON
        return lat, lon


def renumber_stops(stops: list[Stop]) -> list[Stop]:
    """
    Return stops with contiguous, unique 1-based `order` values.

    Relative order is taken from the existing `order` values (ties keep list
    position), so an edited list with gaps or duplicates is normalized.
    """
    ranked = sorted(enumerate(stops), key=lambda pair: (pair[1].order, pair[0]))
    return [
        stop.model_copy(update={"order": position})
        for position, (_, stop) in enumerate(ranked, start=1)
    ]


class Author(BaseModel):
    """Author identity embedded in itineraries and comments."""
    id: str = Field(description="Author user ID")
    name: str = Field(description="Author display name")
    handle: str = Field(description="Author handle, e.g. @ben")
    profile_image_url: Optional[str] = Field(default=None, description="Author profile picture URL")


class Itinerary(BaseModel):
    """A shareable multi-stop trip."""
    id: str = Field(default_factory=new_id, description="Unique itinerary ID")
    title: str = Field(description="Itinerary title")
    description: str = Field(default="", description="Free-text description")
    category: ItineraryCategory = Field(description="Itinerary category")
    author: Author = Field(description="Itinerary author")
    stops: list[Stop] = Field(default_factory=list, description="Stops ordered by `order`")
    photos: list[str] = Field(default_factory=list, description="Photo URLs")
    likes: int = Field(default=0, ge=0, description="Like counter")
    comments: int = Field(default=0, ge=0, description="Comment counter")
    time_estimate_hours: int = Field(default=1, ge=0, description="Estimated duration in hours")
    cost: Optional[float] = Field(default=None, ge=0, description="Estimated cost in dollars")
    cost_level: Optional[CostLevel] = Field(default=None, description="Price bucket")
    noise_level: Optional[NoiseLevel] = Field(default=None, description="Noise level")
    region: Optional[PhiladelphiaRegion] = Field(default=None, description="Neighbourhood")
    created_at: dt.datetime = Field(default_factory=utcnow, description="Creation time")

    @field_validator("created_at")
    @classmethod
    def created_at_is_aware(cls, value: dt.datetime) -> dt.datetime:
        return as_utc(value)


class Comment(BaseModel):
    """A comment on an itinerary. `score` is the net of all users' votes."""
    id: str = Field(default_factory=new_id, description="Unique comment ID")
    author: Author = Field(description="Comment author")
    itinerary_id: str = Field(description="Parent itinerary ID")
    content: str = Field(min_length=1, description="Comment text")
    score: int = Field(default=0, description="Net vote score")
    created_at: dt.datetime = Field(default_factory=utcnow, description="Creation time")

    @field_validator("created_at")
    @classmethod
    def created_at_is_aware(cls, value: dt.datetime) -> dt.datetime:
        return as_utc(value)


class Achievement(BaseModel):
    """A badge a user can unlock."""
    id: str = Field(default_factory=new_id)
    title: str
    description: str
    emoji: str
    unlocked_at: Optional[dt.datetime] = Field(default=None, description="Unlock time; absent while locked")

    @property
    def is_unlocked(self) -> bool:
        return self.unlocked_at is not None


class User(BaseModel):
    """A user directory record."""
    id: str = Field(description="User ID (auth subject)")
    name: str = Field(description="Display name")
    handle: str = Field(description="Globally unique handle, e.g. @ben")
    email: str = Field(default="", description="Email address")
    profile_image_url: Optional[str] = Field(default=None, description="Profile picture URL")
    year: Optional[str] = Field(default=None, description="Graduation year")
    streak: int = Field(default=0, ge=0)
    points: int = Field(default=0, ge=0)
    achievements: list[Achievement] = Field(default_factory=list)

    def as_author(self) -> Author:
        return Author(
            id=self.id,
            name=self.name,
            handle=self.handle,
            profile_image_url=self.profile_image_url,
        )


class LeaderboardEntry(BaseModel):
    """A derived ranking row. Never persisted."""
    id: str = Field(description="User ID")
    user: User = Field(description="User snapshot")
    rank: int = Field(default=0, ge=0, description="1-based rank, assigned after sorting")
    points: int = Field(default=0, ge=0, description="Likes received within the period")
    trip_count: int = Field(default=0, ge=0, description="Itineraries authored within the period")
