"""
Read-side views handed to the UI layer.

Each view joins a persisted entity with the current user's membership sets at
read time, so the derived flags can never drift from the caches they come from.
"""
from pydantic import BaseModel, Field

from triptuner.domain.models import Comment, Itinerary, VoteState


class ItineraryView(BaseModel):
    """An itinerary as seen by the signed-in user."""
    itinerary: Itinerary = Field(description="Itinerary as last published by the cache")
    is_liked: bool = Field(default=False, description="Present in the user's liked set")
    is_saved: bool = Field(default=False, description="Present in the user's saved set")
    is_completed: bool = Field(default=False, description="Present in the user's completed set")

    @property
    def id(self) -> str:
        return self.itinerary.id

    @property
    def author_id(self) -> str:
        return self.itinerary.author.id

    @property
    def likes(self) -> int:
        return self.itinerary.likes


class CommentView(BaseModel):
    """A comment plus the current user's own vote on it."""
    comment: Comment = Field(description="Comment with its current score")
    vote: VoteState = Field(default=VoteState.NEUTRAL, description="The current user's vote")

    @property
    def id(self) -> str:
        return self.comment.id

    @property
    def author_id(self) -> str:
        return self.comment.author.id

    @property
    def score(self) -> int:
        return self.comment.score

    @property
    def is_liked(self) -> bool:
        return self.vote is VoteState.LIKED

    @property
    def is_disliked(self) -> bool:
        return self.vote is VoteState.DISLIKED
