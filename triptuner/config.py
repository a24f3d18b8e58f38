"""
Configuration management for the TripTuner sync core.
Uses Pydantic Settings to load configuration from environment variables.
"""
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database (SQL-backed remote store)
    database_url: str = Field(
        default="postgresql+asyncpg://triptuner:triptuner@db:5432/triptuner",
        description="SQLAlchemy async URL for the SQL-backed document store"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements issued by the document store"
    )

    # Fan-out reads
    profile_fetch_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for each per-user profile picture fetch during a merge"
    )

    # =========================================================================
    # Leaderboard
    # =========================================================================

    leaderboard_debounce_seconds: float = Field(
        default=1.0,
        description="Quiet period after the last itinerary change before re-ranking"
    )
    leaderboard_podium_size: int = Field(
        default=3,
        ge=1,
        description="Number of entries shown on the podium"
    )
    leaderboard_public_size: int = Field(
        default=10,
        description="Entries visible to everyone (podium included); the current user's own rank is shown only beyond this"
    )

    # =========================================================================
    # Accounts and moderation
    # =========================================================================

    handle_reservation_ttl_minutes: int = Field(
        default=10,
        ge=1,
        description="Lifetime of a pending handle reservation before cleanup may reclaim it"
    )
    flag_preview_length: int = Field(
        default=100,
        ge=1,
        description="Number of characters of comment content copied into a flag record"
    )

    # Batched writes
    max_batch_operations: int = Field(
        default=500,
        ge=1,
        description="Maximum operations per committed batch during cascade deletes"
    )

    debug: bool = Field(default=False, description="Debug mode")

    @model_validator(mode='after')
    def check_leaderboard(self) -> 'Settings':
        if self.leaderboard_debounce_seconds < 1.0:
            raise ValueError(
                "LEADERBOARD_DEBOUNCE_SECONDS must be at least 1 second."
            )
        if self.leaderboard_public_size < self.leaderboard_podium_size:
            raise ValueError(
                "LEADERBOARD_PUBLIC_SIZE cannot be smaller than LEADERBOARD_PODIUM_SIZE."
            )
        return self


# Global settings instance
settings = Settings()
