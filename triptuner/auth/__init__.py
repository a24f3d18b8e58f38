"""
Authentication module for the TripTuner sync core.
Provides the current-user session, the unique handle registry and account writes.
"""
from triptuner.auth.session import AuthSession
from triptuner.auth.handles import (
    HandleRegistry,
    HandleError,
    InvalidHandleError,
    HandleTakenError,
    HandleReservationError,
    normalize_handle,
    display_handle,
)
from triptuner.auth.service import AccountService

__all__ = [
    # Session
    "AuthSession",
    # Handles
    "HandleRegistry",
    "HandleError",
    "InvalidHandleError",
    "HandleTakenError",
    "HandleReservationError",
    "normalize_handle",
    "display_handle",
    # Accounts
    "AccountService",
]
