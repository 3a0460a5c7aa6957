"""Services package for Crazy Aces business logic."""

from .claim_service import ClaimResult, ClaimService
from .email_service import EmailService
from .session_service import (
    InvalidTokenError,
    SessionError,
    SessionNotFoundError,
    SessionService,
    StoreUnavailableError,
    StreakAuthority,
)

__all__ = [
    "ClaimResult",
    "ClaimService",
    "EmailService",
    "InvalidTokenError",
    "SessionError",
    "SessionNotFoundError",
    "SessionService",
    "StoreUnavailableError",
    "StreakAuthority",
]
