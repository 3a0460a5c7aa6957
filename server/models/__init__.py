"""Models package for Crazy Aces sessions and claims."""

from .session import ClaimRecord, SessionRecord, TokenPayload

__all__ = [
    "ClaimRecord",
    "SessionRecord",
    "TokenPayload",
]
