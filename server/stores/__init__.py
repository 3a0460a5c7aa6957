"""Stores package for Crazy Aces persistence."""

from .claim_store import ClaimStore, InMemoryClaimStore
from .session_store import SessionStore

__all__ = [
    "ClaimStore",
    "InMemoryClaimStore",
    "SessionStore",
]
