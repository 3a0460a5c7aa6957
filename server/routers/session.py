"""
Session API router for Crazy Aces.

    POST /api/session {}                          create a session
    POST /api/session {sessionToken, won}         record a finished game
    POST /api/session {sessionToken, newGame}     resume at game start
    GET  /api/session?token=...                   read streak and game count
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from services.ratelimit import enforce_rate_limit, get_client_ip
from services.session_service import (
    InvalidTokenError,
    SessionError,
    SessionNotFoundError,
    SessionService,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["session"])


# =============================================================================
# Request Models
# =============================================================================


class SessionRequest(BaseModel):
    """Create, update or resume a session."""
    model_config = ConfigDict(populate_by_name=True)

    session_token: Optional[str] = Field(default=None, alias="sessionToken")
    # Checked by hand so a non-boolean is a 400, not a coerced value
    won: Any = None
    new_game: bool = Field(default=False, alias="newGame")


# =============================================================================
# Dependencies
# =============================================================================

# Set by main.py during startup
_session_service: Optional[SessionService] = None


def set_session_service(service: Optional[SessionService]) -> None:
    """Set the session service instance (called from main.py)."""
    global _session_service
    _session_service = service


def get_session_service_dep() -> SessionService:
    """Dependency to get session service."""
    if _session_service is None:
        raise HTTPException(status_code=503, detail="Session service not initialized")
    return _session_service


def session_http_error(e: SessionError) -> HTTPException:
    """Translate a session service error into an HTTP error."""
    if isinstance(e, InvalidTokenError):
        return HTTPException(status_code=401, detail="Invalid or expired session token")
    if isinstance(e, SessionNotFoundError):
        return HTTPException(status_code=404, detail="Session expired. Please start a new game.")
    if isinstance(e, StoreUnavailableError):
        return HTTPException(status_code=503, detail="Session service temporarily unavailable")
    return HTTPException(status_code=500, detail="Internal server error")


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/session")
async def post_session(request: Request, body: Optional[SessionRequest] = None):
    """Create, update or resume a game session."""
    service = get_session_service_dep()
    body = body or SessionRequest()

    if not body.session_token:
        await enforce_rate_limit(request, "session_create")
        try:
            _, token = await service.create_session(ip=get_client_ip(request))
        except SessionError as e:
            raise session_http_error(e)
        return {"success": True, "sessionToken": token, "winStreak": 0}

    if body.won is not None and not isinstance(body.won, bool):
        raise HTTPException(status_code=400, detail="won must be a boolean")

    await enforce_rate_limit(request, "session_update")
    try:
        if body.won is None or body.new_game:
            win_streak, token = await service.resume_session(body.session_token)
        else:
            win_streak, token = await service.update_from_token(body.session_token, body.won)
    except SessionError as e:
        raise session_http_error(e)

    return {"success": True, "sessionToken": token, "winStreak": win_streak}


@router.get("/session")
async def get_session(token: Optional[str] = None):
    """Read-only streak and game count."""
    service = get_session_service_dep()
    if not token:
        raise HTTPException(status_code=400, detail="Token is required")
    try:
        status = await service.get_status(token)
    except SessionError as e:
        raise session_http_error(e)
    return {
        "success": True,
        "winStreak": status["win_streak"],
        "gamesPlayed": status["games_played"],
    }
