"""
Discount claim API router for Crazy Aces.

    POST /api/claim-discount {email, sessionToken}
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from services.claim_service import ClaimService
from services.ratelimit import enforce_rate_limit, get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["claim"])


class ClaimRequest(BaseModel):
    """Discount claim request."""
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    session_token: Optional[str] = Field(default=None, alias="sessionToken")


# Set by main.py during startup
_claim_service: Optional[ClaimService] = None


def set_claim_service(service: Optional[ClaimService]) -> None:
    """Set the claim service instance (called from main.py)."""
    global _claim_service
    _claim_service = service


def get_claim_service_dep() -> ClaimService:
    """Dependency to get claim service."""
    if _claim_service is None:
        raise HTTPException(status_code=503, detail="Claim service not initialized")
    return _claim_service


@router.post("/claim-discount")
async def claim_discount(request: Request, body: ClaimRequest):
    """Email a discount code to a player with a qualifying win streak."""
    service = get_claim_service_dep()
    await enforce_rate_limit(request, "claim_discount")

    result = await service.claim(
        email=body.email,
        session_token=body.session_token,
        ip=get_client_ip(request),
    )
    if not result.success:
        raise HTTPException(status_code=result.status_code, detail=result.error)
    return result.to_dict()
