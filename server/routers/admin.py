"""
Admin API router for Crazy Aces.

Operator endpoints guarded by the X-API-Key header (ADMIN_API_KEY).
"""

import hmac
import logging
from typing import Optional

import redis.asyncio as redis
from fastapi import APIRouter, Depends, Header, HTTPException

from config import config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# =============================================================================
# Dependencies
# =============================================================================

# Set by main.py during startup
_claim_store = None


def set_admin_claim_store(store) -> None:
    """Set the claim ledger used by admin endpoints (called from main.py)."""
    global _claim_store
    _claim_store = store


def require_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Dependency rejecting requests without the admin API key."""
    expected = config.ADMIN_API_KEY
    if not expected or not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


# =============================================================================
# Claim Ledger
# =============================================================================


@router.post("/clear-claims")
async def clear_claims(_: None = Depends(require_api_key)):
    """Delete every claimed-discount ledger entry."""
    if _claim_store is None:
        raise HTTPException(status_code=503, detail="Claim ledger not configured")

    try:
        deleted = await _claim_store.clear_all()
    except redis.RedisError as e:
        logger.error(f"Failed to clear claims: {e}")
        raise HTTPException(status_code=500, detail="Failed to clear claims")

    logger.info(f"Admin cleared {deleted} claim ledger entries")
    if deleted == 0:
        return {"success": True, "message": "No claims to clear", "deleted": 0}
    return {"success": True, "message": f"Cleared {deleted} claimed emails", "deleted": deleted}
