"""
Analytics ingestion API router for Crazy Aces.

    POST /api/analytics {events: [...]}

Fire-and-forget: always answers 200, even for malformed, rate-limited or
failed batches (with processed = 0).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request

from services.analytics import AnalyticsRecorder
from services.ratelimit import get_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["analytics"])


# Set by main.py during startup
_recorder: Optional[AnalyticsRecorder] = None


def set_analytics_recorder(recorder: Optional[AnalyticsRecorder]) -> None:
    """Set the analytics recorder instance (called from main.py)."""
    global _recorder
    _recorder = recorder


@router.post("/analytics")
async def ingest_analytics(request: Request):
    """Store a batch of client analytics events."""
    if _recorder is None:
        return {"success": True, "processed": 0}

    limiter = get_rate_limiter()
    limit = await limiter.check_bucket("analytics", limiter.get_client_key(request))
    if not limit.allowed:
        return {"success": True, "processed": 0}

    try:
        body = await request.json()
        events = body.get("events") if isinstance(body, dict) else None
        processed = await _recorder.record(events)
    except Exception as e:
        logger.warning(f"Analytics batch rejected: {e}")
        processed = 0

    return {"success": True, "processed": processed}
