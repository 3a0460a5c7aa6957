"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
- /metrics - Connection and game counts for monitoring
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_redis_client = None
_connections = None
_redis_required = False


def set_health_dependencies(
    redis_client=None,
    connections=None,
    redis_required: bool = False,
):
    """
    Set dependencies for health checks.

    Args:
        redis_client: Shared Redis client, if configured.
        connections: Live game connection registry (dict of id -> context).
        redis_required: Report not-ready when Redis is missing.
    """
    global _redis_client, _connections, _redis_required
    _redis_client = redis_client
    _connections = connections
    _redis_required = redis_required


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app handle requests?

    Returns 503 if Redis is configured but unreachable, or required but
    not configured.
    """
    checks = {}
    overall_healthy = True

    if _redis_client is not None:
        try:
            await _redis_client.ping()
            checks["redis"] = {"status": "ok"}
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            checks["redis"] = {"status": "error", "message": str(e)}
            overall_healthy = False
    else:
        checks["redis"] = {"status": "not_configured"}
        if _redis_required:
            overall_healthy = False

    status_code = 200 if overall_healthy else 503
    return Response(
        content=json.dumps({
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=status_code,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """Expose connection and game counts for dashboards."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _connections is not None:
        contexts = list(_connections.values())
        metrics_data.update({
            "active_connections": len(contexts),
            "games_in_progress": sum(
                1 for ctx in contexts
                if ctx.controller.state.player_hand and not ctx.controller.state.game_over
            ),
        })

    return metrics_data
