"""FastAPI server for Crazy Aces: REST session/claim API and the /ws game channel."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
import sentry_sdk
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import config
from handlers import HANDLERS, ConnectionContext, open_connection, send_error, send_session
from logging_config import session_id_var, setup_logging
from middleware import CORSMiddleware, RequestIDMiddleware, SecurityHeadersMiddleware
from routers.admin import router as admin_router, set_admin_claim_store
from routers.analytics import router as analytics_router, set_analytics_recorder
from routers.claim import router as claim_router, set_claim_service
from routers.health import router as health_router, set_health_dependencies
from routers.session import router as session_router, set_session_service
from services.analytics import AnalyticsRecorder
from services.claim_service import ClaimService
from services.email_service import EmailService
from services.ratelimit import ConnectionMessageLimiter, RateLimiter, set_rate_limiter
from services.session_service import SessionService, StreakAuthority
from stores.claim_store import ClaimStore, InMemoryClaimStore
from stores.session_store import SessionStore

# Initialize Sentry if configured
if config.SENTRY_DSN:
    sentry_sdk.init(
        dsn=config.SENTRY_DSN,
        environment=config.ENVIRONMENT,
        traces_sample_rate=0.1 if config.ENVIRONMENT == "production" else 1.0,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
    )
    logging.getLogger(__name__).info("Sentry error tracking initialized")

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


# =============================================================================
# Services (initialized in lifespan)
# =============================================================================

_redis_client: Optional[redis.Redis] = None
_session_service: Optional[SessionService] = None
_recorder: Optional[AnalyticsRecorder] = None
_connections: dict[str, ConnectionContext] = {}


async def _init_redis() -> Optional[redis.Redis]:
    """Connect to Redis. Returns None if it is unreachable."""
    try:
        client = redis.from_url(config.REDIS_URL, decode_responses=True)
        await client.ping()
        logger.info("Redis client connected")
        return client
    except (redis.RedisError, OSError, ValueError) as e:
        logger.warning(f"Redis connection failed: {e}")
        return None


def _is_production() -> bool:
    return config.ENVIRONMENT == "production"


async def _init_services() -> None:
    """Build stores and services and hand them to the routers."""
    global _redis_client, _session_service, _recorder

    if config.REDIS_URL:
        _redis_client = await _init_redis()

    authority = StreakAuthority(config.STREAK_AUTHORITY)
    if _redis_client is None and authority is StreakAuthority.STORE:
        if _is_production():
            raise RuntimeError("REDIS_URL must be reachable when STREAK_AUTHORITY=store in production")
        logger.warning("No Redis configured - falling back to token-authoritative streaks (development only)")
        authority = StreakAuthority.TOKEN

    session_store = SessionStore(_redis_client) if _redis_client is not None else None
    _session_service = SessionService(session_store, config.SESSION_SECRET, authority)

    if _redis_client is not None:
        claim_store = ClaimStore(_redis_client)
    else:
        logger.warning("No Redis configured - discount claims kept in memory")
        claim_store = InMemoryClaimStore()

    email_service = EmailService.create()
    if not email_service.is_configured():
        logger.warning("RESEND_API_KEY not configured - discount emails will not be sent")

    claim_service = ClaimService(
        session_service=_session_service,
        claim_store=claim_store,
        email_service=email_service,
        allow_unsent=not _is_production() and not email_service.is_configured(),
    )

    set_rate_limiter(RateLimiter(_redis_client, enabled=config.RATE_LIMIT_ENABLED))
    _recorder = AnalyticsRecorder(_redis_client)

    set_session_service(_session_service)
    set_claim_service(claim_service)
    set_analytics_recorder(_recorder)
    set_admin_claim_store(claim_store)
    set_health_dependencies(
        redis_client=_redis_client,
        connections=_connections,
        redis_required=_is_production(),
    )


async def _shutdown_services() -> None:
    """Gracefully shut down all services."""
    await _close_all_websockets()

    set_session_service(None)
    set_claim_service(None)
    set_analytics_recorder(None)
    set_rate_limiter(None)

    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("Redis connection closed")


async def _close_all_websockets() -> None:
    """Close all active WebSocket connections gracefully."""
    for ctx in list(_connections.values()):
        await ctx.close()
        try:
            await ctx.websocket.close(code=1001, reason="Server shutting down")
        except RuntimeError as e:
            logger.debug(f"WebSocket {ctx.connection_id[:8]} already closed: {e}")
    _connections.clear()
    logger.info("All WebSocket connections closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    await _init_services()
    logger.info(f"Crazy Aces server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _shutdown_services()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Crazy Aces",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Middleware Setup (last added = outermost)
# =============================================================================

app.add_middleware(SecurityHeadersMiddleware, environment=config.ENVIRONMENT)
app.add_middleware(CORSMiddleware, allowed_origins=config.ALLOWED_ORIGINS)
app.add_middleware(RequestIDMiddleware)


# =============================================================================
# Error responses
# =============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body"},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


# =============================================================================
# Routers
# =============================================================================

app.include_router(session_router)
app.include_router(claim_router)
app.include_router(analytics_router)
app.include_router(admin_router)
app.include_router(health_router)


# =============================================================================
# Game channel
# =============================================================================

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    ctx = await open_connection(
        websocket,
        websocket.query_params.get("token"),
        session_service=_session_service,
        recorder=_recorder,
    )
    _connections[ctx.connection_id] = ctx
    if ctx.session_id:
        session_id_var.set(ctx.session_id[:8])
    logger.debug(f"WebSocket connected: {ctx.connection_id[:8]}")

    if ctx.session_token:
        await send_session(ctx)

    limiter = ConnectionMessageLimiter()
    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                continue
            if not limiter.check():
                await send_error(ctx, "Too many messages, slow down")
                continue
            handler = HANDLERS.get(data.get("type"))
            if handler:
                ctx.spawn(handler(data, ctx))
    except WebSocketDisconnect:
        logger.debug(f"WebSocket disconnected: {ctx.connection_id[:8]}")
    finally:
        _connections.pop(ctx.connection_id, None)
        await ctx.close()


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Crazy Aces server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
