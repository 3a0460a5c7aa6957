"""
CORS middleware for the Crazy Aces API.

Echoes Access-Control-Allow-Origin only for origins on the configured
allow-list and answers preflight OPTIONS requests directly with an empty
200 response.
"""

import logging
from typing import Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "GET, POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type, X-API-Key"
PREFLIGHT_MAX_AGE = "86400"


class CORSMiddleware(BaseHTTPMiddleware):
    """
    Allow-list based CORS.

    Requests from unknown origins still reach the handlers; they just do
    not receive the Allow-Origin header, so browsers discard the response.
    """

    def __init__(self, app, allowed_origins: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.allowed_origins = {o.rstrip("/") for o in (allowed_origins or []) if o}

    def is_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        return origin.rstrip("/") in self.allowed_origins

    async def dispatch(self, request: Request, call_next) -> Response:
        origin = request.headers.get("origin")

        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        if self.is_allowed(origin):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
            response.headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
            if request.method == "OPTIONS":
                response.headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
        elif origin:
            logger.debug(f"CORS origin not allowed: {origin}")

        return response
