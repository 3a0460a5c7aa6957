"""
Security headers middleware for the Crazy Aces API.

The server only answers JSON and WebSocket traffic, so the policy denies
every resource type and all framing:
- Content-Security-Policy: default-src 'none'; frame-ancestors 'none'
- X-Content-Type-Options / X-Frame-Options / Referrer-Policy
- Permissions-Policy
- Strict-Transport-Security (production over HTTPS)
"""

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

API_CSP = "default-src 'none'; frame-ancestors 'none'"

PERMISSIONS_POLICY = "geolocation=(), microphone=(), camera=(), payment=(), usb=()"

HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    HTTP middleware for adding security headers to every response.
    """

    def __init__(self, app, environment: str = "development"):
        """
        Initialize security headers middleware.

        Args:
            app: FastAPI application.
            environment: Environment name (production enables HSTS).
        """
        super().__init__(app)
        self.environment = environment

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["Content-Security-Policy"] = API_CSP
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = PERMISSIONS_POLICY

        if self.environment == "production" and self._is_https(request):
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response

    @staticmethod
    def _is_https(request: Request) -> bool:
        forwarded_proto = request.headers.get("X-Forwarded-Proto", "")
        return forwarded_proto == "https" or request.url.scheme == "https"
