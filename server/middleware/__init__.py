"""
Middleware components for the Crazy Aces server.

Provides:
- CORSMiddleware: Allow-list CORS with preflight handling
- SecurityHeadersMiddleware: Security headers (CSP, HSTS, etc.)
- RequestIDMiddleware: Request tracing with X-Request-ID
"""

from .cors import CORSMiddleware
from .security import SecurityHeadersMiddleware
from .request_id import RequestIDMiddleware

__all__ = [
    "CORSMiddleware",
    "SecurityHeadersMiddleware",
    "RequestIDMiddleware",
]
