"""
Request ID middleware for request tracing.

Propagates a client-supplied X-Request-ID when it looks sane, otherwise
generates one, and exposes it to log records via request_id_var.
"""

import logging
import re
import uuid
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from logging_config import request_id_var

logger = logging.getLogger(__name__)

# Client IDs end up in log lines; keep them short and printable
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    HTTP middleware for request ID generation and propagation.
    """

    def __init__(
        self,
        app,
        header_name: str = "X-Request-ID",
        generator: Optional[Callable[[], str]] = None,
    ):
        super().__init__(app)
        self.header_name = header_name
        self.generator = generator or (lambda: uuid.uuid4().hex)

    def resolve_request_id(self, request: Request) -> str:
        """Return the incoming request ID if well-formed, else a fresh one."""
        incoming = request.headers.get(self.header_name)
        if incoming and REQUEST_ID_PATTERN.match(incoming):
            return incoming
        return self.generator()

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = self.resolve_request_id(request)
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            request_id_var.reset(token)
