"""Response headers that let the LMS frame LaunchBridge pages."""

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class EmbeddingHeadersMiddleware(BaseHTTPMiddleware):
    """Add ``frame-ancestors`` CSP and disable caching on every response.

    Launch pages embed per-launch tickets and must never be cached.
    """

    def __init__(self, app, frame_ancestors: str):
        super().__init__(app)
        self.csp = f"frame-ancestors {frame_ancestors.strip()};"

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store"
        response.headers["Content-Security-Policy"] = self.csp
        return response
