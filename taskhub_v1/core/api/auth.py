"""Actor authentication middleware for the TaskHub API.

Every /v1/* request must carry ``Authorization: Bearer tht_...``. The
verified actor lands on ``request.state.actor``; handlers never look at
headers themselves. Public endpoints (/health, /docs) are always open.
"""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from taskhub_v1.core.api.errors import make_error_envelope
from taskhub_v1.core.errors import AuthenticationRequired
from taskhub_v1.core.security.tokens import TokenIdentityProvider

logger = logging.getLogger("taskhub.api")

# Paths that never require auth.
PUBLIC_PATHS = frozenset({"/health", "/docs", "/openapi.json"})


class ActorAuthMiddleware(BaseHTTPMiddleware):
    """Resolve the current actor from the bearer token on /v1/* endpoints."""

    def __init__(self, app, secret: str) -> None:
        super().__init__(app)
        self.identity = TokenIdentityProvider(secret)
        self.enabled = bool(secret)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request.state.actor = None
        path = request.url.path
        if path in PUBLIC_PATHS or not path.startswith("/v1"):
            return await call_next(request)

        request_id = getattr(request.state, "request_id", None)
        try:
            if not self.enabled:
                raise AuthenticationRequired("Server has no token secret configured")
            request.state.actor = self.identity.current_actor(
                request.headers.get("authorization")
            )
        except AuthenticationRequired as exc:
            logger.warning(
                "auth_rejected request_id=%s path=%s reason=%s",
                request_id or "?", path, exc,
            )
            return JSONResponse(
                status_code=401,
                content=make_error_envelope(exc.code, str(exc), request_id),
                headers={"WWW-Authenticate": "Bearer"},
            )

        return await call_next(request)
