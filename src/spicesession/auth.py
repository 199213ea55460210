"""Bearer-key authentication for the HTTP transports.

Active only when ``SPICESESSION_API_KEY`` is set and the server runs over
SSE or streamable HTTP. Lifespan and websocket scopes pass straight
through; stdio never reaches this module.
"""

from __future__ import annotations

import hmac
import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

_SCHEME = "bearer"


def _challenge(message: str) -> JSONResponse:
    return JSONResponse(
        {"error": message},
        status_code=401,
        headers={"WWW-Authenticate": "Bearer"},
    )


class ApiKeyMiddleware:
    """Reject HTTP requests whose ``Authorization`` header lacks the key.

    Missing or non-bearer headers get 401 with a challenge; a wrong key
    gets 403. Keys are compared in constant time.
    """

    def __init__(self, app: ASGIApp, api_key: str) -> None:
        if not api_key:
            raise ValueError("api_key must not be empty")
        self.app = app
        self._api_key = api_key.encode("utf-8")

    def _check(self, header: str) -> JSONResponse | None:
        if not header:
            return _challenge("Authorization header required")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != _SCHEME:
            return _challenge("Authorization header must use Bearer scheme")
        token = token.strip()
        if not token or not hmac.compare_digest(token.encode("utf-8"), self._api_key):
            return JSONResponse({"error": "Invalid API key"}, status_code=403)
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        rejection = self._check(Request(scope).headers.get("authorization", ""))
        if rejection is not None:
            client = scope.get("client") or ("?", 0)
            logger.warning("Rejected unauthenticated request from %s", client[0])
            await rejection(scope, receive, send)
            return
        await self.app(scope, receive, send)
