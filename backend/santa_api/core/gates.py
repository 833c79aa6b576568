"""Shared-secret gates in front of the whole app.

Deployments that sit behind a proxy (or a staging environment that should
not be public) set a secret; every request then has to carry it in a header.
"""
import logging

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from santa_api.core.errors import Forbidden
from santa_api.core.ids import tokens_match

logger = logging.getLogger("santa.gates")

STAGING_HEADER = "X-Staging-Secret"
PROXY_HEADER = "X-Proxy-Secret"


class SharedSecretGate:
    def __init__(self, app: ASGIApp, header_name: str, secret: str) -> None:
        self.app = app
        self.header_name = header_name
        self.secret = secret
        self._header_key = header_name.lower().encode("latin-1")

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.enabled or scope.get("method") == "OPTIONS":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        provided = headers.get(self._header_key, b"").decode("latin-1")
        if tokens_match(self.secret, provided):
            await self.app(scope, receive, send)
            return

        forwarded = headers.get(b"x-forwarded-for", b"").decode("latin-1")
        client = scope.get("client")
        logger.warning(
            "Rejected request without valid %s path=%s forwarded_for=%s client=%s",
            self.header_name,
            scope.get("path"),
            forwarded or "-",
            client[0] if client else "-",
        )
        error = Forbidden("Access denied")
        response = JSONResponse(status_code=error.status_code, content={"detail": error.message})
        await response(scope, receive, send)
