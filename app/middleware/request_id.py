"""Request ID middleware: stores X-Request-ID in the logging context.

Bridge events that carry an X-Request-ID header keep it; others get a UUID4.
The value is picked up by the app logger's LogContextFilter.
"""

from __future__ import annotations

import uuid

from starlette.types import ASGIApp, Receive, Scope, Send

from app.packages.uploader.core.logger import set_request_id


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return
        headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope.get("headers", [])}
        set_request_id(headers.get("x-request-id") or str(uuid.uuid4()))
        try:
            await self.app(scope, receive, send)
        finally:
            set_request_id(None)
