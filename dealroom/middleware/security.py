"""HTTP hardening middleware: response security headers and request body size cap.

Both are pure ASGI middleware (no BaseHTTPMiddleware).
"""

import json

import structlog
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = structlog.get_logger()


class SecurityHeadersMiddleware:
    """Append security headers to every HTTP response."""

    _STATIC_HEADERS = [
        ("x-content-type-options", "nosniff"),
        ("x-frame-options", "DENY"),
        ("x-xss-protection", "0"),
        ("referrer-policy", "strict-origin-when-cross-origin"),
        ("cache-control", "no-store"),
    ]
    _HSTS_HEADER = ("strict-transport-security", "max-age=63072000; includeSubDomains")

    def __init__(self, app: ASGIApp, is_production: bool = False) -> None:
        self.app = app
        self._headers = list(self._STATIC_HEADERS)
        if is_production:
            self._headers.append(self._HSTS_HEADER)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def _send(message: dict) -> None:
            if message["type"] == "http.response.start":
                raw = MutableHeaders(scope=message)
                for name, value in self._headers:
                    raw.append(name, value)
            await send(message)

        await self.app(scope, receive, _send)


class RequestBodySizeLimitMiddleware:
    """Reject requests whose Content-Length exceeds ``max_bytes`` with 413.

    File bytes go straight to object storage, so API bodies are small JSON.
    """

    def __init__(self, app: ASGIApp, max_bytes: int = 1_048_576) -> None:
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        raw_cl = headers.get(b"content-length")
        if raw_cl:
            try:
                too_large = int(raw_cl) > self.max_bytes
            except ValueError:
                too_large = False  # malformed header, left to the server
            if too_large:
                logger.warning("request_body_too_large", path=scope.get("path"), content_length=raw_cl.decode())
                body = json.dumps({
                    "error": "payload_too_large",
                    "message": f"Request body too large. Maximum {self.max_bytes} bytes.",
                    "detail": None,
                    "request_id": headers.get(b"x-request-id", b"unknown").decode(),
                }).encode()
                await send(
                    {
                        "type": "http.response.start",
                        "status": 413,
                        "headers": [
                            (b"content-type", b"application/json"),
                            (b"content-length", str(len(body)).encode()),
                        ],
                    }
                )
                await send({"type": "http.response.body", "body": body, "more_body": False})
                return

        await self.app(scope, receive, send)
