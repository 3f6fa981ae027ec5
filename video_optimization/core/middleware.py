"""ASGI middleware for CORS, rate limiting, tracing, metrics and logging.

Each class wraps the ASGI app directly instead of going through
``BaseHTTPMiddleware``, so handlers downstream still receive the server's
own ``receive`` channel and ``request.is_disconnected()`` sees a dropped
client.
"""

import logging
import time
import uuid
from typing import Iterable, Optional

from fastapi.responses import PlainTextResponse, Response
from opentelemetry import trace
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from video_optimization.core.logging import (
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from video_optimization.core.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
    RATE_LIMITED_TOTAL,
    RATE_LIMITER_CLIENTS,
)
from video_optimization.core.rate_limiter import RateLimiterRegistry, client_key_from_request
from video_optimization.core.tracing import create_span

logger = logging.getLogger(__name__)


def _client_host(scope: Scope) -> Optional[str]:
    client = scope.get("client")
    return client[0] if client else None


class CORSMiddleware:
    """Single-origin CORS handling.

    Preflight (OPTIONS) requests are answered here with an empty 200 and
    never reach rate limiting or authentication.
    """

    ALLOW_HEADERS = "Content-Type, Authorization"
    ALLOW_METHODS = "GET, POST, OPTIONS"

    def __init__(self, app: ASGIApp, allowed_origin: str):
        self.app = app
        self.allowed_origins = [allowed_origin]

    def _cors_headers(self, headers: Headers) -> dict[str, str]:
        origin = headers.get("origin")
        if not origin:
            return {}

        cors_headers = {
            "Access-Control-Allow-Headers": self.ALLOW_HEADERS,
            "Access-Control-Allow-Methods": self.ALLOW_METHODS,
        }
        if origin in self.allowed_origins:
            cors_headers["Access-Control-Allow-Origin"] = origin
        else:
            logger.warning("Origin not allowed", extra={"origin": origin})
        return cors_headers

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        cors_headers = self._cors_headers(Headers(scope=scope))

        if scope["method"] == "OPTIONS":
            response = Response(status_code=200, headers=cors_headers)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).update(cors_headers)
            await send(message)

        await self.app(scope, receive, send_with_cors)


class RateLimitMiddleware:
    """Reject callers that exhausted their token bucket with 429."""

    def __init__(self, app: ASGIApp, registry: RateLimiterRegistry):
        self.app = app
        self.registry = registry

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        client_key = client_key_from_request(Headers(scope=scope), _client_host(scope))

        allowed = self.registry.allow(client_key)
        RATE_LIMITER_CLIENTS.set(len(self.registry))
        if not allowed:
            RATE_LIMITED_TOTAL.inc()
            logger.warning("Rate limit exceeded", extra={"client_key": client_key})
            response = PlainTextResponse("Too Many Requests", status_code=429)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


class MetricsMiddleware:
    """Records count, latency and concurrency of HTTP requests.

    Paths outside ``known_paths`` share the ``other`` label so scanners
    cannot blow up label cardinality.
    """

    def __init__(self, app: ASGIApp, known_paths: Iterable[str] = ()):
        self.app = app
        self.known_paths = frozenset(known_paths)

    def _endpoint_label(self, path: str) -> str:
        return path if path in self.known_paths else "other"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        endpoint = self._endpoint_label(scope["path"])
        in_progress = HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint)
        status_code = 500

        async def send_with_status(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        in_progress.inc()
        start_time = time.perf_counter()
        try:
            await self.app(scope, receive, send_with_status)
        finally:
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - start_time
            )
            HTTP_REQUESTS_TOTAL.labels(
                method=method, endpoint=endpoint, status_code=str(status_code)
            ).inc()
            in_progress.dec()


class CorrelationIdMiddleware:
    """Binds a correlation ID to the request and echoes it in the response.

    A caller-supplied ``X-Correlation-ID`` is reused when it looks sane;
    otherwise a UUID is generated.
    """

    CORRELATION_ID_HEADER = "X-Correlation-ID"
    MAX_LENGTH = 128

    def __init__(self, app: ASGIApp):
        self.app = app

    def _correlation_id(self, headers: Headers) -> str:
        supplied = headers.get(self.CORRELATION_ID_HEADER, "").strip()
        if supplied and len(supplied) <= self.MAX_LENGTH and supplied.isprintable():
            return supplied
        return str(uuid.uuid4())

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = self._correlation_id(Headers(scope=scope))

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[self.CORRELATION_ID_HEADER] = correlation_id
            await send(message)

        set_correlation_id(correlation_id)
        try:
            await self.app(scope, receive, send_with_id)
        finally:
            clear_correlation_id()


class TracingMiddleware:
    """Opens the server span that pipeline spans nest under."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        path = scope["path"]
        with create_span(
            f"{method} {path}",
            attributes={
                "http.method": method,
                "http.route": path,
                "http.user_agent": Headers(scope=scope).get("user-agent"),
                "correlation_id": get_correlation_id(),
            },
            kind=trace.SpanKind.SERVER,
        ) as span:

            async def send_with_status(message: Message) -> None:
                if message["type"] == "http.response.start":
                    span.set_attribute("http.status_code", message["status"])
                await send(message)

            await self.app(scope, receive, send_with_status)


class RequestLoggingMiddleware:
    """Logs one line per finished request; unhandled errors at ERROR."""

    def __init__(self, app: ASGIApp):
        self.app = app
        self.request_logger = logging.getLogger("video_optimization.requests")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        context = {
            "method": scope["method"],
            "path": scope["path"],
            "client_ip": _client_host(scope),
        }

        async def send_with_status(message: Message) -> None:
            if message["type"] == "http.response.start":
                context["status_code"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        except Exception:
            context["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
            self.request_logger.exception("Request failed", extra=context)
            raise

        context["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
        self.request_logger.info("Request completed", extra=context)
