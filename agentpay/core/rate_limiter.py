"""
Rate limiting for API protection.
Sliding window limits per client IP, with a stricter profile for the
paid endpoints so a single client cannot flood the facilitator.

Pure ASGI implementation to avoid request body consumption issues
that occur with Starlette's BaseHTTPMiddleware.
"""

import asyncio
import json
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field

from fastapi import Request
from starlette.status import HTTP_429_TOO_MANY_REQUESTS
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from agentpay.core.exceptions import RateLimitError


logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """
    Configuration for rate limiting.

    Attributes:
        requests_per_minute: Maximum requests allowed per minute
        requests_per_hour: Maximum requests allowed per hour
        burst_limit: Maximum burst requests in short window
        burst_window_seconds: Window size for burst detection
        exempt_paths: URL paths exempt from rate limiting
    """
    requests_per_minute: int = 120
    requests_per_hour: int = 3000
    burst_limit: int = 30
    burst_window_seconds: float = 1.0
    exempt_paths: list[str] = field(default_factory=lambda: [
        "/health",
        "/docs",
        "/openapi.json",
        "/redoc",
    ])


@dataclass
class RateLimitState:
    """Tracks request timestamps for a single client."""
    minute_requests: list[float] = field(default_factory=list)
    hour_requests: list[float] = field(default_factory=list)
    burst_requests: list[float] = field(default_factory=list)

    def cleanup(self, now: float, burst_window: float) -> None:
        minute_ago = now - 60
        hour_ago = now - 3600
        burst_ago = now - burst_window

        self.minute_requests = [t for t in self.minute_requests if t > minute_ago]
        self.hour_requests = [t for t in self.hour_requests if t > hour_ago]
        self.burst_requests = [t for t in self.burst_requests if t > burst_ago]

    def record_request(self, now: float) -> None:
        self.minute_requests.append(now)
        self.hour_requests.append(now)
        self.burst_requests.append(now)


class RateLimiter:
    """
    Sliding window rate limiter with minute, hour and burst windows.
    Safe for concurrent use from one event loop.
    """

    def __init__(self, config: RateLimitConfig | None = None):
        self.config = config or RateLimitConfig()
        self._states: dict[str, RateLimitState] = defaultdict(RateLimitState)
        self._lock = asyncio.Lock()
        self._cleanup_interval = 60.0
        self._last_cleanup = time.time()

    async def check_rate_limit(self, client_id: str) -> tuple[bool, dict]:
        """
        Check and record a request for `client_id`.

        Returns:
            Tuple of (is_allowed, limit_info_dict)
        """
        now = time.time()

        async with self._lock:
            if now - self._last_cleanup > self._cleanup_interval:
                self._cleanup_old_states(now)
                self._last_cleanup = now

            state = self._states[client_id]
            state.cleanup(now, self.config.burst_window_seconds)

            minute_count = len(state.minute_requests)
            hour_count = len(state.hour_requests)
            burst_count = len(state.burst_requests)

            limit_info: dict[str, int | float | str] = {
                "minute_count": minute_count,
                "minute_limit": self.config.requests_per_minute,
                "hour_count": hour_count,
                "hour_limit": self.config.requests_per_hour,
                "burst_count": burst_count,
                "burst_limit": self.config.burst_limit,
            }

            if burst_count >= self.config.burst_limit:
                limit_info["exceeded"] = "burst"
                limit_info["retry_after"] = self.config.burst_window_seconds
                return False, limit_info

            if minute_count >= self.config.requests_per_minute:
                oldest = min(state.minute_requests) if state.minute_requests else now
                limit_info["exceeded"] = "minute"
                limit_info["retry_after"] = max(1, 60 - (now - oldest))
                return False, limit_info

            if hour_count >= self.config.requests_per_hour:
                oldest = min(state.hour_requests) if state.hour_requests else now
                limit_info["exceeded"] = "hour"
                limit_info["retry_after"] = max(1, 3600 - (now - oldest))
                return False, limit_info

            state.record_request(now)
            limit_info["remaining_minute"] = self.config.requests_per_minute - minute_count - 1
            limit_info["remaining_hour"] = self.config.requests_per_hour - hour_count - 1

            return True, limit_info

    def _cleanup_old_states(self, now: float) -> None:
        """Remove state for clients with no requests in the last hour."""
        hour_ago = now - 3600
        empty_clients = [
            client_id for client_id, state in self._states.items()
            if not state.hour_requests or max(state.hour_requests) < hour_ago
        ]
        for client_id in empty_clients:
            del self._states[client_id]

        if empty_clients:
            logger.debug(f"Rate limiter cleanup: removed {len(empty_clients)} inactive clients")


def client_id_from_headers(forwarded: str | None, client_host: str | None) -> str:
    """Client identity: first X-Forwarded-For hop, else the socket peer."""
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f"ip:{client_host or 'unknown'}"


class RateLimitMiddleware:
    """
    Pure ASGI middleware that enforces the global per-IP limits and adds
    X-RateLimit-* headers to allowed responses.
    """

    def __init__(self, app: ASGIApp, config: RateLimitConfig | None = None):
        self.app = app
        self.config = config or RateLimitConfig()
        self.limiter = RateLimiter(self.config)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        if path in self.config.exempt_paths:
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        client = scope.get("client")
        client_id = client_id_from_headers(
            headers.get(b"x-forwarded-for", b"").decode() or None,
            client[0] if client else None,
        )

        is_allowed, limit_info = await self.limiter.check_rate_limit(client_id)

        if not is_allowed:
            retry_after = int(limit_info.get("retry_after", 60)) or 1
            exceeded = limit_info.get("exceeded", "unknown")
            logger.warning(
                f"Rate limit exceeded for {client_id}: {exceeded} limit, "
                f"retry after {retry_after}s"
            )
            await self._send_rate_limit_response(send, retry_after, exceeded, limit_info)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.extend([
                    (b"x-ratelimit-limit-minute", str(self.config.requests_per_minute).encode()),
                    (b"x-ratelimit-remaining-minute", str(limit_info.get("remaining_minute", 0)).encode()),
                ])
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_with_headers)

    async def _send_rate_limit_response(
        self,
        send: Send,
        retry_after: int,
        exceeded: str,
        limit_info: dict,
    ) -> None:
        body = json.dumps({
            "error": f"Too many requests. Please retry after {retry_after} seconds.",
            "details": {"limit_type": exceeded, "retry_after": retry_after},
        }).encode()

        await send({
            "type": "http.response.start",
            "status": HTTP_429_TOO_MANY_REQUESTS,
            "headers": [
                (b"content-type", b"application/json"),
                (b"retry-after", str(retry_after).encode()),
                (b"x-ratelimit-limit", str(limit_info.get(f"{exceeded}_limit", 0)).encode()),
                (b"x-ratelimit-remaining", b"0"),
            ],
        })
        await send({"type": "http.response.body", "body": body})


def payment_rate_limit_config(requests_per_minute: int) -> RateLimitConfig:
    """Stricter profile for endpoints that talk to the payment facilitator."""
    return RateLimitConfig(
        requests_per_minute=requests_per_minute,
        requests_per_hour=requests_per_minute * 60,
        burst_limit=max(1, requests_per_minute),
        burst_window_seconds=1.0,
        exempt_paths=[],
    )


async def check_payment_rate_limit(request: Request) -> None:
    """
    Dependency for paid endpoints. Uses the limiter stored on
    `app.state.payment_rate_limiter`; a missing limiter disables the check.

    Raises:
        RateLimitError: When the client exceeded the payment profile
    """
    limiter: RateLimiter | None = getattr(request.app.state, "payment_rate_limiter", None)
    if limiter is None:
        return

    client_id = "payment:" + client_id_from_headers(
        request.headers.get("X-Forwarded-For"),
        request.client.host if request.client else None,
    )

    is_allowed, limit_info = await limiter.check_rate_limit(client_id)
    if not is_allowed:
        retry_after = int(limit_info.get("retry_after", 60)) or 1
        logger.warning(f"Payment rate limit exceeded for {client_id}, retry after {retry_after}s")
        raise RateLimitError(
            f"Too many payment attempts. Please retry after {retry_after} seconds.",
            {"limit_type": limit_info.get("exceeded", "unknown"), "retry_after": retry_after},
        )
