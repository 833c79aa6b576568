"""Rate limiting with per-client token buckets.

The limiter is a plain object handed to the app (``app.state.rate_limiter``)
instead of module state, so a shared store can replace it behind the same
``RateLimiter`` protocol.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from fastapi import Request

from santa_api.core.audit import audit_rate_limit_exceeded
from santa_api.core.config import settings
from santa_api.core.errors import RateLimited


logger = logging.getLogger("santa.rate_limit")

PRUNE_EVERY = 100


class RateLimiter(Protocol):
    def check(self, key: str) -> tuple[bool, int]: ...

    def prune(self) -> int: ...


@dataclass
class TokenBucket:
    """Tokens available to a single client."""
    tokens: float
    last_refill: float


class TokenBucketRateLimiter:
    """In-memory token buckets: ``capacity`` requests per ``window_seconds``, refilled continuously."""

    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        retention_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._request_count = 0

    @property
    def refill_rate(self) -> float:
        return self.capacity / self.window_seconds

    def _refill(self, bucket: TokenBucket, now: float) -> None:
        elapsed = now - bucket.last_refill
        if elapsed > 0:
            bucket.tokens = min(float(self.capacity), bucket.tokens + elapsed * self.refill_rate)
            bucket.last_refill = now

    def check(self, key: str) -> tuple[bool, int]:
        """
        Take one token for ``key`` if available.

        Returns:
            tuple[bool, int]: (is_allowed, retry_after_seconds)
        """
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(tokens=float(self.capacity), last_refill=now)
            self._buckets[key] = bucket

        self._refill(bucket, now)

        self._request_count += 1
        if self._request_count % PRUNE_EVERY == 0:
            self.prune()

        if bucket.tokens < 1.0:
            retry_after = int((1.0 - bucket.tokens) / self.refill_rate) + 1
            return False, retry_after

        bucket.tokens -= 1.0
        return True, 0

    def prune(self) -> int:
        """Drop buckets that have been idle longer than the retention period."""
        now = self._clock()
        stale_keys = [
            key for key, bucket in self._buckets.items()
            if now - bucket.last_refill > self.retention_seconds
        ]
        for key in stale_keys:
            del self._buckets[key]
        if stale_keys:
            logger.debug("Pruned %d idle rate limit buckets", len(stale_keys))
        return len(stale_keys)

    def __len__(self) -> int:
        return len(self._buckets)


def build_rate_limiter() -> TokenBucketRateLimiter:
    return TokenBucketRateLimiter(
        capacity=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        retention_seconds=settings.rate_limit_retention_seconds,
    )


def get_client_identifier(request: Request) -> str:
    """Get unique identifier for the client."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
        if client_ip:
            return f"ip:{client_ip}"

    if request.client:
        return f"ip:{request.client.host}"

    return "ip:unknown"


async def enforce_rate_limit(request: Request) -> None:
    """Router dependency: reject the request when the client's bucket is empty."""
    if not settings.rate_limit_enabled:
        return

    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return

    client_id = get_client_identifier(request)
    allowed, retry_after = limiter.check(client_id)
    if not allowed:
        logger.warning(
            "Rate limit exceeded for %s on %s, retry_after=%ds",
            client_id,
            request.url.path,
            retry_after,
        )
        audit_rate_limit_exceeded(request, request.url.path, retry_after)
        raise RateLimited(retry_after)
