"""
AFFILIFY - Fixed-Window Rate Limiter

A limiter pairs a WindowStore with a RateLimitPolicy and answers one
question per request: may it proceed, and how much quota is left?

Windows are fixed, not sliding. A client can spend ``max_requests`` at the
end of one window and ``max_requests`` again right after the rollover.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from starlette.requests import Request

from affilify.errors import ServiceUnavailable, StoreUnavailable
from affilify.services.window_store import Clock, WindowCounter, WindowStore

logger = logging.getLogger("affilify.ratelimit")

DEFAULT_MESSAGE = "Too many requests, please try again later."
UNKNOWN_CLIENT = "unknown"


# ═══════════════════════════════════════════════════════
#  Client identity
# ═══════════════════════════════════════════════════════


def get_client_ip(request: Request) -> str:
    """
    Client address: first X-Forwarded-For hop, then the peer address.

    Unresolvable clients all share the ``"unknown"`` bucket.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def ip_key(prefix: str) -> Callable[[Request], str]:
    """Key generator producing ``"<prefix>:<client ip>"``."""

    def key_generator(request: Request) -> str:
        return f"{prefix}:{get_client_ip(request)}"

    return key_generator


# ═══════════════════════════════════════════════════════
#  Policy & decision
# ═══════════════════════════════════════════════════════


@dataclass(frozen=True)
class RateLimitPolicy:
    window_seconds: float
    max_requests: int
    key_generator: Callable[[Request], str] = field(default=ip_key("rate_limit"))
    message: str = DEFAULT_MESSAGE
    fail_open: bool = True

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_time: float  # unix seconds
    retry_after: Optional[int] = None  # seconds, set only on denial

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset_time, tz=timezone.utc)

    def to_headers(self, prefix: str = "X-RateLimit") -> dict[str, str]:
        headers = {
            f"{prefix}-Limit": str(self.limit),
            f"{prefix}-Remaining": str(self.remaining),
            f"{prefix}-Reset": self.reset_at.isoformat(),
        }
        if not self.allowed:
            headers["Retry-After"] = str(
                self.retry_after if self.retry_after is not None else 60
            )
        return headers


# ═══════════════════════════════════════════════════════
#  Window accounting
# ═══════════════════════════════════════════════════════


async def consume_window(
    store: WindowStore,
    key: str,
    *,
    window_seconds: float,
    max_requests: int,
    now: float,
) -> QuotaDecision:
    """Count one request against ``key`` and decide. Store errors propagate."""
    current = await store.get(key)

    if current is None or current.is_expired(now):
        reset_time = now + window_seconds
        await store.set(key, WindowCounter(count=1, reset_time=reset_time), window_seconds)
        return QuotaDecision(
            allowed=True,
            limit=max_requests,
            remaining=max_requests - 1,
            reset_time=reset_time,
        )

    if current.count >= max_requests:
        return QuotaDecision(
            allowed=False,
            limit=max_requests,
            remaining=0,
            reset_time=current.reset_time,
            retry_after=max(0, math.ceil(current.reset_time - now)),
        )

    updated = await store.increment(key)
    return QuotaDecision(
        allowed=True,
        limit=max_requests,
        remaining=max(0, max_requests - updated.count),
        reset_time=updated.reset_time,
    )


def store_failure_decision(
    key: str,
    exc: Exception,
    *,
    window_seconds: float,
    max_requests: int,
    fail_open: bool,
    now: float,
) -> QuotaDecision:
    """Decision used when the store could not answer."""
    if not fail_open:
        logger.error("Rate limit store failure for %s, failing closed: %s", key, exc)
        raise ServiceUnavailable("rate-limit store") from exc

    if isinstance(exc, StoreUnavailable):
        logger.warning("Rate limit store unavailable for %s, allowing: %s", key, exc)
    else:
        logger.exception("Rate limit check failed for %s, allowing", key)
    return QuotaDecision(
        allowed=True,
        limit=max_requests,
        remaining=max_requests,
        reset_time=now + window_seconds,
    )


class RateLimiter:
    """IP-keyed (or custom-keyed) limiter for one policy."""

    def __init__(self, store: WindowStore, policy: RateLimitPolicy, clock: Clock = time.time):
        self.store = store
        self.policy = policy
        self._clock = clock

    async def check_limit(self, request: Request) -> QuotaDecision:
        try:
            key = self.policy.key_generator(request)
        except Exception as exc:
            return store_failure_decision(
                f"<unkeyed {request.url.path}>",
                exc,
                window_seconds=self.policy.window_seconds,
                max_requests=self.policy.max_requests,
                fail_open=self.policy.fail_open,
                now=self._clock(),
            )
        return await self.check_key(key)

    async def check_key(self, key: str) -> QuotaDecision:
        now = self._clock()
        try:
            decision = await consume_window(
                self.store,
                key,
                window_seconds=self.policy.window_seconds,
                max_requests=self.policy.max_requests,
                now=now,
            )
        except Exception as exc:
            return store_failure_decision(
                key,
                exc,
                window_seconds=self.policy.window_seconds,
                max_requests=self.policy.max_requests,
                fail_open=self.policy.fail_open,
                now=now,
            )

        if not decision.allowed:
            logger.info("Rate limit hit for %s (retry in %ss)", key, decision.retry_after)
        return decision
