"""
AFFILIFY - Window Store
Counter storage for the fixed-window rate limiters.

Two backends share the ``WindowStore`` contract:
  - MemoryWindowStore: process-local dict, single instance only
  - RedisWindowStore: shared Redis, required for multi-instance deployments

Store failures are raised as ``StoreUnavailable``; whether that allows or
blocks the request is decided by the limiter's policy.
"""
import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from affilify.config import Settings
from affilify.errors import StoreUnavailable

logger = logging.getLogger("affilify.ratelimit.store")

Clock = Callable[[], float]


@dataclass
class WindowCounter:
    """Requests seen for one key in the current window."""

    count: int
    reset_time: float  # unix seconds at which the window ends

    def is_expired(self, now: float) -> bool:
        return now > self.reset_time


class WindowStore(ABC):
    """Abstract counter store keyed by string."""

    backend = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[WindowCounter]:
        """Return the live counter for ``key``, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, counter: WindowCounter, ttl: float) -> None:
        """Upsert ``counter`` with an expiry at or after ``ttl`` seconds."""

    @abstractmethod
    async def increment(self, key: str) -> WindowCounter:
        """Add one to ``key``, opening a default-length window if absent."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


# ═══════════════════════════════════════════════════════
#  In-memory store
# ═══════════════════════════════════════════════════════


class MemoryWindowStore(WindowStore):
    """
    Process-local store for development and single-instance deployments.

    None of the methods await between reading and writing a counter, so
    each call is atomic with respect to other coroutines on the loop.
    Expired entries are swept lazily, at most once per ``sweep_interval``.
    """

    backend = "memory"

    def __init__(
        self,
        default_window: float = 60.0,
        clock: Clock = time.time,
        sweep_interval: float = 60.0,
    ):
        self._counters: dict[str, WindowCounter] = {}
        self._default_window = default_window
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._counters)

    def _sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        expired = [k for k, c in self._counters.items() if c.is_expired(now)]
        for key in expired:
            del self._counters[key]
        self._next_sweep = now + self._sweep_interval
        if expired:
            logger.debug("Evicted %d expired window(s)", len(expired))

    def _live(self, key: str, now: float) -> Optional[WindowCounter]:
        counter = self._counters.get(key)
        if counter is None:
            return None
        if counter.is_expired(now):
            del self._counters[key]
            return None
        return counter

    async def get(self, key: str) -> Optional[WindowCounter]:
        now = self._clock()
        self._sweep(now)
        counter = self._live(key, now)
        return replace(counter) if counter else None

    async def set(self, key: str, counter: WindowCounter, ttl: float) -> None:
        # the entry dies at counter.reset_time; the sweep evicts it after that
        self._sweep(self._clock())
        self._counters[key] = replace(counter)

    async def increment(self, key: str) -> WindowCounter:
        now = self._clock()
        self._sweep(now)
        counter = self._live(key, now)
        if counter is None:
            counter = WindowCounter(count=1, reset_time=now + self._default_window)
            self._counters[key] = counter
        else:
            counter.count += 1
        return replace(counter)


# ═══════════════════════════════════════════════════════
#  Redis store
# ═══════════════════════════════════════════════════════


class RedisWindowStore(WindowStore):
    """
    Shared store backed by Redis.

    The count lives under the key as an integer string and the window end
    is the key's expiry, so ``reset_time`` is derived from ``PTTL``.
    """

    backend = "redis"

    # INCR, then open the window only if the key has no expiry yet.
    INCREMENT_SCRIPT = """
    local count = redis.call('INCR', KEYS[1])
    local ttl = redis.call('PTTL', KEYS[1])
    if ttl < 0 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
        ttl = tonumber(ARGV[1])
    end
    return {count, ttl}
    """

    def __init__(
        self,
        client: "redis.Redis",
        default_window: float = 60.0,
        clock: Clock = time.time,
    ):
        self._redis = client
        self._default_window_ms = int(default_window * 1000)
        self._clock = clock

    async def get(self, key: str) -> Optional[WindowCounter]:
        try:
            raw = await self._redis.get(key)
            if raw is None:
                return None
            ttl_ms = await self._redis.pttl(key)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Redis get failed for %s: %s", key, exc)
            raise StoreUnavailable(str(exc)) from exc

        if ttl_ms is None or ttl_ms < 0:
            # vanished between the two calls, or was written without expiry
            return None
        return WindowCounter(count=int(raw), reset_time=self._clock() + ttl_ms / 1000)

    async def set(self, key: str, counter: WindowCounter, ttl: float) -> None:
        remaining = max(ttl, counter.reset_time - self._clock())
        try:
            await self._redis.set(key, counter.count, px=max(1, math.ceil(remaining * 1000)))
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Redis set failed for %s: %s", key, exc)
            raise StoreUnavailable(str(exc)) from exc

    async def increment(self, key: str) -> WindowCounter:
        try:
            count, ttl_ms = await self._redis.eval(
                self.INCREMENT_SCRIPT, 1, key, self._default_window_ms
            )
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Redis increment failed for %s: %s", key, exc)
            raise StoreUnavailable(str(exc)) from exc
        return WindowCounter(
            count=int(count), reset_time=self._clock() + int(ttl_ms) / 1000
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        await self._redis.aclose()


# ═══════════════════════════════════════════════════════
#  Factory
# ═══════════════════════════════════════════════════════


def create_window_store(settings: Settings, clock: Clock = time.time) -> WindowStore:
    """Pick the store backend from configuration."""
    window = settings.RATE_LIMIT_DEFAULT_WINDOW_SECONDS
    if settings.REDIS_URL:
        client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
        )
        logger.info("Rate limiting uses the Redis window store")
        return RedisWindowStore(client, default_window=window, clock=clock)

    if settings.is_production:
        logger.warning(
            "REDIS_URL is not set: in-memory rate limiting does not work "
            "across multiple instances"
        )
    return MemoryWindowStore(default_window=window, clock=clock)
