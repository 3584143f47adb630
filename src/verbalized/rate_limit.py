from __future__ import annotations

"""Fixed-window request counting per client identity."""

import logging
import random
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Protocol

import redis.asyncio as redis

from .settings import RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS, RateLimitSettings

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass(slots=True)
class RateWindow:
    count: int
    reset_at: float


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class RateStore(Protocol):
    async def increment(self, key: str, window_seconds: int) -> RateWindow:
        """Count one request for ``key`` and return its current window."""
        ...


class MemoryRateStore:
    """Process-wide, bounded in-memory store.

    Created once per process and never torn down. Expired entries are swept
    opportunistically; ``max_entries`` caps growth between sweeps by evicting
    the least recently used identity.
    """

    def __init__(
        self,
        *,
        max_entries: int = 10000,
        sweep_probability: float = 0.01,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._windows: "OrderedDict[str, RateWindow]" = OrderedDict()
        self._lock = threading.Lock()
        self._max_entries = max(1, max_entries)
        self._sweep_probability = sweep_probability
        self._clock = clock
        self._rng = rng

    def __len__(self) -> int:
        return len(self._windows)

    async def increment(self, key: str, window_seconds: int) -> RateWindow:
        with self._lock:
            now = self._clock()
            if self._rng() < self._sweep_probability:
                self._sweep(now)

            window = self._windows.get(key)
            if window is None or window.reset_at < now:
                window = RateWindow(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
            else:
                window.count += 1
            self._windows.move_to_end(key)

            while len(self._windows) > self._max_entries:
                evicted, _ = self._windows.popitem(last=False)
                logger.debug("rate_limit.evicted", extra={"key": evicted})
            return RateWindow(count=window.count, reset_at=window.reset_at)

    def _sweep(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if window.reset_at < now]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("rate_limit.swept", extra={"expired": len(expired)})


class RedisRateStore:
    """Counter store shared across processes through Redis."""

    def __init__(
        self,
        redis_client,
        *,
        prefix: str = "verbalized:rate:",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis_client
        self._prefix = prefix
        self._clock = clock

    async def increment(self, key: str, window_seconds: int) -> RateWindow:
        redis_key = f"{self._prefix}{key}"
        count = int(await self._redis.incr(redis_key))
        if count == 1:
            await self._redis.expire(redis_key, window_seconds)
            ttl = window_seconds
        else:
            ttl = int(await self._redis.ttl(redis_key))
            if ttl < 0:
                # Key lost its expiry (e.g. the EXPIRE never landed); restart the window.
                await self._redis.expire(redis_key, window_seconds)
                ttl = window_seconds
        return RateWindow(count=count, reset_at=self._clock() + ttl)


class RateGate:
    """Allows ``max_requests`` per identity in each ``window_seconds`` window."""

    def __init__(
        self,
        store: Optional[RateStore] = None,
        *,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
    ) -> None:
        self._store = store if store is not None else MemoryRateStore()
        self._max_requests = max_requests
        self._window_seconds = window_seconds

    @classmethod
    def from_settings(cls, cfg: RateLimitSettings) -> "RateGate":
        backend = (cfg.backend or "memory").strip().lower()
        store: RateStore
        if backend == "memory":
            store = MemoryRateStore(max_entries=cfg.max_entries, sweep_probability=cfg.sweep_probability)
        elif backend == "redis":
            store = RedisRateStore(redis.Redis.from_url(cfg.redis_url))
        else:
            raise RuntimeError(f"unsupported rate limit backend: {cfg.backend}")
        return cls(store, max_requests=cfg.max_requests, window_seconds=cfg.window_seconds)

    @property
    def limit(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    async def hit(self, identity: str) -> RateDecision:
        window = await self._store.increment(identity or UNKNOWN_CLIENT, self._window_seconds)
        allowed = window.count <= self._max_requests
        if not allowed:
            logger.warning("rate_limit.rejected", extra={"client": identity, "count": window.count})
        return RateDecision(
            allowed=allowed,
            limit=self._max_requests,
            remaining=max(self._max_requests - window.count, 0),
            retry_after=self._window_seconds,
        )


def client_identity(headers: Mapping[str, str]) -> str:
    """Forwarded address of the caller, or the shared ``unknown`` bucket."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return UNKNOWN_CLIENT


__all__ = [
    "RateGate",
    "RateDecision",
    "RateWindow",
    "RateStore",
    "MemoryRateStore",
    "RedisRateStore",
    "client_identity",
    "UNKNOWN_CLIENT",
]
