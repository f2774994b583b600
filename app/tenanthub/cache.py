"""
Redis client factory + fixed-window rate limiting.

REDIS_URL set   -> RedisRateLimiter (INCR + EXPIRE per window key, shared across workers).
REDIS_URL empty -> MemoryRateLimiter (per-process; local dev and tests).
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import redis
from flask import Flask, current_app

from app.tenanthub.errors import ApiError

logger = logging.getLogger(__name__)


class RateLimitExceeded(ApiError):
    status = 429

    def __init__(self, scope: str, retry_after: int):
        super().__init__(
            429,
            "RATE_LIMITED",
            f"Too many requests ({scope}). Retry in {retry_after}s.",
            {"retryAfter": retry_after},
        )
        self.retry_after = retry_after


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    retry_after: int


def create_redis_client(url: str) -> redis.Redis:
    """Connection-pooled client; decode_responses so values come back as str."""
    client = redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
    )
    logger.info("[Redis] client configured for %s", url.split("@")[-1])
    return client


class RateLimiter:
    def hit(self, scope: str, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        raise NotImplementedError

    def reset(self, scope: str, key: str) -> None:
        raise NotImplementedError


class RedisRateLimiter(RateLimiter):
    KEY_PREFIX = "ratelimit:"

    def __init__(self, client: redis.Redis):
        self._redis = client

    def _key(self, scope: str, key: str, window_index: int) -> str:
        return f"{self.KEY_PREFIX}{scope}:{key}:{window_index}"

    def hit(self, scope: str, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = int(time.time())
        window_index = now // window_seconds
        k = self._key(scope, key, window_index)
        retry_after = window_seconds - (now % window_seconds)
        try:
            pipe = self._redis.pipeline()
            pipe.incr(k)
            pipe.expire(k, window_seconds)
            count, _ = pipe.execute()
        except redis.RedisError as e:
            # fail open
            logger.warning("rate_limiter_error key=%s error=%s", k, e)
            return RateLimitResult(allowed=True, count=0, limit=limit, retry_after=retry_after)
        count = int(count)
        return RateLimitResult(allowed=count <= limit, count=count, limit=limit, retry_after=retry_after)

    def reset(self, scope: str, key: str) -> None:
        keys = list(self._redis.scan_iter(match=f"{self.KEY_PREFIX}{scope}:{key}:*"))
        if keys:
            self._redis.delete(*keys)


class MemoryRateLimiter(RateLimiter):
    """Sliding-window counter kept in process memory."""

    # Idle keys are pruned every N hits.
    PRUNE_EVERY = 256

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._hits: dict[str, list[float]] = {}
        self._windows: dict[str, int] = {}
        self._calls = 0
        self._clock = clock
        self._lock = threading.Lock()

    def hit(self, scope: str, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = self._clock()
        cutoff = now - window_seconds
        k = f"{scope}:{key}"
        with self._lock:
            self._calls += 1
            if self._calls % self.PRUNE_EVERY == 0:
                self._prune(now)
            hits = [t for t in self._hits.get(k, ()) if t > cutoff]
            hits.append(now)
            self._hits[k] = hits
            self._windows[k] = window_seconds
            count = len(hits)
            oldest = hits[0]
        retry_after = max(1, int(oldest + window_seconds - now))
        return RateLimitResult(allowed=count <= limit, count=count, limit=limit, retry_after=retry_after)

    def _prune(self, now: float) -> None:
        expired = [k for k, hits in self._hits.items() if not hits or hits[-1] <= now - self._windows.get(k, 0)]
        for k in expired:
            del self._hits[k]
            self._windows.pop(k, None)

    def reset(self, scope: str, key: str) -> None:
        with self._lock:
            self._hits.pop(f"{scope}:{key}", None)
            self._windows.pop(f"{scope}:{key}", None)


def rate_limiter_from_config(config: dict) -> RateLimiter:
    url = (config.get("REDIS_URL") or "").strip()
    if url:
        return RedisRateLimiter(create_redis_client(url))
    return MemoryRateLimiter()


def init_rate_limiter(app: Flask) -> None:
    app.extensions["rate_limiter"] = rate_limiter_from_config(app.config)


def get_rate_limiter(app: Flask | None = None) -> RateLimiter:
    app = app or current_app
    return app.extensions["rate_limiter"]


def enforce_rate_limit(scope: str, key: str, *, limit: int, window_seconds: int = 60) -> RateLimitResult:
    """Count one hit; raise RateLimitExceeded (429) once over the limit."""
    result = get_rate_limiter().hit(scope, key, limit=limit, window_seconds=window_seconds)
    if not result.allowed:
        logger.warning("Rate limit hit scope=%s key=%s count=%s limit=%s", scope, key, result.count, limit)
        raise RateLimitExceeded(scope, result.retry_after)
    return result
