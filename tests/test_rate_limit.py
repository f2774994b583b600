import pytest
import redis

from app.tenanthub.cache import (
    MemoryRateLimiter,
    RateLimitExceeded,
    RedisRateLimiter,
    enforce_rate_limit,
    rate_limiter_from_config,
)


class FakePipeline:
    def __init__(self, store, fail=False):
        self.store = store
        self.fail = fail
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    def execute(self):
        if self.fail:
            raise redis.ConnectionError("down")
        out = []
        for op in self.ops:
            if op[0] == "incr":
                self.store[op[1]] = self.store.get(op[1], 0) + 1
                out.append(self.store[op[1]])
            else:
                out.append(True)
        return out


class FakeRedis:
    def __init__(self, fail=False):
        self.store = {}
        self.fail = fail
        self.deleted = []

    def pipeline(self):
        return FakePipeline(self.store, fail=self.fail)

    def scan_iter(self, match):
        prefix = match.rstrip("*")
        return [k for k in list(self.store) if k.startswith(prefix)]

    def delete(self, *keys):
        self.deleted.extend(keys)
        for k in keys:
            self.store.pop(k, None)


def test_memory_limiter_counts_per_key():
    limiter = MemoryRateLimiter()
    results = [limiter.hit("login", "1.2.3.4", limit=2, window_seconds=60) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, False]
    assert results[-1].count == 3
    assert 1 <= results[-1].retry_after <= 60
    assert limiter.hit("login", "5.6.7.8", limit=2, window_seconds=60).allowed


def test_memory_limiter_reset():
    limiter = MemoryRateLimiter()
    for _ in range(3):
        limiter.hit("login", "ip", limit=2, window_seconds=60)
    limiter.reset("login", "ip")
    assert limiter.hit("login", "ip", limit=2, window_seconds=60).count == 1


def test_memory_limiter_prunes_idle_keys():
    now = [1000.0]
    limiter = MemoryRateLimiter(clock=lambda: now[0])
    limiter.PRUNE_EVERY = 1
    for ip in ("a", "b", "c"):
        limiter.hit("login", ip, limit=5, window_seconds=60)
    assert len(limiter._hits) == 3

    now[0] += 61
    limiter.hit("login", "d", limit=5, window_seconds=60)
    assert set(limiter._hits) == {"login:d"}
    assert set(limiter._windows) == {"login:d"}
    # A pruned key starts over.
    assert limiter.hit("login", "a", limit=5, window_seconds=60).count == 1


def test_redis_limiter_fixed_window():
    client = FakeRedis()
    limiter = RedisRateLimiter(client)
    results = [limiter.hit("messages", "1:2", limit=2, window_seconds=60) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, False]
    (key,) = client.store
    assert key.startswith("ratelimit:messages:1:2:")

    limiter.reset("messages", "1:2")
    assert client.deleted == [key]
    assert limiter.hit("messages", "1:2", limit=2, window_seconds=60).count == 1


def test_redis_limiter_fails_open():
    limiter = RedisRateLimiter(FakeRedis(fail=True))
    result = limiter.hit("messages", "1:2", limit=1, window_seconds=60)
    assert result.allowed is True
    assert result.count == 0


def test_limiter_from_config():
    assert isinstance(rate_limiter_from_config({"REDIS_URL": ""}), MemoryRateLimiter)
    assert isinstance(rate_limiter_from_config({}), MemoryRateLimiter)
    assert isinstance(rate_limiter_from_config({"REDIS_URL": "redis://localhost:6379/0"}), RedisRateLimiter)


def test_enforce_rate_limit_raises(app):
    with app.app_context():
        enforce_rate_limit("search", "k", limit=1)
        with pytest.raises(RateLimitExceeded) as exc:
            enforce_rate_limit("search", "k", limit=1)
    assert exc.value.status == 429
    assert exc.value.code == "RATE_LIMITED"
    assert exc.value.details["retryAfter"] == exc.value.retry_after
