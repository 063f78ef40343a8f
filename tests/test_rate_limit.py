"""Tests for the cluster-wide render start limiter."""

import pytest
import redis

from ugc_engine.services.rate_limit import RenderStartLimiter

from conftest import FakeRedis


class Clock:
    """Settable stand-in for ``time.time``."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRenderStartLimiter:
    """Tests for the sliding start window."""

    def test_eleventh_start_in_window_is_deferred(self, fake_redis: FakeRedis) -> None:
        """Ten starts pass; the eleventh waits for the oldest to age out."""
        clock = Clock()
        limiter = RenderStartLimiter(fake_redis, limit=10, window_seconds=60.0, clock=clock)

        admitted = [limiter.acquire() for _ in range(10)]
        clock.now += 15.0
        deferred = limiter.acquire()

        assert admitted == [None] * 10
        assert deferred == pytest.approx(45.0)
        assert fake_redis.zcard(limiter.key) == 10

    def test_window_is_shared_between_workers(self, fake_redis: FakeRedis) -> None:
        """Limiters on different workers draw from one budget."""
        clock = Clock()
        worker_a = RenderStartLimiter(fake_redis, limit=2, clock=clock)
        worker_b = RenderStartLimiter(fake_redis, limit=2, clock=clock)

        assert worker_a.acquire() is None
        assert worker_b.acquire() is None
        assert worker_a.acquire() == pytest.approx(60.0)
        assert worker_b.acquire() == pytest.approx(60.0)

    def test_slot_frees_when_window_slides(self, fake_redis: FakeRedis) -> None:
        """Starts older than the window no longer count."""
        clock = Clock()
        limiter = RenderStartLimiter(fake_redis, limit=1, window_seconds=60.0, clock=clock)
        assert limiter.acquire() is None
        assert limiter.acquire() is not None

        clock.now += 60.0

        assert limiter.acquire() is None

    def test_retry_after_has_a_floor(self, fake_redis: FakeRedis) -> None:
        """A slot about to free up still defers by at least a second."""
        clock = Clock()
        limiter = RenderStartLimiter(fake_redis, limit=1, window_seconds=60.0, clock=clock)
        limiter.acquire()
        clock.now += 59.9

        assert limiter.acquire() == 1.0

    def test_redis_outage_propagates(self, fake_redis: FakeRedis) -> None:
        """An unreachable Redis is an infrastructure fault, not an admission."""
        fake_redis.available = False
        limiter = RenderStartLimiter(fake_redis, limit=10)

        with pytest.raises(redis.exceptions.ConnectionError):
            limiter.acquire()

    def test_limit_must_be_positive(self, fake_redis: FakeRedis) -> None:
        """A zero limit would defer every render forever."""
        with pytest.raises(ValueError):
            RenderStartLimiter(fake_redis, limit=0)
