"""Cluster-wide limit on render submissions.

Celery's ``rate_limit`` is enforced per worker, so N workers would let N
times the provider's allowance through. Starts are instead recorded in one
Redis sorted set that every worker shares.
"""

import time
from collections.abc import Callable
from uuid import uuid4

import redis

from ugc_engine.logging import get_logger

logger = get_logger(__name__)

START_WINDOW_KEY = "ugc:render-starts"


class RenderStartLimiter:
    """Sliding window of render starts, one sorted-set member per start.

    A start is admitted when, after pruning members older than the window,
    the set holds at most ``limit`` members including the new one. A
    rejected start removes its member again, so concurrent rejections can
    only under-admit.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        limit: int,
        window_seconds: float = 60.0,
        key: str = START_WINDOW_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.redis = redis_client
        self.limit = limit
        self.window_seconds = window_seconds
        self.key = key
        self.clock = clock

    def acquire(self) -> float | None:
        """Claim a start slot.

        Returns:
            None when the start may proceed, otherwise the seconds until
            the oldest start in the window ages out.

        Raises:
            redis.exceptions.ConnectionError: Redis is unreachable.
        """
        now = self.clock()
        member = f"{now:.6f}:{uuid4().hex}"

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(self.key, 0, now - self.window_seconds)
        pipe.zadd(self.key, {member: now})
        pipe.zcard(self.key)
        pipe.expire(self.key, int(self.window_seconds) + 1)
        _, _, count, _ = pipe.execute()

        if count <= self.limit:
            return None

        self.redis.zrem(self.key, member)
        oldest = self.redis.zrange(self.key, 0, 0, withscores=True)
        retry_after = self.window_seconds
        if oldest:
            retry_after = oldest[0][1] + self.window_seconds - now
        retry_after = max(retry_after, 1.0)
        logger.info("render_start_window_full", in_window=count - 1, retry_after=retry_after)
        return retry_after
