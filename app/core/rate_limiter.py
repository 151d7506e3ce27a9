import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from uuid import uuid4

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """Sliding-window limiter. ``allow`` returns ``(allowed, retry_after_seconds)``."""

    @abstractmethod
    def allow(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        raise NotImplementedError


class InMemoryRateLimiter(RateLimiter):
    def __init__(self) -> None:
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= now - window_seconds:
                hits.popleft()

            if len(hits) >= limit:
                return False, max(1, int(hits[0] + window_seconds - now))

            hits.append(now)
            return True, 0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


class RedisRateLimiter(RateLimiter):
    def __init__(self, redis_url: str, prefix: str = "clinic-rl") -> None:
        self._client = redis.Redis.from_url(
            redis_url,
            socket_connect_timeout=0.2,
            socket_timeout=0.2,
            decode_responses=False,
        )
        self._prefix = prefix

    def allow(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        redis_key = f"{self._prefix}:{key}"
        now_ms = int(time.time() * 1000)
        window_ms = window_seconds * 1000
        member = f"{now_ms}:{uuid4().hex}".encode()

        pipe = self._client.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, 0, now_ms - window_ms)
        pipe.zadd(redis_key, {member: now_ms})
        pipe.zcard(redis_key)
        pipe.zrange(redis_key, 0, 0, withscores=True)
        pipe.expire(redis_key, window_seconds + 5)
        _, _, hit_count, oldest, _ = pipe.execute()

        if hit_count <= limit:
            return True, 0

        self._client.zrem(redis_key, member)
        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        return False, max(1, int((oldest_ms + window_ms - now_ms) / 1000))

    def reset(self) -> None:
        keys = self._client.keys(f"{self._prefix}:*")
        if keys:
            self._client.delete(*keys)


class FallbackRateLimiter(RateLimiter):
    def __init__(self, primary: RateLimiter, fallback: RateLimiter) -> None:
        self._primary = primary
        self._fallback = fallback

    def allow(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        try:
            return self._primary.allow(key=key, limit=limit, window_seconds=window_seconds)
        except redis.RedisError as exc:
            logger.warning("rate_limiter_fallback key=%s reason=%s", key, exc)
            return self._fallback.allow(key=key, limit=limit, window_seconds=window_seconds)

    def reset(self) -> None:
        try:
            self._primary.reset()
        except redis.RedisError as exc:
            logger.warning("rate_limiter_reset_failed reason=%s", exc)
        self._fallback.reset()


def build_rate_limiter(backend: str, redis_url: str) -> RateLimiter:
    memory = InMemoryRateLimiter()
    if backend.strip().lower() == "redis":
        return FallbackRateLimiter(primary=RedisRateLimiter(redis_url=redis_url), fallback=memory)
    return memory


rate_limiter: RateLimiter = build_rate_limiter(
    backend=settings.rate_limit_backend,
    redis_url=settings.rate_limit_redis_url,
)
