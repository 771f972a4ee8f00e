from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

import redis

from projectcamp.config import settings
from projectcamp.errors import RateLimited

log = logging.getLogger("projectcamp.rate_limit")


@dataclass
class _Bucket:
  reset_at: float
  count: int


class RateLimiter:
  """
  Fixed-window rate limiter for the unauthenticated auth endpoints.

  Counts live in redis when ``redis_url`` is configured so every replica shares
  them; otherwise they are kept per process.
  """

  def __init__(self, redis_url: str | None = None) -> None:
    self._lock = Lock()
    self._buckets: dict[str, _Bucket] = {}
    self._redis: redis.Redis | None = None
    if redis_url:
      self._redis = redis.Redis.from_url(redis_url, decode_responses=True)

  def hit(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    """
    if self._redis is not None:
      try:
        return self._hit_redis(key, limit=limit, window_seconds=window_seconds)
      except redis.RedisError as exc:
        log.warning("redis rate limiter unavailable, counting in memory: %s", exc)

    now = time.time()
    with self._lock:
      b = self._buckets.get(key)
      if b is None or now >= b.reset_at:
        self._buckets[key] = _Bucket(reset_at=now + window_seconds, count=1)
        return True, 0
      if b.count >= limit:
        retry = max(1, int(b.reset_at - now))
        return False, retry
      b.count += 1
      return True, 0

  def _hit_redis(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    name = f"projectcamp:ratelimit:{key}"
    # MULTI/EXEC: the window key is created with its expiry before the first count lands.
    with self._redis.pipeline(transaction=True) as pipe:
      pipe.set(name, 0, ex=window_seconds, nx=True)
      pipe.incr(name)
      pipe.ttl(name)
      _, count, ttl = pipe.execute()
    if int(count) <= limit:
      return True, 0
    return False, int(ttl) if int(ttl) > 0 else window_seconds

  def reset_prefix(self, prefix: str) -> None:
    with self._lock:
      for k in list(self._buckets.keys()):
        if k.startswith(prefix):
          del self._buckets[k]


def enforce(key: str, *, limit: int, window_seconds: int = 60) -> None:
  allowed, retry_after = limiter.hit(key, limit=limit, window_seconds=window_seconds)
  if allowed:
    return
  raise RateLimited("Too many requests", headers={"Retry-After": str(retry_after)})


limiter = RateLimiter(settings.redis_url)
