"""Redis client for caching and distributed locks"""
import json
import logging
import secrets
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

import redis

from toolsblog.core.config import settings
from toolsblog.core.exceptions import ConcurrentUpdateError

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing fakes to be injected first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


# ============================================================================
# CACHE KEYS
# ============================================================================

def subscription_key(subscription_id: int) -> str:
    return f"subscription:{subscription_id}"


def user_profile_key(user_id: int) -> str:
    return f"user:profile:{user_id}"


def blog_post_key(post_id: int) -> str:
    return f"blog:post:{post_id}"


def affiliate_stats_key(user_id: int, suffix: str) -> str:
    return f"affiliate:stats:{user_id}:{suffix}"


def affiliate_top_tools_key(user_id: int, limit: int) -> str:
    return f"affiliate:top-tools:{user_id}:{limit}"


ANALYTICS_METRICS_PATTERN = "analytics:metrics:*"
ANALYTICS_PROJECTION_PATTERN = "analytics:revenue-projection:*"
PLAN_STATS_KEY = "subscriptions:stats:by-plan"


def subscription_lock_key(external_id: str) -> str:
    return f"lock:subscription:{external_id}"


def user_subscription_lock_key(user_id: int) -> str:
    return f"lock:user-subscription:{user_id}"


# ============================================================================
# CACHE
# ============================================================================

class Cache:
    """JSON cache and lock helpers over an injected redis client.

    Reads and invalidations are best-effort: a redis failure is logged and
    treated as a miss, so a committed database write is never undone by the
    cache being unavailable.
    """

    def __init__(self, client):
        self.client = client

    def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding undecodable cache entry {key}")
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl: int) -> None:
        try:
            self.client.setex(key, ttl, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Cache invalidation failed for {keys}: {e}")

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (SCAN, never KEYS)"""
        removed = 0
        try:
            batch = []
            for key in self.client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    removed += self.client.delete(*batch)
                    batch = []
            if batch:
                removed += self.client.delete(*batch)
        except redis.RedisError as e:
            logger.warning(f"Cache pattern invalidation failed for {pattern}: {e}")
        return removed

    def remember(self, key: str, ttl: int, loader: Callable[[], Any]) -> Any:
        """Return the cached value for key, computing and storing it on a miss"""
        cached = self.get_json(key)
        if cached is not None:
            return cached
        value = loader()
        self.set_json(key, value, ttl)
        return value

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def acquire_lock(self, lock_key: str, timeout: int = 30) -> Optional[str]:
        """Acquire a distributed lock using Redis SET with NX and EX.

        Args:
            lock_key: The lock key to acquire
            timeout: Lock timeout in seconds

        Returns:
            The owner token if the lock was acquired, None if it is held elsewhere
        """
        token = secrets.token_hex(16)
        if self.client.set(lock_key, token, nx=True, ex=timeout):
            return token
        return None

    def release_lock(self, lock_key: str, token: str) -> None:
        """Release a lock only if this caller still owns it.

        Uses WATCH/MULTI so an expired lock re-acquired by someone else is left alone.
        """
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(lock_key)
                if pipe.get(lock_key) == token:
                    pipe.multi()
                    pipe.delete(lock_key)
                    pipe.execute()
                else:
                    pipe.unwatch()
            except redis.WatchError:
                logger.warning(f"Lock {lock_key} changed hands before release")

    @contextmanager
    def lock(self, lock_key: str, timeout: int = None, wait: float = None):
        """Hold lock_key for the duration of the block.

        Raises:
            ConcurrentUpdateError: if the lock could not be acquired within ``wait`` seconds
        """
        timeout = timeout or settings.SUBSCRIPTION_LOCK_TIMEOUT
        wait = settings.SUBSCRIPTION_LOCK_WAIT if wait is None else wait
        deadline = time.monotonic() + wait
        token = self.acquire_lock(lock_key, timeout)
        while token is None:
            if time.monotonic() >= deadline:
                logger.warning(f"Timed out waiting for lock {lock_key}")
                raise ConcurrentUpdateError(f"Resource is locked: {lock_key}")
            time.sleep(0.05)
            token = self.acquire_lock(lock_key, timeout)
        try:
            yield token
        finally:
            self.release_lock(lock_key, token)


def get_cache() -> Cache:
    """Dependency for FastAPI endpoints"""
    return Cache(get_redis_client())
