"""
Read cache for order listings and reports.

Keys are derived structurally as ``{branch}:{entity}:{query hash}`` so that
invalidating everything an entity depends on is a prefix delete.  Redis is
used when REDIS_URL is reachable, otherwise an in-process TTL cache.
"""
from typing import Any, Callable, Dict, Iterable, Optional
from datetime import datetime, timedelta
import hashlib
import json
import logging

logger = logging.getLogger(__name__)


class SimpleCache:
    """In-memory cache with TTL support and size limit."""

    MAX_ENTRIES = 10000  # Prevent unbounded memory growth

    def __init__(self):
        self._cache: dict = {}
        self._expiry: dict = {}

    def _evict_expired(self):
        """Remove expired entries to reclaim memory."""
        now = datetime.now()
        expired = [k for k, exp in self._expiry.items() if exp <= now]
        for k in expired:
            self._cache.pop(k, None)
            self._expiry.pop(k, None)

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        if key in self._cache:
            if datetime.now() < self._expiry.get(key, datetime.min):
                return self._cache[key]
            del self._cache[key]
            del self._expiry[key]
        return None

    def set(self, key: str, value: Any, ttl_seconds: int = 300):
        """Set value in cache with TTL."""
        if len(self._cache) >= self.MAX_ENTRIES:
            self._evict_expired()
        # Still full: drop the entries closest to expiry
        if len(self._cache) >= self.MAX_ENTRIES:
            oldest_keys = sorted(self._expiry, key=self._expiry.get)[:100]
            for k in oldest_keys:
                self._cache.pop(k, None)
                self._expiry.pop(k, None)
        self._cache[key] = value
        self._expiry[key] = datetime.now() + timedelta(seconds=ttl_seconds)

    def delete(self, key: str):
        self._cache.pop(key, None)
        self._expiry.pop(key, None)

    def clear_prefix(self, prefix: str) -> int:
        """Clear all keys with given prefix, returning how many were removed."""
        keys_to_delete = [k for k in self._cache.keys() if k.startswith(prefix)]
        for key in keys_to_delete:
            self.delete(key)
        return len(keys_to_delete)

    def clear(self):
        self._cache.clear()
        self._expiry.clear()

    def stats(self) -> dict:
        now = datetime.now()
        valid = sum(1 for k, exp in self._expiry.items() if exp > now)
        return {
            "total_keys": len(self._cache),
            "valid_keys": valid,
            "expired_keys": len(self._cache) - valid
        }


class RedisCacheClient:
    """Redis-backed cache with in-memory fallback."""

    def __init__(self, fallback: SimpleCache):
        self._redis = None
        self._fallback = fallback

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    def initialize(self, redis_url: Optional[str] = None):
        if redis_url:
            try:
                import redis
                self._redis = redis.from_url(
                    redis_url, socket_connect_timeout=2, decode_responses=True,
                )
                self._redis.ping()
                logger.info("Redis cache connected")
            except Exception as e:
                logger.warning(f"Redis unavailable, using memory cache: {e}")
                self._redis = None

    def get(self, key: str) -> Optional[Any]:
        if self._redis is not None:
            try:
                val = self._redis.get(key)
                return json.loads(val) if val else None
            except Exception as e:
                logger.warning(f"Redis get failed for {key}: {e}")
        return self._fallback.get(key)

    def set(self, key: str, value: Any, ttl_seconds: int = 300):
        if self._redis is not None:
            try:
                self._redis.setex(key, ttl_seconds, json.dumps(value, default=str))
                return
            except Exception as e:
                logger.warning(f"Redis set failed for {key}: {e}")
        self._fallback.set(key, value, ttl_seconds)

    def invalidate_prefix(self, prefix: str) -> int:
        removed = 0
        if self._redis is not None:
            try:
                cursor = 0
                while True:
                    cursor, keys = self._redis.scan(cursor, match=f"{prefix}*", count=100)
                    if keys:
                        removed += self._redis.delete(*keys)
                    if cursor == 0:
                        break
            except Exception as e:
                logger.warning(f"Redis invalidation failed for {prefix}*: {e}")
        # Entries may have landed in memory while Redis was unreachable
        return removed + self._fallback.clear_prefix(prefix)

    def clear(self):
        if self._redis is not None:
            try:
                self._redis.flushdb()
            except Exception as e:
                logger.warning(f"Redis flush failed: {e}")
        self._fallback.clear()


def make_cache_key(*args, **kwargs) -> str:
    """Generate cache key from arguments."""
    key_data = json.dumps({"args": args, "kwargs": kwargs}, sort_keys=True, default=str)
    return hashlib.md5(key_data.encode()).hexdigest()


# Cache entities
class CacheKeys:
    ORDERS = "orders"
    DAILY_SALES = "daily-sales"
    MONTHLY_SALES = "monthly-sales"
    INSIGHTS = "insights"
    STATS = "stats"

    # What each kind of write makes stale
    ORDER_WRITE = (ORDERS, DAILY_SALES, MONTHLY_SALES, INSIGHTS)
    WITHDRAWAL_WRITE = (DAILY_SALES, MONTHLY_SALES, INSIGHTS)
    VALIDATION_WRITE = (DAILY_SALES,)


class LedgerCache:
    """Branch-partitioned read cache with explicit prefix invalidation."""

    def __init__(self, client: RedisCacheClient):
        self.client = client

    @staticmethod
    def key(branch_id: str, entity: str, params: Optional[Dict[str, Any]] = None) -> str:
        return f"{branch_id}:{entity}:{make_cache_key(**(params or {}))}"

    def get_or_compute(
        self,
        branch_id: str,
        entity: str,
        params: Optional[Dict[str, Any]],
        ttl_seconds: int,
        compute: Callable[[], Any],
    ) -> Any:
        cache_key = self.key(branch_id, entity, params)
        cached_value = self.client.get(cache_key)
        if cached_value is not None:
            logger.debug(f"Cache hit: {cache_key}")
            return cached_value

        logger.debug(f"Cache miss: {cache_key}")
        result = compute()
        self.client.set(cache_key, result, ttl_seconds)
        return result

    def invalidate(self, branch_id: str, entities: Iterable[str]) -> None:
        """Drop every cached read of ``entities`` for the branch."""
        for entity in entities:
            removed = self.client.invalidate_prefix(f"{branch_id}:{entity}:")
            logger.debug(f"Invalidated {removed} cache entries for {branch_id}:{entity}")

    def clear(self) -> None:
        self.client.clear()


# Global cache instances
memory_cache = SimpleCache()
redis_cache = RedisCacheClient(memory_cache)
ledger_cache = LedgerCache(redis_cache)
