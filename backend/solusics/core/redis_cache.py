"""
Redis cache utilities
Short-lived gateway views and the per-tenant in-flight guard
"""
import json
import logging
from typing import Optional, Any
import redis
from solusics.core.config import settings

logger = logging.getLogger(__name__)

# Redis client (singleton)
_redis_client: Optional[redis.Redis] = None

# compare-and-delete, so an expired holder cannot drop a newer holder's marker
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def get_redis_client() -> Optional[redis.Redis]:
    """Return the shared Redis client, or None when Redis is unreachable"""
    global _redis_client
    if _redis_client is None:
        try:
            _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            _redis_client.ping()
            logger.info("Redis connected")
        except Exception as e:
            logger.warning(f"Redis unavailable, running without cache: {e}")
            _redis_client = None
    return _redis_client


def set_redis_client(client: Optional[redis.Redis]):
    """Replace the shared client (worker bootstrap, tests)"""
    global _redis_client
    _redis_client = client


class RedisCache:
    """Redis cache helpers"""

    @staticmethod
    def get(key: str) -> Optional[Any]:
        try:
            client = get_redis_client()
            if client is None:
                return None
            data = client.get(key)
            if data:
                return json.loads(data)
            return None
        except Exception as e:
            logger.error(f"Redis get failed {key}: {e}")
            return None

    @staticmethod
    def set(key: str, value: Any, ttl: int = 300) -> bool:
        """Cache a JSON value (5 minutes by default)"""
        try:
            client = get_redis_client()
            if client is None:
                return False
            client.setex(key, ttl, json.dumps(value, ensure_ascii=False))
            return True
        except Exception as e:
            logger.error(f"Redis set failed {key}: {e}")
            return False

    @staticmethod
    def delete(key: str) -> bool:
        try:
            client = get_redis_client()
            if client is None:
                return False
            client.delete(key)
            return True
        except Exception as e:
            logger.error(f"Redis delete failed {key}: {e}")
            return False

    @staticmethod
    def acquire(key: str, ttl: int, owner: str) -> bool:
        """
        Take a short-lived exclusive marker held by ``owner``

        Returns True when acquired. Without Redis there is nothing to
        de-duplicate against, so the caller proceeds.
        """
        try:
            client = get_redis_client()
            if client is None:
                return True
            return bool(client.set(key, owner, nx=True, ex=ttl))
        except Exception as e:
            logger.error(f"Redis acquire failed {key}: {e}")
            return True

    @staticmethod
    def release(key: str, owner: str) -> bool:
        """Drop the marker only while ``owner`` still holds it"""
        try:
            client = get_redis_client()
            if client is None:
                return False
            return bool(client.eval(RELEASE_SCRIPT, 1, key, owner))
        except Exception as e:
            logger.error(f"Redis release failed {key}: {e}")
            return False


def device_state_key(user_id: int) -> str:
    return f"fonnte:device_state:{user_id}"


def sync_guard_key(user_id: int) -> str:
    return f"fonnte:sync_guard:{user_id}"
