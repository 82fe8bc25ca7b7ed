"""
Redis Service for the campground booking engine
Handles per-site locks, hold status cache and idempotency keys
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import redis.asyncio as aioredis

from .config import settings

logger = logging.getLogger(__name__)

# Delete the lock only if we still own it
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisService:
    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url or 'redis://localhost:6379/0'
        self.redis_client: Optional[aioredis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        try:
            self.redis_client = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            # Test connection
            await self.redis_client.ping()
            logger.info("✅ Connected to Redis")
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {e}")
            raise

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis_client:
            await self.redis_client.aclose()
            logger.info("📴 Disconnected from Redis")

    async def get(self, key: str) -> Optional[str]:
        """Get value from Redis"""
        try:
            return await self.redis_client.get(key)
        except Exception as e:
            logger.error(f"Error getting key {key}: {e}")
            return None

    async def set(self, key: str, value: str, expire: Optional[int] = None) -> bool:
        """Set value in Redis with optional expiration"""
        try:
            if expire:
                return bool(await self.redis_client.setex(key, expire, value))
            return bool(await self.redis_client.set(key, value))
        except Exception as e:
            logger.error(f"Error setting key {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from Redis"""
        try:
            result = await self.redis_client.delete(key)
            return result > 0
        except Exception as e:
            logger.error(f"Error deleting key {key}: {e}")
            return False

    async def ttl(self, key: str) -> int:
        """Get time to live for key"""
        try:
            return await self.redis_client.ttl(key)
        except Exception as e:
            logger.error(f"Error getting TTL for key {key}: {e}")
            return -1

    # JSON helpers
    async def set_json(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        """Set JSON value in Redis"""
        try:
            json_str = json.dumps(value, default=str)
            return await self.set(key, json_str, expire)
        except Exception as e:
            logger.error(f"Error setting JSON key {key}: {e}")
            return False

    async def get_json(self, key: str) -> Optional[Any]:
        """Get JSON value from Redis"""
        try:
            value = await self.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.error(f"Error getting JSON key {key}: {e}")
            return None

    # Lock operations for site allocation
    async def acquire_lock(self, resource: str, timeout: int = 10) -> Optional[str]:
        """
        Try once to acquire the distributed lock for a resource (e.g. a site).
        Returns the owner token if acquired, None otherwise.
        """
        lock_key = f"lock:{resource}"
        token = str(uuid.uuid4())

        try:
            # SET NX (only if not exists) with expiry so a crashed owner cannot wedge the site
            result = await self.redis_client.set(lock_key, token, nx=True, ex=timeout)

            if result:
                logger.info(f"🔒 Acquired lock for {resource}")
                return token
            logger.info(f"⏰ Lock already held for {resource}")
            return None

        except Exception as e:
            logger.error(f"Error acquiring lock for {resource}: {e}")
            return None

    async def release_lock(self, resource: str, token: str) -> bool:
        """Release the lock for resource, only if `token` still owns it"""
        lock_key = f"lock:{resource}"

        try:
            result = await self.redis_client.eval(RELEASE_LOCK_SCRIPT, 1, lock_key, token)
            if result:
                logger.info(f"🔓 Released lock for {resource}")
            else:
                logger.warning(f"Lock for {resource} expired or was taken over before release")
            return bool(result)
        except Exception as e:
            logger.error(f"Error releasing lock for {resource}: {e}")
            return False

    @asynccontextmanager
    async def site_lock(
        self,
        site_id: str,
        timeout: Optional[int] = None,
        wait_seconds: Optional[float] = None,
        retry_interval: float = 0.05
    ):
        """
        Hold the per-site lock for the duration of the block.
        Yields the owner token, or None if the lock could not be obtained in time.
        """
        timeout = timeout or settings.site_lock_timeout_seconds
        wait_seconds = settings.site_lock_wait_seconds if wait_seconds is None else wait_seconds
        resource = f"site:{site_id}"

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds
        token = await self.acquire_lock(resource, timeout=timeout)
        while token is None and loop.time() < deadline:
            await asyncio.sleep(retry_interval)
            token = await self.acquire_lock(resource, timeout=timeout)

        try:
            yield token
        finally:
            if token is not None:
                await self.release_lock(resource, token)

    # Hold status cache
    async def cache_hold(self, hold_id: str, hold_data: Dict[str, Any], expire_seconds: int) -> bool:
        """Cache hold status until it expires"""
        return await self.set_json(f"hold:{hold_id}", hold_data, expire=max(int(expire_seconds), 1))

    async def get_hold_info(self, hold_id: str) -> Optional[Dict[str, Any]]:
        """Get cached hold information"""
        hold_key = f"hold:{hold_id}"

        try:
            hold_data = await self.get_json(hold_key)
            if hold_data:
                # Add TTL information
                hold_data['remaining_seconds'] = await self.ttl(hold_key)
            return hold_data
        except Exception as e:
            logger.error(f"Error getting hold info for {hold_id}: {e}")
            return None

    async def forget_hold(self, hold_id: str) -> bool:
        return await self.delete(f"hold:{hold_id}")

    # Idempotency
    async def get_idempotency_result(self, key_hash: str) -> Optional[Dict[str, Any]]:
        return await self.get_json(f"idempotency:{key_hash}")

    async def store_idempotency_key(self, key_hash: str, result: Dict[str, Any], expire: Optional[int] = None) -> bool:
        return await self.set_json(
            f"idempotency:{key_hash}",
            result,
            expire=expire or settings.idempotency_ttl_seconds
        )


# Global Redis service instance
redis_service = RedisService()


# FastAPI dependency
async def get_redis() -> Optional[RedisService]:
    """Dependency for FastAPI to get the Redis service; None when Redis is not configured"""
    if not settings.redis_url:
        return None
    if not redis_service.redis_client:
        await redis_service.connect()
    return redis_service
