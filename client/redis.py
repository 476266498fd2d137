import redis
import json
import logging
import os
from typing import Any, Dict, List, Optional


class Client:
    def __init__(self, redis_url: str = None, client: Optional[redis.Redis] = None, socket_timeout: float = 2.0):
        """
        Initialize Redis client for the read-through cache

        Args:
            redis_url: Redis connection URL (from environment)
            client: Pre-built redis client (tests pass a fakeredis instance)
            socket_timeout: Seconds before a Redis call is abandoned

        An unreachable Redis is logged but not raised: every cache call
        degrades to a miss or a no-op so the feed keeps working uncached.
        """
        self.logger = logging.getLogger(self.__class__.__name__)

        if client is not None:
            self.client = client
            return

        if not redis_url:
            redis_url = os.getenv('REDIS_URL', 'redis://localhost:6379')

        self.client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        try:
            # Test connection
            self.client.ping()
            self.logger.info("Redis connection established")
        except redis.RedisError as e:
            self.logger.error(f"Failed to connect to Redis, serving uncached: {e}")

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a cached value

        Args:
            key: Cache key

        Returns:
            Decoded JSON value, or None if missing, expired, corrupt or Redis failed
        """
        try:
            data = self.client.get(key)

            if data is None:
                self.logger.debug(f"Cache miss: {key}")
                return None

            self.logger.debug(f"Cache hit: {key}")
            return json.loads(data)

        except json.JSONDecodeError as e:
            self.logger.error(f"Corrupt cache entry {key}, ignoring: {e}")
            return None
        except redis.RedisError as e:
            self.logger.error(f"Failed to read cache key {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store a JSON-serializable value

        Args:
            key: Cache key
            value: Value to serialize
            ttl: Time to live in seconds (no expiry when falsy)

        Returns:
            True if successful, False otherwise
        """
        try:
            json_data = json.dumps(value, default=str)
            if ttl:
                self.client.setex(key, ttl, json_data)
            else:
                self.client.set(key, json_data)

            self.logger.debug(f"Cached {key} for {ttl or 'unlimited'}s")
            return True

        except (TypeError, ValueError) as e:
            self.logger.error(f"Value for {key} is not serializable: {e}")
            return False
        except redis.RedisError as e:
            self.logger.error(f"Failed to cache {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        """Delete a single key. Returns False only when Redis failed."""
        try:
            self.client.delete(key)
            return True
        except redis.RedisError as e:
            self.logger.error(f"Failed to delete cache key {key}: {e}")
            return False

    def list_keys(self, pattern: str) -> List[str]:
        """
        List keys matching a glob pattern

        Args:
            pattern: Redis glob pattern, e.g. "fact:feed:*"

        Returns:
            Matching keys (empty on failure)
        """
        try:
            return list(self.client.scan_iter(match=pattern, count=500))
        except redis.RedisError as e:
            self.logger.error(f"Failed to list keys for {pattern}: {e}")
            return []

    def delete_by_pattern(self, pattern: str) -> Optional[int]:
        """
        Delete every key matching a glob pattern

        Args:
            pattern: Redis glob pattern

        Returns:
            Number of deleted keys, or None if Redis failed
        """
        try:
            keys = list(self.client.scan_iter(match=pattern, count=500))
            if not keys:
                return 0
            result = self.client.delete(*keys)
            self.logger.info(f"Invalidated {result} cache keys matching {pattern}")
            return result
        except redis.RedisError as e:
            self.logger.error(f"Failed to invalidate keys matching {pattern}: {e}")
            return None

    def is_healthy(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            self.logger.warning(f"Redis health check failed: {e}")
            return False

    def get_stats(self) -> Dict:
        """Get cache statistics"""
        try:
            info = self.client.info()
            return {
                'connected_clients': info.get('connected_clients', 0),
                'used_memory_human': info.get('used_memory_human', '0B'),
                'total_commands_processed': info.get('total_commands_processed', 0),
                'keyspace_hits': info.get('keyspace_hits', 0),
                'keyspace_misses': info.get('keyspace_misses', 0)
            }
        except Exception as e:
            self.logger.error(f"Failed to get Redis stats: {e}")
            return {}
