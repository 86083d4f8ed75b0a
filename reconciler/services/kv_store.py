# -*- coding: utf-8 -*-
"""
KV Store Module (Redis)

Thin JSON-over-Redis wrapper used to persist reviewer decisions and field
overrides. Reads degrade to "nothing stored" when Redis is unavailable;
writes report failure through their boolean return value.
"""

import logging
import json
from typing import Optional, Dict, Any
from redis import Redis
from reconciler.config import REDIS_URL, KV_ENABLED

logger = logging.getLogger(__name__)


class KVStore:
    """
    KV Store wrapper for Redis operations

    Provides hget/hset/hdel/hgetall over hashes of JSON-encoded values.
    """

    def __init__(self, client: Optional[Redis] = None):
        """
        Initialize KV store

        Args:
            client: Redis client instance (if None, will try to create one)
        """
        self.client = client if client is not None else get_kv_client()

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def hget(self, key: str, field: str, strict: bool = False) -> Optional[Any]:
        """
        Get one field of a hash

        Args:
            strict: re-raise client errors instead of reading as missing
        """
        if not self.client:
            return None

        try:
            value = self.client.hget(key, field)
            if not value:
                return None
            return json.loads(value)

        except Exception as e:
            logger.error(f"Failed to get {key}[{field}]: {e}")
            if strict:
                raise
            return None

    def hgetall(self, key: str) -> Dict[str, Any]:
        """
        Get every field of a hash

        Returns:
            Mapping of field -> decoded value (empty when missing or on error)
        """
        if not self.client:
            return {}

        try:
            raw = self.client.hgetall(key) or {}
            return {field: json.loads(value) for field, value in raw.items() if value}

        except Exception as e:
            logger.error(f"Failed to read hash {key}: {e}")
            return {}

    def hset(self, key: str, field: str, value: Any, ttl: int = 0) -> bool:
        if not self.client:
            return False

        try:
            self.client.hset(key, field, json.dumps(value, ensure_ascii=False))
            if ttl > 0:
                self.client.expire(key, ttl)
            return True

        except Exception as e:
            logger.error(f"Failed to set {key}[{field}]: {e}")
            return False

    def hdel(self, key: str, field: str) -> bool:
        if not self.client:
            return False

        try:
            self.client.hdel(key, field)
            return True

        except Exception as e:
            logger.error(f"Failed to delete {key}[{field}]: {e}")
            return False


def get_kv_client() -> Optional[Redis]:
    """
    Get a Redis client

    Returns:
        Redis client instance, or None when Redis is not configured
    """
    if not KV_ENABLED:
        logger.warning("Redis not enabled, decisions will not be persisted")
        return None

    try:
        # REDIS_URL format: redis://... or rediss://...
        client = Redis.from_url(
            REDIS_URL,
            decode_responses=True
        )
        return client
    except Exception as e:
        logger.error(f"Failed to create Redis client: {e}")
        return None
