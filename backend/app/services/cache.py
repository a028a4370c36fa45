"""
Badge Cache.

Last known unread count per user, kept in Redis so a fresh UnreadCounter can
show a badge before its first poll completes. The cache is a projection only:
Redis errors are logged and treated as a miss.
"""

import logging
from typing import Any, Optional

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

BADGE_KEY_PREFIX = "notifications:unread:"


class BadgeCache:

    def __init__(self, client: Any, ttl_seconds: int = 300):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(user_id: str) -> str:
        return f"{BADGE_KEY_PREFIX}{user_id}"

    async def get(self, user_id: str) -> Optional[int]:
        try:
            value = await self.client.get(self.key(user_id))
        except RedisError as e:
            logger.warning("Badge cache read failed for user %s: %s", user_id, e)
            return None
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        try:
            return int(value)
        except ValueError:
            return None

    async def set(self, user_id: str, count: int) -> None:
        try:
            await self.client.set(self.key(user_id), str(count), ex=self.ttl_seconds)
        except RedisError as e:
            logger.warning("Badge cache write failed for user %s: %s", user_id, e)

    async def invalidate(self, user_id: str) -> None:
        try:
            await self.client.delete(self.key(user_id))
        except RedisError as e:
            logger.warning("Badge cache invalidation failed for user %s: %s", user_id, e)
