"""Redis pub/sub channel for downstream consumers."""

import json
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from stockwatch.notify.base import ChannelDeliveryError, Message, NotificationChannel
from stockwatch.notify.formatters import format_generic_payload

logger = logging.getLogger(__name__)


class RedisChannel(NotificationChannel):
    """Publishes a JSON payload; recipients are pub/sub channel names."""

    name = "redis"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None, **kwargs):
        super().__init__(**kwargs)
        self.redis_url = redis_url
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def send(self, message: Message, recipients: list[str]) -> None:
        if not recipients:
            raise ChannelDeliveryError(self.name, "no pub/sub channel configured")

        payload = json.dumps(format_generic_payload(message))
        try:
            client = await self._get_redis()
            for channel in recipients:
                receivers = await client.publish(channel, payload)
                logger.debug(f"Published alert to {channel} ({receivers} subscribers)")
        except (RedisError, OSError) as e:
            raise ChannelDeliveryError(self.name, f"{type(e).__name__}: {e}") from e

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
