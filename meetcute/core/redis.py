"""
Per-user realtime channels on Redis pub/sub. Clients subscribe to
"user:<id>" and refetch whatever an event names. With FF_USE_REDIS=false
nothing is published.
"""

import json
import logging
from typing import Any, Iterable

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

USER_CHANNEL = "user:{user_id}"

_client = None


def _connection():
    global _client
    if _client is None:
        import redis.asyncio as aioredis

        _client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
    return _client


async def notify_users(user_ids: Iterable[str], event_type: str, data: Any = None) -> int:
    """
    Publish one event to each user's channel. Returns how many publishes
    went through; a Redis outage only costs the live update, never the write.
    """
    if not get_flags().use_redis:
        return 0

    payload = json.dumps({"type": event_type, "data": data})
    sent = 0
    for user_id in dict.fromkeys(user_ids):
        channel = USER_CHANNEL.format(user_id=user_id)
        try:
            await _connection().publish(channel, payload)
            sent += 1
        except Exception as e:
            logger.warning("Publishing %s to %s failed: %s", event_type, channel, e)
    return sent


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis connection closed")
