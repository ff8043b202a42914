"""Redis connection configuration."""

import redis.asyncio as redis

from arcade_chat.core.config import settings

# Pub/sub client for the realtime change feed
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
