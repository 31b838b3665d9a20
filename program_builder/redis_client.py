from __future__ import annotations

import redis.asyncio as redis

from program_builder.settings import Settings


def create_redis(settings: Settings) -> redis.Redis | None:
    """Client for the build log store, or None when log streaming is off."""
    if settings.use_fake_redis:
        import fakeredis.aioredis as fakeredis

        return fakeredis.FakeRedis(decode_responses=True)
    if settings.redis_url:
        return redis.from_url(settings.redis_url, decode_responses=True)
    return None
