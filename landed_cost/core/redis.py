from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis

from landed_cost.core.config import get_settings


class RedisClient:
    def __init__(self) -> None:
        settings = get_settings()
        self._client = redis.from_url(settings.redis_url, decode_responses=True)

    @property
    def client(self) -> redis.Redis:
        return self._client


redis_client = RedisClient()


async def redis_get_json(key: str) -> dict[str, Any] | None:
    value = await redis_client.client.get(key)
    if not value:
        return None
    return json.loads(value)


async def redis_set_json(key: str, payload: dict[str, Any], ttl_seconds: int) -> None:
    await redis_client.client.set(key, json.dumps(payload), ex=ttl_seconds)
