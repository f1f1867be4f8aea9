"""Redis-backed key-value store for the instance registry.

Each registry key maps to one Redis string holding a JSON document:
    skyport:<id>_instance      -> instance record
    skyport:<userId>_instances -> list of instance ids
    skyport:instances          -> list of instance ids
    skyport:<nodeId>_node      -> node record
    skyport:nodes              -> list of node ids
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from skyport.core.interfaces import KeyValueStore

logger = logging.getLogger(__name__)


class RedisKeyValueStore(KeyValueStore):
    """KeyValueStore over plain Redis GET/SET/DEL with JSON values."""

    def __init__(self, client: redis.Redis, prefix: str = "skyport:") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        await self._client.set(self._key(key), json.dumps(value))
        logger.debug("KV SET %s", key)

    async def delete(self, key: str) -> bool:
        count = await self._client.delete(self._key(key))
        logger.debug("KV DEL %s (existed=%s)", key, bool(count))
        return bool(count)
