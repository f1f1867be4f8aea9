"""Unit tests for RedisKeyValueStore."""

import json
from unittest.mock import AsyncMock

import pytest

from skyport.infra.redis_kv import RedisKeyValueStore


@pytest.fixture
def redis_client() -> AsyncMock:
    client = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock()
    client.delete = AsyncMock(return_value=1)
    return client


class TestRedisKeyValueStore:
    async def test_get_decodes_json_with_prefix(self, redis_client: AsyncMock) -> None:
        redis_client.get.return_value = json.dumps(["a1b2c3d4"])
        kv = RedisKeyValueStore(redis_client, prefix="skyport:")

        assert await kv.get("instances") == ["a1b2c3d4"]
        redis_client.get.assert_awaited_once_with("skyport:instances")

    async def test_get_missing_key(self, redis_client: AsyncMock) -> None:
        kv = RedisKeyValueStore(redis_client)

        assert await kv.get("nothing") is None

    async def test_set_encodes_json(self, redis_client: AsyncMock) -> None:
        kv = RedisKeyValueStore(redis_client, prefix="")

        await kv.set("a1b2c3d4_instance", {"Id": "a1b2c3d4"})

        key, value = redis_client.set.call_args.args
        assert key == "a1b2c3d4_instance"
        assert json.loads(value) == {"Id": "a1b2c3d4"}

    async def test_delete_reports_existence(self, redis_client: AsyncMock) -> None:
        kv = RedisKeyValueStore(redis_client)

        assert await kv.delete("a") is True
        redis_client.delete.return_value = 0
        assert await kv.delete("a") is False
