"""Shared fixtures for unit tests."""

import copy
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from skyport.agent import NodeAgentClient, NodeAgentClientFactory
from skyport.core.domain import NodeStatus
from skyport.core.interfaces import KeyValueStore
from skyport.core.models import Instance, Node, NodeSnapshot, User
from skyport.infra.workflow_file import WorkflowFileStore
from skyport.services.registry import InstanceRegistry
from skyport.services.users import UserDirectory, session_key


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed KeyValueStore. Values are deep-copied like a JSON round trip."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        return copy.deepcopy(self.data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        return self.data.pop(key, None) is not None


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def registry(kv: MemoryKeyValueStore) -> InstanceRegistry:
    return InstanceRegistry(kv)


@pytest.fixture
def users(registry: InstanceRegistry) -> UserDirectory:
    return UserDirectory(registry)


@pytest.fixture
def workflow_store(tmp_path) -> WorkflowFileStore:
    return WorkflowFileStore(tmp_path / "storage" / "workflows.json")


@pytest.fixture
def agent() -> AsyncMock:
    """Mock NodeAgentClient shared by every node."""
    client = AsyncMock(spec=NodeAgentClient)
    client.create_instance = AsyncMock(return_value={"containerId": "c-new"})
    client.redeploy_instance = AsyncMock(return_value={"containerId": "c-redeployed"})
    client.reinstall_instance = AsyncMock(return_value={"containerId": "c-reinstalled"})
    client.delete_instance = AsyncMock()
    client.purge_all = AsyncMock()
    client.get_state = AsyncMock(return_value={"state": "READY", "containerId": "c-new"})
    client.power = AsyncMock()
    client.probe = AsyncMock(
        return_value={"versionFamily": "1", "versionRelease": "1.2.0", "online": True}
    )
    client.check_all = AsyncMock(return_value=[])
    client.exec_url = MagicMock(side_effect=lambda cid: f"ws://10.0.0.5:3002/exec/{cid}")
    client.stats_url = MagicMock(
        side_effect=lambda cid, vid=None: f"ws://10.0.0.5:3002/stats/{cid}/{vid}"
    )
    return client


@pytest.fixture
def clients(agent: AsyncMock) -> MagicMock:
    """Mock NodeAgentClientFactory returning the shared mock agent."""
    factory = MagicMock(spec=NodeAgentClientFactory)
    factory.for_node = AsyncMock(return_value=agent)
    factory.forget = AsyncMock()
    factory.close = AsyncMock()
    return factory


def _make_node(node_id: str = "node-1", **overrides: Any) -> Node:
    fields: dict[str, Any] = {
        "id": node_id,
        "name": "Node One",
        "address": "10.0.0.5",
        "port": 3002,
        "api_key": "node-secret",
        "status": NodeStatus.ONLINE,
    }
    fields.update(overrides)
    return Node(**fields)


def _make_instance(instance_id: str = "a1b2c3d4", **overrides: Any) -> Instance:
    fields: dict[str, Any] = {
        "id": instance_id,
        "volume_id": instance_id,
        "container_id": "c-old",
        "node": NodeSnapshot(id="node-1", address="10.0.0.5", port=3002, api_key="node-secret"),
        "user": "user-1",
        "name": "Survival",
        "image": "ghcr.io/skyport/java:21",
        "memory": 2048,
        "cpu": 100,
        "ports": "25565:25565",
        "primary": "25565",
        "env": ["EULA=TRUE"],
    }
    fields.update(overrides)
    return Instance(**fields)


def _make_user(user_id: str = "user-1", **overrides: Any) -> User:
    fields: dict[str, Any] = {
        "user_id": user_id,
        "username": user_id.replace("user-", "player"),
        "admin": False,
        "access_to": [],
    }
    fields.update(overrides)
    return User(**fields)


@pytest.fixture
def node_factory():
    """Build a Node record; keyword overrides replace the defaults."""
    return _make_node


@pytest.fixture
def instance_factory():
    """Build an Instance record hosted on node-1 and owned by user-1."""
    return _make_instance


@pytest.fixture
def user_factory():
    return _make_user


@pytest.fixture
def node() -> Node:
    return _make_node()


@pytest.fixture
def instance() -> Instance:
    return _make_instance()


@pytest.fixture
def seed_session(kv: MemoryKeyValueStore):
    """Store ``<token>_session`` -> user id."""

    async def _seed(token: str, user_id: str) -> None:
        await kv.set(session_key(token), user_id)

    return _seed
