"""Unit tests for NodeAdmin."""

import pytest

from skyport.control.health import NodeHealthMonitor
from skyport.core.domain import NodeStatus
from skyport.core.errors import (
    NodeHasInstancesError,
    NodeNotFoundError,
    NodeUnreachableError,
    ParameterError,
)
from skyport.services.nodes import NodeAdmin, configure_command
from skyport.services.orchestrator import DeploymentOrchestrator


@pytest.fixture
def health(registry, clients) -> NodeHealthMonitor:
    return NodeHealthMonitor(registry, clients)


@pytest.fixture
def orchestrator(registry, clients, users) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(registry, clients, users=users)


@pytest.fixture
def admin(registry, clients, health, orchestrator) -> NodeAdmin:
    return NodeAdmin(registry, clients, health, orchestrator)


class TestConfigure:
    async def test_create_node_is_unconfigured_with_key(self, admin: NodeAdmin, registry) -> None:
        node = await admin.create_node("Node One", "10.0.0.5", 3002)

        assert node.status == NodeStatus.UNCONFIGURED
        assert node.configure_key
        assert node.api_key is None
        assert await registry.get_node(node.id) == node

    async def test_create_node_requires_fields(self, admin: NodeAdmin) -> None:
        with pytest.raises(ParameterError):
            await admin.create_node("", "10.0.0.5", 3002)

    async def test_configure_trades_key_for_api_key(self, admin: NodeAdmin, registry) -> None:
        node = await admin.create_node("Node One", "10.0.0.5", 3002)

        configured = await admin.configure_node(node.configure_key, "agent-access-key")

        assert configured.status == NodeStatus.CONFIGURED
        assert configured.api_key == "agent-access-key"
        assert configured.configure_key is None
        assert (await registry.get_node(node.id)).api_key == "agent-access-key"

    async def test_configure_key_is_single_use(self, admin: NodeAdmin) -> None:
        node = await admin.create_node("Node One", "10.0.0.5", 3002)
        await admin.configure_node(node.configure_key, "k1")

        with pytest.raises(NodeNotFoundError, match="Invalid configure key"):
            await admin.configure_node(node.configure_key, "k2")

    async def test_configure_requires_both_keys(self, admin: NodeAdmin) -> None:
        with pytest.raises(ParameterError):
            await admin.configure_node("", "k1")

    async def test_regenerate_configure_key(self, admin: NodeAdmin, registry, node) -> None:
        await registry.save_node(node)

        result = await admin.regenerate_configure_key(node.id, "https://panel.example.org")

        key = result["configureKey"]
        assert (await registry.get_node(node.id)).configure_key == key
        assert result["configureCommand"] == configure_command("https://panel.example.org", key)
        assert result["configureCommand"].endswith(f"--key {key}")


class TestUpdate:
    async def test_update_resets_status_and_probes(
        self, admin: NodeAdmin, registry, clients, agent, node
    ) -> None:
        await registry.save_node(node)

        updated = await admin.update_node(node.id, {"address": "10.0.0.9", "ram": "16G", "status": "Online"})

        assert updated.address == "10.0.0.9"
        assert updated.ram == "16G"
        assert updated.status == NodeStatus.ONLINE
        clients.forget.assert_awaited_once_with(node.id)
        agent.probe.assert_awaited_once()

    async def test_update_marks_offline_when_probe_fails(
        self, admin: NodeAdmin, registry, agent, node
    ) -> None:
        await registry.save_node(node)
        agent.probe.side_effect = NodeUnreachableError()

        updated = await admin.update_node(node.id, {"port": 4000})

        assert updated.port == 4000
        assert (await registry.get_node(node.id)).status == NodeStatus.OFFLINE

    async def test_update_unknown_node(self, admin: NodeAdmin) -> None:
        with pytest.raises(NodeNotFoundError):
            await admin.update_node("missing", {"name": "x"})


class TestDelete:
    async def test_delete_refuses_when_instances_exist(
        self, admin: NodeAdmin, registry, node, instance
    ) -> None:
        await registry.save_node(node)
        await registry.save_instance(instance)

        with pytest.raises(NodeHasInstancesError):
            await admin.delete_node(node.id)

        assert await registry.get_node(node.id) is not None

    async def test_delete_with_instances_purges(
        self, admin: NodeAdmin, registry, node, instance, agent, clients
    ) -> None:
        await registry.save_node(node)
        await registry.save_instance(instance)

        removed = await admin.delete_node(node.id, delete_instances=True)

        assert removed == 1
        agent.purge_all.assert_awaited_once()
        assert await registry.list_instances() == []
        assert await registry.get_node(node.id) is None
        clients.forget.assert_awaited_with(node.id)

    async def test_purge_failure_does_not_block_removal(
        self, admin: NodeAdmin, registry, node, instance, agent
    ) -> None:
        await registry.save_node(node)
        await registry.save_instance(instance)
        agent.purge_all.side_effect = NodeUnreachableError()

        await admin.delete_node(node.id, delete_instances=True)

        assert await registry.get_node(node.id) is None

    async def test_delete_empty_node(self, admin: NodeAdmin, registry, node, agent) -> None:
        await registry.save_node(node)

        assert await admin.delete_node(node.id) == 0
        agent.purge_all.assert_not_called()

    async def test_instance_counts(self, admin: NodeAdmin, registry, instance_factory) -> None:
        await registry.save_instance(instance_factory("aaaa0001"))
        await registry.save_instance(instance_factory("aaaa0002"))

        assert await admin.instance_counts() == {"node-1": 2}
