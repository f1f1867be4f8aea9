"""Unit tests for NodeHealthMonitor."""

import pytest

from skyport.control.health import NodeHealthMonitor
from skyport.core.domain import NodeStatus
from skyport.core.errors import NodeUnreachableError


@pytest.fixture
def monitor(registry, clients) -> NodeHealthMonitor:
    return NodeHealthMonitor(registry, clients)


class TestProbe:
    async def test_healthy_answer_marks_online(self, monitor, registry, agent, node_factory) -> None:
        node = node_factory(status=NodeStatus.OFFLINE)
        agent.probe.return_value = {
            "versionFamily": "1",
            "versionRelease": "1.3.0",
            "remote": "https://agent.example.org",
            "docker": {"containers": 3},
        }

        probed = await monitor.probe(node)

        assert probed.status == NodeStatus.ONLINE
        assert probed.version_release == "1.3.0"
        assert probed.docker == {"containers": 3}
        assert (await registry.get_node(node.id)).status == NodeStatus.ONLINE

    async def test_unreachable_marks_offline(self, monitor, registry, agent, node) -> None:
        agent.probe.side_effect = NodeUnreachableError("Timed out connecting to node node-1")

        probed = await monitor.probe(node)

        assert probed.status == NodeStatus.OFFLINE
        assert (await registry.get_node(node.id)).status == NodeStatus.OFFLINE

    async def test_malformed_body_marks_offline(self, monitor, agent, node) -> None:
        """A 2xx answer without version fields is not a healthy node."""
        agent.probe.return_value = {"hello": "world"}

        probed = await monitor.probe(node)

        assert probed.status == NodeStatus.OFFLINE

    async def test_probe_all(self, monitor, registry, agent, node_factory) -> None:
        await registry.save_node(node_factory("node-1"))
        await registry.save_node(node_factory("node-2"))
        agent.probe.side_effect = [
            {"versionFamily": "1", "versionRelease": "1.2.0"},
            NodeUnreachableError(),
        ]

        probed = await monitor.probe_all()

        assert sorted(n.status for n in probed) == [NodeStatus.OFFLINE, NodeStatus.ONLINE]


class TestSweep:
    async def test_flagged_containers_suspend_instances(
        self, monitor, registry, agent, node, instance_factory
    ) -> None:
        await registry.save_node(node)
        await registry.save_instance(instance_factory("aaaa0001", container_id="c-1"))
        await registry.save_instance(instance_factory("aaaa0002", container_id="c-2"))
        agent.check_all.return_value = [{"containerId": "c-2", "message": "Crypto miner detected"}]

        result = await monitor.sweep()

        assert result == {"nodes": 1, "online": 1, "suspended": 1}
        flagged = await registry.get_instance("aaaa0002")
        assert flagged.suspended is True
        assert flagged.suspended_reason == "Crypto miner detected"
        assert (await registry.get_instance("aaaa0001")).suspended is False

    async def test_offline_nodes_are_not_checked(self, monitor, registry, agent, node) -> None:
        await registry.save_node(node)
        agent.probe.side_effect = NodeUnreachableError()

        result = await monitor.sweep()

        assert result == {"nodes": 1, "online": 0, "suspended": 0}
        agent.check_all.assert_not_called()

    async def test_check_failure_is_skipped(self, monitor, registry, agent, node) -> None:
        await registry.save_node(node)
        agent.check_all.side_effect = NodeUnreachableError()

        result = await monitor.sweep()

        assert result["suspended"] == 0

    async def test_instance_deleted_during_check_is_not_restored(
        self, monitor, registry, agent, node, instance
    ) -> None:
        await registry.save_node(node)
        await registry.save_instance(instance)

        async def delete_then_flag():
            await registry.remove_instance(instance.id)
            return [{"containerId": "c-old", "message": "miner"}]

        agent.check_all.side_effect = delete_then_flag

        result = await monitor.sweep()

        assert result["suspended"] == 0
        assert await registry.get_instance(instance.id) is None
        assert await registry.list_instances() == []
        assert await registry.list_user_instances(instance.user) == []

    async def test_redeploy_during_check_keeps_new_container(
        self, monitor, registry, agent, node, instance
    ) -> None:
        """A flag for the replaced container does not touch the redeployed record."""
        await registry.save_node(node)
        await registry.save_instance(instance)

        async def redeploy_then_flag():
            await registry.update_instance(instance.id, container_id="c-redeployed")
            return [{"containerId": "c-old", "message": "miner"}]

        agent.check_all.side_effect = redeploy_then_flag

        result = await monitor.sweep()

        current = await registry.get_instance(instance.id)
        assert current.container_id == "c-redeployed"
        assert current.suspended is False
        assert result["suspended"] == 0

    async def test_suspension_keeps_fields_written_during_check(
        self, monitor, registry, agent, node, instance
    ) -> None:
        await registry.save_node(node)
        await registry.save_instance(instance)

        async def rename_then_flag():
            await registry.update_instance(instance.id, name="Renamed")
            return [{"containerId": "c-old", "message": "miner"}]

        agent.check_all.side_effect = rename_then_flag

        await monitor.sweep()

        current = await registry.get_instance(instance.id)
        assert current.suspended is True
        assert current.suspended_reason == "miner"
        assert current.name == "Renamed"
