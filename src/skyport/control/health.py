"""Node Health Monitor.

A probe is observational: the node record is written back after every probe
whatever the outcome, overwriting the previous status.
"""

import asyncio
import logging
from collections import Counter

from skyport.agent import NodeAgentClientFactory
from skyport.app.metrics.collector import NODE_PROBES_TOTAL, NODES_BY_STATUS
from skyport.core.domain import NodeStatus
from skyport.core.errors import NodeUnreachableError
from skyport.core.logging_schema import Component, ErrorClass, LogEvent
from skyport.core.models import Node
from skyport.services.registry import InstanceRegistry

logger = logging.getLogger(__name__)

# Fields a probe body must carry to count as a healthy answer
_REQUIRED_PROBE_FIELDS = ("versionFamily", "versionRelease")


class NodeHealthMonitor:
    """Probes node agents and records Online/Offline in the registry."""

    def __init__(self, registry: InstanceRegistry, clients: NodeAgentClientFactory) -> None:
        self._registry = registry
        self._clients = clients

    async def probe(self, node: Node) -> Node:
        """GET / on the node agent and persist the observed status.

        Never raises for node-side failures: timeout, refused connection,
        non-2xx and malformed body all yield ``Offline``.
        """
        client = await self._clients.for_node(node)
        try:
            body = await client.probe()
            missing = [f for f in _REQUIRED_PROBE_FIELDS if f not in body]
            if missing:
                raise NodeUnreachableError("Malformed probe response", details={"missing": missing})
        except NodeUnreachableError as e:
            updated = node.model_copy(update={"status": NodeStatus.OFFLINE})
            NODE_PROBES_TOTAL.labels(result="offline").inc()
            logger.warning(
                "Node %s is offline: %s",
                node.id,
                e.message,
                extra={
                    "event": LogEvent.NODE_OFFLINE,
                    "component": Component.HEALTH,
                    "node_id": node.id,
                    "error_class": ErrorClass.TRANSIENT,
                    "details": e.details,
                },
            )
        else:
            updated = node.model_copy(
                update={
                    "status": NodeStatus.ONLINE,
                    "version_family": body.get("versionFamily"),
                    "version_release": body.get("versionRelease"),
                    "remote": body.get("remote", node.remote),
                    "docker": body.get("docker", node.docker),
                }
            )
            NODE_PROBES_TOTAL.labels(result="online").inc()
            if node.status != NodeStatus.ONLINE:
                logger.info(
                    "Node %s is online",
                    node.id,
                    extra={
                        "event": LogEvent.NODE_ONLINE,
                        "component": Component.HEALTH,
                        "node_id": node.id,
                        "version_release": updated.version_release,
                    },
                )

        await self._registry.save_node(updated)
        return updated

    async def probe_all(self) -> list[Node]:
        """Probe every registered node concurrently."""
        nodes = await self._registry.list_nodes()
        probed = list(await asyncio.gather(*(self.probe(n) for n in nodes)))
        self._record_status_gauge(probed)
        return probed

    @staticmethod
    def _record_status_gauge(nodes: list[Node]) -> None:
        counts = Counter(n.status for n in nodes)
        for status in NodeStatus:
            NODES_BY_STATUS.labels(status=status.value).set(counts.get(status, 0))

    async def sweep(self) -> dict[str, int]:
        """Fleet-wide radar check.

        Probes every node, then asks each online node for its flagged
        containers and suspends every instance running one of them, with
        the node's message as the suspension reason.

        Returns:
            Counts of probed nodes, online nodes and suspended instances.
        """
        nodes = await self.probe_all()
        online = [n for n in nodes if n.status == NodeStatus.ONLINE]
        suspended = 0

        for node in online:
            client = await self._clients.for_node(node)
            try:
                flagged = await client.check_all()
            except NodeUnreachableError as e:
                logger.warning(
                    "Flag check failed on node %s: %s",
                    node.id,
                    e.message,
                    extra={
                        "event": LogEvent.OPERATION_FAILED,
                        "component": Component.HEALTH,
                        "node_id": node.id,
                        "details": e.details,
                    },
                )
                continue

            messages = {
                f.get("containerId"): f.get("message")
                for f in flagged
                if isinstance(f, dict) and f.get("containerId")
            }
            if not messages:
                continue

            # Re-read after the check; deletes and redeploys may land during it.
            for instance in await self._registry.list_instances():
                if instance.container_id not in messages:
                    continue
                updated = await self._registry.update_instance(
                    instance.id,
                    suspended=True,
                    suspended_reason=messages[instance.container_id],
                )
                if updated is None:
                    continue
                suspended += 1
                logger.warning(
                    "Instance %s suspended by node flag",
                    instance.id,
                    extra={
                        "event": LogEvent.NODE_FLAGGED,
                        "component": Component.HEALTH,
                        "node_id": node.id,
                        "instance_id": instance.id,
                        "container_id": instance.container_id,
                    },
                )

        return {"nodes": len(nodes), "online": len(online), "suspended": suspended}
