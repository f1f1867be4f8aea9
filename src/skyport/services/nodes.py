"""Node administration: registration, agent configuration and removal."""

import logging
import uuid
from typing import Any

from skyport.agent import NodeAgentClientFactory
from skyport.control.health import NodeHealthMonitor
from skyport.core.domain import NodeStatus
from skyport.core.errors import (
    NodeHasInstancesError,
    NodeNotFoundError,
    NodeUnreachableError,
    ParameterError,
)
from skyport.core.logging_schema import Component, LogEvent
from skyport.core.models import Node
from skyport.services.orchestrator import DeploymentOrchestrator
from skyport.services.registry import InstanceRegistry

logger = logging.getLogger(__name__)

# Fields an admin may overwrite with update_node
EDITABLE_FIELDS = ("name", "tags", "ram", "disk", "processor", "address", "port", "api_key")


def configure_command(panel_url: str, configure_key: str) -> str:
    """Shell command the node operator runs to pair the agent."""
    return f"npm run configure -- --panel {panel_url} --key {configure_key}"


class NodeAdmin:
    def __init__(
        self,
        registry: InstanceRegistry,
        clients: NodeAgentClientFactory,
        health: NodeHealthMonitor,
        orchestrator: DeploymentOrchestrator,
    ) -> None:
        self._registry = registry
        self._clients = clients
        self._health = health
        self._orchestrator = orchestrator

    async def get(self, node_id: str) -> Node:
        node = await self._registry.get_node(node_id)
        if node is None:
            raise NodeNotFoundError()
        return node

    async def instance_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for instance in await self._registry.list_instances():
            counts[instance.node.id] = counts.get(instance.node.id, 0) + 1
        return counts

    async def create_node(
        self,
        name: str,
        address: str,
        port: int,
        tags: str | None = None,
        ram: str | None = None,
        disk: str | None = None,
        processor: str | None = None,
    ) -> Node:
        """Register an Unconfigured node with a fresh configure key."""
        if not name or not address or not port:
            raise ParameterError("Form validation failure.")
        node = Node(
            id=str(uuid.uuid4()),
            name=name,
            address=address,
            port=port,
            tags=tags,
            ram=ram,
            disk=disk,
            processor=processor,
            configure_key=str(uuid.uuid4()),
            status=NodeStatus.UNCONFIGURED,
        )
        await self._registry.save_node(node)
        logger.info(
            "Node %s created",
            node.id,
            extra={"event": LogEvent.OPERATION_SUCCESS, "component": Component.HEALTH, "node_id": node.id},
        )
        return node

    async def configure_node(self, configure_key: str, access_key: str) -> Node:
        """Agent-side pairing: trade the one-time configure key for an apiKey."""
        if not configure_key or not access_key:
            raise ParameterError("Missing configureKey or accessKey")

        for node in await self._registry.list_nodes():
            if node.configure_key and node.configure_key == configure_key:
                configured = node.model_copy(
                    update={
                        "api_key": access_key,
                        "status": NodeStatus.CONFIGURED,
                        "configure_key": None,
                    }
                )
                await self._registry.save_node(configured)
                logger.info(
                    "Node %s configured",
                    node.id,
                    extra={
                        "event": LogEvent.NODE_CONFIGURED,
                        "component": Component.HEALTH,
                        "node_id": node.id,
                    },
                )
                return configured

        raise NodeNotFoundError("Invalid configure key")

    async def regenerate_configure_key(self, node_id: str, panel_url: str) -> dict[str, Any]:
        node = await self.get(node_id)
        key = str(uuid.uuid4())
        await self._registry.save_node(node.model_copy(update={"configure_key": key}))
        return {"configureKey": key, "configureCommand": configure_command(panel_url, key)}

    async def update_node(self, node_id: str, fields: dict[str, Any]) -> Node:
        """Overwrite connection info, reset status to Unknown, then probe."""
        node = await self.get(node_id)
        updates = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
        updates["status"] = NodeStatus.UNKNOWN
        updated = Node.model_validate(
            {**node.model_dump(), **updates}
        )
        await self._registry.save_node(updated)
        await self._clients.forget(node_id)
        return await self._health.probe(updated)

    async def delete_node(self, node_id: str, delete_instances: bool = False) -> int:
        """Remove a node.

        Args:
            node_id: Node to remove.
            delete_instances: Also drop every instance hosted on the node and
                ask the agent to purge its containers.

        Returns:
            Number of instances removed.

        Raises:
            NodeNotFoundError: Unknown node.
            NodeHasInstancesError: Instances exist and delete_instances is False.
        """
        node = await self.get(node_id)
        hosted = await self._registry.list_node_instances(node_id)
        if hosted and not delete_instances:
            raise NodeHasInstancesError()

        removed = 0
        if hosted:
            removed = await self._orchestrator.forget_node_instances(node_id)
            client = await self._clients.for_node(node)
            try:
                await client.purge_all()
            except NodeUnreachableError as e:
                logger.error(
                    "Error calling purge API on node %s: %s",
                    node_id,
                    e.message,
                    extra={
                        "event": LogEvent.OPERATION_FAILED,
                        "component": Component.HEALTH,
                        "node_id": node_id,
                        "details": e.details,
                    },
                )

        await self._registry.remove_node(node_id)
        await self._clients.forget(node_id)
        logger.info(
            "Node %s deleted with %d instances",
            node_id,
            removed,
            extra={"event": LogEvent.OPERATION_SUCCESS, "component": Component.HEALTH, "node_id": node_id},
        )
        return removed
