"""Deployment Orchestrator.

Every lifecycle operation has the same shape:
    1. Resolve  - node record, image metadata, required parameters
    2. Request  - node-facing payload, one call to the node agent
    3. Commit   - write the instance through the registry

Node agent failures propagate as NodeUnreachableError and leave the
registry untouched. Nothing here retries the node call.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from skyport.agent import NodeAgentClientFactory
from skyport.core.domain import InternalState, PowerAction
from skyport.core.errors import (
    InstanceNotFoundError,
    NodeNotFoundError,
    ParameterError,
)
from skyport.core.logging_schema import Component, LogEvent
from skyport.core.models import ImageDefinition, Instance, Node, NodeSnapshot
from skyport.services.registry import InstanceRegistry

if TYPE_CHECKING:
    from skyport.control.reconciler import ReconciliationPoller
    from skyport.control.scheduler import WorkflowScheduler
    from skyport.services.users import UserDirectory

logger = logging.getLogger(__name__)

PORT_PROTOCOLS = ("tcp", "udp")


class DeployRequest(BaseModel):
    """Parameters for deploy and redeploy."""

    image: str | None = None
    image_name: str | None = Field(default=None, alias="imagename")
    memory: int | str | None = None
    cpu: int | str | None = None
    ports: str | None = None
    node_id: str | None = Field(default=None, alias="nodeId")
    name: str | None = None
    user: str | None = None
    primary: str | None = None
    variables: Any = None

    model_config = {"populate_by_name": True}


def new_instance_id() -> str:
    """First 8 hex characters of a UUID4."""
    return uuid.uuid4().hex[:8]


def expand_ports(ports: str) -> tuple[dict[str, dict], dict[str, list[dict[str, str]]]]:
    """Expand ``container:host[,container:host...]`` into TCP and UDP entries.

    Returns:
        (ExposedPorts, PortBindings) in the node agent's Docker-style shape.

    Raises:
        ParameterError: If a pair is not ``container:host``.
    """
    exposed: dict[str, dict] = {}
    bindings: dict[str, list[dict[str, str]]] = {}
    for mapping in ports.split(","):
        mapping = mapping.strip()
        if not mapping:
            continue
        container_port, sep, host_port = mapping.partition(":")
        if not sep or not container_port.strip() or not host_port.strip():
            raise ParameterError("Invalid port mapping", details=mapping)
        for proto in PORT_PROTOCOLS:
            key = f"{container_port.strip()}/{proto}"
            exposed.setdefault(key, {})
            bindings.setdefault(key, [{"HostPort": host_port.strip()}])
    return exposed, bindings


def _require(values: dict[str, Any]) -> None:
    missing = [name for name, value in values.items() if value in (None, "")]
    if missing:
        raise ParameterError(details={"missing": missing})


def _to_int(name: str, value: int | str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ParameterError(f"Invalid {name}", details=value) from e


def _snapshot(node: Node) -> NodeSnapshot:
    return NodeSnapshot(
        id=node.id, address=node.address, port=node.port, api_key=node.api_key
    )


class DeploymentOrchestrator:
    """Creates, redeploys, reinstalls, deletes and power-cycles instances."""

    def __init__(
        self,
        registry: InstanceRegistry,
        clients: NodeAgentClientFactory,
        poller: ReconciliationPoller | None = None,
        scheduler: WorkflowScheduler | None = None,
        users: UserDirectory | None = None,
    ) -> None:
        self._registry = registry
        self._clients = clients
        self._poller = poller
        self._scheduler = scheduler
        self._users = users

    def bind(
        self,
        poller: ReconciliationPoller | None = None,
        scheduler: WorkflowScheduler | None = None,
    ) -> None:
        """Attach background services created after the orchestrator."""
        if poller is not None:
            self._poller = poller
        if scheduler is not None:
            self._scheduler = scheduler

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_instance(self, instance_id: str) -> Instance:
        instance = await self._registry.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError()
        return instance

    async def _update_instance(self, instance_id: str, **fields: Any) -> Instance:
        updated = await self._registry.update_instance(instance_id, **fields)
        if updated is None:
            raise InstanceNotFoundError()
        return updated

    async def _get_node(self, node_id: str) -> Node:
        node = await self._registry.get_node(node_id)
        if node is None:
            raise NodeNotFoundError()
        return node

    def _payload(
        self,
        *,
        instance_id: str,
        name: str,
        image: str,
        memory: int,
        cpu: int,
        ports: str,
        env: Any,
        image_def: ImageDefinition | None,
        variables: Any = None,
    ) -> dict[str, Any]:
        exposed, bindings = expand_ports(ports)
        image_data = image_def.model_dump(mode="json", by_alias=True) if image_def else None
        return {
            "Name": name,
            "Id": instance_id,
            "Image": image,
            "Env": env,
            "Scripts": image_def.scripts if image_def else None,
            "Memory": memory,
            "Cpu": cpu,
            "ExposedPorts": exposed,
            "PortBindings": bindings,
            "AltImages": image_def.alt_images if image_def else [],
            "StopCommand": image_def.stop_command if image_def else None,
            "variables": variables,
            "imageData": image_data,
        }

    async def _commit(self, instance: Instance, operation: str) -> Instance:
        await self._registry.save_instance(instance)
        logger.info(
            "%s committed for instance %s",
            operation,
            instance.id,
            extra={
                "event": LogEvent.OPERATION_SUCCESS,
                "component": Component.ORCHESTRATOR,
                "operation": operation,
                "instance_id": instance.id,
                "container_id": instance.container_id,
                "node_id": instance.node.id,
            },
        )
        if self._poller is not None:
            await self._poller.start(instance.id)
        return instance

    def _log_started(self, operation: str, instance_id: str, node_id: str) -> None:
        logger.info(
            "%s started for instance %s",
            operation,
            instance_id,
            extra={
                "event": LogEvent.OPERATION_STARTED,
                "component": Component.ORCHESTRATOR,
                "operation": operation,
                "instance_id": instance_id,
                "node_id": node_id,
            },
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def deploy(self, request: DeployRequest) -> Instance:
        """Create a new instance on a node.

        Args:
            request: Deploy parameters. image, memory, cpu, ports, node_id,
                name, user and primary are required.

        Returns:
            The committed instance (InternalState INSTALLING).

        Raises:
            ParameterError: Missing or malformed parameter (no node call made).
            NodeNotFoundError: node_id does not exist.
            NodeUnreachableError: The node agent rejected or never answered.
        """
        _require(
            {
                "image": request.image,
                "memory": request.memory,
                "cpu": request.cpu,
                "ports": request.ports,
                "nodeId": request.node_id,
                "name": request.name,
                "user": request.user,
                "primary": request.primary,
            }
        )
        memory = _to_int("memory", request.memory)
        cpu = _to_int("cpu", request.cpu)
        expand_ports(request.ports)

        node = await self._get_node(request.node_id)
        image_def = await self._registry.find_image(request.image_name or request.image)
        instance_id = new_instance_id()

        payload = self._payload(
            instance_id=instance_id,
            name=request.name,
            image=request.image,
            memory=memory,
            cpu=cpu,
            ports=request.ports,
            env=image_def.env if image_def else None,
            image_def=image_def,
            variables=request.variables,
        )

        self._log_started("deploy", instance_id, node.id)
        client = await self._clients.for_node(node)
        response = await client.create_instance(payload)

        instance = Instance(
            id=instance_id,
            volume_id=instance_id,
            container_id=response.get("containerId"),
            node=_snapshot(node),
            user=request.user,
            name=request.name,
            image=request.image,
            alt_images=payload["AltImages"] or [],
            env=response.get("Env", payload["Env"]),
            memory=memory,
            cpu=cpu,
            ports=request.ports,
            primary=request.primary,
            stop_command=payload["StopCommand"],
            image_data=payload["imageData"],
            internal_state=InternalState.INSTALLING,
        )
        return await self._commit(instance, "deploy")

    async def redeploy(self, instance_id: str, request: DeployRequest) -> Instance:
        """Rebuild an instance's container with new parameters.

        The instance keeps its Id/VolumeId, Env and imageData; ContainerId is
        replaced by the node's answer. The node snapshot is refreshed from
        the live node record.
        """
        instance = await self._get_instance(instance_id)
        _require(
            {
                "image": request.image,
                "memory": request.memory,
                "cpu": request.cpu,
                "ports": request.ports,
                "name": request.name,
                "user": request.user,
                "primary": request.primary,
                "containerId": instance.container_id,
            }
        )
        memory = _to_int("memory", request.memory)
        cpu = _to_int("cpu", request.cpu)
        expand_ports(request.ports)

        node = await self._get_node(instance.node.id)
        image_def = await self._registry.find_image(request.image)

        payload = self._payload(
            instance_id=instance.id,
            name=request.name,
            image=request.image,
            memory=memory,
            cpu=cpu,
            ports=request.ports,
            env=instance.env,
            image_def=image_def,
        )

        self._log_started("redeploy", instance.id, node.id)
        client = await self._clients.for_node(node)
        response = await client.redeploy_instance(instance.container_id, instance.id, payload)

        updated = instance.model_copy(
            update={
                "container_id": response.get("containerId"),
                "node": _snapshot(node),
                "user": request.user,
                "name": request.name,
                "image": request.image,
                "alt_images": payload["AltImages"] or [],
                "memory": memory,
                "cpu": cpu,
                "ports": request.ports,
                "primary": request.primary,
                "internal_state": InternalState.INSTALLING,
            }
        )
        return await self._commit(updated, "redeploy")

    async def reinstall(self, instance_id: str) -> Instance:
        """Reinstall an instance from its own stored parameters."""
        instance = await self._get_instance(instance_id)
        _require(
            {
                "image": instance.image,
                "memory": instance.memory,
                "cpu": instance.cpu,
                "ports": instance.ports,
                "nodeId": instance.node.id,
                "name": instance.name,
                "user": instance.user,
                "primary": instance.primary,
                "containerId": instance.container_id,
            }
        )

        node = await self._registry.resolve_node(instance)
        image_def = await self._registry.find_image(instance.image)

        payload = self._payload(
            instance_id=instance.id,
            name=instance.name,
            image=instance.image,
            memory=instance.memory,
            cpu=instance.cpu,
            ports=instance.ports,
            env=instance.env,
            image_def=image_def,
        )

        self._log_started("reinstall", instance.id, node.id)
        client = await self._clients.for_node(node)
        response = await client.reinstall_instance(instance.container_id, payload)

        updated = instance.model_copy(
            update={
                "container_id": response.get("containerId"),
                "internal_state": InternalState.INSTALLING,
            }
        )
        return await self._commit(updated, "reinstall")

    async def delete(self, instance_id: str) -> Instance:
        """Delete the container on its node, then every trace of the instance.

        The node is called first; if it fails nothing is removed locally.
        """
        instance = await self._get_instance(instance_id)
        node = await self._registry.resolve_node(instance)

        self._log_started("delete", instance.id, node.id)
        if instance.container_id:
            client = await self._clients.for_node(node)
            await client.delete_instance(instance.container_id)

        await self._forget(instance.id)
        logger.info(
            "Instance %s deleted",
            instance.id,
            extra={
                "event": LogEvent.OPERATION_SUCCESS,
                "component": Component.ORCHESTRATOR,
                "operation": "delete",
                "instance_id": instance.id,
            },
        )
        return instance

    async def _forget(self, instance_id: str) -> None:
        """Drop registry record, workflow state, poll chain and grants."""
        if self._poller is not None:
            await self._poller.cancel(instance_id)
        if self._scheduler is not None:
            await self._scheduler.remove(instance_id)
        await self._registry.remove_instance(instance_id)
        if self._users is not None:
            await self._users.revoke_everywhere(instance_id)

    async def forget_node_instances(self, node_id: str) -> int:
        """Remove every instance hosted on node_id from local state only."""
        instances = await self._registry.list_node_instances(node_id)
        for instance in instances:
            await self._forget(instance.id)
        return len(instances)

    async def purge_all_instances(self) -> int:
        """Delete every instance. Node failures are logged and skipped."""
        deleted = 0
        for instance in await self._registry.list_instances():
            try:
                await self.delete(instance.id)
                deleted += 1
            except (InstanceNotFoundError, NodeNotFoundError):
                continue
            except Exception as e:
                logger.warning(
                    "Purge skipped instance %s: %s",
                    instance.id,
                    e,
                    extra={
                        "event": LogEvent.OPERATION_FAILED,
                        "component": Component.ORCHESTRATOR,
                        "instance_id": instance.id,
                    },
                )
        return deleted

    # =========================================================================
    # Power and admin actions
    # =========================================================================

    async def power(self, instance_id: str, action: PowerAction) -> Instance:
        """Send a power action to the instance's node.

        Authorization and the suspension gate are the caller's concern.
        """
        instance = await self._get_instance(instance_id)
        if not instance.container_id:
            raise ParameterError("Instance has no container yet")

        node = await self._registry.resolve_node(instance)
        client = await self._clients.for_node(node)
        await client.power(instance.container_id, action, instance.stop_command)
        logger.info(
            "Power %s sent to instance %s",
            action.value,
            instance.id,
            extra={
                "event": LogEvent.OPERATION_SUCCESS,
                "component": Component.ORCHESTRATOR,
                "operation": f"power:{action.value}",
                "instance_id": instance.id,
            },
        )
        return instance

    async def suspend(self, instance_id: str, reason: str | None = None) -> Instance:
        """Put the instance on hold with an optional reason."""
        return await self._update_instance(
            instance_id, suspended=True, suspended_reason=reason
        )

    async def unsuspend(self, instance_id: str) -> Instance:
        """Lift the hold and clear its reason."""
        return await self._update_instance(
            instance_id, suspended=False, suspended_reason=None
        )

    async def rename(self, instance_id: str, name: str) -> Instance:
        """Set the display name. Blank names are rejected."""
        if not name or not name.strip():
            raise ParameterError("Name is required")
        return await self._update_instance(instance_id, name=name.strip())
