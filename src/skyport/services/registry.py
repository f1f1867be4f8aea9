"""Instance Registry - keyed records with derived id indexes.

Key layout:
    <id>_instance        instance record (source of truth)
    <userId>_instances   ids owned by the user
    instances            ids of every instance
    <nodeId>_node        node record
    nodes                ids of every node
    <id>_workflow        workflow definition mirror
    <id>_reconcile       persisted reconciliation chain
    reconciles           ids with a persisted reconciliation chain
    images               image catalogue
    users                user records

List reads materialize records from ``<id>_instance``, so the owner list,
the global list and the keyed record never disagree on field values. Index
writes are serialized by a process-local lock; the store itself offers no
multi-key transaction.
"""

import asyncio
import logging
from typing import Any

from skyport.core.interfaces import KeyValueStore
from skyport.core.logging_schema import Component, LogEvent
from skyport.core.models import (
    ImageDefinition,
    Instance,
    Node,
    NodeSnapshot,
    ReconcileTask,
    User,
)

logger = logging.getLogger(__name__)

GLOBAL_INSTANCES_KEY = "instances"
NODES_KEY = "nodes"
RECONCILES_KEY = "reconciles"
IMAGES_KEY = "images"
USERS_KEY = "users"


def instance_key(instance_id: str) -> str:
    return f"{instance_id}_instance"


def user_instances_key(user_id: str) -> str:
    return f"{user_id}_instances"


def node_key(node_id: str) -> str:
    return f"{node_id}_node"


def workflow_key(instance_id: str) -> str:
    return f"{instance_id}_workflow"


def reconcile_key(instance_id: str) -> str:
    return f"{instance_id}_reconcile"


def _index_ids(value: Any) -> list[str]:
    """Normalize a stored index to a list of ids.

    Older data stored whole records in the list keys; those are reduced to
    their ``Id``.
    """
    if not value:
        return []
    ids: list[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("Id")
        if item and item not in ids:
            ids.append(str(item))
    return ids


class InstanceRegistry:
    """Persistence of instances, nodes, workflows and reconciliation tasks."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._index_lock = asyncio.Lock()

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    # =========================================================================
    # Index helpers
    # =========================================================================

    async def _index(self, key: str) -> list[str]:
        return _index_ids(await self._kv.get(key))

    async def _index_add(self, key: str, item_id: str) -> None:
        ids = await self._index(key)
        if item_id not in ids:
            ids.append(item_id)
        await self._kv.set(key, ids)

    async def _index_remove(self, key: str, item_id: str) -> None:
        ids = await self._index(key)
        if item_id in ids:
            ids.remove(item_id)
            await self._kv.set(key, ids)

    # =========================================================================
    # Instances
    # =========================================================================

    async def get_instance(self, instance_id: str) -> Instance | None:
        raw = await self._kv.get(instance_key(instance_id))
        if raw is None:
            return None
        return Instance.model_validate(raw)

    async def _write_instance(self, instance: Instance, previous: dict | None) -> None:
        # Caller holds _index_lock.
        await self._kv.set(instance_key(instance.id), instance.to_record())

        previous_owner = previous.get("User") if previous else None
        if previous_owner and previous_owner != instance.user:
            await self._index_remove(user_instances_key(previous_owner), instance.id)
        await self._index_add(user_instances_key(instance.user), instance.id)
        await self._index_add(GLOBAL_INSTANCES_KEY, instance.id)

    async def save_instance(self, instance: Instance) -> Instance:
        """Write the keyed record and make sure both indexes list its id.

        If the owner changed since the last save, the id moves from the old
        owner's index to the new one.
        """
        async with self._index_lock:
            previous = await self._kv.get(instance_key(instance.id))
            await self._write_instance(instance, previous)

        logger.debug(
            "Instance saved",
            extra={
                "component": Component.REGISTRY,
                "instance_id": instance.id,
                "user_id": instance.user,
            },
        )
        return instance

    async def update_instance(self, instance_id: str, **fields: Any) -> Instance | None:
        """Apply field updates to the current record. Returns None if deleted.

        The re-read and the write share the index lock, so a concurrent
        delete is never undone and fields not named here keep their latest
        stored value.
        """
        async with self._index_lock:
            raw = await self._kv.get(instance_key(instance_id))
            if raw is None:
                return None
            updated = Instance.model_validate(raw).model_copy(update=fields)
            await self._write_instance(updated, raw)

        logger.debug(
            "Instance updated",
            extra={
                "component": Component.REGISTRY,
                "instance_id": instance_id,
                "fields": sorted(fields),
            },
        )
        return updated

    async def remove_instance(self, instance_id: str) -> Instance | None:
        """Delete the keyed record, its index entries and its workflow mirror."""
        async with self._index_lock:
            raw = await self._kv.get(instance_key(instance_id))
            instance = Instance.model_validate(raw) if raw else None

            if instance is not None:
                await self._index_remove(user_instances_key(instance.user), instance_id)
            await self._index_remove(GLOBAL_INSTANCES_KEY, instance_id)
            await self._kv.delete(instance_key(instance_id))
            await self._kv.delete(workflow_key(instance_id))

        logger.info(
            "Instance removed from registry",
            extra={
                "event": LogEvent.STATE_CHANGED,
                "component": Component.REGISTRY,
                "instance_id": instance_id,
            },
        )
        return instance

    async def _materialize(self, ids: list[str]) -> list[Instance]:
        instances = []
        for instance_id in ids:
            instance = await self.get_instance(instance_id)
            if instance is not None:
                instances.append(instance)
        return instances

    async def list_instances(self) -> list[Instance]:
        return await self._materialize(await self._index(GLOBAL_INSTANCES_KEY))

    async def list_user_instances(self, user_id: str) -> list[Instance]:
        return await self._materialize(await self._index(user_instances_key(user_id)))

    async def user_instance_ids(self, user_id: str) -> list[str]:
        return await self._index(user_instances_key(user_id))

    async def list_node_instances(self, node_id: str) -> list[Instance]:
        return [i for i in await self.list_instances() if i.node.id == node_id]

    # =========================================================================
    # Nodes
    # =========================================================================

    async def get_node(self, node_id: str) -> Node | None:
        raw = await self._kv.get(node_key(node_id))
        if raw is None:
            return None
        return Node.model_validate(raw)

    async def save_node(self, node: Node) -> Node:
        await self._kv.set(
            node_key(node.id), node.model_dump(mode="json", by_alias=True)
        )
        async with self._index_lock:
            await self._index_add(NODES_KEY, node.id)
        return node

    async def remove_node(self, node_id: str) -> None:
        async with self._index_lock:
            await self._index_remove(NODES_KEY, node_id)
        await self._kv.delete(node_key(node_id))

    async def list_nodes(self) -> list[Node]:
        nodes = []
        for node_id in await self._index(NODES_KEY):
            node = await self.get_node(node_id)
            if node is not None:
                nodes.append(node)
        return nodes

    async def resolve_node(self, instance: Instance) -> Node | NodeSnapshot:
        """Live node record when it still exists, else the deploy-time snapshot."""
        node = await self.get_node(instance.node.id)
        return node if node is not None else instance.node

    # =========================================================================
    # Workflows
    # =========================================================================

    async def get_workflow(self, instance_id: str) -> dict | None:
        return await self._kv.get(workflow_key(instance_id))

    async def set_workflow(self, instance_id: str, workflow: dict) -> None:
        await self._kv.set(workflow_key(instance_id), workflow)

    async def delete_workflow(self, instance_id: str) -> bool:
        return await self._kv.delete(workflow_key(instance_id))

    # =========================================================================
    # Reconciliation tasks
    # =========================================================================

    async def get_reconcile_task(self, instance_id: str) -> ReconcileTask | None:
        raw = await self._kv.get(reconcile_key(instance_id))
        if raw is None:
            return None
        return ReconcileTask.model_validate(raw)

    async def save_reconcile_task(self, task: ReconcileTask) -> None:
        await self._kv.set(reconcile_key(task.instance_id), task.model_dump(mode="json"))
        async with self._index_lock:
            await self._index_add(RECONCILES_KEY, task.instance_id)

    async def remove_reconcile_task(self, instance_id: str) -> None:
        async with self._index_lock:
            await self._index_remove(RECONCILES_KEY, instance_id)
        await self._kv.delete(reconcile_key(instance_id))

    async def list_reconcile_tasks(self) -> list[ReconcileTask]:
        tasks = []
        for instance_id in await self._index(RECONCILES_KEY):
            task = await self.get_reconcile_task(instance_id)
            if task is not None:
                tasks.append(task)
        return tasks

    # =========================================================================
    # Images and users
    # =========================================================================

    async def list_images(self) -> list[ImageDefinition]:
        return [ImageDefinition.model_validate(i) for i in await self._kv.get(IMAGES_KEY) or []]

    async def find_image(self, image: str) -> ImageDefinition | None:
        """Look up an image definition by image reference or name."""
        for definition in await self.list_images():
            if definition.image == image or definition.name == image:
                return definition
        return None

    async def list_users(self) -> list[User]:
        return [User.model_validate(u) for u in await self._kv.get(USERS_KEY) or []]

    async def save_users(self, users: list[User]) -> None:
        await self._kv.set(
            USERS_KEY, [u.model_dump(mode="json", by_alias=True) for u in users]
        )
