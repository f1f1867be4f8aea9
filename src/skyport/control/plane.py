"""Control plane wiring: one object holding every service and background job."""

import logging
from dataclasses import dataclass

from skyport.agent import NodeAgentClientFactory
from skyport.app.config import get_settings
from skyport.control.health import NodeHealthMonitor
from skyport.control.reconciler import ReconciliationPoller
from skyport.control.scheduler import WorkflowScheduler
from skyport.core.interfaces import KeyValueStore
from skyport.core.logging_schema import LogEvent
from skyport.infra.workflow_file import WorkflowFileStore
from skyport.services.access import AccessGuard
from skyport.services.nodes import NodeAdmin
from skyport.services.orchestrator import DeploymentOrchestrator
from skyport.services.registry import InstanceRegistry
from skyport.services.users import UserDirectory

logger = logging.getLogger(__name__)


@dataclass
class ControlPlane:
    registry: InstanceRegistry
    users: UserDirectory
    guard: AccessGuard
    clients: NodeAgentClientFactory
    health: NodeHealthMonitor
    poller: ReconciliationPoller
    scheduler: WorkflowScheduler
    orchestrator: DeploymentOrchestrator
    nodes: NodeAdmin

    @classmethod
    def build(
        cls,
        kv: KeyValueStore,
        store: WorkflowFileStore | None = None,
        clients: NodeAgentClientFactory | None = None,
    ) -> "ControlPlane":
        settings = get_settings()
        registry = InstanceRegistry(kv)
        users = UserDirectory(registry)
        clients = clients or NodeAgentClientFactory()
        store = store or WorkflowFileStore(settings.workflow.file_path)

        health = NodeHealthMonitor(registry, clients)
        poller = ReconciliationPoller(registry, clients)
        scheduler = WorkflowScheduler(registry, store, clients)
        orchestrator = DeploymentOrchestrator(
            registry, clients, poller=poller, scheduler=scheduler, users=users
        )
        return cls(
            registry=registry,
            users=users,
            guard=AccessGuard(registry, users),
            clients=clients,
            health=health,
            poller=poller,
            scheduler=scheduler,
            orchestrator=orchestrator,
            nodes=NodeAdmin(registry, clients, health, orchestrator),
        )

    async def start(self) -> None:
        """Resume poll chains and schedule stored workflows."""
        resumed = await self.poller.resume()
        scheduled = await self.scheduler.start()
        logger.info(
            "Control plane started",
            extra={
                "event": LogEvent.APP_STARTED,
                "reconcile_resumed": resumed,
                "workflows_scheduled": scheduled,
            },
        )

    async def close(self) -> None:
        await self.scheduler.close()
        await self.poller.close()
        await self.clients.close()
        logger.info("Control plane stopped", extra={"event": LogEvent.APP_STOPPED})
