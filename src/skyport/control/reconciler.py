"""State Reconciliation Poller.

After a deploy, redeploy or reinstall the node builds the container in the
background. One poll chain per instance reads ``GET /state/{volumeId}``
until the node reports READY or the attempt ceiling is reached.

Chains are tracked in memory (asyncio tasks keyed by instance id) and
persisted in the registry as ReconcileTask records, so a restarted process
resumes every unfinished chain with its remaining attempts.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from skyport.agent import NodeAgentClientFactory
from skyport.app.config import get_settings
from skyport.app.metrics.collector import RECONCILE_ACTIVE_CHAINS, RECONCILE_POLLS_TOTAL
from skyport.core.domain import InternalState
from skyport.core.errors import NodeUnreachableError, ReconciliationTimeoutError
from skyport.core.logging_schema import Component, ErrorClass, LogEvent
from skyport.core.models import ReconcileTask
from skyport.services.registry import InstanceRegistry

logger = logging.getLogger(__name__)


class ReconciliationPoller:
    """Registry of per-instance state poll chains.

    A chain polls immediately, then every ``interval`` seconds. It ends on:
    - READY: task removed
    - ``max_attempts`` polls without READY: instance set to FAILED
    - instance deleted meanwhile: stops silently
    - ``cancel()``
    """

    def __init__(
        self,
        registry: InstanceRegistry,
        clients: NodeAgentClientFactory,
        *,
        interval: float | None = None,
        max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        config = get_settings().reconcile
        self._registry = registry
        self._clients = clients
        self._interval = config.interval if interval is None else interval
        self._max_attempts = config.max_attempts if max_attempts is None else max_attempts
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def active(self) -> list[str]:
        """Instance ids with a running chain."""
        return [i for i, t in self._tasks.items() if not t.done()]

    def is_active(self, instance_id: str) -> bool:
        task = self._tasks.get(instance_id)
        return task is not None and not task.done()

    def _spawn(self, task: ReconcileTask, initial_delay: float) -> asyncio.Task[None]:
        chain = asyncio.create_task(
            self._run(task, initial_delay), name=f"reconcile:{task.instance_id}"
        )
        self._tasks[task.instance_id] = chain
        RECONCILE_ACTIVE_CHAINS.set(len(self.active()))
        return chain

    async def _stop_chain(self, instance_id: str) -> bool:
        chain = self._tasks.pop(instance_id, None)
        if chain is None or chain.done():
            return False
        chain.cancel()
        if chain is not asyncio.current_task():
            try:
                await chain
            except asyncio.CancelledError:
                pass
        RECONCILE_ACTIVE_CHAINS.set(len(self.active()))
        return True

    async def start(self, instance_id: str) -> asyncio.Task[None]:
        """Start a fresh chain for instance_id, replacing any running one."""
        await self._stop_chain(instance_id)
        task = ReconcileTask(instance_id=instance_id, started_at=datetime.now(UTC))
        await self._registry.save_reconcile_task(task)
        logger.info(
            "Reconciliation started for %s",
            instance_id,
            extra={
                "event": LogEvent.RECONCILE_STARTED,
                "component": Component.POLLER,
                "instance_id": instance_id,
                "max_attempts": self._max_attempts,
            },
        )
        return self._spawn(task, 0.0)

    async def cancel(self, instance_id: str) -> bool:
        """Stop the chain and forget its persisted task.

        Returns True if a chain was running.
        """
        stopped = await self._stop_chain(instance_id)
        await self._registry.remove_reconcile_task(instance_id)
        if stopped:
            logger.info(
                "Reconciliation cancelled for %s",
                instance_id,
                extra={
                    "event": LogEvent.RECONCILE_CANCELLED,
                    "component": Component.POLLER,
                    "instance_id": instance_id,
                },
            )
        return stopped

    async def resume(self) -> int:
        """Restart every persisted chain. Called once at startup.

        A resumed chain waits only what is left of the interval since its
        last poll.
        """
        resumed = 0
        now = datetime.now(UTC)
        for task in await self._registry.list_reconcile_tasks():
            if self.is_active(task.instance_id):
                continue
            if await self._registry.get_instance(task.instance_id) is None:
                await self._registry.remove_reconcile_task(task.instance_id)
                continue

            delay = 0.0
            if task.last_poll_at is not None:
                elapsed = (now - task.last_poll_at).total_seconds()
                delay = max(0.0, self._interval - elapsed)

            self._spawn(task, delay)
            resumed += 1
            logger.info(
                "Reconciliation resumed for %s at attempt %d",
                task.instance_id,
                task.attempts,
                extra={
                    "event": LogEvent.RECONCILE_RESUMED,
                    "component": Component.POLLER,
                    "instance_id": task.instance_id,
                    "attempts": task.attempts,
                    "delay": delay,
                },
            )
        return resumed

    async def close(self) -> None:
        """Stop every chain. Persisted tasks are kept for the next resume."""
        for instance_id in list(self._tasks):
            await self._stop_chain(instance_id)

    async def _run(self, task: ReconcileTask, initial_delay: float) -> None:
        instance_id = task.instance_id
        delay = initial_delay
        try:
            while True:
                if delay > 0:
                    await self._sleep(delay)
                delay = self._interval
                if await self._poll(task):
                    return
        finally:
            if self._tasks.get(instance_id) is asyncio.current_task():
                del self._tasks[instance_id]
                RECONCILE_ACTIVE_CHAINS.set(len(self.active()))

    async def _poll(self, task: ReconcileTask) -> bool:
        """Run one poll. Returns True when the chain is finished."""
        instance_id = task.instance_id
        instance = await self._registry.get_instance(instance_id)
        if instance is None:
            await self._registry.remove_reconcile_task(instance_id)
            logger.info(
                "Instance %s is gone, reconciliation stopped",
                instance_id,
                extra={"event": LogEvent.RECONCILE_CANCELLED, "component": Component.POLLER},
            )
            return True

        task.attempts += 1
        task.last_poll_at = datetime.now(UTC)

        try:
            node = await self._registry.resolve_node(instance)
            client = await self._clients.for_node(node)
            data = await client.get_state(instance.volume_id)
        except NodeUnreachableError as e:
            RECONCILE_POLLS_TOTAL.labels(outcome="error").inc()
            logger.warning(
                "State poll %d/%d failed for %s: %s",
                task.attempts,
                self._max_attempts,
                instance_id,
                e.message,
                extra={
                    "event": LogEvent.RECONCILE_POLLED,
                    "component": Component.POLLER,
                    "instance_id": instance_id,
                    "error_class": ErrorClass.TRANSIENT,
                    "details": e.details,
                },
            )
        except Exception as e:
            RECONCILE_POLLS_TOTAL.labels(outcome="error").inc()
            logger.exception(
                "State poll error for %s: %s",
                instance_id,
                e,
                extra={"event": LogEvent.RECONCILE_POLLED, "component": Component.POLLER},
            )
        else:
            reported = str(data.get("state") or "")
            state = (
                InternalState(reported)
                if reported in {s.value for s in InternalState}
                else InternalState.INSTALLING
            )
            updated = await self._registry.update_instance(
                instance_id,
                internal_state=state,
                container_id=data.get("containerId") or instance.container_id,
            )
            if updated is None:
                await self._registry.remove_reconcile_task(instance_id)
                return True

            RECONCILE_POLLS_TOTAL.labels(outcome=state.value.lower()).inc()
            logger.info(
                "State poll %d/%d for %s: %s",
                task.attempts,
                self._max_attempts,
                instance_id,
                reported,
                extra={
                    "event": LogEvent.RECONCILE_POLLED,
                    "component": Component.POLLER,
                    "instance_id": instance_id,
                    "container_id": updated.container_id,
                    "state": reported,
                },
            )
            if state == InternalState.READY:
                await self._registry.remove_reconcile_task(instance_id)
                logger.info(
                    "Instance %s is ready after %d polls",
                    instance_id,
                    task.attempts,
                    extra={
                        "event": LogEvent.RECONCILE_COMPLETE,
                        "component": Component.POLLER,
                        "instance_id": instance_id,
                        "attempts": task.attempts,
                    },
                )
                return True
            if state == InternalState.FAILED:
                await self._registry.remove_reconcile_task(instance_id)
                return True

        if task.attempts >= self._max_attempts:
            await self._exhausted(task)
            return True

        await self._registry.save_reconcile_task(task)
        return False

    async def _exhausted(self, task: ReconcileTask) -> None:
        error = ReconciliationTimeoutError(task.instance_id, task.attempts)
        await self._registry.update_instance(
            task.instance_id, internal_state=InternalState.FAILED
        )
        await self._registry.remove_reconcile_task(task.instance_id)
        RECONCILE_POLLS_TOTAL.labels(outcome="failed").inc()
        logger.error(
            error.message,
            extra={
                "event": LogEvent.RECONCILE_FAILED,
                "component": Component.POLLER,
                "instance_id": task.instance_id,
                "attempts": task.attempts,
                "error_class": ErrorClass.TIMEOUT,
                "error_code": error.code.value,
            },
        )
