"""Workflow Automation Scheduler.

Each automated instance gets one cancelable job (an asyncio task) driven by
the ``interval`` block of its workflow. The next fire time is always
recomputed from the cron rule; nothing about upcoming runs is persisted.

Job state per instance:
    Idle -> Scheduled        register / save
    Scheduled -> Executing   tick starts
    Executing -> Scheduled   tick ends
    Scheduled -> Idle        cancel / remove / orphan detection

The flat workflow file is the source of truth for execution: every tick
reloads the workflow from it, and the liveness loop cancels jobs whose file
entry disappeared.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx
from croniter import croniter
from pydantic import ValidationError

from skyport.agent import NodeAgentClientFactory
from skyport.app.config import get_settings
from skyport.app.metrics.collector import (
    WORKFLOW_EXECUTIONS_TOTAL,
    WORKFLOW_SCHEDULED_JOBS,
)
from skyport.core.domain import BlockType, JobState, PowerAction
from skyport.core.errors import NodeUnreachableError, ParameterError
from skyport.core.logging_schema import Component, ErrorClass, LogEvent
from skyport.core.models import Instance, Workflow
from skyport.infra.workflow_file import WorkflowFileStore
from skyport.services.registry import InstanceRegistry

logger = logging.getLogger(__name__)

HOURLY_RULE = "0 * * * *"


def interval_rule(value: Any) -> str:
    """Cron rule for an interval block's minute value.

    Minutes 0-59 stepping by N, i.e. ``*/N * * * *``; N >= 60 only matches
    minute 0.

    Raises:
        ParameterError: value is not a positive integer.
    """
    try:
        minutes = int(str(value).strip())
    except (TypeError, ValueError) as e:
        raise ParameterError("Invalid workflow interval", details=value) from e
    if minutes < 1:
        raise ParameterError("Invalid workflow interval", details=value)
    if minutes >= 60:
        return HOURLY_RULE
    return f"*/{minutes} * * * *"


def workflow_rule(workflow: Workflow) -> str | None:
    """Rule derived from the workflow's interval block, or None if it has none."""
    block = workflow.interval_block
    if block is None:
        return None
    return interval_rule(block.meta.selected_value)


def next_fire_time(rule: str, now: datetime | None = None) -> datetime:
    base = now or datetime.now(UTC)
    return croniter(rule, base).get_next(datetime)


def _validate_power_blocks(workflow: Workflow) -> None:
    actions = {a.value for a in PowerAction}
    for block in workflow.blocks_of(BlockType.POWER):
        if block.meta.selected_value not in actions:
            raise ParameterError(
                "Invalid power action", details=block.meta.selected_value
            )


@dataclass
class ScheduledJob:
    instance_id: str
    rule: str
    state: JobState = JobState.SCHEDULED
    task: asyncio.Task | None = field(default=None, repr=False)
    last_run_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "rule": self.rule,
            "state": self.state.value,
            "next_fire_at": next_fire_time(self.rule).isoformat(),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }


class WorkflowScheduler:
    """Register/cancel/list over per-instance workflow jobs."""

    def __init__(
        self,
        registry: InstanceRegistry,
        store: WorkflowFileStore,
        clients: NodeAgentClientFactory,
        *,
        http_client: httpx.AsyncClient | None = None,
        liveness_interval: float | None = None,
        webhook_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        config = get_settings().workflow
        self._registry = registry
        self._store = store
        self._clients = clients
        self._http = http_client
        self._owns_http = http_client is None
        self._liveness_interval = (
            config.liveness_interval if liveness_interval is None else liveness_interval
        )
        self._webhook_timeout = (
            config.webhook_timeout if webhook_timeout is None else webhook_timeout
        )
        self._sleep = sleep
        self._jobs: dict[str, ScheduledJob] = {}
        self._liveness_task: asyncio.Task | None = None

    def _update_gauge(self) -> None:
        WORKFLOW_SCHEDULED_JOBS.set(len(self._jobs))

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self._webhook_timeout)
        return self._http

    # =========================================================================
    # Job table
    # =========================================================================

    def job_state(self, instance_id: str) -> JobState:
        job = self._jobs.get(instance_id)
        return job.state if job else JobState.IDLE

    def list(self) -> list[dict[str, Any]]:
        """Scheduled jobs with their recomputed next fire time."""
        return [job.to_dict() for job in self._jobs.values()]

    async def register(self, instance_id: str, workflow: Workflow) -> ScheduledJob | None:
        """(Re)schedule instance_id. Returns None if the workflow has no interval."""
        await self.cancel(instance_id)
        rule = workflow_rule(workflow)
        if rule is None:
            return None

        job = ScheduledJob(instance_id=instance_id, rule=rule)
        job.task = asyncio.create_task(
            self._job_loop(job), name=f"workflow:{instance_id}"
        )
        self._jobs[instance_id] = job
        self._update_gauge()
        logger.info(
            "Workflow scheduled for %s (%s)",
            instance_id,
            rule,
            extra={
                "event": LogEvent.WORKFLOW_SCHEDULED,
                "component": Component.SCHEDULER,
                "instance_id": instance_id,
                "rule": rule,
            },
        )
        return job

    async def cancel(self, instance_id: str, reason: str = "cancelled") -> bool:
        """Cancel the job for instance_id. Returns True if one was scheduled."""
        job = self._jobs.pop(instance_id, None)
        if job is None:
            return False
        self._update_gauge()
        job.state = JobState.IDLE
        if job.task is not None and not job.task.done():
            job.task.cancel()
            if job.task is not asyncio.current_task():
                try:
                    await job.task
                except asyncio.CancelledError:
                    pass
        logger.info(
            "Workflow job for %s %s",
            instance_id,
            reason,
            extra={
                "event": LogEvent.WORKFLOW_CANCELLED,
                "component": Component.SCHEDULER,
                "instance_id": instance_id,
                "reason": reason,
            },
        )
        return True

    async def _job_loop(self, job: ScheduledJob) -> None:
        while True:
            now = datetime.now(UTC)
            fire_at = next_fire_time(job.rule, now)
            await self._sleep((fire_at - now).total_seconds())
            try:
                await self.run_tick(job.instance_id)
            except Exception as e:
                WORKFLOW_EXECUTIONS_TOTAL.labels(outcome="failed").inc()
                logger.exception(
                    "Workflow tick failed for %s: %s",
                    job.instance_id,
                    e,
                    extra={
                        "event": LogEvent.WORKFLOW_FAILED,
                        "component": Component.SCHEDULER,
                        "instance_id": job.instance_id,
                    },
                )

    # =========================================================================
    # Persistence
    # =========================================================================

    async def get(self, instance_id: str) -> Workflow | None:
        """Registry copy first, file entry as fallback."""
        raw = await self._registry.get_workflow(instance_id)
        if raw is None:
            raw = await self._store.get(instance_id)
        if raw is None:
            return None
        return Workflow.model_validate(raw)

    async def save(self, instance_id: str, workflow: Workflow) -> ScheduledJob | None:
        """Persist the workflow (registry + file) and reschedule its job.

        Raises:
            ParameterError: Invalid interval or power action; nothing is saved.
        """
        workflow_rule(workflow)
        _validate_power_blocks(workflow)

        await self.cancel(instance_id, reason="replaced")
        record = workflow.to_record()
        await self._registry.set_workflow(instance_id, record)
        await self._store.put(instance_id, record)
        return await self.register(instance_id, workflow)

    async def remove(self, instance_id: str) -> None:
        """Cancel the job and delete the workflow from registry and file."""
        await self.cancel(instance_id, reason="removed")
        await self._registry.delete_workflow(instance_id)
        await self._store.remove(instance_id)

    # =========================================================================
    # Execution
    # =========================================================================

    async def run_tick(self, instance_id: str) -> bool:
        """Execute one tick. Returns True if every power action succeeded."""
        job = self._jobs.get(instance_id)
        if job is not None:
            job.state = JobState.EXECUTING
        try:
            return await self._execute(instance_id)
        finally:
            if job is not None and self._jobs.get(instance_id) is job:
                job.state = JobState.SCHEDULED
                job.last_run_at = datetime.now(UTC)

    async def _execute(self, instance_id: str) -> bool:
        raw = await self._store.get(instance_id)
        if raw is None:
            logger.error(
                "No workflow found for instance %s",
                instance_id,
                extra={"event": LogEvent.WORKFLOW_FAILED, "component": Component.SCHEDULER},
            )
            WORKFLOW_EXECUTIONS_TOTAL.labels(outcome="skipped").inc()
            return False
        workflow = Workflow.model_validate(raw)

        instance = await self._registry.get_instance(instance_id)
        if instance is None or instance.suspended:
            logger.info(
                "Workflow tick skipped for %s (%s)",
                instance_id,
                "missing" if instance is None else "suspended",
                extra={
                    "event": LogEvent.WORKFLOW_EXECUTED,
                    "component": Component.SCHEDULER,
                    "instance_id": instance_id,
                    "skipped": True,
                },
            )
            WORKFLOW_EXECUTIONS_TOTAL.labels(outcome="skipped").inc()
            return False

        power_blocks = workflow.blocks_of(BlockType.POWER)
        webhooks = [
            b.meta.input_value
            for b in workflow.blocks_of(BlockType.WEBHOOK)
            if b.meta.input_value
        ]

        async def run_block(action_value: str | None) -> bool:
            ok = await self._execute_power(instance, action_value)
            if ok:
                message = f"Successfully executed power action: {action_value}"
                await asyncio.gather(*(self._send_webhook(url, message) for url in webhooks))
            return ok

        results = await asyncio.gather(
            *(run_block(b.meta.selected_value) for b in power_blocks)
        )
        success = all(results)
        WORKFLOW_EXECUTIONS_TOTAL.labels(outcome="success" if success else "failed").inc()
        logger.info(
            "Workflow executed for %s",
            instance_id,
            extra={
                "event": LogEvent.WORKFLOW_EXECUTED,
                "component": Component.SCHEDULER,
                "instance_id": instance_id,
                "actions": len(power_blocks),
                "success": success,
            },
        )
        return success

    async def _execute_power(self, instance: Instance, action_value: str | None) -> bool:
        try:
            action = PowerAction(action_value)
        except ValueError:
            logger.error(
                "Unknown power action %r for %s",
                action_value,
                instance.id,
                extra={"event": LogEvent.WORKFLOW_FAILED, "component": Component.SCHEDULER},
            )
            return False
        if not instance.container_id:
            return False

        try:
            node = await self._registry.resolve_node(instance)
            client = await self._clients.for_node(node)
            await client.power(instance.container_id, action, instance.stop_command)
        except NodeUnreachableError as e:
            logger.error(
                "Power action %s failed for %s: %s",
                action.value,
                instance.id,
                e.message,
                extra={
                    "event": LogEvent.WORKFLOW_FAILED,
                    "component": Component.SCHEDULER,
                    "instance_id": instance.id,
                    "error_class": ErrorClass.TRANSIENT,
                    "details": e.details,
                },
            )
            return False
        return True

    async def _send_webhook(self, url: str, message: str) -> None:
        try:
            resp = await self._get_http().post(
                url, json={"content": message}, timeout=self._webhook_timeout
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Failed to send webhook notification: %s",
                e,
                extra={
                    "event": LogEvent.WEBHOOK_FAILED,
                    "component": Component.SCHEDULER,
                    "error_class": ErrorClass.TRANSIENT,
                },
            )

    # =========================================================================
    # Liveness and lifecycle
    # =========================================================================

    async def check_liveness(self) -> list[str]:
        """Cancel jobs whose workflow file entry is gone. Returns their ids."""
        workflows = await self._store.load_all()
        orphaned = [i for i in list(self._jobs) if i not in workflows]
        for instance_id in orphaned:
            logger.warning(
                "Workflow for %s no longer on file, cancelling job",
                instance_id,
                extra={
                    "event": LogEvent.WORKFLOW_ORPHANED,
                    "component": Component.SCHEDULER,
                    "instance_id": instance_id,
                },
            )
            await self.cancel(instance_id, reason="orphaned")
        return orphaned

    async def _liveness_loop(self) -> None:
        while True:
            await self._sleep(self._liveness_interval)
            try:
                await self.check_liveness()
            except Exception as e:
                logger.warning(
                    "Workflow liveness check error",
                    extra={"event": LogEvent.FILE_STORE_ERROR, "error": str(e)},
                )

    async def start(self) -> int:
        """Schedule every workflow on file and start the liveness loop."""
        scheduled = 0
        for instance_id, raw in (await self._store.load_all()).items():
            try:
                workflow = Workflow.model_validate(raw)
                if await self.register(instance_id, workflow) is not None:
                    scheduled += 1
            except (ValidationError, ParameterError) as e:
                logger.error(
                    "Skipping invalid workflow for %s: %s",
                    instance_id,
                    e,
                    extra={"event": LogEvent.WORKFLOW_FAILED, "component": Component.SCHEDULER},
                )

        if self._liveness_task is None or self._liveness_task.done():
            self._liveness_task = asyncio.create_task(
                self._liveness_loop(), name="workflow:liveness"
            )
        return scheduled

    async def close(self) -> None:
        if self._liveness_task is not None:
            self._liveness_task.cancel()
            try:
                await self._liveness_task
            except asyncio.CancelledError:
                pass
            self._liveness_task = None

        for instance_id in list(self._jobs):
            await self.cancel(instance_id, reason="stopped")

        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
