"""Workflow automation API endpoints."""

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from skyport.app.api.v1.dependencies import AdminUser, CurrentUser, Plane
from skyport.app.api.v1.instances import load_active, load_authorized
from skyport.core.models import Workflow
from skyport.services.audit import log_audit

router = APIRouter(tags=["workflows"])


class WorkflowResponse(BaseModel):
    instance_id: str
    workflow: dict[str, Any]
    job_state: str
    next_fire_at: str | None = None


async def _response(plane, instance_id: str, workflow: Workflow | None) -> WorkflowResponse:
    job = next((j for j in plane.scheduler.list() if j["instance_id"] == instance_id), None)
    return WorkflowResponse(
        instance_id=instance_id,
        workflow=workflow.to_record() if workflow else {},
        job_state=plane.scheduler.job_state(instance_id).value,
        next_fire_at=job["next_fire_at"] if job else None,
    )


@router.get("/instances/{instance_id}/workflow", response_model=WorkflowResponse)
async def get_workflow(instance_id: str, plane: Plane, user: CurrentUser) -> WorkflowResponse:
    await load_active(plane, user, instance_id)
    workflow = await plane.scheduler.get(instance_id)
    return await _response(plane, instance_id, workflow)


@router.put("/instances/{instance_id}/workflow", response_model=WorkflowResponse)
async def save_workflow(
    instance_id: str, body: Workflow, request: Request, plane: Plane, user: CurrentUser
) -> WorkflowResponse:
    """Persist the workflow and (re)schedule its job."""
    await load_authorized(plane, user, instance_id)
    await plane.scheduler.save(instance_id, body)
    log_audit(
        user.user_id,
        user.username,
        "instance:workflow:save",
        request.client.host if request.client else None,
        instance_id=instance_id,
    )
    return await _response(plane, instance_id, body)


@router.delete("/instances/{instance_id}/workflow", response_model=WorkflowResponse)
async def delete_workflow(
    instance_id: str, plane: Plane, user: CurrentUser
) -> WorkflowResponse:
    await load_authorized(plane, user, instance_id)
    await plane.scheduler.remove(instance_id)
    return await _response(plane, instance_id, None)


@router.get("/workflows/jobs")
async def list_jobs(plane: Plane, admin: AdminUser) -> list[dict[str, Any]]:
    return plane.scheduler.list()
