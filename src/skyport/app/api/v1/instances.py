"""Instance API endpoints."""

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from skyport.app.api.v1.dependencies import AdminUser, CurrentUser, Plane
from skyport.control.plane import ControlPlane
from skyport.core.domain import PowerAction
from skyport.core.errors import InstanceNotFoundError
from skyport.core.models import Instance, User
from skyport.services.audit import log_audit
from skyport.services.orchestrator import DeployRequest

router = APIRouter(prefix="/instances", tags=["instances"])


# =============================================================================
# Request/Response Models
# =============================================================================


class RenameRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class GrantRequest(BaseModel):
    username: str = Field(min_length=1)


class SuspendRequest(BaseModel):
    reason: str | None = None


class InstanceStateResponse(BaseModel):
    id: str
    container_id: str | None
    internal_state: str
    suspended: bool
    reconciling: bool


class UserAccessResponse(BaseModel):
    user_id: str
    username: str


class MessageResponse(BaseModel):
    message: str
    count: int | None = None


# =============================================================================
# Helpers
# =============================================================================


def to_public(instance: Instance) -> dict[str, Any]:
    """Instance record without the node credential."""
    record = instance.to_record()
    record.get("Node", {}).pop("apiKey", None)
    return record


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


async def load_authorized(plane: ControlPlane, user: User, instance_id: str) -> Instance:
    """Instance the user may act on. Raises InstanceNotFoundError/ForbiddenError."""
    instance = await plane.registry.get_instance(instance_id)
    if instance is None:
        raise InstanceNotFoundError()
    await plane.guard.authorize(user, instance)
    return instance


async def load_active(plane: ControlPlane, user: User, instance_id: str) -> Instance:
    """Like load_authorized, also enforcing the suspension gate."""
    instance = await load_authorized(plane, user, instance_id)
    await plane.guard.ensure_active(user, instance)
    return instance


# =============================================================================
# Endpoints
# =============================================================================


@router.get("")
async def list_instances(plane: Plane, user: CurrentUser) -> list[dict[str, Any]]:
    """Own and shared instances; admins see every instance."""
    if user.admin:
        instances = await plane.registry.list_instances()
    else:
        instances = await plane.registry.list_user_instances(user.user_id)
        owned = {i.id for i in instances}
        for instance_id in user.access_to:
            if instance_id in owned:
                continue
            shared = await plane.registry.get_instance(instance_id)
            if shared is not None:
                instances.append(shared)
    return [to_public(i) for i in instances]


@router.post("", status_code=201)
async def deploy_instance(
    body: DeployRequest, request: Request, plane: Plane, admin: AdminUser
) -> dict[str, Any]:
    instance = await plane.orchestrator.deploy(body)
    log_audit(admin.user_id, admin.username, "instance:create", _client_ip(request), instance_id=instance.id)
    return to_public(instance)


@router.delete("", response_model=MessageResponse)
async def purge_instances(request: Request, plane: Plane, admin: AdminUser) -> MessageResponse:
    count = await plane.orchestrator.purge_all_instances()
    log_audit(admin.user_id, admin.username, "instances:purge", _client_ip(request))
    return MessageResponse(message="All instances deleted", count=count)


@router.get("/{instance_id}")
async def get_instance(instance_id: str, plane: Plane, user: CurrentUser) -> dict[str, Any]:
    return to_public(await load_authorized(plane, user, instance_id))


@router.patch("/{instance_id}")
async def rename_instance(
    instance_id: str, body: RenameRequest, request: Request, plane: Plane, admin: AdminUser
) -> dict[str, Any]:
    instance = await plane.orchestrator.rename(instance_id, body.name)
    log_audit(admin.user_id, admin.username, "instance:rename", _client_ip(request), instance_id=instance_id)
    return to_public(instance)


@router.delete("/{instance_id}", response_model=MessageResponse)
async def delete_instance(
    instance_id: str, request: Request, plane: Plane, admin: AdminUser
) -> MessageResponse:
    await plane.orchestrator.delete(instance_id)
    log_audit(admin.user_id, admin.username, "instance:delete", _client_ip(request), instance_id=instance_id)
    return MessageResponse(message="The instance has successfully been deleted.")


@router.post("/{instance_id}/redeploy", status_code=201)
async def redeploy_instance(
    instance_id: str, body: DeployRequest, request: Request, plane: Plane, admin: AdminUser
) -> dict[str, Any]:
    instance = await plane.orchestrator.redeploy(instance_id, body)
    log_audit(admin.user_id, admin.username, "instance:redeploy", _client_ip(request), instance_id=instance_id)
    return to_public(instance)


@router.post("/{instance_id}/reinstall", status_code=201)
async def reinstall_instance(
    instance_id: str, request: Request, plane: Plane, user: CurrentUser
) -> dict[str, Any]:
    await load_active(plane, user, instance_id)
    instance = await plane.orchestrator.reinstall(instance_id)
    log_audit(user.user_id, user.username, "instance:reinstall", _client_ip(request), instance_id=instance_id)
    return to_public(instance)


@router.post("/{instance_id}/power/{action}", response_model=MessageResponse)
async def power_instance(
    instance_id: str, action: PowerAction, request: Request, plane: Plane, user: CurrentUser
) -> MessageResponse:
    await load_active(plane, user, instance_id)
    await plane.orchestrator.power(instance_id, action)
    log_audit(user.user_id, user.username, f"instance:{action.value}", _client_ip(request), instance_id=instance_id)
    return MessageResponse(message=f"Power action {action.value} sent")


@router.post("/{instance_id}/suspend")
async def suspend_instance(
    instance_id: str, request: Request, plane: Plane, admin: AdminUser,
    body: SuspendRequest | None = None,
) -> dict[str, Any]:
    instance = await plane.orchestrator.suspend(instance_id, body.reason if body else None)
    log_audit(admin.user_id, admin.username, "instance:suspend", _client_ip(request), instance_id=instance_id)
    return to_public(instance)


@router.post("/{instance_id}/unsuspend")
async def unsuspend_instance(
    instance_id: str, request: Request, plane: Plane, admin: AdminUser
) -> dict[str, Any]:
    instance = await plane.orchestrator.unsuspend(instance_id)
    log_audit(admin.user_id, admin.username, "instance:unsuspend", _client_ip(request), instance_id=instance_id)
    return to_public(instance)


@router.get("/{instance_id}/state", response_model=InstanceStateResponse)
async def get_instance_state(
    instance_id: str, plane: Plane, user: CurrentUser
) -> InstanceStateResponse:
    """Last reconciled state and whether a poll chain is still running."""
    instance = await load_authorized(plane, user, instance_id)
    return InstanceStateResponse(
        id=instance.id,
        container_id=instance.container_id,
        internal_state=instance.internal_state.value,
        suspended=instance.suspended,
        reconciling=plane.poller.is_active(instance.id),
    )


# =============================================================================
# Shared access
# =============================================================================


@router.get("/{instance_id}/users", response_model=list[UserAccessResponse])
async def list_instance_users(
    instance_id: str, plane: Plane, user: CurrentUser
) -> list[UserAccessResponse]:
    await load_authorized(plane, user, instance_id)
    users = await plane.users.list_with_access(instance_id)
    return [UserAccessResponse(user_id=u.user_id, username=u.username) for u in users]


@router.post("/{instance_id}/users", response_model=UserAccessResponse, status_code=201)
async def grant_instance_user(
    instance_id: str, body: GrantRequest, request: Request, plane: Plane, user: CurrentUser
) -> UserAccessResponse:
    await load_authorized(plane, user, instance_id)
    granted = await plane.users.grant(instance_id, body.username)
    log_audit(user.user_id, user.username, "instance:user:add", _client_ip(request), instance_id=instance_id)
    return UserAccessResponse(user_id=granted.user_id, username=granted.username)


@router.delete("/{instance_id}/users/{username}", response_model=MessageResponse)
async def revoke_instance_user(
    instance_id: str, username: str, request: Request, plane: Plane, user: CurrentUser
) -> MessageResponse:
    await load_authorized(plane, user, instance_id)
    await plane.users.revoke(instance_id, username)
    log_audit(user.user_id, user.username, "instance:user:remove", _client_ip(request), instance_id=instance_id)
    return MessageResponse(message=f"Access removed for {username}")
