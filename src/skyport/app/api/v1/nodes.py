"""Node administration API endpoints."""

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from skyport.app.api.v1.dependencies import AdminUser, Plane
from skyport.core.models import Node
from skyport.services.audit import log_audit

router = APIRouter(prefix="/nodes", tags=["nodes"])


class CreateNodeRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    address: str = Field(min_length=1)
    port: int = Field(gt=0, lt=65536)
    tags: str | None = None
    ram: str | None = None
    disk: str | None = None
    processor: str | None = None


class UpdateNodeRequest(BaseModel):
    name: str | None = None
    address: str | None = None
    port: int | None = Field(default=None, gt=0, lt=65536)
    tags: str | None = None
    ram: str | None = None
    disk: str | None = None
    processor: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")

    model_config = {"populate_by_name": True}


class NodeResponse(BaseModel):
    id: str
    name: str
    address: str
    port: int
    tags: str | None
    ram: str | None
    disk: str | None
    processor: str | None
    status: str
    version_family: str | None
    version_release: str | None
    configure_key: str | None
    instances: int = 0


def _to_response(node: Node, instances: int = 0) -> NodeResponse:
    return NodeResponse(
        id=node.id,
        name=node.name,
        address=node.address,
        port=node.port,
        tags=node.tags,
        ram=node.ram,
        disk=node.disk,
        processor=node.processor,
        status=node.status.value,
        version_family=node.version_family,
        version_release=node.version_release,
        configure_key=node.configure_key,
        instances=instances,
    )


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.get("", response_model=list[NodeResponse])
async def list_nodes(plane: Plane, admin: AdminUser) -> list[NodeResponse]:
    """Probe every node and return the fresh records."""
    nodes = await plane.health.probe_all()
    counts = await plane.nodes.instance_counts()
    return [_to_response(n, counts.get(n.id, 0)) for n in nodes]


@router.post("", response_model=NodeResponse, status_code=201)
async def create_node(
    body: CreateNodeRequest, request: Request, plane: Plane, admin: AdminUser
) -> NodeResponse:
    node = await plane.nodes.create_node(**body.model_dump())
    log_audit(admin.user_id, admin.username, "node:create", _client_ip(request), node_id=node.id)
    return _to_response(node)


@router.post("/configure")
async def configure_node(
    plane: Plane,
    configure_key: str = Query(default="", alias="configureKey"),
    access_key: str = Query(default="", alias="accessKey"),
) -> dict[str, str]:
    """Called by the node agent itself while pairing; no user session."""
    await plane.nodes.configure_node(configure_key, access_key)
    return {"message": "Node configured successfully"}


@router.post("/radar/check")
async def radar_check(request: Request, plane: Plane, admin: AdminUser) -> dict[str, Any]:
    """Fleet sweep: probe all nodes and suspend flagged instances."""
    result = await plane.health.sweep()
    log_audit(admin.user_id, admin.username, "nodes:radar", _client_ip(request))
    return {"message": "Node checks completed.", **result}


@router.get("/{node_id}", response_model=NodeResponse)
async def get_node(node_id: str, plane: Plane, admin: AdminUser) -> NodeResponse:
    node = await plane.health.probe(await plane.nodes.get(node_id))
    counts = await plane.nodes.instance_counts()
    return _to_response(node, counts.get(node.id, 0))


@router.put("/{node_id}", response_model=NodeResponse)
async def update_node(
    node_id: str, body: UpdateNodeRequest, request: Request, plane: Plane, admin: AdminUser
) -> NodeResponse:
    node = await plane.nodes.update_node(node_id, body.model_dump(exclude_none=True))
    log_audit(admin.user_id, admin.username, "node:update", _client_ip(request), node_id=node_id)
    return _to_response(node)


@router.delete("/{node_id}")
async def delete_node(
    node_id: str,
    request: Request,
    plane: Plane,
    admin: AdminUser,
    delete_instances: bool = Query(default=False),
) -> dict[str, Any]:
    removed = await plane.nodes.delete_node(node_id, delete_instances)
    log_audit(admin.user_id, admin.username, "node:delete", _client_ip(request), node_id=node_id)
    return {"message": "Node deleted", "instances_removed": removed}


@router.post("/{node_id}/configure-key")
async def regenerate_configure_key(
    node_id: str, request: Request, plane: Plane, admin: AdminUser
) -> dict[str, Any]:
    panel_url = str(request.base_url).rstrip("/")
    return await plane.nodes.regenerate_configure_key(node_id, panel_url)
