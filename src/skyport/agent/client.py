"""Node agent HTTP client for Control Plane.

This client talks to the execution daemon running on each node to create,
redeploy, reinstall, delete and power-cycle containers, read reconciled
state and probe health. Every call uses basic auth with the configured
username ("Skyport") and the node's apiKey.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from skyport.app.config import get_settings
from skyport.core.domain import PowerAction
from skyport.core.errors import NodeUnreachableError
from skyport.core.models import Node, NodeSnapshot

logger = logging.getLogger(__name__)

# 304 means the container was already in the requested power state
POWER_SUCCESS_CODES = frozenset({200, 304})


@dataclass
class NodeEndpoint:
    """Connection info for one node agent."""

    node_id: str
    address: str
    port: int
    api_key: str = ""

    @classmethod
    def from_node(cls, node: Node | NodeSnapshot) -> NodeEndpoint:
        return cls(
            node_id=node.id,
            address=node.address,
            port=node.port,
            api_key=node.api_key or "",
        )


def _upstream_detail(resp: httpx.Response) -> Any:
    """Extract the node-supplied error body, if any."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text or None
    if isinstance(body, dict) and "error" in body:
        return body["error"]
    return body


class NodeAgentClient:
    """HTTP client for one node agent.

    Transport failures and non-2xx answers are raised as NodeUnreachableError
    carrying the upstream body when the node supplied one.
    """

    def __init__(
        self,
        endpoint: NodeEndpoint,
        *,
        username: str = "Skyport",
        scheme: str = "http",
        ws_scheme: str = "ws",
        timeout: float = 30.0,
        probe_timeout: float = 5.0,
    ) -> None:
        self._endpoint = endpoint
        self._username = username
        self._scheme = scheme
        self._ws_scheme = ws_scheme
        self._timeout = timeout
        self._probe_timeout = probe_timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def endpoint(self) -> NodeEndpoint:
        return self._endpoint

    @property
    def base_url(self) -> str:
        return f"{self._scheme}://{self._endpoint.address}:{self._endpoint.port}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self._username, self._endpoint.api_key),
                timeout=self._timeout,
            )
        return self._client

    async def _request(
        self,
        method: Literal["get", "post"],
        path: str,
        *,
        ok_codes: frozenset[int] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make HTTP request with common error handling.

        Args:
            method: HTTP method (get, post).
            path: URL path.
            ok_codes: Status codes treated as success. Defaults to any 2xx.
            timeout: Request timeout (uses default if not specified).
            **kwargs: Additional arguments for httpx request.

        Raises:
            NodeUnreachableError: Timeout, refused connection or non-success status.
        """
        client = await self._get_client()
        if timeout:
            kwargs["timeout"] = timeout

        try:
            resp = await getattr(client, method)(path, **kwargs)
        except httpx.TimeoutException as e:
            raise NodeUnreachableError(
                f"Timed out connecting to node {self._endpoint.node_id}"
            ) from e
        except httpx.HTTPError as e:
            raise NodeUnreachableError(details=str(e) or type(e).__name__) from e

        success = (
            resp.status_code in ok_codes if ok_codes else resp.is_success
        )
        if not success:
            raise NodeUnreachableError(
                f"Node {self._endpoint.node_id} answered {resp.status_code}",
                details=_upstream_detail(resp),
            )
        return resp

    @staticmethod
    def _json(
        resp: httpx.Response, message: str = "Malformed response"
    ) -> dict[str, Any]:
        """Decode a success body that must be a JSON object.

        Raises:
            NodeUnreachableError: Body is not JSON or not an object.
        """
        try:
            body = resp.json()
        except ValueError as e:
            raise NodeUnreachableError(message, details=resp.text) from e
        if not isinstance(body, dict):
            raise NodeUnreachableError(message, details=resp.text)
        return body

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Health
    # =========================================================================

    async def probe(self) -> dict[str, Any]:
        """GET / with the bounded probe timeout. Returns the version body."""
        resp = await self._request("get", "/", timeout=self._probe_timeout)
        return self._json(resp, "Malformed probe response")

    async def check_all(self) -> list[dict[str, Any]]:
        """GET /check/all. Returns the flagged container messages."""
        resp = await self._request("get", "/check/all")
        flagged = self._json(resp).get("flaggedMessages") or []
        if not isinstance(flagged, list):
            raise NodeUnreachableError("Malformed response", details=resp.text)
        return flagged

    # =========================================================================
    # Instance lifecycle
    # =========================================================================

    async def create_instance(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST /instances/create. Returns the node's answer (containerId, ...)."""
        resp = await self._request("post", "/instances/create", json=payload)
        logger.info(
            "Create requested on node %s for %s",
            self._endpoint.node_id,
            payload.get("Id"),
        )
        return self._json(resp)

    async def redeploy_instance(
        self, container_id: str, instance_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        resp = await self._request(
            "post", f"/instances/redeploy/{container_id}/{instance_id}", json=payload
        )
        return self._json(resp)

    async def reinstall_instance(
        self, container_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        resp = await self._request(
            "post", f"/instances/reinstall/{container_id}", json=payload
        )
        return self._json(resp)

    async def delete_instance(self, container_id: str) -> None:
        await self._request("get", f"/instances/{container_id}/delete")
        logger.info(
            "Deleted container %s on node %s", container_id, self._endpoint.node_id
        )

    async def purge_all(self) -> None:
        """GET /instances/purge/all - remove every container on the node."""
        await self._request("get", "/instances/purge/all")

    async def get_state(self, volume_id: str) -> dict[str, Any]:
        """GET /state/{volumeId}. Returns {state, containerId}."""
        resp = await self._request("get", f"/state/{volume_id}")
        return self._json(resp)

    async def power(
        self, container_id: str, action: PowerAction, command: str | None = None
    ) -> None:
        """POST /instances/{containerId}/{action}. 200 and 304 are success."""
        await self._request(
            "post",
            f"/instances/{container_id}/{action.value}",
            json={"command": command},
            ok_codes=POWER_SUCCESS_CODES,
        )

    # =========================================================================
    # Streams
    # =========================================================================

    def _ws_base(self) -> str:
        return f"{self._ws_scheme}://{self._endpoint.address}:{self._endpoint.port}"

    def exec_url(self, container_id: str) -> str:
        return f"{self._ws_base()}/exec/{container_id}"

    def stats_url(self, container_id: str, volume_id: str | None = None) -> str:
        if volume_id:
            return f"{self._ws_base()}/stats/{container_id}/{volume_id}"
        return f"{self._ws_base()}/stats/{container_id}"


class NodeAgentClientFactory:
    """Caches one NodeAgentClient per node.

    A cached client is replaced when the node's address, port or apiKey
    changed since it was built.
    """

    def __init__(
        self,
        *,
        username: str | None = None,
        scheme: str | None = None,
        ws_scheme: str | None = None,
        timeout: float | None = None,
        probe_timeout: float | None = None,
    ) -> None:
        settings = get_settings().node_agent
        self._username = username or settings.username
        self._scheme = scheme or settings.scheme
        self._ws_scheme = ws_scheme or settings.ws_scheme
        self._timeout = timeout or settings.request_timeout
        self._probe_timeout = probe_timeout or settings.probe_timeout
        self._clients: dict[str, NodeAgentClient] = {}

    async def for_node(self, node: Node | NodeSnapshot) -> NodeAgentClient:
        endpoint = NodeEndpoint.from_node(node)
        cached = self._clients.get(endpoint.node_id)
        if cached is not None:
            if cached.endpoint == endpoint:
                return cached
            await cached.close()

        client = NodeAgentClient(
            endpoint,
            username=self._username,
            scheme=self._scheme,
            ws_scheme=self._ws_scheme,
            timeout=self._timeout,
            probe_timeout=self._probe_timeout,
        )
        self._clients[endpoint.node_id] = client
        return client

    async def forget(self, node_id: str) -> None:
        client = self._clients.pop(node_id, None)
        if client is not None:
            await client.close()

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
