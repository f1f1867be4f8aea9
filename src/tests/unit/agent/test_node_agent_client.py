"""Unit tests for NodeAgentClient."""

import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from skyport.agent import NodeAgentClient, NodeAgentClientFactory, NodeEndpoint
from skyport.core.domain import PowerAction
from skyport.core.errors import NodeUnreachableError


class TestNodeAgentClient:
    """Tests for NodeAgentClient HTTP client."""

    @pytest.fixture
    def endpoint(self) -> NodeEndpoint:
        return NodeEndpoint(node_id="node-1", address="10.0.0.5", port=3002, api_key="node-secret")

    @pytest.fixture
    def client(self, endpoint: NodeEndpoint) -> NodeAgentClient:
        return NodeAgentClient(endpoint, timeout=30.0, probe_timeout=5.0)

    @pytest.fixture
    def http(self) -> AsyncMock:
        """Mock httpx.AsyncClient returned by _get_client."""
        http = AsyncMock()
        http.get = AsyncMock(return_value=httpx.Response(200, json={}))
        http.post = AsyncMock(return_value=httpx.Response(200, json={}))
        return http

    # =========================================================================
    # HTTP Client Tests
    # =========================================================================

    async def test_basic_auth_uses_username_and_api_key(self, client: NodeAgentClient) -> None:
        """Every request carries basic auth Skyport:<apiKey>."""
        http_client = await client._get_client()
        request = httpx.Request("GET", "http://10.0.0.5:3002/")
        authed = next(http_client.auth.sync_auth_flow(request))

        expected = base64.b64encode(b"Skyport:node-secret").decode()
        assert authed.headers["Authorization"] == f"Basic {expected}"
        assert str(http_client.base_url) == "http://10.0.0.5:3002"

        await client.close()

    async def test_close(self, client: NodeAgentClient) -> None:
        """Test close cleans up HTTP client."""
        await client._get_client()
        assert client._client is not None

        await client.close()
        assert client._client is None

    async def test_non_success_raises_with_upstream_details(
        self, client: NodeAgentClient, http: AsyncMock
    ) -> None:
        """Non-2xx answers become NodeUnreachableError carrying the node's body."""
        http.post.return_value = httpx.Response(500, json={"error": "image pull failed"})

        with patch.object(client, "_get_client", return_value=http):
            with pytest.raises(NodeUnreachableError) as exc_info:
                await client.create_instance({"Id": "a1b2c3d4"})

        assert exc_info.value.status_code == 502
        assert exc_info.value.details == "image pull failed"

    async def test_timeout_raises_unreachable(
        self, client: NodeAgentClient, http: AsyncMock
    ) -> None:
        http.get.side_effect = httpx.ConnectTimeout("timed out")

        with patch.object(client, "_get_client", return_value=http):
            with pytest.raises(NodeUnreachableError, match="Timed out"):
                await client.get_state("a1b2c3d4")

    async def test_connection_refused_raises_unreachable(
        self, client: NodeAgentClient, http: AsyncMock
    ) -> None:
        http.get.side_effect = httpx.ConnectError("connection refused")

        with patch.object(client, "_get_client", return_value=http):
            with pytest.raises(NodeUnreachableError) as exc_info:
                await client.delete_instance("c-1")

        assert exc_info.value.details == "connection refused"

    # =========================================================================
    # Operations
    # =========================================================================

    async def test_create_instance_posts_payload(
        self, client: NodeAgentClient, http: AsyncMock
    ) -> None:
        http.post.return_value = httpx.Response(200, json={"containerId": "c-1"})

        with patch.object(client, "_get_client", return_value=http):
            result = await client.create_instance({"Id": "a1b2c3d4"})

        assert result == {"containerId": "c-1"}
        http.post.assert_called_once_with("/instances/create", json={"Id": "a1b2c3d4"})

    async def test_redeploy_path(self, client: NodeAgentClient, http: AsyncMock) -> None:
        with patch.object(client, "_get_client", return_value=http):
            await client.redeploy_instance("c-1", "a1b2c3d4", {})

        assert http.post.call_args.args[0] == "/instances/redeploy/c-1/a1b2c3d4"

    async def test_delete_uses_get(self, client: NodeAgentClient, http: AsyncMock) -> None:
        with patch.object(client, "_get_client", return_value=http):
            await client.delete_instance("c-1")

        http.get.assert_called_once_with("/instances/c-1/delete")

    async def test_power_304_is_success(self, client: NodeAgentClient, http: AsyncMock) -> None:
        """304 means the container is already in the requested state."""
        http.post.return_value = httpx.Response(304)

        with patch.object(client, "_get_client", return_value=http):
            await client.power("c-1", PowerAction.STOP, "stop")

        http.post.assert_called_once_with("/instances/c-1/stop", json={"command": "stop"})

    async def test_power_other_status_fails(self, client: NodeAgentClient, http: AsyncMock) -> None:
        http.post.return_value = httpx.Response(204)

        with patch.object(client, "_get_client", return_value=http):
            with pytest.raises(NodeUnreachableError):
                await client.power("c-1", PowerAction.START)

    async def test_probe_uses_probe_timeout(self, client: NodeAgentClient, http: AsyncMock) -> None:
        http.get.return_value = httpx.Response(
            200, json={"versionFamily": "1", "versionRelease": "1.2.0"}
        )

        with patch.object(client, "_get_client", return_value=http):
            body = await client.probe()

        assert body["versionRelease"] == "1.2.0"
        http.get.assert_called_once_with("/", timeout=5.0)

    async def test_probe_rejects_non_object_body(
        self, client: NodeAgentClient, http: AsyncMock
    ) -> None:
        http.get.return_value = httpx.Response(200, json=["not", "an", "object"])

        with patch.object(client, "_get_client", return_value=http):
            with pytest.raises(NodeUnreachableError, match="Malformed"):
                await client.probe()

    async def test_check_all_returns_flagged_messages(
        self, client: NodeAgentClient, http: AsyncMock
    ) -> None:
        http.get.return_value = httpx.Response(
            200, json={"flaggedMessages": [{"containerId": "c-1", "message": "miner"}]}
        )

        with patch.object(client, "_get_client", return_value=http):
            flagged = await client.check_all()

        assert flagged == [{"containerId": "c-1", "message": "miner"}]

    # =========================================================================
    # Malformed success bodies
    # =========================================================================

    @staticmethod
    def _calls(client: NodeAgentClient) -> dict:
        return {
            "check_all": lambda: client.check_all(),
            "create_instance": lambda: client.create_instance({"Id": "a1b2c3d4"}),
            "redeploy_instance": lambda: client.redeploy_instance("c-1", "a1b2c3d4", {}),
            "reinstall_instance": lambda: client.reinstall_instance("c-1", {}),
            "get_state": lambda: client.get_state("a1b2c3d4"),
        }

    @pytest.mark.parametrize(
        "call",
        ["check_all", "create_instance", "redeploy_instance", "reinstall_instance", "get_state"],
    )
    async def test_non_json_success_body_is_node_failure(
        self, client: NodeAgentClient, http: AsyncMock, call: str
    ) -> None:
        html = httpx.Response(200, text="<html>oops</html>")
        http.get.return_value = html
        http.post.return_value = html

        with patch.object(client, "_get_client", return_value=http):
            with pytest.raises(NodeUnreachableError, match="Malformed") as exc_info:
                await self._calls(client)[call]()

        assert exc_info.value.details == "<html>oops</html>"

    @pytest.mark.parametrize(
        "call",
        ["check_all", "create_instance", "redeploy_instance", "reinstall_instance", "get_state"],
    )
    async def test_non_object_success_body_is_node_failure(
        self, client: NodeAgentClient, http: AsyncMock, call: str
    ) -> None:
        listing = httpx.Response(200, json=["x"])
        http.get.return_value = listing
        http.post.return_value = listing

        with patch.object(client, "_get_client", return_value=http):
            with pytest.raises(NodeUnreachableError, match="Malformed"):
                await self._calls(client)[call]()

    async def test_check_all_rejects_non_list_flags(
        self, client: NodeAgentClient, http: AsyncMock
    ) -> None:
        http.get.return_value = httpx.Response(200, json={"flaggedMessages": "c-1"})

        with patch.object(client, "_get_client", return_value=http):
            with pytest.raises(NodeUnreachableError, match="Malformed"):
                await client.check_all()

    # =========================================================================
    # Stream URLs
    # =========================================================================

    def test_stream_urls(self, client: NodeAgentClient) -> None:
        assert client.exec_url("c-1") == "ws://10.0.0.5:3002/exec/c-1"
        assert client.stats_url("c-1", "a1b2c3d4") == "ws://10.0.0.5:3002/stats/c-1/a1b2c3d4"
        assert client.stats_url("c-1") == "ws://10.0.0.5:3002/stats/c-1"


class TestNodeAgentClientFactory:
    """Tests for per-node client caching."""

    async def test_reuses_client_for_same_endpoint(self, node_factory) -> None:
        factory = NodeAgentClientFactory()
        node = node_factory()

        first = await factory.for_node(node)
        second = await factory.for_node(node)

        assert first is second
        await factory.close()

    async def test_rebuilds_client_when_api_key_changes(self, node_factory) -> None:
        factory = NodeAgentClientFactory()

        first = await factory.for_node(node_factory(api_key="old"))
        second = await factory.for_node(node_factory(api_key="new"))

        assert first is not second
        assert second.endpoint.api_key == "new"
        await factory.close()

    async def test_forget_drops_cached_client(self, node_factory) -> None:
        factory = NodeAgentClientFactory()
        node = node_factory()
        first = await factory.for_node(node)

        await factory.forget(node.id)

        assert await factory.for_node(node) is not first
        await factory.close()
