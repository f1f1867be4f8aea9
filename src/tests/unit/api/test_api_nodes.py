"""Unit tests for node administration API endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from skyport.app.api.v1.dependencies import get_control_plane, get_current_user
from skyport.app.main import app
from skyport.core.domain import NodeStatus
from skyport.core.errors import NodeHasInstancesError, NodeNotFoundError


@pytest.fixture
def plane(node) -> MagicMock:
    plane = MagicMock()
    plane.health.probe_all = AsyncMock(return_value=[node])
    plane.health.probe = AsyncMock(return_value=node)
    plane.health.sweep = AsyncMock(return_value={"nodes": 1, "online": 1, "suspended": 2})
    plane.nodes.get = AsyncMock(return_value=node)
    plane.nodes.instance_counts = AsyncMock(return_value={"node-1": 4})
    plane.nodes.create_node = AsyncMock(return_value=node)
    plane.nodes.configure_node = AsyncMock(return_value=node)
    plane.nodes.update_node = AsyncMock(return_value=node)
    plane.nodes.delete_node = AsyncMock(return_value=0)
    plane.nodes.regenerate_configure_key = AsyncMock(
        return_value={"configureKey": "k", "configureCommand": "npm run configure -- --panel x --key k"}
    )
    return plane


@pytest.fixture
def client(plane: MagicMock, user_factory) -> TestClient:
    app.dependency_overrides[get_control_plane] = lambda: plane
    app.dependency_overrides[get_current_user] = lambda: user_factory("user-3", admin=True)

    yield TestClient(app)

    app.dependency_overrides.clear()


class TestNodeAPI:
    def test_list_probes_and_counts(self, client: TestClient, plane: MagicMock) -> None:
        response = client.get("/api/v1/nodes")

        assert response.status_code == 200
        [node] = response.json()
        assert node["status"] == NodeStatus.ONLINE.value
        assert node["instances"] == 4
        assert "api_key" not in node
        plane.health.probe_all.assert_awaited_once()

    def test_create(self, client: TestClient, plane: MagicMock) -> None:
        response = client.post(
            "/api/v1/nodes", json={"name": "Node One", "address": "10.0.0.5", "port": 3002}
        )

        assert response.status_code == 201
        assert plane.nodes.create_node.call_args.kwargs["address"] == "10.0.0.5"

    def test_create_rejects_bad_port(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/nodes", json={"name": "Node One", "address": "10.0.0.5", "port": 70000}
        )

        assert response.status_code == 422

    def test_configure_needs_no_session(self, client: TestClient, plane: MagicMock) -> None:
        """The node agent pairs itself with query parameters only."""
        del app.dependency_overrides[get_current_user]

        response = client.post("/api/v1/nodes/configure?configureKey=ck&accessKey=ak")

        assert response.status_code == 200
        plane.nodes.configure_node.assert_awaited_once_with("ck", "ak")

    def test_configure_invalid_key(self, client: TestClient, plane: MagicMock) -> None:
        plane.nodes.configure_node.side_effect = NodeNotFoundError("Invalid configure key")

        response = client.post("/api/v1/nodes/configure?configureKey=bad&accessKey=ak")

        assert response.status_code == 404

    def test_radar_check(self, client: TestClient) -> None:
        response = client.post("/api/v1/nodes/radar/check")

        assert response.json()["suspended"] == 2

    def test_update_passes_api_key_alias(self, client: TestClient, plane: MagicMock) -> None:
        client.put("/api/v1/nodes/node-1", json={"apiKey": "rotated", "ram": "32G"})

        plane.nodes.update_node.assert_awaited_once_with(
            "node-1", {"ram": "32G", "api_key": "rotated"}
        )

    def test_delete_with_instances_conflict(self, client: TestClient, plane: MagicMock) -> None:
        plane.nodes.delete_node.side_effect = NodeHasInstancesError()

        response = client.delete("/api/v1/nodes/node-1")

        assert response.status_code == 409
        plane.nodes.delete_node.assert_awaited_once_with("node-1", False)

    def test_delete_with_instances_flag(self, client: TestClient, plane: MagicMock) -> None:
        client.delete("/api/v1/nodes/node-1?delete_instances=true")

        plane.nodes.delete_node.assert_awaited_once_with("node-1", True)

    def test_regenerate_configure_key(self, client: TestClient) -> None:
        response = client.post("/api/v1/nodes/node-1/configure-key")

        assert response.json()["configureKey"] == "k"
