"""
Functional tests for the MCP tools.

The server is assembled with create_server and driven through the
in-process FastMCP client. Credential resolution and cluster I/O are
mocked; the tool surface, error mapping and cross-component wiring
(deregister stopping tunnels, apply counting) are real.
"""

from unittest.mock import patch

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError

from kube_fleet_mcp import __version__
from kube_fleet_mcp.cluster import ClusterConfig
from kube_fleet_mcp.cluster import registry as registry_module
from kube_fleet_mcp.config import KubeFleetConfig
from kube_fleet_mcp.manifest import DiscoveryMapping, ResourceScope
from kube_fleet_mcp.server import create_server

from fakes import fake_resolver

CONFIGMAP = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: app-settings
  namespace: team-a
data:
  LOG_LEVEL: debug
"""

CONFIGMAP_MAPPING = DiscoveryMapping("", "v1", "ConfigMap", "configmaps", ResourceScope.NAMESPACED)


def error_text(result) -> str:
    return " ".join(getattr(block, "text", "") for block in result.content)


@pytest.fixture
def bundle():
    bundle = create_server(KubeFleetConfig())
    bundle.registry._resolver = fake_resolver
    return bundle


@pytest.fixture
async def mcp_client(bundle):
    async with Client(bundle.server) as client:
        yield client


@pytest.fixture
def core_api():
    """Probes call list_namespace on the (mock) api_client itself."""
    with patch.object(registry_module.client, "CoreV1Api", side_effect=lambda api: api):
        yield


async def register(client, cluster_id="prod"):
    return await client.call_tool(
        "k8s_cluster_register",
        {"cluster_id": cluster_id, "kubeconfig_data": "apiVersion: v1"},
    )


class TestServerTools:
    """Tests for built-in tools and the tool listing."""

    async def test_ping(self, mcp_client):
        result = await mcp_client.call_tool("k8s_ping", {})
        assert error_text(result) == f"pong from kube_fleet_mcp v{__version__}"

    async def test_tool_listing(self, mcp_client):
        names = {tool.name for tool in await mcp_client.list_tools()}
        assert names == {
            "k8s_ping",
            "k8s_cluster_register",
            "k8s_cluster_list",
            "k8s_cluster_status",
            "k8s_cluster_deregister",
            "k8s_apply_yaml",
            "k8s_port_forward",
            "k8s_port_forward_list",
        }


class TestPreloadedClusters:
    """Tests for clusters listed in configuration."""

    async def test_registered_at_startup(self):
        """Each configured entry is registered when the server starts."""
        config = KubeFleetConfig.model_validate(
            {
                "clusters": [
                    {
                        "cluster_id": "edge",
                        "kubeconfig_path": "/etc/kube/edge",
                        "context": "edge-admin",
                    },
                    {"cluster_id": "local", "in_cluster": True},
                ]
            }
        )
        bundle = create_server(config)
        bundle.registry._resolver = fake_resolver

        async with Client(bundle.server) as client:
            listed = await client.call_tool("k8s_port_forward_list", {})
            edge = await bundle.registry.get("edge")
            local = await bundle.registry.get("local")

        assert not listed.is_error
        assert edge.config == ClusterConfig(
            kubeconfig_path="/etc/kube/edge", context="edge-admin"
        )
        assert local.config == ClusterConfig(in_cluster=True)


class TestClusterTools:
    """Tests for the cluster lifecycle tools."""

    async def test_register_and_list(self, mcp_client, core_api):
        result = await register(mcp_client)
        assert result.structured_content["status"] == "registered"
        assert result.structured_content["config"]["has_kubeconfig_data"] is True

        listing = await mcp_client.call_tool("k8s_cluster_list", {})
        clusters = listing.structured_content["clusters"]
        assert listing.structured_content["count"] == 1
        assert clusters[0]["cluster_id"] == "prod"
        assert clusters[0]["status"] == "active"

    async def test_duplicate_register(self, mcp_client):
        await register(mcp_client)
        with pytest.raises(ToolError, match=r"\[AlreadyRegistered\]"):
            await register(mcp_client)

    async def test_register_without_source(self, mcp_client):
        result = await mcp_client.call_tool(
            "k8s_cluster_register", {"cluster_id": "empty"}, raise_on_error=False
        )
        assert result.is_error
        assert "[InvalidConfig]" in error_text(result)

    async def test_status(self, bundle, mcp_client, core_api):
        await register(mcp_client)
        connection = await bundle.registry.get("prod")
        connection.api_client.list_namespace.side_effect = ConnectionRefusedError("refused")

        result = await mcp_client.call_tool("k8s_cluster_status", {"cluster_id": "prod"})
        assert result.structured_content["status"] == "error"
        assert "refused" in result.structured_content["error"]

    async def test_status_unknown(self, mcp_client):
        with pytest.raises(ToolError, match=r"\[NotFound\]"):
            await mcp_client.call_tool("k8s_cluster_status", {"cluster_id": "ghost"})

    async def test_deregister(self, bundle, mcp_client):
        await register(mcp_client)

        result = await mcp_client.call_tool("k8s_cluster_deregister", {"cluster_id": "prod"})
        assert result.structured_content["status"] == "deregistered"
        assert "prod" not in bundle.registry

        again = await mcp_client.call_tool("k8s_cluster_deregister", {"cluster_id": "prod"})
        assert again.structured_content["status"] == "not_registered"


class TestApplyTool:
    """Tests for k8s_apply_yaml."""

    async def test_apply(self, bundle, mcp_client):
        await register(mcp_client)
        api_client = await bundle.registry.lookup("prod")
        api_client.param_serialize.side_effect = lambda **kw: (
            kw["method"], kw["resource_path"], kw["header_params"], kw["body"], []
        )
        api_client.response_deserialize.return_value.data = {
            "kind": "ConfigMap",
            "metadata": {"name": "app-settings", "namespace": "team-a", "uid": "u-1"},
        }

        with patch.object(bundle.resolver, "resolve", return_value=CONFIGMAP_MAPPING):
            result = await mcp_client.call_tool(
                "k8s_apply_yaml",
                {"cluster_id": "prod", "yaml_body": CONFIGMAP, "dry_run": True},
            )

        assert result.structured_content["name"] == "app-settings"
        assert result.structured_content["dry_run"] is True
        assert bundle.metrics.applies_dry_run == 1

    async def test_apply_unknown_cluster(self, mcp_client):
        with pytest.raises(ToolError, match=r"\[NotFound\]"):
            await mcp_client.call_tool(
                "k8s_apply_yaml", {"cluster_id": "ghost", "yaml_body": CONFIGMAP}
            )

    async def test_apply_malformed(self, mcp_client):
        await register(mcp_client)
        with pytest.raises(ToolError, match=r"\[MalformedManifest\]"):
            await mcp_client.call_tool(
                "k8s_apply_yaml", {"cluster_id": "prod", "yaml_body": "kind: [oops"}
            )


class TestPortForwardTools:
    """Tests for k8s_port_forward and k8s_port_forward_list."""

    async def test_stop_unknown_tunnel(self, mcp_client):
        await register(mcp_client)
        with pytest.raises(ToolError, match=r"\[NotFound\]"):
            await mcp_client.call_tool(
                "k8s_port_forward",
                {"cluster_id": "prod", "namespace": "default", "pod_name": "web-0", "action": "stop"},
            )

    async def test_start_without_remote_port(self, mcp_client):
        await register(mcp_client)
        with pytest.raises(ToolError, match=r"\[InvalidConfig\]"):
            await mcp_client.call_tool(
                "k8s_port_forward",
                {"cluster_id": "prod", "namespace": "default", "pod_name": "web-0"},
            )

    async def test_empty_list(self, mcp_client):
        result = await mcp_client.call_tool("k8s_port_forward_list", {})
        assert result.structured_content == {"tunnels": [], "count": 0}

    async def test_deregister_stops_tunnels(self, bundle, mcp_client):
        """Deregistering a cluster stops its tunnels first."""
        await register(mcp_client)

        with patch.object(bundle.tunnels, "stop_cluster", return_value=2) as stop_cluster:
            result = await mcp_client.call_tool("k8s_cluster_deregister", {"cluster_id": "prod"})

        stop_cluster.assert_awaited_once_with("prod")
        assert result.structured_content["tunnels_stopped"] == 2
