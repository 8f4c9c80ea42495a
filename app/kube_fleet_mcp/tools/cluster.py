# tools/cluster.py
"""
Cluster registration tools.
"""

from typing import Any, Optional

from fastmcp import FastMCP

from kube_fleet_mcp.cluster import ClusterConfig, ClusterRegistry
from kube_fleet_mcp.errors import KubeFleetError
from kube_fleet_mcp.manifest import DiscoveryResolver
from kube_fleet_mcp.tools.base import to_tool_error
from kube_fleet_mcp.tunnel import TunnelManager


def register_cluster_tools(
    mcp: FastMCP,
    registry: ClusterRegistry,
    resolver: DiscoveryResolver,
    tunnels: TunnelManager,
) -> None:
    """Register cluster lifecycle tools with the server."""

    @mcp.tool(
        name="k8s_cluster_register",
        annotations={
            "title": "Register Cluster",
            "readOnlyHint": False,
            "destructiveHint": False,
            "idempotentHint": False,
        },
    )
    async def k8s_cluster_register(
        cluster_id: str,
        kubeconfig_path: Optional[str] = None,
        kubeconfig_data: Optional[str] = None,
        context: Optional[str] = None,
        in_cluster: bool = False,
    ) -> dict[str, Any]:
        """
        Register a Kubernetes cluster under an id for later operations.

        Provide exactly one credential source. When several are given,
        in_cluster wins over kubeconfig_data, which wins over kubeconfig_path.

        Args:
            cluster_id: Unique identifier for the cluster
            kubeconfig_path: Path to a kubeconfig file on the server host
            kubeconfig_data: Kubeconfig content, base64 encoded or raw YAML
            context: Kubeconfig context to use (defaults to current-context)
            in_cluster: Use the server pod's service account
        """
        config = ClusterConfig(
            kubeconfig_path=kubeconfig_path or None,
            kubeconfig_data=kubeconfig_data or None,
            in_cluster=in_cluster,
            context=context or None,
        )
        try:
            await registry.register(cluster_id, config)
        except KubeFleetError as e:
            raise to_tool_error(e) from e
        return {
            "cluster_id": cluster_id,
            "status": "registered",
            "config": config.summary(),
        }

    @mcp.tool(
        name="k8s_cluster_list",
        annotations={
            "title": "List Clusters",
            "readOnlyHint": True,
            "destructiveHint": False,
        },
    )
    async def k8s_cluster_list() -> dict[str, Any]:
        """
        List registered clusters with a live reachability status for each.
        """
        infos = await registry.list_all()
        return {
            "clusters": [info.to_dict() for info in infos],
            "count": len(infos),
        }

    @mcp.tool(
        name="k8s_cluster_status",
        annotations={
            "title": "Cluster Status",
            "readOnlyHint": True,
            "destructiveHint": False,
        },
    )
    async def k8s_cluster_status(cluster_id: str) -> dict[str, Any]:
        """
        Probe one registered cluster and report whether it is reachable.

        Args:
            cluster_id: Registered cluster id
        """
        try:
            info = await registry.status(cluster_id)
        except KubeFleetError as e:
            raise to_tool_error(e) from e
        return info.to_dict()

    @mcp.tool(
        name="k8s_cluster_deregister",
        annotations={
            "title": "Deregister Cluster",
            "readOnlyHint": False,
            "destructiveHint": True,
            "idempotentHint": True,
        },
    )
    async def k8s_cluster_deregister(cluster_id: str) -> dict[str, Any]:
        """
        Remove a cluster, stopping its tunnels and dropping cached discovery.

        Args:
            cluster_id: Registered cluster id
        """
        tunnels_stopped = await tunnels.stop_cluster(cluster_id)
        removed = await registry.deregister(cluster_id)
        resolver.invalidate(cluster_id)
        return {
            "cluster_id": cluster_id,
            "status": "deregistered" if removed else "not_registered",
            "removed": removed,
            "tunnels_stopped": tunnels_stopped,
        }
