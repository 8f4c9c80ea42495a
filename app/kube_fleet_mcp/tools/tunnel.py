# tools/tunnel.py
"""
Port-forward tools.
"""

from typing import Any, Literal, Optional

from fastmcp import FastMCP

from kube_fleet_mcp.errors import InvalidConfig, KubeFleetError
from kube_fleet_mcp.tools.base import to_tool_error
from kube_fleet_mcp.tunnel import TunnelManager


def register_tunnel_tools(mcp: FastMCP, tunnels: TunnelManager) -> None:
    """Register port-forward tools with the server."""

    @mcp.tool(
        name="k8s_port_forward",
        annotations={
            "title": "Port Forward",
            "readOnlyHint": False,
            "destructiveHint": False,
            "openWorldHint": True,
        },
    )
    async def k8s_port_forward(
        cluster_id: str,
        namespace: str,
        pod_name: str,
        remote_port: Optional[int] = None,
        local_port: Optional[int] = None,
        action: Literal["start", "stop"] = "start",
    ) -> dict[str, Any]:
        """
        Start or stop forwarding a local port to a port inside a pod.

        On start the tool returns once the tunnel is ready, with the local
        URL to use. On stop without local_port every tunnel to the pod
        is stopped.

        Args:
            cluster_id: Registered cluster id
            namespace: Pod namespace
            pod_name: Pod name
            remote_port: Port inside the pod (required for start)
            local_port: Local port (defaults to remote_port; 0 picks a free port)
            action: "start" or "stop"
        """
        try:
            if action == "stop":
                stopped = await tunnels.stop(cluster_id, namespace, pod_name, local_port)
                return {
                    "status": "terminated",
                    "stopped": [tunnel.to_dict() for tunnel in stopped],
                    "summary": f"Port-forward for pod {pod_name} has been terminated.",
                }
            if action != "start":
                raise InvalidConfig(
                    f"action must be 'start' or 'stop', got {action!r}",
                    cluster_id=cluster_id,
                    operation="port-forward",
                )

            tunnel = await tunnels.start(
                cluster_id,
                namespace,
                pod_name,
                local_port=local_port,
                remote_port=remote_port,
            )
        except KubeFleetError as e:
            raise to_tool_error(e) from e

        return {
            "url": tunnel.url,
            "status": tunnel.state.value,
            "local_port": tunnel.local_port,
            "remote_port": tunnel.remote_port,
            "summary": (
                f"Port-forward to {namespace}/{pod_name}:{tunnel.remote_port} "
                f"available at {tunnel.url}"
            ),
        }

    @mcp.tool(
        name="k8s_port_forward_list",
        annotations={
            "title": "List Port Forwards",
            "readOnlyHint": True,
            "destructiveHint": False,
        },
    )
    async def k8s_port_forward_list(cluster_id: Optional[str] = None) -> dict[str, Any]:
        """
        List live port-forward tunnels.

        Args:
            cluster_id: Only list tunnels of this cluster
        """
        live = await tunnels.list_tunnels(cluster_id)
        return {
            "tunnels": [tunnel.to_dict() for tunnel in live],
            "count": len(live),
        }
