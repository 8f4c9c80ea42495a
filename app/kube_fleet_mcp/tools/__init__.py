"""
MCP tool handlers.

Each module registers one family of tools on a FastMCP instance, with
the components it needs passed in explicitly.
"""

from kube_fleet_mcp.tools.base import to_tool_error
from kube_fleet_mcp.tools.cluster import register_cluster_tools
from kube_fleet_mcp.tools.manifest import register_manifest_tools
from kube_fleet_mcp.tools.tunnel import register_tunnel_tools

__all__ = [
    "register_cluster_tools",
    "register_manifest_tools",
    "register_tunnel_tools",
    "to_tool_error",
]
