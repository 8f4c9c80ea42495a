"""
Port-forward tunnels.

Exposes a pod port on a local loopback listener, with an explicit
table of live tunnels so any of them can be listed or stopped.
"""

from kube_fleet_mcp.tunnel.manager import TunnelManager
from kube_fleet_mcp.tunnel.types import Tunnel, TunnelKey, TunnelState

__all__ = [
    "Tunnel",
    "TunnelKey",
    "TunnelManager",
    "TunnelState",
]
