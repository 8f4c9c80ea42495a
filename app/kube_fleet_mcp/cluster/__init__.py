"""
Cluster connections.

This module handles:
- Credential resolution (kubeconfig file, inline data, in-cluster)
- The concurrent connection registry
"""

from kube_fleet_mcp.cluster.credentials import (
    decode_kubeconfig_data,
    resolve_credentials,
)
from kube_fleet_mcp.cluster.registry import ClusterRegistry
from kube_fleet_mcp.cluster.types import (
    ClusterConfig,
    ClusterInfo,
    ClusterStatus,
    Connection,
    ResolvedCredentials,
)

__all__ = [
    # Types
    "ClusterConfig",
    "ClusterInfo",
    "ClusterStatus",
    "Connection",
    "ResolvedCredentials",
    # Credentials
    "decode_kubeconfig_data",
    "resolve_credentials",
    # Registry
    "ClusterRegistry",
]
