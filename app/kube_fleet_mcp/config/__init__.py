"""
Configuration system for the Kube Fleet MCP Server.

Exports:
    KubeFleetConfig: Main configuration container
    load_config: Load configuration from YAML/env
    reload_config: Reload, keeping the current config on failure
"""

from kube_fleet_mcp.config.models import (
    ClusterEntry,
    DiscoverySettings,
    KubeFleetConfig,
    KubernetesSettings,
    ServerSettings,
    TunnelSettings,
)
from kube_fleet_mcp.config.loader import load_config, reload_config

__all__ = [
    "ClusterEntry",
    "DiscoverySettings",
    "KubeFleetConfig",
    "KubernetesSettings",
    "ServerSettings",
    "TunnelSettings",
    "load_config",
    "reload_config",
]
