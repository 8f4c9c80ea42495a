"""
Type definitions for cluster connections.

This module defines the data structures shared by the credential
resolver, the connection registry and the tools built on top of them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from kubernetes import client


class ClusterStatus(str, Enum):
    """Reachability of a registered cluster."""

    ACTIVE = "active"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClusterConfig:
    """
    Credential source for one cluster.

    Attributes:
        kubeconfig_path: Path to a kubeconfig file
        kubeconfig_data: Inline kubeconfig, base64-encoded or raw YAML
        in_cluster: Use the pod's own service account identity
        context: Context name overriding the kubeconfig's current-context
    """

    kubeconfig_path: Optional[str] = None
    kubeconfig_data: Optional[str | bytes] = None
    in_cluster: bool = False
    context: Optional[str] = None

    @property
    def has_source(self) -> bool:
        """Check if at least one credential source is present."""
        return bool(self.kubeconfig_path or self.kubeconfig_data or self.in_cluster)

    def summary(self) -> dict[str, Any]:
        """Non-secret view of the config (inline data is never echoed)."""
        return {
            "has_kubeconfig_path": bool(self.kubeconfig_path),
            "has_kubeconfig_data": bool(self.kubeconfig_data),
            "in_cluster": self.in_cluster,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClusterConfig":
        """Build from a tool arguments or config-file mapping."""
        return cls(
            kubeconfig_path=data.get("kubeconfig_path") or None,
            kubeconfig_data=data.get("kubeconfig_data") or None,
            in_cluster=bool(data.get("in_cluster", False)),
            context=data.get("context") or None,
        )


@dataclass(frozen=True)
class ResolvedCredentials:
    """Authenticated transport handle and the configuration behind it."""

    api_client: client.ApiClient
    configuration: client.Configuration


@dataclass
class Connection:
    """
    Registry entry for one cluster.

    The api_client is built once at registration and shared by every
    operation against the cluster. It is never mutated afterwards.
    """

    cluster_id: str
    config: ClusterConfig
    api_client: client.ApiClient
    configuration: client.Configuration
    created_at: datetime = field(default_factory=datetime.now)
    last_used: datetime = field(default_factory=datetime.now)

    def touch(self) -> None:
        """Update last-used time."""
        self.last_used = datetime.now()

    def close(self) -> None:
        """Release the handle's connection pool."""
        self.api_client.close()


@dataclass
class ClusterInfo:
    """One row of a cluster listing."""

    cluster_id: str
    config: ClusterConfig
    status: ClusterStatus
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "cluster_id": self.cluster_id,
            "status": self.status.value,
            "error": self.error,
            "config": self.config.summary(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }
