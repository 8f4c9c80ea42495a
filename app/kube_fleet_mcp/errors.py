"""
Error taxonomy for cluster operations.

Every error carries the cluster id, the operation that failed and the
underlying cause, so a calling agent can decide whether to re-register
credentials, retry later, or fix its request. Nothing here is retried
internally.
"""

from typing import Any, Optional


class KubeFleetError(Exception):
    """Base exception for all cluster operation errors."""

    kind = "KubeFleetError"
    # Remedy group: credentials | retry | manifest | request
    category = "request"

    def __init__(
        self,
        message: str,
        cluster_id: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.cluster_id = cluster_id
        self.operation = operation
        self.cause = cause
        super().__init__(self._format())

    def _format(self) -> str:
        prefix = []
        if self.cluster_id:
            prefix.append(f"cluster '{self.cluster_id}'")
        if self.operation:
            prefix.append(self.operation)
        if prefix:
            return f"{' '.join(prefix)}: {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.kind,
            "category": self.category,
            "message": self.message,
            "cluster_id": self.cluster_id,
            "operation": self.operation,
            "cause": str(self.cause) if self.cause else None,
        }


# Credentials


class InvalidConfig(KubeFleetError):
    """Raised when a request or cluster config has no usable input."""

    kind = "InvalidConfig"
    category = "credentials"


class MalformedCredential(KubeFleetError):
    """Raised when kubeconfig data or file is present but unusable."""

    kind = "MalformedCredential"
    category = "credentials"


class NoAmbientIdentity(KubeFleetError):
    """Raised when in-cluster identity was requested but is unavailable."""

    kind = "NoAmbientIdentity"
    category = "credentials"


# Registry


class AlreadyRegistered(KubeFleetError):
    """Raised when registering a key that is already live."""

    kind = "AlreadyRegistered"


class NotFound(KubeFleetError):
    """Raised when a cluster id or tunnel key is unknown."""

    kind = "NotFound"


# Discovery and apply


class UnknownResourceType(KubeFleetError):
    """Raised when discovery has no matching group/version/kind."""

    kind = "UnknownResourceType"
    category = "manifest"


class DiscoveryUnavailable(KubeFleetError):
    """Raised when the discovery document cannot be fetched."""

    kind = "DiscoveryUnavailable"
    category = "retry"


class MalformedManifest(KubeFleetError):
    """Raised when manifest text cannot be decoded into a single object."""

    kind = "MalformedManifest"
    category = "manifest"


class PatchRejected(KubeFleetError):
    """Raised when the API server rejects an apply patch."""

    kind = "PatchRejected"
    category = "manifest"

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        self.status = status
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status
        return data


class ClusterUnreachable(KubeFleetError):
    """Raised when the cluster API cannot be reached."""

    kind = "ClusterUnreachable"
    category = "retry"


# Tunnels


class UpgradeFailed(KubeFleetError):
    """Raised when the port-forward protocol upgrade is rejected."""

    kind = "UpgradeFailed"


class TunnelTimeout(KubeFleetError):
    """Raised when a tunnel does not become ready in time."""

    kind = "TunnelTimeout"
    category = "retry"

    def __init__(self, message: str, timeout: float, **kwargs):
        self.timeout = timeout
        super().__init__(message, **kwargs)


class LocalPortInUse(KubeFleetError):
    """Raised when the local listening port cannot be bound."""

    kind = "LocalPortInUse"
