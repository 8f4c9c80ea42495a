"""
Type definitions for manifest apply.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from urllib.parse import quote


class ResourceScope(str, Enum):
    """Whether a resource lives in a namespace or at cluster level."""

    CLUSTER = "Cluster"
    NAMESPACED = "Namespaced"


@dataclass(frozen=True)
class DiscoveryMapping:
    """
    Resolved REST endpoint for a group/version/kind.

    Attributes:
        group: API group ("" for the core group)
        version: API version
        kind: Resource kind as served by discovery
        plural: Resource collection name (e.g. "deployments")
        scope: Cluster-wide or namespaced
    """

    group: str
    version: str
    kind: str
    plural: str
    scope: ResourceScope

    @property
    def namespaced(self) -> bool:
        return self.scope == ResourceScope.NAMESPACED

    @property
    def api_prefix(self) -> str:
        """Base path of the group/version."""
        if not self.group:
            return f"/api/{self.version}"
        return f"/apis/{self.group}/{self.version}"

    def path(self, name: str, namespace: Optional[str] = None) -> str:
        """Object path, scoped to the namespace for namespaced kinds."""
        base = self.api_prefix
        if self.namespaced and namespace:
            base = f"{base}/namespaces/{quote(namespace, safe='')}"
        return f"{base}/{self.plural}/{quote(name, safe='')}"


@dataclass
class ManifestObject:
    """
    A decoded, schema-agnostic manifest.

    The body is the YAML tree as PyYAML produced it; only the identifying
    fields are pulled out.
    """

    api_version: str
    kind: str
    name: str
    namespace: Optional[str]
    body: dict[str, Any]

    @property
    def group(self) -> str:
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""

    @property
    def version(self) -> str:
        return self.api_version.rsplit("/", 1)[-1]


@dataclass
class ApplyResult:
    """Outcome of a server-side apply."""

    name: str
    namespace: Optional[str]
    kind: str
    dry_run: bool
    api_version: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = None

    def summary(self) -> str:
        """One-line human-readable outcome."""
        action = "Validated (dry run, no changes made)" if self.dry_run else "Applied"
        where = f" in namespace {self.namespace}" if self.namespace else ""
        return f"{action} {self.kind}: {self.name}{where}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "namespace": self.namespace,
            "kind": self.kind,
            "dry_run": self.dry_run,
            "api_version": self.api_version,
            "uid": self.uid,
            "resource_version": self.resource_version,
            "summary": self.summary(),
        }
