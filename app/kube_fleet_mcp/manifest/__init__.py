"""
Manifest handling.

This module handles:
- Dynamic resolution of (group, version, kind) to REST paths
- Server-side apply of single YAML documents
"""

from kube_fleet_mcp.manifest.apply import ApplyEngine, decode_manifest
from kube_fleet_mcp.manifest.discovery import DiscoveryResolver
from kube_fleet_mcp.manifest.types import (
    ApplyResult,
    DiscoveryMapping,
    ManifestObject,
    ResourceScope,
)

__all__ = [
    # Types
    "ApplyResult",
    "DiscoveryMapping",
    "ManifestObject",
    "ResourceScope",
    # Discovery
    "DiscoveryResolver",
    # Apply
    "ApplyEngine",
    "decode_manifest",
]
