# tools/manifest.py
"""
Manifest apply tool.
"""

from typing import Any, Optional

from fastmcp import FastMCP

from kube_fleet_mcp.errors import KubeFleetError
from kube_fleet_mcp.http.metrics import MetricsCollector
from kube_fleet_mcp.manifest import ApplyEngine
from kube_fleet_mcp.tools.base import to_tool_error


def register_manifest_tools(
    mcp: FastMCP,
    engine: ApplyEngine,
    metrics: Optional[MetricsCollector] = None,
) -> None:
    """Register the server-side apply tool with the server."""

    @mcp.tool(
        name="k8s_apply_yaml",
        annotations={
            "title": "Apply YAML",
            "readOnlyHint": False,
            "destructiveHint": True,
            "idempotentHint": True,
            "openWorldHint": True,
        },
    )
    async def k8s_apply_yaml(
        cluster_id: str,
        yaml_body: str,
        field_manager: Optional[str] = None,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """
        Create or update one Kubernetes object from YAML using server-side apply.

        Conflicting field ownership is forced to the given field manager.
        With dry_run the server validates and admits the object without
        persisting anything.

        Args:
            cluster_id: Registered cluster id
            yaml_body: A single YAML document with apiVersion, kind and metadata.name
            field_manager: Field manager name recorded on the object
            dry_run: Validate only, make no changes
        """
        try:
            result = await engine.apply(
                cluster_id,
                yaml_body,
                field_manager=field_manager or None,
                dry_run=dry_run,
            )
        except KubeFleetError as e:
            raise to_tool_error(e) from e

        if metrics is not None:
            metrics.inc_apply(dry_run=result.dry_run)
        return result.to_dict()
