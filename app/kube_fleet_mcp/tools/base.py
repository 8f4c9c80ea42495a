# tools/base.py
"""
Shared helpers for MCP tool handlers.
"""

from fastmcp.exceptions import ToolError

from kube_fleet_mcp.errors import KubeFleetError
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)


def to_tool_error(error: KubeFleetError) -> ToolError:
    """
    Convert a domain error into an MCP tool error.

    The message is prefixed with the error kind so the calling agent can
    tell a credentials problem from a transient one or a bad manifest.
    Raising ToolError makes MCP return isError: true.
    """
    logger.warning(f"{error.kind} ({error.category}): {error}")
    return ToolError(f"[{error.kind}] {error}")
