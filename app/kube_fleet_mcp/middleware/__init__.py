"""
MCP Middleware for tool call processing.

Contains:
- ToolCallMiddleware: Filters unexpected parameters and counts tool calls
"""

from kube_fleet_mcp.middleware.tool_calls import ToolCallMiddleware

__all__ = [
    "ToolCallMiddleware",
]
