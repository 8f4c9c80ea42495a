"""
Tool Call Middleware.

Filters unexpected parameters from tool calls and counts every call
in the metrics collector.
"""

import re
from typing import Optional

from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools import ToolResult

from kube_fleet_mcp.http.metrics import MetricsCollector
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

# Tool errors are raised as "[Kind] message"
_ERROR_KIND = re.compile(r"^\[(\w+)\]")


class ToolCallMiddleware(Middleware):
    """
    Preprocess tool calls and record their outcome.

    Arguments are filtered against the tool's input schema (whitelist),
    so clients that attach extra fields such as ``toolCallId`` do not
    trip Pydantic validation. Every call is then counted as a success
    or an error, with the error kind taken from the ToolError message.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None, verbose: bool = False):
        """
        Initialize middleware.

        Args:
            metrics: Collector to count calls in (None disables counting)
            verbose: If True, log filtered fields
        """
        self.metrics = metrics
        self.verbose = verbose

    async def on_call_tool(
        self,
        context: MiddlewareContext,
        call_next: CallNext,
    ) -> ToolResult:
        tool_name = context.message.name
        await self._filter_to_schema(context)

        try:
            result = await call_next(context)
        except Exception as e:
            self._record(tool_name, success=False, error_kind=_error_kind(e))
            raise

        self._record(tool_name, success=True)
        return result

    def _record(self, tool_name: str, success: bool, error_kind: Optional[str] = None) -> None:
        if self.metrics is not None:
            self.metrics.inc_tool_call(tool_name, success=success, error_kind=error_kind)

    async def _filter_to_schema(self, context: MiddlewareContext) -> None:
        """Drop arguments that are not declared in the tool's schema."""
        message = context.message
        if not getattr(message, "arguments", None):
            return
        if context.fastmcp_context is None:
            return

        tool_name = message.name
        try:
            tool = await context.fastmcp_context.fastmcp.get_tool(tool_name)
        except Exception as e:
            logger.debug(f"Could not retrieve tool '{tool_name}': {e}")
            return
        if tool is None:
            return

        allowed = _allowed_params(tool.parameters)
        if allowed is None:
            if self.verbose:
                logger.debug(f"Tool '{tool_name}' has no usable schema properties")
            return

        removed = set(message.arguments) - allowed
        if not removed:
            return

        if self.verbose:
            logger.info(f"Tool '{tool_name}': filtered {sorted(removed)}")
        for key in removed:
            del message.arguments[key]


def _allowed_params(schema: dict) -> Optional[set[str]]:
    """Parameter names declared in a JSON Schema, or None if malformed."""
    if not isinstance(schema, dict):
        return None
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return None
    return set(properties)


def _error_kind(error: Exception) -> str:
    match = _ERROR_KIND.match(str(error))
    if match:
        return match.group(1)
    return type(error).__name__
