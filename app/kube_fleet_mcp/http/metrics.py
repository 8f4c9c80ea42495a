"""
Prometheus metrics endpoint.

Provides /metrics in Prometheus exposition format.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from starlette.requests import Request
from starlette.responses import PlainTextResponse

from kube_fleet_mcp import __version__

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@dataclass
class MetricsCollector:
    """
    Simple metrics collector for Prometheus exposition.

    Counters are bumped by the tool-call middleware and the apply tool;
    cluster and tunnel gauges are read from live providers at scrape time.
    """

    # Counters
    tool_calls_total: int = 0
    tool_calls_success: int = 0
    tool_calls_error: int = 0
    applies_total: int = 0
    applies_dry_run: int = 0

    # Startup time
    start_time: float = field(default_factory=time.time)

    # Per-tool and per-error-kind counters
    tool_counts: dict[str, int] = field(default_factory=dict)
    error_kinds: dict[str, int] = field(default_factory=dict)

    # Gauge providers (set by the server)
    clusters_gauge: Optional[Callable[[], int]] = None
    tunnels_gauge: Optional[Callable[[], int]] = None

    def inc_tool_call(
        self, tool_name: str, success: bool = True, error_kind: Optional[str] = None
    ) -> None:
        """Increment tool call counters."""
        self.tool_calls_total += 1

        if success:
            self.tool_calls_success += 1
        else:
            self.tool_calls_error += 1
            if error_kind:
                self.error_kinds[error_kind] = self.error_kinds.get(error_kind, 0) + 1

        self.tool_counts[tool_name] = self.tool_counts.get(tool_name, 0) + 1

    def inc_apply(self, dry_run: bool) -> None:
        """Count a successful apply."""
        self.applies_total += 1
        if dry_run:
            self.applies_dry_run += 1

    def format_prometheus(self) -> str:
        """
        Format metrics in Prometheus exposition format.

        Returns:
            Metrics as text in Prometheus format
        """
        uptime = time.time() - self.start_time
        clusters = self.clusters_gauge() if self.clusters_gauge else 0
        tunnels = self.tunnels_gauge() if self.tunnels_gauge else 0

        lines = [
            "# HELP kube_fleet_mcp_info Server information",
            "# TYPE kube_fleet_mcp_info gauge",
            f'kube_fleet_mcp_info{{version="{__version__}"}} 1',
            "",
            "# HELP kube_fleet_mcp_uptime_seconds Server uptime in seconds",
            "# TYPE kube_fleet_mcp_uptime_seconds gauge",
            f"kube_fleet_mcp_uptime_seconds {uptime:.2f}",
            "",
            "# HELP kube_fleet_mcp_tool_calls_total Total tool calls",
            "# TYPE kube_fleet_mcp_tool_calls_total counter",
            f"kube_fleet_mcp_tool_calls_total {self.tool_calls_total}",
            "",
            "# HELP kube_fleet_mcp_tool_calls_success_total Successful tool calls",
            "# TYPE kube_fleet_mcp_tool_calls_success_total counter",
            f"kube_fleet_mcp_tool_calls_success_total {self.tool_calls_success}",
            "",
            "# HELP kube_fleet_mcp_tool_calls_error_total Failed tool calls",
            "# TYPE kube_fleet_mcp_tool_calls_error_total counter",
            f"kube_fleet_mcp_tool_calls_error_total {self.tool_calls_error}",
            "",
            "# HELP kube_fleet_mcp_applies_total Successful server-side applies",
            "# TYPE kube_fleet_mcp_applies_total counter",
            f'kube_fleet_mcp_applies_total{{dry_run="false"}} {self.applies_total - self.applies_dry_run}',
            f'kube_fleet_mcp_applies_total{{dry_run="true"}} {self.applies_dry_run}',
            "",
            "# HELP kube_fleet_mcp_clusters Registered clusters",
            "# TYPE kube_fleet_mcp_clusters gauge",
            f"kube_fleet_mcp_clusters {clusters}",
            "",
            "# HELP kube_fleet_mcp_tunnels Live port-forward tunnels",
            "# TYPE kube_fleet_mcp_tunnels gauge",
            f"kube_fleet_mcp_tunnels {tunnels}",
        ]

        if self.tool_counts:
            lines.extend([
                "",
                "# HELP kube_fleet_mcp_tool_calls_by_name Tool calls by tool name",
                "# TYPE kube_fleet_mcp_tool_calls_by_name counter",
            ])
            for tool_name, count in sorted(self.tool_counts.items()):
                lines.append(f'kube_fleet_mcp_tool_calls_by_name{{tool="{tool_name}"}} {count}')

        if self.error_kinds:
            lines.extend([
                "",
                "# HELP kube_fleet_mcp_errors_by_kind Failed tool calls by error kind",
                "# TYPE kube_fleet_mcp_errors_by_kind counter",
            ])
            for kind, count in sorted(self.error_kinds.items()):
                lines.append(f'kube_fleet_mcp_errors_by_kind{{kind="{kind}"}} {count}')

        return "\n".join(lines) + "\n"


def make_metrics_endpoint(metrics: MetricsCollector):
    """Build the /metrics handler bound to a collector."""

    async def metrics_endpoint(request: Request) -> PlainTextResponse:
        """Prometheus metrics endpoint."""
        return PlainTextResponse(
            metrics.format_prometheus(),
            media_type=PROMETHEUS_CONTENT_TYPE,
        )

    return metrics_endpoint
