"""
HTTP endpoints for health checks and metrics.

Provides:
- /health: Kubernetes liveness probe
- /ready: Kubernetes readiness probe
- /metrics: Prometheus-format metrics
"""

from kube_fleet_mcp.http.health import health_payload, ready_payload
from kube_fleet_mcp.http.metrics import (
    MetricsCollector,
    make_metrics_endpoint,
)

__all__ = [
    "health_payload",
    "ready_payload",
    "MetricsCollector",
    "make_metrics_endpoint",
]
