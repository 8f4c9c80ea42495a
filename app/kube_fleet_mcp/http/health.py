"""
Health and readiness payloads for Kubernetes probes.
"""

from typing import Any

from kube_fleet_mcp import __version__

SERVICE_NAME = "kube_fleet_mcp"


def health_payload() -> dict[str, Any]:
    """Liveness: the process is up and serving."""
    return {
        "status": "healthy",
        "version": __version__,
        "service": SERVICE_NAME,
    }


def ready_payload(clusters: int, tunnels: int) -> tuple[dict[str, Any], int]:
    """
    Readiness: the server can take requests.

    Cluster and tunnel counts are informational; a server with no
    registered clusters is still ready to accept registrations.

    Returns:
        (payload, HTTP status code)
    """
    checks = {
        "server": True,
        "clusters_registered": clusters > 0,
    }
    is_ready = checks["server"]
    return (
        {
            "status": "ready" if is_ready else "not_ready",
            "checks": checks,
            "clusters": clusters,
            "tunnels": tunnels,
        },
        200 if is_ready else 503,
    )
