"""
FastMCP Server Setup.

This module is the composition root: it builds the registry, resolver,
apply engine and tunnel manager from configuration, and wires them into
the MCP server instance.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from kube_fleet_mcp import __version__
from kube_fleet_mcp.cluster import ClusterConfig, ClusterRegistry
from kube_fleet_mcp.config import KubeFleetConfig
from kube_fleet_mcp.errors import KubeFleetError
from kube_fleet_mcp.http import (
    MetricsCollector,
    health_payload,
    make_metrics_endpoint,
    ready_payload,
)
from kube_fleet_mcp.manifest import ApplyEngine, DiscoveryResolver
from kube_fleet_mcp.middleware import ToolCallMiddleware
from kube_fleet_mcp.tools import (
    register_cluster_tools,
    register_manifest_tools,
    register_tunnel_tools,
)
from kube_fleet_mcp.tunnel import TunnelManager
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

SERVER_NAME = "kube_fleet_mcp"

INSTRUCTIONS = """\
Manage several Kubernetes clusters by id. Register a cluster first with
k8s_cluster_register, then apply manifests with k8s_apply_yaml or open
tunnels to pods with k8s_port_forward. Errors start with their kind in
brackets, e.g. [ClusterUnreachable], to tell retryable failures from
credential or manifest problems.
"""


@dataclass
class ServerBundle:
    """Bundle containing server and related components."""

    server: FastMCP
    registry: ClusterRegistry
    resolver: DiscoveryResolver
    engine: ApplyEngine
    tunnels: TunnelManager
    metrics: MetricsCollector


def create_server(config: KubeFleetConfig) -> ServerBundle:
    """
    Create and configure the MCP server.

    Args:
        config: Server configuration

    Returns:
        ServerBundle containing the FastMCP instance and its components
    """
    registry = ClusterRegistry(probe_timeout=config.kubernetes.probe_timeout_seconds)
    resolver = DiscoveryResolver(
        cache_ttl=config.discovery.cache_ttl_seconds,
        request_timeout=config.kubernetes.request_timeout_seconds,
    )
    engine = ApplyEngine(
        registry,
        resolver,
        request_timeout=config.kubernetes.request_timeout_seconds,
        default_field_manager=config.kubernetes.default_field_manager,
    )
    tunnels = TunnelManager(
        registry,
        ready_timeout=config.tunnel.ready_timeout_seconds,
        bind_address=config.tunnel.bind_address,
        url_host=config.tunnel.url_host,
    )

    metrics = MetricsCollector()
    metrics.clusters_gauge = lambda: len(registry)
    metrics.tunnels_gauge = lambda: len(tunnels)

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[dict]:
        """
        Server lifespan manager.

        Registers configured clusters at startup and releases every
        tunnel and cluster connection at shutdown.
        """
        logger.info(f"Kube Fleet MCP Server v{__version__} starting...")
        await _preload_clusters(registry, config)

        yield {
            "config": config,
            "metrics": metrics,
            "registry": registry,
            "tunnels": tunnels,
        }

        logger.info("Kube Fleet MCP Server shutting down...")
        await tunnels.stop_all()
        await registry.close_all()
        resolver.invalidate()

    mcp = FastMCP(
        name=SERVER_NAME,
        instructions=INSTRUCTIONS,
        lifespan=lifespan,
    )

    _register_middleware(mcp, config, metrics)
    _register_builtin_tools(mcp)
    register_cluster_tools(mcp, registry, resolver, tunnels)
    register_manifest_tools(mcp, engine, metrics)
    register_tunnel_tools(mcp, tunnels)
    _register_http_routes(mcp, metrics, registry, tunnels)

    return ServerBundle(
        server=mcp,
        registry=registry,
        resolver=resolver,
        engine=engine,
        tunnels=tunnels,
        metrics=metrics,
    )


async def _preload_clusters(registry: ClusterRegistry, config: KubeFleetConfig) -> None:
    """Register clusters listed in configuration; failures are logged, not fatal."""
    for entry in config.clusters:
        cluster_config = ClusterConfig.from_dict(entry.model_dump())
        try:
            await registry.register(entry.cluster_id, cluster_config)
        except KubeFleetError as e:
            logger.error(f"Skipping configured cluster: {e}")


def _register_http_routes(
    mcp: FastMCP,
    metrics: MetricsCollector,
    registry: ClusterRegistry,
    tunnels: TunnelManager,
) -> None:
    """Register custom HTTP routes for health checks and metrics."""

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> JSONResponse:
        """Kubernetes liveness probe endpoint."""
        return JSONResponse(health_payload())

    @mcp.custom_route("/ready", methods=["GET"])
    async def ready_check(request: Request) -> JSONResponse:
        """Kubernetes readiness probe endpoint."""
        payload, status_code = ready_payload(len(registry), len(tunnels))
        return JSONResponse(payload, status_code=status_code)

    mcp.custom_route("/metrics", methods=["GET"])(make_metrics_endpoint(metrics))


def _register_builtin_tools(mcp: FastMCP) -> None:
    """Register always-available tools that need no cluster."""

    @mcp.tool(
        name="k8s_ping",
        annotations={
            "title": "Ping",
            "readOnlyHint": True,
            "destructiveHint": False,
        },
    )
    async def k8s_ping() -> str:
        """
        Simple ping tool to verify server is responding.

        Returns:
            str: Pong response with server version
        """
        return f"pong from {SERVER_NAME} v{__version__}"


def _register_middleware(
    mcp: FastMCP, config: KubeFleetConfig, metrics: MetricsCollector
) -> None:
    """Register MCP middleware for tool call processing."""
    verbose = config.server.log_level.lower() == "debug"
    mcp.add_middleware(ToolCallMiddleware(metrics=metrics, verbose=verbose))
    logger.debug(f"Registered ToolCallMiddleware (verbose={verbose})")
