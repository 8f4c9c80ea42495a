"""
Pydantic models for server configuration.

Configuration is an explicit object built at startup and handed to the
server's composition root; nothing reads configuration from module
globals.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ServerSettings(BaseModel):
    """Server configuration settings."""

    host: str = Field(
        default="127.0.0.1",
        description="Host to bind the server to",
    )
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port to listen on",
    )
    transport: Literal["streamable-http", "stdio"] = Field(
        default="streamable-http",
        description="Transport protocol to use",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional log file (console logging always goes to stderr)",
    )


class KubernetesSettings(BaseModel):
    """Kubernetes API client settings."""

    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Timeout for a single API request",
    )
    probe_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Timeout for a cluster reachability probe",
    )
    default_field_manager: str = Field(
        default="kube-fleet-mcp",
        min_length=1,
        description="Field manager used by server-side apply when none is given",
    )


class DiscoverySettings(BaseModel):
    """API discovery cache settings."""

    cache_ttl_seconds: float = Field(
        default=60.0,
        ge=0,
        description="How long a discovery document is reused (0 disables caching)",
    )


class TunnelSettings(BaseModel):
    """Port-forward tunnel settings."""

    ready_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="How long a tunnel may take to become ready",
    )
    bind_address: str = Field(
        default="127.0.0.1",
        description="Local address tunnels listen on",
    )
    url_host: str = Field(
        default="localhost",
        description="Host name used in returned tunnel URLs",
    )


class ClusterEntry(BaseModel):
    """A cluster registered at server startup."""

    cluster_id: str = Field(min_length=1)
    kubeconfig_path: Optional[str] = None
    kubeconfig_data: Optional[str] = None
    context: Optional[str] = None
    in_cluster: bool = False

    @model_validator(mode="after")
    def validate_source(self) -> "ClusterEntry":
        """Ensure the entry names at least one credential source."""
        if not (self.kubeconfig_path or self.kubeconfig_data or self.in_cluster):
            raise ValueError(
                f"cluster '{self.cluster_id}' needs kubeconfig_path, "
                "kubeconfig_data, or in_cluster=true"
            )
        return self


class KubeFleetConfig(BaseModel):
    """
    Main configuration container for the Kube Fleet MCP Server.

    Loaded from YAML files and environment variables, then passed to
    server components via dependency injection.
    """

    server: ServerSettings = Field(default_factory=ServerSettings)
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    tunnel: TunnelSettings = Field(default_factory=TunnelSettings)
    clusters: list[ClusterEntry] = Field(
        default_factory=list,
        description="Clusters registered at startup",
    )

    @field_validator("clusters")
    @classmethod
    def validate_unique_clusters(cls, v: list[ClusterEntry]) -> list[ClusterEntry]:
        """Ensure preloaded cluster ids are unique."""
        seen = set()
        for entry in v:
            if entry.cluster_id in seen:
                raise ValueError(f"duplicate cluster_id in clusters: {entry.cluster_id}")
            seen.add(entry.cluster_id)
        return v

    # Allow extra fields to be ignored (forward compatibility)
    model_config = ConfigDict(extra="ignore")
