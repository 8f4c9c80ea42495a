"""
Type definitions for port-forward tunnels.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple, Optional


class TunnelState(str, Enum):
    """Lifecycle of a tunnel: Starting -> Ready -> Stopped, or Starting -> Failed."""

    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"
    FAILED = "failed"


class TunnelKey(NamedTuple):
    """Identity of a live tunnel in the manager's table."""

    cluster_id: str
    namespace: str
    pod_name: str
    local_port: int


@dataclass(eq=False)
class Tunnel:
    """
    A local listener forwarding into one pod port.

    Attributes:
        cluster_id: Cluster the pod lives in
        namespace: Pod namespace
        pod_name: Pod name
        local_port: Bound loopback port
        remote_port: Port inside the pod
        url_host: Host name used in the returned URL
        state: Lifecycle state
        ready: Set once the listener is bound and the upstream stream is up
        stopped: Stop signal; always deliverable once the tunnel exists
        connections: Local connections accepted so far
        error: Failure reason for FAILED tunnels
    """

    cluster_id: str
    namespace: str
    pod_name: str
    local_port: int
    remote_port: int
    url_host: str = "localhost"
    state: TunnelState = TunnelState.STARTING
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    stopped: asyncio.Event = field(default_factory=asyncio.Event)
    created_at: datetime = field(default_factory=datetime.now)
    connections: int = 0
    error: Optional[str] = None

    # Runtime handles owned by the manager
    configuration: Any = field(default=None, repr=False)
    server: Optional[asyncio.AbstractServer] = field(default=None, repr=False)
    warm_session: Any = field(default=None, repr=False)
    sessions: set = field(default_factory=set, repr=False)
    tasks: set = field(default_factory=set, repr=False)

    @property
    def key(self) -> TunnelKey:
        return TunnelKey(self.cluster_id, self.namespace, self.pod_name, self.local_port)

    @property
    def url(self) -> str:
        return f"http://{self.url_host}:{self.local_port}"

    def take_warm_session(self) -> Any:
        """Hand the pre-dialed session to the first connection."""
        session, self.warm_session = self.warm_session, None
        return session

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "cluster_id": self.cluster_id,
            "namespace": self.namespace,
            "pod_name": self.pod_name,
            "local_port": self.local_port,
            "remote_port": self.remote_port,
            "url": self.url,
            "status": self.state.value,
            "connections": self.connections,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }
