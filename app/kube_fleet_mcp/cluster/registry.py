"""
Connection Registry.

Concurrent map from cluster id to an authenticated Connection. The map
is guarded by a single reader/writer lock for its whole lifetime:
lookups share the lock, register/deregister/close_all take it
exclusively, and no network I/O is ever performed while it is held.

The registry is an explicit object owned by the server's composition
root; there is no module-level instance.
"""

import asyncio
from typing import Callable, Optional

from kubernetes import client

from kube_fleet_mcp.cluster.credentials import resolve_credentials
from kube_fleet_mcp.cluster.types import (
    ClusterConfig,
    ClusterInfo,
    ClusterStatus,
    Connection,
    ResolvedCredentials,
)
from kube_fleet_mcp.errors import AlreadyRegistered, InvalidConfig, NotFound
from kube_fleet_mcp.utils.locks import ReadWriteLock
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

CredentialResolver = Callable[[ClusterConfig, Optional[str]], ResolvedCredentials]


class ClusterRegistry:
    """
    Registry of live cluster connections.

    Per cluster id the lifecycle is Unregistered -> Registered ->
    Unregistered. A failed registration leaves nothing behind.
    """

    def __init__(
        self,
        probe_timeout: float = 5.0,
        resolver: CredentialResolver = resolve_credentials,
    ):
        """
        Initialize registry.

        Args:
            probe_timeout: Seconds allowed for a reachability probe
            resolver: Credential resolver (swapped out in tests)
        """
        self._connections: dict[str, Connection] = {}
        self._lock = ReadWriteLock()
        self._probe_timeout = probe_timeout
        self._resolver = resolver

    async def register(self, cluster_id: str, config: ClusterConfig) -> Connection:
        """
        Register a cluster.

        Credentials are resolved outside the lock; the entry becomes
        visible only once its handle is fully built.

        Raises:
            InvalidConfig: Empty id or no credential source
            AlreadyRegistered: Id is already live
            MalformedCredential / NoAmbientIdentity: From the resolver
        """
        if not cluster_id:
            raise InvalidConfig("cluster_id is required", operation="register")
        if not config.has_source:
            raise InvalidConfig(
                "must provide either kubeconfig_path, kubeconfig_data, or set in_cluster=true",
                cluster_id=cluster_id,
                operation="register",
            )

        async with self._lock.read():
            if cluster_id in self._connections:
                raise AlreadyRegistered(
                    "cluster is already registered",
                    cluster_id=cluster_id,
                    operation="register",
                )

        resolving = asyncio.ensure_future(
            asyncio.to_thread(self._resolver, config, cluster_id)
        )
        try:
            credentials = await asyncio.shield(resolving)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; close what it builds.
            resolving.add_done_callback(_discard_late_credentials)
            raise

        connection = Connection(
            cluster_id=cluster_id,
            config=config,
            api_client=credentials.api_client,
            configuration=credentials.configuration,
        )

        async with self._lock.write():
            if cluster_id not in self._connections:
                self._connections[cluster_id] = connection
                logger.info(
                    f"Registered cluster {cluster_id} "
                    f"(in_cluster={config.in_cluster}, context={config.context or 'current'})"
                )
                return connection

        # Lost a concurrent race for the same id; drop our handle.
        connection.close()
        raise AlreadyRegistered(
            "cluster is already registered",
            cluster_id=cluster_id,
            operation="register",
        )

    async def get(self, cluster_id: str) -> Connection:
        """
        Get the Connection for a cluster and mark it used.

        Raises:
            NotFound: Unknown cluster id
        """
        async with self._lock.read():
            connection = self._connections.get(cluster_id)
            if connection is None:
                raise NotFound(
                    "cluster is not registered",
                    cluster_id=cluster_id,
                    operation="lookup",
                )
            connection.touch()
            return connection

    async def lookup(self, cluster_id: str) -> client.ApiClient:
        """Get the shared ApiClient for a cluster."""
        connection = await self.get(cluster_id)
        return connection.api_client

    async def deregister(self, cluster_id: str) -> bool:
        """
        Remove a cluster. Idempotent.

        Returns:
            True if an entry was removed
        """
        async with self._lock.write():
            connection = self._connections.pop(cluster_id, None)

        if connection is None:
            return False

        connection.close()
        logger.info(f"Deregistered cluster {cluster_id}")
        return True

    async def probe(self, cluster_id: str) -> ClusterStatus:
        """
        Classify a cluster as reachable or not.

        Never raises for reachability failures and never removes the entry.

        Raises:
            NotFound: Unknown cluster id
        """
        connection = await self.get(cluster_id)
        status, _ = await self._probe_connection(connection)
        return status

    async def status(self, cluster_id: str) -> ClusterInfo:
        """Probe a cluster and describe it."""
        connection = await self.get(cluster_id)
        status, error = await self._probe_connection(connection)
        return self._info(connection, status, error)

    async def list_all(self) -> list[ClusterInfo]:
        """
        Snapshot every registered cluster with a fresh probe.

        Probes run concurrently and outside the lock, so the cost is
        bounded by the slowest cluster rather than the sum.
        """
        async with self._lock.read():
            snapshot = list(self._connections.values())

        results = await asyncio.gather(
            *(self._probe_connection(conn) for conn in snapshot)
        )

        infos = []
        for connection, (status, error) in zip(snapshot, results):
            if connection.cluster_id not in self._connections:
                # Deregistered while probing
                status, error = ClusterStatus.UNKNOWN, "deregistered during listing"
            infos.append(self._info(connection, status, error))
        return infos

    async def close_all(self) -> int:
        """
        Drain every entry (process shutdown).

        Returns:
            Number of connections closed
        """
        async with self._lock.write():
            drained = list(self._connections.values())
            self._connections.clear()

        for connection in drained:
            try:
                connection.close()
            except Exception as e:
                logger.warning(f"Error closing cluster {connection.cluster_id}: {e}")

        if drained:
            logger.info(f"Closed {len(drained)} cluster connection(s)")
        return len(drained)

    def ids(self) -> list[str]:
        """Registered cluster ids (unlocked snapshot for metrics)."""
        return list(self._connections.keys())

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, cluster_id: object) -> bool:
        return cluster_id in self._connections

    async def _probe_connection(
        self, connection: Connection
    ) -> tuple[ClusterStatus, Optional[str]]:
        core = client.CoreV1Api(connection.api_client)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    core.list_namespace,
                    limit=1,
                    _request_timeout=self._probe_timeout,
                ),
                timeout=self._probe_timeout + 1,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Probe of cluster {connection.cluster_id} timed out")
            return ClusterStatus.ERROR, f"probe timed out after {self._probe_timeout}s"
        except Exception as e:
            logger.warning(f"Probe of cluster {connection.cluster_id} failed: {e}")
            return ClusterStatus.ERROR, str(e)
        return ClusterStatus.ACTIVE, None

    @staticmethod
    def _info(
        connection: Connection, status: ClusterStatus, error: Optional[str]
    ) -> ClusterInfo:
        return ClusterInfo(
            cluster_id=connection.cluster_id,
            config=connection.config,
            status=status,
            error=error,
            created_at=connection.created_at,
            last_used=connection.last_used,
        )


def _discard_late_credentials(resolving: "asyncio.Future[ResolvedCredentials]") -> None:
    if resolving.cancelled() or resolving.exception() is not None:
        return
    resolving.result().api_client.close()
