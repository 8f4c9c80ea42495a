"""
Tunnel Manager.

Opens port-forward tunnels from a loopback port into a pod and keeps an
explicit table of live tunnels keyed by (cluster, namespace, pod, local
port), so stop requests signal exactly the tunnel they name.
"""

import asyncio
from functools import partial
from typing import Any, Optional

from kubernetes.client.exceptions import ApiException

from kube_fleet_mcp.cluster.registry import ClusterRegistry
from kube_fleet_mcp.errors import (
    AlreadyRegistered,
    ClusterUnreachable,
    InvalidConfig,
    LocalPortInUse,
    NotFound,
    TunnelTimeout,
    UpgradeFailed,
)
from kube_fleet_mcp.tunnel.forwarder import close_session, open_session, pipe, session_alive
from kube_fleet_mcp.tunnel.types import Tunnel, TunnelKey, TunnelState
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_READY_TIMEOUT = 10.0


class TunnelManager:
    """
    Starts, tracks and stops port-forward tunnels.

    The table is guarded by a lock that is never held across network I/O.
    Concurrent starts to the same pod on different local ports are not
    deduplicated; a second start on a live key is rejected.

    A Ready tunnel whose upstream is gone (its warm session closed, or a
    later dial rejected by the API server) moves to FAILED and leaves the
    table, releasing its local port.
    """

    def __init__(
        self,
        registry: ClusterRegistry,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        bind_address: str = "127.0.0.1",
        url_host: str = "localhost",
        session_factory=open_session,
    ):
        """
        Initialize manager.

        Args:
            registry: Connection registry supplying cluster credentials
            ready_timeout: Seconds to wait for a tunnel to become ready
            bind_address: Local address to listen on
            url_host: Host name used in returned URLs
            session_factory: Blocking session dialer (swapped out in tests)
        """
        self._registry = registry
        self._ready_timeout = ready_timeout
        self._bind_address = bind_address
        self._url_host = url_host
        self._session_factory = session_factory
        self._tunnels: dict[TunnelKey, Tunnel] = {}
        self._lock = asyncio.Lock()
        self._failing: set[asyncio.Task] = set()

    async def start(
        self,
        cluster_id: str,
        namespace: str,
        pod_name: str,
        local_port: Optional[int] = None,
        remote_port: Optional[int] = None,
    ) -> Tunnel:
        """
        Start a tunnel and wait for it to become ready.

        Args:
            cluster_id: Registered cluster
            namespace: Pod namespace
            pod_name: Pod name
            local_port: Loopback port (defaults to remote_port, 0 = any free port)
            remote_port: Port inside the pod

        Returns:
            The READY tunnel (or STOPPED if stop was requested while starting)

        Raises:
            NotFound: Unknown cluster
            InvalidConfig: Missing or invalid ports
            LocalPortInUse: Local port cannot be bound
            UpgradeFailed: Port-forward upgrade rejected (no pod, no permission)
            ClusterUnreachable: Cluster could not be reached
            TunnelTimeout: Not ready within the timeout
        """
        if not namespace or not pod_name:
            raise InvalidConfig(
                "namespace and pod_name are required",
                cluster_id=cluster_id,
                operation="port-forward",
            )
        remote_port = _validate_port(remote_port, "remote_port", cluster_id, allow_zero=False)
        if local_port is None:
            local_port = remote_port
        local_port = _validate_port(local_port, "local_port", cluster_id, allow_zero=True)

        connection = await self._registry.get(cluster_id)

        tunnel = Tunnel(
            cluster_id=cluster_id,
            namespace=namespace,
            pod_name=pod_name,
            local_port=local_port,
            remote_port=remote_port,
            url_host=self._url_host,
        )
        tunnel.configuration = connection.configuration

        try:
            tunnel.server = await asyncio.start_server(
                partial(self._handle_connection, tunnel),
                host=self._bind_address,
                port=local_port,
            )
        except OSError as e:
            raise LocalPortInUse(
                f"cannot listen on {self._bind_address}:{local_port}: {e}",
                cluster_id=cluster_id,
                operation="port-forward",
                cause=e,
            ) from e
        tunnel.local_port = tunnel.server.sockets[0].getsockname()[1]

        async with self._lock:
            if tunnel.key in self._tunnels:
                await self._shutdown(tunnel, TunnelState.FAILED, "duplicate key")
                raise AlreadyRegistered(
                    f"tunnel to {namespace}/{pod_name} on port {tunnel.local_port} already exists",
                    cluster_id=cluster_id,
                    operation="port-forward",
                )
            self._tunnels[tunnel.key] = tunnel

        logger.info(
            f"Starting tunnel {cluster_id}:{namespace}/{pod_name} "
            f"{tunnel.local_port}->{remote_port}"
        )

        try:
            await self._wait_ready(tunnel)
        except BaseException:
            async with self._lock:
                self._tunnels.pop(tunnel.key, None)
            raise

        return tunnel

    async def stop(
        self,
        cluster_id: str,
        namespace: str,
        pod_name: str,
        local_port: Optional[int] = None,
    ) -> list[Tunnel]:
        """
        Stop the tunnel(s) matching the key.

        Without local_port every tunnel to that pod is stopped.

        Raises:
            NotFound: No matching tunnel
        """
        async with self._lock:
            matches = [
                key
                for key in self._tunnels
                if key.cluster_id == cluster_id
                and key.namespace == namespace
                and key.pod_name == pod_name
                and (local_port is None or key.local_port == local_port)
            ]
            stopped = [self._tunnels.pop(key) for key in matches]

        if not stopped:
            port = f" on port {local_port}" if local_port is not None else ""
            raise NotFound(
                f"no tunnel to {namespace}/{pod_name}{port}",
                cluster_id=cluster_id,
                operation="port-forward stop",
            )

        for tunnel in stopped:
            await self._shutdown(tunnel, TunnelState.STOPPED)
        return stopped

    async def stop_cluster(self, cluster_id: str) -> int:
        """Stop every tunnel of one cluster (used on deregistration)."""
        async with self._lock:
            keys = [key for key in self._tunnels if key.cluster_id == cluster_id]
            stopped = [self._tunnels.pop(key) for key in keys]

        for tunnel in stopped:
            await self._shutdown(tunnel, TunnelState.STOPPED)
        return len(stopped)

    async def stop_all(self) -> int:
        """Stop every tunnel (process shutdown)."""
        async with self._lock:
            stopped = list(self._tunnels.values())
            self._tunnels.clear()

        for tunnel in stopped:
            await self._shutdown(tunnel, TunnelState.STOPPED)
        if stopped:
            logger.info(f"Stopped {len(stopped)} tunnel(s)")
        return len(stopped)

    async def list_tunnels(self, cluster_id: Optional[str] = None) -> list[Tunnel]:
        """Snapshot of live tunnels, optionally for one cluster."""
        async with self._lock:
            return [
                tunnel
                for tunnel in self._tunnels.values()
                if cluster_id is None or tunnel.cluster_id == cluster_id
            ]

    def __len__(self) -> int:
        return len(self._tunnels)

    async def _wait_ready(self, tunnel: Tunnel) -> None:
        dial = asyncio.ensure_future(
            asyncio.to_thread(
                self._session_factory,
                tunnel.configuration,
                tunnel.namespace,
                tunnel.pod_name,
                tunnel.remote_port,
            )
        )
        stop_requested = asyncio.ensure_future(tunnel.stopped.wait())

        try:
            done, _ = await asyncio.wait(
                {dial, stop_requested},
                timeout=self._ready_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            dial.add_done_callback(_discard_late_session)
            await self._shutdown(tunnel, TunnelState.FAILED, "cancelled while starting")
            raise
        finally:
            stop_requested.cancel()

        if dial not in done:
            # The dial may still complete later; make sure it does not leak.
            dial.add_done_callback(_discard_late_session)
            if tunnel.stopped.is_set():
                return
            await self._shutdown(
                tunnel, TunnelState.FAILED, f"not ready after {self._ready_timeout}s"
            )
            raise TunnelTimeout(
                f"tunnel to {tunnel.namespace}/{tunnel.pod_name} not ready "
                f"after {self._ready_timeout}s",
                timeout=self._ready_timeout,
                cluster_id=tunnel.cluster_id,
                operation="port-forward",
            )

        try:
            session = dial.result()
        except ApiException as e:
            await self._shutdown(tunnel, TunnelState.FAILED, str(e.reason))
            raise _map_dial_error(tunnel, e) from e
        except Exception as e:
            await self._shutdown(tunnel, TunnelState.FAILED, str(e))
            raise ClusterUnreachable(
                f"port-forward dial failed: {e}",
                cluster_id=tunnel.cluster_id,
                operation="port-forward",
                cause=e,
            ) from e

        if tunnel.stopped.is_set():
            close_session(session)
            return

        tunnel.warm_session = session
        tunnel.state = TunnelState.READY
        tunnel.ready.set()
        logger.info(f"Tunnel ready at {tunnel.url} -> {tunnel.namespace}/{tunnel.pod_name}:{tunnel.remote_port}")

    async def _handle_connection(
        self,
        tunnel: Tunnel,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Serve one accepted local connection over its own session."""
        task = asyncio.current_task()
        tunnel.tasks.add(task)
        session = None
        try:
            if not tunnel.ready.is_set():
                await _wait_either(tunnel.ready, tunnel.stopped)
            if tunnel.stopped.is_set():
                writer.close()
                return

            session = tunnel.take_warm_session()
            if session is not None and not session_alive(session):
                close_session(session)
                session = None
                self._fail_in_background(tunnel, "upstream connection closed")
                writer.close()
                return
            if session is None:
                session = await self._dial_for_connection(tunnel)
            tunnel.sessions.add(session)
            tunnel.connections += 1
            await pipe(reader, writer, session, tunnel.remote_port, tunnel.stopped)
        except asyncio.CancelledError:
            writer.close()
        except Exception as e:
            logger.warning(f"Tunnel {tunnel.url} connection failed: {e}")
            writer.close()
        finally:
            if session is not None:
                tunnel.sessions.discard(session)
                close_session(session)
            tunnel.tasks.discard(task)

    async def _dial_for_connection(self, tunnel: Tunnel) -> Any:
        """Dial a fresh session; a rejected upgrade fails the whole tunnel."""
        try:
            return await asyncio.to_thread(
                self._session_factory,
                tunnel.configuration,
                tunnel.namespace,
                tunnel.pod_name,
                tunnel.remote_port,
            )
        except ApiException as e:
            error = _map_dial_error(tunnel, e)
            if isinstance(error, UpgradeFailed):
                self._fail_in_background(tunnel, str(e.reason))
            raise error from e

    def _fail_in_background(self, tunnel: Tunnel, reason: str) -> None:
        # Connection handlers cannot await _shutdown: wait_closed waits for them.
        if tunnel.stopped.is_set():
            return
        task = asyncio.ensure_future(self._fail(tunnel, reason))
        self._failing.add(task)
        task.add_done_callback(self._failing.discard)

    async def _fail(self, tunnel: Tunnel, reason: str) -> None:
        """Drop a Ready tunnel whose upstream is gone."""
        async with self._lock:
            if self._tunnels.get(tunnel.key) is not tunnel:
                return
            del self._tunnels[tunnel.key]

        logger.warning(
            f"Tunnel {tunnel.cluster_id}:{tunnel.namespace}/{tunnel.pod_name} "
            f"lost its upstream: {reason}"
        )
        await self._shutdown(tunnel, TunnelState.FAILED, reason)

    async def _shutdown(
        self, tunnel: Tunnel, state: TunnelState, error: Optional[str] = None
    ) -> None:
        """Signal stop, release the listener and close every session."""
        tunnel.stopped.set()
        tunnel.state = state
        if error:
            tunnel.error = error

        if tunnel.server is not None:
            tunnel.server.close()

        current = asyncio.current_task()
        for task in list(tunnel.tasks):
            if task is not current:
                task.cancel()

        close_session(tunnel.take_warm_session())
        for session in list(tunnel.sessions):
            close_session(session)
        tunnel.sessions.clear()

        if tunnel.server is not None:
            await tunnel.server.wait_closed()

        logger.info(
            f"Tunnel {tunnel.cluster_id}:{tunnel.namespace}/{tunnel.pod_name} "
            f"port {tunnel.local_port} {state.value}"
            + (f" ({error})" if error else "")
        )


def _validate_port(
    port: Optional[int], name: str, cluster_id: str, allow_zero: bool
) -> int:
    low = 0 if allow_zero else 1
    if not isinstance(port, int) or isinstance(port, bool) or not low <= port <= 65535:
        raise InvalidConfig(
            f"{name} must be an integer between {low} and 65535, got {port!r}",
            cluster_id=cluster_id,
            operation="port-forward",
        )
    return port


def _map_dial_error(tunnel: Tunnel, error: ApiException) -> Exception:
    reason = str(error.reason or "")
    status = error.status or 0
    if "Handshake status" in reason or 400 <= status < 500:
        return UpgradeFailed(
            f"port-forward to {tunnel.namespace}/{tunnel.pod_name} rejected: {reason}",
            cluster_id=tunnel.cluster_id,
            operation="port-forward",
            cause=error,
        )
    return ClusterUnreachable(
        f"port-forward dial failed: {reason}",
        cluster_id=tunnel.cluster_id,
        operation="port-forward",
        cause=error,
    )


def _discard_late_session(dial: "asyncio.Future[Any]") -> None:
    if dial.cancelled() or dial.exception() is not None:
        return
    close_session(dial.result())


async def _wait_either(first: asyncio.Event, second: asyncio.Event) -> None:
    waiters = {
        asyncio.ensure_future(first.wait()),
        asyncio.ensure_future(second.wait()),
    }
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
