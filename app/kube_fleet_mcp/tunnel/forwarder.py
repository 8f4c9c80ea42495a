"""
Port-forward sessions and byte copying.

A session is one upgraded websocket stream to the pod's portforward
subresource. The kubernetes client exposes it as a socket pair; this
module dials sessions and pumps bytes between that socket and a local
asyncio connection.
"""

import asyncio
import socket
from typing import Any

from kubernetes import client
from kubernetes.stream import portforward

from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

BUFFER_SIZE = 64 * 1024


def open_session(
    configuration: client.Configuration,
    namespace: str,
    pod_name: str,
    remote_port: int,
) -> Any:
    """
    Dial a port-forward session (blocking).

    A dedicated ApiClient is used because the stream helper rebinds
    call_api on the client it is given; the registry's shared handle
    must never be mutated.

    Raises:
        ApiException: status 0 with the handshake failure as reason
    """
    api_client = client.ApiClient(configuration)
    try:
        core = client.CoreV1Api(api_client)
        return portforward(
            core.connect_get_namespaced_pod_portforward,
            pod_name,
            namespace,
            ports=str(remote_port),
        )
    finally:
        api_client.close()


def close_session(session: Any) -> None:
    """Close a session's local socket; the proxy thread then closes the stream."""
    if session is None:
        return
    try:
        session.close()
    except OSError as e:
        logger.debug(f"Error closing port-forward session: {e}")


def session_alive(session: Any) -> bool:
    """Check that the session's websocket to the pod is still open."""
    return bool(session.connected)


async def pipe(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    session: Any,
    remote_port: int,
    stop: asyncio.Event,
) -> None:
    """
    Copy bytes both ways between a local connection and a session.

    Returns when either side closes or the stop signal fires.
    """
    pf_socket = session.socket(remote_port)
    sock = socket.fromfd(pf_socket.fileno(), pf_socket.family, pf_socket.type)
    remote_reader, remote_writer = await asyncio.open_connection(sock=sock)

    upstream = asyncio.ensure_future(_copy(reader, remote_writer))
    downstream = asyncio.ensure_future(_copy(remote_reader, writer))
    stopping = asyncio.ensure_future(stop.wait())

    try:
        await asyncio.wait(
            {upstream, downstream, stopping},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (upstream, downstream, stopping):
            task.cancel()
        await asyncio.gather(upstream, downstream, stopping, return_exceptions=True)
        for stream_writer in (remote_writer, writer):
            stream_writer.close()
        close_session(session)

    error = session.error(remote_port)
    if error:
        logger.warning(f"Port-forward to remote port {remote_port} reported: {error}")


async def _copy(source: asyncio.StreamReader, destination: asyncio.StreamWriter) -> None:
    while True:
        data = await source.read(BUFFER_SIZE)
        if not data:
            break
        destination.write(data)
        await destination.drain()
