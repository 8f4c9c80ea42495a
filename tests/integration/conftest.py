"""
Integration test fixtures.

One server process per test module; the config dir preloads no clusters.
"""

from typing import Generator

import httpx
import pytest

from live_server import MCPSession, ServerProcess


@pytest.fixture(scope="module")
def server() -> Generator[ServerProcess, None, None]:
    server = ServerProcess()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def client(server: ServerProcess) -> Generator[httpx.Client, None, None]:
    with httpx.Client(base_url=server.url, timeout=15.0) as http:
        yield http


@pytest.fixture
def mcp(client: httpx.Client) -> MCPSession:
    session = MCPSession(client)
    session.initialize()
    return session
