"""Shared fixtures: an in-process server, loopback and scripted transports."""

import sys
from collections import deque
from typing import List, Optional

import pytest

from productmcp.catalog.products import ProductTable
from productmcp.catalog.tools import ToolCatalog
from productmcp.protocol.client import ProtocolClient
from productmcp.protocol.transport import LineTransport, TransportClosedError
from productmcp.server.runtime import ToolServer
from productmcp.validation.config import CatalogConfig


class LoopbackTransport(LineTransport):
    """Hands each sent line straight to an in-process ToolServer."""

    def __init__(self, server: ToolServer):
        self.server = server
        self.sent: List[str] = []
        self._replies = deque()
        self.closed = False

    def send(self, line: str) -> None:
        if self.closed:
            raise TransportClosedError("closed")
        self.sent.append(line)
        self._replies.append(self.server.handle_line(line).to_line())

    def receive_line(self, timeout: Optional[float] = None) -> Optional[str]:
        return self._replies.popleft() if self._replies else None

    def terminate(self, timeout: Optional[float] = 5.0) -> Optional[int]:
        self.closed = True
        return 0


class ScriptedTransport(LineTransport):
    """Replies with canned lines; an exception in the script is raised instead."""

    def __init__(self, replies):
        self.sent: List[str] = []
        self._replies = deque(replies)
        self.terminated = False

    def send(self, line: str) -> None:
        self.sent.append(line)

    def receive_line(self, timeout: Optional[float] = None) -> Optional[str]:
        if not self._replies:
            return None
        reply = self._replies.popleft()
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def terminate(self, timeout: Optional[float] = 5.0) -> Optional[int]:
        self.terminated = True
        return 0


@pytest.fixture
def catalog_config():
    return CatalogConfig()


@pytest.fixture
def products(catalog_config):
    return ProductTable.from_config(catalog_config)


@pytest.fixture
def catalog(products, catalog_config):
    return ToolCatalog.build(products, catalog_config)


@pytest.fixture
def tool_server(catalog):
    return ToolServer(catalog)


@pytest.fixture
def loopback(tool_server):
    return LoopbackTransport(tool_server)


@pytest.fixture
def loopback_client(loopback):
    return ProtocolClient(loopback)


@pytest.fixture
def scripted():
    """Factory: ``scripted([line, ...])`` -> (client, transport)."""

    def _make(replies, timeout=None):
        transport = ScriptedTransport(replies)
        return ProtocolClient(transport, timeout=timeout), transport

    return _make


@pytest.fixture
def server_command():
    """Command that starts the real tool server from this checkout."""
    return [sys.executable, "-m", "productmcp.server"]
