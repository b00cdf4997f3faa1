import logging
import socket
import threading
from typing import List

import pytest

from broadside.client import RemoteClient
from broadside.io_utils import Connection
from broadside.protocol import Message
from broadside.server import RelayServer

# Suppress INFO & DEBUG logs from relay threads during tests
logging.basicConfig(level=logging.WARNING)


class FakeConn:
    """Stands in for a Connection: records every message sent to it."""

    def __init__(self, name: str = "fake", *, alive: bool = True) -> None:
        self.name = name
        self.alive = alive
        self.sent: List[Message] = []

    def send(self, msg: Message) -> bool:
        if not self.alive:
            return False
        self.sent.append(msg)
        return True

    def types(self) -> List[str]:
        return [m.type_name for m in self.sent]


class TestClient:
    """Raw framed-protocol client for integration tests."""

    __test__ = False  # not a test class

    def __init__(self, sock: socket.socket, key: bytes | None = None) -> None:
        self.sock = sock
        self.conn = Connection(sock, key=key, name="test-client")

    def send(self, msg: Message) -> None:
        assert self.conn.send(msg)

    def recv(self, timeout: float = 2.0) -> Message:
        self.sock.settimeout(timeout)
        return self.conn.recv()

    def close(self) -> None:
        self.conn.close()


@pytest.fixture
def fake_conn_factory():
    return FakeConn


@pytest.fixture
def relay_server():
    """A RelayServer on an ephemeral port, accepting in a background thread."""
    server = RelayServer("127.0.0.1", 0, idle_timeout=0)
    server.bind()
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    yield server
    server.shutdown()
    t.join(timeout=2.0)


@pytest.fixture
def client_factory(relay_server):
    """Factory returning raw TestClients connected to ``relay_server``."""
    clients: List[TestClient] = []

    def _factory() -> TestClient:
        sock = socket.create_connection((relay_server.host, relay_server.port), timeout=2.0)
        c = TestClient(sock)
        clients.append(c)
        return c

    yield _factory
    for c in clients:
        c.close()


@pytest.fixture
def remote_factory(relay_server):
    """Factory returning RemoteClients (session + receiver thread) on ``relay_server``."""
    clients: List[RemoteClient] = []

    def _factory() -> RemoteClient:
        c = RemoteClient.connect(relay_server.host, relay_server.port)
        clients.append(c)
        return c

    yield _factory
    for c in clients:
        c.close()
