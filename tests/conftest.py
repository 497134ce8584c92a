"""
Shared fixtures for the grouped cache tests.

``valkey.Valkey`` is replaced by ``FakeValkey``, an in-memory client whose
keyspace is shared by every connection to the same host and port, so the
tests need no running server.
"""

import re
import threading
from typing import Dict, List, Optional, Tuple

import pytest
import valkey
from valkey.exceptions import ConnectionError

from groupcache import CacheConfig, PoolConfig, Topology


def glob_to_regex(pattern: str) -> str:
    """Translate a backend glob pattern (with backslash escapes) to a regex."""
    out = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if char == "*":
            out.append(".*")
        elif char == "?":
            out.append(".")
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(char))
            else:
                out.append(pattern[i:end + 1])
                i = end
        else:
            out.append(re.escape(char))
        i += 1
    return "^" + "".join(out) + "$"


class FakeServer:
    """Keyspace of one fake node."""

    def __init__(self):
        self.data: Dict[bytes, bytes] = {}
        self.down = False
        self.fail_keys = False
        self.clients: List["FakeValkey"] = []
        self.lock = threading.Lock()


class FakeValkey:
    """In-memory stand-in for ``valkey.Valkey``."""

    servers: Dict[Tuple[str, int], FakeServer] = {}

    def __init__(self, host: str = "localhost", port: int = 6379, **kwargs):
        self.host = host
        self.port = port
        self.kwargs = kwargs
        self.server = FakeValkey.servers.setdefault((host, port), FakeServer())
        # Like the real client, a single-connection client connects eagerly.
        if kwargs.get("single_connection_client") and self.server.down:
            raise ConnectionError(f"Error 111 connecting to {host}:{port}. Connection refused.")
        self.closed = False
        self.server.clients.append(self)

    @staticmethod
    def _bytes(value) -> bytes:
        return value if isinstance(value, bytes) else str(value).encode("utf-8")

    def _check(self) -> None:
        if self.closed or self.server.down:
            raise ConnectionError(f"Error connecting to {self.host}:{self.port}")

    def ping(self) -> bool:
        self._check()
        return True

    def get(self, key) -> Optional[bytes]:
        self._check()
        return self.server.data.get(self._bytes(key))

    def set(self, key, value) -> bool:
        self._check()
        with self.server.lock:
            self.server.data[self._bytes(key)] = self._bytes(value)
        return True

    def exists(self, *keys) -> int:
        self._check()
        return sum(1 for key in keys if self._bytes(key) in self.server.data)

    def delete(self, *keys) -> int:
        self._check()
        removed = 0
        with self.server.lock:
            for key in keys:
                if self.server.data.pop(self._bytes(key), None) is not None:
                    removed += 1
        return removed

    def keys(self, pattern="*") -> List[bytes]:
        self._check()
        if self.server.fail_keys:
            raise ConnectionError("Connection reset by peer")
        regex = re.compile(glob_to_regex(pattern), re.DOTALL)
        return [key for key in list(self.server.data) if regex.match(key.decode("utf-8", errors="surrogateescape"))]

    def flushdb(self) -> bool:
        self._check()
        with self.server.lock:
            self.server.data.clear()
        return True

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def fake_servers(monkeypatch):
    """Replace the Valkey client with the in-memory fake for every test."""
    servers: Dict[Tuple[str, int], FakeServer] = {}
    monkeypatch.setattr(FakeValkey, "servers", servers)
    monkeypatch.setattr(valkey, "Valkey", FakeValkey)
    return servers


def server(servers, host: str, port: int = 6379) -> FakeServer:
    """Get (or create) the fake node at host:port."""
    return servers.setdefault((host, port), FakeServer())


@pytest.fixture
def single_topology():
    """Pooled topology over one node."""
    topology = Topology.from_config(CacheConfig(host="cache-a:6379", pool=PoolConfig(max_total=4)))
    yield topology
    topology.close()


@pytest.fixture
def sharded_topology():
    """Pooled topology over two shards."""
    topology = Topology.from_config(
        CacheConfig(shard_host="shard-a:6379,shard-b:6380", pool=PoolConfig(max_total=4))
    )
    yield topology
    topology.close()


class StubConnection:
    """Connection object for pool tests."""

    def __init__(self, serial: int):
        self.serial = serial
        self.healthy = True
        self.destroyed = False

    def __repr__(self):
        return f"StubConnection({self.serial})"


class StubFactory:
    """Pool factory producing numbered stub connections."""

    def __init__(self):
        self.created: List[StubConnection] = []
        self.destroyed: List[StubConnection] = []
        self.fail_create = False
        self.create_healthy = True

    def create(self) -> StubConnection:
        if self.fail_create:
            raise OSError("connection refused")
        conn = StubConnection(len(self.created) + 1)
        conn.healthy = self.create_healthy
        self.created.append(conn)
        return conn

    def validate(self, conn: StubConnection) -> bool:
        return conn.healthy

    def destroy(self, conn: StubConnection) -> None:
        conn.destroyed = True
        self.destroyed.append(conn)


@pytest.fixture
def stub_factory():
    return StubFactory()
