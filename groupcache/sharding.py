"""
Consistent-hash routing over a fixed list of shards.

``HashRing`` maps keys to shard indexes using virtual nodes on a 64-bit
MD5 ring. ``ShardedConnection`` holds one ``BackendConnection`` per shard
and routes single-key operations through the ring.
"""

import bisect
import hashlib
import logging
from typing import List, Optional, Sequence, Union

from .config import DEFAULT_TIMEOUT_MILLIS, Endpoint
from .connection import BackendConnection
from .exceptions import CacheError

logger = logging.getLogger(__name__)

VIRTUAL_NODES = 160


def hash64(data: bytes) -> int:
    """First 8 bytes of the MD5 digest as an unsigned integer."""
    return int.from_bytes(hashlib.md5(data).digest()[:8], byteorder="big")


class HashRing:
    """
    Deterministic key-to-shard mapping.

    Each shard owns ``virtual_nodes`` points on the ring; a key belongs to
    the shard owning the first point at or after the key's hash, wrapping
    around at the end. The mapping depends only on the shard order and
    count, so it is stable for the lifetime of a topology.
    """

    def __init__(self, shard_count: int, virtual_nodes: int = VIRTUAL_NODES):
        if shard_count <= 0:
            raise ValueError("HashRing needs at least one shard")
        self.shard_count = shard_count
        self.virtual_nodes = virtual_nodes

        points = []
        for shard in range(shard_count):
            for node in range(virtual_nodes):
                points.append((hash64(f"SHARD-{shard}-NODE-{node}".encode()), shard))
        points.sort()
        self._hashes = [h for h, _ in points]
        self._shards = [s for _, s in points]

    def shard_for(self, key: Union[str, bytes]) -> int:
        """Index of the shard owning ``key``."""
        if isinstance(key, str):
            key = key.encode("utf-8")
        index = bisect.bisect_left(self._hashes, hash64(key))
        if index == len(self._hashes):
            index = 0
        return self._shards[index]


class ShardedConnection:
    """
    Shard-aware handle holding one connection per shard.

    Single-key operations go to the shard chosen by the ring; fan-out
    operations iterate ``shards()``.
    """

    def __init__(self, connections: Sequence[BackendConnection], ring: Optional[HashRing] = None):
        if not connections:
            raise ValueError("ShardedConnection needs at least one shard connection")
        self._connections: List[BackendConnection] = list(connections)
        self.ring = ring or HashRing(len(self._connections))

    @classmethod
    def for_endpoints(cls, endpoints: Sequence[Endpoint], timeout: int = DEFAULT_TIMEOUT_MILLIS) -> "ShardedConnection":
        """
        Open one connection per endpoint.

        Connections opened before a failure are closed again before the
        error propagates.
        """
        opened: List[BackendConnection] = []
        try:
            for endpoint in endpoints:
                opened.append(BackendConnection(endpoint, timeout).open())
        except CacheError:
            for conn in opened:
                conn.close()
            raise
        return cls(opened)

    @property
    def name(self) -> str:
        return ",".join(conn.name for conn in self._connections)

    @property
    def closed(self) -> bool:
        return all(conn.closed for conn in self._connections)

    def route(self, key: bytes) -> BackendConnection:
        return self._connections[self.ring.shard_for(key)]

    def shards(self) -> List[BackendConnection]:
        return list(self._connections)

    def ping(self) -> bool:
        """Liveness probe: True only if every shard answers."""
        return all(conn.ping() for conn in self._connections)

    def get(self, key: bytes) -> Optional[bytes]:
        return self.route(key).get(key)

    def set(self, key: bytes, value: bytes) -> None:
        self.route(key).set(key, value)

    def exists(self, key: bytes) -> bool:
        return self.route(key).exists(key)

    def delete(self, *keys: bytes) -> int:
        return sum(self.route(key).delete(key) for key in keys)

    def close(self) -> None:
        for conn in self._connections:
            conn.close()

    def __repr__(self) -> str:
        return f"ShardedConnection([{self.name}])"
