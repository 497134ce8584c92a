"""
A single connection to one Valkey node.

``BackendConnection`` wraps a single-connection ``valkey.Valkey`` client and
exposes the byte-level operations the cache needs. Client exceptions are
translated into the cache error taxonomy at this boundary.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

import valkey
from valkey.exceptions import ConnectionError, TimeoutError, ValkeyError

from .config import DEFAULT_TIMEOUT_MILLIS, Endpoint
from .exceptions import CacheConnectionError, CacheError, ClosedConnectionError

logger = logging.getLogger(__name__)


class BackendConnection:
    """
    One logical connection to a backend node.

    The connection is opened by ``open()`` (a PING round-trip), used by a
    single owner at a time, and released by ``close()``.
    """

    def __init__(self, endpoint: Endpoint, timeout: int = DEFAULT_TIMEOUT_MILLIS):
        """
        Args:
            endpoint: Node address
            timeout: Connect and socket timeout in milliseconds
        """
        self.endpoint = endpoint
        self.timeout = timeout
        seconds = timeout / 1000.0 if timeout > 0 else None
        # A single-connection client connects in its constructor.
        try:
            self._client: Optional[valkey.Valkey] = valkey.Valkey(
                host=endpoint.host,
                port=endpoint.port,
                socket_timeout=seconds,
                socket_connect_timeout=seconds,
                single_connection_client=True,
            )
        except (ConnectionError, TimeoutError, OSError) as e:
            raise CacheConnectionError(f"CONNECT failed: {e}", self.name) from e
        except ValkeyError as e:
            raise CacheError(f"CONNECT failed on {self.name}: {e}") from e

    @property
    def name(self) -> str:
        return str(self.endpoint)

    @property
    def closed(self) -> bool:
        return self._client is None

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[valkey.Valkey]:
        if self._client is None:
            raise ClosedConnectionError(f"Connection to {self.name} is closed")
        try:
            yield self._client
        except (ConnectionError, TimeoutError, OSError) as e:
            raise CacheConnectionError(f"{operation} failed: {e}", self.name) from e
        except ValkeyError as e:
            raise CacheError(f"{operation} failed on {self.name}: {e}") from e

    def open(self) -> "BackendConnection":
        """
        Establish the connection.

        Raises:
            CacheConnectionError: If the node cannot be reached
        """
        try:
            with self._translate_errors("CONNECT") as client:
                client.ping()
        except CacheError:
            self.close()
            raise
        logger.debug(f"Opened connection to {self.name}")
        return self

    def ping(self) -> bool:
        """Liveness probe: True if the node answers PING."""
        if self._client is None:
            return False
        try:
            return bool(self._client.ping())
        except (ValkeyError, OSError) as e:
            logger.debug(f"PING to {self.name} failed: {e}")
            return False

    def get(self, key: bytes) -> Optional[bytes]:
        with self._translate_errors("GET") as client:
            return client.get(key)

    def set(self, key: bytes, value: bytes) -> None:
        with self._translate_errors("SET") as client:
            client.set(key, value)

    def exists(self, key: bytes) -> bool:
        with self._translate_errors("EXISTS") as client:
            return bool(client.exists(key))

    def delete(self, *keys: bytes) -> int:
        """Delete keys; returns the number of keys that existed."""
        if not keys:
            return 0
        with self._translate_errors("DEL") as client:
            return int(client.delete(*keys))

    def keys(self, pattern: str) -> List[bytes]:
        """List every key on this node matching a glob pattern."""
        with self._translate_errors("KEYS") as client:
            return list(client.keys(pattern))

    def flushdb(self) -> None:
        with self._translate_errors("FLUSHDB") as client:
            client.flushdb()

    # A single node is its own only shard.
    def route(self, key: bytes) -> "BackendConnection":
        return self

    def shards(self) -> List["BackendConnection"]:
        return [self]

    def close(self) -> None:
        """Close the underlying socket. Safe to call more than once."""
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            client.close()
        except (ValkeyError, OSError) as e:
            logger.warning(f"Error closing connection to {self.name}: {e}")
        logger.debug(f"Closed connection to {self.name}")

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"BackendConnection({self.name}, {state})"
