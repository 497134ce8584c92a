"""
Cache topology: which backend node(s) to use and how connections are pooled.

A ``Topology`` is resolved once from configuration and is immutable
afterwards. It is either SINGLE (one node) or SHARDED (several nodes behind
a consistent-hash ring), and either pooled or, for the built-in fallback,
unpooled. Handles are acquired from and released to the topology.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Iterator, List, Optional, Tuple, Union

from .config import DEFAULT_ENDPOINT, DEFAULT_TIMEOUT_MILLIS, CacheConfig, Endpoint, load_config
from .connection import BackendConnection
from .exceptions import ConfigurationError
from .pool import ConnectionPool
from .sharding import ShardedConnection

if TYPE_CHECKING:
    from .manager import CacheManager
    from .serializer import Serializer

logger = logging.getLogger(__name__)

Handle = Union[BackendConnection, ShardedConnection]


class TopologyKind(str, Enum):
    """Shape of the backend behind a topology."""

    SINGLE = "single"
    SHARDED = "sharded"


class NodeConnectionFactory:
    """Pool factory for connections to one node."""

    def __init__(self, endpoint: Endpoint, timeout: int = DEFAULT_TIMEOUT_MILLIS):
        self.endpoint = endpoint
        self.timeout = timeout

    def create(self) -> BackendConnection:
        return BackendConnection(self.endpoint, self.timeout).open()

    def validate(self, conn: BackendConnection) -> bool:
        return conn.ping()

    def destroy(self, conn: BackendConnection) -> None:
        conn.close()


class ShardedConnectionFactory:
    """Pool factory for shard-aware handles spanning every shard."""

    def __init__(self, endpoints: List[Endpoint], timeout: int = DEFAULT_TIMEOUT_MILLIS):
        self.endpoints = list(endpoints)
        self.timeout = timeout

    def create(self) -> ShardedConnection:
        return ShardedConnection.for_endpoints(self.endpoints, self.timeout)

    def validate(self, conn: ShardedConnection) -> bool:
        return conn.ping()

    def destroy(self, conn: ShardedConnection) -> None:
        conn.close()


class Topology:
    """
    Resolved backend topology.

    Attributes:
        kind: SINGLE or SHARDED
        endpoints: Node addresses, in shard order
        timeout: Connection timeout in milliseconds
        pool: Connection pool, or None for direct unpooled connections
    """

    def __init__(
        self,
        kind: TopologyKind,
        endpoints: List[Endpoint],
        timeout: int = DEFAULT_TIMEOUT_MILLIS,
        pool: Optional[ConnectionPool] = None,
    ):
        if not endpoints:
            raise ConfigurationError("Topology needs at least one endpoint")
        if kind is TopologyKind.SINGLE and len(endpoints) != 1:
            raise ConfigurationError("Single topology takes exactly one endpoint")
        self.kind = kind
        self.endpoints: Tuple[Endpoint, ...] = tuple(endpoints)
        self.timeout = timeout
        self.pool = pool
        if kind is TopologyKind.SINGLE:
            self._factory = NodeConnectionFactory(self.endpoints[0], timeout)
        else:
            self._factory = ShardedConnectionFactory(list(self.endpoints), timeout)

    @classmethod
    def from_config(cls, config: CacheConfig) -> "Topology":
        """
        Build a pooled topology from configuration.

        Raises:
            ConfigurationError: If no usable endpoint is configured
        """
        endpoints = config.endpoints()
        kind = TopologyKind.SHARDED if config.is_sharded else TopologyKind.SINGLE
        topology = cls(kind, endpoints, config.timeout)
        topology.pool = ConnectionPool(
            topology._factory,
            config.pool,
            name=f"{kind.value}:{','.join(str(e) for e in endpoints)}",
        )
        return topology

    @classmethod
    def default(cls) -> "Topology":
        """Unpooled single connection to the default endpoint."""
        return cls(TopologyKind.SINGLE, [DEFAULT_ENDPOINT], DEFAULT_TIMEOUT_MILLIS, pool=None)

    @property
    def pooled(self) -> bool:
        return self.pool is not None

    def acquire(self) -> Handle:
        """
        Acquire a handle for exclusive use.

        Raises:
            CacheConnectionError: If a connection could not be opened
            PoolExhaustedError: If the pool had no connection available in time
        """
        if self.pool is not None:
            return self.pool.borrow()
        return self._factory.create()

    def release(self, handle: Handle, broken: bool = False) -> None:
        """
        Give back a handle obtained from ``acquire``.

        Args:
            handle: The handle to release
            broken: Destroy the handle instead of recycling it
        """
        if self.pool is None:
            handle.close()
        elif broken:
            self.pool.invalidate(handle)
        else:
            self.pool.release(handle)

    @contextmanager
    def cache_manager(self, serializer: Optional["Serializer"] = None) -> Iterator["CacheManager"]:
        """
        Scoped cache manager, released on every exit path.

        Usage:
            with topology.cache_manager() as cache:
                cache.put("users", "42", user)
        """
        from .manager import CacheManager

        manager = CacheManager(self, serializer=serializer)
        try:
            yield manager
        finally:
            manager.close()

    def close(self) -> None:
        if self.pool is not None:
            self.pool.close()

    def describe(self) -> dict:
        """Summary of the topology for diagnostics."""
        info = {
            "kind": self.kind.value,
            "endpoints": [str(e) for e in self.endpoints],
            "timeout_ms": self.timeout,
            "pooled": self.pooled,
        }
        if self.pool is not None:
            info.update({
                "max_total": self.pool.config.max_total,
                "active": self.pool.num_active,
                "idle": self.pool.num_idle,
            })
        return info

    def __repr__(self) -> str:
        endpoints = ",".join(str(e) for e in self.endpoints)
        return f"Topology({self.kind.value}, [{endpoints}], pooled={self.pooled})"


def resolve_topology(config: Optional[CacheConfig]) -> Topology:
    """
    Resolve configuration into a topology, never failing.

    Sharded configuration takes precedence over a single host. Absent or
    malformed configuration is logged and replaced by an unpooled
    connection to ``127.0.0.1:6379``.

    Args:
        config: Configuration, or None when none was found

    Returns:
        Topology: The resolved topology
    """
    if config is None:
        logger.warning(f"No cache configuration found, using unpooled {DEFAULT_ENDPOINT}")
        return Topology.default()

    try:
        topology = Topology.from_config(config)
    except ConfigurationError as e:
        logger.warning(f"Invalid cache configuration ({e}), using unpooled {DEFAULT_ENDPOINT}")
        return Topology.default()

    logger.info(f"Resolved cache topology {topology!r} from {config}")
    return topology


def load_topology(env_file: Optional[str] = None) -> Topology:
    """
    Load configuration from a dotenv file or the environment and resolve it.

    Malformed values fall back to the default topology like absent ones.
    """
    try:
        config = load_config(env_file)
    except ConfigurationError as e:
        logger.warning(f"Invalid cache configuration ({e}), using unpooled {DEFAULT_ENDPOINT}")
        return Topology.default()
    return resolve_topology(config)
