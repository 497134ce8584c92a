"""
Grouped cache over a pooled Valkey node or a consistent-hash sharded cluster.

This package contains the configuration and topology resolution, the
connection pool, shard routing, and the group-aware cache manager.
"""

from .config import CacheConfig, Endpoint, PoolConfig, load_config
from .exceptions import (
    CacheError,
    ConfigurationError,
    CacheConnectionError,
    PoolExhaustedError,
    SerializationError,
    ClosedConnectionError,
    InvalidKeyError,
    ShardFanoutError,
)
from .keys import SEP, namespaced_key, group_pattern
from .serializer import Serializer, PickleSerializer, JsonSerializer
from .connection import BackendConnection
from .pool import ConnectionPool
from .sharding import HashRing, ShardedConnection
from .topology import Topology, TopologyKind, resolve_topology, load_topology
from .manager import CacheManager, CacheStats, FlushEvent, FlushScope

__all__ = [
    # Configuration
    "CacheConfig",
    "Endpoint",
    "PoolConfig",
    "load_config",

    # Errors
    "CacheError",
    "ConfigurationError",
    "CacheConnectionError",
    "PoolExhaustedError",
    "SerializationError",
    "ClosedConnectionError",
    "InvalidKeyError",
    "ShardFanoutError",

    # Keys and values
    "SEP",
    "namespaced_key",
    "group_pattern",
    "Serializer",
    "PickleSerializer",
    "JsonSerializer",

    # Connections and topology
    "BackendConnection",
    "ConnectionPool",
    "HashRing",
    "ShardedConnection",
    "Topology",
    "TopologyKind",
    "resolve_topology",
    "load_topology",

    # Manager
    "CacheManager",
    "CacheStats",
    "FlushEvent",
    "FlushScope",
]
