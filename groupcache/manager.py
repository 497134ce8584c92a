"""
Grouped cache manager.

``CacheManager`` stores serialized values under ``(group, key)`` pairs on a
single node or a sharded cluster, and invalidates either one group or the
whole cache. Each manager owns one handle acquired from its topology in the
constructor and must be closed (or used as a context manager) to give the
handle back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .connection import BackendConnection
from .exceptions import (
    CacheConnectionError,
    CacheError,
    ClosedConnectionError,
    InvalidKeyError,
    ShardFanoutError,
)
from .keys import encode_key, group_pattern, split_key
from .serializer import PickleSerializer, Serializer
from .topology import Topology

logger = logging.getLogger(__name__)


class FlushScope(str, Enum):
    """Extent of a bulk invalidation."""

    ALL = "all"
    GROUP = "group"


@dataclass(frozen=True)
class FlushEvent:
    """
    Bulk invalidation request.

    ``group`` is required for GROUP scope and must be omitted for ALL.
    """

    scope: FlushScope
    group: Optional[str] = None

    def __post_init__(self):
        try:
            object.__setattr__(self, "scope", FlushScope(self.scope))
        except ValueError:
            raise InvalidKeyError(f"Unknown flush scope: {self.scope!r}") from None
        if self.scope is FlushScope.GROUP and not self.group:
            raise InvalidKeyError("A GROUP flush needs a group")
        if self.scope is FlushScope.ALL and self.group is not None:
            raise InvalidKeyError("An ALL flush does not take a group")

    @classmethod
    def all(cls) -> "FlushEvent":
        return cls(FlushScope.ALL)

    @classmethod
    def for_group(cls, group: str) -> "FlushEvent":
        return cls(FlushScope.GROUP, group)


@dataclass
class CacheStats:
    """Cache operation statistics."""

    hit_count: int = 0
    miss_count: int = 0
    set_count: int = 0
    delete_count: int = 0
    flush_count: int = 0
    error_count: int = 0
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def hit_ratio(self) -> float:
        """Calculate cache hit ratio."""
        total_reads = self.hit_count + self.miss_count
        return self.hit_count / total_reads if total_reads > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "set_count": self.set_count,
            "delete_count": self.delete_count,
            "flush_count": self.flush_count,
            "error_count": self.error_count,
            "hit_ratio": self.hit_ratio,
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
        }


class CacheManager:
    """
    Grouped cache over a pooled single node or sharded cluster.

    Features:
    - get/put/delete of serialized values under (group, key)
    - group flush (list matching keys, then delete them) on every shard
    - full flush of every shard's database
    - per-manager statistics

    A manager is meant to be used by one thread at a time. Operations after
    ``close()`` raise ``ClosedConnectionError``.
    """

    def __init__(self, topology: Topology, serializer: Optional[Serializer] = None):
        """
        Initialize the manager and acquire its connection handle.

        Args:
            topology: Resolved topology to acquire the handle from
            serializer: Value serializer, pickle by default

        Raises:
            CacheConnectionError: If no connection could be opened
            PoolExhaustedError: If the pool had no connection available in time
        """
        self.topology = topology
        self.serializer = serializer or PickleSerializer()
        self.stats = CacheStats()
        self._handle = topology.acquire()
        self._closed = False
        self._broken = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedConnectionError("CacheManager has been closed")

    def _run(self, operation: Callable[[], Any]) -> Any:
        self._check_open()
        try:
            return operation()
        except CacheConnectionError:
            self._broken = True
            self.stats.error_count += 1
            raise

    def get(self, group: str, key: str, default: Any = None) -> Any:
        """
        Get a cached value.

        Args:
            group: Cache group
            key: Key within the group
            default: Value returned when no entry exists

        Returns:
            The deserialized value, or ``default`` if absent

        Raises:
            SerializationError: If the stored bytes cannot be deserialized
        """
        jkey = encode_key(group, key)
        data = self._run(lambda: self._handle.get(jkey))
        if data is None:
            self.stats.miss_count += 1
            logger.debug(f"Cache miss for {group}:{key}")
            return default
        self.stats.hit_count += 1
        return self.serializer.unserialize(data)

    def put(self, group: str, key: str, value: Any) -> None:
        """
        Store a value, overwriting any existing entry. No TTL is set.

        Raises:
            SerializationError: If the value cannot be serialized
        """
        jkey = encode_key(group, key)
        data = self.serializer.serialize(value)
        self._run(lambda: self._handle.set(jkey, data))
        self.stats.set_count += 1
        logger.debug(f"Cached {group}:{key} ({len(data)} bytes)")

    def exists(self, group: str, key: str) -> bool:
        """Check if an entry exists."""
        jkey = encode_key(group, key)
        return self._run(lambda: self._handle.exists(jkey))

    def delete(self, group: str, key: str) -> bool:
        """
        Remove one entry. Deleting an absent entry is a no-op.

        Returns:
            True if an entry was removed
        """
        jkey = encode_key(group, key)
        removed = self._run(lambda: self._handle.delete(jkey))
        self.stats.delete_count += 1
        return bool(removed)

    def group_keys(self, group: str) -> List[str]:
        """
        List the keys currently stored in a group, across every shard.

        Raises:
            ShardFanoutError: If listing failed on any shard
        """
        pattern = group_pattern(group)
        found = self._fan_out("KEYS", lambda shard: shard.keys(pattern))
        return sorted(split_key(raw.decode("utf-8", errors="replace"))[1] for keys in found for raw in keys)

    def flush(self, event: FlushEvent) -> int:
        """
        Apply a bulk invalidation to every shard.

        ALL clears the whole database on every shard, including entries that
        other applications keep in the same database. GROUP lists the
        group's keys on each shard and deletes them in one call; keys written
        between the two steps may survive.

        Args:
            event: Flush scope and, for GROUP scope, the group

        Returns:
            Number of keys deleted by a GROUP flush; 0 for ALL

        Raises:
            ShardFanoutError: After every shard was attempted, if any failed
        """
        self._check_open()
        self.stats.flush_count += 1
        if event.scope is FlushScope.ALL:
            self._fan_out("FLUSHDB", lambda shard: shard.flushdb())
            logger.info(f"Flushed all entries on {len(self.topology.endpoints)} shard(s)")
            return 0

        pattern = group_pattern(event.group)
        deleted = sum(self._fan_out("FLUSH GROUP", lambda shard: self._delete_matching(shard, pattern)))
        logger.info(f"Flushed group {event.group!r}: {deleted} key(s) deleted")
        return deleted

    def flush_all(self) -> None:
        self.flush(FlushEvent.all())

    def flush_group(self, group: str) -> int:
        return self.flush(FlushEvent.for_group(group))

    @staticmethod
    def _delete_matching(shard: BackendConnection, pattern: str) -> int:
        keys = shard.keys(pattern)
        if not keys:
            return 0
        return shard.delete(*keys)

    def _fan_out(self, operation: str, action: Callable[[BackendConnection], Any]) -> List[Any]:
        self._check_open()
        results = []
        failures: Dict[str, Exception] = {}
        for shard in self._handle.shards():
            try:
                results.append(action(shard))
            except CacheError as e:
                logger.error(f"{operation} failed on shard {shard.name}: {e}")
                failures[shard.name] = e
                if isinstance(e, CacheConnectionError):
                    self._broken = True
        if failures:
            self.stats.error_count += len(failures)
            raise ShardFanoutError(operation, failures) from next(iter(failures.values()))
        return results

    def close(self) -> None:
        """Return the handle to the topology. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        handle, self._handle = self._handle, None
        self.topology.release(handle, broken=self._broken)

    def __enter__(self) -> "CacheManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "connected"
        return f"CacheManager({self.topology!r}, {state})"
