"""
Bounded connection pool with borrow/release semantics.

The pool hands out at most ``max_total`` connections created by a
``ConnectionFactory``, recycles returned connections through an idle queue
(LIFO or FIFO), optionally probes connections on borrow, on return and
while idle, and evicts connections that have been idle too long.
"""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Generic, List, Optional, Protocol, TypeVar

from .config import PoolConfig
from .exceptions import (
    CacheConnectionError,
    CacheError,
    ClosedConnectionError,
    PoolExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionFactory(Protocol[T]):
    """Creates, probes and destroys the connections a pool manages."""

    def create(self) -> T:
        ...

    def validate(self, conn: T) -> bool:
        ...

    def destroy(self, conn: T) -> None:
        ...


@dataclass
class _IdleEntry(Generic[T]):
    conn: T
    idle_since: float


class ConnectionPool(Generic[T]):
    """
    Thread-safe pool of reusable connections.

    All bookkeeping (idle queue, active set, created count) is guarded by a
    single condition variable. Connections are created, probed and
    destroyed outside the lock.
    """

    def __init__(self, factory: ConnectionFactory, config: Optional[PoolConfig] = None, name: str = "pool"):
        """
        Initialize the pool. No connection is opened until first borrow.

        Args:
            factory: Connection factory
            config: Pool tuning parameters
            name: Label used in log messages
        """
        self.factory = factory
        self.config = config or PoolConfig()
        self.name = name

        self._cond = threading.Condition()
        self._idle: Deque[_IdleEntry] = deque()
        self._active: Dict[int, T] = {}
        self._total = 0
        self._closed = False

        self._evictor: Optional[threading.Thread] = None
        self._stop_evictor = threading.Event()
        if self.config.time_between_eviction_runs_millis > 0:
            self._start_evictor()

        logger.info(
            f"Connection pool {self.name} created "
            f"(max_total={self.config.max_total}, lifo={self.config.lifo})"
        )

    @property
    def num_idle(self) -> int:
        with self._cond:
            return len(self._idle)

    @property
    def num_active(self) -> int:
        with self._cond:
            return len(self._active)

    @property
    def closed(self) -> bool:
        return self._closed

    def borrow(self) -> T:
        """
        Borrow a connection, creating one if the pool has capacity.

        Returns:
            A connection owned exclusively by the caller until released

        Raises:
            PoolExhaustedError: If the pool is at capacity and either blocking
                is disabled or ``max_wait_millis`` elapsed, or if a connection
                failed its borrow probe twice
            CacheConnectionError: If a new connection could not be opened
            ClosedConnectionError: If the pool has been closed
        """
        for _ in range(2):
            conn, created = self._take()
            if not self.config.test_on_borrow or self.factory.validate(conn):
                return conn

            logger.warning(f"Pool {self.name}: connection failed borrow probe, discarding")
            self._discard(conn)
            if created:
                break

        raise PoolExhaustedError(f"Pool {self.name}: unable to validate a connection on borrow")

    def _take(self):
        deadline = None
        if self.config.block_when_exhausted and self.config.max_wait_millis >= 0:
            deadline = time.monotonic() + self.config.max_wait_millis / 1000.0

        with self._cond:
            while True:
                if self._closed:
                    raise ClosedConnectionError(f"Pool {self.name} is closed")

                if self._idle:
                    entry = self._idle.pop() if self.config.lifo else self._idle.popleft()
                    self._active[id(entry.conn)] = entry.conn
                    return entry.conn, False

                if self._total < self.config.max_total:
                    self._total += 1
                    break

                if not self.config.block_when_exhausted:
                    raise PoolExhaustedError(
                        f"Pool {self.name} exhausted ({self.config.max_total} connections in use)"
                    )

                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise PoolExhaustedError(
                            f"Pool {self.name}: timed out after "
                            f"{self.config.max_wait_millis}ms waiting for a connection"
                        )
                    self._cond.wait(remaining)

        try:
            conn = self.factory.create()
        except Exception as e:
            with self._cond:
                self._total -= 1
                self._cond.notify()
            if isinstance(e, CacheError):
                raise
            raise CacheConnectionError(f"Pool {self.name}: could not open connection: {e}") from e

        with self._cond:
            self._active[id(conn)] = conn
        return conn, True

    def release(self, conn: T) -> None:
        """
        Return a borrowed connection to the idle queue.

        The connection is destroyed instead when it fails the return probe,
        when the idle queue is full, or when the pool is closed.
        """
        self._forget(conn)

        if self.config.test_on_return and not self.factory.validate(conn):
            logger.warning(f"Pool {self.name}: connection failed return probe, discarding")
            self._destroy(conn)
            return

        with self._cond:
            if not self._closed and len(self._idle) < self.config.max_idle:
                self._idle.append(_IdleEntry(conn, time.monotonic()))
                self._cond.notify()
                return

        self._destroy(conn)

    def invalidate(self, conn: T) -> None:
        """Destroy a borrowed connection that is known to be broken."""
        self._forget(conn)
        self._destroy(conn)

    def _forget(self, conn: T) -> None:
        with self._cond:
            if self._active.pop(id(conn), None) is None:
                raise ValueError(f"Connection {conn!r} is not borrowed from pool {self.name}")

    def _discard(self, conn: T) -> None:
        with self._cond:
            self._active.pop(id(conn), None)
        self._destroy(conn)

    def _destroy(self, conn: T) -> None:
        try:
            self.factory.destroy(conn)
        except CacheError as e:
            logger.warning(f"Pool {self.name}: error destroying connection: {e}")
        finally:
            with self._cond:
                self._total -= 1
                self._cond.notify()

    def _tests_per_run(self, idle_count: int) -> int:
        n = self.config.num_tests_per_eviction_run
        if n >= 0:
            return min(n, idle_count)
        return int(math.ceil(idle_count / float(abs(n))))

    def _should_evict(self, idle_time_ms: float, idle_count: int) -> bool:
        soft = self.config.soft_min_evictable_idle_time_millis
        hard = self.config.min_evictable_idle_time_millis
        if soft > 0 and idle_time_ms > soft and idle_count > self.config.min_idle:
            return True
        return hard > 0 and idle_time_ms > hard

    def evict(self) -> int:
        """
        Run one eviction pass over the oldest idle connections.

        Returns:
            Number of connections destroyed
        """
        now = time.monotonic()
        with self._cond:
            if self._closed:
                return 0
            idle_count = len(self._idle)
            candidates: List[_IdleEntry] = [
                self._idle.popleft() for _ in range(self._tests_per_run(idle_count))
            ]

        survivors: List[_IdleEntry] = []
        evicted = 0
        for entry in candidates:
            idle_time_ms = (now - entry.idle_since) * 1000.0
            if self._should_evict(idle_time_ms, idle_count):
                self._destroy(entry.conn)
                idle_count -= 1
                evicted += 1
            elif self.config.test_while_idle and not self.factory.validate(entry.conn):
                logger.warning(f"Pool {self.name}: idle connection failed probe, discarding")
                self._destroy(entry.conn)
                idle_count -= 1
                evicted += 1
            else:
                survivors.append(entry)

        with self._cond:
            if self._closed:
                pending = survivors
            else:
                # Releases during the pass may have refilled the idle queue.
                room = max(self.config.max_idle - len(self._idle), 0)
                split = len(survivors) - min(room, len(survivors))
                pending = survivors[:split]
                self._idle.extendleft(reversed(survivors[split:]))
        for entry in pending:
            self._destroy(entry.conn)

        if evicted:
            logger.debug(f"Pool {self.name}: evicted {evicted} idle connection(s)")
        return evicted

    def _start_evictor(self) -> None:
        interval = self.config.time_between_eviction_runs_millis / 1000.0

        def run():
            while not self._stop_evictor.wait(interval):
                try:
                    self.evict()
                except CacheError as e:
                    logger.warning(f"Pool {self.name}: eviction run failed: {e}")

        self._evictor = threading.Thread(target=run, name=f"{self.name}-evictor", daemon=True)
        self._evictor.start()

    def close(self) -> None:
        """Destroy idle connections and refuse further borrows.

        Connections still borrowed are destroyed when they are released.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._cond.notify_all()

        self._stop_evictor.set()
        if self._evictor is not None and self._evictor is not threading.current_thread():
            self._evictor.join()

        for entry in idle:
            self._destroy(entry.conn)
        logger.info(f"Connection pool {self.name} closed")

    def __repr__(self) -> str:
        return (
            f"ConnectionPool({self.name}, active={self.num_active}, "
            f"idle={self.num_idle}, max_total={self.config.max_total})"
        )
