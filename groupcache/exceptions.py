"""
Exceptions raised by the grouped cache.

Every failure surfaces as a ``CacheError`` subclass at the operation
boundary. Backend client errors are chained as ``__cause__``.
"""

from typing import Dict, Optional


class CacheError(Exception):
    """Base exception for all cache errors."""
    pass


class ConfigurationError(CacheError):
    """Raised when endpoint or pool configuration is missing or malformed."""
    pass


class CacheConnectionError(CacheError):
    """Raised when a backend connection cannot be opened or is lost."""

    def __init__(self, message: str, endpoint: Optional[str] = None):
        self.endpoint = endpoint
        if endpoint:
            message = f"{message} ({endpoint})"
        super().__init__(message)


class PoolExhaustedError(CacheError):
    """Raised when no connection could be borrowed from the pool in time."""
    pass


class SerializationError(CacheError):
    """Raised when a value cannot be serialized or deserialized."""
    pass


class ClosedConnectionError(CacheError):
    """Raised when an operation is attempted after the owner released it."""
    pass


class InvalidKeyError(CacheError, ValueError):
    """Raised for an empty group/key or one containing the key separator."""
    pass


class ShardFanoutError(CacheError):
    """
    Raised when an operation applied to every shard failed on some of them.

    All shards are attempted before this is raised; ``failures`` maps the
    shard name to the exception it raised.
    """

    def __init__(self, operation: str, failures: Dict[str, Exception]):
        self.operation = operation
        self.failures = dict(failures)
        shards = ", ".join(sorted(self.failures))
        super().__init__(
            f"{operation} failed on {len(self.failures)} shard(s): {shards}"
        )
