"""
Cache configuration and endpoint parsing.

This module provides the configuration classes for the cache topology:
the endpoint(s) to connect to, the socket timeout, and the connection
pool tuning parameters. Configuration can be built from a mapping of
option names, from environment variables, or from a dotenv file.
"""

import os
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field

from dotenv import dotenv_values

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6379
DEFAULT_TIMEOUT_MILLIS = 2000

ENV_PREFIX = "GROUPCACHE_"


@dataclass(frozen=True)
class Endpoint:
    """A single backend node address."""

    host: str
    port: int

    @classmethod
    def parse(cls, value: str) -> "Endpoint":
        """
        Parse a ``host:port`` string.

        Raises:
            ConfigurationError: If the value is not a valid ``host:port`` pair
        """
        host, sep, port = value.strip().rpartition(":")
        if not sep or not host:
            raise ConfigurationError(f"Endpoint must be 'host:port', got {value!r}")
        try:
            port_number = int(port)
        except ValueError:
            raise ConfigurationError(f"Invalid port in endpoint {value!r}") from None
        if not 0 < port_number < 65536:
            raise ConfigurationError(f"Port out of range in endpoint {value!r}")
        return cls(host=host, port=port_number)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


DEFAULT_ENDPOINT = Endpoint(DEFAULT_HOST, DEFAULT_PORT)


def parse_shard_hosts(value: str) -> List[Endpoint]:
    """
    Parse a comma-separated list of ``host:port`` pairs.

    Raises:
        ConfigurationError: If the list is empty or any entry is malformed
    """
    entries = [entry for entry in value.split(",") if entry.strip()]
    if not entries:
        raise ConfigurationError("Shard host list is empty")
    return [Endpoint.parse(entry) for entry in entries]


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    return int(str(value).strip())


@dataclass(frozen=True)
class PoolConfig:
    """
    Connection pool tuning parameters.

    Durations are in milliseconds. A negative ``max_wait_millis`` waits
    forever; a non-positive eviction interval disables the evictor thread;
    non-positive idle times disable the corresponding eviction rule.
    """

    lifo: bool = True
    max_total: int = 8
    max_idle: int = 8
    min_idle: int = 0
    max_wait_millis: int = -1
    min_evictable_idle_time_millis: int = 1800000
    soft_min_evictable_idle_time_millis: int = -1
    num_tests_per_eviction_run: int = 3
    test_on_borrow: bool = False
    test_on_return: bool = False
    test_while_idle: bool = False
    time_between_eviction_runs_millis: int = -1
    block_when_exhausted: bool = True

    def __post_init__(self):
        if self.max_total <= 0:
            raise ConfigurationError(f"pool.maxTotal must be positive, got {self.max_total}")
        if self.max_idle < 0 or self.min_idle < 0:
            raise ConfigurationError("pool.maxIdle and pool.minIdle must not be negative")


# option name -> (PoolConfig field, parser)
_POOL_OPTIONS: Dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "pool.lifo": ("lifo", _parse_bool),
    "pool.maxTotal": ("max_total", _parse_int),
    "pool.maxIdle": ("max_idle", _parse_int),
    "pool.minIdle": ("min_idle", _parse_int),
    "pool.maxWaitMillis": ("max_wait_millis", _parse_int),
    "pool.minEvictableIdleTimeMillis": ("min_evictable_idle_time_millis", _parse_int),
    "pool.softMinEvictableIdleTimeMillis": ("soft_min_evictable_idle_time_millis", _parse_int),
    "pool.numTestsPerEvictionRun": ("num_tests_per_eviction_run", _parse_int),
    "pool.testOnBorrow": ("test_on_borrow", _parse_bool),
    "pool.testOnReturn": ("test_on_return", _parse_bool),
    "pool.testWhileIdle": ("test_while_idle", _parse_bool),
    "pool.timeBetweenEvictionRunsMillis": ("time_between_eviction_runs_millis", _parse_int),
    "pool.blockWhenExhausted": ("block_when_exhausted", _parse_bool),
}

_TOP_LEVEL_OPTIONS = ("host", "shardHost", "timeout")

OPTION_NAMES = _TOP_LEVEL_OPTIONS + tuple(_POOL_OPTIONS)


def env_var_for(option: str) -> str:
    """
    Return the environment variable name for a configuration option.

    Example:
        env_var_for("pool.maxWaitMillis")
        # Returns: "GROUPCACHE_POOL_MAX_WAIT_MILLIS"
    """
    words = []
    for part in option.split("."):
        word = ""
        for char in part:
            if char.isupper() and word:
                words.append(word)
                word = ""
            word += char.upper()
        words.append(word)
    return ENV_PREFIX + "_".join(words)


@dataclass(frozen=True)
class CacheConfig:
    """
    Configuration for the cache topology.

    ``shard_host`` takes precedence over ``host`` when both are set.
    """

    host: Optional[str] = None
    shard_host: Optional[str] = None
    timeout: int = DEFAULT_TIMEOUT_MILLIS
    pool: PoolConfig = field(default_factory=PoolConfig)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "CacheConfig":
        """
        Create CacheConfig from a mapping of option names.

        Args:
            options: Mapping using the option names ``host``, ``shardHost``,
                ``timeout`` and ``pool.*``. Unknown names are ignored.

        Returns:
            CacheConfig: Configuration instance

        Raises:
            ConfigurationError: If any recognized option has a malformed value
        """
        pool_kwargs: Dict[str, Any] = {}
        for option, (attr, parser) in _POOL_OPTIONS.items():
            value = options.get(option)
            if value is None or value == "":
                continue
            try:
                pool_kwargs[attr] = parser(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {option}: {e}") from e

        timeout = DEFAULT_TIMEOUT_MILLIS
        if options.get("timeout") not in (None, ""):
            try:
                timeout = _parse_int(options["timeout"])
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for timeout: {e}") from e

        return cls(
            host=options.get("host") or None,
            shard_host=options.get("shardHost") or None,
            timeout=timeout,
            pool=PoolConfig(**pool_kwargs),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CacheConfig":
        """
        Create CacheConfig from ``GROUPCACHE_*`` environment variables.

        Returns:
            CacheConfig: Configuration instance with values from environment
        """
        return cls.from_mapping(_options_from_env(os.environ if environ is None else environ))

    def endpoints(self) -> List[Endpoint]:
        """
        Resolve the configured endpoint list.

        Returns:
            List[Endpoint]: One endpoint for a single node, several for shards

        Raises:
            ConfigurationError: If neither host nor shard host is usable
        """
        if self.shard_host:
            return parse_shard_hosts(self.shard_host)
        if self.host:
            return [Endpoint.parse(self.host)]
        raise ConfigurationError("Could not find 'host' or 'shardHost' in configuration")

    @property
    def is_sharded(self) -> bool:
        return bool(self.shard_host)

    def __str__(self) -> str:
        target = f"shards={self.shard_host}" if self.shard_host else f"host={self.host}"
        return (
            f"CacheConfig({target}, timeout={self.timeout}ms, "
            f"max_total={self.pool.max_total}, lifo={self.pool.lifo})"
        )


def _options_from_env(environ: Mapping[str, Optional[str]]) -> Dict[str, str]:
    options = {}
    for option in OPTION_NAMES:
        value = environ.get(env_var_for(option))
        if value is not None:
            options[option] = value
    return options


def load_config(env_file: Optional[str] = None) -> Optional[CacheConfig]:
    """
    Load cache configuration from a dotenv file or the process environment.

    Args:
        env_file: Path of a dotenv file; the process environment is used
            when omitted

    Returns:
        Optional[CacheConfig]: Configuration, or None if no option is set

    Raises:
        ConfigurationError: If a recognized option has a malformed value
    """
    if env_file is not None:
        if not os.path.exists(env_file):
            logger.warning(f"Configuration file {env_file} not found")
            return None
        source = dotenv_values(env_file)
    else:
        source = os.environ

    options = _options_from_env(source)
    if not options:
        return None
    return CacheConfig.from_mapping(options)
