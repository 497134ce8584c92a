"""
Tests for topology resolution and handle acquisition.
"""

import logging
from unittest.mock import patch

import pytest

from groupcache import (
    BackendConnection,
    CacheConfig,
    ConfigurationError,
    Endpoint,
    ShardedConnection,
    Topology,
    TopologyKind,
    load_topology,
    resolve_topology,
)
from conftest import server


class TestResolveTopology:
    """Test turning configuration into a topology."""

    def test_absent_configuration_falls_back(self, caplog):
        """Test the fallback with no configuration."""
        with caplog.at_level(logging.WARNING, logger="groupcache.topology"):
            topology = resolve_topology(None)
        assert topology.kind is TopologyKind.SINGLE
        assert topology.endpoints == (Endpoint("127.0.0.1", 6379),)
        assert not topology.pooled
        assert "No cache configuration" in caplog.text

    def test_missing_hosts_falls_back(self, caplog):
        """Test the fallback with no host configured."""
        with caplog.at_level(logging.WARNING, logger="groupcache.topology"):
            topology = resolve_topology(CacheConfig(timeout=100))
        assert topology.endpoints == (Endpoint("127.0.0.1", 6379),)
        assert not topology.pooled
        assert "Could not find" in caplog.text

    def test_malformed_host_falls_back(self):
        """Test the fallback with a malformed host."""
        topology = resolve_topology(CacheConfig(host="no-port-here"))
        assert not topology.pooled
        assert topology.endpoints == (Endpoint("127.0.0.1", 6379),)

    def test_single_host(self):
        """Test a pooled single-node topology."""
        topology = resolve_topology(CacheConfig(host="cache-a:6390", timeout=750))
        try:
            assert topology.kind is TopologyKind.SINGLE
            assert topology.endpoints == (Endpoint("cache-a", 6390),)
            assert topology.timeout == 750
            assert topology.pooled
        finally:
            topology.close()

    def test_shards_take_precedence(self):
        """Test that shards win over a single host."""
        topology = resolve_topology(CacheConfig(host="cache-a:6379", shard_host="shard-a:1,shard-b:2"))
        try:
            assert topology.kind is TopologyKind.SHARDED
            assert topology.endpoints == (Endpoint("shard-a", 1), Endpoint("shard-b", 2))
        finally:
            topology.close()

    def test_load_topology_with_malformed_environment(self):
        """Test the fallback with a malformed environment."""
        with patch.dict('os.environ', {'GROUPCACHE_HOST': 'cache-a:6379', 'GROUPCACHE_TIMEOUT': 'x'}):
            topology = load_topology()
        assert not topology.pooled
        assert topology.endpoints == (Endpoint("127.0.0.1", 6379),)

    def test_load_topology_from_file(self, tmp_path):
        """Test a sharded topology from a dotenv file."""
        env_file = tmp_path / "cache.env"
        env_file.write_text("GROUPCACHE_SHARD_HOST=shard-a:6379,shard-b:6380\n")
        topology = load_topology(str(env_file))
        try:
            assert topology.kind is TopologyKind.SHARDED
            assert topology.pooled
        finally:
            topology.close()

    def test_single_kind_needs_one_endpoint(self):
        """Test endpoint count validation."""
        with pytest.raises(ConfigurationError):
            Topology(TopologyKind.SINGLE, [Endpoint("a", 1), Endpoint("b", 2)])


class TestAcquireRelease:
    """Test acquiring handles from pooled and unpooled topologies."""

    def test_single_handle(self, single_topology):
        """Test acquiring a single-node handle."""
        handle = single_topology.acquire()
        assert isinstance(handle, BackendConnection)
        assert single_topology.pool.num_active == 1
        single_topology.release(handle)
        assert single_topology.pool.num_idle == 1

    def test_sharded_handle(self, sharded_topology):
        """Test acquiring a sharded handle."""
        handle = sharded_topology.acquire()
        assert isinstance(handle, ShardedConnection)
        assert len(handle.shards()) == 2
        sharded_topology.release(handle)

    def test_broken_handle_is_destroyed(self, single_topology):
        """Test releasing a broken handle."""
        handle = single_topology.acquire()
        single_topology.release(handle, broken=True)
        assert handle.closed
        assert single_topology.pool.num_idle == 0

    def test_unpooled_handle_is_closed(self, fake_servers):
        """Test that an unpooled handle is closed on release."""
        topology = Topology.default()
        handle = topology.acquire()
        assert handle.name == "127.0.0.1:6379"
        topology.release(handle)
        assert handle.closed
        assert server(fake_servers, "127.0.0.1").clients[0].closed

    def test_cache_manager_scope_releases_on_error(self, single_topology):
        """Test that the scoped manager releases on error."""
        with pytest.raises(RuntimeError):
            with single_topology.cache_manager() as cache:
                assert single_topology.pool.num_active == 1
                raise RuntimeError("boom")
        assert cache.closed
        assert single_topology.pool.num_active == 0
        assert single_topology.pool.num_idle == 1

    def test_describe(self, sharded_topology):
        """Test the topology summary."""
        info = sharded_topology.describe()
        assert info["kind"] == "sharded"
        assert info["endpoints"] == ["shard-a:6379", "shard-b:6380"]
        assert info["pooled"] is True
        assert info["max_total"] == 4
