"""
Unit tests for host normalization and the host registry.

Tests cover:
- URL normalization
- Adding and replacing hosts
- Active pointer movement per strategy
- Dirty read rotation
"""

import pytest

from sdk.arango_sdk.errors import ArangoSdkError
from sdk.arango_sdk.hosts import HostRegistry, LoadBalancingStrategy, normalize_url


class TestNormalizeUrl:
    """Tests for normalize_url."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("http://a:8529", "http://a:8529/"),
            ("http://a:8529/", "http://a:8529/"),
            ("tcp://a:8529", "http://a:8529/"),
            ("ssl://a:8529", "https://a:8529/"),
            ("tls://a:8529", "https://a:8529/"),
            ("tcp+unix:///tmp/arango.sock", "http://unix:/tmp/arango.sock"),
            ("unix:///tmp/arango.sock", "http://unix:/tmp/arango.sock"),
            ("https+unix:///tmp/arango.sock", "https://unix:/tmp/arango.sock"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_url(raw) == expected


class TestHostList:
    """Tests for adding and replacing hosts."""

    def test_duplicates_dropped(self):
        """Hosts are unique by normalized URL."""
        registry = HostRegistry(["http://a:8529", "tcp://a:8529", "http://b:8529/"])

        assert registry.hosts == ("http://a:8529/", "http://b:8529/")
        assert len(registry) == 2

    def test_add_hosts_keeps_order_and_pointer(self):
        """Adding hosts appends and leaves the active host alone."""
        registry = HostRegistry(["http://a:8529", "http://b:8529"])
        registry.advance()

        cleaned = registry.add_hosts(["tcp://c:8529", "http://a:8529"])

        assert cleaned == ["http://c:8529/", "http://a:8529/"]
        assert registry.hosts == ("http://a:8529/", "http://b:8529/", "http://c:8529/")
        assert registry.current_host() == "http://b:8529/"

    def test_add_single_host(self):
        registry = HostRegistry(["http://a:8529"])

        assert registry.add_hosts("http://b:8529") == ["http://b:8529/"]
        assert "http://b:8529" in registry

    def test_replace_resets_pointer(self):
        """Replacing the list starts over at the first host."""
        registry = HostRegistry(["http://a:8529", "http://b:8529"])
        registry.advance()

        registry.replace_hosts(["http://c:8529", "http://d:8529"])

        assert registry.current_host() == "http://c:8529/"

    def test_snapshot_is_immutable(self):
        """A held snapshot does not change when hosts are added."""
        registry = HostRegistry(["http://a:8529"])
        snapshot = registry.hosts

        registry.add_hosts(["http://b:8529"])

        assert snapshot == ("http://a:8529/",)

    def test_index_of(self):
        registry = HostRegistry(["http://a:8529", "http://b:8529"])

        assert registry.index_of("tcp://b:8529") == 1
        assert registry.index_of("http://z:8529") == -1

    def test_no_hosts(self):
        """An empty registry refuses to pick a host."""
        registry = HostRegistry([])

        with pytest.raises(ArangoSdkError) as exc_info:
            registry.current_host()

        assert exc_info.value.code == "NO_HOSTS"


class TestActiveHost:
    """Tests for the active pointer."""

    def test_advance_wraps(self):
        registry = HostRegistry(["http://a:8529", "http://b:8529"])

        assert registry.advance() == "http://b:8529/"
        assert registry.advance() == "http://a:8529/"

    def test_set_current(self):
        registry = HostRegistry(["http://a:8529", "http://b:8529"])

        registry.set_current("tcp://b:8529")

        assert registry.current_host() == "http://b:8529/"

    def test_set_current_unknown_host(self):
        registry = HostRegistry(["http://a:8529"])

        with pytest.raises(ArangoSdkError):
            registry.set_current("http://z:8529")

    def test_one_random_is_stable(self, monkeypatch):
        """ONE_RANDOM picks once, on first use."""
        monkeypatch.setattr("sdk.arango_sdk.hosts.random.randrange", lambda n: n - 1)
        registry = HostRegistry(["http://a:8529", "http://b:8529"], LoadBalancingStrategy.ONE_RANDOM)
        registry.add_hosts(["http://c:8529"])

        assert registry.current_host() == "http://c:8529/"
        assert registry.current_host() == "http://c:8529/"

    def test_strategy_from_string(self):
        registry = HostRegistry(["http://a:8529"], "ROUND_ROBIN")

        assert registry.strategy is LoadBalancingStrategy.ROUND_ROBIN


class TestDirtyReads:
    """Tests for dirty read rotation."""

    def test_rotates_independently(self):
        """Dirty reads rotate without moving the active host."""
        registry = HostRegistry(["http://a:8529", "http://b:8529", "http://c:8529"])

        picks = [registry.next_dirty_read_host() for _ in range(4)]

        assert picks == ["http://a:8529/", "http://b:8529/", "http://c:8529/", "http://a:8529/"]
        assert registry.current_host() == "http://a:8529/"
