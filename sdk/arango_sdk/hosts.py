"""
Host registry and load balancing for the ArangoDB SDK.

The registry holds the known server base URLs and the index of the
currently active one. The host list is an immutable snapshot that is
replaced wholesale on mutation, so a retry loop holding an older snapshot
never sees it change underneath it.

Invariants:
    - Hosts are unique by normalized URL and keep insertion order
    - The active index is always taken modulo the number of hosts
    - The strategy never changes after construction
"""

from __future__ import annotations

import logging
import random
import re
from enum import Enum
from typing import Iterable, Optional, Tuple, Union

from .errors import ArangoSdkError

logger = logging.getLogger(__name__)

_RAW_SCHEME = re.compile(r"^(tcp|ssl|tls)((?::|\+).+)")
_UNIX_SCHEME = re.compile(r"^(?:(https?)\+)?unix://(/.+)")


class LoadBalancingStrategy(str, Enum):
    """How requests are distributed over the known hosts.

    NONE: always the active host, moved only on failover
    ONE_RANDOM: a random host picked on first use, then like NONE
    ROUND_ROBIN: the active host advances on every request
    """

    NONE = "NONE"
    ONE_RANDOM = "ONE_RANDOM"
    ROUND_ROBIN = "ROUND_ROBIN"


def normalize_url(url: str) -> str:
    """Normalize a server endpoint into an HTTP base URL.

    Example:
        >>> normalize_url("tcp://127.0.0.1:8529")
        'http://127.0.0.1:8529/'
        >>> normalize_url("unix:///tmp/arangodb.sock")
        'http://unix:/tmp/arangodb.sock'
    """
    raw = _RAW_SCHEME.match(url)
    if raw:
        url = ("http" if raw.group(1) == "tcp" else "https") + raw.group(2)
    unix = _UNIX_SCHEME.match(url)
    if unix:
        return f"{unix.group(1) or 'http'}://unix:{unix.group(2)}"
    if not url.endswith("/"):
        url += "/"
    return url


class HostRegistry:
    """Ordered list of known hosts plus the active host pointer.

    Example:
        >>> registry = HostRegistry(["http://a:8529", "http://b:8529"])
        >>> registry.current_host()
        'http://a:8529/'
        >>> registry.advance()
        'http://b:8529/'
    """

    def __init__(
        self,
        urls: Iterable[str] = (),
        strategy: Union[LoadBalancingStrategy, str] = LoadBalancingStrategy.NONE,
    ) -> None:
        self._strategy = LoadBalancingStrategy(strategy)
        self._hosts: Tuple[str, ...] = ()
        self._index = 0
        self._dirty_index: Optional[int] = None
        self._resolved = self._strategy is not LoadBalancingStrategy.ONE_RANDOM
        self.add_hosts(urls)

    @property
    def strategy(self) -> LoadBalancingStrategy:
        return self._strategy

    @property
    def hosts(self) -> Tuple[str, ...]:
        """Snapshot of the known hosts."""
        return self._hosts

    def __len__(self) -> int:
        return len(self._hosts)

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and normalize_url(url) in self._hosts

    def index_of(self, url: str) -> int:
        """Position of a host in the list, -1 if unknown."""
        try:
            return self._hosts.index(normalize_url(url))
        except ValueError:
            return -1

    def replace_hosts(self, urls: Iterable[str]) -> list[str]:
        """Replace the host list and reset the active index.

        Returns:
            The normalized URLs
        """
        clean = _dedupe(normalize_url(url) for url in urls)
        self._hosts = tuple(clean)
        self._index = 0
        self._dirty_index = None
        logger.debug(f"Host list replaced: {list(self._hosts)}")
        return clean

    def add_hosts(self, urls: Union[str, Iterable[str]]) -> list[str]:
        """Append hosts that aren't known yet.

        Order and the active index are preserved.

        Returns:
            The normalized form of every URL passed in
        """
        if isinstance(urls, str):
            urls = [urls]
        clean = [normalize_url(url) for url in urls]
        new = [url for url in _dedupe(clean) if url not in self._hosts]
        if new:
            self._hosts = self._hosts + tuple(new)
            logger.debug(f"Hosts added: {new}")
        return clean

    def current_host(self) -> str:
        """Return the active host."""
        if not self._hosts:
            raise ArangoSdkError("No hosts configured", code="NO_HOSTS")
        if not self._resolved:
            # Picked on first use so hosts added before that are candidates
            self._index = random.randrange(len(self._hosts))
            self._resolved = True
        return self._hosts[self._index % len(self._hosts)]

    def advance(self) -> str:
        """Move the active pointer one host forward and return the new host."""
        current = self.current_host()
        self._index = (self._hosts.index(current) + 1) % len(self._hosts)
        return self._hosts[self._index]

    def set_current(self, url: str) -> None:
        """Make a known host the active one."""
        index = self.index_of(url)
        if index == -1:
            raise ArangoSdkError(f"Unknown host: {url}", code="UNKNOWN_HOST")
        self._index = index
        self._resolved = True

    def next_dirty_read_host(self) -> str:
        """Return the host for the next dirty read and rotate past it.

        Dirty reads may be served by any host, so they rotate over all of
        them independently of the active pointer.
        """
        if not self._hosts:
            raise ArangoSdkError("No hosts configured", code="NO_HOSTS")
        if self._dirty_index is None:
            if self._strategy is LoadBalancingStrategy.ONE_RANDOM:
                self._dirty_index = random.randrange(len(self._hosts))
            else:
                self._dirty_index = 0
        host = self._hosts[self._dirty_index % len(self._hosts)]
        self._dirty_index = (self._dirty_index + 1) % len(self._hosts)
        return host


def _dedupe(urls: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for url in urls:
        seen.setdefault(url, None)
    return list(seen)
