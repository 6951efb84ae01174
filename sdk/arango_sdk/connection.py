"""
Connection manager for the ArangoDB SDK.

This module dispatches requests over the known hosts:
- ConnectionManager: host selection, failover, bounded concurrency
- QueueTimeMetrics: server-reported queue time samples
- CapturedJob: handle for a request deferred as an async job

Example:
    >>> async with ConnectionManager(ConnectionSettings(urls=["http://a:8529"])) as conn:
    ...     res = await conn.execute(RequestDescriptor(path="/_api/version"))

Invariants:
    - Only network errors flagged safe to retry are retried, and only on
      another known host
    - A request pinned to a host never fails over
    - At most pool_size requests are in flight at once
    - The queue time buffer never exceeds its configured size
    - Only one transaction is pinned at a time
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Callable, Deque, Dict, Iterable, List, Optional, Tuple

import httpx

from . import __version__
from ._http_client import RequestDescriptor, RequestExecutor, Response, serialize_body
from .config import ConnectionSettings
from .errors import (
    ArangoError,
    ArangoSdkError,
    HttpError,
    NetworkError,
    PropagationTimeoutError,
    TransactionPinError,
)
from .hosts import HostRegistry, LoadBalancingStrategy, normalize_url

logger = logging.getLogger(__name__)

LEADER_ENDPOINT_HEADER = "x-arango-endpoint"
QUEUE_TIME_HEADER = "x-arango-queue-time-seconds"
TRANSACTION_HEADER = "x-arango-trx-id"
DIRTY_READ_HEADER = "x-arango-allow-dirty-read"
ASYNC_HEADER = "x-arango-async"
ASYNC_ID_HEADER = "x-arango-async-id"

PROPAGATION_POLL_INTERVAL = 1.0


class QueueTimeMetrics:
    """Bounded FIFO of (timestamp ms, seconds) queue time samples."""

    def __init__(self, max_samples: int = 10) -> None:
        self._samples: Deque[Tuple[int, float]] = deque(maxlen=_maxlen(max_samples))

    def record(self, seconds: float, timestamp_ms: Optional[int] = None) -> None:
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        self._samples.append((timestamp_ms, seconds))

    def resize(self, max_samples: int) -> None:
        """Change the capacity, dropping the oldest samples if needed."""
        self._samples = deque(self._samples, maxlen=_maxlen(max_samples))

    @property
    def latest(self) -> Optional[float]:
        if not self._samples:
            return None
        return self._samples[-1][1]

    def values(self) -> List[Tuple[int, float]]:
        return list(self._samples)

    def average(self) -> float:
        if not self._samples:
            return 0.0
        return sum(seconds for _, seconds in self._samples) / len(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


@dataclass
class CapturedJob:
    """A request that was deferred for async execution on the server.

    Attributes:
        job_id: Server job id, None if the deferred request failed
        resolve: Settles the deferred request with the job's response
        reject: Settles the deferred request with the job's error
        error: Whether the deferred request itself failed
    """

    job_id: Optional[str]
    resolve: Callable[[Response], None]
    reject: Callable[[BaseException], None]
    error: bool = False


class ConnectionManager:
    """Dispatches requests over a set of hosts.

    Owns the host registry, the concurrency pool, the queue time samples,
    the transaction pin and the async job capture hook. All state is
    mutated from the event loop only.
    """

    def __init__(
        self,
        settings: Optional[ConnectionSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the connection manager.

        Args:
            settings: Connection settings, loaded from the environment if omitted
            transport: Optional httpx transport, used by tests
        """
        self._settings = settings or ConnectionSettings()
        self._hosts = HostRegistry(self._settings.urls, self._settings.load_balancing_strategy)
        self._executor = RequestExecutor(transport=transport)
        self._pool_size = self._settings.effective_pool_size
        self._pool = asyncio.Semaphore(self._pool_size)
        self._max_retries = self._settings.max_retries
        self._queue_time = QueueTimeMetrics(self._settings.response_queue_time_samples)
        self._transaction_id: Optional[str] = None
        self._transaction_depth = 0
        self._job_trap: Optional[asyncio.Future[CapturedJob]] = None

        self._headers: Dict[str, str] = {k.lower(): v for k, v in self._settings.headers.items()}
        self._headers["x-arango-version"] = str(self._settings.arango_version)
        self._headers["x-arango-driver"] = f"arango-sdk/{__version__}"
        if self._settings.token is not None:
            self.set_bearer_auth(self._settings.token.get_secret_value())
        else:
            self.set_basic_auth(self._settings.username, self._settings.password.get_secret_value())

    @property
    def settings(self) -> ConnectionSettings:
        return self._settings

    @property
    def hosts(self) -> Tuple[str, ...]:
        return self._hosts.hosts

    @property
    def host_registry(self) -> HostRegistry:
        return self._hosts

    @property
    def strategy(self) -> LoadBalancingStrategy:
        return self._hosts.strategy

    @property
    def pool_size(self) -> int:
        return self._pool_size

    @property
    def queue_time(self) -> QueueTimeMetrics:
        return self._queue_time

    @property
    def transaction_id(self) -> Optional[str]:
        return self._transaction_id

    # Headers and credentials

    def set_header(self, name: str, value: Optional[str]) -> None:
        """Set a default header, or remove it when value is None."""
        if value is None:
            self._headers.pop(name.lower(), None)
        else:
            self._headers[name.lower()] = value

    def set_basic_auth(self, username: str, password: str = "") -> None:
        token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        self.set_header("authorization", f"Basic {token}")

    def set_bearer_auth(self, token: str) -> None:
        self.set_header("authorization", f"Bearer {token}")

    def set_response_queue_time_samples(self, max_samples: int) -> None:
        self._queue_time.resize(max_samples)

    # Host list

    def replace_hosts(self, urls: Iterable[str]) -> List[str]:
        return self._hosts.replace_hosts(urls)

    def add_hosts(self, urls: Iterable[str]) -> List[str]:
        return self._hosts.add_hosts(urls)

    # Transaction pin

    def set_transaction_id(self, transaction_id: str) -> None:
        """Send every following request in the given transaction.

        Raises:
            TransactionPinError: If a different transaction is pinned
        """
        if self._transaction_id is not None and self._transaction_id != transaction_id:
            raise TransactionPinError(self._transaction_id, transaction_id)
        self._transaction_id = transaction_id
        self._transaction_depth += 1

    def clear_transaction_id(self) -> None:
        if self._transaction_depth > 0:
            self._transaction_depth -= 1
        if self._transaction_depth == 0:
            self._transaction_id = None

    @asynccontextmanager
    async def transaction(self, transaction_id: str) -> AsyncIterator[None]:
        """Pin a transaction for the duration of the block."""
        self.set_transaction_id(transaction_id)
        try:
            yield
        finally:
            self.clear_transaction_id()

    # Async job capture

    def arm_job_capture(self) -> asyncio.Future[CapturedJob]:
        """Defer the next request as an async job.

        Returns:
            Future resolved with the CapturedJob once that request was sent
        """
        if self._job_trap is not None and not self._job_trap.done():
            raise ArangoSdkError("An async job capture is already armed", code="JOB_CAPTURE_ARMED")
        trap: asyncio.Future[CapturedJob] = asyncio.get_running_loop().create_future()
        self._job_trap = trap
        return trap

    def disarm_job_capture(self, trap: asyncio.Future[CapturedJob]) -> None:
        if self._job_trap is trap:
            self._job_trap = None

    # Requests

    async def execute(self, descriptor: RequestDescriptor) -> Response:
        """Perform a request, failing over to other hosts where safe.

        Args:
            descriptor: The request to perform

        Returns:
            The processed response

        Raises:
            ArangoError: Server rejected the request
            HttpError: Error status without a structured body
            NetworkError: Transport failure not recovered by failover
        """
        trap = self._job_trap
        if trap is not None:
            self._job_trap = None
            if not trap.done():
                return await self._execute_as_job(descriptor, trap)
        return await self._execute(descriptor)

    async def _execute_as_job(
        self,
        descriptor: RequestDescriptor,
        trap: asyncio.Future[CapturedJob],
    ) -> Response:
        headers = dict(descriptor.headers)
        headers[ASYNC_HEADER] = "store"
        try:
            job_response = await self._execute(replace(descriptor, headers=headers))
        except Exception:
            if not trap.done():
                trap.set_result(CapturedJob(None, _noop, _noop, error=True))
            raise

        eventual: asyncio.Future[Response] = asyncio.get_running_loop().create_future()

        def resolve(response: Response) -> None:
            if not eventual.done():
                eventual.set_result(response)

        def reject(error: BaseException) -> None:
            if not eventual.done():
                eventual.set_exception(error)

        job_id = job_response.headers.get(ASYNC_ID_HEADER)
        logger.debug(f"Request {descriptor.method} {descriptor.path} deferred as job {job_id}")
        if not trap.done():
            trap.set_result(CapturedJob(job_id, resolve, reject))
        return await eventual

    async def _execute(self, descriptor: RequestDescriptor) -> Response:
        if descriptor.timeout is None and self._settings.timeout is not None:
            descriptor = replace(descriptor, timeout=self._settings.timeout)
        headers = self._build_headers(descriptor)
        content, content_type = serialize_body(descriptor.body, descriptor.is_binary)
        if content_type is not None and "content-type" not in headers:
            headers["content-type"] = content_type

        pinned_host = normalize_url(descriptor.host_url) if descriptor.host_url else None

        host = self._pick_host(descriptor, pinned_host)
        retries = 0
        redirects = 0
        while True:
            try:
                async with self._pool:
                    response = await self._executor.send(host, descriptor, headers, content)
            except (ArangoError, NetworkError) as error:
                failed = _response_of(error)
                if failed is not None:
                    self._record_queue_time(failed)

                leader = _leader_endpoint(failed)
                if leader is not None and redirects < max(len(self._hosts), 1):
                    redirects += 1
                    clean = self._hosts.add_hosts(leader)[0]
                    if pinned_host is None and self._hosts.current_host() == host:
                        self._hosts.set_current(clean)
                    logger.debug(f"Redirected from {host} to leader {clean}")
                    host = pinned_host = clean
                    continue

                if pinned_host is None and self._can_retry(error, retries):
                    retries += 1
                    failed_host = host
                    host = self._failover(descriptor, failed_host)
                    logger.debug(
                        f"Request to {failed_host} failed ({error.message}), "
                        f"retrying on {host} ({retries})"
                    )
                    continue
                raise

            self._record_queue_time(response)
            return response

    def _pick_host(self, descriptor: RequestDescriptor, pinned_host: Optional[str]) -> str:
        if pinned_host is not None:
            return pinned_host
        if descriptor.allow_dirty_read:
            return self._hosts.next_dirty_read_host()
        host = self._hosts.current_host()
        if self._hosts.strategy is LoadBalancingStrategy.ROUND_ROBIN:
            self._hosts.advance()
        return host

    def _can_retry(self, error: Exception, retries: int) -> bool:
        if not isinstance(error, NetworkError) or isinstance(error, HttpError):
            return False
        if error.is_safe_to_retry is not True:
            return False
        if self._max_retries is None:
            limit = len(self._hosts) - 1
        else:
            limit = self._max_retries
        return retries < limit

    def _failover(self, descriptor: RequestDescriptor, failed_host: str) -> str:
        """Pick the host for the next attempt after a failure."""
        if descriptor.allow_dirty_read:
            return self._hosts.next_dirty_read_host()
        if self._hosts.strategy is LoadBalancingStrategy.ROUND_ROBIN:
            hosts = self._hosts.hosts
            index = hosts.index(failed_host) if failed_host in hosts else -1
            return hosts[(index + 1) % len(hosts)]
        # Only move the pointer if nobody else moved it in the meantime
        if self._hosts.current_host() == failed_host:
            return self._hosts.advance()
        return self._hosts.current_host()

    def _build_headers(self, descriptor: RequestDescriptor) -> Dict[str, str]:
        headers = dict(self._headers)
        for name, value in descriptor.headers.items():
            headers[name.lower()] = value
        transaction_id = descriptor.transaction_id or self._transaction_id
        if transaction_id:
            headers[TRANSACTION_HEADER] = transaction_id
        if descriptor.allow_dirty_read:
            headers[DIRTY_READ_HEADER] = "true"
        return headers

    def _record_queue_time(self, response: Response) -> None:
        raw = response.headers.get(QUEUE_TIME_HEADER)
        if not raw:
            return
        try:
            self._queue_time.record(float(raw))
        except ValueError:
            logger.debug(f"Ignoring malformed queue time header: {raw!r}")

    async def wait_for_propagation(
        self,
        descriptor: RequestDescriptor,
        timeout: Optional[float] = None,
    ) -> None:
        """Repeat a request until it has succeeded against every known host.

        Args:
            descriptor: Request to perform against each host
            timeout: Seconds to wait in total, None waits indefinitely

        Raises:
            PropagationTimeoutError: If the deadline passes first
        """
        hosts = self._hosts.hosts
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        propagated: set[str] = set()
        index = 0
        while len(propagated) < len(hosts):
            while hosts[index] in propagated:
                index = (index + 1) % len(hosts)
            host = hosts[index]
            remaining = None if deadline is None else max(deadline - loop.time(), 0.0)
            try:
                await self._execute(replace(descriptor, host_url=host, timeout=remaining))
            except ArangoSdkError as error:
                if deadline is not None and loop.time() >= deadline:
                    raise PropagationTimeoutError(cause=error) from error
                await asyncio.sleep(PROPAGATION_POLL_INTERVAL)
                continue
            propagated.add(host)

    async def close(self) -> None:
        """Abort pending requests and close all connections."""
        await self._executor.close()

    async def __aenter__(self) -> ConnectionManager:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def _maxlen(max_samples: int) -> Optional[int]:
    return None if max_samples < 0 else max_samples


def _noop(*args: Any) -> None:
    return None


def _response_of(error: Exception) -> Optional[Response]:
    if isinstance(error, HttpError):
        return error.response
    if isinstance(error, ArangoError):
        return error.response
    return None


def _leader_endpoint(response: Optional[Response]) -> Optional[str]:
    if response is None or response.status != 503:
        return None
    return response.headers.get(LEADER_ENDPOINT_HEADER) or None
