"""
ArangoDB Client for Python SDK.

This module provides the main client interface:
- DbClient: Entry point owning the connection to the servers
- Database: Requests scoped to one database (queries, jobs, transactions)

Example:
    >>> async with DbClient(urls=["http://localhost:8529"]) as client:
    ...     db = client.db("shop")
    ...     cursor = await db.query(aql("FOR o IN {} RETURN o", collection("orders")))
    ...     orders = await cursor.all()

Invariants:
    - All databases of one client share a single ConnectionManager
    - Every database request is sent under /_db/{name}
    - Cursors keep talking to the host that created them
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union
from urllib.parse import quote

import httpx

from ._http_client import RequestDescriptor, Response
from .aql import AqlQuery, Collection, is_aql_literal, is_aql_query, is_collection_reference
from .config import ConnectionSettings
from .connection import TRANSACTION_HEADER, ConnectionManager
from .cursor import BatchCursor, Cursor
from .errors import ArangoError, ArangoSdkError
from .jobs import Job
from .transactions import Transaction

logger = logging.getLogger(__name__)

TransactionCollections = Union[str, Collection, Sequence[Any], Mapping[str, Any]]


class Database:
    """Requests scoped to a single database.

    Obtained from DbClient.db; several Database objects may share one
    connection.
    """

    def __init__(self, name: str, connection: ConnectionManager) -> None:
        self._name = name
        self._connection = connection

    @property
    def name(self) -> str:
        return self._name

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    def collection(self, name: str) -> Collection:
        """Reference a collection for use in aql() templates."""
        return Collection(name)

    def _scoped(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        return replace(descriptor, path=f"/_db/{quote(self._name, safe='')}{descriptor.path}")

    async def request(self, descriptor: RequestDescriptor, *, raw: bool = False) -> Any:
        """Send a request in this database.

        Requests rejected with a write-write conflict are repeated up to
        retry_on_conflict times.

        Args:
            descriptor: Request with a database-relative path
            raw: Return the Response instead of its body

        Returns:
            Parsed response body, or the Response if raw is set
        """
        descriptor = self._scoped(descriptor)
        retries = descriptor.retry_on_conflict
        if retries is None:
            retries = self._connection.settings.retry_on_conflict

        conflicts = 0
        while True:
            try:
                response = await self._connection.execute(descriptor)
            except ArangoError as error:
                if error.is_conflict and conflicts < retries:
                    conflicts += 1
                    logger.debug(
                        f"Conflict on {descriptor.method} {descriptor.path}, retry {conflicts}"
                    )
                    continue
                raise
            return response if raw else response.body

    async def version(self, details: bool = False) -> Dict[str, Any]:
        return await self.request(
            RequestDescriptor(path="/_api/version", params={"details": details})
        )

    # Queries

    async def query(
        self,
        query: Union[str, AqlQuery, Mapping[str, Any], Any],
        bind_vars: Optional[Mapping[str, Any]] = None,
        *,
        count: Optional[bool] = None,
        batch_size: Optional[int] = None,
        ttl: Optional[float] = None,
        memory_limit: Optional[int] = None,
        cache: Optional[bool] = None,
        full_count: Optional[bool] = None,
        stream: Optional[bool] = None,
        profile: Optional[Union[bool, int]] = None,
        fail_on_warning: Optional[bool] = None,
        max_runtime: Optional[float] = None,
        options: Optional[Mapping[str, Any]] = None,
        allow_dirty_read: bool = False,
        retry_on_conflict: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Cursor[Any]:
        """Run an AQL query and return a cursor over its results.

        Args:
            query: Query built with aql(), a {query, bindVars} mapping, an
                AQL literal or a plain query string
            bind_vars: Bind parameters, only valid with a plain string
            count: Ask the server for the total result count
            batch_size: Max results per batch
            ttl: Seconds the server keeps the cursor alive between fetches
            allow_dirty_read: Allow followers to answer, including fetches
            options: Extra server query options, merged last

        Returns:
            Cursor pinned to the host that answered

        Raises:
            ValueError: If bind_vars is given together with a built query
        """
        if is_aql_query(query):
            if bind_vars is not None:
                raise ValueError("bind_vars cannot be combined with a built AQL query")
            if isinstance(query, AqlQuery):
                text, variables = query.query, dict(query.bind_vars)
            else:
                text, variables = query["query"], dict(query["bindVars"])
        elif is_aql_literal(query):
            text, variables = query.to_aql(), dict(bind_vars or {})
        else:
            text, variables = str(query), dict(bind_vars or {})

        query_options = _compact(
            {
                "fullCount": full_count,
                "stream": stream,
                "profile": profile,
                "failOnWarning": fail_on_warning,
                "maxRuntime": max_runtime,
            }
        )
        query_options.update(options or {})
        body = _compact(
            {
                "query": text,
                "bindVars": variables,
                "count": count,
                "batchSize": batch_size,
                "ttl": ttl,
                "memoryLimit": memory_limit,
                "cache": cache,
                "options": query_options or None,
            }
        )

        response: Response = await self.request(
            RequestDescriptor(
                method="POST",
                path="/_api/cursor",
                body=body,
                allow_dirty_read=allow_dirty_read,
                retry_on_conflict=retry_on_conflict,
                timeout=timeout,
            ),
            raw=True,
        )
        batches: BatchCursor[Any] = BatchCursor(
            self,
            response.body,
            host_url=response.host_url,
            allow_dirty_read=allow_dirty_read,
            transaction_id=response.request.headers.get(TRANSACTION_HEADER),
        )
        return batches.items

    # Async jobs

    async def create_job(self, callback: Callable[[], Awaitable[Any]]) -> Job[Any]:
        """Run the first request made by callback as a server-side job.

        The callback keeps running in the background; its eventual result
        becomes the job result once Job.load() finds the job finished.

        Args:
            callback: Function returning an awaitable that issues a request

        Returns:
            Handle for the stored job

        Raises:
            ArangoSdkError: If the callback completed without a request
        """
        trap = self._connection.arm_job_capture()
        task = asyncio.ensure_future(_awaitable(callback))
        try:
            await asyncio.wait({trap, task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._connection.disarm_job_capture(trap)
            task.cancel()
            raise

        if trap.done() and not trap.cancelled():
            captured = trap.result()
            if captured.error:
                # The request itself failed; surface its error
                await task
                raise ArangoSdkError("Async job request failed", code="JOB_REQUEST_FAILED")
            logger.debug(f"Created async job {captured.job_id}")
            return Job(
                self,
                captured.job_id or "",
                on_resolve=captured.resolve,
                on_reject=captured.reject,
                eventual=task,
            )

        self._connection.disarm_job_capture(trap)
        trap.cancel()
        task.result()
        raise ArangoSdkError("Job callback did not perform a request", code="NO_JOB_REQUEST")

    def job(self, job_id: str) -> Job[Any]:
        """Handle for an existing job; its result is the raw response body."""
        return Job(self, job_id)

    async def list_pending_jobs(self) -> List[str]:
        return await self.request(RequestDescriptor(path="/_api/job/pending"))

    async def list_completed_jobs(self) -> List[str]:
        return await self.request(RequestDescriptor(path="/_api/job/done"))

    # Cluster

    async def acquire_host_list(self, overwrite: bool = False) -> List[str]:
        """Learn the coordinator endpoints from the cluster.

        Args:
            overwrite: Replace the known hosts instead of adding to them

        Returns:
            The endpoints reported by the server
        """
        body = await self.request(RequestDescriptor(path="/_api/cluster/endpoints"))
        urls = [entry["endpoint"] for entry in body.get("endpoints", [])]
        if not urls:
            logger.debug("Server reported no cluster endpoints")
            return urls
        if overwrite:
            self._connection.replace_hosts(urls)
        else:
            self._connection.add_hosts(urls)
        logger.debug(f"Acquired {len(urls)} endpoints, now {len(self._connection.hosts)} hosts")
        return urls

    async def wait_for_propagation(
        self,
        descriptor: RequestDescriptor,
        timeout: Optional[float] = None,
    ) -> None:
        """Wait until a request succeeds on every known host, see ConnectionManager."""
        await self._connection.wait_for_propagation(self._scoped(descriptor), timeout)

    # Transactions

    async def begin_transaction(
        self,
        collections: TransactionCollections,
        *,
        allow_implicit: Optional[bool] = None,
        wait_for_sync: Optional[bool] = None,
        lock_timeout: Optional[float] = None,
        max_transaction_size: Optional[int] = None,
    ) -> Transaction:
        """Begin a stream transaction.

        Args:
            collections: Mapping of read/write/exclusive collections, or
                collections to write to

        Returns:
            Handle for the new transaction
        """
        body = _compact(
            {
                "collections": _transaction_collections(collections),
                "allowImplicit": allow_implicit,
                "waitForSync": wait_for_sync,
                "lockTimeout": lock_timeout,
                "maxTransactionSize": max_transaction_size,
            }
        )
        result = await self.request(
            RequestDescriptor(method="POST", path="/_api/transaction/begin", body=body)
        )
        transaction = Transaction(self, result["result"]["id"])
        logger.debug(f"Began transaction {transaction.id}")
        return transaction

    def transaction(self, transaction_id: str) -> Transaction:
        return Transaction(self, transaction_id)

    async def list_transactions(self) -> List[Dict[str, Any]]:
        body = await self.request(RequestDescriptor(path="/_api/transaction"))
        return body.get("transactions", [])

    async def close(self) -> None:
        """Abort pending requests and close the shared connection."""
        await self._connection.close()

    def __repr__(self) -> str:
        return f"Database({self._name!r})"


class DbClient:
    """Client for connecting to ArangoDB servers.

    Keyword overrides win over the given ConnectionSettings, which are
    loaded from ARANGO_ environment variables when omitted.

    Example:
        >>> async with DbClient(urls=["http://a:8529", "http://b:8529"],
        ...                     load_balancing_strategy="ROUND_ROBIN") as client:
        ...     info = await client.db().version()
    """

    def __init__(
        self,
        settings: Optional[ConnectionSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **overrides: Any,
    ) -> None:
        """Initialize client.

        Args:
            settings: Base settings, loaded from the environment if omitted
            transport: Optional httpx transport, used by tests
            **overrides: Individual ConnectionSettings fields
        """
        if settings is None:
            settings = ConnectionSettings(**overrides)
        elif overrides:
            settings = ConnectionSettings(**{**settings.model_dump(), **overrides})
        self._connection = ConnectionManager(settings, transport=transport)
        self._databases: Dict[str, Database] = {}

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def settings(self) -> ConnectionSettings:
        return self._connection.settings

    def db(self, name: Optional[str] = None) -> Database:
        """Get the database handle for name, the configured default if omitted."""
        name = name or self._connection.settings.database_name
        database = self._databases.get(name)
        if database is None:
            database = Database(name, self._connection)
            self._databases[name] = database
        return database

    def __getitem__(self, name: str) -> Database:
        return self.db(name)

    async def close(self) -> None:
        await self._connection.close()

    async def __aenter__(self) -> DbClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def _awaitable(callback: Callable[[], Any]) -> Any:
    result = callback()
    if not inspect.isawaitable(result):
        raise TypeError("Job callback must return an awaitable")
    return await result


def _compact(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _collection_name(value: Any) -> str:
    if is_collection_reference(value):
        return value.name
    return str(value)


def _transaction_collections(collections: TransactionCollections) -> Dict[str, Any]:
    if isinstance(collections, Mapping):
        resolved: Dict[str, Any] = {}
        for mode, names in collections.items():
            if isinstance(names, str) or is_collection_reference(names):
                resolved[mode] = _collection_name(names)
            else:
                resolved[mode] = [_collection_name(name) for name in names]
        return resolved
    if isinstance(collections, str) or is_collection_reference(collections):
        return {"write": _collection_name(collections)}
    return {"write": [_collection_name(name) for name in collections]}
