"""
Async jobs for the ArangoDB SDK.

A Job wraps a request the server executes in the background. Jobs
created through Database.create_job also settle the original call once
their result has been loaded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Generic, Optional, TypeVar

from ._http_client import RequestDescriptor, Response
from .errors import ArangoError

if TYPE_CHECKING:
    from .client import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Job(Generic[T]):
    """Handle for an async job stored on the server.

    Example:
        >>> job = await db.create_job(lambda: db.query("FOR d IN docs RETURN d"))
        >>> while not job.is_loaded:
        ...     await asyncio.sleep(1)
        ...     await job.load()
        >>> cursor = job.result
    """

    def __init__(
        self,
        database: Database,
        job_id: str,
        *,
        on_resolve: Optional[Callable[[Response], None]] = None,
        on_reject: Optional[Callable[[BaseException], None]] = None,
        eventual: Optional[asyncio.Future[T]] = None,
    ) -> None:
        """Initialize a job handle.

        Args:
            database: Database the job runs in
            job_id: Server job id
            on_resolve: Settles the deferred request with the job response
            on_reject: Settles the deferred request with the job error
            eventual: Outcome of the callback that issued the request
        """
        self._db = database
        self._id = job_id
        self._on_resolve = on_resolve
        self._on_reject = on_reject
        self._eventual = eventual
        self._loaded = False
        self._result: Optional[T] = None

    @property
    def database(self) -> Database:
        return self._db

    @property
    def id(self) -> str:
        return self._id

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def result(self) -> Optional[T]:
        return self._result

    async def load(self) -> Optional[T]:
        """Fetch the job result if it is ready.

        Returns:
            The result, or None while the job is still pending

        Raises:
            ArangoError: If the job itself failed
        """
        if self._loaded:
            return self._result

        try:
            response = await self._db.request(
                RequestDescriptor(method="PUT", path=f"/_api/job/{self._id}"),
                raw=True,
            )
        except ArangoError as error:
            if self._on_reject is None or self._eventual is None:
                raise
            self._loaded = True
            self._on_reject(error)
            self._result = await self._eventual
            return self._result

        if response.status == 204:
            logger.debug(f"Job {self._id} still pending")
            return None

        self._loaded = True
        if self._on_resolve is not None and self._eventual is not None:
            self._on_resolve(response)
            self._result = await self._eventual
        else:
            self._result = response.body
        return self._result

    async def cancel(self) -> None:
        await self._db.request(RequestDescriptor(method="PUT", path=f"/_api/job/{self._id}/cancel"))

    async def delete_result(self) -> None:
        await self._db.request(RequestDescriptor(method="DELETE", path=f"/_api/job/{self._id}"))

    async def get_completed(self) -> bool:
        """Whether the job has finished, without fetching its result."""
        response = await self._db.request(
            RequestDescriptor(method="GET", path=f"/_api/job/{self._id}"),
            raw=True,
        )
        return response.status != 204

    def __repr__(self) -> str:
        return f"Job({self._id!r}, loaded={self._loaded})"
