"""
Query result cursors for the ArangoDB SDK.

This module provides lazy iteration over server-side result sets:
- CursorBatch: parsed batch response of the cursor API
- BatchCursor: iterates the results one batch at a time
- Cursor: iterates the results one item at a time

Both views share one buffer, so consuming items through one of them
consumes them for the other as well.

Example:
    >>> cursor = await db.query(aql("FOR d IN {} RETURN d", docs), batch_size=100)
    >>> async for doc in cursor:
    ...     print(doc)

Invariants:
    - Items are yielded in server order, each exactly once
    - Only one batch fetch is in flight per cursor
    - Every fetch goes to the host that opened the cursor
    - Once has_more is False and the buffer is empty the cursor is
      exhausted for good
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    TypeVar,
    Union,
)
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._http_client import RequestDescriptor
from .errors import ArangoSdkError

if TYPE_CHECKING:
    from .client import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_EMPTY: Any = object()
MISSING: Any = object()


class CursorBatch(BaseModel):
    """One batch as returned by the cursor API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    result: List[Any] = Field(default_factory=list)
    has_more: bool = Field(default=False, alias="hasMore")
    id: Optional[str] = None
    count: Optional[int] = None
    extra: Dict[str, Any] = Field(default_factory=dict)
    next_batch_id: Optional[str] = Field(default=None, alias="nextBatchId")

    @field_validator("id", "next_batch_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


async def _call(callback: Callable[..., Any], *args: Any) -> Any:
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class BatchCursor(Generic[T]):
    """Iterates a query result one batch at a time.

    Created by Database.query; not meant to be instantiated directly.
    """

    def __init__(
        self,
        database: Database,
        body: Union[CursorBatch, Mapping[str, Any]],
        host_url: Optional[str] = None,
        allow_dirty_read: bool = False,
        transaction_id: Optional[str] = None,
    ) -> None:
        """Initialize from the first batch.

        Args:
            database: Database the query ran in
            body: First batch response
            host_url: Host that answered the first batch
            allow_dirty_read: Whether follow-up fetches may be dirty reads
            transaction_id: Transaction the query ran in
        """
        batch = body if isinstance(body, CursorBatch) else CursorBatch.model_validate(body)
        self._db = database
        self._batches: Deque[Deque[T]] = deque([deque(batch.result)] if batch.result else [])
        self._id = batch.id
        self._has_more = bool(batch.id and batch.has_more)
        self._next_batch_id = batch.next_batch_id
        self._count = batch.count
        self._extra = batch.extra
        self._host_url = host_url
        self._allow_dirty_read = allow_dirty_read
        self._transaction_id = transaction_id
        self._killed = False
        self._fetch_lock = asyncio.Lock()
        self._items: Cursor[T] = Cursor(self)

    @property
    def database(self) -> Database:
        return self._db

    @property
    def id(self) -> Optional[str]:
        return self._id

    @property
    def items(self) -> Cursor[T]:
        """Item view sharing this cursor's buffer."""
        return self._items

    @property
    def host_url(self) -> Optional[str]:
        return self._host_url

    @property
    def count(self) -> Optional[int]:
        """Total result count, if the query asked for it."""
        return self._count

    @property
    def extra(self) -> Dict[str, Any]:
        """Warnings, stats, plan and profile information."""
        return self._extra

    @property
    def has_more(self) -> bool:
        """Whether the server holds more batches."""
        return self._has_more

    @property
    def has_next(self) -> bool:
        """Whether another batch or item is available."""
        return self._has_more or bool(self._batches)

    async def _more(self) -> None:
        """Fetch the next batch from the server."""
        async with self._fetch_lock:
            if not self._id or not self._has_more:
                return
            if self._next_batch_id:
                method = "POST"
                path = f"/_api/cursor/{quote(self._id, safe='')}/{self._next_batch_id}"
            else:
                method = "PUT"
                path = f"/_api/cursor/{quote(self._id, safe='')}"
            body = await self._db.request(
                RequestDescriptor(
                    method=method,
                    path=path,
                    host_url=self._host_url,
                    allow_dirty_read=self._allow_dirty_read,
                    transaction_id=self._transaction_id,
                )
            )
            if self._killed:
                return
            batch = CursorBatch.model_validate(body)
            if batch.result:
                self._batches.append(deque(batch.result))
            self._has_more = batch.has_more
            self._next_batch_id = batch.next_batch_id
            logger.debug(
                f"Cursor {self._id} fetched {len(batch.result)} items, has_more={self._has_more}"
            )

    def _is_empty(self) -> bool:
        while self._batches and not self._batches[0]:
            self._batches.popleft()
        return not self._batches

    def _shift(self) -> Any:
        if self._is_empty():
            return _EMPTY
        batch = self._batches[0]
        value = batch.popleft()
        if not batch:
            self._batches.popleft()
        return value

    async def _next_batch(self) -> Any:
        while self._is_empty() and self._has_more:
            await self._more()
        if self._is_empty():
            return _EMPTY
        batch = self._batches.popleft()
        return list(batch)

    async def next(self) -> Optional[List[T]]:
        """Return the next batch, fetching it if needed.

        Returns:
            The batch, or None once the cursor is exhausted
        """
        batch = await self._next_batch()
        if batch is _EMPTY:
            return None
        return batch

    def __aiter__(self) -> AsyncIterator[List[T]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[List[T]]:
        while True:
            batch = await self._next_batch()
            if batch is _EMPTY:
                return
            yield batch

    async def load_all(self) -> None:
        """Fetch every remaining batch into the buffer."""
        while self._has_more:
            await self._more()

    async def all(self) -> List[List[T]]:
        """Drain the cursor and return the remaining batches."""
        return [batch async for batch in self]

    async def for_each(self, callback: Callable[[List[T]], Any]) -> bool:
        """Call callback for each batch until it returns False.

        Returns:
            False if stopped by the callback, True otherwise
        """
        async for batch in self:
            if await _call(callback, batch) is False:
                return False
        return True

    async def map(self, callback: Callable[[List[T]], Union[R, Awaitable[R]]]) -> List[R]:
        return [await _call(callback, batch) async for batch in self]

    async def flat_map(self, callback: Callable[[List[T]], Any]) -> List[Any]:
        result: List[Any] = []
        async for batch in self:
            value = await _call(callback, batch)
            if isinstance(value, list):
                result.extend(value)
            else:
                result.append(value)
        return result

    async def reduce(self, reducer: Callable[[Any, List[T]], Any], initial: Any = MISSING) -> Any:
        """Reduce the batches; the first batch is the start value if none is given."""
        accumulator = initial
        async for batch in self:
            if accumulator is MISSING:
                accumulator = batch
                continue
            accumulator = await _call(reducer, accumulator, batch)
        return None if accumulator is MISSING else accumulator

    async def kill(self) -> None:
        """Drop buffered results and release the server-side cursor.

        Best effort: a failed delete is logged, never raised, and the
        cursor is exhausted either way.
        """
        self._batches.clear()
        if not self._has_more:
            return
        self._has_more = False
        self._killed = True
        try:
            await self._db.request(
                RequestDescriptor(
                    method="DELETE",
                    path=f"/_api/cursor/{quote(self._id or '', safe='')}",
                    host_url=self._host_url,
                    transaction_id=self._transaction_id,
                )
            )
        except ArangoSdkError as error:
            logger.warning(f"Failed to kill cursor {self._id}: {error}")
        else:
            logger.debug(f"Killed cursor {self._id}")


class Cursor(Generic[T]):
    """Iterates a query result one item at a time.

    Callbacks passed to the traversal methods may be plain functions or
    coroutine functions. Items are taken one at a time, so a failing
    callback leaves every later item in the cursor.
    """

    def __init__(self, batches: BatchCursor[T]) -> None:
        self._batches = batches

    @property
    def batches(self) -> BatchCursor[T]:
        """Batch view sharing this cursor's buffer."""
        return self._batches

    @property
    def database(self) -> Database:
        return self._batches.database

    @property
    def id(self) -> Optional[str]:
        return self._batches.id

    @property
    def count(self) -> Optional[int]:
        return self._batches.count

    @property
    def extra(self) -> Dict[str, Any]:
        return self._batches.extra

    @property
    def has_more(self) -> bool:
        return self._batches.has_more

    @property
    def has_next(self) -> bool:
        return self._batches.has_next

    async def _next_item(self) -> Any:
        view = self._batches
        while view._is_empty() and view.has_more:
            await view._more()
        return view._shift()

    async def next(self) -> Optional[T]:
        """Return the next item, fetching a batch if needed.

        Returns:
            The item, or None once the cursor is exhausted. Use async
            iteration to tell a null result apart from exhaustion.
        """
        value = await self._next_item()
        if value is _EMPTY:
            return None
        return value

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            value = await self._next_item()
            if value is _EMPTY:
                return
            yield value

    async def all(self) -> List[T]:
        """Drain the cursor and return every remaining item in order."""
        return [value async for value in self]

    async def for_each(self, callback: Callable[[T], Any]) -> bool:
        """Call callback for each item until it returns False.

        Returns:
            False if stopped by the callback, True otherwise
        """
        async for value in self:
            if await _call(callback, value) is False:
                return False
        return True

    async def map(self, callback: Callable[[T], Union[R, Awaitable[R]]]) -> List[R]:
        return [await _call(callback, value) async for value in self]

    async def flat_map(self, callback: Callable[[T], Any]) -> List[Any]:
        result: List[Any] = []
        async for value in self:
            item = await _call(callback, value)
            if isinstance(item, list):
                result.extend(item)
            else:
                result.append(item)
        return result

    async def reduce(self, reducer: Callable[[Any, T], Any], initial: Any = MISSING) -> Any:
        """Reduce the items; the first item is the start value if none is given."""
        accumulator = initial
        async for value in self:
            if accumulator is MISSING:
                accumulator = value
                continue
            accumulator = await _call(reducer, accumulator, value)
        return None if accumulator is MISSING else accumulator

    async def some(self, predicate: Callable[[T], Any]) -> bool:
        """Whether any item matches; stops at the first match."""
        async for value in self:
            if await _call(predicate, value):
                return True
        return False

    async def every(self, predicate: Callable[[T], Any]) -> bool:
        """Whether all items match; stops at the first mismatch."""
        async for value in self:
            if not await _call(predicate, value):
                return False
        return True

    async def kill(self) -> None:
        """Release the server-side cursor, see BatchCursor.kill."""
        await self._batches.kill()
