"""
Stream transactions for the ArangoDB SDK.

A Transaction is identified by a server-issued id. Requests made inside
step() carry that id so the server runs them in the transaction.

Invariants:
    - Only one transaction can be pinned on a connection at a time
    - The pin is always cleared when a step ends, even on error
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

from ._http_client import RequestDescriptor
from .codes import TRANSACTION_NOT_FOUND
from .errors import ArangoError

if TYPE_CHECKING:
    from .client import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Transaction:
    """Handle for a stream transaction.

    Example:
        >>> trx = await db.begin_transaction({"write": ["accounts"]})
        >>> await trx.step(lambda: db.query(aql("UPDATE ... IN {}", accounts)))
        >>> await trx.commit()
    """

    def __init__(self, database: Database, transaction_id: str) -> None:
        self._db = database
        self._id = transaction_id
        self._status: Optional[str] = None

    @property
    def database(self) -> Database:
        return self._db

    @property
    def id(self) -> str:
        return self._id

    @property
    def status(self) -> Optional[str]:
        """Last status seen from the server (running, committed, aborted)."""
        return self._status

    async def step(self, callback: Callable[[], Awaitable[T]]) -> T:
        """Run callback with this transaction pinned on the connection.

        Args:
            callback: Function returning an awaitable that performs requests

        Raises:
            TransactionPinError: If another transaction is pinned
            TypeError: If callback does not return an awaitable
        """
        connection = self._db.connection
        connection.set_transaction_id(self._id)
        try:
            pending = callback()
            if not inspect.isawaitable(pending):
                raise TypeError("Transaction step callback must return an awaitable")
            return await pending
        finally:
            connection.clear_transaction_id()

    async def exists(self) -> bool:
        try:
            await self.get()
        except ArangoError as error:
            if error.error_num == TRANSACTION_NOT_FOUND:
                return False
            raise
        return True

    async def get(self) -> dict[str, Any]:
        body = await self._db.request(
            RequestDescriptor(method="GET", path=f"/_api/transaction/{self._id}")
        )
        return self._update(body)

    async def commit(self) -> dict[str, Any]:
        body = await self._db.request(
            RequestDescriptor(method="PUT", path=f"/_api/transaction/{self._id}")
        )
        logger.debug(f"Committed transaction {self._id}")
        return self._update(body)

    async def abort(self) -> dict[str, Any]:
        body = await self._db.request(
            RequestDescriptor(method="DELETE", path=f"/_api/transaction/{self._id}")
        )
        logger.debug(f"Aborted transaction {self._id}")
        return self._update(body)

    def _update(self, body: Any) -> dict[str, Any]:
        result = body.get("result", {}) if isinstance(body, dict) else {}
        self._status = result.get("status", self._status)
        return result

    def __repr__(self) -> str:
        return f"Transaction({self._id!r}, status={self._status!r})"
