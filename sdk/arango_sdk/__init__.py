"""
ArangoDB Python SDK - Async client library for ArangoDB over HTTP.

This SDK provides:
- aql() query builder with automatic bind variables
- DbClient and Database for running queries, jobs and transactions
- Cursor and BatchCursor for lazy iteration over query results
- Host failover and load balancing across coordinators

Example:
    >>> from sdk.arango_sdk import DbClient, aql, collection
    >>>
    >>> docs = collection("docs")
    >>> query = aql("FOR x IN {} FILTER x > {} LIMIT {}", docs, 1, 5)
    >>>
    >>> async with DbClient(urls=["http://localhost:8529"]) as client:
    ...     cursor = await client.db().query(query, batch_size=100)
    ...     async for doc in cursor:
    ...         print(doc)

Invariants:
    - Bind variable names are unique per query
    - Only network errors known to be safe are retried on another host
    - Cursors fetch each batch from the host that created them

Version: 1.0.0
"""

__version__ = "1.0.0"

from .aql import (
    AqlLiteral,
    AqlQuery,
    Collection,
    CollectionReference,
    GeneratedAqlQuery,
    aql,
    aql_template,
    collection,
    is_aql_literal,
    is_aql_query,
    join,
    literal,
)
from .client import Database, DbClient
from .config import ConnectionSettings
from .connection import ConnectionManager, QueueTimeMetrics
from .cursor import BatchCursor, Cursor
from .errors import (
    ArangoError,
    ArangoSdkError,
    BuilderError,
    FetchFailedError,
    HttpError,
    NetworkError,
    PropagationTimeoutError,
    RequestAbortedError,
    ResponseTimeoutError,
    TransactionPinError,
    is_arango_error,
    is_network_error,
)
from .hosts import LoadBalancingStrategy
from .jobs import Job
from .transactions import Transaction

__all__ = [
    # Version
    "__version__",
    # Query builder
    "AqlLiteral",
    "AqlQuery",
    "GeneratedAqlQuery",
    "Collection",
    "CollectionReference",
    "aql",
    "aql_template",
    "collection",
    "literal",
    "join",
    "is_aql_literal",
    "is_aql_query",
    # Client
    "DbClient",
    "Database",
    "ConnectionSettings",
    "ConnectionManager",
    "LoadBalancingStrategy",
    "QueueTimeMetrics",
    # Results
    "Cursor",
    "BatchCursor",
    "Job",
    "Transaction",
    # Errors
    "ArangoSdkError",
    "ArangoError",
    "NetworkError",
    "HttpError",
    "FetchFailedError",
    "ResponseTimeoutError",
    "RequestAbortedError",
    "BuilderError",
    "PropagationTimeoutError",
    "TransactionPinError",
    "is_arango_error",
    "is_network_error",
]
