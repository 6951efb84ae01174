"""
Server error codes handled by the SDK.

See the ArangoDB error code documentation for the full list.
"""

TRANSACTION_NOT_FOUND = 10
ERROR_ARANGO_MAINTENANCE_MODE = 503
ERROR_ARANGO_CONFLICT = 1200
DOCUMENT_NOT_FOUND = 1202
COLLECTION_NOT_FOUND = 1203
DATABASE_NOT_FOUND = 1228
CURSOR_NOT_FOUND = 1600
GRAPH_NOT_FOUND = 1924

NOT_FOUND_CODES = frozenset(
    {
        TRANSACTION_NOT_FOUND,
        DOCUMENT_NOT_FOUND,
        COLLECTION_NOT_FOUND,
        DATABASE_NOT_FOUND,
        CURSOR_NOT_FOUND,
        GRAPH_NOT_FOUND,
    }
)
