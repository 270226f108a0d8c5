"""SQLiTune database layer.

The aiosqlite connector and the records describing query results and the
discovered schema.
"""

from .connector import SQLiteConnector, Transaction, split_sql_statements
from .models import (
    ColumnMetadata,
    ForeignKeyMetadata,
    IndexMetadata,
    QueryResult,
    SchemaSnapshot,
    TableSchema,
)

__all__ = [
    "SQLiteConnector",
    "Transaction",
    "split_sql_statements",
    "ColumnMetadata",
    "ForeignKeyMetadata",
    "IndexMetadata",
    "QueryResult",
    "SchemaSnapshot",
    "TableSchema",
]
