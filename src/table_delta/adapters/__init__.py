"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async PostgreSQL DDL
executor.

Usage:
    from table_delta.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from table_delta.adapters.base import DatabaseClient
from table_delta.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
]
