"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that DDL executors implement.
All methods are ``async def`` -- the library is async-first.

Usage:
    from table_delta.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        await client.execute_batch([
            "ALTER TABLE deltas.people ADD COLUMN email varchar",
            "CREATE INDEX idx_people_email ON deltas.people USING btree (email)",
        ])
        await client.execute("CREATE INDEX CONCURRENTLY ...", autocommit=True)
        await client.close()
"""

from collections.abc import Sequence
from typing import Protocol


class DatabaseClient(Protocol):
    """DDL execution interface.

    This Protocol keeps patch application independent of the driver; tests
    supply an ``AsyncMock`` with the same methods.

    All methods are async -- callers must ``await`` every operation.
    """

    async def execute(
        self,
        sql: str,
        params: dict | None = None,
        *,
        autocommit: bool = False,
    ) -> None:
        """Execute a single raw SQL statement.

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters for the SQL statement.
            autocommit: Run outside a transaction block.  Required for
                statements such as ``CREATE INDEX CONCURRENTLY``.

        Raises:
            DdlExecutionError: If the statement fails.

        Example:
            await client.execute(
                "ALTER TABLE users ADD COLUMN email VARCHAR(255)"
            )
        """
        ...

    async def execute_batch(self, statements: Sequence[str]) -> None:
        """Execute statements in order inside a single transaction.

        Either every statement is applied or none is.

        Raises:
            DdlExecutionError: Carrying the first statement that failed.
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources.

        Call this when done with the adapter, especially in long-running
        processes.
        """
        ...
