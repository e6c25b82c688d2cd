"""PostgreSQL schema introspection via pg_catalog.

This module reads the live definition of one table:
- Columns: name, declared type (``format_type``), nullability, default
- Primary key: constraint name and ordered columns
- Indexes: name and ``pg_get_indexdef()`` DDL (excluding indexes owned by
  constraints, such as the primary key index)
- Foreign keys: local/referenced columns and referential actions

Everything is read inside one read-only transaction so the result is a
consistent snapshot.

Uses psycopg (v3) async connections.
"""

from collections.abc import Sequence
from typing import Any, Protocol

import psycopg
from psycopg import AsyncConnection

from table_delta.schema.models import (
    ActualColumn,
    ActualForeignKey,
    ActualIndex,
    ActualPrimaryKey,
    ActualTable,
    CascadeAction,
    DbObjectName,
)


class SchemaReader(Protocol):
    """Source of actual table definitions.

    ``SchemaIntrospector`` reads them from PostgreSQL; tests and callers
    that already hold a snapshot can supply their own.
    """

    async def fetch_existing(self, identifier: DbObjectName) -> ActualTable | None:
        """Return the live definition of *identifier*, or None if absent."""
        ...


_TABLE_OID_QUERY = """
    SELECT c.oid
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = %s
      AND c.relname = %s
      AND c.relkind IN ('r', 'p')
"""

_COLUMNS_QUERY = """
    SELECT
        a.attname,
        format_type(a.atttypid, a.atttypmod),
        NOT a.attnotnull,
        pg_get_expr(d.adbin, d.adrelid)
    FROM pg_attribute a
    LEFT JOIN pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
    WHERE a.attrelid = %s
      AND a.attnum > 0
      AND NOT a.attisdropped
    ORDER BY a.attnum
"""

_PRIMARY_KEY_QUERY = """
    SELECT
        con.conname,
        array_agg(a.attname ORDER BY k.ordinality)
    FROM pg_constraint con
    JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS k(attnum, ordinality) ON TRUE
    JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
    WHERE con.conrelid = %s
      AND con.contype = 'p'
    GROUP BY con.conname
"""

_INDEXES_QUERY = """
    SELECT
        i.relname,
        pg_get_indexdef(ix.indexrelid)
    FROM pg_index ix
    JOIN pg_class i ON i.oid = ix.indexrelid
    WHERE ix.indrelid = %s
      AND NOT ix.indisprimary
      AND NOT EXISTS (
          SELECT 1 FROM pg_constraint con
          WHERE con.conindid = ix.indexrelid
            AND con.conrelid = ix.indrelid
      )
    ORDER BY i.relname
"""

_FOREIGN_KEYS_QUERY = """
    SELECT
        con.conname,
        ARRAY(
            SELECT a.attname
            FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ordinality)
            JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
            ORDER BY k.ordinality
        ),
        rn.nspname,
        rc.relname,
        ARRAY(
            SELECT a.attname
            FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ordinality)
            JOIN pg_attribute a ON a.attrelid = con.confrelid AND a.attnum = k.attnum
            ORDER BY k.ordinality
        ),
        con.confdeltype,
        con.confupdtype
    FROM pg_constraint con
    JOIN pg_class rc ON rc.oid = con.confrelid
    JOIN pg_namespace rn ON rn.oid = rc.relnamespace
    WHERE con.conrelid = %s
      AND con.contype = 'f'
    ORDER BY con.conname
"""


def actual_table_from_rows(
    identifier: DbObjectName,
    column_rows: Sequence[Sequence[Any]],
    primary_key_row: Sequence[Any] | None,
    index_rows: Sequence[Sequence[Any]],
    foreign_key_rows: Sequence[Sequence[Any]],
) -> ActualTable:
    """Build an ``ActualTable`` from the catalog query rows.

    Row shapes follow the column order of the catalog queries above.
    """
    columns = [
        ActualColumn(name=name, type=data_type, allow_nulls=allow_nulls, default_expression=default)
        for name, data_type, allow_nulls, default in column_rows
    ]

    primary_key = None
    if primary_key_row is not None:
        name, column_names = primary_key_row
        primary_key = ActualPrimaryKey(name=name, column_names=list(column_names))

    indexes = [ActualIndex(name=name, ddl=ddl) for name, ddl in index_rows]

    foreign_keys = [
        ActualForeignKey(
            name=name,
            column_names=list(column_names),
            linked_table=DbObjectName(schema_name=linked_schema, name=linked_name),
            linked_names=list(linked_names),
            on_delete=CascadeAction.from_code(on_delete),
            on_update=CascadeAction.from_code(on_update),
        )
        for name, column_names, linked_schema, linked_name, linked_names, on_delete, on_update
        in foreign_key_rows
    ]

    return ActualTable(
        identifier=identifier,
        columns=columns,
        primary_key=primary_key,
        indexes=indexes,
        foreign_keys=foreign_keys,
    )


class SchemaIntrospector:
    """Reads live table definitions from PostgreSQL.

    Implements ``SchemaReader``.  Works with any PostgreSQL database (RDS,
    Supabase, local).

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            actual = await introspector.fetch_existing(people.identifier)
            exists = await introspector.table_exists(people.identifier)
    """

    def __init__(self, database_url: str, connect_timeout: int = 10):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL
            connect_timeout: Seconds to wait for the connection
        """
        self._database_url = database_url
        self._connect_timeout = connect_timeout
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Async context manager entry - opens connection."""
        # Append connect_timeout if not already in URL
        url = self._database_url
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout={self._connect_timeout}"

        self._conn = await psycopg.AsyncConnection.connect(url, autocommit=True)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - closes connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_connection(self) -> AsyncConnection:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        return self._conn

    async def test_connection(self) -> bool:
        """Run ``SELECT 1`` to verify the connection is alive."""
        conn = self._require_connection()
        async with conn.cursor() as cur:
            await cur.execute("SELECT 1")
            row = await cur.fetchone()
            return row is not None and row[0] == 1

    async def table_exists(self, identifier: DbObjectName) -> bool:
        """True if *identifier* names a table, matched as in ``fetch_existing``."""
        conn = self._require_connection()
        async with conn.cursor() as cur:
            await cur.execute(_TABLE_OID_QUERY, (identifier.schema_name.lower(), identifier.name.lower()))
            return await cur.fetchone() is not None

    async def fetch_existing(self, identifier: DbObjectName) -> ActualTable | None:
        """Read the full definition of *identifier*.

        Args:
            identifier: Schema-qualified table name.  Unquoted names are
                matched as PostgreSQL folds them (lower case).

        Returns:
            ``ActualTable``, or None if the table does not exist.
        """
        conn = self._require_connection()
        schema_name = identifier.schema_name.lower()
        table_name = identifier.name.lower()

        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ, READ ONLY")

                await cur.execute(_TABLE_OID_QUERY, (schema_name, table_name))
                row = await cur.fetchone()
                if row is None:
                    return None
                table_oid = row[0]

                await cur.execute(_COLUMNS_QUERY, (table_oid,))
                column_rows = await cur.fetchall()

                await cur.execute(_PRIMARY_KEY_QUERY, (table_oid,))
                primary_key_row = await cur.fetchone()

                await cur.execute(_INDEXES_QUERY, (table_oid,))
                index_rows = await cur.fetchall()

                await cur.execute(_FOREIGN_KEYS_QUERY, (table_oid,))
                foreign_key_rows = await cur.fetchall()

        return actual_table_from_rows(
            DbObjectName(schema_name=schema_name, name=table_name),
            column_rows,
            primary_key_row,
            index_rows,
            foreign_key_rows,
        )
