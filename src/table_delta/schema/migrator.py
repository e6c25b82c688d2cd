"""Fetch, compare, patch and apply -- one table at a time.

Composes the schema reader, the delta detector, the patch generator and a
``DatabaseClient`` into the end-to-end "make the live table look like the
desired one" operation.

Usage:
    from table_delta.schema.migrator import apply_changes, assert_no_changes

    async with SchemaIntrospector(url) as reader:
        result = await apply_changes(adapter, reader, people)
        if result.success:
            await assert_no_changes(reader, people)
"""

import logging
from collections.abc import Mapping

from pydantic import BaseModel

from table_delta.adapters.base import DatabaseClient
from table_delta.errors import DdlExecutionError
from table_delta.schema.delta import TableDelta, find_delta
from table_delta.schema.introspector import SchemaReader
from table_delta.schema.models import ActualTable
from table_delta.schema.patch import SchemaPatch, build_patch
from table_delta.schema.table import Table

logger = logging.getLogger(__name__)


class PatchResult(BaseModel):
    """Result of applying a schema patch.

    Attributes:
        success: True if every statement was applied (or, for a dry run,
            would have been).
        dry_run: True if nothing was executed.
        statements_executed: Number of statements executed.
        error: Error message if application failed.
        failed_statement: The statement that failed, if any.
    """

    success: bool = False
    dry_run: bool = False
    statements_executed: int = 0
    error: str | None = None
    failed_statement: str | None = None


async def fetch_existing(reader: SchemaReader, table: Table) -> ActualTable | None:
    """Read the live definition of *table* through *reader*."""
    actual = await reader.fetch_existing(table.identifier)
    if actual is None:
        logger.debug("Table %s not found", table.identifier)
    else:
        logger.debug("Fetched %s: %s", table.identifier, actual.summary())
    return actual


async def find_table_delta(
    reader: SchemaReader,
    table: Table,
    synonyms: Mapping[str, str] | None = None,
) -> TableDelta:
    """Fetch the live table and compare it with *table*."""
    actual = await fetch_existing(reader, table)
    return find_delta(table, actual, synonyms)


async def apply_patch(
    client: DatabaseClient,
    patch: SchemaPatch,
    *,
    dry_run: bool = False,
) -> PatchResult:
    """Execute a schema patch.

    Transactional statements run in one batch (all or nothing);
    non-transactional ones (``CREATE INDEX CONCURRENTLY``) run afterwards
    one by one in autocommit mode.

    Args:
        client: Adapter implementing ``DatabaseClient``.
        patch: Patch from ``build_patch()`` or ``build_rebuild_patch()``.
        dry_run: If True, only report what would be done.

    Returns:
        ``PatchResult``.  Execution failures are reported in ``error`` and
        ``failed_statement`` rather than raised.

    Raises:
        IrreconcilableSchemaError: If the patch omits irreconcilable changes.

    Example:
        result = await apply_patch(adapter, patch)
        if not result.success:
            print(f"Failed: {result.error}\\n{result.failed_statement}")
    """
    patch.raise_if_irreconcilable()

    result = PatchResult(dry_run=dry_run)

    if not patch.has_statements:
        result.success = True
        return result

    if dry_run:
        result.success = True
        return result

    batch = [s.sql for s in patch.statements if s.transactional]
    deferred = [s.sql for s in patch.statements if not s.transactional]

    try:
        if batch:
            await client.execute_batch(batch)
            result.statements_executed += len(batch)

        for sql in deferred:
            await client.execute(sql, autocommit=True)
            result.statements_executed += 1
    except DdlExecutionError as e:
        logger.error("Patch for %s failed: %s", patch.table, e.cause)
        result.error = str(e.cause)
        result.failed_statement = e.statement
        return result

    logger.info(
        "Applied %d statement(s) to %s", result.statements_executed, patch.table
    )
    result.success = True
    return result


async def apply_changes(
    client: DatabaseClient,
    reader: SchemaReader,
    table: Table,
    synonyms: Mapping[str, str] | None = None,
) -> PatchResult:
    """Reconcile the live table with *table*.

    Raises:
        MalformedDefinitionError: If *table* violates its own invariants.
        IrreconcilableSchemaError: If the live table cannot be patched
            incrementally.
    """
    delta = await find_table_delta(reader, table, synonyms)
    patch = build_patch(delta)
    return await apply_patch(client, patch)


async def assert_no_changes(
    reader: SchemaReader,
    table: Table,
    synonyms: Mapping[str, str] | None = None,
) -> None:
    """Re-read the live table and confirm it matches *table*.

    Raises:
        AssertionError: If any difference remains, with the delta report.
    """
    delta = await find_table_delta(reader, table, synonyms)
    if delta.has_changes():
        raise AssertionError(f"Expected no changes, but found:\n{delta.format_report()}")
