"""DDL patch generation -- turn a ``TableDelta`` into ordered DDL.

Statements are grouped into phases so that dependent objects are removed
before the objects they depend on and created after them:

1. ``drop``: extra/different foreign keys, extra/different indexes and the
   old primary key
2. ``columns``: drop extra columns, add missing ones, alter different ones
3. ``primary_key``: the desired primary key
4. ``indexes``: missing and different indexes, in their desired form
5. ``foreign_keys``: missing and different foreign keys, in their desired form

Generation is side-effect free; executing the patch is the job of
``table_delta.schema.migrator.apply_patch``.

Usage:
    from table_delta.schema.delta import find_delta
    from table_delta.schema.patch import build_patch

    patch = build_patch(find_delta(people, actual))
    patch.raise_if_irreconcilable()
    print(patch.to_script())
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from table_delta.errors import IrreconcilableSchemaError
from table_delta.schema.canonical import canonicalize_type
from table_delta.schema.delta import (
    InvalidChange,
    TableDelta,
    defaults_match,
    find_delta,
)
from table_delta.schema.models import (
    DEFAULT_SCHEMA,
    ActualColumn,
    ActualTable,
    Column,
    DbObjectName,
    IndexDefinition,
    SchemaPatchDifference,
)
from table_delta.schema.table import Table

logger = logging.getLogger(__name__)


class PatchPhase(str, Enum):
    """Execution phase of a patch statement, in execution order."""

    CREATE = "create"
    DROP = "drop"
    COLUMNS = "columns"
    PRIMARY_KEY = "primary_key"
    INDEXES = "indexes"
    FOREIGN_KEYS = "foreign_keys"


@dataclass(frozen=True)
class PatchStatement:
    """One DDL statement.

    ``transactional`` is False for statements PostgreSQL refuses to run
    inside a transaction block (``CREATE INDEX CONCURRENTLY``).
    """

    sql: str
    phase: PatchPhase
    transactional: bool = True


@dataclass
class SchemaPatch:
    """Ordered DDL that reconciles one table.

    Attributes:
        table: The table being patched.
        difference: Severity of the delta the patch was built from.
        statements: Statements in execution order.
        invalid_changes: Changes that were left out because incremental DDL
            cannot express them.
    """

    table: DbObjectName
    difference: SchemaPatchDifference
    statements: list[PatchStatement] = field(default_factory=list)
    invalid_changes: list[InvalidChange] = field(default_factory=list)

    @property
    def is_reconcilable(self) -> bool:
        return not self.invalid_changes

    @property
    def has_statements(self) -> bool:
        return bool(self.statements)

    def add(self, sql: str, phase: PatchPhase, transactional: bool = True) -> None:
        self.statements.append(PatchStatement(sql=sql, phase=phase, transactional=transactional))

    def raise_if_irreconcilable(self) -> None:
        """Raise ``IrreconcilableSchemaError`` if any change was left out."""
        if self.invalid_changes:
            raise IrreconcilableSchemaError(self.table.qualified_name, self.invalid_changes)

    def to_script(self) -> str:
        """Render the statements as a SQL script, one comment per phase."""
        lines: list[str] = []
        phase = None
        for statement in self.statements:
            if statement.phase != phase:
                phase = statement.phase
                if lines:
                    lines.append("")
                lines.append(f"-- {self.table.qualified_name}: {phase.value}")
            lines.append(statement.sql)
        for change in self.invalid_changes:
            lines.append(f"-- NOT APPLIED: {change.describe()}")
        return "\n".join(lines)


# ------------------------------------------------------------------
# Statement helpers
# ------------------------------------------------------------------


def _drop_constraint(table: DbObjectName, name: str) -> str:
    return f"ALTER TABLE {table.qualified_name} DROP CONSTRAINT IF EXISTS {name};"


def _drop_index(table: DbObjectName, name: str) -> str:
    return f"DROP INDEX IF EXISTS {table.schema_name}.{name};"


def _column_type_for_alter(column: Column) -> str:
    # serial is only valid in CREATE TABLE / ADD COLUMN
    if column.is_serial:
        return canonicalize_type(column.type)
    return column.type


def _alter_column(
    table: DbObjectName,
    expected: Column,
    actual: ActualColumn,
    synonyms: Mapping[str, str] | None,
) -> list[str]:
    """ALTER COLUMN statements turning *actual* into *expected*."""
    prefix = f"ALTER TABLE {table.qualified_name} ALTER COLUMN {expected.name}"
    statements: list[str] = []

    if canonicalize_type(expected.type, synonyms) != canonicalize_type(actual.type, synonyms):
        column_type = _column_type_for_alter(expected)
        statements.append(f"{prefix} TYPE {column_type} USING {expected.name}::{column_type};")

    if expected.is_not_null and actual.allow_nulls:
        statements.append(f"{prefix} SET NOT NULL;")
    elif not expected.is_not_null and not actual.allow_nulls:
        statements.append(f"{prefix} DROP NOT NULL;")

    if not defaults_match(expected, actual):
        if expected.default_expression is None:
            statements.append(f"{prefix} DROP DEFAULT;")
        else:
            statements.append(f"{prefix} SET DEFAULT {expected.default_expression};")

    return statements


def _add_index(patch: SchemaPatch, index: IndexDefinition, table: Table) -> None:
    patch.add(index.to_ddl(table), PatchPhase.INDEXES, transactional=not index.is_concurrent)


def _add_create_statements(patch: SchemaPatch, table: Table) -> None:
    identifier = table.identifier
    if identifier.schema_name.lower() != DEFAULT_SCHEMA:
        patch.add(f"CREATE SCHEMA IF NOT EXISTS {identifier.schema_name};", PatchPhase.CREATE)
    patch.add(table.to_create_ddl(), PatchPhase.CREATE)
    for index in table.indexes:
        _add_index(patch, index, table)
    for foreign_key in table.foreign_keys:
        patch.add(foreign_key.to_ddl(table), PatchPhase.FOREIGN_KEYS)


# ------------------------------------------------------------------
# Patch generation
# ------------------------------------------------------------------


def build_patch(delta: TableDelta) -> SchemaPatch:
    """Generate the DDL that reconciles the actual table into the desired one.

    Args:
        delta: Result of ``find_delta(desired, actual)``.

    Returns:
        ``SchemaPatch``; empty when the delta has no changes.  For an
        ``INVALID`` delta the column alterations that cannot be expressed
        are omitted and listed in ``invalid_changes``.

    Raises:
        MalformedDefinitionError: If the desired table violates its own
            invariants.

    Example:
        patch = build_patch(find_delta(people, actual))
        for statement in patch.statements:
            print(statement.phase.value, statement.sql)
    """
    table = delta.table
    table.validate()

    identifier = table.identifier
    patch = SchemaPatch(table=identifier, difference=delta.difference)

    if delta.difference == SchemaPatchDifference.NONE:
        return patch

    if delta.difference == SchemaPatchDifference.CREATE or delta.actual is None:
        _add_create_statements(patch, table)
        logger.debug("Patch for %s creates the table (%d statements)", identifier, len(patch.statements))
        return patch

    actual = delta.actual
    invalid_columns = {change.name.lower() for change in delta.invalid_changes if change.category == "column"}
    patch.invalid_changes = list(delta.invalid_changes)

    # 1. Drops
    for foreign_key in delta.foreign_keys.extras:
        patch.add(_drop_constraint(identifier, foreign_key.name), PatchPhase.DROP)
    for change in delta.foreign_keys.different:
        patch.add(_drop_constraint(identifier, change.actual.name), PatchPhase.DROP)

    for index in delta.indexes.extras:
        patch.add(_drop_index(identifier, index.name), PatchPhase.DROP)
    for change in delta.indexes.different:
        patch.add(_drop_index(identifier, change.actual.name), PatchPhase.DROP)

    if delta.primary_key_difference != SchemaPatchDifference.NONE and actual.primary_key is not None:
        patch.add(_drop_constraint(identifier, actual.primary_key.name), PatchPhase.DROP)

    # 2. Columns
    for column in delta.columns.extras:
        patch.add(
            f"ALTER TABLE {identifier.qualified_name} DROP COLUMN IF EXISTS {column.name};",
            PatchPhase.COLUMNS,
        )
    for column in delta.columns.missing:
        patch.add(
            f"ALTER TABLE {identifier.qualified_name} ADD COLUMN {column.declaration()};",
            PatchPhase.COLUMNS,
        )
    for change in delta.columns.different:
        if change.expected.name.lower() in invalid_columns:
            continue
        for sql in _alter_column(identifier, change.expected, change.actual, delta.synonyms):
            patch.add(sql, PatchPhase.COLUMNS)

    # 3. Primary key
    primary_key = table.primary_key
    if delta.primary_key_difference != SchemaPatchDifference.NONE and primary_key is not None:
        patch.add(primary_key.to_ddl(table), PatchPhase.PRIMARY_KEY)

    # 4. Indexes
    for index in delta.indexes.missing:
        _add_index(patch, index, table)
    for change in delta.indexes.different:
        _add_index(patch, change.expected, table)

    # 5. Foreign keys
    for foreign_key in delta.foreign_keys.missing:
        patch.add(foreign_key.to_ddl(table), PatchPhase.FOREIGN_KEYS)
    for change in delta.foreign_keys.different:
        patch.add(change.expected.to_ddl(table), PatchPhase.FOREIGN_KEYS)

    if patch.invalid_changes:
        logger.warning(
            "Patch for %s omits %d irreconcilable change(s)",
            identifier,
            len(patch.invalid_changes),
        )
    logger.debug("Patch for %s has %d statements", identifier, len(patch.statements))
    return patch


def build_rebuild_patch(table: Table) -> SchemaPatch:
    """Drop and recreate *table*.

    Destroys the table's data.  Only used when the caller explicitly opts
    in, typically to resolve an ``INVALID`` delta.
    """
    table.validate()
    patch = SchemaPatch(table=table.identifier, difference=SchemaPatchDifference.CREATE)
    patch.add(f"DROP TABLE IF EXISTS {table.identifier.qualified_name} CASCADE;", PatchPhase.DROP)
    _add_create_statements(patch, table)
    logger.info("Rebuild patch generated for %s", table.identifier)
    return patch


def build_patch_for(
    table: Table,
    actual: ActualTable | None,
    synonyms: Mapping[str, str] | None = None,
) -> SchemaPatch:
    """Shortcut for ``build_patch(find_delta(table, actual, synonyms))``."""
    return build_patch(find_delta(table, actual, synonyms))
