"""Delta detection between a desired table and the live table.

Correlates schema objects by name, category by category (columns, primary
key, indexes, foreign keys), and classifies the result with a single
``SchemaPatchDifference`` severity.
Pure logic -- no I/O, no database connections.

Usage:
    from table_delta.schema.delta import find_delta
    from table_delta.schema.introspector import SchemaIntrospector

    async with SchemaIntrospector(database_url) as introspector:
        actual = await introspector.fetch_existing(people.identifier)

    delta = find_delta(people, actual)
    if delta.has_changes():
        print(delta.format_report())
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from table_delta.schema.canonical import (
    base_type,
    canonicalize_ddl,
    canonicalize_default,
    canonicalize_type,
    type_modifier,
)
from table_delta.schema.models import (
    ActualColumn,
    ActualForeignKey,
    ActualIndex,
    ActualTable,
    Column,
    ForeignKey,
    IndexDefinition,
    SchemaPatchDifference,
)
from table_delta.schema.table import Table

logger = logging.getLogger(__name__)

E = TypeVar("E")
A = TypeVar("A")


# ============================================================================
# Result types
# ============================================================================


@dataclass(frozen=True)
class Change(Generic[E, A]):
    """A desired object paired with the actual object of the same name."""

    expected: E
    actual: A

    @property
    def name(self) -> str:
        return self.actual.name


@dataclass(frozen=True)
class ItemDelta(Generic[E, A]):
    """Reconciliation of one schema object category.

    Attributes:
        matched: Correlated pairs whose definitions are equivalent.
        missing: Desired objects with no actual counterpart.
        extras: Actual objects with no desired counterpart.
        different: Correlated pairs whose definitions differ.
    """

    matched: tuple[Change[E, A], ...] = ()
    missing: tuple[E, ...] = ()
    extras: tuple[A, ...] = ()
    different: tuple[Change[E, A], ...] = ()

    def has_changes(self) -> bool:
        return bool(self.missing or self.extras or self.different)

    def difference(self) -> SchemaPatchDifference:
        return SchemaPatchDifference.UPDATE if self.has_changes() else SchemaPatchDifference.NONE


@dataclass(frozen=True)
class InvalidChange:
    """A detected change that incremental DDL cannot express safely."""

    category: str
    name: str
    expected: str
    actual: str
    reason: str

    def describe(self) -> str:
        return (
            f"{self.category} '{self.name}': expected {self.expected}, "
            f"actual {self.actual} ({self.reason})"
        )


@dataclass(frozen=True)
class TableDelta:
    """Comparison result for one table.

    ``table`` is the copy of the desired table taken when the delta was
    computed, so a patch built later matches what was compared.

    Example:
        >>> delta = find_delta(people, None)
        >>> delta.difference
        <SchemaPatchDifference.CREATE: 2>
    """

    table: Table
    actual: ActualTable | None
    columns: ItemDelta[Column, ActualColumn] = field(default_factory=ItemDelta)
    indexes: ItemDelta[IndexDefinition, ActualIndex] = field(default_factory=ItemDelta)
    foreign_keys: ItemDelta[ForeignKey, ActualForeignKey] = field(default_factory=ItemDelta)
    primary_key_difference: SchemaPatchDifference = SchemaPatchDifference.NONE
    difference: SchemaPatchDifference = SchemaPatchDifference.NONE
    invalid_changes: tuple[InvalidChange, ...] = ()
    synonyms: Mapping[str, str] | None = field(default=None, repr=False, compare=False)

    def has_changes(self) -> bool:
        return self.difference != SchemaPatchDifference.NONE

    def format_report(self) -> str:
        """Format the delta as a human-readable report."""
        name = self.table.identifier.qualified_name
        if self.difference == SchemaPatchDifference.NONE:
            return f"{name}: no changes"
        if self.difference == SchemaPatchDifference.CREATE:
            return f"{name}: table does not exist and will be created"

        lines = [f"{name}: {self.difference.name}"]
        categories: list[tuple[str, ItemDelta[Any, Any]]] = [
            ("Columns", self.columns),
            ("Indexes", self.indexes),
            ("Foreign keys", self.foreign_keys),
        ]
        for label, item_delta in categories:
            if not item_delta.has_changes():
                continue
            lines.append(f"\n  {label}:")
            for item in item_delta.missing:
                lines.append(f"    + {_item_name(item, self.table)}")
            for item in item_delta.extras:
                lines.append(f"    - {item.name}")
            for change in item_delta.different:
                lines.append(f"    ~ {change.name}")

        if self.primary_key_difference != SchemaPatchDifference.NONE:
            expected = self.table.primary_key_columns
            actual = self.actual.primary_key.column_names if self.actual and self.actual.primary_key else []
            lines.append(f"\n  Primary key: {actual or '(none)'} -> {expected or '(none)'}")

        if self.invalid_changes:
            lines.append("\n  Irreconcilable changes:")
            for change in self.invalid_changes:
                lines.append(f"    ! {change.describe()}")

        return "\n".join(lines)


def _item_name(item: Any, table: Table) -> str:
    if isinstance(item, IndexDefinition):
        return item.name_for(table)
    return item.name


# ============================================================================
# Columns
# ============================================================================


def defaults_match(expected: Column, actual: ActualColumn) -> bool:
    """True if the column defaults are equivalent.

    A serial column with no declared default matches the ``nextval(...)``
    default PostgreSQL creates for it.
    """
    if (
        expected.default_expression is None
        and expected.is_serial
        and actual.default_expression is not None
        and actual.default_expression.strip().lower().startswith("nextval(")
    ):
        return True
    return canonicalize_default(expected.default_expression) == canonicalize_default(
        actual.default_expression
    )


def _columns_match(
    expected: Column,
    actual: ActualColumn,
    synonyms: Mapping[str, str] | None,
) -> bool:
    return (
        canonicalize_type(expected.type, synonyms) == canonicalize_type(actual.type, synonyms)
        and expected.is_not_null == (not actual.allow_nulls)
        and defaults_match(expected, actual)
    )


# Base types that each base type can be widened into without data loss
_WIDENINGS: dict[str, frozenset[str]] = {
    "int2": frozenset({"int4", "int8", "numeric"}),
    "int4": frozenset({"int8", "numeric"}),
    "int8": frozenset({"numeric"}),
    "float4": frozenset({"float8"}),
    "char": frozenset({"varchar", "text"}),
    "varchar": frozenset({"text"}),
    "text": frozenset({"varchar"}),
}

_LENGTH_TYPES = frozenset({"varchar", "char", "bit", "varbit"})
_PRECISION_TYPES = frozenset({"timestamp", "timestamptz", "time", "timetz", "interval"})


def _modifier_reason(
    base: str,
    expected_mod: tuple[int, ...] | None,
    actual_mod: tuple[int, ...] | None,
) -> str | None:
    """Reason a same-type modifier change loses data, or None if lossless."""
    if expected_mod is None:
        return None
    if actual_mod is None:
        return f"adds a {base} modifier to an unbounded column"

    if base in _LENGTH_TYPES or base in _PRECISION_TYPES:
        if expected_mod[0] >= actual_mod[0]:
            return None
        return f"{base} shrinks from {actual_mod[0]} to {expected_mod[0]}"

    if base == "numeric":
        expected_scale = expected_mod[1] if len(expected_mod) > 1 else 0
        actual_scale = actual_mod[1] if len(actual_mod) > 1 else 0
        if expected_scale == actual_scale and expected_mod[0] >= actual_mod[0]:
            return None
        return "numeric precision or scale is reduced or rescaled"

    return f"{base} modifier changes"


def type_change_reason(
    expected_type: str,
    actual_type: str,
    synonyms: Mapping[str, str] | None = None,
) -> str | None:
    """Why changing *actual_type* into *expected_type* is not incremental.

    Returns None when the types are equivalent or the change is a lossless
    widening (``int4 -> int8``, ``varchar(20) -> varchar(50)``,
    ``varchar -> text``, ...).

    Examples:
        >>> type_change_reason("bigint", "integer") is None
        True
        >>> type_change_reason("integer", "varchar")
        'type changes from varchar to int4'
    """
    expected = canonicalize_type(expected_type, synonyms)
    actual = canonicalize_type(actual_type, synonyms)
    if expected == actual:
        return None

    if expected.count("[]") != actual.count("[]"):
        return "array dimensions change"

    expected_base, actual_base = base_type(expected), base_type(actual)
    expected_mod, actual_mod = type_modifier(expected), type_modifier(actual)

    if expected_base == actual_base:
        return _modifier_reason(expected_base, expected_mod, actual_mod)

    if expected_base in _WIDENINGS.get(actual_base, frozenset()):
        if expected_base in _LENGTH_TYPES and expected_mod is not None:
            if actual_mod is None or expected_mod[0] < actual_mod[0]:
                return f"{expected} is narrower than {actual}"
        if expected_base == "numeric" and expected_mod is not None:
            return f"{expected} may not hold every {actual} value"
        return None

    return f"type changes from {actual} to {expected}"


def _compare_columns(
    desired: Table,
    actual: ActualTable,
    synonyms: Mapping[str, str] | None,
) -> tuple[ItemDelta[Column, ActualColumn], list[InvalidChange]]:
    remaining = {column.name.lower(): column for column in actual.columns}
    matched: list[Change[Column, ActualColumn]] = []
    missing: list[Column] = []
    different: list[Change[Column, ActualColumn]] = []
    invalid: list[InvalidChange] = []

    for column in desired.columns:
        existing = remaining.pop(column.name.lower(), None)
        if existing is None:
            missing.append(column)
            continue

        change = Change(column, existing)
        if _columns_match(column, existing, synonyms):
            matched.append(change)
            continue

        different.append(change)
        reason = type_change_reason(column.type, existing.type, synonyms)
        if reason is not None:
            invalid.append(
                InvalidChange(
                    category="column",
                    name=column.name,
                    expected=column.type,
                    actual=existing.type,
                    reason=reason,
                )
            )

    extras = [column for column in actual.columns if column.name.lower() in remaining]

    return (
        ItemDelta(
            matched=tuple(matched),
            missing=tuple(missing),
            extras=tuple(extras),
            different=tuple(different),
        ),
        invalid,
    )


# ============================================================================
# Primary key
# ============================================================================


def _compare_primary_key(desired: Table, actual: ActualTable) -> SchemaPatchDifference:
    """NONE when both tables key on the same ordered columns, else UPDATE.

    Constraint names are not compared: a renamed key on the same columns is
    the same key.
    """
    expected = [name.lower() for name in desired.primary_key_columns]
    existing = (
        [name.lower() for name in actual.primary_key.column_names]
        if actual.primary_key is not None
        else []
    )
    if expected == existing:
        return SchemaPatchDifference.NONE
    return SchemaPatchDifference.UPDATE


# ============================================================================
# Indexes
# ============================================================================


def _compare_indexes(
    desired: Table,
    actual: ActualTable,
) -> ItemDelta[IndexDefinition, ActualIndex]:
    remaining = {index.name.lower(): index for index in actual.indexes}
    matched: list[Change[IndexDefinition, ActualIndex]] = []
    missing: list[IndexDefinition] = []
    different: list[Change[IndexDefinition, ActualIndex]] = []

    for index in desired.indexes:
        existing = remaining.pop(index.name_for(desired).lower(), None)
        if existing is None:
            missing.append(index)
        elif canonicalize_ddl(index, desired) == canonicalize_ddl(existing, desired):
            matched.append(Change(index, existing))
        else:
            different.append(Change(index, existing))

    extras = [index for index in actual.indexes if index.name.lower() in remaining]

    return ItemDelta(
        matched=tuple(matched),
        missing=tuple(missing),
        extras=tuple(extras),
        different=tuple(different),
    )


# ============================================================================
# Foreign keys
# ============================================================================


def _foreign_keys_match(expected: ForeignKey, actual: ActualForeignKey) -> bool:
    return (
        expected.linked_table.matches(actual.linked_table)
        and [c.lower() for c in expected.column_names] == [c.lower() for c in actual.column_names]
        and [c.lower() for c in expected.linked_names] == [c.lower() for c in actual.linked_names]
        and expected.on_delete == actual.on_delete
        and expected.on_update == actual.on_update
    )


def _compare_foreign_keys(
    desired: Table,
    actual: ActualTable,
) -> ItemDelta[ForeignKey, ActualForeignKey]:
    remaining = {fk.name.lower(): fk for fk in actual.foreign_keys}
    matched: list[Change[ForeignKey, ActualForeignKey]] = []
    missing: list[ForeignKey] = []
    different: list[Change[ForeignKey, ActualForeignKey]] = []

    for foreign_key in desired.foreign_keys:
        existing = remaining.pop(foreign_key.name.lower(), None)
        if existing is None:
            missing.append(foreign_key)
        elif _foreign_keys_match(foreign_key, existing):
            matched.append(Change(foreign_key, existing))
        else:
            different.append(Change(foreign_key, existing))

    extras = [fk for fk in actual.foreign_keys if fk.name.lower() in remaining]

    return ItemDelta(
        matched=tuple(matched),
        missing=tuple(missing),
        extras=tuple(extras),
        different=tuple(different),
    )


# ============================================================================
# Entry point
# ============================================================================


def find_delta(
    desired: Table,
    actual: ActualTable | None,
    synonyms: Mapping[str, str] | None = None,
) -> TableDelta:
    """Compare a desired table with the live table.

    Args:
        desired: The table as the application declares it.
        actual: The table as the schema reader observed it, or ``None`` if
            it does not exist.
        synonyms: Type synonym table for column type comparison (defaults
            to ``DEFAULT_TYPE_SYNONYMS``).

    Returns:
        ``TableDelta`` with per-category reconciliation and the overall
        severity:

        - ``CREATE`` when *actual* is ``None``
        - ``INVALID`` when a column type change would lose or reinterpret data
        - ``UPDATE`` when anything else is missing, extra or different
        - ``NONE`` otherwise

    Raises:
        MalformedDefinitionError: If *desired* violates its own invariants.
    """
    desired.validate()
    # Later edits to the caller's table must not leak into the delta
    desired = desired.copy()

    if actual is None:
        logger.debug("Table %s does not exist", desired.identifier)
        return TableDelta(
            table=desired,
            actual=None,
            columns=ItemDelta(missing=tuple(desired.columns)),
            indexes=ItemDelta(missing=tuple(desired.indexes)),
            foreign_keys=ItemDelta(missing=tuple(desired.foreign_keys)),
            primary_key_difference=(
                SchemaPatchDifference.CREATE
                if desired.primary_key is not None
                else SchemaPatchDifference.NONE
            ),
            difference=SchemaPatchDifference.CREATE,
        )

    columns, invalid = _compare_columns(desired, actual, synonyms)
    primary_key_difference = _compare_primary_key(desired, actual)
    indexes = _compare_indexes(desired, actual)
    foreign_keys = _compare_foreign_keys(desired, actual)

    difference = max(
        columns.difference(),
        primary_key_difference,
        indexes.difference(),
        foreign_keys.difference(),
    )
    if invalid:
        difference = SchemaPatchDifference.INVALID
        logger.warning(
            "Table %s has %d irreconcilable change(s)", desired.identifier, len(invalid)
        )

    logger.debug(
        "Delta for %s: columns=%s primary_key=%s indexes=%s foreign_keys=%s -> %s",
        desired.identifier,
        columns.difference().name,
        primary_key_difference.name,
        indexes.difference().name,
        foreign_keys.difference().name,
        difference.name,
    )

    return TableDelta(
        table=desired,
        actual=actual,
        columns=columns,
        indexes=indexes,
        foreign_keys=foreign_keys,
        primary_key_difference=primary_key_difference,
        difference=difference,
        invalid_changes=tuple(invalid),
        synonyms=synonyms,
    )
