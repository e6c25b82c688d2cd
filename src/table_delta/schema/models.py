"""Pydantic models for desired and actual table schema.

This module contains schema-domain models:
- Enums: IndexMethod, SortOrder, NullsSortOrder, CascadeAction,
  SchemaPatchDifference
- Identity: DbObjectName
- Desired schema objects: Column, PrimaryKey, IndexDefinition, ForeignKey
- Actual schema objects (populated by the schema reader): ActualColumn,
  ActualPrimaryKey, ActualIndex, ActualForeignKey, ActualTable

The fluent ``Table`` builder that assembles the desired objects lives in
table_delta.schema.table.
"""

from enum import Enum, IntEnum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================


class IndexMethod(str, Enum):
    """PostgreSQL index access methods."""

    btree = "btree"
    hash = "hash"
    gist = "gist"
    gin = "gin"
    brin = "brin"
    spgist = "spgist"


DEFAULT_INDEX_METHOD = IndexMethod.btree


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


class NullsSortOrder(str, Enum):
    none = "none"  # database default for the sort order
    first = "first"
    last = "last"


class CascadeAction(str, Enum):
    """Referential action for ON DELETE / ON UPDATE."""

    NO_ACTION = "NO ACTION"
    CASCADE = "CASCADE"
    RESTRICT = "RESTRICT"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"

    @classmethod
    def from_code(cls, code: str) -> "CascadeAction":
        """Map a ``pg_constraint.confdeltype``/``confupdtype`` code.

        Example:
            >>> CascadeAction.from_code("c")
            <CascadeAction.CASCADE: 'CASCADE'>
        """
        return _CASCADE_CODES[code]


_CASCADE_CODES = {
    "a": CascadeAction.NO_ACTION,
    "c": CascadeAction.CASCADE,
    "r": CascadeAction.RESTRICT,
    "n": CascadeAction.SET_NULL,
    "d": CascadeAction.SET_DEFAULT,
}


class SchemaPatchDifference(IntEnum):
    """Severity of a schema difference, ordered by increasing impact.

    ``max()`` of several severities is the combined severity.
    """

    NONE = 0
    UPDATE = 1
    CREATE = 2
    INVALID = 3


# ============================================================================
# Identity
# ============================================================================


DEFAULT_SCHEMA = "public"

# Pseudo-types that create a sequence-backed NOT NULL integer column
SERIAL_TYPES = frozenset({"serial", "serial4", "smallserial", "serial2", "bigserial", "serial8"})


class DbObjectName(BaseModel):
    """Schema-qualified database object name.

    Example:
        >>> DbObjectName.parse("deltas.people").qualified_name
        'deltas.people'
        >>> DbObjectName.parse("people").schema_name
        'public'
    """

    model_config = ConfigDict(frozen=True)

    schema_name: str = DEFAULT_SCHEMA
    name: str

    @classmethod
    def parse(cls, text: str, default_schema: str = DEFAULT_SCHEMA) -> "DbObjectName":
        text = text.strip()
        if "." in text:
            schema_name, name = text.split(".", 1)
            return cls(schema_name=schema_name, name=name)
        return cls(schema_name=default_schema, name=text)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"

    def matches(self, other: "DbObjectName") -> bool:
        """Case-insensitive identity comparison (unquoted identifiers fold)."""
        return (
            self.schema_name.lower() == other.schema_name.lower()
            and self.name.lower() == other.name.lower()
        )

    def __str__(self) -> str:
        return self.qualified_name


class HasIdentifier(Protocol):
    """Anything that owns schema objects (a desired or actual table)."""

    @property
    def identifier(self) -> DbObjectName: ...


# ============================================================================
# Desired schema objects
# ============================================================================


class Column(BaseModel):
    """Desired column.

    Example:
        >>> Column(name="first_name", type="varchar").declaration()
        'first_name varchar'
    """

    name: str
    type: str
    allow_nulls: bool = True
    default_expression: str | None = None
    is_primary_key: bool = False

    @property
    def is_serial(self) -> bool:
        return self.type.strip().lower() in SERIAL_TYPES

    @property
    def is_not_null(self) -> bool:
        """Primary key and serial columns are always NOT NULL."""
        return self.is_primary_key or self.is_serial or not self.allow_nulls

    def declaration(self) -> str:
        """Column clause used by CREATE TABLE and ADD COLUMN."""
        parts = [self.name, self.type]
        if self.is_not_null:
            parts.append("NOT NULL")
        if self.default_expression is not None:
            parts.append(f"DEFAULT {self.default_expression}")
        return " ".join(parts)


class PrimaryKey(BaseModel):
    """Desired primary key constraint (column order is significant)."""

    name: str
    column_names: list[str]

    def to_ddl(self, table: HasIdentifier) -> str:
        return (
            f"ALTER TABLE {table.identifier.qualified_name} "
            f"ADD CONSTRAINT {self.name} PRIMARY KEY ({', '.join(self.column_names)});"
        )


def _strip_outer_parens(text: str) -> str:
    """Remove one pair of parentheses if it wraps the whole text."""
    text = text.strip()
    if not (text.startswith("(") and text.endswith(")")):
        return text
    depth = 0
    for i, char in enumerate(text):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0 and i < len(text) - 1:
                return text
    return text[1:-1].strip()


class IndexDefinition(BaseModel):
    """Desired index.

    ``expression`` may contain ``?``, which expands to the column list,
    e.g. ``"(lower(?))"`` over ``["user_name"]``.

    Example:
        >>> idx = IndexDefinition(name="idx_people_user_name", columns=["user_name"])
        >>> idx.is_unique = True
    """

    name: str | None = None
    columns: list[str] = Field(default_factory=list)
    expression: str | None = None
    method: IndexMethod = DEFAULT_INDEX_METHOD
    is_unique: bool = False
    is_concurrent: bool = False
    sort_order: SortOrder = SortOrder.asc
    nulls_sort_order: NullsSortOrder = NullsSortOrder.none
    predicate: str | None = None
    operator_class: str | None = None
    storage_parameters: dict[str, str] = Field(default_factory=dict)

    def name_for(self, table: HasIdentifier) -> str:
        """Explicit name, or ``idx_{table}_{columns}``."""
        if self.name:
            return self.name
        return f"idx_{table.identifier.name}_{'_'.join(self.columns)}"

    def to_gin_with_jsonb_path_ops(self) -> "IndexDefinition":
        """Switch to a GIN index with the ``jsonb_path_ops`` operator class."""
        self.method = IndexMethod.gin
        self.operator_class = "jsonb_path_ops"
        return self

    def _sort_suffix(self) -> str:
        parts: list[str] = []
        if self.operator_class:
            parts.append(self.operator_class)
        if self.sort_order == SortOrder.desc:
            parts.append("DESC")
        # Only emit NULLS when it differs from the sort order's default
        if self.nulls_sort_order == NullsSortOrder.first and self.sort_order == SortOrder.asc:
            parts.append("NULLS FIRST")
        elif self.nulls_sort_order == NullsSortOrder.last and self.sort_order == SortOrder.desc:
            parts.append("NULLS LAST")
        return (" " + " ".join(parts)) if parts else ""

    def _key_items(self) -> list[str]:
        if self.expression:
            expanded = self.expression.replace("?", ", ".join(self.columns))
            return [_strip_outer_parens(expanded)]
        return list(self.columns)

    def to_ddl(self, table: HasIdentifier) -> str:
        """Render the CREATE INDEX statement.

        Example:
            CREATE UNIQUE INDEX idx_people_user_name ON deltas.people USING btree (user_name);
        """
        suffix = self._sort_suffix()
        keys = ", ".join(f"{item}{suffix}" for item in self._key_items())

        parts = ["CREATE"]
        if self.is_unique:
            parts.append("UNIQUE")
        parts.append("INDEX")
        if self.is_concurrent:
            parts.append("CONCURRENTLY")
        parts.extend([
            self.name_for(table),
            "ON",
            table.identifier.qualified_name,
            "USING",
            self.method.value,
            f"({keys})",
        ])
        if self.storage_parameters:
            params = ", ".join(f"{k}='{v}'" for k, v in self.storage_parameters.items())
            parts.append(f"WITH ({params})")
        if self.predicate:
            parts.append(f"WHERE ({_strip_outer_parens(self.predicate)})")

        return " ".join(parts) + ";"


def _referential_clause(on_delete: CascadeAction, on_update: CascadeAction) -> str:
    clause = ""
    if on_delete != CascadeAction.NO_ACTION:
        clause += f" ON DELETE {on_delete.value}"
    if on_update != CascadeAction.NO_ACTION:
        clause += f" ON UPDATE {on_update.value}"
    return clause


class ForeignKey(BaseModel):
    """Desired foreign key.  ``column_names[i]`` references ``linked_names[i]``."""

    name: str
    column_names: list[str]
    linked_table: DbObjectName
    linked_names: list[str]
    on_delete: CascadeAction = CascadeAction.NO_ACTION
    on_update: CascadeAction = CascadeAction.NO_ACTION

    @staticmethod
    def default_name(table: HasIdentifier, column_names: list[str]) -> str:
        return f"fkey_{table.identifier.name}_{'_'.join(column_names)}"

    def to_ddl(self, table: HasIdentifier) -> str:
        return (
            f"ALTER TABLE {table.identifier.qualified_name} "
            f"ADD CONSTRAINT {self.name} FOREIGN KEY ({', '.join(self.column_names)}) "
            f"REFERENCES {self.linked_table.qualified_name} ({', '.join(self.linked_names)})"
            f"{_referential_clause(self.on_delete, self.on_update)};"
        )


# ============================================================================
# Actual schema objects (read-only, populated by the schema reader)
# ============================================================================


class ActualColumn(BaseModel):
    """Column as observed in the live database."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    allow_nulls: bool = True
    default_expression: str | None = None


class ActualPrimaryKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    column_names: list[str]


class ActualIndex(BaseModel):
    """Index as observed in the live database.

    ``ddl`` is the definition reported by ``pg_get_indexdef()``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    ddl: str


class ActualForeignKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    column_names: list[str]
    linked_table: DbObjectName
    linked_names: list[str]
    on_delete: CascadeAction = CascadeAction.NO_ACTION
    on_update: CascadeAction = CascadeAction.NO_ACTION


class ActualTable(BaseModel):
    """Table as observed in the live database.

    Example:
        >>> actual = ActualTable(
        ...     identifier=DbObjectName.parse("deltas.people"),
        ...     columns=[ActualColumn(name="id", type="integer", allow_nulls=False)],
        ... )
        >>> actual.column_for("ID").name
        'id'
    """

    model_config = ConfigDict(frozen=True)

    identifier: DbObjectName
    columns: list[ActualColumn] = Field(default_factory=list)
    primary_key: ActualPrimaryKey | None = None
    indexes: list[ActualIndex] = Field(default_factory=list)
    foreign_keys: list[ActualForeignKey] = Field(default_factory=list)

    def column_for(self, name: str) -> ActualColumn | None:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    def summary(self) -> dict[str, Any]:
        """Counts per category, for logging."""
        return {
            "columns": len(self.columns),
            "primary_key": self.primary_key.column_names if self.primary_key else None,
            "indexes": len(self.indexes),
            "foreign_keys": len(self.foreign_keys),
        }
