"""Fluent builder for the desired table schema.

Usage:
    from table_delta.schema.table import Table

    people = Table("deltas.people")
    people.add_column("id", int).as_primary_key()
    people.add_column("first_name", str)
    people.add_column("user_name", str).add_index(is_unique=True)
    people.add_column("data", "jsonb").add_index(lambda i: i.to_gin_with_jsonb_path_ops())
    people.add_column("state_id", int).foreign_key_to(states, "id")

The application owns and mutates a ``Table``; the delta detector and patch
generator only read it.
"""

from collections.abc import Callable
from typing import Any

from table_delta.errors import MalformedDefinitionError
from table_delta.schema.models import (
    CascadeAction,
    Column,
    DbObjectName,
    ForeignKey,
    IndexDefinition,
    PrimaryKey,
)
from table_delta.types import DEFAULT_PROVIDER, EnumStorage, TypeProvider


class Table:
    """Desired state of one table.

    Column order is kept for DDL generation only; comparisons correlate
    columns, indexes and foreign keys by name.
    """

    def __init__(
        self,
        identifier: str | DbObjectName,
        provider: TypeProvider | None = None,
    ):
        if isinstance(identifier, DbObjectName):
            self.identifier = identifier
        else:
            self.identifier = DbObjectName.parse(identifier)
        self.columns: list[Column] = []
        self.indexes: list[IndexDefinition] = []
        self.foreign_keys: list[ForeignKey] = []
        self.primary_key_name: str | None = None
        self._provider = provider or DEFAULT_PROVIDER

    def __repr__(self) -> str:
        return f"Table({self.identifier.qualified_name!r})"

    def copy(self) -> "Table":
        """Independent copy; later changes to either table do not affect the other."""
        clone = Table(self.identifier, provider=self._provider)
        clone.columns = [column.model_copy() for column in self.columns]
        clone.indexes = [index.model_copy(deep=True) for index in self.indexes]
        clone.foreign_keys = [foreign_key.model_copy(deep=True) for foreign_key in self.foreign_keys]
        clone.primary_key_name = self.primary_key_name
        return clone

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def add_column(
        self,
        name: str,
        column_type: str | type,
        enum_storage: EnumStorage = EnumStorage.AS_INTEGER,
    ) -> "ColumnExpression":
        """Add a column declared with a database type name or a Python type.

        Raises:
            MalformedDefinitionError: If a column with this name already exists.
            UnsupportedMappingError: If *column_type* is a Python type the
                type provider cannot map.
        """
        if self.has_column(name):
            raise MalformedDefinitionError(
                self.identifier.qualified_name, "column", name, "duplicate column name"
            )

        if isinstance(column_type, str):
            type_name = column_type
        else:
            type_name = self._provider.get_database_type(column_type, enum_storage)

        column = Column(name=name, type=type_name)
        self.columns.append(column)
        return ColumnExpression(self, column)

    def has_column(self, name: str) -> bool:
        return self.column_for(name) is not None

    def column_for(self, name: str) -> Column | None:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    def modify_column(self, name: str) -> "ColumnExpression":
        column = self.column_for(name)
        if column is None:
            raise KeyError(f"Column '{name}' does not exist on table {self.identifier}")
        return ColumnExpression(self, column)

    def remove_column(self, name: str) -> None:
        lowered = name.lower()
        self.columns = [c for c in self.columns if c.name.lower() != lowered]

    # ------------------------------------------------------------------
    # Primary key
    # ------------------------------------------------------------------

    @property
    def primary_key_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.is_primary_key]

    @property
    def primary_key(self) -> PrimaryKey | None:
        columns = self.primary_key_columns
        if not columns:
            return None
        name = self.primary_key_name or f"pkey_{self.identifier.name}_{'_'.join(columns)}"
        return PrimaryKey(name=name, column_names=columns)

    # ------------------------------------------------------------------
    # Indexes and foreign keys
    # ------------------------------------------------------------------

    def add_index(self, index: IndexDefinition) -> IndexDefinition:
        if index.name is None:
            index.name = index.name_for(self)
        if self.index_for(index.name) is not None:
            raise MalformedDefinitionError(
                self.identifier.qualified_name, "index", index.name, "duplicate index name"
            )
        self.indexes.append(index)
        return index

    def index_for(self, name: str) -> IndexDefinition | None:
        lowered = name.lower()
        for index in self.indexes:
            if index.name_for(self).lower() == lowered:
                return index
        return None

    def add_foreign_key(self, foreign_key: ForeignKey) -> ForeignKey:
        if self.foreign_key_for(foreign_key.name) is not None:
            raise MalformedDefinitionError(
                self.identifier.qualified_name,
                "foreign key",
                foreign_key.name,
                "duplicate foreign key name",
            )
        self.foreign_keys.append(foreign_key)
        return foreign_key

    def foreign_key_for(self, name: str) -> ForeignKey | None:
        lowered = name.lower()
        for foreign_key in self.foreign_keys:
            if foreign_key.name.lower() == lowered:
                return foreign_key
        return None

    # ------------------------------------------------------------------
    # Validation and DDL
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the table's own invariants.

        Raises:
            MalformedDefinitionError: On duplicate column, index or foreign
                key names, an index with no columns or expression, a foreign
                key whose column counts differ, or a table with no columns.
        """
        table_name = self.identifier.qualified_name

        if not self.columns:
            raise MalformedDefinitionError(table_name, "table", None, "no columns declared")

        seen: set[str] = set()
        for column in self.columns:
            key = column.name.lower()
            if key in seen:
                raise MalformedDefinitionError(table_name, "column", column.name, "duplicate column name")
            seen.add(key)

        seen = set()
        for index in self.indexes:
            if not index.columns and not index.expression:
                raise MalformedDefinitionError(
                    table_name, "index", index.name, "index has no columns or expression"
                )
            if not index.name and not index.columns:
                raise MalformedDefinitionError(
                    table_name, "index", None, "expression index without columns needs a name"
                )
            key = index.name_for(self).lower()
            if key in seen:
                raise MalformedDefinitionError(table_name, "index", index.name_for(self), "duplicate index name")
            seen.add(key)

        seen = set()
        for foreign_key in self.foreign_keys:
            if not foreign_key.column_names:
                raise MalformedDefinitionError(
                    table_name, "foreign key", foreign_key.name, "no columns declared"
                )
            if len(foreign_key.column_names) != len(foreign_key.linked_names):
                raise MalformedDefinitionError(
                    table_name,
                    "foreign key",
                    foreign_key.name,
                    f"{len(foreign_key.column_names)} local columns but "
                    f"{len(foreign_key.linked_names)} referenced columns",
                )
            key = foreign_key.name.lower()
            if key in seen:
                raise MalformedDefinitionError(
                    table_name, "foreign key", foreign_key.name, "duplicate foreign key name"
                )
            seen.add(key)

    def to_create_ddl(self) -> str:
        """Render CREATE TABLE with the primary key inline.

        Indexes and foreign keys are separate statements (see
        ``table_delta.schema.patch``).
        """
        lines = [f"    {column.declaration()}" for column in self.columns]
        primary_key = self.primary_key
        if primary_key is not None:
            lines.append(
                f"    CONSTRAINT {primary_key.name} PRIMARY KEY ({', '.join(primary_key.column_names)})"
            )
        body = ",\n".join(lines)
        return f"CREATE TABLE {self.identifier.qualified_name} (\n{body}\n);"


class ColumnExpression:
    """Chainable handle returned by ``Table.add_column`` / ``modify_column``."""

    def __init__(self, table: Table, column: Column):
        self.table = table
        self.column = column

    def as_primary_key(self) -> "ColumnExpression":
        self.column.is_primary_key = True
        self.column.allow_nulls = False
        return self

    def not_null(self) -> "ColumnExpression":
        self.column.allow_nulls = False
        return self

    def allow_nulls(self) -> "ColumnExpression":
        self.column.allow_nulls = True
        return self

    def default_value(self, expression: Any) -> "ColumnExpression":
        """Set the default to a raw SQL expression (``now()``, ``0``, ``true``)."""
        if isinstance(expression, bool):
            expression = "true" if expression else "false"
        self.column.default_expression = str(expression)
        return self

    def default_value_by_string(self, value: str) -> "ColumnExpression":
        """Set the default to a quoted string literal."""
        escaped = value.replace("'", "''")
        self.column.default_expression = f"'{escaped}'"
        return self

    def add_index(
        self,
        configure: Callable[[IndexDefinition], Any] | None = None,
        **options: Any,
    ) -> "ColumnExpression":
        """Index this column.

        Options are ``IndexDefinition`` fields; *configure* runs after they
        are applied.

        Example:
            table.modify_column("user_name").add_index(is_unique=True)
            table.modify_column("user_name").add_index(lambda i: setattr(i, "predicate", "id > 5"))
        """
        index = IndexDefinition(columns=[self.column.name], **options)
        if configure is not None:
            configure(index)
        self.table.add_index(index)
        return self

    def foreign_key_to(
        self,
        referenced: "Table | DbObjectName | str",
        column_name: str,
        name: str | None = None,
        on_delete: CascadeAction = CascadeAction.NO_ACTION,
        on_update: CascadeAction = CascadeAction.NO_ACTION,
    ) -> "ColumnExpression":
        """Reference *column_name* of another table."""
        if isinstance(referenced, Table):
            linked_table = referenced.identifier
        elif isinstance(referenced, DbObjectName):
            linked_table = referenced
        else:
            linked_table = DbObjectName.parse(referenced)

        columns = [self.column.name]
        foreign_key = ForeignKey(
            name=name or ForeignKey.default_name(self.table, columns),
            column_names=columns,
            linked_table=linked_table,
            linked_names=[column_name],
            on_delete=on_delete,
            on_update=on_update,
        )
        self.table.add_foreign_key(foreign_key)
        return self
