"""Table schema model, delta detection, and DDL patch generation.

Provides the desired-schema builder (``Table``), live introspection
(``SchemaIntrospector``), delta detection (``find_delta``), DDL patch
generation (``build_patch``, ``build_rebuild_patch``), and the
fetch-compare-apply composition (``apply_changes``).

Usage:
    from table_delta.schema import Table, find_delta, build_patch
    from table_delta.schema import SchemaIntrospector, apply_changes
"""

from table_delta.schema.models import (
    ActualColumn,
    ActualForeignKey,
    ActualIndex,
    ActualPrimaryKey,
    ActualTable,
    CascadeAction,
    Column,
    DbObjectName,
    ForeignKey,
    IndexDefinition,
    IndexMethod,
    NullsSortOrder,
    PrimaryKey,
    SchemaPatchDifference,
    SortOrder,
)
from table_delta.schema.table import ColumnExpression, Table
from table_delta.schema.canonical import (
    DEFAULT_TYPE_SYNONYMS,
    canonicalize_ddl,
    canonicalize_default,
    canonicalize_expression,
    canonicalize_type,
)
from table_delta.schema.delta import (
    Change,
    InvalidChange,
    ItemDelta,
    TableDelta,
    find_delta,
)
from table_delta.schema.patch import (
    PatchPhase,
    PatchStatement,
    SchemaPatch,
    build_patch,
    build_rebuild_patch,
)
from table_delta.schema.introspector import SchemaIntrospector, SchemaReader
from table_delta.schema.migrator import (
    PatchResult,
    apply_changes,
    apply_patch,
    assert_no_changes,
    fetch_existing,
    find_table_delta,
)

__all__ = [
    # Models
    "ActualColumn",
    "ActualForeignKey",
    "ActualIndex",
    "ActualPrimaryKey",
    "ActualTable",
    "CascadeAction",
    "Column",
    "DbObjectName",
    "ForeignKey",
    "IndexDefinition",
    "IndexMethod",
    "NullsSortOrder",
    "PrimaryKey",
    "SchemaPatchDifference",
    "SortOrder",
    # Builder
    "Table",
    "ColumnExpression",
    # Canonicalizer
    "DEFAULT_TYPE_SYNONYMS",
    "canonicalize_ddl",
    "canonicalize_default",
    "canonicalize_expression",
    "canonicalize_type",
    # Delta
    "Change",
    "InvalidChange",
    "ItemDelta",
    "TableDelta",
    "find_delta",
    # Patch
    "PatchPhase",
    "PatchStatement",
    "SchemaPatch",
    "build_patch",
    "build_rebuild_patch",
    # Introspection and application
    "SchemaIntrospector",
    "SchemaReader",
    "PatchResult",
    "apply_changes",
    "apply_patch",
    "assert_no_changes",
    "fetch_existing",
    "find_table_delta",
]
