"""table-delta: Schema delta detection and DDL patching for PostgreSQL.

Compares a table declared in Python with the live table, classifies the
difference, and generates (and optionally applies) the DDL that
reconciles them.

Usage:
    from table_delta import Table, find_delta, build_patch
    from table_delta import SchemaIntrospector, AsyncPostgresAdapter, apply_changes
    from table_delta import get_adapter, get_introspector, load_db_config
"""

__version__ = "0.1.0"

# Adapters
from table_delta.adapters.base import DatabaseClient
from table_delta.adapters.postgres import AsyncPostgresAdapter

# Config
from table_delta.config.loader import load_db_config
from table_delta.config.models import DatabaseConfig, DatabaseProfile

# Errors
from table_delta.errors import (
    DdlExecutionError,
    IrreconcilableSchemaError,
    MalformedDefinitionError,
    TableDeltaError,
    UnsupportedMappingError,
)

# Factory
from table_delta.factory import (
    ProfileNotFoundError,
    get_adapter,
    get_introspector,
    resolve_url,
)

# Schema
from table_delta.schema import (
    ActualTable,
    CascadeAction,
    DbObjectName,
    IndexDefinition,
    IndexMethod,
    SchemaIntrospector,
    SchemaPatch,
    SchemaPatchDifference,
    Table,
    TableDelta,
    apply_changes,
    apply_patch,
    build_patch,
    build_rebuild_patch,
    canonicalize_ddl,
    find_delta,
)

# Types
from table_delta.types import DEFAULT_PROVIDER, EnumStorage, Int64, PostgresTypeProvider, TypeProvider

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    # Errors
    "TableDeltaError",
    "UnsupportedMappingError",
    "MalformedDefinitionError",
    "IrreconcilableSchemaError",
    "DdlExecutionError",
    # Factory
    "get_adapter",
    "get_introspector",
    "ProfileNotFoundError",
    "resolve_url",
    # Schema
    "ActualTable",
    "CascadeAction",
    "DbObjectName",
    "IndexDefinition",
    "IndexMethod",
    "SchemaIntrospector",
    "SchemaPatch",
    "SchemaPatchDifference",
    "Table",
    "TableDelta",
    "apply_changes",
    "apply_patch",
    "build_patch",
    "build_rebuild_patch",
    "canonicalize_ddl",
    "find_delta",
    # Types
    "DEFAULT_PROVIDER",
    "EnumStorage",
    "Int64",
    "PostgresTypeProvider",
    "TypeProvider",
]
