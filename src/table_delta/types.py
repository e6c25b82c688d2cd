"""Python type to database type mapping ("type provider").

Maps a Python value type to:

- the database type name used when declaring a column, and
- a driver-specific parameter type tag used when binding query parameters.

Lookups are memoized per provider.  The memo dicts are copy-on-write: a
writer copies the current dict, adds its entry and swaps the reference in
under a lock that only writers take, so readers of already resolved types
never block.  Two writers racing on the same key store the same value.

Usage:
    from table_delta.types import DEFAULT_PROVIDER, Int64

    DEFAULT_PROVIDER.get_database_type(str)      # 'varchar'
    DEFAULT_PROVIDER.get_database_type(Int64)    # 'bigint'
    DEFAULT_PROVIDER.to_parameter_type(int).name  # 'int4'
"""

import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Hashable
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

from psycopg import postgres
from psycopg.types import TypeInfo

from table_delta.errors import UnsupportedMappingError

TParameterType = TypeVar("TParameterType")

_MISSING = object()


class Int64(int):
    """Marker type for 64-bit integer columns (``bigint``)."""


class EnumStorage(str, Enum):
    """How ``Enum`` members are stored in the database."""

    AS_INTEGER = "integer"
    AS_STRING = "string"


class TypeProvider(ABC, Generic[TParameterType]):
    """Base class for a driver's Python type <-> database type mapping.

    Subclasses supply the driver-specific lookups; this class owns the
    memoization and the registration hook.  The delta detector only ever
    needs ``get_database_type`` and ``native_types_for``.
    """

    def __init__(self) -> None:
        self._write_lock = threading.Lock()
        self._database_type_memo: dict[type, str] = {}
        self._parameter_type_memo: dict[type, TParameterType | None] = {}
        self._type_memo: dict[Hashable, tuple[type, ...]] = {}
        self._native_memo: dict[str, tuple[type, ...]] = {}

        self.string_parameter_type: TParameterType = self.to_parameter_type(str)
        self.integer_parameter_type: TParameterType = self.to_parameter_type(int)
        self.long_parameter_type: TParameterType = self.to_parameter_type(Int64)
        self.guid_parameter_type: TParameterType = self.to_parameter_type(uuid.UUID)
        self.bool_parameter_type: TParameterType = self.to_parameter_type(bool)
        self.double_parameter_type: TParameterType = self.to_parameter_type(float)

    # ------------------------------------------------------------------
    # Driver-specific lookups
    # ------------------------------------------------------------------

    @abstractmethod
    def _determine_parameter_type(self, python_type: type) -> TParameterType | None:
        """Return the parameter type tag for *python_type*, or None."""

    @abstractmethod
    def _determine_database_type(self, python_type: type) -> str | None:
        """Return the column type name for *python_type*, or None."""

    @abstractmethod
    def _builtin_types(self) -> tuple[type, ...]:
        """Python types the driver maps out of the box."""

    def _type_key(self, parameter_type: TParameterType) -> Hashable:
        return parameter_type

    # ------------------------------------------------------------------
    # Memo helpers
    # ------------------------------------------------------------------

    def _swap(self, attribute: str, key: Hashable, value: Any) -> None:
        with self._write_lock:
            updated = dict(getattr(self, attribute))
            updated[key] = value
            setattr(self, attribute, updated)

    def _reset_derived_memos(self) -> None:
        with self._write_lock:
            self._type_memo = {}
            self._native_memo = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def try_get_db_type(self, python_type: type | None) -> TParameterType | None:
        """Return the parameter type tag for *python_type*, or None if unmapped."""
        if python_type is None:
            return None

        found = self._parameter_type_memo.get(python_type, _MISSING)
        if found is not _MISSING:
            return found

        parameter_type = self._determine_parameter_type(python_type)
        self._swap("_parameter_type_memo", python_type, parameter_type)
        return parameter_type

    def to_parameter_type(self, python_type: type) -> TParameterType:
        """Return the parameter type tag for *python_type*.

        Raises:
            UnsupportedMappingError: If the type has no known mapping.
        """
        parameter_type = self.try_get_db_type(python_type)
        if parameter_type is None:
            raise UnsupportedMappingError(python_type, "parameter type")
        return parameter_type

    def get_database_type(
        self,
        python_type: type,
        enum_storage: EnumStorage = EnumStorage.AS_INTEGER,
    ) -> str:
        """Return the column type name for *python_type*.

        Raises:
            UnsupportedMappingError: If the type has no known mapping.
        """
        found = self._database_type_memo.get(python_type)
        if found is not None:
            return found

        if isinstance(python_type, type) and issubclass(python_type, Enum):
            # Not memoized: the answer depends on enum_storage
            return "integer" if enum_storage == EnumStorage.AS_INTEGER else "varchar"

        database_type = self._determine_database_type(python_type)
        if database_type is None:
            raise UnsupportedMappingError(python_type, "database type")

        self._swap("_database_type_memo", python_type, database_type)
        return database_type

    def register_mapping(
        self,
        python_type: type,
        database_type: str,
        parameter_type: TParameterType | None = None,
    ) -> None:
        """Register a custom Python type mapping.

        Call before first use of *python_type*; later registrations replace
        the memoized values.
        """
        self._swap("_database_type_memo", python_type, database_type)
        self._swap("_parameter_type_memo", python_type, parameter_type)
        self._reset_derived_memos()

    def resolve_types(self, parameter_type: TParameterType) -> tuple[type, ...]:
        """Return the Python types that bind with *parameter_type*."""
        key = self._type_key(parameter_type)
        found = self._type_memo.get(key)
        if found is not None:
            return found

        candidates = list(self._builtin_types())
        candidates.extend(t for t in self._parameter_type_memo if t not in candidates)

        resolved: list[type] = []
        for python_type in candidates:
            tag = self.try_get_db_type(python_type)
            if tag is not None and self._type_key(tag) == key:
                resolved.append(python_type)

        values = tuple(resolved)
        self._swap("_type_memo", key, values)
        return values

    def native_types_for(self, database_type: str) -> tuple[type, ...]:
        """Return the Python types that legitimately map to *database_type*.

        Used to interpret the declared type of an introspected column.
        Type synonyms are honored (``character varying`` finds ``str``).

        Example:
            >>> DEFAULT_PROVIDER.native_types_for("integer")
            (<class 'int'>,)
        """
        from table_delta.schema.canonical import canonicalize_type

        key = canonicalize_type(database_type)
        found = self._native_memo.get(key)
        if found is not None:
            return found

        candidates = list(self._builtin_types())
        candidates.extend(t for t in self._database_type_memo if t not in candidates)

        resolved: list[type] = []
        for python_type in candidates:
            try:
                mapped = self.get_database_type(python_type)
            except UnsupportedMappingError:
                continue
            if canonicalize_type(mapped) == key:
                resolved.append(python_type)

        values = tuple(resolved)
        self._swap("_native_memo", key, values)
        return values


# Python type -> (column type name, psycopg type registry name)
_POSTGRES_TYPES: dict[type, tuple[str, str]] = {
    str: ("varchar", "varchar"),
    int: ("integer", "int4"),
    Int64: ("bigint", "int8"),
    bool: ("boolean", "bool"),
    float: ("double precision", "float8"),
    uuid.UUID: ("uuid", "uuid"),
    Decimal: ("numeric", "numeric"),
    datetime: ("timestamp with time zone", "timestamptz"),
    date: ("date", "date"),
    time: ("time", "time"),
    timedelta: ("interval", "interval"),
    bytes: ("bytea", "bytea"),
    dict: ("jsonb", "jsonb"),
}


class PostgresTypeProvider(TypeProvider[TypeInfo]):
    """PostgreSQL type provider using psycopg's built-in type registry.

    Parameter type tags are psycopg ``TypeInfo`` objects (``name``, ``oid``).
    """

    def _lookup(self, python_type: type) -> tuple[str, str] | None:
        # Exact match first so bool and Int64 do not resolve as int
        if python_type in _POSTGRES_TYPES:
            return _POSTGRES_TYPES[python_type]
        if isinstance(python_type, type) and issubclass(python_type, Enum):
            return _POSTGRES_TYPES[int]
        for base in getattr(python_type, "__mro__", ())[1:]:
            if base in _POSTGRES_TYPES:
                return _POSTGRES_TYPES[base]
        return None

    def _determine_parameter_type(self, python_type: type) -> TypeInfo | None:
        mapping = self._lookup(python_type)
        if mapping is None:
            return None
        return postgres.types.get(mapping[1])

    def _determine_database_type(self, python_type: type) -> str | None:
        mapping = self._lookup(python_type)
        return mapping[0] if mapping else None

    def _builtin_types(self) -> tuple[type, ...]:
        return tuple(_POSTGRES_TYPES)

    def _type_key(self, parameter_type: TypeInfo) -> Hashable:
        return parameter_type.name


DEFAULT_PROVIDER = PostgresTypeProvider()
