"""Exceptions raised by table-delta.

Every error carries enough structured detail (table, category, object name,
expected vs. actual form) to be reported to a user without re-running the
comparison.

Usage:
    from table_delta.errors import IrreconcilableSchemaError

    try:
        patch.raise_if_irreconcilable()
    except IrreconcilableSchemaError as e:
        for change in e.invalid_changes:
            print(change.describe())
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from table_delta.schema.delta import InvalidChange


class TableDeltaError(Exception):
    """Base class for all table-delta errors."""


class UnsupportedMappingError(TableDeltaError):
    """Raised when a Python type has no database type or parameter type mapping.

    Example:
        >>> err = UnsupportedMappingError(complex, "database type")
        >>> str(err)
        "Can't infer database type for type <class 'complex'>"
    """

    def __init__(self, python_type: Any, kind: str = "parameter type"):
        self.python_type = python_type
        self.kind = kind
        super().__init__(f"Can't infer {kind} for type {python_type!r}")


class MalformedDefinitionError(TableDeltaError):
    """Raised when a desired schema object violates its own invariants.

    Detected eagerly while the desired table is declared, and again before
    any comparison or DDL generation.
    """

    def __init__(self, table: str, category: str, name: str | None, message: str):
        self.table = table
        self.category = category
        self.name = name
        self.message = message
        target = f"{category} '{name}'" if name else category
        super().__init__(f"Invalid {target} on table {table}: {message}")


class IrreconcilableSchemaError(TableDeltaError):
    """Raised when the actual schema cannot be patched into the desired schema.

    The delta and the generated patch carry the same information as
    structured results (``TableDelta.invalid_changes``); this exception is
    only raised when a caller asks to apply such a patch.
    """

    def __init__(self, table: str, invalid_changes: list["InvalidChange"]):
        self.table = table
        self.invalid_changes = list(invalid_changes)
        lines = [f"Table {table} cannot be reconciled without a destructive rebuild:"]
        for change in self.invalid_changes:
            lines.append(f"  - {change.describe()}")
        super().__init__("\n".join(lines))


class DdlExecutionError(TableDeltaError):
    """Raised when a DDL statement fails to execute.

    Attributes:
        statement: The SQL statement that failed.
        cause: The underlying driver exception.
    """

    def __init__(self, statement: str, cause: BaseException):
        self.statement = statement
        self.cause = cause
        super().__init__(f"Failed to execute DDL: {cause}\n  Statement: {statement}")
