"""
Fixture Engine Exceptions

Every failure raised by the engine derives from DatabaseTesterError so callers
can catch one type. Low-level errors (I/O, CSV, YAML, SQL) are always wrapped
with the file, table or operation that was being processed.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .comparison import ComparisonResult


class DatabaseTesterError(Exception):
    """Base class for all fixture engine errors."""

    pass


class ConfigurationError(DatabaseTesterError):
    """Raised for invalid configuration, before any database I/O happens."""

    pass


class DataSourceNotFoundError(ConfigurationError):
    """Raised when a named data source is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No data source registered under name: '{name}'")


class DataSetLoadError(DatabaseTesterError):
    """Raised when a dataset file or directory cannot be loaded."""

    def __init__(self, message: str, path=None):
        self.path = path
        super().__init__(message)


class DatabaseOperationError(DatabaseTesterError):
    """Raised when a SQL statement fails during preparation."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        sql: Optional[str] = None,
    ):
        self.operation = operation
        self.table = table
        self.sql = sql
        details = []
        if operation:
            details.append(f"operation={operation}")
        if table:
            details.append(f"table={table}")
        if sql:
            details.append(f"sql={sql}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class ValidationError(DatabaseTesterError, AssertionError):
    """
    Raised when the database does not match the expected dataset.

    Carries the full ComparisonResult so callers can inspect every difference.
    """

    def __init__(self, message: str, result: Optional["ComparisonResult"] = None):
        self.result = result
        super().__init__(message)
