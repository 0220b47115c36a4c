"""
Database Assertions

Programmatic comparison of datasets that are already in memory, or of an
expected table against the rows of an arbitrary SQL query:

    assertion = DatabaseAssertion()
    assertion.assert_equals(expected_table_set, actual_table_set)
    assertion.assert_equals_ignore_columns(expected_table, actual_table, ["CREATED_AT"])
    assertion.assert_equals_by_query(
        expected_table,
        data_source,
        "SELECT ID, NAME FROM USERS WHERE STATUS = :status ORDER BY ID",
        params={"status": "ACTIVE"},
    )

Rows are compared positionally. Every difference is collected into one
ComparisonResult before a ValidationError is raised, as in expectation
verification.
"""

import logging
from typing import Any, Dict, Iterable, Optional, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .comparison import ComparisonResult, ValueComparator
from .db import DataSource
from .exceptions import ConfigurationError, DatabaseOperationError
from .models import ColumnName, ComparisonStrategy, Row, Table, TableSet, normalize_strategies

logger = logging.getLogger(__name__)

Expected = Union[Table, TableSet]


class DatabaseAssertion:
    """Compares tables and table sets value by value."""

    def __init__(self, comparator: Optional[ValueComparator] = None):
        self.comparator = comparator or ValueComparator()

    # -------------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------------

    def compare_table_sets(
        self,
        expected: TableSet,
        actual: TableSet,
        ignore_columns: Iterable[str] = (),
        column_strategies=None,
    ) -> ComparisonResult:
        """
        Collect the differences between two table sets.

        A table count mismatch is reported alone. Otherwise each expected
        table is looked up by name (case-insensitively) in the actual set.
        """
        result = ComparisonResult()
        if len(expected) != len(actual):
            result.add_table_count_mismatch(len(expected), len(actual))
            return result

        for expected_table in expected:
            actual_table = actual.get_table(expected_table.name)
            if actual_table is None:
                result.add_missing_table(expected_table.name.value)
                continue
            self.compare_tables(expected_table, actual_table, ignore_columns, column_strategies, result)
        return result

    def compare_tables(
        self,
        expected: Table,
        actual: Table,
        ignore_columns: Iterable[str] = (),
        column_strategies=None,
        result: Optional[ComparisonResult] = None,
    ) -> ComparisonResult:
        """
        Collect the differences between two tables.

        Only the expected table's columns are compared, minus the ignored
        ones. Differences are reported under the expected table's name.

        Args:
            expected: Expected rows
            actual: Actual rows, in the same order
            ignore_columns: Column names skipped (case-insensitive)
            column_strategies: Column name -> ComparisonStrategy; STRICT otherwise
            result: Result to add to; a new one is created when omitted
        """
        result = result if result is not None else ComparisonResult()
        ignored = {ColumnName.of(c).key for c in ignore_columns}
        strategies = normalize_strategies(column_strategies)
        name = expected.name.value

        if expected.row_count != actual.row_count:
            result.add_row_count_mismatch(name, expected.row_count, actual.row_count)
            return result

        columns = []
        for column in expected.columns:
            if column.key in ignored:
                continue
            mapping = strategies.get(column.key)
            strategy = mapping.strategy if mapping else ComparisonStrategy.STRICT
            if strategy.is_ignore:
                continue
            if actual.find_column(column) is None:
                result.add_missing_column(name, column.value)
                continue
            columns.append((column, strategy))

        for index, (expected_row, actual_row) in enumerate(zip(expected.rows, actual.rows)):
            for column, strategy in columns:
                expected_value = expected_row.get_value(column)
                actual_value = actual_row.get_value(column)
                if not self.comparator.matches(expected_value, actual_value, strategy):
                    result.add_value_mismatch(
                        name,
                        index,
                        column.value,
                        expected_value,
                        actual_value,
                        strategy=strategy,
                    )
        return result

    # -------------------------------------------------------------------------
    # Assertions
    # -------------------------------------------------------------------------

    def assert_equals(self, expected: Expected, actual: Expected) -> ComparisonResult:
        """
        Assert that two tables, or two table sets, hold the same data.

        Raises:
            ValidationError: Listing every difference
        """
        if isinstance(expected, TableSet) and isinstance(actual, TableSet):
            result = self.compare_table_sets(expected, actual)
        elif isinstance(expected, Table) and isinstance(actual, Table):
            result = self.compare_tables(expected, actual)
        else:
            raise TypeError(
                f"Cannot compare {type(expected).__name__} with {type(actual).__name__}"
            )
        result.assert_no_differences()
        return result

    def assert_equals_ignore_columns(
        self,
        expected: Expected,
        actual: Expected,
        ignore_columns: Iterable[str] = (),
        table_name: Optional[str] = None,
    ) -> ComparisonResult:
        """
        Assert that two tables match, skipping some columns.

        With table sets, table_name selects the table to compare from both.

        Raises:
            ConfigurationError: If table_name is missing or not in the expected set
            ValidationError: Listing every difference
        """
        ignore_columns = list(ignore_columns)
        if isinstance(expected, TableSet) or isinstance(actual, TableSet):
            expected_table = self._select_table(expected, table_name)
            actual_table = actual.get_table(expected_table.name) if isinstance(actual, TableSet) else actual
            if actual_table is None:
                result = ComparisonResult()
                result.add_missing_table(expected_table.name.value)
                result.assert_no_differences()
            expected, actual = expected_table, actual_table

        result = self.compare_tables(expected, actual, ignore_columns)
        result.assert_no_differences()
        return result

    def assert_equals_by_query(
        self,
        expected: Expected,
        data_source: DataSource,
        sql: str,
        table_name: Optional[str] = None,
        ignore_columns: Iterable[str] = (),
        params: Optional[Dict[str, Any]] = None,
    ) -> ComparisonResult:
        """
        Assert that the rows returned by a query match an expected table.

        Args:
            expected: Expected table, or a table set holding it (see table_name)
            data_source: Database to query
            sql: SELECT statement; named parameters use the ":name" form
            table_name: Table to take from an expected table set
            ignore_columns: Column names skipped (case-insensitive)
            params: Bind parameters for the query

        Raises:
            DatabaseOperationError: If the query fails
            ValidationError: Listing every difference
        """
        expected_table = self._select_table(expected, table_name)
        actual = self.query_table(data_source, sql, expected_table.name.value, params)
        result = self.compare_tables(expected_table, actual, ignore_columns)
        result.assert_no_differences()
        return result

    def query_table(
        self,
        data_source: DataSource,
        sql: str,
        table_name: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Table:
        """Run a query and return its rows as a Table holding the raw database values."""
        try:
            with data_source.connect() as conn:
                cursor = conn.execute(text(sql), params or {})
                columns = list(cursor.keys())
                rows = [Row.of(dict(zip(columns, record))) for record in cursor]
        except SQLAlchemyError as e:
            raise DatabaseOperationError(
                f"Query failed: {getattr(e, 'orig', None) or e}", operation="query", table=table_name, sql=sql
            ) from e
        logger.debug(f"Query for {table_name} returned {len(rows)} rows")
        return Table(table_name, columns, rows)

    def _select_table(self, expected: Expected, table_name: Optional[str]) -> Table:
        if isinstance(expected, Table):
            return expected
        if not table_name:
            if len(expected) != 1:
                raise ConfigurationError("table_name is required when the expected set has several tables")
            return expected.tables[0]
        table = expected.get_table(table_name)
        if table is None:
            raise ConfigurationError(f"Expected table not found: {table_name}")
        return table
