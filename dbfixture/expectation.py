"""
Expectation Verification

Reads the actual state of the tables named in an expected dataset and compares
it row by row, column by column, collecting every difference before failing.

For each expected table:
1. Columns = declared columns - excluded columns - IGNORE-strategy columns
2. Actual rows are selected with exactly those columns, ordered by primary key
3. A row count mismatch is recorded and value comparison is skipped
4. Otherwise rows are compared positionally with each column's strategy
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .comparison import ComparisonResult, ValueComparator
from .db import DataSource, SchemaInspector, TableSchema
from .exceptions import ConfigurationError, DatabaseOperationError
from .models import ColumnName, ExpectedTableSet, Table

logger = logging.getLogger(__name__)


class TableReader:
    """Reads the actual rows of a table for a selected list of columns."""

    def __init__(self, connection: Connection, inspector: SchemaInspector):
        self.connection = connection
        self.inspector = inspector

    def read(self, schema: TableSchema, columns: List[ColumnName]) -> List[Dict[str, Any]]:
        """
        Select the given columns of a table.

        Rows are ordered by the primary key when the table has one.

        Returns:
            One dict per row, keyed by the upper-cased column name
        """
        if not columns:
            stmt = select(func.count()).select_from(schema.table)
        else:
            selected = [schema.require_column(c.value, "verify") for c in columns]
            stmt = select(*selected)
            order_by = [schema.table.c[name] for name in schema.primary_key_columns]
            if order_by:
                stmt = stmt.order_by(*order_by)

        try:
            if not columns:
                rows = [{} for _ in range(self.connection.execute(stmt).scalar())]
            else:
                rows = [
                    {column.key: value for column, value in zip(columns, record)}
                    for record in self.connection.execute(stmt)
                ]
        except SQLAlchemyError as e:
            raise DatabaseOperationError(
                f"Failed to read actual rows: {e}", operation="verify", table=schema.name, sql=str(stmt)
            ) from e
        logger.debug(f"Read {len(rows)} rows from {schema.name}")
        return rows


class ExpectationVerifier:
    """Verifies the database against an ExpectedTableSet."""

    def __init__(self, comparator: Optional[ValueComparator] = None):
        self.comparator = comparator or ValueComparator()

    def verify(self, expected: ExpectedTableSet, data_source: Optional[DataSource] = None) -> ComparisonResult:
        """
        Compare the database with the expected dataset.

        Args:
            expected: Expected tables with exclusions and column strategies
            data_source: Database to read; defaults to the table set's bound data source

        Returns:
            The ComparisonResult (empty when everything matched)

        Raises:
            ValidationError: If any difference was found, listing all of them
            DatabaseOperationError: If the actual rows cannot be read
        """
        result = self.compare(expected, data_source)
        result.assert_no_differences()
        return result

    def compare(self, expected: ExpectedTableSet, data_source: Optional[DataSource] = None) -> ComparisonResult:
        """Collect the differences without raising."""
        table_set = expected.table_set
        data_source = data_source or table_set.data_source
        if data_source is None:
            raise ConfigurationError("No data source available for verification")

        result = ComparisonResult()
        if len(table_set) == 0:
            logger.debug("Expected dataset has no tables, nothing to verify")
            return result

        with data_source.connect() as conn:
            inspector = SchemaInspector(conn, data_source.schema)
            reader = TableReader(conn, inspector)
            for table in table_set:
                self._verify_table(table, expected, inspector, reader, result)

        if result.has_differences:
            logger.info(f"Verification found {result.difference_count} differences in {result.table_names}")
        else:
            logger.info(f"Verified {len(table_set)} tables")
        return result

    def _verify_table(
        self,
        table: Table,
        expected: ExpectedTableSet,
        inspector: SchemaInspector,
        reader: TableReader,
        result: ComparisonResult,
    ):
        name = table.name.value
        if not inspector.has_table(name):
            result.add_missing_table(name)
            return
        schema = inspector.reflect(name)

        columns = self._compared_columns(table, expected)
        present = []
        for column in columns:
            if schema.column(column.value) is None:
                result.add_missing_column(name, column.value)
            else:
                present.append(column)

        actual_rows = reader.read(schema, present)
        if len(actual_rows) != table.row_count:
            result.add_row_count_mismatch(name, table.row_count, len(actual_rows))
            return

        for index, (expected_row, actual_row) in enumerate(zip(table.rows, actual_rows)):
            for column in present:
                strategy = expected.strategy_for(column)
                expected_value = expected_row.get_value(column)
                actual_value = actual_row[column.key]
                if not self.comparator.matches(expected_value, actual_value, strategy):
                    result.add_value_mismatch(
                        name,
                        index,
                        column.value,
                        expected_value,
                        actual_value,
                        strategy=strategy,
                        metadata=schema.column_metadata(column.value),
                    )

    def _compared_columns(self, table: Table, expected: ExpectedTableSet) -> List[ColumnName]:
        columns = []
        for column in table.columns:
            if expected.is_excluded(column):
                continue
            if expected.strategy_for(column).is_ignore:
                continue
            columns.append(column)
        return columns
