"""
Operation Executor

Applies a TableSet to a database with one of the Operation write semantics.
All statements of one execute() call run in a single transaction that is
rolled back on any error. Tables are processed in table set order (already
resolved by the caller); delete phases walk that order in reverse.

Handlers are looked up in a dict keyed by Operation and can be replaced or
extended with OperationExecutor.register().
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from sqlalchemy import and_, bindparam, delete, func, insert, select, text, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .binder import to_bind_value
from .db import DataSource, SchemaInspector, TableSchema
from .exceptions import ConfigurationError, DatabaseOperationError
from .models import Operation, Table, TableSet

logger = logging.getLogger(__name__)

# Dialects without a TRUNCATE statement; DELETE FROM is used instead.
NO_TRUNCATE_DIALECTS = {"sqlite"}


@dataclass
class OperationContext:
    """State shared by the handlers of one execute() call."""

    operation: Operation
    connection: Connection
    inspector: SchemaInspector
    tables: List[Table]

    def schema_for(self, table: Table) -> TableSchema:
        return self.inspector.reflect(table.name.value)


Handler = Callable[[OperationContext], None]


class OperationExecutor:
    """
    Executes database operations for table sets.

    Usage:
        executor = OperationExecutor()
        executor.execute(Operation.CLEAN_INSERT, table_set, data_source)
    """

    def __init__(self):
        self._handlers: Dict[Operation, Handler] = {
            Operation.INSERT: self._handle_insert,
            Operation.UPDATE: self._handle_update,
            Operation.DELETE: self._handle_delete,
            Operation.DELETE_ALL: self._handle_delete_all,
            Operation.TRUNCATE_TABLE: self._handle_truncate,
            Operation.REFRESH: self._handle_refresh,
            Operation.CLEAN_INSERT: self._handle_clean_insert,
            Operation.TRUNCATE_INSERT: self._handle_truncate_insert,
        }

    def register(self, operation: Operation, handler: Handler):
        """Register (or replace) the handler for an operation."""
        self._handlers[Operation(operation)] = handler

    def supports(self, operation: Operation) -> bool:
        operation = Operation(operation)
        return operation == Operation.NONE or operation in self._handlers

    def execute(self, operation: Operation, table_set: TableSet, data_source: Optional[DataSource] = None):
        """
        Apply a table set to the database.

        Args:
            operation: Write semantics to apply
            table_set: Tables in processing order
            data_source: Target database; defaults to the table set's bound data source

        Raises:
            ConfigurationError: If no data source is available
            DatabaseOperationError: If any statement fails
        """
        operation = Operation(operation)
        if operation == Operation.NONE:
            logger.debug("Operation NONE, nothing to execute")
            return
        if len(table_set) == 0:
            logger.debug(f"No tables for operation {operation.value}, nothing to execute")
            return

        handler = self._handlers.get(operation)
        if handler is None:
            raise DatabaseOperationError("No handler registered", operation=operation.value)

        data_source = data_source or table_set.data_source
        if data_source is None:
            raise ConfigurationError(f"No data source available for operation {operation.value}")

        logger.info(
            f"Executing {operation.value} on {len(table_set)} tables: "
            f"{[t.name.value for t in table_set]}"
        )
        try:
            with data_source.begin() as conn:
                context = OperationContext(
                    operation=operation,
                    connection=conn,
                    inspector=SchemaInspector(conn, data_source.schema),
                    tables=table_set.tables,
                )
                handler(context)
        except SQLAlchemyError as e:
            raise DatabaseOperationError(
                f"Failed to execute operation: {e}", operation=operation.value
            ) from e

    # -------------------------------------------------------------------------
    # Composite operations
    # -------------------------------------------------------------------------

    def _handle_clean_insert(self, context: OperationContext):
        self._handle_delete_all(context)
        self._handle_insert(context)

    def _handle_truncate_insert(self, context: OperationContext):
        self._handle_truncate(context)
        self._handle_insert(context)

    # -------------------------------------------------------------------------
    # Table-wide deletes (reverse order)
    # -------------------------------------------------------------------------

    def _handle_delete_all(self, context: OperationContext):
        for table in reversed(context.tables):
            schema = context.schema_for(table)
            stmt = delete(schema.table)
            result = self._run(context, table, stmt)
            logger.debug(f"Deleted {result.rowcount} rows from {schema.name}")

    def _handle_truncate(self, context: OperationContext):
        dialect = context.connection.dialect
        for table in reversed(context.tables):
            schema = context.schema_for(table)
            if dialect.name in NO_TRUNCATE_DIALECTS:
                stmt = delete(schema.table)
            else:
                stmt = text(f"TRUNCATE TABLE {dialect.identifier_preparer.format_table(schema.table)}")
            self._run(context, table, stmt)
            logger.debug(f"Truncated {schema.name}")

    # -------------------------------------------------------------------------
    # Row-wise operations (forward order)
    # -------------------------------------------------------------------------

    def _handle_insert(self, context: OperationContext):
        for table in context.tables:
            if table.row_count == 0:
                logger.debug(f"Table {table.name} has no rows, skipping insert")
                continue
            schema = context.schema_for(table)
            columns = self._columns(context, schema, table)
            params = [
                {c.name: to_bind_value(row.get_value(name), c.type) for name, c in columns}
                for row in table.rows
            ]
            self._run(context, table, insert(schema.table), params)
            logger.debug(f"Inserted {len(params)} rows into {schema.name}")

    def _handle_update(self, context: OperationContext):
        for table in context.tables:
            if table.row_count == 0:
                continue
            schema = context.schema_for(table)
            keys, values = self._split_key_columns(context, schema, table)
            if not values:
                logger.debug(f"Table {table.name} has only key columns, nothing to update")
                continue
            stmt = self._update_statement(schema, keys, values)
            params = [self._row_params(row, keys, values) for row in table.rows]
            result = self._run(context, table, stmt, params)
            logger.debug(f"Updated {result.rowcount} rows in {schema.name}")

    def _handle_delete(self, context: OperationContext):
        for table in reversed(context.tables):
            if table.row_count == 0:
                continue
            schema = context.schema_for(table)
            keys, _ = self._split_key_columns(context, schema, table)
            stmt = delete(schema.table).where(self._key_clause(keys))
            params = [self._row_params(row, keys, []) for row in table.rows]
            result = self._run(context, table, stmt, params)
            logger.debug(f"Deleted {result.rowcount} rows from {schema.name}")

    def _handle_refresh(self, context: OperationContext):
        for table in context.tables:
            if table.row_count == 0:
                continue
            schema = context.schema_for(table)
            keys, values = self._split_key_columns(context, schema, table)
            columns = keys + values
            insert_stmt = insert(schema.table)
            update_stmt = self._update_statement(schema, keys, values) if values else None
            exists_stmt = (
                select(func.count()).select_from(schema.table).where(self._key_clause(keys))
            )

            updated = inserted = 0
            for row in table.rows:
                params = self._row_params(row, keys, values)
                if update_stmt is not None:
                    found = self._run(context, table, update_stmt, params).rowcount > 0
                else:
                    found = self._run(context, table, exists_stmt, params).scalar() > 0
                if found:
                    updated += 1
                    continue
                insert_params = {
                    c.name: to_bind_value(row.get_value(name), c.type) for name, c in columns
                }
                self._run(context, table, insert_stmt, insert_params)
                inserted += 1
            logger.debug(f"Refreshed {schema.name}: {updated} updated, {inserted} inserted")

    # -------------------------------------------------------------------------
    # Statement helpers
    # -------------------------------------------------------------------------

    def _columns(self, context: OperationContext, schema: TableSchema, table: Table):
        """Pair each dataset column with its reflected SQLAlchemy column."""
        return [
            (name, schema.require_column(name.value, context.operation.value))
            for name in table.columns
        ]

    def _split_key_columns(self, context: OperationContext, schema: TableSchema, table: Table):
        """
        Split dataset columns into key columns and value columns.

        Keys are the reflected primary key columns present in the dataset;
        without any, the first dataset column is the key.
        """
        columns = self._columns(context, schema, table)
        pk_names = {name.upper() for name in schema.primary_key_columns}
        keys = [(name, c) for name, c in columns if c.name.upper() in pk_names]
        if not keys:
            keys = columns[:1]
        key_names = {c.name for _, c in keys}
        values = [(name, c) for name, c in columns if c.name not in key_names]
        return keys, values

    def _key_clause(self, keys):
        return and_(*[c == bindparam(f"k{i}") for i, (_, c) in enumerate(keys)])

    def _update_statement(self, schema: TableSchema, keys, values):
        return (
            update(schema.table)
            .where(self._key_clause(keys))
            .values({c.name: bindparam(f"p{i}") for i, (_, c) in enumerate(values)})
        )

    def _row_params(self, row, keys, values) -> Dict[str, object]:
        params = {f"k{i}": to_bind_value(row.get_value(name), c.type) for i, (name, c) in enumerate(keys)}
        params.update(
            {f"p{i}": to_bind_value(row.get_value(name), c.type) for i, (name, c) in enumerate(values)}
        )
        return params

    def _run(self, context: OperationContext, table: Table, stmt, params=None):
        try:
            if params is None:
                return context.connection.execute(stmt)
            return context.connection.execute(stmt, params)
        except SQLAlchemyError as e:
            sql = getattr(e, "statement", None) or str(stmt)
            raise DatabaseOperationError(
                f"SQL execution failed: {getattr(e, 'orig', None) or e}",
                operation=context.operation.value,
                table=table.name.value,
                sql=sql,
            ) from e
