"""
Database Access Module

Data sources, a named data source registry and schema inspection for the
fixture engine. Connections come from a SQLAlchemy Engine supplied by the
caller; the engine owns pooling. Every preparation or verification call
acquires its own connection through a context manager.

Usage:
    from dbfixture.db import DataSource, DataSourceRegistry

    ds = DataSource.from_url("sqlite:///test.db", pragmas={"foreign_keys": "ON"})
    registry = DataSourceRegistry()
    registry.register_default(ds)

    with ds.connect() as conn:
        schema = SchemaInspector(conn).reflect("USERS")
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set

from sqlalchemy import MetaData, Table as SaTable, create_engine, event, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from .exceptions import DatabaseOperationError, DataSourceNotFoundError
from .models import ColumnMetadata

logger = logging.getLogger(__name__)


class DataSource:
    """A named SQLAlchemy engine, optionally scoped to a schema."""

    def __init__(self, engine: Engine, name: str = "default", schema: Optional[str] = None):
        self.engine = engine
        self.name = name
        self.schema = schema

    @classmethod
    def from_url(
        cls,
        url: str,
        name: str = "default",
        schema: Optional[str] = None,
        pragmas: Optional[Dict[str, str]] = None,
        **engine_kwargs,
    ) -> "DataSource":
        """
        Create a data source from a database URL.

        Args:
            url: SQLAlchemy database URL
            name: Registry name of the data source
            schema: Schema to inspect and write to (None = default schema)
            pragmas: SQLite pragmas applied to every new connection

        Returns:
            DataSource wrapping a new engine
        """
        engine = create_engine(url, **engine_kwargs)
        if pragmas:
            _install_pragmas(engine, pragmas)
        return cls(engine, name=name, schema=schema)

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Acquire a connection, released on every exit path."""
        with self.engine.connect() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Acquire a connection inside a transaction; rolled back on error."""
        with self.engine.begin() as conn:
            yield conn

    def dispose(self):
        self.engine.dispose()

    def __repr__(self) -> str:
        return f"DataSource(name={self.name!r}, url={self.engine.url!r})"


def _install_pragmas(engine: Engine, pragmas: Dict[str, str]):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        for pragma, value in pragmas.items():
            cursor.execute(f"PRAGMA {pragma}={value}")
        cursor.close()


class DataSourceRegistry:
    """
    Thread-safe registry of named data sources with an optional default.

    Populated once during test setup and only read afterwards.
    """

    DEFAULT_NAME = ""

    def __init__(self):
        self._sources: Dict[str, DataSource] = {}
        self._lock = threading.Lock()

    def register(self, name: str, data_source: DataSource):
        with self._lock:
            self._sources[name] = data_source
        logger.debug(f"Registered data source '{name}'")

    def register_default(self, data_source: DataSource):
        self.register(self.DEFAULT_NAME, data_source)

    def get(self, name: Optional[str] = None) -> DataSource:
        """
        Get a data source by name; None or "" returns the default.

        Raises:
            DataSourceNotFoundError: If no data source is registered under the name
        """
        key = name or self.DEFAULT_NAME
        with self._lock:
            data_source = self._sources.get(key)
            if data_source is None and key == self.DEFAULT_NAME and len(self._sources) == 1:
                data_source = next(iter(self._sources.values()))
        if data_source is None:
            raise DataSourceNotFoundError(key or "<default>")
        return data_source

    def get_default(self) -> DataSource:
        return self.get(None)

    def has(self, name: Optional[str] = None) -> bool:
        try:
            self.get(name)
            return True
        except DataSourceNotFoundError:
            return False

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._sources)

    def clear(self):
        with self._lock:
            self._sources.clear()


# =============================================================================
# Schema inspection
# =============================================================================


class TableSchema:
    """Reflected schema of one table with case-insensitive column lookup."""

    def __init__(self, table: SaTable):
        self.table = table
        self._columns = {c.name.upper(): c for c in table.columns}
        self._metadata = {
            c.name.upper(): _column_metadata(c, position)
            for position, c in enumerate(table.columns, start=1)
        }

    @property
    def name(self) -> str:
        return self.table.name

    def column(self, name: str):
        """Return the SQLAlchemy column for a dataset column name, or None."""
        return self._columns.get(str(name).upper())

    def require_column(self, name: str, operation: Optional[str] = None):
        """
        Return the SQLAlchemy column for a dataset column name.

        Only reflected columns ever reach a statement, so dataset headers are
        never interpolated into SQL.

        Raises:
            DatabaseOperationError: If the table has no such column
        """
        column = self.column(name)
        if column is None:
            raise DatabaseOperationError(
                f"Unknown column '{name}'", operation=operation, table=self.name
            )
        return column

    def column_metadata(self, name: str) -> Optional[ColumnMetadata]:
        return self._metadata.get(str(name).upper())

    @property
    def primary_key_columns(self) -> List[str]:
        return [c.name for c in self.table.primary_key.columns]


def _column_metadata(column, position: int) -> ColumnMetadata:
    sql_type = column.type
    precision = getattr(sql_type, "precision", None) or getattr(sql_type, "length", None) or 0
    scale = getattr(sql_type, "scale", None) or 0
    default = None
    if column.server_default is not None:
        default = str(getattr(column.server_default, "arg", column.server_default))
    return ColumnMetadata(
        name=column.name,
        sql_type=sql_type,
        nullable=bool(column.nullable),
        primary_key=bool(column.primary_key),
        ordinal_position=position,
        precision=int(precision) if isinstance(precision, int) else 0,
        scale=int(scale) if isinstance(scale, int) else 0,
        default_value=default,
    )


class SchemaInspector:
    """
    Reads table, column and foreign key metadata from a live connection.

    Reflected tables are cached for the lifetime of the inspector, which is
    one preparation or verification call.
    """

    def __init__(self, connection: Connection, schema: Optional[str] = None):
        self.connection = connection
        self.schema = schema
        self._inspector = inspect(connection)
        self._metadata = MetaData()
        self._tables: Dict[str, TableSchema] = {}
        self._table_names: Optional[Dict[str, str]] = None

    def _known_tables(self) -> Dict[str, str]:
        if self._table_names is None:
            names = self._inspector.get_table_names(schema=self.schema)
            self._table_names = {n.upper(): n for n in names}
        return self._table_names

    def resolve_table_name(self, name: str) -> str:
        """Map a dataset table name onto the database's spelling of it."""
        return self._known_tables().get(str(name).upper(), str(name))

    def has_table(self, name: str) -> bool:
        return str(name).upper() in self._known_tables()

    def reflect(self, name: str) -> TableSchema:
        """
        Reflect a table.

        Raises:
            DatabaseOperationError: If the table does not exist or cannot be reflected
        """
        key = str(name).upper()
        if key in self._tables:
            return self._tables[key]

        actual_name = self.resolve_table_name(name)
        try:
            table = SaTable(
                actual_name, self._metadata, autoload_with=self.connection, schema=self.schema
            )
        except NoSuchTableError as e:
            raise DatabaseOperationError(f"Table not found: {name}", table=str(name)) from e
        except SQLAlchemyError as e:
            raise DatabaseOperationError(
                f"Failed to read metadata of table {name}", table=str(name)
            ) from e

        schema = TableSchema(table)
        self._tables[key] = schema
        return schema

    def foreign_key_dependencies(self, table_names: List[str]) -> Dict[str, Set[str]]:
        """
        Return, for each table, the other listed tables it references.

        Keys and values are upper-cased table names; self references and
        tables outside the list are dropped.

        Raises:
            SQLAlchemyError: If the metadata cannot be read
        """
        wanted = {str(n).upper() for n in table_names}
        dependencies: Dict[str, Set[str]] = {}
        for name in table_names:
            key = str(name).upper()
            if not self.has_table(name):
                continue
            foreign_keys = self._inspector.get_foreign_keys(
                self.resolve_table_name(name), schema=self.schema
            )
            parents = set()
            for fk in foreign_keys:
                referred = (fk.get("referred_table") or "").upper()
                if referred and referred in wanted and referred != key:
                    parents.add(referred)
            if parents:
                logger.debug(f"Table {name} depends on: {sorted(parents)}")
                dependencies[key] = parents
        return dependencies
