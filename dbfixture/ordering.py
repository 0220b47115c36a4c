"""
Table Order Resolution

Decides the order in which tables are processed. Inserts follow the resolved
order; delete phases run in reverse so children are cleared before parents.

Sources of ordering, by strategy:
- LOAD_ORDER_FILE: a text file (default "load-order.txt") in the dataset
  directory, one table name per line; blank lines and '#' comments ignored
- FOREIGN_KEY: topological sort over the database's foreign keys
- ALPHABETICAL: case-insensitive name order
- AUTO: load-order file if present, else foreign keys if any, else alphabetical
"""

import logging
from pathlib import Path
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Set, TypeVar

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .db import SchemaInspector
from .exceptions import DataSetLoadError
from .models import TableName, TableOrderingStrategy, TableSet

logger = logging.getLogger(__name__)

DEFAULT_LOAD_ORDER_FILE = "load-order.txt"

T = TypeVar("T", bound=Hashable)


def topological_sort(elements: Sequence[T], dependencies: Mapping[T, Set[T]]) -> List[T]:
    """
    Order elements so that each comes after everything it depends on.

    Each round emits every element whose dependencies are all emitted, in
    original order. When a round finds nothing ready the remaining elements
    form a cycle and are appended in original order.

    Args:
        elements: Elements in their original order
        dependencies: element -> elements it depends on

    Returns:
        The sorted elements
    """
    elements = list(elements)
    if len(elements) <= 1:
        return elements

    known = set(elements)
    depends_on = {e: (set(dependencies.get(e, ())) & known) - {e} for e in elements}

    result: List[T] = []
    emitted: Set[T] = set()
    remaining = list(elements)

    while remaining:
        ready = [e for e in remaining if depends_on[e] <= emitted]
        if not ready:
            logger.warning(
                f"Circular dependency detected among elements: {remaining}. "
                f"Using original order for these elements."
            )
            result.extend(remaining)
            break
        for element in ready:
            result.append(element)
            emitted.add(element)
        remaining = [e for e in remaining if e not in emitted]

    return result


def alphabetical_order(table_names: Sequence[TableName]) -> List[TableName]:
    return sorted(table_names, key=lambda name: name.key)


class LoadOrderFile:
    """Reads and writes the load-order file of a dataset directory."""

    def __init__(self, file_name: str = DEFAULT_LOAD_ORDER_FILE):
        self.file_name = file_name

    def path_in(self, directory) -> Path:
        return Path(directory) / self.file_name

    def exists(self, directory) -> bool:
        return directory is not None and self.path_in(directory).is_file()

    def read(self, directory) -> Optional[List[str]]:
        """Return the listed table names, or None if the file does not exist."""
        if not self.exists(directory):
            return None
        path = self.path_in(directory)
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            raise DataSetLoadError(f"Failed to read load order file: {path}", path=path) from e

        names = []
        for line in lines:
            line = line.strip()
            if line and not line.startswith("#"):
                names.append(line)
        logger.debug(f"Read {len(names)} table names from {path}")
        return names

    def read_required(self, directory) -> List[str]:
        names = self.read(directory)
        if names is None:
            raise DataSetLoadError(
                f"{self.file_name} not found in directory: {directory}. When "
                f"TableOrderingStrategy.LOAD_ORDER_FILE is specified, the file must exist.",
                path=self.path_in(directory) if directory is not None else None,
            )
        return names

    def ensure(self, directory, table_names: Sequence[TableName]) -> Path:
        """Write an alphabetical load-order file unless one already exists."""
        path = self.path_in(directory)
        if path.is_file():
            return path
        content = "".join(f"{name}\n" for name in alphabetical_order(list(table_names)))
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise DataSetLoadError(f"Failed to write load order file: {path}", path=path) from e
        logger.info(f"Created default load order file {path}")
        return path


class ForeignKeyResolver:
    """Orders tables so referenced (parent) tables precede referencing ones."""

    def dependencies(
        self, table_names: Sequence[TableName], connection: Connection, schema: Optional[str] = None
    ) -> Dict[str, Set[str]]:
        inspector = SchemaInspector(connection, schema)
        return inspector.foreign_key_dependencies([n.value for n in table_names])

    def resolve_order(
        self,
        table_names: Sequence[TableName],
        connection: Connection,
        schema: Optional[str] = None,
    ) -> List[TableName]:
        """
        Sort tables by foreign key dependencies.

        Falls back to the original order when metadata cannot be read.
        """
        try:
            dependencies = self.dependencies(table_names, connection, schema)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to read foreign key metadata, using original order: {e}")
            return list(table_names)
        return self.sort(table_names, dependencies)

    def sort(self, table_names: Sequence[TableName], dependencies: Dict[str, Set[str]]) -> List[TableName]:
        by_key = {name.key: name for name in table_names}
        ordered_keys = topological_sort([name.key for name in table_names], dependencies)
        return [by_key[key] for key in ordered_keys]


class TableOrderResolver:
    """Resolves the table processing order for a table set."""

    def __init__(
        self,
        load_order_file: Optional[LoadOrderFile] = None,
        foreign_keys: Optional[ForeignKeyResolver] = None,
    ):
        self.load_order_file = load_order_file or LoadOrderFile()
        self.foreign_keys = foreign_keys or ForeignKeyResolver()

    def resolve(
        self,
        table_set: TableSet,
        strategy: TableOrderingStrategy = TableOrderingStrategy.AUTO,
        connection: Optional[Connection] = None,
        directory=None,
        schema: Optional[str] = None,
    ) -> List[TableName]:
        """
        Resolve the order of the tables of a table set.

        Args:
            table_set: Tables to order
            strategy: Ordering strategy
            connection: Open connection, needed for FOREIGN_KEY (and by AUTO
                to consider foreign keys)
            directory: Dataset directory holding the load-order file
                (defaults to the table set's source directory)
            schema: Schema to read foreign keys from

        Returns:
            Every table name of the set, in processing order

        Raises:
            DataSetLoadError: If LOAD_ORDER_FILE is requested and the file is missing
        """
        strategy = TableOrderingStrategy(strategy)
        names = table_set.table_names
        if directory is None:
            directory = table_set.source_directory

        if strategy == TableOrderingStrategy.LOAD_ORDER_FILE:
            listed = self.load_order_file.read_required(directory)
            return self._apply_listed(names, listed)

        if len(names) <= 1:
            return names

        if strategy == TableOrderingStrategy.FOREIGN_KEY:
            if connection is None:
                logger.warning("No connection available for foreign key ordering, using original order")
                return names
            return self.foreign_keys.resolve_order(names, connection, schema)

        if strategy == TableOrderingStrategy.ALPHABETICAL:
            return alphabetical_order(names)

        return self._resolve_auto(names, connection, directory, schema)

    def _resolve_auto(
        self,
        names: List[TableName],
        connection: Optional[Connection],
        directory,
        schema: Optional[str],
    ) -> List[TableName]:
        listed = self.load_order_file.read(directory) if directory is not None else None
        if listed is not None:
            logger.debug(f"Using load order file in {directory}")
            return self._apply_listed(names, listed)

        if connection is not None:
            try:
                dependencies = self.foreign_keys.dependencies(names, connection, schema)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to read foreign key metadata: {e}")
                dependencies = {}
            if dependencies:
                logger.debug(f"Using foreign key order for {len(names)} tables")
                return self.foreign_keys.sort(names, dependencies)

        logger.debug("Using alphabetical table order")
        return alphabetical_order(names)

    def _apply_listed(self, names: List[TableName], listed: List[str]) -> List[TableName]:
        by_key = {name.key: name for name in names}
        ordered: List[TableName] = []
        for entry in listed:
            name = by_key.pop(entry.upper(), None)
            if name is not None:
                ordered.append(name)
        ordered.extend(name for name in names if name.key in by_key)
        return ordered
