"""
Table Order Resolution Tests
"""
import logging

import pytest
from sqlalchemy.exc import OperationalError

from dbfixture.exceptions import DataSetLoadError
from dbfixture.models import Table, TableName, TableOrderingStrategy, TableSet
from dbfixture.ordering import (
    ForeignKeyResolver,
    LoadOrderFile,
    TableOrderResolver,
    alphabetical_order,
    topological_sort,
)


def _table_set(*names, directory=None):
    return TableSet([Table(name, ["ID"]) for name in names], source_directory=directory)


def _names(order):
    return [n.value for n in order]


class UnreadableForeignKeys(ForeignKeyResolver):
    """Resolver whose metadata lookup fails like a locked or dropped catalog."""

    def dependencies(self, table_names, connection, schema=None):
        raise OperationalError("PRAGMA foreign_key_list", {}, Exception("database is locked"))


class TestTopologicalSort:
    """Test dependency ordering."""

    def test_dependencies_first(self):
        order = topological_sort(["C", "B", "A"], {"C": {"B"}, "B": {"A"}})
        assert order == ["A", "B", "C"]

    def test_stable_for_independent_elements(self):
        """Elements without dependencies keep their original order."""
        assert topological_sort(["X", "Y", "Z"], {}) == ["X", "Y", "Z"]

    def test_cycle_falls_back_to_original_order(self, caplog):
        """A cycle never raises; the remainder keeps its original order."""
        with caplog.at_level(logging.WARNING, logger="dbfixture.ordering"):
            order = topological_sort(["A", "B", "C"], {"A": {"B"}, "B": {"A"}})
        assert order == ["C", "A", "B"]
        assert "Circular dependency" in caplog.text

    def test_unknown_and_self_dependencies_ignored(self):
        assert topological_sort(["A", "B"], {"A": {"A", "Z"}, "B": {"A"}}) == ["A", "B"]


class TestLoadOrderFile:
    """Test reading and writing load-order.txt."""

    def test_read_skips_comments_and_blank_lines(self, dataset_dir, write_csv):
        write_csv(dataset_dir, "load-order.txt", "# parents first\nUSERS\n\n  ORDERS  \n")
        assert LoadOrderFile().read(dataset_dir) == ["USERS", "ORDERS"]

    def test_read_missing_returns_none(self, dataset_dir):
        assert LoadOrderFile().read(dataset_dir) is None

    def test_read_required_missing_raises(self, dataset_dir):
        with pytest.raises(DataSetLoadError):
            LoadOrderFile().read_required(dataset_dir)

    def test_ensure_writes_alphabetical_default(self, dataset_dir):
        path = LoadOrderFile().ensure(dataset_dir, [TableName("b"), TableName("A")])
        assert path.read_text(encoding="utf-8") == "A\nb\n"

    def test_ensure_keeps_existing_file(self, dataset_dir, write_csv):
        write_csv(dataset_dir, "load-order.txt", "Z\n")
        LoadOrderFile().ensure(dataset_dir, [TableName("A")])
        assert LoadOrderFile().read(dataset_dir) == ["Z"]


class TestForeignKeyResolver:
    """Test foreign key ordering against a real schema."""

    def test_parents_before_children(self, data_source):
        names = [TableName("ORDER_ITEMS"), TableName("orders"), TableName("PRODUCTS"), TableName("USERS")]
        with data_source.connect() as conn:
            order = _names(ForeignKeyResolver().resolve_order(names, conn))

        assert order.index("USERS") < order.index("orders") < order.index("ORDER_ITEMS")
        assert order.index("PRODUCTS") < order.index("ORDER_ITEMS")

    def test_metadata_failure_keeps_original_order(self, caplog):
        """A failing metadata read logs a warning and leaves the order unchanged."""
        names = [TableName("ORDERS"), TableName("USERS"), TableName("AUDIT")]
        with caplog.at_level(logging.WARNING, logger="dbfixture.ordering"):
            order = UnreadableForeignKeys().resolve_order(names, connection=object())

        assert _names(order) == ["ORDERS", "USERS", "AUDIT"]
        assert "Failed to read foreign key metadata" in caplog.text

    def test_foreign_key_strategy_survives_metadata_failure(self):
        resolver = TableOrderResolver(foreign_keys=UnreadableForeignKeys())
        table_set = _table_set("ORDERS", "USERS")
        order = resolver.resolve(table_set, TableOrderingStrategy.FOREIGN_KEY, connection=object())
        assert _names(order) == ["ORDERS", "USERS"]


class TestTableOrderResolver:
    """Test strategy selection."""

    def test_alphabetical(self):
        order = TableOrderResolver().resolve(_table_set("b", "C", "a"), TableOrderingStrategy.ALPHABETICAL)
        assert _names(order) == ["a", "b", "C"]
        assert _names(alphabetical_order([TableName("z"), TableName("Y")])) == ["Y", "z"]

    def test_load_order_file_strategy(self, dataset_dir, write_csv):
        """Listed tables come first; unlisted tables keep their original order."""
        write_csv(dataset_dir, "load-order.txt", "users\nGHOST\n")
        table_set = _table_set("ORDERS", "PRODUCTS", "USERS", directory=dataset_dir)
        order = TableOrderResolver().resolve(table_set, TableOrderingStrategy.LOAD_ORDER_FILE)
        assert _names(order) == ["USERS", "ORDERS", "PRODUCTS"]

    def test_load_order_file_strategy_requires_file(self, dataset_dir):
        table_set = _table_set("A", "B", directory=dataset_dir)
        with pytest.raises(DataSetLoadError):
            TableOrderResolver().resolve(table_set, TableOrderingStrategy.LOAD_ORDER_FILE)

    def test_auto_prefers_load_order_file(self, dataset_dir, write_csv, data_source):
        write_csv(dataset_dir, "load-order.txt", "ORDERS\nUSERS\n")
        table_set = _table_set("USERS", "ORDERS", directory=dataset_dir)
        with data_source.connect() as conn:
            order = TableOrderResolver().resolve(table_set, TableOrderingStrategy.AUTO, connection=conn)
        assert _names(order) == ["ORDERS", "USERS"]

    def test_auto_uses_foreign_keys(self, data_source):
        table_set = _table_set("ORDER_ITEMS", "ORDERS", "USERS", "PRODUCTS")
        with data_source.connect() as conn:
            order = _names(TableOrderResolver().resolve(table_set, connection=conn))
        assert order.index("USERS") < order.index("ORDERS") < order.index("ORDER_ITEMS")

    def test_auto_metadata_failure_falls_through_to_alphabetical(self, caplog):
        """AUTO treats unreadable foreign keys like none and continues the cascade."""
        resolver = TableOrderResolver(foreign_keys=UnreadableForeignKeys())
        with caplog.at_level(logging.WARNING, logger="dbfixture.ordering"):
            order = resolver.resolve(_table_set("USERS", "ORDERS"), connection=object())

        assert _names(order) == ["ORDERS", "USERS"]
        assert "Failed to read foreign key metadata" in caplog.text

    def test_auto_without_connection_is_alphabetical(self):
        order = TableOrderResolver().resolve(_table_set("USERS", "ORDERS"))
        assert _names(order) == ["ORDERS", "USERS"]

    def test_custom_load_order_file_name(self, dataset_dir, write_csv):
        write_csv(dataset_dir, "order.txt", "B\nA\n")
        resolver = TableOrderResolver(LoadOrderFile("order.txt"))
        order = resolver.resolve(_table_set("A", "B", directory=dataset_dir))
        assert _names(order) == ["B", "A"]
