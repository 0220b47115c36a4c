"""
Pytest fixtures for dbfixture tests
"""
import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    text,
)

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dbfixture.db import DataSource, DataSourceRegistry  # noqa: E402


def create_schema(engine):
    """Create the test schema: USERS <- ORDERS <- ORDER_ITEMS, plus PRODUCTS."""
    metadata = MetaData()
    Table(
        "USERS",
        metadata,
        Column("ID", Integer, primary_key=True, autoincrement=False),
        Column("NAME", String(100), nullable=False),
        Column("EMAIL", String(100)),
        Column("STATUS", String(20)),
        Column("ACTIVE", Boolean),
        Column("BALANCE", Numeric(10, 2)),
        Column("CREATED_AT", DateTime),
    )
    Table(
        "ORDERS",
        metadata,
        Column("ID", Integer, primary_key=True, autoincrement=False),
        Column("USER_ID", Integer, ForeignKey("USERS.ID"), nullable=False),
        Column("AMOUNT", Numeric(10, 2)),
        Column("ORDERED_AT", DateTime),
    )
    Table(
        "ORDER_ITEMS",
        metadata,
        Column("ID", Integer, primary_key=True, autoincrement=False),
        Column("ORDER_ID", Integer, ForeignKey("ORDERS.ID"), nullable=False),
        Column("PRODUCT_CODE", String(10), ForeignKey("PRODUCTS.CODE")),
        Column("QUANTITY", Integer),
    )
    Table(
        "PRODUCTS",
        metadata,
        Column("CODE", String(10), primary_key=True),
        Column("NAME", String(50)),
    )
    metadata.create_all(engine)
    return metadata


@pytest.fixture
def data_source(tmp_path):
    """File-backed SQLite data source with foreign keys enforced."""
    ds = DataSource.from_url(
        f"sqlite:///{tmp_path / 'test.db'}",
        pragmas={"foreign_keys": "ON"},
    )
    create_schema(ds.engine)
    yield ds
    ds.dispose()


@pytest.fixture
def registry(data_source):
    reg = DataSourceRegistry()
    reg.register_default(data_source)
    return reg


@pytest.fixture
def dataset_dir(tmp_path):
    directory = tmp_path / "fixtures"
    directory.mkdir()
    return directory


def write_file(directory: Path, name: str, content: str) -> Path:
    """Write a dataset file, creating the directory if needed."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def write_csv():
    return write_file


@pytest.fixture
def fetch(data_source):
    """Run a raw query against the test database and return rows as tuples."""

    def _fetch(sql: str):
        with data_source.connect() as conn:
            return [tuple(row) for row in conn.execute(text(sql))]

    return _fetch
