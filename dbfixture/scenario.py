"""
Scenario Filter

A dataset file may carry a marker column (default "[Scenario]") tagging each
row with the scenario (usually the test name) that should load it. The filter
removes that column and keeps only rows for the requested scenarios. Rows with
a blank marker are shared by every scenario.

Empty strings are normalized to NULL on every path, since delimited text
cannot tell an empty string from NULL.
"""

import logging
from typing import FrozenSet, Iterable, List, Optional

from .models import CellValue, ColumnName, Row, Table, TableSet

logger = logging.getLogger(__name__)

DEFAULT_SCENARIO_MARKER = "[Scenario]"


def _normalize_cell(value: CellValue) -> CellValue:
    if isinstance(value.value, str) and value.value == "":
        return CellValue.NULL
    return value


class ScenarioFilter:
    """Filter rows of tables by scenario name."""

    def __init__(self, marker: str = DEFAULT_SCENARIO_MARKER, scenario_names: Iterable[str] = ()):
        self.marker = ColumnName(marker)
        self.scenario_names: FrozenSet[str] = frozenset(
            name.strip() for name in scenario_names if name and name.strip()
        )
        logger.debug(f"Created scenario filter with marker {self.marker}, names {sorted(self.scenario_names)}")

    @property
    def is_active(self) -> bool:
        return bool(self.scenario_names)

    def find_marker_column(self, columns: List[ColumnName]) -> Optional[ColumnName]:
        for column in columns:
            if column.value == self.marker.value:
                return column
        return None

    def apply(self, table: Table) -> Table:
        """Return a new table with the marker column removed and rows filtered."""
        marker_column = self.find_marker_column(table.columns)
        data_columns = [c for c in table.columns if c != marker_column]

        rows = table.rows
        if marker_column is not None and self.is_active:
            rows = [row for row in rows if self._should_include(row, marker_column)]

        filtered = Table(
            table.name,
            data_columns,
            [self._extract(row, data_columns) for row in rows],
        )
        logger.debug(f"Filtered table {table.name} from {table.row_count} to {filtered.row_count} rows")
        return filtered

    def apply_all(self, table_set: TableSet) -> TableSet:
        return table_set.with_tables(self.apply(table) for table in table_set)

    def _should_include(self, row: Row, marker_column: ColumnName) -> bool:
        value = row.get_value(marker_column)
        if value.is_null:
            return True
        name = str(value.value).strip()
        if not name:
            return True
        return name in self.scenario_names

    def _extract(self, row: Row, data_columns: List[ColumnName]) -> Row:
        return Row({column: _normalize_cell(row.get_value(column)) for column in data_columns})
