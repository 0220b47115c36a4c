"""
Dataset Merger

Combines table sets loaded from several dataset sources into one, resolving
same-named tables with a TableMergeStrategy.
"""

import logging
from typing import Dict, List, Sequence

from .models import ColumnName, Table, TableMergeStrategy, TableSet

logger = logging.getLogger(__name__)


class DataSetMerger:
    """Merge table sets according to a TableMergeStrategy."""

    def merge(
        self,
        table_sets: Sequence[TableSet],
        strategy: TableMergeStrategy = TableMergeStrategy.UNION_ALL,
    ) -> TableSet:
        """
        Merge table sets into one.

        Args:
            table_sets: Table sets in source declaration order
            strategy: Rule for tables present in more than one source

        Returns:
            A single TableSet; tables keep first-seen order
        """
        if not table_sets:
            logger.debug("No table sets to merge, returning empty table set")
            return TableSet()
        if len(table_sets) == 1:
            return table_sets[0]

        strategy = TableMergeStrategy(strategy)
        logger.debug(f"Merging {len(table_sets)} table sets with strategy {strategy.value}")

        grouped: Dict[str, List[Table]] = {}
        for table_set in table_sets:
            for table in table_set:
                grouped.setdefault(table.name.key, []).append(table)

        merged = [self._merge_table(tables, strategy) for tables in grouped.values()]

        data_source = next((ts.data_source for ts in table_sets if ts.data_source is not None), None)
        directory = next(
            (ts.source_directory for ts in table_sets if ts.source_directory is not None), None
        )
        return TableSet(merged, data_source=data_source, source_directory=directory)

    def _merge_table(self, tables: List[Table], strategy: TableMergeStrategy) -> Table:
        if len(tables) == 1:
            return tables[0]

        name = tables[0].name
        if strategy == TableMergeStrategy.FIRST:
            logger.debug(f"Table {name}: using first occurrence")
            return tables[0]
        if strategy == TableMergeStrategy.LAST:
            logger.debug(f"Table {name}: using last occurrence")
            return tables[-1]
        return self._union(tables, remove_duplicates=strategy == TableMergeStrategy.UNION)

    def _union(self, tables: List[Table], remove_duplicates: bool) -> Table:
        columns: List[ColumnName] = []
        seen_columns = set()
        for table in tables:
            for column in table.columns:
                if column.key not in seen_columns:
                    seen_columns.add(column.key)
                    columns.append(column)

        rows = []
        seen_rows = set()
        for table in tables:
            for row in table.rows:
                if remove_duplicates:
                    row_key = tuple(row.get_value(column) for column in columns)
                    if row_key in seen_rows:
                        continue
                    seen_rows.add(row_key)
                rows.append(row)

        logger.debug(
            f"Table {tables[0].name}: merged {len(tables)} tables into {len(rows)} rows "
            f"with {len(columns)} columns"
        )
        return Table(tables[0].name, columns, rows)
