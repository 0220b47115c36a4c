"""
Expectation Verifier Tests
"""
import pytest

from dbfixture.exceptions import ValidationError
from dbfixture.expectation import ExpectationVerifier
from dbfixture.models import ComparisonStrategy, ExpectedTableSet, Operation, Row, Table, TableSet
from dbfixture.operations import OperationExecutor


def users(*rows, columns=("ID", "NAME", "STATUS")):
    return Table("USERS", list(columns), [Row.of(dict(zip(columns, r))) for r in rows])


@pytest.fixture
def seeded(data_source):
    """USERS with two rows: (1, alice, ACTIVE) and (2, bob, ACTIVE)."""
    OperationExecutor().execute(
        Operation.CLEAN_INSERT,
        TableSet([users(("2", "bob", "ACTIVE"), ("1", "alice", "ACTIVE"))]),
        data_source,
    )
    return data_source


class TestExpectationVerifier:
    """Test verification against a seeded database."""

    def setup_method(self):
        self.verifier = ExpectationVerifier()

    def test_matching_state_passes(self, seeded):
        """Actual rows are read in primary key order."""
        expected = ExpectedTableSet.of(TableSet([users(("1", "alice", "ACTIVE"), ("2", "bob", "ACTIVE"))]))
        result = self.verifier.verify(expected, seeded)
        assert not result.has_differences

    def test_ignore_strategy_skips_column(self, seeded):
        """IGNORE on STATUS passes even though the values differ."""
        table_set = TableSet([users(("1", "alice", "X"), ("2", "bob", "Y"))])

        with pytest.raises(ValidationError):
            self.verifier.verify(ExpectedTableSet.of(table_set), seeded)

        ignored = ExpectedTableSet.of(table_set, column_strategies={"status": ComparisonStrategy.IGNORE})
        assert not self.verifier.verify(ignored, seeded).has_differences

    def test_excluded_column_skipped(self, seeded):
        table_set = TableSet([users(("1", "alice", "X"), ("2", "bob", "Y"))])
        expected = ExpectedTableSet.of(table_set, exclude_columns=["Status"])
        assert not self.verifier.verify(expected, seeded).has_differences

    def test_exclusion_wins_over_strategy(self, seeded):
        """An excluded column is skipped even when it also carries a failing strategy."""
        table_set = TableSet([users(("1", "x", "ACTIVE"), ("2", "y", "ACTIVE"))])

        regex = ExpectedTableSet.of(table_set, ["name"], {"NAME": "REGEX:^q$"})
        not_null = ExpectedTableSet.of(
            TableSet([users(("1", "alice", None), ("2", "bob", None), columns=("ID", "NAME", "EMAIL"))]),
            ["Email"],
            {"EMAIL": ComparisonStrategy.NOT_NULL},
        )

        assert not self.verifier.verify(regex, seeded).has_differences
        assert not self.verifier.verify(not_null, seeded).has_differences

    def test_row_count_mismatch_reported(self, seeded):
        """Expected 3 rows against 2 actual rows reports both counts."""
        table_set = TableSet([users(("1", "alice", "ACTIVE"), ("2", "bob", "ACTIVE"), ("3", "c", "NEW"))])

        with pytest.raises(ValidationError) as exc_info:
            self.verifier.verify(ExpectedTableSet.of(table_set), seeded)

        differences = exc_info.value.result.differences("USERS")
        assert differences == [{"path": "row_count", "expected": "3", "actual": "2"}]

    def test_all_differences_collected(self, seeded):
        """Every mismatching cell and missing table is reported at once."""
        table_set = TableSet(
            [
                users(("1", "alicia", "ACTIVE"), ("2", "bob", "GONE")),
                Table("MISSING_TABLE", ["ID"], [Row.of({"ID": "1"})]),
            ]
        )

        with pytest.raises(ValidationError) as exc_info:
            self.verifier.verify(ExpectedTableSet.of(table_set), seeded)

        result = exc_info.value.result
        assert result.difference_count == 3
        paths = [d["path"] for d in result.differences()]
        assert paths == ["row[0].NAME", "row[1].STATUS", "table"]
        assert "MISSING_TABLE" in str(exc_info.value)

    def test_missing_column_reported(self, seeded):
        table_set = TableSet([users(("1", "x"), ("2", "y"), columns=("ID", "NOPE"))])
        result = self.verifier.compare(ExpectedTableSet.of(table_set), seeded)
        assert [d["path"] for d in result.differences()] == ["column.NOPE"]

    def test_typed_columns_compared_by_value(self, data_source):
        orders = Table(
            "ORDERS",
            ["ID", "USER_ID", "AMOUNT", "ORDERED_AT"],
            [Row.of({"ID": "10", "USER_ID": "1", "AMOUNT": "12.50", "ORDERED_AT": "2024-03-01 09:30:00"})],
        )
        OperationExecutor().execute(
            Operation.CLEAN_INSERT, TableSet([users(("1", "alice", "ACTIVE")), orders]), data_source
        )
        expected = ExpectedTableSet.of(TableSet([orders]))
        assert not self.verifier.verify(expected, data_source).has_differences
