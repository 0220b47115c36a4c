"""
Database Tester End-to-End Tests

Prepare a database from CSV fixtures, change it, then verify it.
"""
import pytest
from sqlalchemy import text

from dbfixture.config import Configuration, ConventionSettings, OperationDefaults
from dbfixture.exceptions import DatabaseOperationError, DataSetLoadError, ValidationError
from dbfixture.loader import DataSetSource
from dbfixture.models import ComparisonStrategy, Operation, TableOrderingStrategy
from dbfixture.tester import DatabaseTester


@pytest.fixture
def fixtures(dataset_dir, write_csv):
    """A dataset with scenario-tagged users, their orders and an expectation."""
    write_csv(
        dataset_dir,
        "USERS.csv",
        "[Scenario],ID,NAME,EMAIL,STATUS,ACTIVE,CREATED_AT\n"
        "test_rename,1,alice,alice@example.com,ACTIVE,1,2024-01-01 10:00:00\n"
        "test_rename,2,bob,,ACTIVE,true,2024-01-02 11:30:00\n"
        "test_other,3,carol,carol@example.com,LOCKED,0,2024-01-03 09:00:00\n",
    )
    write_csv(dataset_dir, "ORDERS.csv", "ID,USER_ID,AMOUNT\n10,1,9.99\n11,2,20.00\n")
    write_csv(
        dataset_dir / "expected",
        "USERS.csv",
        "[Scenario],ID,NAME,EMAIL,STATUS\n"
        "test_rename,1,alicia,alice@example.com,ACTIVE\n"
        "test_rename,2,bob,,ACTIVE\n",
    )
    return dataset_dir


@pytest.fixture
def tester(fixtures, registry):
    conventions = ConventionSettings(base_directory=str(fixtures))
    return DatabaseTester(Configuration(conventions=conventions), registry)


def rename_alice(data_source):
    with data_source.begin() as conn:
        conn.execute(text("UPDATE USERS SET NAME = 'alicia' WHERE ID = 1"))


class TestDatabaseTester:
    """Test the prepare/verify cycle."""

    def test_prepare_loads_scenario_rows_in_fk_order(self, tester, fetch):
        """Parents are inserted before children even though ORDERS sorts first."""
        applied = tester.prepare(scenario_names=["test_rename"])

        assert [t.name.value for t in applied] == ["USERS", "ORDERS"]
        assert fetch("SELECT ID, NAME, EMAIL, ACTIVE FROM USERS ORDER BY ID") == [
            (1, "alice", "alice@example.com", 1),
            (2, "bob", None, 1),
        ]
        assert len(fetch("SELECT * FROM ORDERS")) == 2

    def test_prepare_replaces_existing_rows(self, tester, fetch):
        tester.prepare(scenario_names=["test_rename"])
        tester.prepare(scenario_names=["test_rename"])
        assert len(fetch("SELECT * FROM USERS")) == 2

    def test_verify_after_action(self, tester, data_source):
        tester.prepare(scenario_names=["test_rename"])
        rename_alice(data_source)

        [result] = tester.verify(scenario_names=["test_rename"])

        assert not result.has_differences

    def test_verify_reports_differences(self, tester):
        """Without the action the expectation fails with a YAML report."""
        tester.prepare(scenario_names=["test_rename"])

        with pytest.raises(ValidationError) as exc_info:
            tester.verify(scenario_names=["test_rename"])

        message = str(exc_info.value)
        assert message.startswith("Assertion failed: 1 difference in USERS")
        assert "row[0].NAME" in message
        assert "expected: alicia" in message

    def test_verify_call_overrides(self, tester):
        tester.prepare(scenario_names=["test_rename"])
        tester.verify(scenario_names=["test_rename"], column_strategies={"NAME": ComparisonStrategy.IGNORE})
        tester.verify(scenario_names=["test_rename"], exclude_columns=["name"])

    def test_test_name_is_default_scenario_and_in_errors(self, tester):
        """The test name selects scenario rows and prefixes failure messages."""
        tester.prepare(test_name="test_rename")

        with pytest.raises(ValidationError) as exc_info:
            tester.verify(test_name="test_rename")

        assert str(exc_info.value).startswith("[test_rename] Assertion failed")
        assert exc_info.value.result.difference_count == 1

    def test_operation_override(self, tester, fetch):
        tester.prepare(scenario_names=["test_rename"])
        tester.prepare(scenario_names=["test_other"], operation=Operation.DELETE_ALL)
        assert fetch("SELECT * FROM USERS") == []

    def test_preparation_none_skips_database(self, fixtures, registry, fetch):
        configuration = Configuration(
            conventions=ConventionSettings(base_directory=str(fixtures)),
            operations=OperationDefaults(preparation=Operation.NONE),
        )
        DatabaseTester(configuration, registry).prepare(scenario_names=["test_rename"])
        assert fetch("SELECT * FROM USERS") == []

    def test_load_order_file_required(self, tester):
        with pytest.raises(DataSetLoadError):
            tester.prepare(table_ordering=TableOrderingStrategy.LOAD_ORDER_FILE)

    def test_load_order_file_drives_order(self, tester, fixtures, write_csv):
        """Listed tables come first; unlisted ones keep their original order."""
        write_csv(fixtures, "load-order.txt", "# parents first\n\nusers\n")
        applied = tester.prepare(table_ordering=TableOrderingStrategy.LOAD_ORDER_FILE)
        assert [t.name.value for t in applied] == ["USERS", "ORDERS"]

    def test_database_error_names_test(self, dataset_dir, write_csv, registry):
        """Preparation failures are wrapped with the test identity."""
        source_dir = dataset_dir / "broken"
        write_csv(source_dir, "ORDERS.csv", "ID,USER_ID,AMOUNT\n1,404,1.00\n")
        tester = DatabaseTester(Configuration(), registry)

        with pytest.raises(DatabaseOperationError) as exc_info:
            tester.prepare([DataSetSource(str(source_dir))], test_name="test_broken")

        assert str(exc_info.value).startswith("[test_broken]")
        assert exc_info.value.table == "ORDERS"

    def test_failures_of_all_sources_in_one_result(self, tester, fixtures, write_csv):
        """Every failing expectation source contributes to the raised result."""
        write_csv(fixtures / "users" / "expected", "USERS.csv", "ID,NAME\n1,alicia\n2,bob\n")
        write_csv(fixtures / "orders" / "expected", "ORDERS.csv", "ID,USER_ID,AMOUNT\n10,1,9.99\n11,2,25.00\n")
        tester.prepare(scenario_names=["test_rename"])

        with pytest.raises(ValidationError) as exc_info:
            tester.verify([DataSetSource("users"), DataSetSource("orders")])

        result = exc_info.value.result
        assert result.difference_count == 2
        assert result.table_names == ["USERS", "ORDERS"]
        assert str(exc_info.value).startswith("Assertion failed: 2 differences in USERS, ORDERS")
