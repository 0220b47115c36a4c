"""
Value Binder Tests
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import types as sqltypes

from dbfixture.binder import parse_boolean, parse_datetime, to_bind_value
from dbfixture.models import CellValue


class TestToBindValue:
    """Test coercion of dataset text by column type."""

    @pytest.mark.parametrize(
        "text,sql_type,expected",
        [
            ("42", sqltypes.Integer(), 42),
            ("12.50", sqltypes.Numeric(10, 2), Decimal("12.50")),
            ("1.5", sqltypes.Float(), 1.5),
            ("yes", sqltypes.Boolean(), True),
            ("0", sqltypes.Boolean(), False),
            ("2024-01-15", sqltypes.Date(), date(2024, 1, 15)),
            ("10:30:00", sqltypes.Time(), time(10, 30)),
            ("2024-01-15 10:30:00", sqltypes.DateTime(), datetime(2024, 1, 15, 10, 30)),
            ("2024-01-15T10:30:00Z", sqltypes.DateTime(), datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)),
            ("[BASE64]aGVsbG8=", sqltypes.LargeBinary(), b"hello"),
            ("plain", sqltypes.LargeBinary(), b"plain"),
            ("text", sqltypes.String(10), "text"),
        ],
    )
    def test_conversions(self, text, sql_type, expected):
        assert to_bind_value(CellValue(text), sql_type) == expected

    def test_null_binds_none(self):
        assert to_bind_value(CellValue.NULL, sqltypes.Integer()) is None

    def test_unconvertible_value_passed_through(self):
        """Values the type cannot parse are left for the database to reject."""
        assert to_bind_value(CellValue("abc"), sqltypes.Integer()) == "abc"

    def test_non_text_values_untouched(self):
        assert to_bind_value(CellValue(7), sqltypes.String()) == 7

    def test_parse_boolean_rejects_unknown(self):
        with pytest.raises(ValueError):
            parse_boolean("maybe")

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("2024-03-01 09:30:00.5", datetime(2024, 3, 1, 9, 30, 0, 500000)),
            ("2024-03-01T09:30:00.1234567", datetime(2024, 3, 1, 9, 30, 0, 123456)),
            ("2024-03-01 09:30:00+0900", datetime(2024, 3, 1, 9, 30, tzinfo=timezone(timedelta(hours=9)))),
            ("2024-03-01 09:30:00.25z", datetime(2024, 3, 1, 9, 30, 0, 250000, tzinfo=timezone.utc)),
            ("2024-03-01", datetime(2024, 3, 1)),
        ],
    )
    def test_parse_datetime_forms(self, text, expected):
        """Any fraction length and compact offsets parse on every supported Python."""
        assert parse_datetime(text) == expected
