import decimal
import json
import uuid
from datetime import date, datetime

import pytest

from datachat.services.sql_sanitizer import (
    clean_generated_sql,
    compact_sql,
    is_comment_only_query,
    normalize_row,
    serialize_rows,
)


def test_clean_generated_sql_strips_fences_and_backticks() -> None:
    raw = "```sql\nSELECT `name` FROM `customers`;\n```"
    assert clean_generated_sql(raw) == "SELECT name FROM customers;"


@pytest.mark.parametrize("tag", ["postgresql", "mysql", "tsql"])
def test_clean_generated_sql_drops_fence_language_tag(tag) -> None:
    raw = f"```{tag}\nSELECT name FROM customers\n```"
    assert clean_generated_sql(raw) == "SELECT name FROM customers"


def test_clean_generated_sql_can_keep_backticks() -> None:
    raw = "```sql\nSELECT `order` FROM `orders`;\n```"
    assert clean_generated_sql(raw, strip_backticks=False) == "SELECT `order` FROM `orders`;"


def test_comment_only_detection() -> None:
    assert is_comment_only_query("--no query possible") is True
    assert is_comment_only_query("  -- first\n-- second  ") is True
    assert is_comment_only_query("/* nothing to run */") is True
    assert is_comment_only_query("") is True


def test_comment_mentioning_select_or_real_sql_is_not_skipped() -> None:
    assert is_comment_only_query("-- SELECT would go here") is False
    assert is_comment_only_query("-- top customers\nSELECT name FROM customers") is False
    assert is_comment_only_query("-- tables\nSHOW TABLES") is False


def test_normalize_row_converts_driver_types() -> None:
    row = {
        "amount": decimal.Decimal("12.50"),
        "created_at": datetime(2024, 1, 2, 3, 4, 5),
        "day": date(2024, 1, 2),
        "id": uuid.UUID("12345678-1234-5678-1234-567812345678"),
        "blob": b"\x01\x02",
        "name": "Alice",
        "count": 3,
    }
    assert normalize_row(row) == {
        "amount": 12.5,
        "created_at": "2024-01-02T03:04:05",
        "day": "2024-01-02",
        "id": "12345678-1234-5678-1234-567812345678",
        "blob": "0102",
        "name": "Alice",
        "count": 3,
    }


def test_serialize_rows_handles_decimals() -> None:
    out = serialize_rows([{"total": decimal.Decimal("3.5")}])
    assert json.loads(out) == [{"total": 3.5}]


def test_compact_sql_collapses_whitespace_and_truncates() -> None:
    assert compact_sql("SELECT  *\n  FROM t") == "SELECT * FROM t"
    assert compact_sql("x" * 20, limit=5) == "xxxxx..."
