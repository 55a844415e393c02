"""Cleanup of model-written SQL and normalization of driver rows."""

import decimal
import json
import re
import uuid
from datetime import date, datetime, time
from typing import Any, Iterable, Mapping

# opening fences may carry any language tag, e.g. ```tsql
_FENCE_RE = re.compile(r"```(?:[ \t]*[\w+-]*[ \t]*(?=\r?\n)|[ \t]*sql\b)?", re.IGNORECASE)
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_SELECT_RE = re.compile(r"\bselect\b", re.IGNORECASE)


def clean_generated_sql(sql: str, strip_backticks: bool = True) -> str:
    """Remove markdown fences (and optionally stray backticks) left by the model."""
    text = _FENCE_RE.sub("", sql or "")
    if strip_backticks:
        text = text.replace("`", "")
    return text.strip()


def is_comment_only_query(sql: str) -> bool:
    """True when the text holds only comments (or nothing) and never mentions SELECT."""
    text = (sql or "").strip()
    if not text:
        return True
    if _SELECT_RE.search(text):
        return False
    without_blocks = _BLOCK_COMMENT_RE.sub("", text)
    for line in without_blocks.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("--"):
            return False
    return True


def compact_sql(sql: str, limit: int = 300) -> str:
    """Single-line SQL for log output."""
    text = " ".join((sql or "").split())
    return text if len(text) <= limit else text[:limit] + "..."


def normalize_value(value: Any) -> Any:
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def normalize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    return {str(k): normalize_value(v) for k, v in dict(row).items()}


def normalize_rows(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    return [normalize_row(r) for r in rows]


def _json_default(obj: Any) -> Any:
    value = normalize_value(obj)
    if value is obj:
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
    return value


def serialize_rows(rows: Any) -> str:
    return json.dumps(rows, default=_json_default, indent=2)
