"""Schema snapshot lookup and prompt serialization."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional

from pydantic import ValidationError

from datachat.schemas.connection import ColumnDescriptor
from datachat.services.connection_store import fetch_schema_snapshot

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)


def parse_columns(raw: Iterable[Any]) -> list[ColumnDescriptor]:
    """Validate stored or introspected rows, skipping malformed entries."""
    columns: list[ColumnDescriptor] = []
    for item in raw or []:
        if isinstance(item, ColumnDescriptor):
            columns.append(item)
            continue
        if not isinstance(item, dict):
            continue
        try:
            columns.append(ColumnDescriptor(**{str(k).lower(): v for k, v in item.items()}))
        except ValidationError:
            logger.debug("SCHEMA | skipping malformed column entry: %s", item)
    return columns


async def get_schema(prisma: Prisma, connection_id: Optional[str]) -> list[ColumnDescriptor]:
    """Return the cached column inventory for a connection. Never raises."""
    if not connection_id:
        return []
    try:
        raw = await fetch_schema_snapshot(prisma, connection_id)
    except Exception as e:
        logger.warning("SCHEMA | lookup failed for connection %s: %s", connection_id, e)
        return []
    if not raw:
        return []
    return parse_columns(raw)


def format_schema_for_prompt(columns: list[ColumnDescriptor]) -> str:
    """Group columns by table: 'Table: x' followed by '- column (type)' lines."""
    tables: dict[str, list[ColumnDescriptor]] = {}
    for col in columns:
        tables.setdefault(col.table_name, []).append(col)

    blocks = []
    for table_name, cols in tables.items():
        lines = [f"Table: {table_name}", "Columns:"]
        for col in cols:
            details = [col.data_type]
            if col.max_length and col.max_length > 0:
                details[0] = f"{col.data_type}({col.max_length})"
            if col.is_nullable:
                details.append("nullable")
            if col.is_identity:
                details.append("identity")
            lines.append(f"- {col.column_name} ({', '.join(details)})")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
