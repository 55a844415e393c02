"""Raw-SQL access to connection, schema snapshot and chat association rows."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Optional
from uuid import uuid4

from pydantic import BaseModel

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)


class ConnectionRecord(BaseModel):
    """A database_connections row as stored (password still encrypted)."""

    id: str
    user_id: str
    dialect: Optional[str] = None
    host: str
    port: Optional[int] = None
    dbname: str
    username: str
    password: Optional[str] = None
    display_name: Optional[str] = None
    custom_instructions: Optional[str] = None


def _row_dict(row: Any) -> dict[str, Any]:
    if isinstance(row, dict):
        return row
    if hasattr(row, "__dict__"):
        return dict(row.__dict__)
    return {}


def _load_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode()
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


async def fetch_connection(
    prisma: Prisma, *, user_id: str, connection_id: str
) -> Optional[ConnectionRecord]:
    """Return the connection row only when it belongs to user_id."""
    rows = await prisma.query_raw(
        """
        SELECT "id", "user_id", "dialect", "host", "port", "dbname", "username",
               "password", "display_name", "custom_instructions"
        FROM "database_connections"
        WHERE "id" = $1 AND "user_id" = $2
        LIMIT 1
        """,
        connection_id,
        user_id,
    )
    if not rows:
        return None
    data = _row_dict(rows[0])
    data["id"] = str(data.get("id"))
    data["user_id"] = str(data.get("user_id"))
    port = data.get("port")
    data["port"] = int(port) if port not in (None, "") else None
    return ConnectionRecord(**data)


async def fetch_connection_dialect(prisma: Prisma, *, user_id: str, connection_id: Optional[str]) -> str:
    """Stored dialect tag for a connection; 'postgres' when missing or unreadable."""
    if not connection_id:
        return "postgres"
    try:
        rows = await prisma.query_raw(
            """
            SELECT "dialect"
            FROM "database_connections"
            WHERE "id" = $1 AND "user_id" = $2
            LIMIT 1
            """,
            connection_id,
            user_id,
        )
    except Exception as e:
        logger.warning("CONNECTION STORE | dialect lookup failed for %s: %s", connection_id, e)
        return "postgres"
    if not rows:
        return "postgres"
    return (_row_dict(rows[0]).get("dialect") or "postgres").strip().lower()


async def fetch_connection_for_chat(prisma: Prisma, *, user_id: str, chat_id: Optional[str]) -> Optional[str]:
    """Connection id associated with a chat, or None."""
    if not chat_id:
        return None
    rows = await prisma.query_raw(
        """
        SELECT "connection_id"
        FROM "chat_connections"
        WHERE "chat_id" = $1 AND "user_id" = $2
        LIMIT 1
        """,
        chat_id,
        user_id,
    )
    if not rows:
        return None
    value = _row_dict(rows[0]).get("connection_id")
    return str(value) if value else None


async def user_owns_chat(prisma: Prisma, *, user_id: str, chat_id: str) -> bool:
    rows = await prisma.query_raw(
        """
        SELECT 1
        FROM "chats"
        WHERE "id" = $1 AND "user_id" = $2
        LIMIT 1
        """,
        chat_id,
        user_id,
    )
    return bool(rows)


async def user_owns_connection(prisma: Prisma, *, user_id: str, connection_id: str) -> bool:
    rows = await prisma.query_raw(
        """
        SELECT 1
        FROM "database_connections"
        WHERE "id" = $1 AND "user_id" = $2
        LIMIT 1
        """,
        connection_id,
        user_id,
    )
    return bool(rows)


async def fetch_schema_snapshot(prisma: Prisma, connection_id: str) -> Optional[list[Any]]:
    """Stored column list for a connection. Prefers schema_data over the legacy schema column."""
    rows = await prisma.query_raw(
        """
        SELECT "schema_data", "schema"
        FROM "database_schemas"
        WHERE "connection_id" = $1
        LIMIT 1
        """,
        connection_id,
    )
    if not rows:
        return None
    data = _row_dict(rows[0])
    snapshot = _load_json(data.get("schema_data"))
    if snapshot is None:
        snapshot = _load_json(data.get("schema"))
    return snapshot if isinstance(snapshot, list) else None


async def save_schema_snapshot(
    prisma: Prisma,
    *,
    user_id: str,
    connection_id: str,
    columns: list[dict[str, Any]],
) -> None:
    """Persist a snapshot, replacing any previous one for the connection."""
    payload = json.dumps(columns)
    await prisma.execute_raw(
        """
        INSERT INTO "database_schemas" ("id", "connection_id", "user_id", "schema", "schema_data", "updated_at")
        VALUES ($1, $2, $3, $4::jsonb, $4::jsonb, NOW())
        ON CONFLICT ("connection_id") DO UPDATE
        SET "schema" = EXCLUDED."schema",
            "schema_data" = EXCLUDED."schema_data",
            "user_id" = EXCLUDED."user_id",
            "updated_at" = NOW()
        """,
        str(uuid4()),
        connection_id,
        user_id,
        payload,
    )


async def create_connection(
    prisma: Prisma,
    *,
    user_id: str,
    dialect: str,
    host: str,
    port: Optional[int],
    dbname: str,
    username: str,
    password_token: str,
    display_name: Optional[str] = None,
    custom_instructions: Optional[str] = None,
) -> str:
    """Insert a connection row. password_token must already be encrypted."""
    connection_id = str(uuid4())
    await prisma.execute_raw(
        """
        INSERT INTO "database_connections" (
            "id", "user_id", "display_name", "dialect", "host", "port",
            "dbname", "username", "password", "custom_instructions", "created_at"
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, NOW())
        """,
        connection_id,
        user_id,
        display_name,
        dialect,
        host,
        port,
        dbname,
        username,
        password_token,
        custom_instructions,
    )
    return connection_id
