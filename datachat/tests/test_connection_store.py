import json
from types import SimpleNamespace

import pytest

from datachat.services.connection_store import (
    create_connection,
    fetch_connection,
    fetch_connection_dialect,
    fetch_connection_for_chat,
    fetch_schema_snapshot,
    save_schema_snapshot,
    user_owns_chat,
    user_owns_connection,
)


class FakePrisma:
    def __init__(self) -> None:
        self.queries = []
        self.events = []
        self.connections = {
            ("conn-1", "user-1"): {
                "id": "conn-1",
                "user_id": "user-1",
                "dialect": "mysql",
                "host": "db.example.com",
                "port": "3306",
                "dbname": "shop",
                "username": "reader",
                "password": "encrypted",
                "display_name": "Shop",
                "custom_instructions": None,
            }
        }
        self.schema_row = None
        self.chat_connection = None
        self.fail = False

    async def query_raw(self, query, *args):
        self.queries.append((query, args))
        if self.fail:
            raise RuntimeError("metadata store down")
        if 'FROM "database_connections"' in query:
            row = self.connections.get((args[0], args[1]))
            if row is None:
                return []
            return [dict(row)] if '"host"' in query else [{"dialect": row["dialect"], "ok": 1}]
        if 'FROM "database_schemas"' in query:
            return [self.schema_row] if self.schema_row else []
        if 'FROM "chat_connections"' in query:
            return [SimpleNamespace(connection_id=self.chat_connection)] if self.chat_connection else []
        if 'FROM "chats"' in query:
            return [{"ok": 1}] if args == ("chat-1", "user-1") else []
        return []

    async def execute_raw(self, query, *args):
        self.events.append((query, args))


@pytest.mark.asyncio
async def test_fetch_connection_is_scoped_to_user() -> None:
    prisma = FakePrisma()
    record = await fetch_connection(prisma, user_id="user-1", connection_id="conn-1")
    assert record is not None
    assert record.dbname == "shop"
    assert record.port == 3306
    assert prisma.queries[0][1] == ("conn-1", "user-1")
    assert 'WHERE "id" = $1 AND "user_id" = $2' in prisma.queries[0][0]

    assert await fetch_connection(prisma, user_id="user-2", connection_id="conn-1") is None


@pytest.mark.asyncio
async def test_fetch_connection_dialect_defaults_to_postgres() -> None:
    prisma = FakePrisma()
    assert await fetch_connection_dialect(prisma, user_id="user-1", connection_id="conn-1") == "mysql"
    assert await fetch_connection_dialect(prisma, user_id="user-1", connection_id="missing") == "postgres"
    assert await fetch_connection_dialect(prisma, user_id="user-1", connection_id=None) == "postgres"

    prisma.fail = True
    assert await fetch_connection_dialect(prisma, user_id="user-1", connection_id="conn-1") == "postgres"


@pytest.mark.asyncio
async def test_chat_connection_lookup() -> None:
    prisma = FakePrisma()
    assert await fetch_connection_for_chat(prisma, user_id="user-1", chat_id="chat-1") is None
    prisma.chat_connection = "conn-1"
    assert await fetch_connection_for_chat(prisma, user_id="user-1", chat_id="chat-1") == "conn-1"
    assert await fetch_connection_for_chat(prisma, user_id="user-1", chat_id=None) is None


@pytest.mark.asyncio
async def test_ownership_checks() -> None:
    prisma = FakePrisma()
    assert await user_owns_chat(prisma, user_id="user-1", chat_id="chat-1") is True
    assert await user_owns_chat(prisma, user_id="user-2", chat_id="chat-1") is False
    assert await user_owns_connection(prisma, user_id="user-1", connection_id="conn-1") is True
    assert await user_owns_connection(prisma, user_id="user-2", connection_id="conn-1") is False


@pytest.mark.asyncio
async def test_fetch_schema_snapshot_prefers_schema_data() -> None:
    prisma = FakePrisma()
    assert await fetch_schema_snapshot(prisma, "conn-1") is None

    prisma.schema_row = {
        "schema_data": json.dumps([{"table_name": "a", "column_name": "b", "data_type": "int"}]),
        "schema": [{"table_name": "legacy", "column_name": "x", "data_type": "text"}],
    }
    snapshot = await fetch_schema_snapshot(prisma, "conn-1")
    assert snapshot[0]["table_name"] == "a"

    prisma.schema_row = {"schema_data": None, "schema": [{"table_name": "legacy", "column_name": "x", "data_type": "text"}]}
    snapshot = await fetch_schema_snapshot(prisma, "conn-1")
    assert snapshot[0]["table_name"] == "legacy"

    prisma.schema_row = {"schema_data": {"not": "a list"}, "schema": None}
    assert await fetch_schema_snapshot(prisma, "conn-1") is None


@pytest.mark.asyncio
async def test_save_schema_snapshot_upserts_json_payload() -> None:
    prisma = FakePrisma()
    columns = [{"table_name": "customers", "column_name": "name", "data_type": "varchar"}]
    await save_schema_snapshot(prisma, user_id="user-1", connection_id="conn-1", columns=columns)

    assert len(prisma.events) == 1
    query, args = prisma.events[0]
    assert "ON CONFLICT" in query
    assert args[1] == "conn-1"
    assert args[2] == "user-1"
    assert json.loads(args[3]) == columns


@pytest.mark.asyncio
async def test_create_connection_inserts_encrypted_row() -> None:
    prisma = FakePrisma()
    connection_id = await create_connection(
        prisma,
        user_id="user-1",
        dialect="sqlserver",
        host="sql.example.com",
        port=1433,
        dbname="erp",
        username="sa",
        password_token="gAAAAB-token",
    )

    assert isinstance(connection_id, str)
    query, args = prisma.events[0]
    assert 'INSERT INTO "database_connections"' in query
    assert args[0] == connection_id
    assert args[3] == "sqlserver"
    assert args[8] == "gAAAAB-token"
