import json
from types import SimpleNamespace

import pytest

from datachat.schemas.connection import Dialect
from datachat.services.errors import ConnectionTestFailed, DialectMismatch, GenerationFailed
from datachat.services.mysql_manager import MySQLConnectionManager
from datachat.services.nlq_generator import GeneratedQuery, NLQGenerator
from datachat.services.nlq_tool import (
    GENERATION_FAILED_MESSAGE,
    GENERIC_CONNECTION_MESSAGE,
    NO_CONNECTION_MESSAGE,
    NO_RESULTS_MESSAGE,
    NLQTool,
    build_nlq_tool,
)


class FakeManager:
    def __init__(self, results=None, chat_connection=None, init_error=None) -> None:
        self.results = list(results or [])
        self.chat_connection = chat_connection
        self.init_error = init_error
        self.initialized = []
        self.executed = []
        self.closed = False
        self.descriptor = SimpleNamespace(custom_instructions="Revenue lives in invoices.amount")

    async def get_connection_for_chat(self, user_id, chat_id):
        return self.chat_connection

    async def initialize(self, user_id, connection_id):
        if self.init_error:
            raise self.init_error
        self.initialized.append((user_id, connection_id))

    async def execute_query(self, sql, params=None):
        self.executed.append(sql)
        result = self.results.pop(0) if self.results else []
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


class FakeGenerator:
    def __init__(self, results) -> None:
        self.results = list(results)
        self.calls = []
        self.bound = None

    def bind_connection(self, connection_id, instructions=None):
        self.bound = (connection_id, instructions)

    async def generate(self, question, error_context=None):
        self.calls.append((question, error_context))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def make_tool(dialect=Dialect.POSTGRES, manager=None, generator=None, **kwargs) -> NLQTool:
    defaults = {"user_id": "user-1", "connection_id": "conn-1"}
    defaults.update(kwargs)
    return NLQTool(
        name="nlq",
        description="test tool",
        dialect=dialect,
        manager=manager or FakeManager(),
        generator=generator or FakeGenerator([GeneratedQuery(sql="SELECT 1")]),
        **defaults,
    )


@pytest.mark.asyncio
async def test_generation_failure_retries_with_broadened_question() -> None:
    generator = FakeGenerator([GenerationFailed("no sql")])
    manager = FakeManager()
    tool = make_tool(manager=manager, generator=generator)

    result = await tool.execute("top customers")

    assert result == GENERATION_FAILED_MESSAGE.format(label="PostgreSQL")
    assert [q for q, _ in generator.calls] == [
        "top customers",
        "Get information about top customers",
        "Get information about top customers",
    ]
    assert generator.calls[0][1] is None
    assert generator.calls[1][1] is not None
    assert manager.executed == []


@pytest.mark.asyncio
async def test_empty_results_retry_original_question_with_error_context() -> None:
    generator = FakeGenerator([GeneratedQuery(sql="SELECT * FROM customers WHERE 1 = 0")])
    manager = FakeManager(results=[[], [], []])
    tool = make_tool(manager=manager, generator=generator)

    result = await tool.execute("customers in Narnia")

    assert result == NO_RESULTS_MESSAGE
    assert len(manager.executed) == 3
    assert [q for q, _ in generator.calls] == ["customers in Narnia"] * 3
    assert "returned no rows" in generator.calls[1][1]


@pytest.mark.asyncio
async def test_execution_error_then_success() -> None:
    generator = FakeGenerator(
        [GeneratedQuery(sql="SELECT nme FROM customers"), GeneratedQuery(sql="SELECT name FROM customers")]
    )
    manager = FakeManager(results=[RuntimeError("column nme does not exist"), [{"name": "Alice"}]])
    tool = make_tool(manager=manager, generator=generator)

    result = json.loads(await tool.execute("customer names"))

    assert result == {"sqlQuery": "SELECT name FROM customers", "results": [{"name": "Alice"}]}
    assert generator.calls[1][0] == "customer names"
    assert "could not be executed" in generator.calls[1][1]
    assert tool.last_sql == "SELECT name FROM customers"


@pytest.mark.asyncio
async def test_max_retries_bounds_attempts() -> None:
    generator = FakeGenerator([GenerationFailed("no sql")])
    tool = make_tool(generator=generator, max_retries=0)
    await tool.execute("anything")
    assert len(generator.calls) == 1


@pytest.mark.asyncio
async def test_connection_is_resolved_from_chat_and_bound_to_generator() -> None:
    manager = FakeManager(results=[[{"n": 1}]], chat_connection="conn-9")
    generator = FakeGenerator([GeneratedQuery(sql="SELECT 1 AS n")])
    tool = make_tool(manager=manager, generator=generator, connection_id=None, chat_id="chat-1")

    await tool.execute("one")

    assert manager.initialized == [("user-1", "conn-9")]
    assert generator.bound == ("conn-9", "Revenue lives in invoices.amount")
    assert tool.connection_id == "conn-9"


@pytest.mark.asyncio
async def test_missing_connection_returns_setup_message() -> None:
    generator = FakeGenerator([GeneratedQuery(sql="SELECT 1")])
    tool = make_tool(
        dialect=Dialect.MYSQL,
        manager=FakeManager(chat_connection=None),
        generator=generator,
        connection_id=None,
        chat_id="chat-1",
    )

    result = await tool.execute("anything")

    assert result == NO_CONNECTION_MESSAGE.format(label="MySQL")
    assert generator.calls == []


@pytest.mark.asyncio
async def test_connection_errors_become_user_messages() -> None:
    tool = make_tool(manager=FakeManager(init_error=ConnectionTestFailed("password authentication failed for user reader")))
    result = await tool.execute("anything")
    assert "trouble connecting to your PostgreSQL database" in result
    assert "password authentication" not in result

    tool = make_tool(manager=FakeManager(init_error=DialectMismatch("postgres", "mysql")))
    assert "not a PostgreSQL database" in await tool.execute("anything")


class UnavailableStore:
    async def query_raw(self, query, *args):
        raise RuntimeError("metadata store unavailable")


@pytest.mark.asyncio
async def test_unexpected_connection_errors_become_generic_message() -> None:
    tool = make_tool(manager=FakeManager(init_error=RuntimeError("pool exploded")))
    assert await tool.execute("anything") == GENERIC_CONNECTION_MESSAGE.format(label="PostgreSQL")

    generator = FakeGenerator([GeneratedQuery(sql="SELECT 1")])
    tool = make_tool(
        dialect=Dialect.MYSQL,
        manager=MySQLConnectionManager(UnavailableStore(), SimpleNamespace()),
        generator=generator,
    )
    assert await tool.execute("anything") == GENERIC_CONNECTION_MESSAGE.format(label="MySQL")
    assert generator.calls == []


@pytest.mark.asyncio
async def test_success_payload_per_dialect() -> None:
    rows = [{"name": "Alice", "total": 10.5}]

    mysql_tool = make_tool(dialect=Dialect.MYSQL, manager=FakeManager(results=[rows]))
    assert json.loads(await mysql_tool.execute("q")) == rows

    sqlserver_tool = make_tool(
        dialect=Dialect.SQLSERVER,
        manager=FakeManager(results=[rows]),
        generator=FakeGenerator([GeneratedQuery(sql="SELECT TOP 1 name FROM dbo.c", explanation="One customer.")]),
    )
    assert json.loads(await sqlserver_tool.execute("q")) == {
        "sqlQuery": "SELECT TOP 1 name FROM dbo.c",
        "explanation": "One customer.",
        "results": rows,
    }


@pytest.mark.asyncio
async def test_tool_runs_through_langchain_invoke_and_closes_manager() -> None:
    manager = FakeManager(results=[[{"n": 1}]])
    tool = make_tool(manager=manager)

    result = await tool.ainvoke("count things")
    await tool.close()

    assert json.loads(result)["results"] == [{"n": 1}]
    assert manager.closed


def test_build_nlq_tool_wires_dialect_components() -> None:
    settings = SimpleNamespace(NLQ_MAX_RETRIES=4)
    tool = build_nlq_tool(
        Dialect.MYSQL,
        prisma=object(),
        settings=settings,
        llm=object(),
        user_id="user-1",
        chat_id="chat-1",
    )
    assert tool.name == "mysql_natural_language_query"
    assert "MySQL" in tool.description
    assert tool.max_retries == 4
    assert isinstance(tool.manager, MySQLConnectionManager)
    assert isinstance(tool.generator, NLQGenerator)
    assert tool.generator.dialect is Dialect.MYSQL


class EmptySnapshotStore:
    async def query_raw(self, query, *args):
        return []


class UnreachableLLM:
    async def ainvoke(self, prompt):
        raise ConnectionError("model endpoint unreachable")


@pytest.mark.asyncio
async def test_mysql_tool_runs_canned_query_when_model_is_unreachable() -> None:
    rows = [{"id": 7, "name": "Alice", "email": "alice@example.com", "total_amount": 1250.0}]
    manager = FakeManager(results=[rows])
    tool = make_tool(
        dialect=Dialect.MYSQL,
        manager=manager,
        generator=NLQGenerator(Dialect.MYSQL, EmptySnapshotStore(), UnreachableLLM(), connection_id="conn-1"),
    )

    result = await tool.execute("top 5 customers by revenue")

    assert len(manager.executed) == 1
    sql = manager.executed[0]
    assert "FROM customers c JOIN invoices i ON c.id = i.customer_id" in sql
    assert sql.endswith("ORDER BY total_amount DESC LIMIT 5;")
    assert json.loads(result) == rows
