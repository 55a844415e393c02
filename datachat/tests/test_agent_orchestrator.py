import json
from types import SimpleNamespace

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.tools import BaseTool
from pydantic import Field

from datachat.schemas.connection import Dialect
from datachat.services.agent_orchestrator import AgentOrchestrator

RESULTS = [{"name": "Alice", "total": 10}]


class FakePrisma:
    def __init__(self, dialect="postgres", chat_connection="conn-1") -> None:
        self.dialect = dialect
        self.chat_connection = chat_connection

    async def query_raw(self, query, *args):
        if 'FROM "chat_connections"' in query:
            return [{"connection_id": self.chat_connection}] if self.chat_connection else []
        if 'FROM "database_connections"' in query:
            return [{"dialect": self.dialect}] if args[0] == "conn-1" else []
        return []


class FakeNLQTool(BaseTool):
    name: str = "postgres_natural_language_query"
    description: str = "fake"
    calls: list = Field(default_factory=list)
    closed: bool = False

    def _run(self, query: str) -> str:
        raise NotImplementedError

    async def _arun(self, query: str) -> str:
        self.calls.append(query)
        return json.dumps({"sqlQuery": "SELECT name, total FROM customers ORDER BY total DESC", "results": RESULTS})

    async def close(self) -> None:
        self.closed = True


class ToolFactory:
    def __init__(self) -> None:
        self.tool = FakeNLQTool()
        self.calls = []

    def __call__(self, dialect, **kwargs):
        self.calls.append((dialect, kwargs))
        return self.tool


def make_settings() -> SimpleNamespace:
    return SimpleNamespace(AGENT_MAX_ITERATIONS=3, NLQ_MAX_RETRIES=2)


@pytest.mark.asyncio
async def test_handle_question_builds_full_response() -> None:
    llm = FakeListChatModel(
        responses=[
            json.dumps({"action": "postgres_natural_language_query", "action_input": "top customers by total"}),
            json.dumps(
                {
                    "action": "Final Answer",
                    "action_input": "Alice is the top customer. Bob is second. Carol is third. Dave is fourth.",
                }
            ),
            "null",
            json.dumps({"type": "table", "componentConfig": {"data": RESULTS, "title": "Top customers"}}),
        ]
    )
    factory = ToolFactory()
    orchestrator = AgentOrchestrator(FakePrisma(), make_settings(), llm, tool_factory=factory)

    result = await orchestrator.handle_question("Who are our top customers?", "user-1", chat_id="chat-1")

    assert result["answer"] == "Alice is the top customer. Bob is second. Carol is third."
    assert result["visualization"] is None
    assert result["tableData"]["componentConfig"]["columns"] == [
        {"key": "name", "header": "Name", "isNumeric": False},
        {"key": "total", "header": "Total", "isNumeric": True},
    ]
    assert result["sqlQuery"] == "SELECT name, total FROM customers ORDER BY total DESC"
    assert factory.tool.calls == ["top customers by total"]
    assert factory.tool.closed

    dialect, kwargs = factory.calls[0]
    assert dialect is Dialect.POSTGRES
    assert kwargs["user_id"] == "user-1"
    assert kwargs["chat_id"] == "chat-1"


@pytest.mark.asyncio
async def test_resolve_dialect_from_chat_or_default() -> None:
    orchestrator = AgentOrchestrator(FakePrisma(dialect="mysql"), make_settings(), llm=None)
    assert await orchestrator.resolve_dialect("user-1", "chat-1", None) is Dialect.MYSQL
    assert await orchestrator.resolve_dialect("user-1", None, "conn-1") is Dialect.MYSQL

    orchestrator = AgentOrchestrator(FakePrisma(dialect="SQL Server"), make_settings(), llm=None)
    assert await orchestrator.resolve_dialect("user-1", "chat-1", None) is Dialect.SQLSERVER

    orchestrator = AgentOrchestrator(FakePrisma(chat_connection=None), make_settings(), llm=None)
    assert await orchestrator.resolve_dialect("user-1", "chat-1", None) is Dialect.POSTGRES


@pytest.mark.asyncio
async def test_tool_is_closed_when_agent_fails() -> None:
    class BrokenLLM:
        async def ainvoke(self, messages):
            raise RuntimeError("model endpoint unreachable")

    factory = ToolFactory()
    orchestrator = AgentOrchestrator(FakePrisma(), make_settings(), BrokenLLM(), tool_factory=factory)

    with pytest.raises(RuntimeError):
        await orchestrator.handle_question("q", "user-1", connection_id="conn-1")
    assert factory.tool.closed
