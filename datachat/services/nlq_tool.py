"""NLQ tool: resolve the connection, generate SQL, execute it, retry on failure.

One tool instance serves one request. The generate/execute/evaluate cycle
runs at most max_retries + 1 times; a failed generation is retried with a
broadened question, while execution failures and empty results retry the
original question.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Optional

from langchain_core.callbacks import AsyncCallbackManagerForToolRun, CallbackManagerForToolRun
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.tools import BaseTool
from pydantic import ConfigDict, Field

from datachat.schemas.connection import Dialect
from datachat.services.errors import ConnectionNotFound, ConnectionTestFailed, DialectMismatch, NLQError
from datachat.services.mysql_manager import MySQLConnectionManager
from datachat.services.nlq_generator import GeneratedQuery, NLQGenerator
from datachat.services.postgres_manager import PostgresConnectionManager
from datachat.services.sql_sanitizer import compact_sql, serialize_rows
from datachat.services.sqlserver_manager import SQLServerConnectionManager

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2

TOOL_NAMES = {
    Dialect.POSTGRES: "postgres_natural_language_query",
    Dialect.MYSQL: "mysql_natural_language_query",
    Dialect.SQLSERVER: "sqlserver_natural_language_query",
}

DIALECT_LABELS = {
    Dialect.POSTGRES: "PostgreSQL",
    Dialect.MYSQL: "MySQL",
    Dialect.SQLSERVER: "SQL Server",
}

MANAGER_CLASSES = {
    Dialect.POSTGRES: PostgresConnectionManager,
    Dialect.MYSQL: MySQLConnectionManager,
    Dialect.SQLSERVER: SQLServerConnectionManager,
}

TOOL_DESCRIPTION = (
    "Useful for querying {label} databases using natural language. "
    "Input should be a clear question or statement about the data."
)

NO_CONNECTION_MESSAGE = "No {label} database connection found for this chat. Please set up a connection first."
NO_RESULTS_MESSAGE = (
    "No results found for your query. Please try rephrasing your question "
    "or check if the data you're looking for exists in the database."
)
GENERATION_FAILED_MESSAGE = (
    "I couldn't turn your question into a {label} query. "
    "Please try rephrasing it with more specific details about the data you need."
)
EXECUTION_FAILED_MESSAGE = (
    "I couldn't run the query against your {label} database. "
    "Please try rephrasing your question or check your database connection."
)
CONNECTION_MESSAGES = {
    ConnectionNotFound: "The database connection for this chat could not be found. Please check your connection settings.",
    DialectMismatch: "The selected connection is not a {label} database. Please choose a matching connection.",
    ConnectionTestFailed: (
        "I'm having trouble connecting to your {label} database. "
        "Please check that it is reachable and that the connection settings are correct."
    ),
}
GENERIC_CONNECTION_MESSAGE = "I couldn't open your {label} database connection. Please check your connection settings and try again."

RETRY_HINT = "Previous query failed. Please try a different approach."


def connection_error_message(error: Exception, label: str) -> str:
    for error_type, message in CONNECTION_MESSAGES.items():
        if isinstance(error, error_type):
            return message.format(label=label)
    return GENERIC_CONNECTION_MESSAGE.format(label=label)


def rephrase_question(question: str) -> str:
    return f"Get information about {question}"


class NLQTool(BaseTool):
    """Answers one natural-language question against the user's database."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    dialect: Dialect
    user_id: str
    chat_id: Optional[str] = None
    connection_id: Optional[str] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    manager: Any = Field(default=None, exclude=True)
    generator: Any = Field(default=None, exclude=True)
    last_sql: Optional[str] = None

    @property
    def label(self) -> str:
        return DIALECT_LABELS[self.dialect]

    async def _resolve_connection(self) -> Optional[str]:
        """Initialize the manager for the pinned or chat-associated connection."""
        connection_id = self.connection_id
        if not connection_id and self.chat_id:
            connection_id = await self.manager.get_connection_for_chat(self.user_id, self.chat_id)
        if not connection_id:
            return None

        await self.manager.initialize(self.user_id, connection_id)
        self.connection_id = connection_id
        descriptor = getattr(self.manager, "descriptor", None)
        self.generator.bind_connection(connection_id, getattr(descriptor, "custom_instructions", None))
        return connection_id

    def _success_payload(self, generated: GeneratedQuery, rows: list[dict[str, Any]]) -> str:
        if self.dialect is Dialect.MYSQL:
            return serialize_rows(rows)
        payload: dict[str, Any] = {"sqlQuery": generated.sql}
        if self.dialect is Dialect.SQLSERVER:
            payload["explanation"] = generated.explanation or "Generated query based on your request."
        payload["results"] = rows
        return serialize_rows(payload)

    async def execute(self, query: str) -> str:
        question = (query or "").strip()
        try:
            connection_id = await self._resolve_connection()
        except NLQError as e:
            logger.warning("NLQ TOOL | connection resolution failed: %s", e)
            return connection_error_message(e, self.label)
        except Exception as e:
            logger.exception("NLQ TOOL | unexpected error while opening the connection: %s", e)
            return GENERIC_CONNECTION_MESSAGE.format(label=self.label)
        if connection_id is None:
            logger.info("NLQ TOOL | no connection for user=%s chat=%s", self.user_id, self.chat_id)
            return NO_CONNECTION_MESSAGE.format(label=self.label)

        attempts = self.max_retries + 1
        current_input = question
        error_context: Optional[str] = None

        for attempt in range(1, attempts + 1):
            has_retry = attempt < attempts
            logger.info("NLQ TOOL | %s attempt %d/%d input=%r", self.dialect.value, attempt, attempts, current_input)

            try:
                generated = await self.generator.generate(current_input, error_context)
            except Exception as e:
                logger.warning("NLQ TOOL | generation failed on attempt %d: %s", attempt, e)
                if not has_retry:
                    return GENERATION_FAILED_MESSAGE.format(label=self.label)
                current_input = rephrase_question(question)
                error_context = f"{RETRY_HINT} The previous attempt could not produce a SQL query."
                continue

            self.last_sql = generated.sql
            try:
                rows = await self.manager.execute_query(generated.sql)
            except Exception as e:
                logger.warning("NLQ TOOL | execution failed on attempt %d: %s", attempt, e)
                if not has_retry:
                    return EXECUTION_FAILED_MESSAGE.format(label=self.label)
                current_input = question
                error_context = f"{RETRY_HINT} This query could not be executed: {compact_sql(generated.sql)}"
                continue

            if not rows:
                logger.info("NLQ TOOL | empty result on attempt %d", attempt)
                if not has_retry:
                    return NO_RESULTS_MESSAGE
                current_input = question
                error_context = f"{RETRY_HINT} This query returned no rows: {compact_sql(generated.sql)}"
                continue

            logger.info("NLQ TOOL | %d rows on attempt %d", len(rows), attempt)
            return self._success_payload(generated, rows)

        return NO_RESULTS_MESSAGE

    async def _arun(
        self,
        query: str,
        run_manager: Optional[AsyncCallbackManagerForToolRun] = None,
    ) -> str:
        return await self.execute(query)

    def _run(
        self,
        query: str,
        run_manager: Optional[CallbackManagerForToolRun] = None,
    ) -> str:
        return asyncio.run(self.execute(query))

    async def close(self) -> None:
        if self.manager is not None:
            await self.manager.close()


def build_nlq_tool(
    dialect: Dialect,
    *,
    prisma: Prisma,
    settings: Any,
    llm: BaseChatModel,
    user_id: str,
    chat_id: Optional[str] = None,
    connection_id: Optional[str] = None,
) -> NLQTool:
    """Fresh tool, manager and generator for one request."""
    dialect = Dialect(dialect)
    label = DIALECT_LABELS[dialect]
    return NLQTool(
        name=TOOL_NAMES[dialect],
        description=TOOL_DESCRIPTION.format(label=label),
        dialect=dialect,
        user_id=user_id,
        chat_id=chat_id,
        connection_id=connection_id,
        max_retries=getattr(settings, "NLQ_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        manager=MANAGER_CLASSES[dialect](prisma, settings),
        generator=NLQGenerator(dialect, prisma, llm, connection_id=connection_id),
    )
