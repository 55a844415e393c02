"""Per-request orchestration: dialect lookup, agent run, answer post-processing."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from langchain_core.language_models.chat_models import BaseChatModel

from datachat.graph.graph import DEFAULT_MAX_ITERATIONS, build_agent_graph, run_agent
from datachat.schemas.connection import Dialect
from datachat.services.answer_formatter import extract_sql_query, latest_observation, normalize_answer
from datachat.services.connection_manager import lookup_chat_connection
from datachat.services.connection_store import fetch_connection_dialect
from datachat.services.nlq_tool import build_nlq_tool
from datachat.services.visualization import suggest_graph_type, suggest_table_data

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)


def _suggestion_input(answer: str, observation: Optional[str]) -> str:
    if not observation or observation.strip() == answer.strip():
        return answer
    return f"{answer}\n\nRaw query results:\n{observation}"


class AgentOrchestrator:
    """Answers one question with a fresh agent, tool and connection pool."""

    def __init__(
        self,
        prisma: Prisma,
        settings: Any,
        llm: BaseChatModel,
        tool_factory: Callable[..., Any] = build_nlq_tool,
    ):
        self._prisma = prisma
        self._settings = settings
        self._llm = llm
        self._tool_factory = tool_factory

    async def resolve_dialect(self, user_id: str, chat_id: Optional[str], connection_id: Optional[str]) -> Dialect:
        lookup_id = connection_id or await lookup_chat_connection(self._prisma, user_id=user_id, chat_id=chat_id)
        tag = await fetch_connection_dialect(self._prisma, user_id=user_id, connection_id=lookup_id)
        return Dialect.parse(tag)

    async def handle_question(
        self,
        question: str,
        user_id: str,
        chat_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        context: Optional[str] = None,
    ) -> dict[str, Any]:
        dialect = await self.resolve_dialect(user_id, chat_id, connection_id)
        logger.info("ORCHESTRATOR | user=%s chat=%s connection=%s dialect=%s", user_id, chat_id, connection_id, dialect.value)

        tool = self._tool_factory(
            dialect,
            prisma=self._prisma,
            settings=self._settings,
            llm=self._llm,
            user_id=user_id,
            chat_id=chat_id,
            connection_id=connection_id,
        )
        max_iterations = getattr(self._settings, "AGENT_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS)
        try:
            graph = build_agent_graph(self._llm, tool, max_iterations=max_iterations)
            run = await run_agent(graph, question, chat_history=context)
            logger.info("ORCHESTRATOR | agent finished with %d tool step(s)", len(run.intermediate_steps))

            async def ask(prompt: str) -> str:
                return (await run_agent(graph, prompt)).output

            suggestion_input = _suggestion_input(run.output, latest_observation(run.intermediate_steps))
            visualization = await suggest_graph_type(ask, suggestion_input, question)
            table_data = await suggest_table_data(ask, suggestion_input, question)
        finally:
            await tool.close()

        return {
            "answer": normalize_answer(run.output),
            "visualization": visualization,
            "tableData": table_data,
            "sqlQuery": extract_sql_query(run.intermediate_steps),
        }
