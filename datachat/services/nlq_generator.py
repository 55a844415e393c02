"""Natural-language-to-SQL generation, one DialectProfile per supported dialect."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from langchain_core.language_models.chat_models import BaseChatModel

from datachat.schemas.connection import Dialect
from datachat.services.errors import GenerationFailed
from datachat.services.mysql_fallback import fallback_query
from datachat.services.nlq_prompts import (
    CUSTOM_INSTRUCTIONS_PROMPT,
    ERROR_CONTEXT_PROMPT,
    GENERIC_SCHEMA_FALLBACK,
    MYSQL_ROLE_PROMPT,
    MYSQL_SYNTAX_GUIDANCE,
    POSTGRES_ROLE_PROMPT,
    POSTGRES_SYNTAX_GUIDANCE,
    SQL_ONLY_FORMAT_NOTE,
    SQLSERVER_FORMAT_NOTE,
    SQLSERVER_ROLE_PROMPT,
    SQLSERVER_SYNTAX_GUIDANCE,
    VISUALIZATION_GUIDANCE,
)
from datachat.services.schema_provider import format_schema_for_prompt, get_schema
from datachat.services.sql_sanitizer import compact_sql

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)

SQL_KEYWORDS = ("SELECT", "WITH", "INSERT", "UPDATE", "DELETE", "CREATE", "ALTER", "DROP")

_FENCED_RE = re.compile(r"```(?:[ \t]*[\w+-]*[ \t]*\r?\n|[ \t]*sql\b)?([\s\S]*?)```", re.IGNORECASE)
_SQL_QUERY_LABEL_RE = re.compile(r"SQL Query:\s*([\s\S]+?)(?=Explanation:|$)", re.IGNORECASE)
_EXPLANATION_RE = re.compile(r"Explanation:\s*([\s\S]+)$", re.IGNORECASE)


@dataclass(frozen=True)
class GeneratedQuery:
    sql: str
    explanation: Optional[str] = None


def starts_with_sql_keyword(text: str) -> bool:
    """True when any line of text begins with a SQL keyword."""
    for line in (text or "").splitlines():
        upper = line.strip().upper()
        if any(upper.startswith(k) for k in SQL_KEYWORDS):
            return True
    return False


def extract_sql(completion: str) -> str:
    """Pull a SQL statement out of a model completion.

    A fenced code block wins and its contents are returned trimmed. Otherwise
    the whole trimmed completion is returned: a line starting with a SQL
    keyword means the completion is most likely bare SQL, and anything else is
    passed through for the executor to judge.
    """
    match = _FENCED_RE.search(completion or "")
    if match:
        return match.group(1).strip()
    text = (completion or "").strip()
    if text and not starts_with_sql_keyword(text):
        logger.info("NLQ GENERATOR | completion has no SQL keyword line, passing through as-is")
    return text


def parse_sql_only(completion: str) -> GeneratedQuery:
    return GeneratedQuery(sql=extract_sql(completion))


def parse_sql_with_explanation(completion: str) -> GeneratedQuery:
    """Parse the 'SQL Query: ... Explanation: ...' format."""
    text = completion or ""
    explanation_match = _EXPLANATION_RE.search(text)
    explanation = explanation_match.group(1).strip() if explanation_match else None

    if _FENCED_RE.search(text):
        return GeneratedQuery(sql=extract_sql(text), explanation=explanation)

    labelled = _SQL_QUERY_LABEL_RE.search(text)
    if labelled:
        return GeneratedQuery(sql=labelled.group(1).strip(), explanation=explanation)

    body = text[: explanation_match.start()] if explanation_match else text
    return GeneratedQuery(sql=extract_sql(body), explanation=explanation)


@dataclass(frozen=True)
class DialectProfile:
    dialect: Dialect
    label: str
    role_prompt: str
    syntax_guidance: str
    format_note: str
    parse: Callable[[str], GeneratedQuery]
    fallback: Optional[Callable[[str], str]] = None


PROFILES: dict[Dialect, DialectProfile] = {
    Dialect.POSTGRES: DialectProfile(
        dialect=Dialect.POSTGRES,
        label="PostgreSQL",
        role_prompt=POSTGRES_ROLE_PROMPT,
        syntax_guidance=POSTGRES_SYNTAX_GUIDANCE,
        format_note=SQL_ONLY_FORMAT_NOTE.format(dialect_label="PostgreSQL"),
        parse=parse_sql_only,
    ),
    Dialect.MYSQL: DialectProfile(
        dialect=Dialect.MYSQL,
        label="MySQL",
        role_prompt=MYSQL_ROLE_PROMPT,
        syntax_guidance=MYSQL_SYNTAX_GUIDANCE,
        format_note=SQL_ONLY_FORMAT_NOTE.format(dialect_label="MySQL"),
        parse=parse_sql_only,
        fallback=fallback_query,
    ),
    Dialect.SQLSERVER: DialectProfile(
        dialect=Dialect.SQLSERVER,
        label="SQL Server",
        role_prompt=SQLSERVER_ROLE_PROMPT,
        syntax_guidance=SQLSERVER_SYNTAX_GUIDANCE,
        format_note=SQLSERVER_FORMAT_NOTE,
        parse=parse_sql_with_explanation,
    ),
}


class NLQGenerator:
    """Builds the dialect prompt, calls the model once and extracts the SQL."""

    def __init__(
        self,
        dialect: Dialect,
        prisma: Prisma,
        llm: BaseChatModel,
        connection_id: Optional[str] = None,
        instructions: Optional[str] = None,
    ):
        self.profile = PROFILES[Dialect(dialect)]
        self._prisma = prisma
        self._llm = llm
        self.connection_id = connection_id
        self.instructions = instructions

    @property
    def dialect(self) -> Dialect:
        return self.profile.dialect

    def bind_connection(self, connection_id: Optional[str], instructions: Optional[str] = None) -> None:
        self.connection_id = connection_id
        self.instructions = instructions

    async def build_prompt(self, question: str, error_context: Optional[str] = None) -> str:
        columns = await get_schema(self._prisma, self.connection_id)
        if columns:
            schema_text = format_schema_for_prompt(columns)
        else:
            logger.info("NLQ GENERATOR | no schema snapshot for connection %s, using generic patterns", self.connection_id)
            schema_text = GENERIC_SCHEMA_FALLBACK.format(dialect_label=self.profile.label)

        parts = [self.profile.role_prompt, VISUALIZATION_GUIDANCE, self.profile.syntax_guidance]
        if error_context:
            parts.append(ERROR_CONTEXT_PROMPT.format(error_context=error_context))
        parts.append(f"Database schema:\n{schema_text}")
        if self.instructions and self.instructions.strip():
            parts.append(CUSTOM_INSTRUCTIONS_PROMPT.format(instructions=self.instructions.strip()))
        parts.append(f'User question: "{question}"')
        parts.append(self.profile.format_note)
        return "\n\n".join(parts)

    async def generate(self, question: str, error_context: Optional[str] = None) -> GeneratedQuery:
        prompt = await self.build_prompt(question, error_context)
        logger.info(
            "NLQ GENERATOR | dialect=%s question=%r retry=%s",
            self.dialect.value,
            question,
            bool(error_context),
        )
        try:
            response = await self._llm.ainvoke(prompt)
        except Exception as e:
            if self.profile.fallback is None:
                logger.error("NLQ GENERATOR | model call failed: %s", e)
                raise GenerationFailed(f"Failed to generate {self.profile.label} SQL query") from e
            logger.warning("NLQ GENERATOR | model call failed (%s), using canned %s query", e, self.profile.label)
            return GeneratedQuery(sql=self.profile.fallback(question))

        content = response.content if isinstance(response.content, str) else str(response.content)
        generated = self.profile.parse(content)
        if not generated.sql:
            raise GenerationFailed(f"Model returned no {self.profile.label} SQL")
        logger.info("NLQ GENERATOR | generated: %s", compact_sql(generated.sql))
        return generated

    async def generate_query(self, question: str, error_context: Optional[str] = None) -> str:
        return (await self.generate(question, error_context)).sql
