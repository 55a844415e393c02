"""Postgres connection manager built on an asyncpg pool."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

import asyncpg

from datachat.core.config import is_development
from datachat.schemas.connection import ConnectionDescriptor, Dialect
from datachat.services.connection_manager import (
    ensure_schema_snapshot,
    lookup_chat_connection,
    relaxed_ssl_context,
    resolve_descriptor,
)
from datachat.services.errors import ConnectionTestFailed, NotInitialized
from datachat.services.sql_sanitizer import clean_generated_sql, compact_sql, is_comment_only_query, normalize_rows

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432

SCHEMA_QUERY = """
SELECT table_name,
       column_name,
       data_type,
       (is_nullable = 'YES') AS is_nullable,
       (is_identity = 'YES') AS is_identity,
       character_maximum_length AS max_length
FROM information_schema.columns
WHERE table_schema = 'public'
ORDER BY table_name, ordinal_position
"""


class PostgresConnectionManager:
    dialect = Dialect.POSTGRES

    def __init__(self, prisma: Prisma, settings: Any):
        self._prisma = prisma
        self._settings = settings
        self._pool: Optional[asyncpg.Pool] = None
        self.connection_id: Optional[str] = None
        self.descriptor: Optional[ConnectionDescriptor] = None

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def initialize(self, user_id: str, connection_id: str) -> None:
        await self.close()

        descriptor = await resolve_descriptor(
            self._prisma,
            self._settings,
            user_id=user_id,
            connection_id=connection_id,
            expected=Dialect.POSTGRES,
            require_tag=False,
        )

        try:
            pool = await asyncpg.create_pool(
                host=descriptor.host,
                port=descriptor.port or DEFAULT_PORT,
                user=descriptor.username,
                password=descriptor.password,
                database=descriptor.database_name,
                min_size=1,
                max_size=self._settings.POSTGRES_POOL_MAX_SIZE,
                max_inactive_connection_lifetime=self._settings.DB_POOL_IDLE_TIMEOUT_SECONDS,
                timeout=self._settings.DB_CONNECT_TIMEOUT_SECONDS,
                ssl=False if is_development(self._settings) else relaxed_ssl_context(),
            )
        except Exception as e:
            logger.error("PG MANAGER | pool creation failed for connection %s: %s", connection_id, e)
            raise ConnectionTestFailed("Failed to connect to the Postgres database") from e

        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except Exception as e:
            logger.error("PG MANAGER | liveness probe failed for connection %s: %s", connection_id, e)
            pool.terminate()
            raise ConnectionTestFailed("Failed to connect to the Postgres database") from e

        self._pool = pool
        self.connection_id = connection_id
        self.descriptor = descriptor
        logger.info("PG MANAGER | pool ready for connection %s", connection_id)

        await ensure_schema_snapshot(
            self._prisma,
            user_id=user_id,
            connection_id=connection_id,
            introspect=lambda: self._fetch(SCHEMA_QUERY),
        )

    async def _fetch(self, sql: str, params: Optional[list[Any]] = None) -> list[dict[str, Any]]:
        async with self._pool.acquire() as conn:
            records = await conn.fetch(sql, *(params or []))
        return [dict(r) for r in records]

    async def execute_query(self, sql: str, params: Optional[list[Any]] = None) -> list[dict[str, Any]]:
        if self._pool is None:
            raise NotInitialized("Postgres connection not initialized. Call initialize() first.")

        text = clean_generated_sql(sql)
        if is_comment_only_query(text):
            logger.info("PG MANAGER | comment-only statement skipped: %s", compact_sql(text))
            return []

        logger.info("PG MANAGER | executing: %s", compact_sql(text))
        try:
            rows = await self._fetch(text, params)
        except Exception as e:
            logger.warning("PG MANAGER | query failed: %s", e)
            return []
        logger.info("PG MANAGER | %d rows", len(rows))
        return normalize_rows(rows)

    async def get_connection_for_chat(self, user_id: str, chat_id: str) -> Optional[str]:
        return await lookup_chat_connection(self._prisma, user_id=user_id, chat_id=chat_id)

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        self.connection_id = None
        if pool is None:
            return
        try:
            await pool.close()
        except Exception as e:
            logger.warning("PG MANAGER | error while closing pool: %s", e)
