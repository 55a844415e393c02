"""MySQL connection manager: SQLAlchemy pool over PyMySQL."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.engine import URL

from datachat.core.config import is_development
from datachat.schemas.connection import ConnectionDescriptor, Dialect
from datachat.services.connection_manager import (
    ensure_schema_snapshot,
    lookup_chat_connection,
    relaxed_ssl_context,
    resolve_descriptor,
)
from datachat.services.errors import ConnectionTestFailed, NotInitialized, QueryExecutionError
from datachat.services.sql_sanitizer import clean_generated_sql, compact_sql, is_comment_only_query, normalize_rows
from datachat.services.sqlalchemy_pool import EnginePool

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3306

SCHEMA_QUERY = """
SELECT TABLE_NAME AS table_name,
       COLUMN_NAME AS column_name,
       DATA_TYPE AS data_type,
       CASE WHEN IS_NULLABLE = 'YES' THEN 1 ELSE 0 END AS is_nullable,
       CASE WHEN LOCATE('auto_increment', EXTRA) > 0 THEN 1 ELSE 0 END AS is_identity,
       CHARACTER_MAXIMUM_LENGTH AS max_length
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = %s
ORDER BY TABLE_NAME, ORDINAL_POSITION
"""


class MySQLConnectionManager:
    dialect = Dialect.MYSQL

    def __init__(self, prisma: Prisma, settings: Any):
        self._prisma = prisma
        self._settings = settings
        self._pool: Optional[EnginePool] = None
        self.connection_id: Optional[str] = None
        self.descriptor: Optional[ConnectionDescriptor] = None

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    def _build_url(self, descriptor: ConnectionDescriptor) -> URL:
        return URL.create(
            "mysql+pymysql",
            username=descriptor.username,
            password=descriptor.password,
            host=descriptor.host,
            port=descriptor.port or DEFAULT_PORT,
            database=descriptor.database_name,
            query={"charset": "utf8mb4"},
        )

    def _connect_args(self) -> dict[str, Any]:
        args: dict[str, Any] = {"connect_timeout": int(self._settings.DB_CONNECT_TIMEOUT_SECONDS)}
        if not is_development(self._settings):
            args["ssl"] = relaxed_ssl_context()
        return args

    async def initialize(self, user_id: str, connection_id: str) -> None:
        await self.close()

        descriptor = await resolve_descriptor(
            self._prisma,
            self._settings,
            user_id=user_id,
            connection_id=connection_id,
            expected=Dialect.MYSQL,
        )

        try:
            pool = EnginePool.create(
                self._build_url(descriptor),
                pool_size=self._settings.MYSQL_POOL_MAX_SIZE,
                pool_timeout=self._settings.DB_CONNECT_TIMEOUT_SECONDS,
                pool_recycle=self._settings.DB_POOL_IDLE_TIMEOUT_SECONDS,
                connect_args=self._connect_args(),
            )
        except Exception as e:
            logger.error("MYSQL MANAGER | could not create engine for connection %s: %s", connection_id, e)
            raise ConnectionTestFailed("Failed to connect to the MySQL database") from e
        try:
            await pool.probe()
        except Exception as e:
            logger.error("MYSQL MANAGER | liveness probe failed for connection %s: %s", connection_id, e)
            await pool.dispose()
            raise ConnectionTestFailed("Failed to connect to the MySQL database") from e

        self._pool = pool
        self.connection_id = connection_id
        self.descriptor = descriptor
        logger.info("MYSQL MANAGER | pool ready for connection %s", connection_id)

        await ensure_schema_snapshot(
            self._prisma,
            user_id=user_id,
            connection_id=connection_id,
            introspect=lambda: pool.fetch(SCHEMA_QUERY, [descriptor.database_name]),
        )

    async def execute_query(self, sql: str, params: Optional[list[Any]] = None) -> list[dict[str, Any]]:
        if self._pool is None:
            raise NotInitialized("MySQL connection not initialized. Call initialize() first.")

        # backticks are MySQL identifier quotes, only fences are removed
        text = clean_generated_sql(sql, strip_backticks=False)
        if is_comment_only_query(text):
            logger.info("MYSQL MANAGER | comment-only statement skipped: %s", compact_sql(text))
            return []

        logger.info("MYSQL MANAGER | executing: %s", compact_sql(text))
        try:
            rows = await self._pool.fetch(text, params)
        except QueryExecutionError as e:
            logger.warning("MYSQL MANAGER | query failed: %s", e)
            return []
        logger.info("MYSQL MANAGER | %d rows", len(rows))
        return normalize_rows(rows)

    async def get_connection_for_chat(self, user_id: str, chat_id: str) -> Optional[str]:
        return await lookup_chat_connection(self._prisma, user_id=user_id, chat_id=chat_id)

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        self.connection_id = None
        if pool is None:
            return
        try:
            await pool.dispose()
        except Exception as e:
            logger.warning("MYSQL MANAGER | error while disposing pool: %s", e)
