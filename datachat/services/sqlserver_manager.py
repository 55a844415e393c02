"""SQL Server connection manager: SQLAlchemy pool over pyodbc."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.engine import URL

from datachat.core.config import is_development
from datachat.schemas.connection import ConnectionDescriptor, Dialect
from datachat.services.connection_manager import ensure_schema_snapshot, lookup_chat_connection, resolve_descriptor
from datachat.services.errors import ConnectionTestFailed, NotInitialized, QueryExecutionError
from datachat.services.sql_sanitizer import clean_generated_sql, compact_sql, is_comment_only_query, normalize_rows
from datachat.services.sqlalchemy_pool import EnginePool

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)

DEFAULT_PORT = 1433

SCHEMA_QUERY = """
SELECT c.TABLE_NAME AS table_name,
       c.COLUMN_NAME AS column_name,
       c.DATA_TYPE AS data_type,
       CASE WHEN c.IS_NULLABLE = 'YES' THEN 1 ELSE 0 END AS is_nullable,
       COLUMNPROPERTY(OBJECT_ID(c.TABLE_SCHEMA + '.' + c.TABLE_NAME), c.COLUMN_NAME, 'IsIdentity') AS is_identity,
       c.CHARACTER_MAXIMUM_LENGTH AS max_length
FROM INFORMATION_SCHEMA.COLUMNS c
WHERE c.TABLE_CATALOG = ? AND c.TABLE_SCHEMA = 'dbo'
ORDER BY c.TABLE_NAME, c.ORDINAL_POSITION
"""


class SQLServerConnectionManager:
    dialect = Dialect.SQLSERVER

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
        encrypt = "no" if is_development(self._settings) else "yes"
        return URL.create(
            "mssql+pyodbc",
            username=descriptor.username,
            password=descriptor.password,
            host=descriptor.host,
            port=descriptor.port or DEFAULT_PORT,
            database=descriptor.database_name,
            query={
                "driver": self._settings.SQLSERVER_ODBC_DRIVER,
                "Encrypt": encrypt,
                "TrustServerCertificate": "yes",
            },
        )

    async def initialize(self, user_id: str, connection_id: str) -> None:
        await self.close()

        descriptor = await resolve_descriptor(
            self._prisma,
            self._settings,
            user_id=user_id,
            connection_id=connection_id,
            expected=Dialect.SQLSERVER,
        )

        try:
            pool = EnginePool.create(
                self._build_url(descriptor),
                pool_size=self._settings.SQLSERVER_POOL_MAX_SIZE,
                pool_timeout=self._settings.DB_CONNECT_TIMEOUT_SECONDS,
                pool_recycle=self._settings.DB_POOL_IDLE_TIMEOUT_SECONDS,
                connect_args={"timeout": int(self._settings.DB_CONNECT_TIMEOUT_SECONDS)},
            )
        except Exception as e:
            # pyodbc raises ImportError here when the ODBC runtime is missing
            logger.error("MSSQL MANAGER | could not create engine for connection %s: %s", connection_id, e)
            raise ConnectionTestFailed("Failed to connect to the SQL Server database") from e
        try:
            await pool.probe()
        except Exception as e:
            logger.error("MSSQL MANAGER | liveness probe failed for connection %s: %s", connection_id, e)
            await pool.dispose()
            raise ConnectionTestFailed("Failed to connect to the SQL Server database") from e

        self._pool = pool
        self.connection_id = connection_id
        self.descriptor = descriptor
        logger.info("MSSQL MANAGER | pool ready for connection %s", connection_id)

        await ensure_schema_snapshot(
            self._prisma,
            user_id=user_id,
            connection_id=connection_id,
            introspect=lambda: pool.fetch(SCHEMA_QUERY, [descriptor.database_name]),
        )

    async def execute_query(self, sql: str, params: Optional[list[Any]] = None) -> list[dict[str, Any]]:
        if self._pool is None:
            raise NotInitialized("SQL Server connection not initialized. Call initialize() first.")

        text = clean_generated_sql(sql)
        if is_comment_only_query(text):
            logger.info("MSSQL MANAGER | comment-only statement skipped: %s", compact_sql(text))
            return []

        logger.info("MSSQL MANAGER | executing: %s", compact_sql(text))
        try:
            rows = await self._pool.fetch(text, params)
        except QueryExecutionError as e:
            logger.warning("MSSQL MANAGER | query failed: %s", e)
            return []
        logger.info("MSSQL MANAGER | %d rows", len(rows))
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
            logger.warning("MSSQL MANAGER | error while disposing pool: %s", e)
