"""Async wrapper around a pooled SQLAlchemy engine for the MySQL and SQL Server managers."""

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from datachat.services.errors import QueryExecutionError

logger = logging.getLogger(__name__)


class EnginePool:
    """Blocking engine calls run in a worker thread so the event loop stays free.

    Statements go through exec_driver_sql so the model's SQL reaches the
    DBAPI as-is; with no params the driver never sees a parameter
    collection, so literal '%' and ':' in the SQL are left alone.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def create(
        cls,
        url: URL,
        *,
        pool_size: int,
        pool_timeout: float,
        pool_recycle: float,
        connect_args: Optional[dict[str, Any]] = None,
    ) -> "EnginePool":
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
            pool_recycle=int(pool_recycle),
            connect_args=connect_args or {},
        )
        return cls(engine)

    def _probe(self) -> None:
        with self.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

    async def probe(self) -> None:
        await asyncio.to_thread(self._probe)

    def _fetch(self, sql: str, params: Optional[list[Any]]) -> list[dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                if params:
                    result = conn.exec_driver_sql(sql, tuple(params))
                else:
                    result = conn.execution_options(no_parameters=True).exec_driver_sql(sql)
                if not result.returns_rows:
                    return []
                return [dict(m) for m in result.mappings().all()]
        except SQLAlchemyError as e:
            raise QueryExecutionError(str(e)) from e

    async def fetch(self, sql: str, params: Optional[list[Any]] = None) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._fetch, sql, params)

    async def dispose(self) -> None:
        await asyncio.to_thread(self.engine.dispose)
