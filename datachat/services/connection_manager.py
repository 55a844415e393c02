"""Shared pieces of the per-dialect connection managers.

Every manager implements the ConnectionManager protocol. The helpers here
cover the parts that do not depend on the driver: resolving a stored row
into a ConnectionDescriptor, chat association lookup, the relaxed TLS
context, and the lazy schema snapshot.
"""

from __future__ import annotations

import logging
import ssl
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol

from datachat.core.security import CredentialError, decrypt_secret
from datachat.schemas.connection import ConnectionDescriptor, Dialect
from datachat.services.connection_store import (
    fetch_connection,
    fetch_connection_for_chat,
    fetch_schema_snapshot,
    save_schema_snapshot,
)
from datachat.services.errors import ConnectionNotFound, ConnectionTestFailed, DialectMismatch, SchemaFetchFailed
from datachat.services.schema_provider import parse_columns

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)


class ConnectionManager(Protocol):
    dialect: Dialect
    connection_id: Optional[str]
    descriptor: Optional[ConnectionDescriptor]

    @property
    def is_initialized(self) -> bool: ...

    async def initialize(self, user_id: str, connection_id: str) -> None: ...

    async def execute_query(self, sql: str, params: Optional[list[Any]] = None) -> list[dict[str, Any]]: ...

    async def get_connection_for_chat(self, user_id: str, chat_id: str) -> Optional[str]: ...

    async def close(self) -> None: ...


async def resolve_descriptor(
    prisma: Prisma,
    settings: Any,
    *,
    user_id: str,
    connection_id: str,
    expected: Dialect,
    require_tag: bool = True,
) -> ConnectionDescriptor:
    """Load the user's connection row, check its dialect and decrypt the password.

    The row lookup is scoped by user_id in the query itself, so a foreign
    connection id is indistinguishable from a missing one.
    """
    record = await fetch_connection(prisma, user_id=user_id, connection_id=connection_id)
    if record is None:
        logger.warning("CONNECTION | no connection id=%s for user=%s", connection_id, user_id)
        raise ConnectionNotFound(f"Connection {connection_id} not found for this user")

    tag = (record.dialect or "").strip()
    if tag or require_tag:
        if Dialect.normalize(tag) is not expected:
            raise DialectMismatch(expected.value, record.dialect)

    try:
        password = decrypt_secret(record.password, getattr(settings, "CREDENTIAL_ENCRYPTION_KEY", None))
    except CredentialError as e:
        raise ConnectionTestFailed("Stored credentials for this connection could not be read") from e

    logger.info(
        "CONNECTION | resolved id=%s dialect=%s host=%s db=%s user=%s",
        record.id,
        expected.value,
        record.host,
        record.dbname,
        record.username,
    )
    return ConnectionDescriptor(
        id=record.id,
        dialect=record.dialect,
        host=record.host,
        port=record.port,
        database_name=record.dbname,
        username=record.username,
        password=password,
        custom_instructions=record.custom_instructions,
    )


async def lookup_chat_connection(prisma: Prisma, *, user_id: str, chat_id: Optional[str]) -> Optional[str]:
    """Connection id for a chat; None when there is no association or the lookup fails."""
    if not chat_id:
        return None
    try:
        return await fetch_connection_for_chat(prisma, user_id=user_id, chat_id=chat_id)
    except Exception as e:
        logger.warning("CONNECTION | chat association lookup failed for chat=%s: %s", chat_id, e)
        return None


def relaxed_ssl_context() -> ssl.SSLContext:
    """TLS without certificate verification, used for every pool outside development."""
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


async def ensure_schema_snapshot(
    prisma: Prisma,
    *,
    user_id: str,
    connection_id: str,
    introspect: Callable[[], Awaitable[list[dict[str, Any]]]],
) -> None:
    """Persist an information-schema snapshot when none exists yet.

    Failures are logged and swallowed: a missing snapshot only weakens the
    generation prompt.
    """
    try:
        existing = await fetch_schema_snapshot(prisma, connection_id)
        if existing:
            logger.info("SCHEMA | snapshot already stored for connection %s (%d columns)", connection_id, len(existing))
            return

        try:
            rows = await introspect()
        except Exception as e:
            raise SchemaFetchFailed(str(e)) from e

        columns = parse_columns(rows)
        if not columns:
            logger.warning("SCHEMA | introspection returned no columns for connection %s", connection_id)
            return

        await save_schema_snapshot(
            prisma,
            user_id=user_id,
            connection_id=connection_id,
            columns=[c.model_dump() for c in columns],
        )
        logger.info("SCHEMA | stored snapshot for connection %s (%d columns)", connection_id, len(columns))
    except Exception as e:
        logger.error("SCHEMA | snapshot step failed for connection %s: %s", connection_id, e)
