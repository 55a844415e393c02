#!/usr/bin/env python3
"""Register a database connection for a user, or print a fresh credential key.

Usage:
  python scripts/register_connection.py generate-key
  python scripts/register_connection.py add --user-id U --dialect mysql --host H --dbname D --username N

The password is read from --password or prompted for, encrypted with
CREDENTIAL_ENCRYPTION_KEY and stored in database_connections.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass

from dotenv import load_dotenv
from prisma import Prisma

from datachat.core.config import get_settings
from datachat.core.security import encrypt_secret, generate_key
from datachat.schemas.connection import Dialect
from datachat.services.connection_store import create_connection


async def _add(args: argparse.Namespace) -> None:
    settings = get_settings()
    dialect = Dialect.normalize(args.dialect)
    if dialect is None:
        raise SystemExit(f"Unsupported dialect: {args.dialect}")
    password = args.password if args.password is not None else getpass.getpass("Database password: ")

    prisma = Prisma(auto_register=True)
    await prisma.connect()
    try:
        connection_id = await create_connection(
            prisma,
            user_id=args.user_id,
            dialect=dialect.value,
            host=args.host,
            port=args.port,
            dbname=args.dbname,
            username=args.username,
            password_token=encrypt_secret(password, settings.CREDENTIAL_ENCRYPTION_KEY),
            display_name=args.name,
            custom_instructions=args.instructions,
        )
    finally:
        if prisma.is_connected():
            await prisma.disconnect()
    print(connection_id)


def main() -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Manage stored database connections")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("generate-key", help="Print a new CREDENTIAL_ENCRYPTION_KEY")

    add = sub.add_parser("add", help="Store a new connection for a user")
    add.add_argument("--user-id", required=True)
    add.add_argument("--dialect", required=True, help="postgres, mysql or sqlserver")
    add.add_argument("--host", required=True)
    add.add_argument("--port", type=int, default=None)
    add.add_argument("--dbname", required=True)
    add.add_argument("--username", required=True)
    add.add_argument("--password", default=None)
    add.add_argument("--name", default=None, help="Display name")
    add.add_argument("--instructions", default=None, help="Custom instructions added to every prompt")

    args = parser.parse_args()
    if args.command == "generate-key":
        print(generate_key())
        return
    asyncio.run(_add(args))


if __name__ == "__main__":
    main()
