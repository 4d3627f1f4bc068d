"""Alembic environment for credit rating migrations.

Executed by alembic itself; run migrations through
credit_rating.persistence.migrate rather than the alembic CLI.
Uses CREDIT_RATING_DATABASE_ADMIN_URL for migration connections.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from alembic import context

from credit_rating.persistence.db import get_admin_engine, get_database_url

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

target_metadata = None


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode, emitting SQL to stdout."""
    context.configure(
        url=get_database_url(admin=True),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_with_connection(connection: Connection) -> None:
    """Run migrations using an existing connection."""
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode.

    Reuses the connection handed over by run_upgrade/run_downgrade when
    present, otherwise opens one on the admin engine.
    """
    connection = context.config.attributes.get("connection")
    if connection is not None:
        run_migrations_with_connection(connection)
        return

    with get_admin_engine().connect() as conn:
        run_migrations_with_connection(conn)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
