"""Programmatic migration helpers.

Wraps alembic commands so tests and deploy scripts can upgrade the schema
without an alembic.ini file.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from credit_rating.persistence.db import get_admin_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), "migrations")


def get_alembic_config() -> Config:
    """Create Alembic config pointing to the migrations package."""
    config = Config()
    config.set_main_option("script_location", MIGRATIONS_DIR)
    return config


def get_current_revision(engine: Engine) -> str | None:
    """Get the current migration revision from the database.

    Returns:
        Current revision string or None if no migrations applied.
    """
    with engine.connect() as conn:
        ctx = MigrationContext.configure(conn)
        return ctx.get_current_revision()


def get_head_revision() -> str | None:
    """Get the head revision from the migration scripts."""
    script = ScriptDirectory.from_config(get_alembic_config())
    return script.get_current_head()


def run_upgrade(engine: Engine | None = None, revision: str = "head") -> None:
    """Run migrations up to the specified revision.

    Args:
        engine: SQLAlchemy engine to use. If None, uses admin engine.
        revision: Target revision (default: "head").
    """
    if engine is None:
        engine = get_admin_engine()

    config = get_alembic_config()
    with engine.begin() as conn:
        config.attributes["connection"] = conn
        command.upgrade(config, revision)

    logger.info("Migrations upgraded to %s", revision)


def run_downgrade(engine: Engine | None = None, revision: str = "base") -> None:
    """Run migrations down to the specified revision.

    Args:
        engine: SQLAlchemy engine to use. If None, uses admin engine.
        revision: Target revision (default: "base").
    """
    if engine is None:
        engine = get_admin_engine()

    config = get_alembic_config()
    with engine.begin() as conn:
        config.attributes["connection"] = conn
        command.downgrade(config, revision)

    logger.info("Migrations downgraded to %s", revision)
