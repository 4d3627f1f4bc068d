"""PostgreSQL connectivity and connection helpers.

Environment Variables:
    CREDIT_RATING_DATABASE_URL: Application role connection string
    CREDIT_RATING_DATABASE_ADMIN_URL: Admin connection string (migrations/tests only)

When CREDIT_RATING_DATABASE_URL is unset, services fall back to in-memory
repositories.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from credit_rating.errors import DependencyError

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = "CREDIT_RATING_DATABASE_URL"
DATABASE_ADMIN_URL_ENV = "CREDIT_RATING_DATABASE_ADMIN_URL"

_app_engine: Engine | None = None
_admin_engine: Engine | None = None


class DatabaseConfigError(Exception):
    """Raised when database configuration is missing or invalid."""


def is_postgres_configured() -> bool:
    """Return True if CREDIT_RATING_DATABASE_URL is set."""
    return bool(os.environ.get(DATABASE_URL_ENV))


def _normalize_url(url: str) -> str:
    # SQLAlchemy 2 no longer accepts the legacy postgres:// scheme
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def get_database_url(admin: bool = False) -> str:
    """Get the database URL from environment.

    Args:
        admin: If True, return admin URL; otherwise return app URL.

    Raises:
        DatabaseConfigError: If the required environment variable is not set.
    """
    env_var = DATABASE_ADMIN_URL_ENV if admin else DATABASE_URL_ENV
    url = os.environ.get(env_var)
    if not url:
        raise DatabaseConfigError(
            f"Database URL not configured. Set {env_var} environment variable."
        )
    return _normalize_url(url)


def get_app_engine() -> Engine:
    """Get or create the application database engine."""
    global _app_engine

    if _app_engine is None:
        _app_engine = create_engine(
            get_database_url(admin=False),
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
        logger.info("Created application database engine")

    return _app_engine


def get_admin_engine() -> Engine:
    """Get or create the admin database engine."""
    global _admin_engine

    if _admin_engine is None:
        _admin_engine = create_engine(
            get_database_url(admin=True),
            pool_size=2,
            max_overflow=5,
            pool_pre_ping=True,
            echo=False,
        )
        logger.info("Created admin database engine")

    return _admin_engine


@contextmanager
def begin_app_conn() -> Generator[Connection, None, None]:
    """Yield an application connection inside a transaction.

    Commits on success, rolls back on error.
    """
    engine = get_app_engine()
    with engine.connect() as conn, conn.begin():
        yield conn


@contextmanager
def begin_admin_conn() -> Generator[Connection, None, None]:
    """Yield an admin connection inside a transaction."""
    engine = get_admin_engine()
    with engine.connect() as conn, conn.begin():
        yield conn


def reset_engines() -> None:
    """Dispose and forget cached engines. For testing."""
    global _app_engine, _admin_engine
    if _app_engine is not None:
        _app_engine.dispose()
        _app_engine = None
    if _admin_engine is not None:
        _admin_engine.dispose()
        _admin_engine = None


@contextmanager
def store_errors(dependency: str) -> Generator[None, None, None]:
    """Translate SQLAlchemy failures into DependencyError.

    Args:
        dependency: Collaborator name reported to the caller (e.g. "template_store").

    Raises:
        DependencyError: If the wrapped block raises SQLAlchemyError.
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("%s failed: %s", dependency, e)
        raise DependencyError(dependency, str(e)) from e
