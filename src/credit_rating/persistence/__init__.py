"""Persistence: PostgreSQL connectivity, repositories and migrations."""

from credit_rating.persistence.db import (
    DatabaseConfigError,
    begin_admin_conn,
    begin_app_conn,
    get_admin_engine,
    get_app_engine,
    get_database_url,
    is_postgres_configured,
    reset_engines,
    store_errors,
)

__all__ = [
    "DatabaseConfigError",
    "begin_admin_conn",
    "begin_app_conn",
    "get_admin_engine",
    "get_app_engine",
    "get_database_url",
    "is_postgres_configured",
    "reset_engines",
    "store_errors",
]
