#!/usr/bin/env python3
"""PostgreSQL bootstrap for local runs and CI.

Creates the credit rating app role and database, migrates the schema to head
and grants the app role table privileges. Safe to run repeatedly.

Environment variables:
    CREDIT_RATING_PG_HOST / CREDIT_RATING_PG_PORT (default: 127.0.0.1 / 5432)
    PG_ADMIN_USER / PG_ADMIN_PASSWORD: cluster superuser (default: postgres / postgres)
    CREDIT_RATING_PG_APP_USER: app role to create (default: credit_rating_app)
    CREDIT_RATING_PG_APP_PASSWORD: app role password (default: credit_rating_app_pw)
    CREDIT_RATING_PG_DB_NAME: database to create (default: credit_rating_test)

Usage:
    python scripts/pg_bootstrap.py                # Full bootstrap
    python scripts/pg_bootstrap.py --verify-only  # Check both configured URLs
"""

from __future__ import annotations

import os
import sys
import time
from urllib.parse import urlparse

REQUIRED_TABLES = (
    "alembic_version",
    "assessment_templates",
    "customer_assessments",
    "customers",
    "activity_log",
)


def get_env_optional(name: str, default: str) -> str:
    return os.environ.get(name, default)


def _normalize_url_for_psycopg2(url: str) -> str:
    """Strip the SQLAlchemy driver suffix so psycopg2 accepts the URL."""
    for prefix in ("postgresql+psycopg2://", "postgresql+psycopg://"):
        if url.startswith(prefix):
            return url.replace(prefix, "postgresql://", 1)
    return url


def _safe_url_info(url: str) -> str:
    """Describe a URL without its password."""
    parsed = urlparse(url)
    return (
        f"host={parsed.hostname}, port={parsed.port}, "
        f"db={parsed.path.lstrip('/')}, user={parsed.username}"
    )


def wait_for_postgres(admin_url: str, max_retries: int = 10, delay: float = 2.0) -> None:
    """Wait until the server accepts connections, exiting 1 if it never does."""
    import psycopg2

    print("Waiting for PostgreSQL to be ready...")
    url = _normalize_url_for_psycopg2(admin_url)
    for attempt in range(max_retries):
        try:
            psycopg2.connect(url).close()
            print("PostgreSQL is ready")
            return
        except psycopg2.OperationalError as e:
            if attempt == max_retries - 1:
                print(f"ERROR: PostgreSQL not ready after {max_retries} attempts", file=sys.stderr)
                print(f"  Last error: {e}", file=sys.stderr)
                sys.exit(1)
            print(f"  Attempt {attempt + 1}/{max_retries}: not ready, waiting...")
            time.sleep(delay)


def create_app_role(admin_url: str, app_user: str, app_password: str) -> None:
    """Create a login role without superuser rights if it does not exist."""
    import psycopg2

    print(f"Creating app role '{app_user}' (if not exists)...")
    conn = psycopg2.connect(_normalize_url_for_psycopg2(admin_url))
    conn.autocommit = True
    cur = conn.cursor()
    try:
        cur.execute(
            """
            DO $$
            BEGIN
                IF NOT EXISTS (SELECT FROM pg_roles WHERE rolname = %s) THEN
                    EXECUTE format(
                        'CREATE ROLE %%I WITH LOGIN PASSWORD %%L '
                        'NOSUPERUSER NOCREATEDB NOCREATEROLE',
                        %s, %s
                    );
                END IF;
            END
            $$;
            """,
            (app_user, app_user, app_password),
        )
        print(f"  App role '{app_user}' ready")
    finally:
        cur.close()
        conn.close()


def create_database(admin_url: str, db_name: str, app_user: str) -> None:
    """Create the database if missing and let the app role connect."""
    import psycopg2

    print(f"Creating database '{db_name}' (if not exists)...")
    conn = psycopg2.connect(_normalize_url_for_psycopg2(admin_url))
    conn.autocommit = True
    cur = conn.cursor()
    try:
        cur.execute("SELECT 1 FROM pg_database WHERE datname = %s", (db_name,))
        if cur.fetchone() is None:
            cur.execute(f'CREATE DATABASE "{db_name}"')
            print(f"  Database '{db_name}' created")
        else:
            print(f"  Database '{db_name}' already exists")
        cur.execute(f'GRANT CONNECT ON DATABASE "{db_name}" TO "{app_user}"')
    finally:
        cur.close()
        conn.close()


def run_migrations() -> None:
    """Upgrade the schema to head using the admin URL from the environment."""
    from credit_rating.persistence.migrate import get_head_revision, run_upgrade

    print("Running database migrations...")
    run_upgrade()
    print(f"  Schema at revision {get_head_revision()}")


def grant_table_permissions(db_url: str, app_user: str) -> None:
    """Grant DML on all current and future tables to the app role."""
    import psycopg2

    print(f"Granting table permissions to '{app_user}'...")
    conn = psycopg2.connect(_normalize_url_for_psycopg2(db_url))
    conn.autocommit = True
    cur = conn.cursor()
    try:
        cur.execute(f'GRANT USAGE ON SCHEMA public TO "{app_user}"')
        cur.execute(
            f'GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA public TO "{app_user}"'
        )
        cur.execute(
            "ALTER DEFAULT PRIVILEGES IN SCHEMA public "
            f'GRANT SELECT, INSERT, UPDATE, DELETE ON TABLES TO "{app_user}"'
        )
    finally:
        cur.close()
        conn.close()


def verify_tables_exist(db_url: str) -> None:
    """Exit 1 unless every table created by the migrations is present."""
    import psycopg2

    conn = psycopg2.connect(_normalize_url_for_psycopg2(db_url))
    cur = conn.cursor()
    try:
        cur.execute(
            """
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
            """
        )
        existing = {row[0] for row in cur.fetchall()}
    finally:
        cur.close()
        conn.close()

    missing = [t for t in REQUIRED_TABLES if t not in existing]
    if missing:
        print(f"ERROR: Missing tables: {missing}", file=sys.stderr)
        sys.exit(1)
    print(f"  Found tables: {sorted(REQUIRED_TABLES)}")


def verify_connectivity(admin_url: str, app_url: str) -> None:
    """Connect with both URLs and report the role each resolves to."""
    import psycopg2

    for label, url in (("Admin", admin_url), ("App", app_url)):
        print(f"{label} connection: {_safe_url_info(url)}")
        try:
            conn = psycopg2.connect(_normalize_url_for_psycopg2(url))
            cur = conn.cursor()
            cur.execute("SELECT current_user")
            print(f"  Connected as: {cur.fetchone()[0]}")
            cur.close()
            conn.close()
        except psycopg2.Error as e:
            print(f"  FAILED: {type(e).__name__}: {e}", file=sys.stderr)
            sys.exit(1)
    print("Connectivity verification PASSED")


def main() -> None:
    """Bootstrap entry point."""
    if "--verify-only" in sys.argv:
        admin_url = os.environ.get("CREDIT_RATING_DATABASE_ADMIN_URL", "")
        app_url = os.environ.get("CREDIT_RATING_DATABASE_URL", "")
        if not admin_url or not app_url:
            print(
                "ERROR: CREDIT_RATING_DATABASE_ADMIN_URL and CREDIT_RATING_DATABASE_URL "
                "are required for --verify-only",
                file=sys.stderr,
            )
            sys.exit(1)
        verify_connectivity(admin_url, app_url)
        return

    host = get_env_optional("CREDIT_RATING_PG_HOST", "127.0.0.1")
    port = get_env_optional("CREDIT_RATING_PG_PORT", "5432")
    db_name = get_env_optional("CREDIT_RATING_PG_DB_NAME", "credit_rating_test")
    admin_user = get_env_optional("PG_ADMIN_USER", "postgres")
    admin_password = get_env_optional("PG_ADMIN_PASSWORD", "postgres")
    app_user = get_env_optional("CREDIT_RATING_PG_APP_USER", "credit_rating_app")
    app_password = get_env_optional("CREDIT_RATING_PG_APP_PASSWORD", "credit_rating_app_pw")

    cluster_admin_url = f"postgresql://{admin_user}:{admin_password}@{host}:{port}/postgres"
    db_admin_url = f"postgresql://{admin_user}:{admin_password}@{host}:{port}/{db_name}"
    db_app_url = f"postgresql://{app_user}:{app_password}@{host}:{port}/{db_name}"

    wait_for_postgres(cluster_admin_url)
    create_app_role(cluster_admin_url, app_user, app_password)
    create_database(cluster_admin_url, db_name, app_user)

    # credit_rating.persistence.db reads these when building engines
    os.environ["CREDIT_RATING_DATABASE_ADMIN_URL"] = db_admin_url
    os.environ["CREDIT_RATING_DATABASE_URL"] = db_app_url

    run_migrations()
    grant_table_permissions(db_admin_url, app_user)
    verify_tables_exist(db_admin_url)

    print("Bootstrap complete")
    print(
        "  CREDIT_RATING_DATABASE_ADMIN_URL="
        f"postgresql://{admin_user}:***@{host}:{port}/{db_name}"
    )
    print(f"  CREDIT_RATING_DATABASE_URL=postgresql://{app_user}:***@{host}:{port}/{db_name}")


if __name__ == "__main__":
    main()
