"""Database transaction middleware for the credit rating API.

Provides a request-scoped connection with one transaction per /v1 request
when PostgreSQL is configured. Without a database URL requests pass through
and services use the in-memory repositories.

Implemented as pure ASGI middleware (not BaseHTTPMiddleware) so the sync
psycopg2 calls can run via asyncio.to_thread() without blocking the loop.

Behavior:
    - Stores the connection on request.state.db_conn
    - Commits on responses below 500, rolls back on 5xx
    - Always closes the connection
    - Connection failures become a 503 DATABASE_UNAVAILABLE envelope
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from credit_rating.api.error_model import make_error_response_no_request
from credit_rating.persistence.db import get_app_engine, is_postgres_configured

logger = logging.getLogger(__name__)


def _open_connection() -> tuple[Any, Any]:
    """Open a DB connection and begin a transaction (sync, runs in thread)."""
    conn = get_app_engine().connect()
    trans = conn.begin()
    return conn, trans


def _finish(trans: Any, commit: bool) -> None:
    if commit:
        trans.commit()
    else:
        trans.rollback()


class DBTransactionMiddleware:
    """Pure ASGI middleware for request-scoped database transactions.

    Must run inside RequestIdMiddleware so error responses carry the
    request ID.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if not request.url.path.startswith("/v1") or not is_postgres_configured():
            await self.app(scope, receive, send)
            return

        request_id: str | None = getattr(request.state, "request_id", None)

        try:
            conn, trans = await asyncio.to_thread(_open_connection)
        except Exception as e:
            logger.error("Failed to open DB connection: %s", e, extra={"request_id": request_id})
            error_response = make_error_response_no_request(
                code="DATABASE_UNAVAILABLE",
                message="Database connection failed",
                http_status=503,
                request_id=request_id,
            )
            await error_response(scope, receive, send)
            return

        request.state.db_conn = conn
        response_status: int | None = None

        async def send_wrapper(message: Any) -> None:
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message.get("status", 500)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
            commit = response_status is not None and response_status < 500
            try:
                await asyncio.to_thread(_finish, trans, commit)
                logger.debug(
                    "%s DB transaction for request %s (status=%s)",
                    "Committed" if commit else "Rolled back",
                    request_id,
                    response_status,
                )
            except Exception as e:
                logger.error(
                    "Failed to finish transaction: %s", e, extra={"request_id": request_id}
                )
                if commit:
                    with contextlib.suppress(Exception):
                        await asyncio.to_thread(_finish, trans, False)
        except Exception:
            with contextlib.suppress(Exception):
                await asyncio.to_thread(_finish, trans, False)
            raise
        finally:
            try:
                await asyncio.to_thread(conn.close)
            except Exception as e:
                logger.warning(
                    "Failed to close DB connection: %s", e, extra={"request_id": request_id}
                )
            request.state.db_conn = None
