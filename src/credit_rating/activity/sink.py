"""Activity log sinks.

Records who did what (template created, assessment approved, ...). The log is
a non-critical collaborator: services call ``record_activity`` which logs and
swallows sink failures so the primary operation is never aborted.

Sinks:
- JsonlFileActivityLog: append-only JSONL file (path from CREDIT_RATING_ACTIVITY_LOG_PATH)
- PostgresActivityLog: activity_log table, written on its own connection
- InMemoryActivityLog: for tests
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from credit_rating.persistence.timestamps import to_iso, utc_now

logger = logging.getLogger(__name__)

ACTIVITY_LOG_PATH_ENV = "CREDIT_RATING_ACTIVITY_LOG_PATH"
DEFAULT_ACTIVITY_LOG_PATH = "./var/activity/activity_log.jsonl"


class ActivityLogError(Exception):
    """Raised by a sink when an entry cannot be written."""


@runtime_checkable
class ActivityLog(Protocol):
    """Protocol for activity log sinks."""

    def record(
        self,
        username: str,
        action: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append one activity entry.

        Raises:
            ActivityLogError: If the entry cannot be written.
        """
        ...


def _build_entry(
    username: str,
    action: str,
    description: str,
    metadata: dict[str, Any] | None,
) -> dict[str, Any]:
    return {
        "entry_id": str(uuid.uuid4()),
        "username": username,
        "action": action,
        "description": description,
        "metadata": metadata or {},
        "timestamp": to_iso(utc_now()),
    }


class JsonlFileActivityLog:
    """Append-only JSONL file activity log.

    One line per entry, serialized with sorted keys. Never truncates.
    """

    def __init__(self, file_path: str | None = None) -> None:
        if file_path is not None:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path(
                os.environ.get(ACTIVITY_LOG_PATH_ENV) or DEFAULT_ACTIVITY_LOG_PATH
            )

    @property
    def file_path(self) -> Path:
        return self._file_path

    def record(
        self,
        username: str,
        action: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        entry = _build_entry(username, action, description, metadata)
        try:
            line = json.dumps(entry, sort_keys=True, separators=(",", ":"), default=str) + "\n"
        except (TypeError, ValueError) as e:
            raise ActivityLogError(f"Failed to serialize activity entry: {e}") from e

        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file_path, mode="a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise ActivityLogError(
                f"Failed to write activity entry to {self._file_path}: {e}"
            ) from e


class InMemoryActivityLog:
    """In-memory activity log for tests."""

    def __init__(self) -> None:
        self._entries: list[dict[str, Any]] = []

    def record(
        self,
        username: str,
        action: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        entry = _build_entry(username, action, description, metadata)
        # Round-trip through JSON so tests see what a file sink would persist
        self._entries.append(json.loads(json.dumps(entry, default=str)))

    @property
    def entries(self) -> list[dict[str, Any]]:
        return list(self._entries)

    def actions(self) -> list[str]:
        return [e["action"] for e in self._entries]

    def clear(self) -> None:
        self._entries.clear()


class PostgresActivityLog:
    """Activity log stored in the activity_log table.

    Uses its own short transaction so a failed log write cannot roll back
    the caller's request transaction.
    """

    def record(
        self,
        username: str,
        action: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        from sqlalchemy import text
        from sqlalchemy.exc import SQLAlchemyError

        from credit_rating.persistence.db import begin_app_conn

        entry = _build_entry(username, action, description, metadata)
        try:
            with begin_app_conn() as conn:
                conn.execute(
                    text(
                        """
                        INSERT INTO activity_log
                        (entry_id, username, action, description, metadata, created_at)
                        VALUES
                        (:entry_id, :username, :action, :description,
                         CAST(:metadata AS JSONB), :created_at)
                        """
                    ),
                    {
                        "entry_id": entry["entry_id"],
                        "username": username,
                        "action": action,
                        "description": description,
                        "metadata": json.dumps(entry["metadata"], default=str),
                        "created_at": utc_now(),
                    },
                )
        except SQLAlchemyError as e:
            raise ActivityLogError(f"Failed to insert activity entry: {e}") from e


def record_activity(
    sink: ActivityLog | None,
    username: str,
    action: str,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Record an activity entry, never raising.

    Failures are logged at WARNING and swallowed; the activity log must not
    abort the operation it describes.
    """
    if sink is None:
        return
    try:
        sink.record(username, action, description, metadata)
    except Exception as e:
        logger.warning("Failed to record activity %s for %s: %s", action, username, e)


def get_activity_log() -> ActivityLog:
    """Return the configured activity log sink.

    PostgresActivityLog when a database is configured, JSONL file otherwise.
    """
    from credit_rating.persistence.db import is_postgres_configured

    if is_postgres_configured():
        return PostgresActivityLog()
    return JsonlFileActivityLog()
