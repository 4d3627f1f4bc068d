"""Assessment template repository.

Provides CRUD and conditional (compare-and-swap) status transitions for
assessment templates. Postgres-backed when a connection is supplied,
in-memory fallback otherwise.

All status changes go through ``transition(template_id, expected_status, ...)``
which only applies when the stored approval_status still equals
``expected_status``; a None return means another caller moved it first.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import text

from credit_rating.persistence.db import is_postgres_configured
from credit_rating.persistence.timestamps import to_iso, utc_now

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

_COLUMNS = (
    "template_id, name, categories, status, approval_status, approval_comments, "
    "approved_by, approved_at, is_hidden, created_by, created_at, updated_by, "
    "updated_at, is_deleted, deleted_by, deleted_at"
)

# Fields a transition may set; anything else is a programming error.
_MUTABLE_FIELDS = frozenset(
    {
        "name",
        "categories",
        "status",
        "approval_status",
        "approval_comments",
        "approved_by",
        "approved_at",
        "is_hidden",
        "updated_by",
    }
)
_TIMESTAMP_FIELDS = frozenset({"approved_at", "created_at", "updated_at", "deleted_at"})


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported template fields: {sorted(unknown)}")


class TemplateStore(Protocol):
    """Read/write contract the template service relies on."""

    def create(
        self,
        *,
        template_id: str,
        name: str,
        categories: list[dict[str, Any]],
        status: str,
        approval_status: str,
        created_by: str,
    ) -> dict[str, Any]: ...

    def get(self, template_id: str) -> dict[str, Any] | None: ...

    def find_by_name(self, name: str) -> dict[str, Any] | None: ...

    def list(self, approval_status: str | None = None) -> list[dict[str, Any]]: ...

    def transition(
        self, template_id: str, *, expected_status: str, **fields: Any
    ) -> dict[str, Any] | None: ...

    def set_hidden(
        self, template_id: str, *, is_hidden: bool, updated_by: str
    ) -> dict[str, Any] | None: ...

    def soft_delete(
        self, template_id: str, *, expected_status: str, deleted_by: str
    ) -> dict[str, Any] | None: ...


class TemplatesRepository:
    """Postgres repository for assessment templates."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def create(
        self,
        *,
        template_id: str,
        name: str,
        categories: list[dict[str, Any]],
        status: str,
        approval_status: str,
        created_by: str,
    ) -> dict[str, Any]:
        """Insert a new template.

        Raises:
            IntegrityError: Another non-deleted template has the same name.
        """
        now = utc_now()
        # Savepoint so a duplicate name does not poison the request transaction
        with self._conn.begin_nested():
            row = self._conn.execute(
                text(
                    f"""
                    INSERT INTO assessment_templates (
                        template_id, name, categories, status, approval_status,
                        is_hidden, created_by, created_at, is_deleted
                    ) VALUES (
                        :template_id, :name, CAST(:categories AS JSONB), :status,
                        :approval_status, FALSE, :created_by, :created_at, FALSE
                    )
                    RETURNING {_COLUMNS}
                    """
                ),
                {
                    "template_id": template_id,
                    "name": name,
                    "categories": json.dumps(categories),
                    "status": status,
                    "approval_status": approval_status,
                    "created_by": created_by,
                    "created_at": now,
                },
            ).fetchone()
        return self._row_to_dict(row)

    def get(self, template_id: str) -> dict[str, Any] | None:
        """Get a non-deleted template by ID."""
        row = self._conn.execute(
            text(
                f"""
                SELECT {_COLUMNS}
                FROM assessment_templates
                WHERE template_id = :template_id AND is_deleted = FALSE
                """
            ),
            {"template_id": template_id},
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def find_by_name(self, name: str) -> dict[str, Any] | None:
        """Find a non-deleted template by case-insensitive name."""
        row = self._conn.execute(
            text(
                f"""
                SELECT {_COLUMNS}
                FROM assessment_templates
                WHERE lower(name) = lower(:name) AND is_deleted = FALSE
                LIMIT 1
                """
            ),
            {"name": name.strip()},
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def list(self, approval_status: str | None = None) -> list[dict[str, Any]]:
        """List non-deleted templates, newest first."""
        query = f"SELECT {_COLUMNS} FROM assessment_templates WHERE is_deleted = FALSE"
        params: dict[str, Any] = {}
        if approval_status is not None:
            query += " AND approval_status = :approval_status"
            params["approval_status"] = approval_status
        query += " ORDER BY created_at DESC, template_id"
        rows = self._conn.execute(text(query), params).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def transition(
        self, template_id: str, *, expected_status: str, **fields: Any
    ) -> dict[str, Any] | None:
        """Conditionally update a template whose approval_status is expected_status.

        Returns:
            Updated template dict, or None if the template is missing, deleted,
            or no longer in expected_status.

        Raises:
            IntegrityError: A rename collides with another template's name.
        """
        _check_fields(fields)
        assignments = ["updated_at = :updated_at"]
        params: dict[str, Any] = {
            "template_id": template_id,
            "expected_status": expected_status,
            "updated_at": utc_now(),
        }
        for name, value in fields.items():
            if name == "categories":
                assignments.append("categories = CAST(:categories AS JSONB)")
                params["categories"] = json.dumps(value)
            else:
                assignments.append(f"{name} = :{name}")
                params[name] = value

        with self._conn.begin_nested():
            row = self._conn.execute(
                text(
                    f"""
                    UPDATE assessment_templates
                    SET {", ".join(assignments)}
                    WHERE template_id = :template_id
                      AND approval_status = :expected_status
                      AND is_deleted = FALSE
                    RETURNING {_COLUMNS}
                    """
                ),
                params,
            ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def set_hidden(
        self, template_id: str, *, is_hidden: bool, updated_by: str
    ) -> dict[str, Any] | None:
        """Hide or unhide a template from the selectable list."""
        row = self._conn.execute(
            text(
                f"""
                UPDATE assessment_templates
                SET is_hidden = :is_hidden, updated_by = :updated_by, updated_at = :updated_at
                WHERE template_id = :template_id AND is_deleted = FALSE
                RETURNING {_COLUMNS}
                """
            ),
            {
                "template_id": template_id,
                "is_hidden": is_hidden,
                "updated_by": updated_by,
                "updated_at": utc_now(),
            },
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def soft_delete(
        self, template_id: str, *, expected_status: str, deleted_by: str
    ) -> dict[str, Any] | None:
        """Soft delete an unreferenced template still in expected_status.

        The row lock taken first waits for submissions holding a share lock
        on the template, so the reference check then sees their inserts.

        Returns:
            Deleted template dict, or None if the template is missing, no
            longer in expected_status, or referenced by a customer assessment.
        """
        locked = self._conn.execute(
            text(
                """
                SELECT template_id FROM assessment_templates
                WHERE template_id = :template_id AND is_deleted = FALSE
                FOR UPDATE
                """
            ),
            {"template_id": template_id},
        ).fetchone()
        if locked is None:
            return None

        now = utc_now()
        row = self._conn.execute(
            text(
                f"""
                UPDATE assessment_templates
                SET is_deleted = TRUE, deleted_by = :deleted_by, deleted_at = :deleted_at,
                    updated_at = :deleted_at
                WHERE template_id = :template_id
                  AND approval_status = :expected_status
                  AND is_deleted = FALSE
                  AND NOT EXISTS (
                      SELECT 1 FROM customer_assessments
                      WHERE assessment_template_id = :template_id AND is_deleted = FALSE
                  )
                RETURNING {_COLUMNS}
                """
            ),
            {
                "template_id": template_id,
                "expected_status": expected_status,
                "deleted_by": deleted_by,
                "deleted_at": now,
            },
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def _row_to_dict(self, row: Any) -> dict[str, Any]:
        """Convert database row to dict."""
        categories = row.categories
        if isinstance(categories, str):
            categories = json.loads(categories)
        return {
            "template_id": str(row.template_id),
            "name": row.name,
            "categories": categories or [],
            "status": row.status,
            "approval_status": row.approval_status,
            "approval_comments": row.approval_comments,
            "approved_by": row.approved_by,
            "approved_at": to_iso(row.approved_at),
            "is_hidden": bool(row.is_hidden),
            "created_by": row.created_by,
            "created_at": to_iso(row.created_at),
            "updated_by": row.updated_by,
            "updated_at": to_iso(row.updated_at),
            "is_deleted": bool(row.is_deleted),
            "deleted_by": row.deleted_by,
            "deleted_at": to_iso(row.deleted_at),
        }


_templates_in_memory_store: dict[str, dict[str, Any]] = {}
_templates_lock = threading.Lock()


class InMemoryTemplatesRepository:
    """In-memory fallback repository for templates.

    A module-level lock makes each conditional update atomic.
    """

    def create(
        self,
        *,
        template_id: str,
        name: str,
        categories: list[dict[str, Any]],
        status: str,
        approval_status: str,
        created_by: str,
    ) -> dict[str, Any]:
        """Create a new template in memory."""
        template = {
            "template_id": template_id,
            "name": name,
            "categories": copy.deepcopy(categories),
            "status": status,
            "approval_status": approval_status,
            "approval_comments": None,
            "approved_by": None,
            "approved_at": None,
            "is_hidden": False,
            "created_by": created_by,
            "created_at": to_iso(utc_now()),
            "updated_by": None,
            "updated_at": None,
            "is_deleted": False,
            "deleted_by": None,
            "deleted_at": None,
        }
        with _templates_lock:
            _templates_in_memory_store[template_id] = template
            return copy.deepcopy(template)

    def get(self, template_id: str) -> dict[str, Any] | None:
        """Get a non-deleted template by ID from memory."""
        with _templates_lock:
            template = _templates_in_memory_store.get(template_id)
            if template is None or template["is_deleted"]:
                return None
            return copy.deepcopy(template)

    def find_by_name(self, name: str) -> dict[str, Any] | None:
        """Find a non-deleted template by case-insensitive name."""
        wanted = name.strip().casefold()
        with _templates_lock:
            for template in _templates_in_memory_store.values():
                if not template["is_deleted"] and template["name"].casefold() == wanted:
                    return copy.deepcopy(template)
        return None

    def list(self, approval_status: str | None = None) -> list[dict[str, Any]]:
        """List non-deleted templates, newest first."""
        with _templates_lock:
            templates = [
                copy.deepcopy(t)
                for t in _templates_in_memory_store.values()
                if not t["is_deleted"]
                and (approval_status is None or t["approval_status"] == approval_status)
            ]
        templates.sort(key=lambda t: t["template_id"])
        templates.sort(key=lambda t: t["created_at"] or "", reverse=True)
        return templates

    def transition(
        self, template_id: str, *, expected_status: str, **fields: Any
    ) -> dict[str, Any] | None:
        """Conditionally update a template in memory (compare-and-swap)."""
        _check_fields(fields)
        with _templates_lock:
            template = _templates_in_memory_store.get(template_id)
            if (
                template is None
                or template["is_deleted"]
                or template["approval_status"] != expected_status
            ):
                return None
            for name, value in fields.items():
                if name in _TIMESTAMP_FIELDS:
                    value = to_iso(value)
                template[name] = copy.deepcopy(value)
            template["updated_at"] = to_iso(utc_now())
            return copy.deepcopy(template)

    def set_hidden(
        self, template_id: str, *, is_hidden: bool, updated_by: str
    ) -> dict[str, Any] | None:
        """Hide or unhide a template in memory."""
        with _templates_lock:
            template = _templates_in_memory_store.get(template_id)
            if template is None or template["is_deleted"]:
                return None
            template["is_hidden"] = is_hidden
            template["updated_by"] = updated_by
            template["updated_at"] = to_iso(utc_now())
            return copy.deepcopy(template)

    def soft_delete(
        self, template_id: str, *, expected_status: str, deleted_by: str
    ) -> dict[str, Any] | None:
        """Soft delete an unreferenced template in memory if still in expected_status.

        Holds the templates lock across the reference count; assessment
        inserts take the same lock first, so none can land in between.
        """
        from credit_rating.persistence.repositories.customer_assessments import (
            InMemoryCustomerAssessmentsRepository,
        )

        with _templates_lock:
            template = _templates_in_memory_store.get(template_id)
            if (
                template is None
                or template["is_deleted"]
                or template["approval_status"] != expected_status
            ):
                return None
            if InMemoryCustomerAssessmentsRepository().count_by_template(template_id):
                return None
            now = to_iso(utc_now())
            template["is_deleted"] = True
            template["deleted_by"] = deleted_by
            template["deleted_at"] = now
            template["updated_at"] = now
            return copy.deepcopy(template)


def clear_templates_in_memory_store() -> None:
    """Clear the in-memory templates store. For testing only."""
    with _templates_lock:
        _templates_in_memory_store.clear()


def get_templates_repository(
    conn: Connection | None,
) -> TemplatesRepository | InMemoryTemplatesRepository:
    """Factory to get appropriate templates repository.

    Returns Postgres repository if configured, otherwise in-memory fallback.

    Args:
        conn: SQLAlchemy connection (can be None for in-memory).
    """
    if conn is not None and is_postgres_configured():
        return TemplatesRepository(conn)
    return InMemoryTemplatesRepository()
