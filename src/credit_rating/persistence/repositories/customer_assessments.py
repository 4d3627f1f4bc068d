"""Customer assessment repository.

Stores submitted customer assessments with their answer snapshot, category
scores and approval state. Decimal values inside the JSONB snapshot are kept
as strings so stored scores are exact.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import text

from credit_rating.persistence.db import is_postgres_configured
from credit_rating.persistence.timestamps import to_iso, utc_now

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

_COLUMNS = (
    "assessment_id, customer_id, customer_name, nic, customer_type, "
    "assessment_template_id, assessment_template_name, answers, category_scores, "
    "total_score, rating, approval_status, rejection_remarks, approved_by, approved_at, "
    "rejected_by, rejected_at, assessed_by, created_at, updated_by, updated_at, "
    "is_deleted, deleted_by, deleted_at"
)

_MUTABLE_FIELDS = frozenset(
    {
        "answers",
        "category_scores",
        "total_score",
        "rating",
        "approval_status",
        "rejection_remarks",
        "approved_by",
        "approved_at",
        "rejected_by",
        "rejected_at",
        "updated_by",
    }
)
_JSON_FIELDS = frozenset({"answers", "category_scores"})
_TIMESTAMP_FIELDS = frozenset({"approved_at", "rejected_at"})


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported customer assessment fields: {sorted(unknown)}")


class CustomerAssessmentStore(Protocol):
    """Read/write contract the assessment service relies on."""

    def create(self, *, assessment_id: str, **values: Any) -> dict[str, Any] | None: ...

    def get(self, assessment_id: str) -> dict[str, Any] | None: ...

    def list_by_customer(self, customer_id: str) -> list[dict[str, Any]]: ...

    def list_by_status(self, approval_status: str) -> list[dict[str, Any]]: ...

    def transition(
        self, assessment_id: str, *, expected_status: str, **fields: Any
    ) -> dict[str, Any] | None: ...

    def soft_delete(
        self, assessment_id: str, *, expected_status: str, deleted_by: str
    ) -> dict[str, Any] | None: ...

    def count_by_template(self, template_id: str) -> int: ...


class CustomerAssessmentsRepository:
    """Postgres repository for customer assessments."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def create(
        self,
        *,
        assessment_id: str,
        customer_id: str,
        customer_name: str,
        nic: str,
        customer_type: str,
        assessment_template_id: str,
        assessment_template_name: str | None,
        answers: list[dict[str, Any]],
        category_scores: list[dict[str, Any]],
        total_score: Decimal | str,
        rating: str,
        approval_status: str,
        assessed_by: str,
    ) -> dict[str, Any] | None:
        """Insert a new customer assessment against an approved template.

        Share-locks the template row until the transaction ends, so a
        concurrent template delete waits and then sees this assessment.

        Returns:
            The stored assessment, or None if the template is deleted or
            not approved.
        """
        usable = self._conn.execute(
            text(
                """
                SELECT template_id FROM assessment_templates
                WHERE template_id = :template_id
                  AND approval_status = 'approved'
                  AND is_deleted = FALSE
                FOR SHARE
                """
            ),
            {"template_id": assessment_template_id},
        ).fetchone()
        if usable is None:
            return None

        row = self._conn.execute(
            text(
                f"""
                INSERT INTO customer_assessments (
                    assessment_id, customer_id, customer_name, nic, customer_type,
                    assessment_template_id, assessment_template_name, answers,
                    category_scores, total_score, rating, approval_status,
                    assessed_by, created_at, is_deleted
                ) VALUES (
                    :assessment_id, :customer_id, :customer_name, :nic, :customer_type,
                    :assessment_template_id, :assessment_template_name,
                    CAST(:answers AS JSONB), CAST(:category_scores AS JSONB),
                    :total_score, :rating, :approval_status, :assessed_by,
                    :created_at, FALSE
                )
                RETURNING {_COLUMNS}
                """
            ),
            {
                "assessment_id": assessment_id,
                "customer_id": customer_id,
                "customer_name": customer_name,
                "nic": nic,
                "customer_type": customer_type,
                "assessment_template_id": assessment_template_id,
                "assessment_template_name": assessment_template_name,
                "answers": json.dumps(answers),
                "category_scores": json.dumps(category_scores),
                "total_score": str(total_score),
                "rating": rating,
                "approval_status": approval_status,
                "assessed_by": assessed_by,
                "created_at": utc_now(),
            },
        ).fetchone()
        return self._row_to_dict(row)

    def get(self, assessment_id: str) -> dict[str, Any] | None:
        """Get a non-deleted assessment by ID."""
        row = self._conn.execute(
            text(
                f"""
                SELECT {_COLUMNS}
                FROM customer_assessments
                WHERE assessment_id = :assessment_id AND is_deleted = FALSE
                """
            ),
            {"assessment_id": assessment_id},
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def list_by_customer(self, customer_id: str) -> list[dict[str, Any]]:
        """List a customer's non-deleted assessments, newest first."""
        rows = self._conn.execute(
            text(
                f"""
                SELECT {_COLUMNS}
                FROM customer_assessments
                WHERE customer_id = :customer_id AND is_deleted = FALSE
                ORDER BY created_at DESC, assessment_id
                """
            ),
            {"customer_id": customer_id},
        ).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def list_by_status(self, approval_status: str) -> list[dict[str, Any]]:
        """List non-deleted assessments in an approval status, newest first."""
        rows = self._conn.execute(
            text(
                f"""
                SELECT {_COLUMNS}
                FROM customer_assessments
                WHERE approval_status = :approval_status AND is_deleted = FALSE
                ORDER BY created_at DESC, assessment_id
                """
            ),
            {"approval_status": approval_status},
        ).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def transition(
        self, assessment_id: str, *, expected_status: str, **fields: Any
    ) -> dict[str, Any] | None:
        """Conditionally update an assessment whose approval_status is expected_status.

        Returns:
            Updated assessment dict, or None if the assessment is missing,
            deleted, or no longer in expected_status.
        """
        _check_fields(fields)
        assignments = ["updated_at = :updated_at"]
        params: dict[str, Any] = {
            "assessment_id": assessment_id,
            "expected_status": expected_status,
            "updated_at": utc_now(),
        }
        for name, value in fields.items():
            if name in _JSON_FIELDS:
                assignments.append(f"{name} = CAST(:{name} AS JSONB)")
                params[name] = json.dumps(value)
            elif name == "total_score":
                assignments.append("total_score = :total_score")
                params[name] = str(value)
            else:
                assignments.append(f"{name} = :{name}")
                params[name] = value

        row = self._conn.execute(
            text(
                f"""
                UPDATE customer_assessments
                SET {", ".join(assignments)}
                WHERE assessment_id = :assessment_id
                  AND approval_status = :expected_status
                  AND is_deleted = FALSE
                RETURNING {_COLUMNS}
                """
            ),
            params,
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def soft_delete(
        self, assessment_id: str, *, expected_status: str, deleted_by: str
    ) -> dict[str, Any] | None:
        """Soft delete an assessment still in expected_status."""
        row = self._conn.execute(
            text(
                f"""
                UPDATE customer_assessments
                SET is_deleted = TRUE, deleted_by = :deleted_by, deleted_at = :deleted_at,
                    updated_at = :deleted_at
                WHERE assessment_id = :assessment_id
                  AND approval_status = :expected_status
                  AND is_deleted = FALSE
                RETURNING {_COLUMNS}
                """
            ),
            {
                "assessment_id": assessment_id,
                "expected_status": expected_status,
                "deleted_by": deleted_by,
                "deleted_at": utc_now(),
            },
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def count_by_template(self, template_id: str) -> int:
        """Count non-deleted assessments referencing a template."""
        result = self._conn.execute(
            text(
                """
                SELECT COUNT(*)
                FROM customer_assessments
                WHERE assessment_template_id = :template_id AND is_deleted = FALSE
                """
            ),
            {"template_id": template_id},
        ).scalar()
        return int(result or 0)

    def _row_to_dict(self, row: Any) -> dict[str, Any]:
        """Convert database row to dict."""
        answers = row.answers
        if isinstance(answers, str):
            answers = json.loads(answers)
        category_scores = row.category_scores
        if isinstance(category_scores, str):
            category_scores = json.loads(category_scores)
        return {
            "assessment_id": str(row.assessment_id),
            "customer_id": row.customer_id,
            "customer_name": row.customer_name,
            "nic": row.nic,
            "customer_type": row.customer_type,
            "assessment_template_id": str(row.assessment_template_id),
            "assessment_template_name": row.assessment_template_name,
            "answers": answers or [],
            "category_scores": category_scores or [],
            "total_score": str(row.total_score),
            "rating": row.rating,
            "approval_status": row.approval_status,
            "rejection_remarks": row.rejection_remarks,
            "approved_by": row.approved_by,
            "approved_at": to_iso(row.approved_at),
            "rejected_by": row.rejected_by,
            "rejected_at": to_iso(row.rejected_at),
            "assessed_by": row.assessed_by,
            "created_at": to_iso(row.created_at),
            "updated_by": row.updated_by,
            "updated_at": to_iso(row.updated_at),
            "is_deleted": bool(row.is_deleted),
            "deleted_by": row.deleted_by,
            "deleted_at": to_iso(row.deleted_at),
        }


_assessments_in_memory_store: dict[str, dict[str, Any]] = {}
_assessments_lock = threading.Lock()


def _newest_first(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    records.sort(key=lambda a: a["assessment_id"])
    records.sort(key=lambda a: a["created_at"] or "", reverse=True)
    return records


class InMemoryCustomerAssessmentsRepository:
    """In-memory fallback repository for customer assessments."""

    def create(
        self,
        *,
        assessment_id: str,
        customer_id: str,
        customer_name: str,
        nic: str,
        customer_type: str,
        assessment_template_id: str,
        assessment_template_name: str | None,
        answers: list[dict[str, Any]],
        category_scores: list[dict[str, Any]],
        total_score: Decimal | str,
        rating: str,
        approval_status: str,
        assessed_by: str,
    ) -> dict[str, Any] | None:
        """Create a new assessment in memory against an approved template.

        Returns None if the template is deleted or not approved. The
        templates lock is held across the check and the insert, the same
        lock a template delete holds across its reference count.
        """
        from credit_rating.persistence.repositories.templates import (
            _templates_in_memory_store,
            _templates_lock,
        )

        assessment = {
            "assessment_id": assessment_id,
            "customer_id": customer_id,
            "customer_name": customer_name,
            "nic": nic,
            "customer_type": customer_type,
            "assessment_template_id": assessment_template_id,
            "assessment_template_name": assessment_template_name,
            "answers": copy.deepcopy(answers),
            "category_scores": copy.deepcopy(category_scores),
            "total_score": str(total_score),
            "rating": rating,
            "approval_status": approval_status,
            "rejection_remarks": None,
            "approved_by": None,
            "approved_at": None,
            "rejected_by": None,
            "rejected_at": None,
            "assessed_by": assessed_by,
            "created_at": to_iso(utc_now()),
            "updated_by": None,
            "updated_at": None,
            "is_deleted": False,
            "deleted_by": None,
            "deleted_at": None,
        }
        with _templates_lock:
            template = _templates_in_memory_store.get(assessment_template_id)
            if (
                template is None
                or template["is_deleted"]
                or template["approval_status"] != "approved"
            ):
                return None
            with _assessments_lock:
                _assessments_in_memory_store[assessment_id] = assessment
                return copy.deepcopy(assessment)

    def get(self, assessment_id: str) -> dict[str, Any] | None:
        """Get a non-deleted assessment by ID from memory."""
        with _assessments_lock:
            assessment = _assessments_in_memory_store.get(assessment_id)
            if assessment is None or assessment["is_deleted"]:
                return None
            return copy.deepcopy(assessment)

    def list_by_customer(self, customer_id: str) -> list[dict[str, Any]]:
        """List a customer's non-deleted assessments, newest first."""
        with _assessments_lock:
            records = [
                copy.deepcopy(a)
                for a in _assessments_in_memory_store.values()
                if not a["is_deleted"] and a["customer_id"] == customer_id
            ]
        return _newest_first(records)

    def list_by_status(self, approval_status: str) -> list[dict[str, Any]]:
        """List non-deleted assessments in an approval status, newest first."""
        with _assessments_lock:
            records = [
                copy.deepcopy(a)
                for a in _assessments_in_memory_store.values()
                if not a["is_deleted"] and a["approval_status"] == approval_status
            ]
        return _newest_first(records)

    def transition(
        self, assessment_id: str, *, expected_status: str, **fields: Any
    ) -> dict[str, Any] | None:
        """Conditionally update an assessment in memory (compare-and-swap)."""
        _check_fields(fields)
        with _assessments_lock:
            assessment = _assessments_in_memory_store.get(assessment_id)
            if (
                assessment is None
                or assessment["is_deleted"]
                or assessment["approval_status"] != expected_status
            ):
                return None
            for name, value in fields.items():
                if name in _TIMESTAMP_FIELDS:
                    value = to_iso(value)
                elif name == "total_score":
                    value = str(value)
                assessment[name] = copy.deepcopy(value)
            assessment["updated_at"] = to_iso(utc_now())
            return copy.deepcopy(assessment)

    def soft_delete(
        self, assessment_id: str, *, expected_status: str, deleted_by: str
    ) -> dict[str, Any] | None:
        """Soft delete an assessment in memory if still in expected_status."""
        with _assessments_lock:
            assessment = _assessments_in_memory_store.get(assessment_id)
            if (
                assessment is None
                or assessment["is_deleted"]
                or assessment["approval_status"] != expected_status
            ):
                return None
            now = to_iso(utc_now())
            assessment["is_deleted"] = True
            assessment["deleted_by"] = deleted_by
            assessment["deleted_at"] = now
            assessment["updated_at"] = now
            return copy.deepcopy(assessment)

    def count_by_template(self, template_id: str) -> int:
        """Count non-deleted assessments referencing a template."""
        with _assessments_lock:
            return sum(
                1
                for a in _assessments_in_memory_store.values()
                if not a["is_deleted"] and a["assessment_template_id"] == template_id
            )


def clear_customer_assessments_in_memory_store() -> None:
    """Clear the in-memory customer assessments store. For testing only."""
    with _assessments_lock:
        _assessments_in_memory_store.clear()


def get_customer_assessments_repository(
    conn: Connection | None,
) -> CustomerAssessmentsRepository | InMemoryCustomerAssessmentsRepository:
    """Factory to get appropriate customer assessments repository.

    Returns Postgres repository if configured, otherwise in-memory fallback.

    Args:
        conn: SQLAlchemy connection (can be None for in-memory).
    """
    if conn is not None and is_postgres_configured():
        return CustomerAssessmentsRepository(conn)
    return InMemoryCustomerAssessmentsRepository()
