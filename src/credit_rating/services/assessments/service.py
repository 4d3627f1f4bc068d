"""CustomerAssessmentService - scoring and approval of customer assessments.

A loan officer submits answer selections for one customer against an
approved template; the service scores them, stores an answer snapshot and
routes the assessment through its own approval cycle:

    pending --approve--> approved
    pending --reject---> rejected --edit_and_resubmit--> pending

Submissions for customers marked new and not yet known to the directory
register the customer first; if the assessment then cannot be stored the
registration is undone. Resubmissions never touch the directory.

Uses Postgres repositories when db_conn exists, in-memory fallback otherwise.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from credit_rating.activity.sink import ActivityLog, InMemoryActivityLog, record_activity
from credit_rating.approval.state_machine import ASSESSMENT_MACHINE, Approvable, ApprovalAction
from credit_rating.errors import (
    CreditRatingError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from credit_rating.models.assessment import (
    CustomerAssessment,
    CustomerHistory,
    CustomerHistorySummary,
    ScoreResult,
)
from credit_rating.models.customer import CustomerLookup, validate_nic
from credit_rating.models.template import ApprovalStatus, AssessmentTemplate, CustomerType
from credit_rating.persistence.db import is_postgres_configured, store_errors
from credit_rating.persistence.repositories.customer_assessments import (
    get_customer_assessments_repository,
)
from credit_rating.persistence.repositories.templates import get_templates_repository
from credit_rating.persistence.timestamps import utc_now
from credit_rating.scoring.engine import compute_scores, resolve_customer_type
from credit_rating.services.customers.service import (
    CustomerDirectoryService,
    RegisterCustomerInput,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

ASSESSMENT_STORE = "customer_assessment_store"
TEMPLATE_STORE = "template_store"


class SubmitAssessmentInput(BaseModel):
    """Input model for submitting a customer assessment."""

    customer_name: str = Field(..., description="Customer display name")
    customer_id: str = Field(..., description="Institution's customer identifier")
    nic: str = Field(..., description="National identity card number")
    customer_type: CustomerType = Field(..., description="Selects the weight/score track")
    assessment_template_id: str = Field(..., description="Approved template to assess against")
    selections: dict[str, str] = Field(
        default_factory=dict, description="question_id -> selected answer_id"
    )
    contact_number: str = Field(default="", description="Stored when registering a new customer")
    email: str = Field(default="", description="Stored when registering a new customer")
    address: str = Field(default="", description="Stored when registering a new customer")


def _require_text(value: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    return value.strip()


def _score_fields(result: ScoreResult) -> dict[str, Any]:
    """Stored representation of a score result; decimals kept as strings."""
    return {
        "answers": [a.model_dump(mode="json") for a in result.answers],
        "category_scores": [c.model_dump(mode="json") for c in result.category_scores],
        "total_score": str(result.total_score),
        "rating": result.rating.value,
    }


class CustomerAssessmentService:
    """Service layer for customer assessments and their approval cycle."""

    def __init__(
        self,
        db_conn: Connection | None = None,
        activity_log: ActivityLog | None = None,
        customer_directory: CustomerDirectoryService | None = None,
    ) -> None:
        """Initialize CustomerAssessmentService.

        Args:
            db_conn: SQLAlchemy connection for Postgres. If None, uses in-memory.
            activity_log: Activity log sink; defaults to an in-memory log.
            customer_directory: Directory used for lookup and registration.
        """
        self._db_conn = db_conn
        self._assessments = get_customer_assessments_repository(db_conn)
        self._templates = get_templates_repository(db_conn)
        self._directory = customer_directory or CustomerDirectoryService(db_conn)
        self._activity_log = activity_log if activity_log is not None else InMemoryActivityLog()

    @contextmanager
    def _submission_scope(self) -> Iterator[list[str]]:
        """Scope the writes of one submission; a failure inside undoes them all.

        On Postgres the writes share a savepoint. In memory, the customer ids
        appended to the yielded list are unregistered again.
        """
        if self._db_conn is not None and is_postgres_configured():
            with self._db_conn.begin_nested():
                yield []
            return

        registered: list[str] = []
        try:
            yield registered
        except Exception:
            for customer_id in registered:
                try:
                    self._directory.unregister(customer_id)
                except CreditRatingError:
                    logger.exception("Could not unregister customer %s", customer_id)
            raise

    def _record(self, actor: str, action: str, description: str, assessment_id: str) -> None:
        record_activity(
            self._activity_log,
            actor,
            action,
            description,
            {"assessment_id": assessment_id},
        )

    def _load(self, assessment_id: str) -> dict[str, Any]:
        with store_errors(ASSESSMENT_STORE):
            record = self._assessments.get(assessment_id)
        if record is None:
            raise NotFoundError("customer_assessment", assessment_id)
        return record

    def _load_template(self, template_id: str) -> AssessmentTemplate:
        with store_errors(TEMPLATE_STORE):
            record = self._templates.get(template_id)
        if record is None:
            raise NotFoundError("template", template_id)
        return AssessmentTemplate.model_validate(record)

    def _target(self, record: dict[str, Any], action: ApprovalAction) -> ApprovalStatus:
        entity = Approvable(
            entity_id=record["assessment_id"],
            status=ApprovalStatus(record["approval_status"]),
            payload=record,
        )
        return entity.apply(ASSESSMENT_MACHINE, action).status

    def _lost_race(self, assessment_id: str, action: ApprovalAction) -> StateConflictError:
        """Build the error for a conditional update that matched no row."""
        current = self._load(assessment_id)
        return StateConflictError(
            "customer_assessment",
            assessment_id,
            current_status=current["approval_status"],
            attempted=action.value,
            reason=(
                f"customer_assessment {assessment_id} was already decided and is now "
                f"{current['approval_status']}"
            ),
        )

    def _register_if_new(
        self,
        input_data: SubmitAssessmentInput,
        customer_id: str,
        customer_name: str,
        nic: str,
    ) -> bool:
        """Register a new customer unless the directory already knows them.

        Returns:
            True if this call registered the customer.

        Raises:
            DependencyError: Directory lookup or registration failed.
        """
        lookup = self._directory.lookup(customer_id, nic)
        if lookup.found:
            logger.info(
                "Customer %s submitted as new but already registered; not re-registering",
                customer_id,
            )
            return False
        try:
            self._directory.register(
                RegisterCustomerInput(
                    customer_id=customer_id,
                    customer_name=customer_name,
                    nic=nic,
                    contact_number=input_data.contact_number,
                    email=input_data.email,
                    address=input_data.address,
                )
            )
        except StateConflictError:
            # Registered concurrently between lookup and create
            logger.info("Customer %s registered concurrently", customer_id)
            return False
        return True

    def submit(self, input_data: SubmitAssessmentInput, actor: str) -> CustomerAssessment:
        """Score and store a customer assessment awaiting approval.

        Args:
            input_data: Customer details, template and full selection map.
            actor: Identity of the assessing officer.

        Returns:
            The stored assessment (pending).

        Raises:
            ValidationError: Missing customer details, malformed NIC, or
                incomplete/invalid selections.
            NotFoundError: Template unknown or deleted, including deleted
                while the submission was in flight.
            StateConflictError: Template not approved.
            DependencyError: A store or the customer directory failed. A
                customer registered by this submission is removed again.
        """
        actor = _require_text(actor, "actor")
        customer_name = _require_text(input_data.customer_name, "customer_name")
        customer_id = _require_text(input_data.customer_id, "customer_id")
        nic = validate_nic(input_data.nic)
        customer_type = resolve_customer_type(input_data.customer_type)

        template = self._load_template(input_data.assessment_template_id)
        if template.approval_status != ApprovalStatus.APPROVED:
            raise StateConflictError(
                "template",
                template.template_id,
                current_status=template.approval_status.value,
                attempted="assess",
                reason=f"template {template.template_id} is not approved and cannot be used",
            )

        result = compute_scores(template, customer_type, input_data.selections)

        assessment_id = str(uuid.uuid4())
        with self._submission_scope() as registered:
            if customer_type == CustomerType.NEW and self._register_if_new(
                input_data, customer_id, customer_name, nic
            ):
                registered.append(customer_id)

            with store_errors(ASSESSMENT_STORE):
                record = self._assessments.create(
                    assessment_id=assessment_id,
                    customer_id=customer_id,
                    customer_name=customer_name,
                    nic=nic,
                    customer_type=customer_type.value,
                    assessment_template_id=template.template_id,
                    assessment_template_name=template.name,
                    approval_status=ApprovalStatus.PENDING.value,
                    assessed_by=actor,
                    **_score_fields(result),
                )
            if record is None:
                # Approved templates only leave that state by deletion
                raise NotFoundError("template", template.template_id)

        logger.info(
            "Customer assessment %s submitted by %s for %s (score=%s rating=%s)",
            assessment_id,
            actor,
            customer_id,
            result.display_total(),
            result.rating,
        )
        self._record(
            actor,
            "customer_assessment_submitted",
            f"Submitted assessment for customer {customer_name} ({customer_id})",
            assessment_id,
        )
        return CustomerAssessment.model_validate(record)

    def approve(self, assessment_id: str, actor: str) -> CustomerAssessment:
        """Approve a pending assessment.

        Raises:
            NotFoundError: Unknown or deleted assessment.
            StateConflictError: Assessment not pending (including already approved).
        """
        actor = _require_text(actor, "actor")
        record = self._load(assessment_id)
        target = self._target(record, ApprovalAction.APPROVE)

        with store_errors(ASSESSMENT_STORE):
            updated = self._assessments.transition(
                assessment_id,
                expected_status=ApprovalStatus.PENDING.value,
                approval_status=target.value,
                approved_by=actor,
                approved_at=utc_now(),
                updated_by=actor,
            )
        if updated is None:
            raise self._lost_race(assessment_id, ApprovalAction.APPROVE)

        logger.info("Customer assessment %s approved by %s", assessment_id, actor)
        self._record(
            actor,
            "customer_assessment_approved",
            f"Approved assessment for customer {updated['customer_name']}",
            assessment_id,
        )
        return CustomerAssessment.model_validate(updated)

    def reject(self, assessment_id: str, actor: str, remarks: str) -> CustomerAssessment:
        """Reject a pending assessment with mandatory remarks.

        Raises:
            ValidationError: Remarks missing or blank.
            NotFoundError: Unknown or deleted assessment.
            StateConflictError: Assessment not pending.
        """
        actor = _require_text(actor, "actor")
        if not isinstance(remarks, str) or not remarks.strip():
            raise ValidationError(
                "Remarks are required when rejecting an assessment",
                details={"field": "remarks"},
            )
        record = self._load(assessment_id)
        target = self._target(record, ApprovalAction.REJECT)

        with store_errors(ASSESSMENT_STORE):
            updated = self._assessments.transition(
                assessment_id,
                expected_status=ApprovalStatus.PENDING.value,
                approval_status=target.value,
                rejection_remarks=remarks.strip(),
                rejected_by=actor,
                rejected_at=utc_now(),
                updated_by=actor,
            )
        if updated is None:
            raise self._lost_race(assessment_id, ApprovalAction.REJECT)

        logger.info("Customer assessment %s rejected by %s", assessment_id, actor)
        self._record(
            actor,
            "customer_assessment_rejected",
            f"Rejected assessment for customer {updated['customer_name']}: {remarks.strip()}",
            assessment_id,
        )
        return CustomerAssessment.model_validate(updated)

    def edit_and_resubmit(
        self,
        assessment_id: str,
        selections: Mapping[str, str],
        actor: str,
    ) -> CustomerAssessment:
        """Replace a rejected assessment's answers and send it back for approval.

        Scores are recomputed from the new selections only, against the
        template the assessment references.

        Raises:
            NotFoundError: Assessment or its template unknown or deleted.
            StateConflictError: Assessment not rejected.
            ValidationError: Incomplete or invalid selections.
        """
        actor = _require_text(actor, "actor")
        record = self._load(assessment_id)
        target = self._target(record, ApprovalAction.EDIT)

        template = self._load_template(record["assessment_template_id"])
        result = compute_scores(template, record["customer_type"], selections)

        with store_errors(ASSESSMENT_STORE):
            updated = self._assessments.transition(
                assessment_id,
                expected_status=ApprovalStatus.REJECTED.value,
                approval_status=target.value,
                rejection_remarks=None,
                rejected_by=None,
                rejected_at=None,
                approved_by=None,
                approved_at=None,
                updated_by=actor,
                **_score_fields(result),
            )
        if updated is None:
            raise self._lost_race(assessment_id, ApprovalAction.EDIT)

        logger.info("Customer assessment %s resubmitted by %s", assessment_id, actor)
        self._record(
            actor,
            "customer_assessment_resubmitted",
            f"Resubmitted assessment for customer {updated['customer_name']}",
            assessment_id,
        )
        return CustomerAssessment.model_validate(updated)

    def delete(self, assessment_id: str, actor: str) -> CustomerAssessment:
        """Soft delete a pending or rejected assessment.

        Raises:
            NotFoundError: Unknown or already deleted assessment.
            StateConflictError: Assessment is approved.
        """
        actor = _require_text(actor, "actor")
        record = self._load(assessment_id)
        self._target(record, ApprovalAction.DELETE)

        with store_errors(ASSESSMENT_STORE):
            deleted = self._assessments.soft_delete(
                assessment_id,
                expected_status=record["approval_status"],
                deleted_by=actor,
            )
        if deleted is None:
            raise self._lost_race(assessment_id, ApprovalAction.DELETE)

        logger.info("Customer assessment %s deleted by %s", assessment_id, actor)
        self._record(
            actor,
            "customer_assessment_deleted",
            f"Deleted assessment for customer {deleted['customer_name']}",
            assessment_id,
        )
        return CustomerAssessment.model_validate(deleted)

    def get(self, assessment_id: str) -> CustomerAssessment:
        """Get an assessment by ID.

        Raises:
            NotFoundError: Unknown or soft-deleted assessment.
        """
        return CustomerAssessment.model_validate(self._load(assessment_id))

    def list_by_customer(self, customer_id: str) -> list[CustomerAssessment]:
        """List a customer's assessments, newest first."""
        with store_errors(ASSESSMENT_STORE):
            records = self._assessments.list_by_customer(customer_id)
        return [CustomerAssessment.model_validate(r) for r in records]

    def list_by_status(self, approval_status: ApprovalStatus | str) -> list[CustomerAssessment]:
        """List assessments in an approval status, newest first."""
        try:
            status = ApprovalStatus(approval_status)
        except ValueError:
            raise ValidationError(
                f"approval_status must be one of {[s.value for s in ApprovalStatus]}",
                details={"field": "approval_status"},
            ) from None
        with store_errors(ASSESSMENT_STORE):
            records = self._assessments.list_by_status(status.value)
        return [CustomerAssessment.model_validate(r) for r in records]

    def customer_history(self, customer_id: str) -> CustomerHistory:
        """Return a customer's assessments with status counts and latest approved rating."""
        assessments = self.list_by_customer(customer_id)
        approved = [a for a in assessments if a.approval_status == ApprovalStatus.APPROVED]
        summary = CustomerHistorySummary(
            total_assessments=len(assessments),
            approved_count=len(approved),
            pending_count=sum(
                1 for a in assessments if a.approval_status == ApprovalStatus.PENDING
            ),
            rejected_count=sum(
                1 for a in assessments if a.approval_status == ApprovalStatus.REJECTED
            ),
            latest_rating=approved[0].rating if approved else None,
        )
        return CustomerHistory(customer_id=customer_id, assessments=assessments, summary=summary)

    def lookup_customer(
        self, customer_id: str | None = None, nic: str | None = None
    ) -> CustomerLookup:
        """Look a customer up in the directory by id or NIC."""
        return self._directory.lookup(customer_id, nic)
