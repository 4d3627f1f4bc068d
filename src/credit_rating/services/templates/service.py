"""TemplateService - authoring and approval of assessment templates.

Lifecycle:
- create: new templates start pending/inactive
- update: content edits while pending or rejected, back to pending
- resubmit: rejected -> pending
- approve / reject: pending -> approved (active) / rejected (inactive)
- delete: soft delete, refused while assessments still reference the template

Approved templates are immutable. Every status change is a conditional
update on the expected current status, so of two concurrent decisions only
one is applied and the other surfaces as StateConflictError.

Uses Postgres repositories when db_conn exists, in-memory fallback otherwise.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from credit_rating.activity.sink import ActivityLog, InMemoryActivityLog, record_activity
from credit_rating.approval.state_machine import TEMPLATE_MACHINE, Approvable, ApprovalAction
from credit_rating.errors import NotFoundError, StateConflictError, ValidationError
from credit_rating.models.template import (
    ApprovalStatus,
    AssessmentTemplate,
    TemplateContent,
    TemplateStatus,
)
from credit_rating.persistence.db import store_errors
from credit_rating.persistence.repositories.customer_assessments import (
    get_customer_assessments_repository,
)
from credit_rating.persistence.repositories.templates import get_templates_repository
from credit_rating.persistence.timestamps import utc_now
from credit_rating.scoring.weights import WeightSumPolicy, check_weight_sums

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

TEMPLATE_STORE = "template_store"


class RejectTemplateInput(BaseModel):
    """Input model for rejecting a template."""

    comments: str = Field(..., description="Reason for rejection, shown to the author")


class ApproveTemplateInput(BaseModel):
    """Input model for approving a template."""

    comments: str | None = Field(default=None, description="Optional approver comments")


def _require_actor(actor: str) -> str:
    if not isinstance(actor, str) or not actor.strip():
        raise ValidationError("actor is required", details={"field": "actor"})
    return actor.strip()


def _coerce_content(content: TemplateContent | dict[str, Any]) -> TemplateContent:
    if isinstance(content, TemplateContent):
        return content
    return TemplateContent.from_payload(content)


class TemplateService:
    """Service layer for template authoring and approval."""

    def __init__(
        self,
        db_conn: Connection | None = None,
        activity_log: ActivityLog | None = None,
        weight_sum_policy: WeightSumPolicy | None = None,
    ) -> None:
        """Initialize TemplateService.

        Args:
            db_conn: SQLAlchemy connection for Postgres. If None, uses in-memory.
            activity_log: Activity log sink; defaults to an in-memory log.
            weight_sum_policy: Override for the configured weight-sum policy.
        """
        self._templates = get_templates_repository(db_conn)
        self._assessments = get_customer_assessments_repository(db_conn)
        self._activity_log = activity_log if activity_log is not None else InMemoryActivityLog()
        self._weight_sum_policy = weight_sum_policy

    def _record(self, actor: str, action: str, description: str, template_id: str) -> None:
        record_activity(
            self._activity_log,
            actor,
            action,
            description,
            {"template_id": template_id},
        )

    def _load(self, template_id: str) -> dict[str, Any]:
        with store_errors(TEMPLATE_STORE):
            record = self._templates.get(template_id)
        if record is None:
            raise NotFoundError("template", template_id)
        return record

    def _check_name_available(self, name: str, template_id: str | None = None) -> None:
        with store_errors(TEMPLATE_STORE):
            existing = self._templates.find_by_name(name)
        if existing is not None and existing["template_id"] != template_id:
            raise ValidationError(
                f"Template name '{name}' already exists",
                details={"field": "name", "name": name},
            )

    def _lost_race(self, template_id: str, action: ApprovalAction) -> StateConflictError:
        """Build the error for a conditional update that matched no row."""
        with store_errors(TEMPLATE_STORE):
            current = self._templates.get(template_id)
        if current is None:
            raise NotFoundError("template", template_id)
        return StateConflictError(
            "template",
            template_id,
            current_status=current["approval_status"],
            attempted=action.value,
            reason=(
                f"template {template_id} was changed concurrently and is now "
                f"{current['approval_status']}"
            ),
        )

    def _target(self, record: dict[str, Any], action: ApprovalAction) -> ApprovalStatus:
        entity = Approvable(
            entity_id=record["template_id"],
            status=ApprovalStatus(record["approval_status"]),
            payload=record,
        )
        return entity.apply(TEMPLATE_MACHINE, action).status

    def create(
        self, content: TemplateContent | dict[str, Any], actor: str
    ) -> AssessmentTemplate:
        """Create a new template awaiting approval.

        Args:
            content: Template name and category tree.
            actor: Identity of the author.

        Returns:
            The stored template (pending, inactive).

        Raises:
            ValidationError: Invalid content, duplicate name, or weight sums
                off under the enforce policy.
        """
        actor = _require_actor(actor)
        content = _coerce_content(content)
        self._check_name_available(content.name)
        check_weight_sums(content, self._weight_sum_policy)

        template_id = str(uuid.uuid4())
        payload = content.model_dump(mode="json")
        with store_errors(TEMPLATE_STORE):
            try:
                record = self._templates.create(
                    template_id=template_id,
                    name=content.name,
                    categories=payload["categories"],
                    status=TemplateStatus.INACTIVE.value,
                    approval_status=ApprovalStatus.PENDING.value,
                    created_by=actor,
                )
            except IntegrityError:
                # Lost a race with a concurrent create of the same name
                raise ValidationError(
                    f"Template name '{content.name}' already exists",
                    details={"field": "name", "name": content.name},
                ) from None

        logger.info("Template %s created by %s", template_id, actor)
        self._record(
            actor,
            "template_created",
            f"Created assessment template '{content.name}'",
            template_id,
        )
        return AssessmentTemplate.model_validate(record)

    def _replace_content(
        self,
        template_id: str,
        content: TemplateContent | dict[str, Any] | None,
        actor: str,
        action: ApprovalAction,
    ) -> AssessmentTemplate:
        actor = _require_actor(actor)
        record = self._load(template_id)
        current = ApprovalStatus(record["approval_status"])
        target = self._target(record, action)

        if content is None:
            new_content = AssessmentTemplate.model_validate(record).content
        else:
            new_content = _coerce_content(content)
            self._check_name_available(new_content.name, template_id)
            check_weight_sums(new_content, self._weight_sum_policy)

        payload = new_content.model_dump(mode="json")
        with store_errors(TEMPLATE_STORE):
            try:
                updated = self._templates.transition(
                    template_id,
                    expected_status=current.value,
                    name=new_content.name,
                    categories=payload["categories"],
                    status=TemplateStatus.INACTIVE.value,
                    approval_status=target.value,
                    approval_comments=None,
                    updated_by=actor,
                )
            except IntegrityError:
                # Lost a race with a concurrent create or rename to the same name
                raise ValidationError(
                    f"Template name '{new_content.name}' already exists",
                    details={"field": "name", "name": new_content.name},
                ) from None
        if updated is None:
            raise self._lost_race(template_id, action)

        logger.info("Template %s %s by %s (%s -> %s)", template_id, action, actor, current, target)
        activity = (
            "template_resubmitted" if action == ApprovalAction.RESUBMIT else "template_updated"
        )
        self._record(
            actor,
            activity,
            f"Updated assessment template '{new_content.name}'",
            template_id,
        )
        return AssessmentTemplate.model_validate(updated)

    def update(
        self,
        template_id: str,
        content: TemplateContent | dict[str, Any],
        actor: str,
    ) -> AssessmentTemplate:
        """Replace a template's content and send it back for approval.

        Allowed while pending or rejected; approved templates are frozen.

        Raises:
            NotFoundError: Unknown or deleted template.
            StateConflictError: Template is approved, or changed concurrently.
            ValidationError: Invalid content or duplicate name.
        """
        return self._replace_content(template_id, content, actor, ApprovalAction.EDIT)

    def resubmit(
        self,
        template_id: str,
        actor: str,
        content: TemplateContent | dict[str, Any] | None = None,
    ) -> AssessmentTemplate:
        """Resubmit a rejected template, optionally with corrected content.

        Raises:
            NotFoundError: Unknown or deleted template.
            StateConflictError: Template is not rejected.
        """
        return self._replace_content(template_id, content, actor, ApprovalAction.RESUBMIT)

    def approve(
        self, template_id: str, actor: str, comments: str | None = None
    ) -> AssessmentTemplate:
        """Approve a pending template and make it active.

        Raises:
            NotFoundError: Unknown or deleted template.
            StateConflictError: Template is not pending (including already approved).
        """
        actor = _require_actor(actor)
        record = self._load(template_id)
        target = self._target(record, ApprovalAction.APPROVE)

        with store_errors(TEMPLATE_STORE):
            updated = self._templates.transition(
                template_id,
                expected_status=ApprovalStatus.PENDING.value,
                approval_status=target.value,
                status=TemplateStatus.ACTIVE.value,
                approval_comments=comments.strip() if comments and comments.strip() else None,
                approved_by=actor,
                approved_at=utc_now(),
                updated_by=actor,
            )
        if updated is None:
            raise self._lost_race(template_id, ApprovalAction.APPROVE)

        logger.info("Template %s approved by %s", template_id, actor)
        self._record(
            actor,
            "template_approved",
            f"Approved assessment template '{updated['name']}'",
            template_id,
        )
        return AssessmentTemplate.model_validate(updated)

    def reject(self, template_id: str, actor: str, comments: str) -> AssessmentTemplate:
        """Reject a pending template with mandatory comments.

        Raises:
            ValidationError: Comments missing or blank.
            NotFoundError: Unknown or deleted template.
            StateConflictError: Template is not pending.
        """
        actor = _require_actor(actor)
        if not isinstance(comments, str) or not comments.strip():
            raise ValidationError(
                "Comments are required when rejecting a template",
                details={"field": "comments"},
            )
        record = self._load(template_id)
        target = self._target(record, ApprovalAction.REJECT)

        with store_errors(TEMPLATE_STORE):
            updated = self._templates.transition(
                template_id,
                expected_status=ApprovalStatus.PENDING.value,
                approval_status=target.value,
                status=TemplateStatus.INACTIVE.value,
                approval_comments=comments.strip(),
                updated_by=actor,
            )
        if updated is None:
            raise self._lost_race(template_id, ApprovalAction.REJECT)

        logger.info("Template %s rejected by %s", template_id, actor)
        self._record(
            actor,
            "template_rejected",
            f"Rejected assessment template '{updated['name']}': {comments.strip()}",
            template_id,
        )
        return AssessmentTemplate.model_validate(updated)

    def _check_unreferenced(self, record: dict[str, Any]) -> None:
        """Raise StateConflictError if customer assessments reference the template."""
        template_id = record["template_id"]
        with store_errors(TEMPLATE_STORE):
            references = self._assessments.count_by_template(template_id)
        if references:
            raise StateConflictError(
                "template",
                template_id,
                current_status=record["approval_status"],
                attempted=ApprovalAction.DELETE.value,
                reason=(
                    f"template {template_id} is referenced by {references} "
                    "customer assessment(s) and cannot be deleted"
                ),
            )

    def delete(self, template_id: str, actor: str) -> AssessmentTemplate:
        """Soft delete a template.

        Raises:
            NotFoundError: Unknown or already deleted template.
            StateConflictError: Customer assessments still reference the template.
        """
        actor = _require_actor(actor)
        record = self._load(template_id)
        self._target(record, ApprovalAction.DELETE)

        self._check_unreferenced(record)

        # The store re-checks references atomically with the delete
        with store_errors(TEMPLATE_STORE):
            deleted = self._templates.soft_delete(
                template_id,
                expected_status=record["approval_status"],
                deleted_by=actor,
            )
        if deleted is None:
            self._check_unreferenced(record)
            raise self._lost_race(template_id, ApprovalAction.DELETE)

        logger.info("Template %s deleted by %s", template_id, actor)
        self._record(
            actor,
            "template_deleted",
            f"Deleted assessment template '{deleted['name']}'",
            template_id,
        )
        return AssessmentTemplate.model_validate(deleted)

    def set_hidden(self, template_id: str, hidden: bool, actor: str) -> AssessmentTemplate:
        """Hide or unhide a template from the selectable list.

        Raises:
            NotFoundError: Unknown or deleted template.
        """
        actor = _require_actor(actor)
        self._load(template_id)
        with store_errors(TEMPLATE_STORE):
            updated = self._templates.set_hidden(template_id, is_hidden=hidden, updated_by=actor)
        if updated is None:
            raise NotFoundError("template", template_id)

        action = "template_hidden" if hidden else "template_unhidden"
        self._record(
            actor,
            action,
            f"{'Hid' if hidden else 'Unhid'} assessment template '{updated['name']}'",
            template_id,
        )
        return AssessmentTemplate.model_validate(updated)

    def get(self, template_id: str) -> AssessmentTemplate:
        """Get a template by ID.

        Raises:
            NotFoundError: Unknown or soft-deleted template.
        """
        return AssessmentTemplate.model_validate(self._load(template_id))

    def list(self, approval_status: ApprovalStatus | str | None = None) -> list[AssessmentTemplate]:
        """List non-deleted templates, newest first, optionally by approval status."""
        status = None
        if approval_status is not None:
            try:
                status = ApprovalStatus(approval_status).value
            except ValueError:
                raise ValidationError(
                    f"approval_status must be one of {[s.value for s in ApprovalStatus]}",
                    details={"field": "approval_status"},
                ) from None
        with store_errors(TEMPLATE_STORE):
            records = self._templates.list(status)
        return [AssessmentTemplate.model_validate(r) for r in records]

    def list_pending(self) -> list[AssessmentTemplate]:
        """List templates awaiting a decision."""
        return self.list(ApprovalStatus.PENDING)

    def list_selectable(self) -> list[AssessmentTemplate]:
        """List templates that may be used for new customer assessments."""
        return [t for t in self.list(ApprovalStatus.APPROVED) if t.is_selectable]
