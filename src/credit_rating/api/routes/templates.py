"""Assessment template routes.

Provides:
- POST   /v1/templates                      (Create Template)
- GET    /v1/templates                      (List Templates)
- GET    /v1/templates/pending              (List Templates Awaiting Approval)
- GET    /v1/templates/selectable           (List Templates Usable for Assessments)
- GET    /v1/templates/{template_id}        (Get Template)
- PUT    /v1/templates/{template_id}        (Update Template)
- POST   /v1/templates/{template_id}/resubmit
- POST   /v1/templates/{template_id}/approve
- POST   /v1/templates/{template_id}/reject
- PUT    /v1/templates/{template_id}/visibility
- DELETE /v1/templates/{template_id}
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from credit_rating.api.auth import ActorContext, RequireActorContext, require_roles
from credit_rating.api.policy import APPROVERS, TEMPLATE_AUTHORS
from credit_rating.api.routes._deps import get_template_service
from credit_rating.models.template import ApprovalStatus, AssessmentTemplate, TemplateContent
from credit_rating.services.templates.service import ApproveTemplateInput, RejectTemplateInput

router = APIRouter(prefix="/v1", tags=["Templates"])

RequireAuthor = Annotated[ActorContext, Depends(require_roles(TEMPLATE_AUTHORS))]
RequireApprover = Annotated[ActorContext, Depends(require_roles(APPROVERS))]


class TemplateList(BaseModel):
    """List of templates."""

    items: list[AssessmentTemplate]


class ResubmitTemplateRequest(BaseModel):
    """Optional corrected content for a rejected template."""

    content: TemplateContent | None = None


class TemplateVisibilityRequest(BaseModel):
    """Request model for hiding or unhiding a template."""

    hidden: bool = Field(..., description="True hides the template from selection")


@router.post(
    "/templates",
    response_model=AssessmentTemplate,
    status_code=201,
    operation_id="createTemplate",
)
def create_template(
    body: TemplateContent,
    request: Request,
    actor: RequireAuthor,
) -> AssessmentTemplate:
    """Create a template; it starts pending approval."""
    return get_template_service(request).create(body, actor.actor_id)


@router.get("/templates", response_model=TemplateList, operation_id="listTemplates")
def list_templates(
    request: Request,
    actor: RequireActorContext,
    approval_status: ApprovalStatus | None = None,
) -> TemplateList:
    """List non-deleted templates, optionally filtered by approval status."""
    return TemplateList(items=get_template_service(request).list(approval_status))


@router.get(
    "/templates/pending",
    response_model=TemplateList,
    operation_id="listPendingTemplates",
)
def list_pending_templates(request: Request, actor: RequireApprover) -> TemplateList:
    """List templates awaiting a decision."""
    return TemplateList(items=get_template_service(request).list_pending())


@router.get(
    "/templates/selectable",
    response_model=TemplateList,
    operation_id="listSelectableTemplates",
)
def list_selectable_templates(request: Request, actor: RequireActorContext) -> TemplateList:
    """List approved, visible templates usable for new assessments."""
    return TemplateList(items=get_template_service(request).list_selectable())


@router.get(
    "/templates/{template_id}",
    response_model=AssessmentTemplate,
    operation_id="getTemplate",
)
def get_template(
    template_id: str,
    request: Request,
    actor: RequireActorContext,
) -> AssessmentTemplate:
    """Get a template by ID."""
    return get_template_service(request).get(template_id)


@router.put(
    "/templates/{template_id}",
    response_model=AssessmentTemplate,
    operation_id="updateTemplate",
)
def update_template(
    template_id: str,
    body: TemplateContent,
    request: Request,
    actor: RequireAuthor,
) -> AssessmentTemplate:
    """Replace a pending or rejected template's content (409 once approved)."""
    return get_template_service(request).update(template_id, body, actor.actor_id)


@router.post(
    "/templates/{template_id}/resubmit",
    response_model=AssessmentTemplate,
    operation_id="resubmitTemplate",
)
def resubmit_template(
    template_id: str,
    body: ResubmitTemplateRequest,
    request: Request,
    actor: RequireAuthor,
) -> AssessmentTemplate:
    """Send a rejected template back for approval."""
    return get_template_service(request).resubmit(template_id, actor.actor_id, body.content)


@router.post(
    "/templates/{template_id}/approve",
    response_model=AssessmentTemplate,
    operation_id="approveTemplate",
)
def approve_template(
    template_id: str,
    request: Request,
    actor: RequireApprover,
    body: ApproveTemplateInput | None = None,
) -> AssessmentTemplate:
    """Approve a pending template. The body with comments is optional."""
    comments = body.comments if body is not None else None
    return get_template_service(request).approve(template_id, actor.actor_id, comments)


@router.post(
    "/templates/{template_id}/reject",
    response_model=AssessmentTemplate,
    operation_id="rejectTemplate",
)
def reject_template(
    template_id: str,
    body: RejectTemplateInput,
    request: Request,
    actor: RequireApprover,
) -> AssessmentTemplate:
    """Reject a pending template; comments are required."""
    return get_template_service(request).reject(template_id, actor.actor_id, body.comments)


@router.put(
    "/templates/{template_id}/visibility",
    response_model=AssessmentTemplate,
    operation_id="setTemplateVisibility",
)
def set_template_visibility(
    template_id: str,
    body: TemplateVisibilityRequest,
    request: Request,
    actor: RequireAuthor,
) -> AssessmentTemplate:
    """Hide or unhide a template from the selectable list."""
    return get_template_service(request).set_hidden(template_id, body.hidden, actor.actor_id)


@router.delete(
    "/templates/{template_id}",
    response_model=AssessmentTemplate,
    operation_id="deleteTemplate",
)
def delete_template(
    template_id: str,
    request: Request,
    actor: RequireAuthor,
) -> AssessmentTemplate:
    """Soft delete a template not referenced by any customer assessment."""
    return get_template_service(request).delete(template_id, actor.actor_id)
