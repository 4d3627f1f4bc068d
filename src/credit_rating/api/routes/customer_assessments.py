"""Customer assessment routes.

Provides:
- POST   /v1/customer-assessments                          (Submit Assessment)
- GET    /v1/customer-assessments?approval_status=...      (List by Status)
- GET    /v1/customer-assessments/{assessment_id}          (Get Assessment)
- POST   /v1/customer-assessments/{assessment_id}/approve
- POST   /v1/customer-assessments/{assessment_id}/reject
- POST   /v1/customer-assessments/{assessment_id}/resubmit (Edit and Resubmit)
- DELETE /v1/customer-assessments/{assessment_id}

Scores are returned rounded to two decimal places; stored values keep
full precision.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from credit_rating.api.auth import ActorContext, RequireActorContext, require_roles
from credit_rating.api.policy import APPROVERS, ASSESSORS
from credit_rating.api.routes._deps import get_assessment_service
from credit_rating.models.assessment import CustomerAssessment, round_for_display
from credit_rating.models.template import ApprovalStatus
from credit_rating.services.assessments.service import SubmitAssessmentInput

router = APIRouter(prefix="/v1", tags=["Customer Assessments"])

RequireAssessor = Annotated[ActorContext, Depends(require_roles(ASSESSORS))]
RequireApprover = Annotated[ActorContext, Depends(require_roles(APPROVERS))]


class RejectAssessmentRequest(BaseModel):
    """Request model for rejecting an assessment."""

    remarks: str = Field(..., description="Reason for rejection, shown to the assessor")


class ResubmitAssessmentRequest(BaseModel):
    """Request model for editing and resubmitting a rejected assessment."""

    selections: dict[str, str] = Field(..., description="question_id -> selected answer_id")


class CustomerAssessmentList(BaseModel):
    """List of customer assessments."""

    items: list[CustomerAssessment]


def to_display(assessment: CustomerAssessment) -> CustomerAssessment:
    """Round scores to two decimal places for presentation."""
    return assessment.model_copy(
        update={
            "total_score": round_for_display(assessment.total_score),
            "category_scores": [
                c.model_copy(update={"score": round_for_display(c.score)})
                for c in assessment.category_scores
            ],
        }
    )


@router.post(
    "/customer-assessments",
    response_model=CustomerAssessment,
    status_code=201,
    operation_id="submitCustomerAssessment",
)
def submit_customer_assessment(
    body: SubmitAssessmentInput,
    request: Request,
    actor: RequireAssessor,
) -> CustomerAssessment:
    """Score and submit a customer assessment for approval."""
    return to_display(get_assessment_service(request).submit(body, actor.actor_id))


@router.get(
    "/customer-assessments",
    response_model=CustomerAssessmentList,
    operation_id="listCustomerAssessments",
)
def list_customer_assessments(
    request: Request,
    actor: RequireActorContext,
    approval_status: ApprovalStatus = ApprovalStatus.PENDING,
) -> CustomerAssessmentList:
    """List assessments in an approval status (pending by default)."""
    items = get_assessment_service(request).list_by_status(approval_status)
    return CustomerAssessmentList(items=[to_display(a) for a in items])


@router.get(
    "/customer-assessments/{assessment_id}",
    response_model=CustomerAssessment,
    operation_id="getCustomerAssessment",
)
def get_customer_assessment(
    assessment_id: str,
    request: Request,
    actor: RequireActorContext,
) -> CustomerAssessment:
    """Get an assessment by ID."""
    return to_display(get_assessment_service(request).get(assessment_id))


@router.post(
    "/customer-assessments/{assessment_id}/approve",
    response_model=CustomerAssessment,
    operation_id="approveCustomerAssessment",
)
def approve_customer_assessment(
    assessment_id: str,
    request: Request,
    actor: RequireApprover,
) -> CustomerAssessment:
    """Approve a pending assessment (409 if already decided)."""
    return to_display(get_assessment_service(request).approve(assessment_id, actor.actor_id))


@router.post(
    "/customer-assessments/{assessment_id}/reject",
    response_model=CustomerAssessment,
    operation_id="rejectCustomerAssessment",
)
def reject_customer_assessment(
    assessment_id: str,
    body: RejectAssessmentRequest,
    request: Request,
    actor: RequireApprover,
) -> CustomerAssessment:
    """Reject a pending assessment; remarks are required."""
    service = get_assessment_service(request)
    return to_display(service.reject(assessment_id, actor.actor_id, body.remarks))


@router.post(
    "/customer-assessments/{assessment_id}/resubmit",
    response_model=CustomerAssessment,
    operation_id="resubmitCustomerAssessment",
)
def resubmit_customer_assessment(
    assessment_id: str,
    body: ResubmitAssessmentRequest,
    request: Request,
    actor: RequireAssessor,
) -> CustomerAssessment:
    """Replace a rejected assessment's answers and send it back for approval."""
    service = get_assessment_service(request)
    return to_display(service.edit_and_resubmit(assessment_id, body.selections, actor.actor_id))


@router.delete(
    "/customer-assessments/{assessment_id}",
    response_model=CustomerAssessment,
    operation_id="deleteCustomerAssessment",
)
def delete_customer_assessment(
    assessment_id: str,
    request: Request,
    actor: RequireAssessor,
) -> CustomerAssessment:
    """Soft delete a pending or rejected assessment."""
    return to_display(get_assessment_service(request).delete(assessment_id, actor.actor_id))
