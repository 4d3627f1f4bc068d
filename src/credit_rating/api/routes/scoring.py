"""Scoring preview route.

Provides:
- POST /v1/scoring/preview (Compute scores without storing anything)

Accepts either a stored template id or inline template content, so authors
can try a draft before submitting it.
"""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from credit_rating.api.auth import RequireActorContext
from credit_rating.api.routes._deps import get_template_service
from credit_rating.errors import ValidationError
from credit_rating.models.assessment import AnswerSnapshot, CategoryScore, round_for_display
from credit_rating.models.rating import RatingBand
from credit_rating.models.template import CustomerType, TemplateContent
from credit_rating.scoring.engine import compute_scores

router = APIRouter(prefix="/v1", tags=["Scoring"])


class ScorePreviewRequest(BaseModel):
    """Request model for a scoring preview."""

    template_id: str | None = Field(default=None, description="Stored template to score")
    template: TemplateContent | None = Field(default=None, description="Inline template content")
    customer_type: CustomerType
    selections: dict[str, str] = Field(default_factory=dict)


class ScorePreviewResponse(BaseModel):
    """Scores rounded for display plus the exact total."""

    customer_type: CustomerType
    category_scores: list[CategoryScore]
    total_score: Decimal
    exact_total_score: Decimal
    rating: RatingBand
    answers: list[AnswerSnapshot]


@router.post(
    "/scoring/preview",
    response_model=ScorePreviewResponse,
    operation_id="previewScore",
)
def preview_score(
    body: ScorePreviewRequest,
    request: Request,
    actor: RequireActorContext,
) -> ScorePreviewResponse:
    """Compute category scores, total and rating for a selection map."""
    if (body.template_id is None) == (body.template is None):
        raise ValidationError(
            "Provide exactly one of template_id or template",
            details={"fields": ["template_id", "template"]},
        )
    if body.template is not None:
        template: TemplateContent = body.template
    else:
        assert body.template_id is not None
        template = get_template_service(request).get(body.template_id).content

    result = compute_scores(template, body.customer_type, body.selections)
    return ScorePreviewResponse(
        customer_type=result.customer_type,
        category_scores=[
            c.model_copy(update={"score": round_for_display(c.score)})
            for c in result.category_scores
        ],
        total_score=result.display_total(),
        exact_total_score=result.total_score,
        rating=result.rating,
        answers=result.answers,
    )
