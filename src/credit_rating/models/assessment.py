"""Customer assessment models.

A customer assessment is one customer's answers against an approved template.
Answers are stored as a snapshot with score and weight already resolved for
the chosen customer type; they are not recomputed from the live template on read.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field

from credit_rating.models.rating import RatingBand
from credit_rating.models.template import ApprovalStatus, CustomerType

DISPLAY_QUANTUM = Decimal("0.01")


def round_for_display(value: Decimal) -> Decimal:
    """Round a score to 2 decimal places for presentation and export."""
    return value.quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP)


class AnswerSnapshot(BaseModel):
    """Selected answer with score and weight resolved for the customer type."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    answer_id: str
    answer_text: str
    score: Decimal
    weight: Decimal


class CategoryScore(BaseModel):
    """Weighted score of one category."""

    model_config = ConfigDict(frozen=True)

    category_id: str
    category_name: str
    score: Decimal


class ScoreResult(BaseModel):
    """Output of the scoring engine, kept at full precision."""

    model_config = ConfigDict(frozen=True)

    customer_type: CustomerType
    category_scores: list[CategoryScore]
    total_score: Decimal
    rating: RatingBand
    answers: list[AnswerSnapshot]

    def display_total(self) -> Decimal:
        return round_for_display(self.total_score)


class CustomerAssessment(BaseModel):
    """A submitted customer assessment with its own approval cycle."""

    model_config = ConfigDict(extra="ignore")

    assessment_id: str
    customer_id: str
    customer_name: str
    nic: str
    customer_type: CustomerType
    assessment_template_id: str
    assessment_template_name: str | None = None
    answers: list[AnswerSnapshot] = Field(default_factory=list)
    category_scores: list[CategoryScore] = Field(default_factory=list)
    total_score: Decimal = Decimal("0")
    rating: RatingBand = RatingBand.D
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    rejection_remarks: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    assessed_by: str | None = None
    created_at: datetime | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None
    is_deleted: bool = False
    deleted_by: str | None = None
    deleted_at: datetime | None = None


class CustomerHistorySummary(BaseModel):
    """Counts of a customer's assessments by approval status."""

    total_assessments: int
    approved_count: int
    pending_count: int
    rejected_count: int
    latest_rating: RatingBand | None = None


class CustomerHistory(BaseModel):
    """A customer's assessments, newest first, with a summary."""

    customer_id: str
    assessments: list[CustomerAssessment]
    summary: CustomerHistorySummary
