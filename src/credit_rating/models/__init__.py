"""Credit rating domain models: templates, customer assessments, customers."""

from credit_rating.models.assessment import (
    AnswerSnapshot,
    CategoryScore,
    CustomerAssessment,
    CustomerHistory,
    CustomerHistorySummary,
    ScoreResult,
    round_for_display,
)
from credit_rating.models.customer import Customer, CustomerLookup, validate_nic
from credit_rating.models.rating import RatingBand
from credit_rating.models.template import (
    Answer,
    ApprovalStatus,
    AssessmentTemplate,
    Category,
    CustomerType,
    Question,
    TemplateContent,
    TemplateStatus,
    TypedValue,
)

__all__ = [
    "Answer",
    "AnswerSnapshot",
    "ApprovalStatus",
    "AssessmentTemplate",
    "Category",
    "CategoryScore",
    "Customer",
    "CustomerAssessment",
    "CustomerHistory",
    "CustomerHistorySummary",
    "CustomerLookup",
    "CustomerType",
    "Question",
    "RatingBand",
    "ScoreResult",
    "TemplateContent",
    "TemplateStatus",
    "TypedValue",
    "round_for_display",
    "validate_nic",
]
