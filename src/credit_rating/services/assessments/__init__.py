"""Customer assessment service package."""

from credit_rating.services.assessments.service import (
    CustomerAssessmentService,
    SubmitAssessmentInput,
)

__all__ = [
    "CustomerAssessmentService",
    "SubmitAssessmentInput",
]
