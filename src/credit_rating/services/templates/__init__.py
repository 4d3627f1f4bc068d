"""Template service package."""

from credit_rating.services.templates.service import (
    ApproveTemplateInput,
    RejectTemplateInput,
    TemplateService,
)

__all__ = [
    "ApproveTemplateInput",
    "RejectTemplateInput",
    "TemplateService",
]
