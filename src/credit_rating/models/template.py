"""Assessment template models.

A template is an ordered set of categories, each holding ordered questions,
each holding ordered answers. Weights and scores are tracked twice, once per
customer type, and are validated once here at ingestion rather than defaulted.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from credit_rating.errors import ValidationError


class CustomerType(StrEnum):
    """Customer type selecting which weight/score track is used."""

    NEW = "new"
    EXISTING = "existing"


class ApprovalStatus(StrEnum):
    """Approval status shared by templates and customer assessments."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TemplateStatus(StrEnum):
    """Operational status of a template, independent of approval."""

    ACTIVE = "active"
    INACTIVE = "inactive"


def _new_id() -> str:
    return uuid.uuid4().hex


class TypedValue(BaseModel):
    """A number carried separately for new and existing customers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    new: Decimal = Field(..., ge=0, allow_inf_nan=False, description="Value for new customers")
    existing: Decimal = Field(
        ..., ge=0, allow_inf_nan=False, description="Value for existing customers"
    )

    def for_customer(self, customer_type: CustomerType) -> Decimal:
        """Return the value for the given customer type."""
        if customer_type == CustomerType.NEW:
            return self.new
        return self.existing


class Answer(BaseModel):
    """A selectable answer with its per-customer-type score."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    answer_id: str = Field(default_factory=_new_id, min_length=1)
    text: str = Field(..., min_length=1)
    score: TypedValue


class Question(BaseModel):
    """A question with its per-customer-type weight and candidate answers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    question_id: str = Field(default_factory=_new_id, min_length=1)
    text: str = Field(..., min_length=1)
    proposed_weight: TypedValue
    answers: list[Answer] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unique_answer_ids(self) -> Question:
        seen: set[str] = set()
        for answer in self.answers:
            if answer.answer_id in seen:
                raise ValueError(
                    f"duplicate answer_id '{answer.answer_id}' in question '{self.question_id}'"
                )
            seen.add(answer.answer_id)
        return self

    def find_answer(self, answer_id: str) -> Answer | None:
        for answer in self.answers:
            if answer.answer_id == answer_id:
                return answer
        return None


class Category(BaseModel):
    """An ordered group of questions contributing one category score."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    category_id: str = Field(..., min_length=1)
    category_name: str = Field(..., min_length=1)
    questions: list[Question] = Field(default_factory=list)


class TemplateContent(BaseModel):
    """Editable content of a template: its name and category tree."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    categories: list[Category] = Field(..., min_length=1)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("name must be a non-empty string")
        return v

    @model_validator(mode="after")
    def _unique_ids(self) -> TemplateContent:
        category_ids: set[str] = set()
        question_ids: set[str] = set()
        for category in self.categories:
            if category.category_id in category_ids:
                raise ValueError(f"duplicate category_id '{category.category_id}'")
            category_ids.add(category.category_id)
            for question in category.questions:
                if question.question_id in question_ids:
                    raise ValueError(f"duplicate question_id '{question.question_id}'")
                question_ids.add(question.question_id)
        return self

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TemplateContent:
        """Validate raw template content, raising the service ValidationError.

        Missing weight or score fields are reported by path instead of being
        treated as zero.

        Raises:
            ValidationError: If the payload does not match the template schema.
        """
        try:
            return cls.model_validate(payload)
        except pydantic.ValidationError as e:
            errors = [
                {
                    "field": ".".join(str(part) for part in err.get("loc", ())),
                    "message": err.get("msg", "invalid value"),
                }
                for err in e.errors()
            ]
            raise ValidationError(
                "Template content is invalid",
                details={"errors": errors},
            ) from None

    def iter_questions(self) -> list[Question]:
        return [q for category in self.categories for q in category.questions]


class AssessmentTemplate(BaseModel):
    """A stored template with its approval and audit state."""

    model_config = ConfigDict(extra="ignore")

    template_id: str
    name: str
    categories: list[Category] = Field(default_factory=list)
    status: TemplateStatus = TemplateStatus.INACTIVE
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    approval_comments: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    is_hidden: bool = False
    created_by: str | None = None
    created_at: datetime | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None
    is_deleted: bool = False
    deleted_by: str | None = None
    deleted_at: datetime | None = None

    @property
    def content(self) -> TemplateContent:
        return TemplateContent(name=self.name, categories=self.categories)

    @property
    def is_selectable(self) -> bool:
        """True when new customer assessments may use this template."""
        return (
            self.approval_status == ApprovalStatus.APPROVED
            and not self.is_hidden
            and not self.is_deleted
        )
