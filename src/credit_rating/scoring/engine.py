"""Weighted scoring engine.

Turns a full set of answer selections into per-category and total scores:

    category_score = sum(answer_score * question_weight / 100) over its questions
    total_score    = sum(category_score) over all categories

Both score and weight come from the track of the chosen customer type.
All arithmetic uses Decimal and is kept at full precision; rounding happens
only at presentation boundaries (see ScoreResult.display_total).

Fail-closed: an incomplete or inconsistent selection map raises
ValidationError and never yields a partial score.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Protocol

from credit_rating.errors import ValidationError
from credit_rating.models.assessment import AnswerSnapshot, CategoryScore, ScoreResult
from credit_rating.models.template import Category, CustomerType
from credit_rating.scoring.rating import classify

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


class HasCategories(Protocol):
    """Anything exposing an ordered category tree (template or its content)."""

    @property
    def categories(self) -> Sequence[Category]: ...


def resolve_customer_type(customer_type: CustomerType | str) -> CustomerType:
    """Coerce a customer type value, raising ValidationError if unknown."""
    try:
        return CustomerType(customer_type)
    except ValueError:
        raise ValidationError(
            f"customer_type must be one of {[c.value for c in CustomerType]}",
            details={"field": "customer_type", "value": str(customer_type)},
        ) from None


def _check_selections(
    categories: Sequence[Category],
    selections: Mapping[str, str],
) -> None:
    """Validate that selections cover every question with a known answer.

    Raises:
        ValidationError: Listing unanswered questions (template order),
            selections for unknown questions, and unknown answer ids.
    """
    known_questions = {q.question_id: q for c in categories for q in c.questions}

    missing = [qid for qid in known_questions if not selections.get(qid)]
    unknown = sorted(qid for qid in selections if qid not in known_questions)
    invalid_answers = [
        {"question_id": qid, "answer_id": selections[qid]}
        for qid, question in known_questions.items()
        if selections.get(qid) and question.find_answer(selections[qid]) is None
    ]

    if not (missing or unknown or invalid_answers):
        return

    problems: list[str] = []
    if missing:
        problems.append(f"unanswered questions: {missing}")
    if unknown:
        problems.append(f"questions not in template: {unknown}")
    if invalid_answers:
        problems.append(
            "answers not found: "
            + str([f"{a['question_id']}={a['answer_id']}" for a in invalid_answers])
        )
    raise ValidationError(
        "Answer selections are incomplete or invalid; " + "; ".join(problems),
        details={
            "missing_question_ids": missing,
            "unknown_question_ids": unknown,
            "invalid_answers": invalid_answers,
        },
    )


def compute_scores(
    template: HasCategories,
    customer_type: CustomerType | str,
    selections: Mapping[str, str],
) -> ScoreResult:
    """Compute category scores, total score and rating for a selection map.

    Args:
        template: Template (or template content) whose categories are scored.
        customer_type: Which weight/score track to use.
        selections: Mapping of question_id -> selected answer_id. Must cover
            every question of the template.

    Returns:
        ScoreResult with category scores in template order, the total score,
        the rating band and the resolved answer snapshot.

    Raises:
        ValidationError: Unknown customer type, unanswered questions, or
            question/answer ids not found in the template.
    """
    ctype = resolve_customer_type(customer_type)
    categories = list(template.categories)
    _check_selections(categories, selections)

    category_scores: list[CategoryScore] = []
    snapshots: list[AnswerSnapshot] = []
    total = Decimal("0")

    for category in categories:
        category_total = Decimal("0")
        for question in category.questions:
            answer = question.find_answer(selections[question.question_id])
            assert answer is not None  # guaranteed by _check_selections
            weight = question.proposed_weight.for_customer(ctype)
            score = answer.score.for_customer(ctype)
            category_total += score * weight / _HUNDRED
            snapshots.append(
                AnswerSnapshot(
                    question_id=question.question_id,
                    answer_id=answer.answer_id,
                    answer_text=answer.text,
                    score=score,
                    weight=weight,
                )
            )
        category_scores.append(
            CategoryScore(
                category_id=category.category_id,
                category_name=category.category_name,
                score=category_total,
            )
        )
        total += category_total

    rating = classify(total)
    logger.debug(
        "Scored %d categories for %s customer: total=%s rating=%s",
        len(category_scores),
        ctype.value,
        total,
        rating.value,
    )

    return ScoreResult(
        customer_type=ctype,
        category_scores=category_scores,
        total_score=total,
        rating=rating,
        answers=snapshots,
    )
