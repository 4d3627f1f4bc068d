"""Scoring engine tests: weighted sums, customer-type tracks, fail-closed selections."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from credit_rating.errors import ValidationError
from credit_rating.models.rating import RatingBand
from credit_rating.models.template import CustomerType, TemplateContent
from credit_rating.scoring.engine import compute_scores


@pytest.fixture
def content(template_payload: dict[str, Any]) -> TemplateContent:
    return TemplateContent.from_payload(template_payload)


class TestComputeScores:
    """Weighted score computation."""

    def test_new_customer_example_scores_68_b(
        self, content: TemplateContent, full_selections: dict[str, str]
    ) -> None:
        result = compute_scores(content, CustomerType.NEW, full_selections)

        assert result.total_score == Decimal("68")
        assert result.rating == RatingBand.B
        assert [c.score for c in result.category_scores] == [Decimal("68")]
        assert result.display_total() == Decimal("68.00")

    def test_existing_customer_uses_existing_track(
        self, content: TemplateContent, full_selections: dict[str, str]
    ) -> None:
        result = compute_scores(content, "existing", full_selections)

        # 90 * 50 / 100 + 70 * 50 / 100
        assert result.total_score == Decimal("80")
        assert result.rating == RatingBand.A
        assert result.customer_type == CustomerType.EXISTING

    def test_answer_snapshot_resolves_score_and_weight(
        self, content: TemplateContent, full_selections: dict[str, str]
    ) -> None:
        result = compute_scores(content, CustomerType.NEW, full_selections)

        snapshot = {a.question_id: a for a in result.answers}
        assert snapshot["q-income"].answer_id == "a-high"
        assert snapshot["q-income"].answer_text == "Above 200k"
        assert snapshot["q-income"].score == Decimal("80")
        assert snapshot["q-income"].weight == Decimal("60")
        assert snapshot["q-history"].weight == Decimal("40")

    def test_deterministic(self, content: TemplateContent, full_selections: dict[str, str]) -> None:
        first = compute_scores(content, CustomerType.NEW, full_selections)
        second = compute_scores(content, CustomerType.NEW, dict(reversed(full_selections.items())))
        assert first == second

    def test_linear_in_answer_score(self, template_payload: dict[str, Any]) -> None:
        """Raising one answer's score by d raises the total by d * weight / 100."""
        base = TemplateContent.from_payload(template_payload)
        template_payload["categories"][0]["questions"][0]["answers"][0]["score"]["new"] = "90"
        bumped = TemplateContent.from_payload(template_payload)
        selections = {"q-income": "a-high", "q-history": "a-good"}

        delta = (
            compute_scores(bumped, "new", selections).total_score
            - compute_scores(base, "new", selections).total_score
        )
        assert delta == Decimal("10") * Decimal("60") / Decimal("100")

    def test_no_rounding_inside_engine(self, template_payload: dict[str, Any]) -> None:
        template_payload["categories"][0]["questions"][0]["proposed_weight"]["new"] = "33.333"
        content = TemplateContent.from_payload(template_payload)

        result = compute_scores(content, "new", {"q-income": "a-high", "q-history": "a-good"})

        # 80 * 33.333 / 100 + 50 * 40 / 100
        assert result.total_score == Decimal("26.6664") + Decimal("20")
        assert result.display_total() == Decimal("46.67")
        assert result.rating == RatingBand.C

    def test_multiple_categories_sum_in_template_order(
        self, template_payload: dict[str, Any]
    ) -> None:
        template_payload["categories"].append(
            {
                "category_id": "c-col",
                "category_name": "Collateral",
                "questions": [
                    {
                        "question_id": "q-col",
                        "text": "Collateral cover",
                        "proposed_weight": {"new": "10", "existing": "10"},
                        "answers": [
                            {
                                "answer_id": "a-full",
                                "text": "Full",
                                "score": {"new": "100", "existing": "100"},
                            }
                        ],
                    }
                ],
            }
        )
        content = TemplateContent.from_payload(template_payload)

        result = compute_scores(
            content, "new", {"q-income": "a-high", "q-history": "a-good", "q-col": "a-full"}
        )

        assert [c.category_id for c in result.category_scores] == ["c-fin", "c-col"]
        assert result.category_scores[1].score == Decimal("10")
        assert result.total_score == Decimal("78")
        assert result.rating == RatingBand.A_MINUS

    def test_empty_category_tree_scores_zero(self) -> None:
        class _Empty:
            categories: list[Any] = []

        result = compute_scores(_Empty(), "new", {})

        assert result.total_score == Decimal("0")
        assert result.rating == RatingBand.D
        assert result.category_scores == []

    def test_category_without_questions_scores_zero(self) -> None:
        content = TemplateContent.from_payload(
            {
                "name": "Empty",
                "categories": [{"category_id": "c1", "category_name": "Nothing", "questions": []}],
            }
        )
        result = compute_scores(content, "existing", {})
        assert result.total_score == Decimal("0")
        assert result.rating == RatingBand.D


class TestSelectionValidation:
    """Incomplete or inconsistent selections never produce a score."""

    def test_missing_selection_lists_question(self, content: TemplateContent) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_scores(content, "new", {"q-income": "a-high"})

        assert exc_info.value.details["missing_question_ids"] == ["q-history"]

    def test_all_missing_in_template_order(self, content: TemplateContent) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_scores(content, "new", {})

        assert exc_info.value.details["missing_question_ids"] == ["q-income", "q-history"]

    def test_blank_answer_counts_as_missing(self, content: TemplateContent) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_scores(content, "new", {"q-income": "a-high", "q-history": ""})

        assert exc_info.value.details["missing_question_ids"] == ["q-history"]

    def test_unknown_question_rejected(
        self, content: TemplateContent, full_selections: dict[str, str]
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_scores(content, "new", {**full_selections, "q-ghost": "a-x"})

        assert exc_info.value.details["unknown_question_ids"] == ["q-ghost"]

    def test_unknown_answer_rejected(self, content: TemplateContent) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_scores(content, "new", {"q-income": "a-high", "q-history": "a-nope"})

        assert exc_info.value.details["invalid_answers"] == [
            {"question_id": "q-history", "answer_id": "a-nope"}
        ]

    def test_unknown_customer_type_rejected(
        self, content: TemplateContent, full_selections: dict[str, str]
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_scores(content, "corporate", full_selections)

        assert exc_info.value.details["field"] == "customer_type"
