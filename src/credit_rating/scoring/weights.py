"""Weight-sum rule for template content.

For each customer type, the proposed weights of all questions in a template
are expected to add up to 100 so that total scores land on a 0-100 scale.
Whether a mismatch blocks submission is configurable:

    CREDIT_RATING_WEIGHT_SUM_POLICY = off | warn | enforce   (default: warn)
"""

from __future__ import annotations

import logging
import os
from decimal import Decimal
from enum import StrEnum

from credit_rating.errors import ValidationError
from credit_rating.models.template import CustomerType, TemplateContent

logger = logging.getLogger(__name__)

WEIGHT_SUM_POLICY_ENV = "CREDIT_RATING_WEIGHT_SUM_POLICY"
EXPECTED_WEIGHT_SUM = Decimal("100")
WEIGHT_SUM_TOLERANCE = Decimal("0.01")


class WeightSumPolicy(StrEnum):
    """How a weight-sum mismatch is handled at template submission."""

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"


def get_weight_sum_policy() -> WeightSumPolicy:
    """Read the weight-sum policy from the environment.

    Unknown values fall back to WARN with a logged warning.
    """
    raw = os.environ.get(WEIGHT_SUM_POLICY_ENV, WeightSumPolicy.WARN.value)
    try:
        return WeightSumPolicy(raw.strip().lower())
    except ValueError:
        logger.warning("Unknown %s value %r; using 'warn'", WEIGHT_SUM_POLICY_ENV, raw)
        return WeightSumPolicy.WARN


def weight_sums(content: TemplateContent) -> dict[CustomerType, Decimal]:
    """Return the sum of proposed weights per customer type."""
    sums = {ctype: Decimal("0") for ctype in CustomerType}
    for question in content.iter_questions():
        for ctype in CustomerType:
            sums[ctype] += question.proposed_weight.for_customer(ctype)
    return sums


def find_weight_sum_issues(content: TemplateContent) -> list[str]:
    """List human-readable weight-sum mismatches, empty when consistent."""
    issues: list[str] = []
    for ctype, total in weight_sums(content).items():
        if abs(total - EXPECTED_WEIGHT_SUM) > WEIGHT_SUM_TOLERANCE:
            issues.append(
                f"{ctype.value} customer weights sum to {total}, expected {EXPECTED_WEIGHT_SUM}"
            )
    return issues


def check_weight_sums(
    content: TemplateContent,
    policy: WeightSumPolicy | None = None,
) -> list[str]:
    """Apply the weight-sum rule to template content.

    Args:
        content: Template content being created or resubmitted.
        policy: Policy override; defaults to the configured policy.

    Returns:
        The list of issues found (empty if none or policy is OFF).

    Raises:
        ValidationError: If issues exist and the policy is ENFORCE.
    """
    effective = policy or get_weight_sum_policy()
    if effective == WeightSumPolicy.OFF:
        return []

    issues = find_weight_sum_issues(content)
    if not issues:
        return []

    if effective == WeightSumPolicy.ENFORCE:
        raise ValidationError(
            "Template weights do not sum to 100",
            details={"weight_sum_issues": issues},
        )

    logger.warning("Template %r weight-sum mismatch: %s", content.name, "; ".join(issues))
    return issues
