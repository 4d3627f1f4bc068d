"""Credit rating scoring.

- classify: total score -> letter band (A+ ... D)
- compute_scores: selections -> category scores, total score, rating
- check_weight_sums: configurable weight-sum rule for template content
"""

from credit_rating.scoring.engine import compute_scores, resolve_customer_type
from credit_rating.scoring.rating import BAND_THRESHOLDS, classify
from credit_rating.scoring.weights import (
    WeightSumPolicy,
    check_weight_sums,
    find_weight_sum_issues,
    get_weight_sum_policy,
)

__all__ = [
    "BAND_THRESHOLDS",
    "WeightSumPolicy",
    "check_weight_sums",
    "classify",
    "compute_scores",
    "find_weight_sum_issues",
    "get_weight_sum_policy",
    "resolve_customer_type",
]
