"""Rating classifier mapping a total score to a letter band.

Lower bounds are inclusive and checked best band first, so a score exactly on
a boundary belongs to the higher band (90 -> A+, 89.999 -> A).
"""

from __future__ import annotations

from decimal import Decimal

from credit_rating.models.rating import RatingBand

BAND_THRESHOLDS: tuple[tuple[Decimal, RatingBand], ...] = (
    (Decimal("90"), RatingBand.A_PLUS),
    (Decimal("80"), RatingBand.A),
    (Decimal("70"), RatingBand.A_MINUS),
    (Decimal("60"), RatingBand.B),
    (Decimal("50"), RatingBand.C_PLUS),
    (Decimal("40"), RatingBand.C),
    (Decimal("30"), RatingBand.C_MINUS),
)


def _to_decimal(score: Decimal | float | int) -> Decimal:
    if isinstance(score, Decimal):
        return score
    # str() keeps the float's shortest repr, so 89.999 stays below 90
    return Decimal(str(score))


def classify(score: Decimal | float | int) -> RatingBand:
    """Return the letter band for a score.

    Args:
        score: Total score, any real number.

    Returns:
        RatingBand for the score; D for anything below 30.
    """
    value = _to_decimal(score)
    if value.is_nan():
        return RatingBand.D
    for lower_bound, band in BAND_THRESHOLDS:
        if value >= lower_bound:
            return band
    return RatingBand.D
