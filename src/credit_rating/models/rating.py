"""Letter rating bands."""

from __future__ import annotations

from enum import StrEnum


class RatingBand(StrEnum):
    """Letter band derived from a total score, best first."""

    A_PLUS = "A+"
    A = "A"
    A_MINUS = "A-"
    B = "B"
    C_PLUS = "C+"
    C = "C"
    C_MINUS = "C-"
    D = "D"
