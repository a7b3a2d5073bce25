"""
tabcoins.engine.scoring — Content Ranking Score
================================================

Pure calculation, no DB I/O.  The constants bias fresh content toward the
middle of the ranking and damp the swing of the first few votes; they
are shared with existing ranked listings and must not change.

    score = trunc((positive + 0.9208) / (positive - negative + 2.8416), 3)
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation

POSITIVE_OFFSET = Decimal("0.9208")
TOTAL_OFFSET = Decimal("2.8416")
DEFAULT_SCORE = Decimal("0.5")
_PRECISION = Decimal("0.001")


def calculate_score(positive: int, negative: int) -> Decimal:
    """Score for a content with *positive* credits and *negative* debits.

    *negative* is the (zero or negative) sum of the debit rows.  Falls
    back to :data:`DEFAULT_SCORE` if the ratio is not a finite number.
    """
    try:
        ratio = (Decimal(positive) + POSITIVE_OFFSET) / (
            Decimal(positive) - Decimal(negative) + TOTAL_OFFSET
        )
    except (InvalidOperation, ZeroDivisionError):
        return DEFAULT_SCORE
    if not ratio.is_finite():
        return DEFAULT_SCORE
    return ratio.quantize(_PRECISION, rounding=ROUND_DOWN)
