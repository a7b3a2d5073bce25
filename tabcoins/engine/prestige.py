"""
tabcoins.engine.prestige — Prestige Level Mapping
==================================================

Pure calculation, no DB I/O.

A user's prestige is the mean TabCoin balance of their recent contents,
mapped through a step function.  Root posts and comments have separate
tables; comments need a lower mean for the same level.  Means at or above
the last threshold map to ``ceil(mean) + 5``.

The thresholds are product constants.  Do not interpolate between them.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

# (upper bound, level); the first bound the mean is strictly below wins.
ROOT_LEVELS: tuple[tuple[float, int], ...] = (
    (0.5, -1),
    (1.2, 0),
    (1.5, 1),
    (1.7, 2),
    (1.8, 3),
    (1.9, 4),
    (2.1, 5),
    (2.4, 6),
    (2.7, 7),
)

CHILD_LEVELS: tuple[tuple[float, int], ...] = (
    (0.3, -1),
    (1.1, 0),
    (1.3, 1),
    (1.5, 2),
    (1.6, 3),
    (1.7, 4),
    (1.9, 5),
    (2.1, 6),
    (2.4, 7),
)

# Mean assumed when the user has no eligible content: a freshly
# published content holds exactly one TabCoin.
DEFAULT_MEAN = 1
OPEN_ENDED_BONUS = 5


def calculate_tabcoins_average(tabcoins: Sequence[int]) -> float:
    """Arithmetic mean of *tabcoins*, or :data:`DEFAULT_MEAN` when empty."""
    if not tabcoins:
        return DEFAULT_MEAN
    return sum(tabcoins) / len(tabcoins)


def calculate_prestige_level(mean: float, is_root: bool) -> int:
    """Map a TabCoin mean to a prestige level.

    Monotonic: a higher mean never yields a lower level.
    """
    levels = ROOT_LEVELS if is_root else CHILD_LEVELS
    for upper_bound, level in levels:
        if mean < upper_bound:
            return level
    return math.ceil(mean) + OPEN_ENDED_BONUS
