"""Level derivation from cumulative XP."""

from __future__ import annotations

import math

XP_PER_LEVEL_UNIT = 50

# (highest level in band, name); levels above the last band are Legends
LEVEL_BANDS = (
    (5, "Newcomer"),
    (10, "Networker"),
    (20, "Connector"),
    (35, "Influencer"),
    (50, "Ambassador"),
)
TOP_LEVEL_NAME = "Legend"


def level_for_xp(total_xp: int) -> int:
    """Return the 1-based level, floor(sqrt(xp / 50)) + 1."""
    if total_xp <= 0:
        return 1
    # isqrt of the floored quotient equals floor(sqrt(xp / 50)) exactly
    return math.isqrt(total_xp // XP_PER_LEVEL_UNIT) + 1


def level_name(level: int) -> str:
    for upper, name in LEVEL_BANDS:
        if level <= upper:
            return name
    return TOP_LEVEL_NAME


def next_level_xp(level: int) -> int:
    """XP target displayed for `level`; an approximation, not the inverse of level_for_xp."""
    return int(math.floor(100 * math.pow(level, 1.5) * 1.2))
