"""Level computation.

Levels are linear: every 100 XP is one level. The same formula is
evaluated in SQL by the XP upsert (see ``level_expression``), so both
sides must stay in sync.
"""

from __future__ import annotations

from typing import Any

XP_PER_LEVEL = 100


def calculate_level(total_xp: int) -> int:
    """Level for a post-award XP total. ``level(0) == 1``, ``level(100) == 2``."""
    return max(total_xp, 0) // XP_PER_LEVEL + 1


def xp_for_next_level(level: int) -> int:
    """Cumulative XP at which ``level`` rolls over into ``level + 1``."""
    return level * XP_PER_LEVEL


def level_expression(total_xp: Any) -> Any:  # noqa: ANN401
    """SQL counterpart of ``calculate_level`` for a non-negative column expression."""
    return total_xp // XP_PER_LEVEL + 1


def level_progress(total_xp: int) -> dict:
    """Level info for display.

    ``xp_into_level`` counts from the start of the current level,
    ``xp_to_next_level`` is what remains until the next one.
    """
    level = calculate_level(total_xp)
    floor_xp = (level - 1) * XP_PER_LEVEL
    return {
        "level": level,
        "xp_into_level": max(total_xp, 0) - floor_xp,
        "xp_for_level": XP_PER_LEVEL,
        "next_level": level + 1,
        "xp_to_next_level": xp_for_next_level(level) - max(total_xp, 0),
    }
