"""Competitive level model. Pure functions, no state."""

import math
from typing import Optional, Tuple

from tourney.config import Config


def _safe_points(points: Optional[float]) -> float:
    if points is None:
        return 0.0
    try:
        value = float(points)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return max(0.0, value)


def level_from_points(points: Optional[float]) -> int:
    """Level is one per full hundred points, starting at 1."""
    level = math.floor(_safe_points(points) / Config.POINTS_PER_LEVEL) + 1
    return max(1, level)


def effective_level(points: Optional[float], stored_level: Optional[int] = None) -> int:
    """Stored level when the profile has one, otherwise derived from points."""
    if stored_level is not None:
        return max(1, int(stored_level))
    return level_from_points(points)


def level_progress(points: Optional[float]) -> Tuple[float, float]:
    """Return (points_into_current_level, points_needed_for_next_level)."""
    safe = _safe_points(points)
    into_level = safe - (level_from_points(safe) - 1) * Config.POINTS_PER_LEVEL
    return round(into_level, 2), round(Config.POINTS_PER_LEVEL - into_level, 2)
