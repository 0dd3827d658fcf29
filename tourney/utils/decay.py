"""
Inactivity decay for competitive points.

Decay is applied once per finalized tournament, computed from the profile
state before that tournament's award is written.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from tourney.config import Config

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class DecayPolicy:
    """Tunable decay parameters; defaults come from Config."""
    grace_days: int = Config.DECAY_GRACE_DAYS
    weekly_rate: float = Config.DECAY_WEEKLY_RATE
    cap: float = Config.DECAY_CAP

    @classmethod
    def from_config_service(cls, config_service=None) -> 'DecayPolicy':
        if config_service is None:
            return cls()
        return cls(
            grace_days=int(config_service.get('decay.grace_days', Config.DECAY_GRACE_DAYS)),
            weekly_rate=float(config_service.get('decay.weekly_rate', Config.DECAY_WEEKLY_RATE)),
            cap=float(config_service.get('decay.cap', Config.DECAY_CAP)),
        )


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes coming back from SQLite are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def inactive_days(last_active_at: datetime, now: datetime) -> int:
    """Whole days elapsed between last activity and now."""
    elapsed = (_as_utc(now) - _as_utc(last_active_at)).total_seconds()
    return math.floor(elapsed / SECONDS_PER_DAY)


def compute_decay(current_points: Optional[float], last_active_at: Optional[datetime],
                  now: datetime, policy: DecayPolicy = None) -> float:
    """
    Calculate the point loss for competitive inactivity.

    Args:
        current_points: Points before this tournament's award
        last_active_at: Last competitive activity, or None if never active
        now: Completion time of the tournament
        policy: Decay parameters, defaults from Config

    Returns:
        Loss amount (>= 0), never more than the cap or the current points
    """
    policy = policy or DecayPolicy()

    points = float(current_points) if current_points is not None else 0.0
    if not math.isfinite(points) or points <= 0 or last_active_at is None:
        return 0

    days = inactive_days(last_active_at, now)
    if days <= policy.grace_days:
        return 0

    weeks = math.ceil((days - policy.grace_days) / 7)
    percent_loss = math.floor(points * policy.weekly_rate * weeks)
    min_loss = weeks
    loss = max(min_loss, percent_loss)
    return min(policy.cap, min(points, loss))
