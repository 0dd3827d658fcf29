"""
Award data models for tournament finalization.

Provides immutable data transfer objects passed between the database layer,
the pure scoring engine and the Discord surface.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from tourney.utils.levels import effective_level


@dataclass(frozen=True)
class ParticipantEntry:
    """A tournament participant with a user reference."""
    user_id: int
    status: str  # registered, waiting, disqualified, expelled


@dataclass(frozen=True)
class ResultEntry:
    """One reported bracket result."""
    round: int
    player_a: int
    player_b: int
    winner: Optional[int]
    score: Optional[str] = None
    result_id: Optional[int] = None  # Submission order when known


@dataclass(frozen=True)
class ProfileSnapshot:
    """Competitive profile state read before the award is applied."""
    user_id: int
    username: str
    points: float
    level: Optional[int]
    last_competitive_at: Optional[datetime]

    @property
    def effective_level(self) -> int:
        return effective_level(self.points, self.level)


@dataclass(frozen=True)
class AwardBreakdown:
    """Per-term audit of a point delta. `total` equals the sum of the terms."""
    base_placement: float
    wins_points: float
    difficulty_points: float
    penalties: float
    decay: float  # Stored negative
    total: float


@dataclass(frozen=True)
class PointsAwardData:
    """A participant's award for one tournament."""
    user_id: int
    placement: int
    wins: int
    losses: int
    difficulty_avg: float
    points: float
    breakdown: AwardBreakdown
    username: Optional[str] = None


@dataclass(frozen=True)
class ProfileUpdate:
    """Profile mutation applied by a finalization."""
    user_id: int
    old_points: float
    new_points: float
    old_level: int
    new_level: int
    wins_added: int
    losses_added: int
    decay_loss: float
    highlighted_opponents: Tuple[int, ...] = ()

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


@dataclass(frozen=True)
class GameEvent:
    """Notification emitted after a successful finalization commit."""
    name: str  # tournament_completed, tournament_won, points_earned, level_up
    user_id: int
    payload: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class FinalizationOutcome:
    """Result of a finalize call."""
    tournament_id: int
    awards: List[PointsAwardData]
    profiles: List[ProfileUpdate] = field(default_factory=list)
    events: List[GameEvent] = field(default_factory=list)
    already_awarded: bool = False

    @property
    def champion(self) -> Optional[PointsAwardData]:
        for award in self.awards:
            if award.placement == 1:
                return award
        return None
