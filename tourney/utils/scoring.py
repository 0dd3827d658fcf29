"""
Score composition for tournament finalization.

Turns a participant's bracket tally and placement into a point delta:

    delta = base placement (weighted by opponent strength)
          + points for each first-time defeated opponent
          + difficulty bonus for beating higher-level opponents
          + status penalties
          - inactivity decay

Every term is rounded to 2 decimals when it is computed and the delta is the
rounded sum of the rounded terms, so a stored breakdown always adds up to its
stored total.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Tuple

from tourney.constants import ScoringConstants
from tourney.data_models.awards import AwardBreakdown, ProfileSnapshot
from tourney.utils.bracket import ParticipantTally, clamp
from tourney.utils.decay import DecayPolicy, compute_decay
from tourney.utils.levels import level_from_points

TWO_PLACES = Decimal('0.01')


def round2(value: float) -> float:
    """Round half-up to 2 decimals."""
    rounded = float(Decimal(repr(float(value))).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))
    return rounded + 0.0  # Normalize -0.0


@dataclass(frozen=True)
class ComposedAward:
    """Scoring result for one participant, staged before anything is written."""
    user_id: int
    placement: int
    wins: int
    losses: int
    difficulty_avg: float
    breakdown: AwardBreakdown
    old_points: float
    new_points: float
    old_level: int
    new_level: int
    decay_loss: float
    highlighted_opponents: Tuple[int, ...]

    @property
    def points(self) -> float:
        return self.breakdown.total


class ScoreComposer:
    """
    Computes point deltas for a finalized bracket.

    One composer is built per finalization; it only depends on the bracket
    depth and the decay policy.
    """

    def __init__(self, total_rounds: int, decay_policy: DecayPolicy = None):
        self.total_rounds = total_rounds
        self.decay_policy = decay_policy or DecayPolicy()

    def base_placement_points(self, lost_round: int) -> int:
        """Step function of the elimination round relative to the final."""
        if not lost_round:
            return 0
        if lost_round >= self.total_rounds + 1:
            return ScoringConstants.CHAMPION_POINTS
        if lost_round == self.total_rounds:
            return ScoringConstants.FINALIST_POINTS
        if lost_round == self.total_rounds - 1:
            return ScoringConstants.SEMIFINALIST_POINTS
        if lost_round == self.total_rounds - 2:
            return ScoringConstants.QUARTERFINALIST_POINTS
        return ScoringConstants.EARLY_EXIT_POINTS

    @staticmethod
    def penalty_for_status(status: str) -> int:
        status = getattr(status, 'value', status)
        if status == 'disqualified':
            return ScoringConstants.DISQUALIFIED_PENALTY
        if status == 'expelled':
            return ScoringConstants.EXPELLED_PENALTY
        return 0

    @staticmethod
    def average_opponent_level(tally: ParticipantTally, levels: Mapping[int, int],
                               own_level: int) -> float:
        if not tally.opponents:
            return own_level
        return sum(levels.get(opp_id, 1) for opp_id in tally.opponents) / len(tally.opponents)

    def compose(self, status: str, tally: ParticipantTally, profile: ProfileSnapshot,
                placement: int, levels: Mapping[int, int], now: datetime) -> ComposedAward:
        """
        Compose the award for one participant.

        Args:
            status: Participant status in the tournament
            tally: Bracket tally for the participant
            profile: Profile state before this tournament's award
            placement: Final placement from the ranker
            levels: Pre-award level of every participant
            now: Completion time, used for decay

        Returns:
            ComposedAward with breakdown and the new profile figures
        """
        own_level = levels.get(tally.user_id, profile.effective_level)

        avg_opponent_level = self.average_opponent_level(tally, levels, own_level)
        base_weight = clamp(
            avg_opponent_level / max(1, own_level),
            ScoringConstants.BASE_WEIGHT_MIN,
            ScoringConstants.BASE_WEIGHT_MAX
        )

        base_placement = round2(self.base_placement_points(tally.lost_round) * base_weight)
        wins_points = round2(tally.win_points)
        difficulty_avg = tally.difficulty_avg
        difficulty_points = round2(difficulty_avg * ScoringConstants.DIFFICULTY_MULTIPLIER)
        penalties = round2(self.penalty_for_status(status))

        decay_loss = compute_decay(profile.points, profile.last_competitive_at, now, self.decay_policy)
        decay = round2(-decay_loss)

        total = round2(base_placement + wins_points + difficulty_points + penalties + decay)

        old_points = profile.points or 0.0
        new_points = max(0.0, round2(old_points + total))

        return ComposedAward(
            user_id=tally.user_id,
            placement=placement,
            wins=tally.wins,
            losses=tally.losses,
            difficulty_avg=round2(difficulty_avg),
            breakdown=AwardBreakdown(
                base_placement=base_placement,
                wins_points=wins_points,
                difficulty_points=difficulty_points,
                penalties=penalties,
                decay=decay,
                total=total,
            ),
            old_points=old_points,
            new_points=new_points,
            old_level=profile.effective_level,
            new_level=level_from_points(new_points),
            decay_loss=decay_loss,
            highlighted_opponents=tuple(tally.highlighted_opponents),
        )
