"""
Single-elimination bracket reconstruction.

Rebuilds round depth, elimination rounds and per-participant tallies from the
raw results reported for a tournament. Raw results may be unordered, may
contain resubmitted duplicates and may contain invalid rows; the output is
a deterministic function of the participant set and the ordered results.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from tourney.config import Config
from tourney.constants import ScoringConstants
from tourney.data_models.awards import ResultEntry
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)

FIRST_SEEN = 'first_seen'
LAST_SEEN = 'last_seen'
DUPLICATE_POLICIES = (FIRST_SEEN, LAST_SEEN)


def clamp(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(max_value, value))


def next_power_of_two(n: int) -> int:
    slots = 1
    while slots < n:
        slots *= 2
    return slots


def total_rounds_for(participant_count: int) -> int:
    """Number of rounds in a bracket sized for `participant_count` entrants."""
    return next_power_of_two(participant_count).bit_length() - 1


def is_valid_result(result: ResultEntry) -> bool:
    """A result counts only if it has a winner that is one of two distinct players."""
    if result.winner is None:
        return False
    if result.player_a is None or result.player_b is None:
        return False
    if result.player_a == result.player_b:
        return False
    return result.winner in (result.player_a, result.player_b)


def dedupe_results(results: Iterable[ResultEntry], policy: str = FIRST_SEEN) -> List[ResultEntry]:
    """
    Keep one result per (round, unordered player pair).

    Results are taken in submission order (result_id when present, input order
    otherwise). `first_seen` keeps the earliest submission of each pairing,
    `last_seen` the latest. Surviving results keep the position of the first
    submission of their pairing.
    """
    if policy not in DUPLICATE_POLICIES:
        raise ValueError(f"Unknown duplicate result policy: {policy}")

    ordered = sorted(results, key=lambda r: r.result_id if r.result_id is not None else 0)
    kept: Dict[tuple, ResultEntry] = {}
    for result in ordered:
        key = (result.round, frozenset((result.player_a, result.player_b)))
        if key in kept and policy == FIRST_SEEN:
            logger.debug(f"Discarding duplicate result for round {result.round}: {result}")
            continue
        kept[key] = result
    return list(kept.values())


@dataclass
class ParticipantTally:
    """Running bracket statistics for one participant."""
    user_id: int
    wins: int = 0
    losses: int = 0
    lost_round: int = 0  # 0 = never eliminated and never crowned
    opponents: Set[int] = field(default_factory=set)
    defeated: List[int] = field(default_factory=list)  # First-time defeats, in order
    win_points: float = 0.0
    difficulty_sum: float = 0.0
    difficulty_count: int = 0
    highlighted_opponents: List[int] = field(default_factory=list)

    @property
    def difficulty_avg(self) -> float:
        if not self.difficulty_count:
            return 0.0
        return self.difficulty_sum / self.difficulty_count


@dataclass
class BracketOutcome:
    """Reconstructed bracket state for a tournament."""
    total_rounds: int
    champion_id: Optional[int]
    tallies: Dict[int, ParticipantTally]
    results: List[ResultEntry]
    skipped_results: int = 0


class BracketReconstructor:
    """Derives elimination structure and tallies from raw results."""

    def __init__(self, duplicate_policy: str = None, upset_level_gap: int = None):
        self.duplicate_policy = duplicate_policy or Config.DUPLICATE_RESULT_POLICY
        self.upset_level_gap = Config.UPSET_LEVEL_GAP if upset_level_gap is None else upset_level_gap
        if self.duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(f"Unknown duplicate result policy: {self.duplicate_policy}")

    def reconstruct(self, participant_ids: Sequence[int], results: Iterable[ResultEntry],
                    levels: Mapping[int, int]) -> BracketOutcome:
        """
        Rebuild the bracket for the given participants.

        Args:
            participant_ids: Users taking part (duplicates are collapsed)
            results: Raw reported results in any order
            levels: Competitive level per participant, read before the award

        Returns:
            BracketOutcome; champion_id is None when no final was decided
        """
        unique_ids = list(dict.fromkeys(participant_ids))
        members = set(unique_ids)
        total_rounds = total_rounds_for(len(unique_ids))
        tallies = {user_id: ParticipantTally(user_id) for user_id in unique_ids}

        raw = list(results)
        valid = [
            r for r in raw
            if is_valid_result(r) and r.player_a in members and r.player_b in members
        ]
        skipped = len(raw) - len(valid)
        if skipped:
            logger.debug(f"Ignoring {skipped} invalid or non-participant result(s)")

        surviving = dedupe_results(valid, self.duplicate_policy)

        for result in surviving:
            winner_id = result.winner
            loser_id = result.player_b if winner_id == result.player_a else result.player_a
            winner = tallies[winner_id]
            loser = tallies[loser_id]

            winner.wins += 1
            loser.losses += 1
            winner.opponents.add(loser_id)
            loser.opponents.add(winner_id)

            # Repeat legs of the same pairing only count towards wins/losses
            if loser_id in winner.defeated:
                continue
            winner.defeated.append(loser_id)

            player_level = levels.get(winner_id, 1)
            opponent_level = levels.get(loser_id, 1)

            win_weight = clamp(
                opponent_level / max(1, player_level),
                ScoringConstants.WIN_WEIGHT_MIN,
                ScoringConstants.WIN_WEIGHT_MAX
            )
            winner.win_points += ScoringConstants.WIN_POINTS * win_weight

            winner.difficulty_sum += clamp(
                max(0, opponent_level - player_level), 0, ScoringConstants.DIFFICULTY_GAP_MAX
            )
            winner.difficulty_count += 1

            if opponent_level >= player_level + self.upset_level_gap:
                winner.highlighted_opponents.append(loser_id)

            loser.lost_round = max(loser.lost_round, result.round)

        champion_id = None
        for result in surviving:
            if result.round == total_rounds:
                champion_id = result.winner
                tallies[champion_id].lost_round = total_rounds + 1
                break

        return BracketOutcome(
            total_rounds=total_rounds,
            champion_id=champion_id,
            tallies=tallies,
            results=surviving,
            skipped_results=skipped,
        )
