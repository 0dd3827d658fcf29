"""
Placement ranking for finalized brackets.

Orders participants by how deep they went, then by wins, then by id so every
participant gets a unique placement 1..N.
"""

from typing import Dict, List, Mapping, Sequence

from tourney.utils.bracket import ParticipantTally


class PlacementRanker:
    """Deterministic placement ordering."""

    @staticmethod
    def sort_key(user_id: int, tally: ParticipantTally):
        # Descending lost_round and wins, then ids in string order
        lost_round = tally.lost_round if tally else 0
        wins = tally.wins if tally else 0
        return (-lost_round, -wins, str(user_id))

    @classmethod
    def ranked_ids(cls, participant_ids: Sequence[int],
                   tallies: Mapping[int, ParticipantTally]) -> List[int]:
        """Participant ids best first. Participants without matches sort last."""
        unique_ids = list(dict.fromkeys(participant_ids))
        return sorted(unique_ids, key=lambda uid: cls.sort_key(uid, tallies.get(uid)))

    @classmethod
    def placements(cls, participant_ids: Sequence[int],
                   tallies: Mapping[int, ParticipantTally]) -> Dict[int, int]:
        """Map each participant id to its placement (1 = champion)."""
        return {
            user_id: index + 1
            for index, user_id in enumerate(cls.ranked_ids(participant_ids, tallies))
        }
