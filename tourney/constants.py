"""
Bot-wide constants for the tournament scoring engine.

This module contains the magic numbers used by the completion engine so the
scoring formula can be read in one place.
"""

class ScoringConstants:
    """Constants related to tournament point awards."""
    
    # Base placement points by elimination stage
    CHAMPION_POINTS = 25        # Won the final
    FINALIST_POINTS = 18        # Lost in the final round
    SEMIFINALIST_POINTS = 14    # Lost one round before the final
    QUARTERFINALIST_POINTS = 10 # Lost two rounds before the final
    EARLY_EXIT_POINTS = 6       # Anything earlier
    
    # Opponent-strength weighting of the placement base
    BASE_WEIGHT_MIN = 0.3
    BASE_WEIGHT_MAX = 1.2
    
    # Points per first-time defeated opponent, weighted by level ratio
    WIN_POINTS = 3
    WIN_WEIGHT_MIN = 0.1
    WIN_WEIGHT_MAX = 1.25
    
    # Difficulty bonus: level gap per defeated opponent, averaged then doubled
    DIFFICULTY_GAP_MAX = 10
    DIFFICULTY_MULTIPLIER = 2
    
    # Penalties by participant status
    DISQUALIFIED_PENALTY = -10
    EXPELLED_PENALTY = -15


class TournamentConstants:
    """Constants for tournament and participant lifecycle values."""
    
    MIN_PARTICIPANTS = 2
    
    # Tournament statuses that may be finalized
    FINALIZABLE_STATUSES = ('ongoing', 'completed')


class UIConstants:
    """Constants for Discord UI elements."""
    
    # Embed colors
    DEFAULT_EMBED_COLOR = 0x3498db  # Blue
    GOLD_RANK_COLOR = 0xffd700     # Gold for champions
    SUCCESS_COLOR = 0x2ecc71       # Green for success
    
    # Maximum award rows rendered in one embed
    MAX_AWARD_ROWS = 20
    
    TROPHY_EMOJI = "🏆"
    UPSET_EMOJI = "⚡"
    LEVEL_UP_EMOJI = "⬆️"
