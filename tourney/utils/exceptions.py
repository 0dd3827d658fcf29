"""
Custom exceptions for tournament completion with user-friendly error messages.
"""

class TournamentCompletionError(Exception):
    """Base exception for tournament completion errors."""
    retryable = False

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class RejectedPrecondition(TournamentCompletionError):
    """A finalize guard failed; nothing was written."""

class TournamentNotFoundError(RejectedPrecondition):
    """Raised when the tournament to finalize does not exist."""
    def __init__(self, tournament_id: int):
        super().__init__(
            f"Tournament {tournament_id} not found",
            f"❌ Tournament #{tournament_id} was not found!"
        )
        self.tournament_id = tournament_id

class InvalidTournamentStateError(RejectedPrecondition):
    """Raised when the tournament is not ongoing or completed."""
    def __init__(self, tournament_id: int, status: str):
        super().__init__(
            f"Tournament {tournament_id} cannot be finalized from status '{status}'",
            "❌ Only ongoing tournaments can be finalized."
        )
        self.tournament_id = tournament_id
        self.status = status

class InsufficientParticipantsError(RejectedPrecondition):
    """Raised when fewer than two participants have a user reference."""
    def __init__(self, tournament_id: int, count: int):
        super().__init__(
            f"Tournament {tournament_id} has {count} ranked participant(s), at least 2 required",
            "❌ There are not enough participants to finalize this tournament."
        )
        self.tournament_id = tournament_id
        self.count = count

class NoChampionDeterminedError(RejectedPrecondition):
    """Raised when no final-round result with a winner exists."""
    def __init__(self, tournament_id: int, total_rounds: int):
        super().__init__(
            f"Tournament {tournament_id} has no decided result for final round {total_rounds}",
            "❌ The final has not been decided yet, so there is no champion to crown."
        )
        self.tournament_id = tournament_id
        self.total_rounds = total_rounds

class PersistenceFailureError(TournamentCompletionError):
    """Raised when writing the awards fails; the whole attempt was rolled back."""
    retryable = True

    def __init__(self, tournament_id: int, details: str = None):
        super().__init__(
            f"Failed to persist awards for tournament {tournament_id}: {details}",
            "❌ Database error while saving the results. Please try again."
        )
        self.tournament_id = tournament_id
