from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, Float, BigInteger, Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum

Base = declarative_base()

class TournamentStatus(Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class ParticipantStatus(Enum):
    REGISTERED = "registered"
    WAITING = "waiting"
    DISQUALIFIED = "disqualified"
    EXPELLED = "expelled"

class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    discord_id = Column(BigInteger, unique=True, nullable=True, index=True)
    username = Column(String(100), nullable=False)
    is_admin = Column(Boolean, default=False)

    # Competitive profile
    points = Column(Float, nullable=False, default=0.0)
    level = Column(Integer, nullable=True, default=1)  # Derived from points; NULL means "derive on read"
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    tournaments_played = Column(Integer, nullable=False, default=0)
    last_competitive_at = Column(DateTime, nullable=True)
    decay_total = Column(Float, nullable=False, default=0.0)

    # Optimistic concurrency token, bumped by SQLAlchemy on every UPDATE
    version = Column(Integer, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    history = relationship(
        "CompetitiveHistory", back_populates="user",
        cascade="all, delete-orphan", order_by="CompetitiveHistory.id"
    )
    highlighted_wins = relationship(
        "HighlightedWin", back_populates="user",
        cascade="all, delete-orphan", foreign_keys="HighlightedWin.user_id",
        order_by="HighlightedWin.id"
    )

    __table_args__ = (
        CheckConstraint('points >= 0', name='non_negative_points_check'),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def win_rate(self) -> float:
        total = (self.wins or 0) + (self.losses or 0)
        if total == 0:
            return 0.0
        return (self.wins / total) * 100

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', points={self.points}, level={self.level})>"

class Tournament(Base):
    __tablename__ = 'tournaments'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    game = Column(String(50), nullable=False)
    description = Column(Text)
    status = Column(SQLEnum(TournamentStatus), nullable=False, default=TournamentStatus.UPCOMING)
    max_participants = Column(Integer)

    # Organizer
    created_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    # Lifecycle timestamps
    start_date = Column(DateTime)
    end_date = Column(DateTime)
    completed_at = Column(DateTime)
    points_awarded_at = Column(DateTime, nullable=True)  # Set exactly once, by finalization

    created_at = Column(DateTime, default=func.now())

    # Relationships
    creator = relationship("User", foreign_keys=[created_by])
    participants = relationship(
        "TournamentParticipant", back_populates="tournament",
        cascade="all, delete-orphan", order_by="TournamentParticipant.id"
    )
    results = relationship(
        "TournamentResult", back_populates="tournament",
        cascade="all, delete-orphan", order_by="TournamentResult.id"
    )
    points_awards = relationship(
        "PointsAward", back_populates="tournament",
        cascade="all, delete-orphan", order_by="PointsAward.placement"
    )

    @property
    def is_awarded(self) -> bool:
        return self.points_awarded_at is not None or bool(self.points_awards)

    def __repr__(self):
        return f"<Tournament(id={self.id}, name='{self.name}', status={self.status.value})>"

class TournamentParticipant(Base):
    __tablename__ = 'tournament_participants'

    id = Column(Integer, primary_key=True)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)  # NULL once the account is gone
    status = Column(SQLEnum(ParticipantStatus), nullable=False, default=ParticipantStatus.REGISTERED)

    joined_at = Column(DateTime, default=func.now())

    tournament = relationship("Tournament", back_populates="participants")
    user = relationship("User")

    def __repr__(self):
        return f"<TournamentParticipant(tournament_id={self.tournament_id}, user_id={self.user_id}, status={self.status.value})>"

class TournamentResult(Base):
    """
    A reported match result inside a tournament bracket.

    Rows are append-only; the primary key order is the submission order
    used to resolve resubmitted duplicates.
    """
    __tablename__ = 'tournament_results'

    id = Column(Integer, primary_key=True)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False, index=True)
    round = Column(Integer, nullable=False, default=1)
    player_a_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    player_b_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    winner_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    score = Column(String(50))

    submitted_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint('round > 0', name='positive_round_check'),
    )

    tournament = relationship("Tournament", back_populates="results")

    def __repr__(self):
        return f"<TournamentResult(round={self.round}, a={self.player_a_id}, b={self.player_b_id}, winner={self.winner_id})>"

class PointsAward(Base):
    """
    Immutable record of one participant's point award for one tournament.

    Written once together with Tournament.points_awarded_at and never
    recomputed afterwards.
    """
    __tablename__ = 'points_awards'

    id = Column(Integer, primary_key=True)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    placement = Column(Integer, nullable=False)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    difficulty_avg = Column(Float, nullable=False, default=0.0)
    points = Column(Float, nullable=False, default=0.0)

    # Breakdown
    base_placement = Column(Float, nullable=False, default=0.0)
    wins_points = Column(Float, nullable=False, default=0.0)
    difficulty_points = Column(Float, nullable=False, default=0.0)
    penalties = Column(Float, nullable=False, default=0.0)
    decay = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('tournament_id', 'user_id', name='unique_award_per_tournament'),
        CheckConstraint('placement > 0', name='positive_award_placement_check'),
    )

    tournament = relationship("Tournament", back_populates="points_awards")
    user = relationship("User")

    def __repr__(self):
        return f"<PointsAward(tournament_id={self.tournament_id}, user_id={self.user_id}, placement={self.placement}, points={self.points})>"

class CompetitiveHistory(Base):
    __tablename__ = 'competitive_history'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False)

    # Denormalized so history survives tournament edits
    tournament_name = Column(String(200))
    game = Column(String(50))
    completed_at = Column(DateTime)

    placement = Column(Integer)
    points = Column(Float, default=0.0)
    wins = Column(Integer, default=0)
    losses = Column(Integer, default=0)
    difficulty_avg = Column(Float, default=0.0)

    base_placement = Column(Float, default=0.0)
    wins_points = Column(Float, default=0.0)
    difficulty_points = Column(Float, default=0.0)
    penalties = Column(Float, default=0.0)
    decay = Column(Float, default=0.0)
    total = Column(Float, default=0.0)

    user = relationship("User", back_populates="history")

    def __repr__(self):
        return f"<CompetitiveHistory(user_id={self.user_id}, tournament_id={self.tournament_id}, points={self.points})>"

class HighlightedWin(Base):
    """An upset: a defeated opponent at least a few levels above the winner."""
    __tablename__ = 'highlighted_wins'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False)
    opponent_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    tournament_name = Column(String(200))
    game = Column(String(50))
    opponent_username = Column(String(100))
    opponent_level = Column(Integer)

    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('user_id', 'tournament_id', 'opponent_id', name='unique_highlight_per_opponent'),
    )

    user = relationship("User", back_populates="highlighted_wins", foreign_keys=[user_id])

    def __repr__(self):
        return f"<HighlightedWin(user_id={self.user_id}, opponent_id={self.opponent_id}, level={self.opponent_level})>"

class Configuration(Base):
    __tablename__ = 'configurations'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)  # JSON-encoded
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True)
    user_id = Column(BigInteger, nullable=True)
    action = Column(String(50), nullable=False)
    details = Column(Text)  # JSON-encoded
    created_at = Column(DateTime, default=func.now())
