from typing import Optional, List
from datetime import datetime
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy import select
from contextlib import asynccontextmanager

from tourney.config import Config
from tourney.database.models import (
    Base, User, Tournament, TournamentParticipant, TournamentResult,
    TournamentStatus, ParticipantStatus, CompetitiveHistory
)
from tourney.utils.logger import setup_logger

class Database:
    def __init__(self):
        self.logger = setup_logger(__name__)
        self.engine = None
        self.async_session = None

    async def initialize(self, database_url: str = None):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = database_url or Config.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @property
    def session_factory(self):
        """Session factory handed to the service layer"""
        return self.async_session

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. Exceptions must be allowed to
        propagate out of the context for rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # User operations
    async def create_user(self, username: str, discord_id: Optional[int] = None, **profile) -> User:
        """Create a user; extra keyword arguments seed competitive profile columns"""
        async with self.transaction() as session:
            user = User(username=username, discord_id=discord_id, **profile)
            session.add(user)
            await session.flush()
            await session.refresh(user)
            return user

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get a user by internal id"""
        async with self.get_session() as session:
            return await session.get(User, user_id)

    async def get_user_by_discord_id(self, discord_id: int) -> Optional[User]:
        """Get a user by their Discord ID"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User).where(User.discord_id == discord_id)
            )
            return result.scalar_one_or_none()

    async def get_competitive_profile(self, user_id: int) -> Optional[User]:
        """Get a user with competitive history and highlighted wins loaded"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User)
                .options(selectinload(User.history), selectinload(User.highlighted_wins))
                .where(User.id == user_id)
            )
            return result.scalar_one_or_none()

    async def get_recent_history(self, user_id: int, limit: int = 5) -> List[CompetitiveHistory]:
        """Get the most recent competitive history rows for a user"""
        async with self.get_session() as session:
            result = await session.execute(
                select(CompetitiveHistory)
                .where(CompetitiveHistory.user_id == user_id)
                .order_by(CompetitiveHistory.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # Tournament operations
    async def create_tournament(self, name: str, game: str, created_by: Optional[int] = None,
                                status: TournamentStatus = TournamentStatus.UPCOMING,
                                description: str = None, max_participants: int = None) -> Tournament:
        """Create a new tournament"""
        async with self.transaction() as session:
            tournament = Tournament(
                name=name,
                game=game,
                created_by=created_by,
                status=status,
                description=description,
                max_participants=max_participants
            )
            session.add(tournament)
            await session.flush()
            await session.refresh(tournament)
            return tournament

    async def get_tournament(self, tournament_id: int) -> Optional[Tournament]:
        """Get a tournament with participants, results and awards loaded"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Tournament)
                .options(
                    selectinload(Tournament.participants),
                    selectinload(Tournament.results),
                    selectinload(Tournament.points_awards)
                )
                .where(Tournament.id == tournament_id)
            )
            return result.scalar_one_or_none()

    async def set_tournament_status(self, tournament_id: int, status: TournamentStatus,
                                    start_date: datetime = None) -> Optional[Tournament]:
        """Move a tournament to another status"""
        async with self.transaction() as session:
            tournament = await session.get(Tournament, tournament_id)
            if not tournament:
                return None
            tournament.status = status
            if start_date and not tournament.start_date:
                tournament.start_date = start_date
            return tournament

    async def add_participant(self, tournament_id: int, user_id: Optional[int],
                              status: ParticipantStatus = ParticipantStatus.REGISTERED) -> TournamentParticipant:
        """Register a participant in a tournament"""
        async with self.transaction() as session:
            participant = TournamentParticipant(
                tournament_id=tournament_id,
                user_id=user_id,
                status=status
            )
            session.add(participant)
            await session.flush()
            await session.refresh(participant)
            return participant

    async def set_participant_status(self, tournament_id: int, user_id: int,
                                     status: ParticipantStatus) -> Optional[TournamentParticipant]:
        """Change a participant's status (e.g. disqualify)"""
        async with self.transaction() as session:
            result = await session.execute(
                select(TournamentParticipant).where(
                    TournamentParticipant.tournament_id == tournament_id,
                    TournamentParticipant.user_id == user_id
                )
            )
            participant = result.scalars().first()
            if participant:
                participant.status = status
            return participant

    async def record_result(self, tournament_id: int, round: int, player_a_id: int, player_b_id: int,
                            winner_id: Optional[int], score: str = None) -> TournamentResult:
        """Append a reported bracket result"""
        async with self.transaction() as session:
            result = TournamentResult(
                tournament_id=tournament_id,
                round=round,
                player_a_id=player_a_id,
                player_b_id=player_b_id,
                winner_id=winner_id,
                score=score
            )
            session.add(result)
            await session.flush()
            await session.refresh(result)
            return result
