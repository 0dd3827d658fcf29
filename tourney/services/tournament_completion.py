"""
Tournament completion service.

Finalizes a single-elimination tournament: reconstructs the bracket from the
reported results, ranks every participant, composes the point deltas and
applies them to the competitive profiles exactly once.

State machine per tournament:

    NOT_READY --(guards pass)--> READY --(award transaction commits)--> AWARDED

AWARDED is terminal. A repeated or concurrent finalize on an awarded
tournament returns the stored awards and writes nothing.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from tourney.config import Config
from tourney.constants import TournamentConstants
from tourney.data_models.awards import (
    AwardBreakdown, FinalizationOutcome, GameEvent, ParticipantEntry,
    PointsAwardData, ProfileSnapshot, ProfileUpdate, ResultEntry
)
from tourney.database.models import (
    CompetitiveHistory, HighlightedWin, PointsAward, Tournament,
    TournamentStatus, User
)
from tourney.services.base import BaseService
from tourney.utils.bracket import BracketReconstructor
from tourney.utils.decay import DecayPolicy
from tourney.utils.exceptions import (
    InsufficientParticipantsError, InvalidTournamentStateError,
    NoChampionDeterminedError, PersistenceFailureError, TournamentNotFoundError
)
from tourney.utils.logger import setup_logger
from tourney.utils.ranking import PlacementRanker
from tourney.utils.scoring import ComposedAward, ScoreComposer

logger = setup_logger(__name__)


class TournamentCompletionService(BaseService):
    """Computes and applies competitive awards for finished tournaments."""

    def __init__(self, session_factory, config_service=None, event_queue: Optional[asyncio.Queue] = None):
        """
        Args:
            session_factory: Async session factory from Database class
            config_service: Optional ConfigurationService for runtime overrides
            event_queue: Queue receiving GameEvent objects after each commit
        """
        super().__init__(session_factory)
        self.config_service = config_service
        self.event_queue = event_queue

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def finalize(self, tournament_id: int, now: datetime = None) -> FinalizationOutcome:
        """
        Finalize a tournament and apply its awards.

        Args:
            tournament_id: Tournament to finalize
            now: Completion time (defaults to current UTC time)

        Returns:
            FinalizationOutcome; already_awarded is True when the stored
            awards of an earlier finalization are returned instead

        Raises:
            TournamentNotFoundError: Unknown tournament
            InvalidTournamentStateError: Status is not ongoing or completed
            InsufficientParticipantsError: Fewer than two ranked participants
            NoChampionDeterminedError: No decided final-round result
            PersistenceFailureError: Database failure, nothing was written
        """
        now = now or datetime.now(timezone.utc)

        async with self.session_factory() as session:
            tournament = await self._load_tournament(session, tournament_id)
            if tournament is None:
                raise TournamentNotFoundError(tournament_id)

            if tournament.is_awarded:
                logger.info(f"Tournament {tournament_id} already awarded, returning stored awards")
                return FinalizationOutcome(
                    tournament_id=tournament_id,
                    awards=await self._stored_awards(session, tournament_id),
                    already_awarded=True,
                )

            self._check_status(tournament)
            users = await self._load_users(
                session, [p.user_id for p in tournament.participants if p.user_id is not None]
            )
            entries = self._ranked_participants(tournament, users)

            snapshots = {
                user_id: ProfileSnapshot(
                    user_id=user.id,
                    username=user.username,
                    points=user.points or 0.0,
                    level=user.level,
                    last_competitive_at=user.last_competitive_at,
                )
                for user_id, user in users.items()
            }
            levels = {user_id: snap.effective_level for user_id, snap in snapshots.items()}

            composed = self._compose_awards(tournament, entries, snapshots, levels, now)
            awards = [self._award_data(c, snapshots[c.user_id].username) for c in composed]
            profiles = [self._profile_update(c) for c in composed]
            events = self._build_events(tournament, composed)
            tournament_name = tournament.name

            try:
                if not await self._claim_award_marker(session, tournament_id, now):
                    await session.rollback()
                    logger.warning(
                        f"Lost award race for tournament {tournament_id}, returning the stored awards"
                    )
                    return FinalizationOutcome(
                        tournament_id=tournament_id,
                        awards=await self._stored_awards(session, tournament_id),
                        already_awarded=True,
                    )

                await self._apply_awards(session, tournament, users, composed, levels, now)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to persist awards for tournament {tournament_id}: {e}")
                raise PersistenceFailureError(tournament_id, str(e)) from e

        self._emit(events)

        logger.info(
            f"Finalized tournament {tournament_id} ({tournament_name}) with {len(awards)} participants. "
            f"Placements and deltas: {[(a.user_id, a.placement, a.points) for a in awards]}"
        )

        return FinalizationOutcome(
            tournament_id=tournament_id,
            awards=awards,
            profiles=profiles,
            events=events,
        )

    async def finalize_with_retry(self, tournament_id: int, now: datetime = None,
                                  max_retries: int = None) -> FinalizationOutcome:
        """Finalize, retrying persistence failures only."""
        async def attempt():
            return await self.finalize(tournament_id, now)

        return await self.execute_with_retry(
            attempt,
            max_retries=max_retries or Config.FINALIZE_MAX_RETRIES,
            retry_on=(PersistenceFailureError,),
        )

    async def get_awards(self, tournament_id: int) -> List[PointsAwardData]:
        """Stored awards for a tournament ordered by placement."""
        async with self.get_session() as session:
            tournament = await session.get(Tournament, tournament_id)
            if tournament is None:
                raise TournamentNotFoundError(tournament_id)
            return await self._stored_awards(session, tournament_id)

    # ------------------------------------------------------------------
    # Guards and computation
    # ------------------------------------------------------------------

    async def _load_tournament(self, session, tournament_id: int) -> Optional[Tournament]:
        result = await session.execute(
            select(Tournament)
            .options(
                selectinload(Tournament.participants),
                selectinload(Tournament.results),
                selectinload(Tournament.points_awards),
            )
            .where(Tournament.id == tournament_id)
        )
        return result.scalar_one_or_none()

    def _check_status(self, tournament: Tournament):
        if tournament.status.value not in TournamentConstants.FINALIZABLE_STATUSES:
            logger.info(f"Rejecting finalize of tournament {tournament.id}: status {tournament.status.value}")
            raise InvalidTournamentStateError(tournament.id, tournament.status.value)

    def _ranked_participants(self, tournament: Tournament, users: Dict[int, User]) -> List[ParticipantEntry]:
        """Participants whose user still exists, one entry per user."""
        entries: Dict[int, ParticipantEntry] = {}
        for participant in tournament.participants:
            if participant.user_id not in users or participant.user_id in entries:
                continue
            entries[participant.user_id] = ParticipantEntry(
                user_id=participant.user_id,
                status=participant.status.value,
            )

        if len(entries) < TournamentConstants.MIN_PARTICIPANTS:
            logger.info(f"Rejecting finalize of tournament {tournament.id}: {len(entries)} ranked participant(s)")
            raise InsufficientParticipantsError(tournament.id, len(entries))
        return list(entries.values())

    async def _load_users(self, session, user_ids: List[int]) -> Dict[int, User]:
        if not user_ids:
            return {}
        result = await session.execute(select(User).where(User.id.in_(user_ids)))
        return {user.id: user for user in result.scalars().all()}

    def _compose_awards(self, tournament: Tournament, entries: List[ParticipantEntry],
                        snapshots: Dict[int, ProfileSnapshot], levels: Dict[int, int],
                        now: datetime) -> List[ComposedAward]:
        """Run the pure engine. Nothing here touches the database."""
        if self.config_service is not None:
            reconstructor = BracketReconstructor(
                duplicate_policy=self.config_service.duplicate_result_policy(),
                upset_level_gap=self.config_service.upset_level_gap(),
            )
            decay_policy = self.config_service.decay_policy()
        else:
            reconstructor = BracketReconstructor()
            decay_policy = DecayPolicy()

        participant_ids = [e.user_id for e in entries]
        results = [
            ResultEntry(
                round=r.round,
                player_a=r.player_a_id,
                player_b=r.player_b_id,
                winner=r.winner_id,
                score=r.score,
                result_id=r.id,
            )
            for r in tournament.results
        ]

        outcome = reconstructor.reconstruct(participant_ids, results, levels)
        if outcome.champion_id is None:
            logger.info(f"Rejecting finalize of tournament {tournament.id}: no decided final")
            raise NoChampionDeterminedError(tournament.id, outcome.total_rounds)

        placements = PlacementRanker.placements(participant_ids, outcome.tallies)
        composer = ScoreComposer(outcome.total_rounds, decay_policy)

        composed = [
            composer.compose(
                status=entry.status,
                tally=outcome.tallies[entry.user_id],
                profile=snapshots[entry.user_id],
                placement=placements[entry.user_id],
                levels=levels,
                now=now,
            )
            for entry in entries
        ]
        composed.sort(key=lambda c: c.placement)
        return composed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _claim_award_marker(self, session, tournament_id: int, now: datetime) -> bool:
        """
        Set points_awarded_at if nobody else has.

        Returns False when another finalization already claimed the marker.
        """
        result = await session.execute(
            update(Tournament)
            .where(Tournament.id == tournament_id, Tournament.points_awarded_at.is_(None))
            .values(
                points_awarded_at=now,
                status=TournamentStatus.COMPLETED,
                completed_at=func.coalesce(Tournament.completed_at, now),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _apply_awards(self, session, tournament: Tournament, users: Dict[int, User],
                            composed: List[ComposedAward], levels: Dict[int, int], now: datetime):
        """Stage every profile mutation and award row in the current transaction."""
        completed_at = tournament.completed_at or now

        existing = await session.execute(
            select(HighlightedWin.user_id, HighlightedWin.opponent_id)
            .where(HighlightedWin.tournament_id == tournament.id)
        )
        highlighted = {(row.user_id, row.opponent_id) for row in existing}

        for award in composed:
            user = users[award.user_id]
            breakdown = award.breakdown

            user.points = award.new_points
            user.level = award.new_level
            user.wins = (user.wins or 0) + award.wins
            user.losses = (user.losses or 0) + award.losses
            user.tournaments_played = (user.tournaments_played or 0) + 1
            user.decay_total = (user.decay_total or 0.0) + award.decay_loss
            user.last_competitive_at = now

            session.add(CompetitiveHistory(
                user_id=award.user_id,
                tournament_id=tournament.id,
                tournament_name=tournament.name,
                game=tournament.game,
                completed_at=completed_at,
                placement=award.placement,
                points=award.points,
                wins=award.wins,
                losses=award.losses,
                difficulty_avg=award.difficulty_avg,
                base_placement=breakdown.base_placement,
                wins_points=breakdown.wins_points,
                difficulty_points=breakdown.difficulty_points,
                penalties=breakdown.penalties,
                decay=breakdown.decay,
                total=breakdown.total,
            ))

            for opponent_id in award.highlighted_opponents:
                if (award.user_id, opponent_id) in highlighted:
                    continue
                highlighted.add((award.user_id, opponent_id))
                session.add(HighlightedWin(
                    user_id=award.user_id,
                    tournament_id=tournament.id,
                    opponent_id=opponent_id,
                    tournament_name=tournament.name,
                    game=tournament.game,
                    opponent_username=users[opponent_id].username,
                    opponent_level=levels.get(opponent_id, 1),
                    created_at=now,
                ))

            session.add(PointsAward(
                tournament_id=tournament.id,
                user_id=award.user_id,
                placement=award.placement,
                wins=award.wins,
                losses=award.losses,
                difficulty_avg=award.difficulty_avg,
                points=award.points,
                base_placement=breakdown.base_placement,
                wins_points=breakdown.wins_points,
                difficulty_points=breakdown.difficulty_points,
                penalties=breakdown.penalties,
                decay=breakdown.decay,
                total=breakdown.total,
            ))

        # Surface constraint and version conflicts before commit
        await session.flush()

    async def _stored_awards(self, session, tournament_id: int) -> List[PointsAwardData]:
        result = await session.execute(
            select(PointsAward, User.username)
            .join(User, PointsAward.user_id == User.id)
            .where(PointsAward.tournament_id == tournament_id)
            .order_by(PointsAward.placement)
        )
        return [
            PointsAwardData(
                user_id=row.user_id,
                placement=row.placement,
                wins=row.wins,
                losses=row.losses,
                difficulty_avg=row.difficulty_avg,
                points=row.points,
                breakdown=AwardBreakdown(
                    base_placement=row.base_placement,
                    wins_points=row.wins_points,
                    difficulty_points=row.difficulty_points,
                    penalties=row.penalties,
                    decay=row.decay,
                    total=row.total,
                ),
                username=username,
            )
            for row, username in result.all()
        ]

    # ------------------------------------------------------------------
    # Outcome and events
    # ------------------------------------------------------------------

    @staticmethod
    def _award_data(award: ComposedAward, username: str) -> PointsAwardData:
        return PointsAwardData(
            user_id=award.user_id,
            placement=award.placement,
            wins=award.wins,
            losses=award.losses,
            difficulty_avg=award.difficulty_avg,
            points=award.points,
            breakdown=award.breakdown,
            username=username,
        )

    @staticmethod
    def _profile_update(award: ComposedAward) -> ProfileUpdate:
        return ProfileUpdate(
            user_id=award.user_id,
            old_points=award.old_points,
            new_points=award.new_points,
            old_level=award.old_level,
            new_level=award.new_level,
            wins_added=award.wins,
            losses_added=award.losses,
            decay_loss=award.decay_loss,
            highlighted_opponents=award.highlighted_opponents,
        )

    @staticmethod
    def _build_events(tournament: Tournament, composed: List[ComposedAward]) -> List[GameEvent]:
        base = {'tournament_id': tournament.id, 'tournament_name': tournament.name, 'game': tournament.game}
        events = []
        for award in composed:
            events.append(GameEvent('tournament_completed', award.user_id, {**base, 'placement': award.placement}))
            if award.placement == 1:
                events.append(GameEvent('tournament_won', award.user_id, dict(base)))
            events.append(GameEvent('points_earned', award.user_id, {
                **base,
                'points': award.points,
                'new_points': award.new_points,
            }))
            if award.new_level > award.old_level:
                events.append(GameEvent('level_up', award.user_id, {
                    **base,
                    'old_level': award.old_level,
                    'new_level': award.new_level,
                }))
        return events

    def _emit(self, events: List[GameEvent]):
        if self.event_queue is None:
            return
        for event in events:
            self.event_queue.put_nowait(event)
