import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from tourney.database.database import Database
from tourney.database.models import ParticipantStatus, TournamentStatus
from tourney.services.configuration import ConfigurationService
from tourney.services.tournament_completion import TournamentCompletionService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database()
    await database.initialize(f"sqlite:///{tmp_path / 'tourney_test.db'}")
    yield database
    await database.close()


@pytest_asyncio.fixture
async def config_service(db):
    service = ConfigurationService(db.session_factory)
    await service.load_all()
    return service


@pytest.fixture
def event_queue() -> asyncio.Queue:
    return asyncio.Queue()


@pytest.fixture
def completion_service(db, event_queue) -> TournamentCompletionService:
    return TournamentCompletionService(db.session_factory, event_queue=event_queue)


@pytest.fixture
def make_tournament(db):
    """
    Build a tournament from player profiles and (round, a, b, winner) tuples.

    Players are given as dicts of User columns; results reference players by
    their 1-based position in `players`. Returns (tournament, [user, ...]).
    """
    async def _make(players, results, statuses=None,
                    status=TournamentStatus.ONGOING, name="Spring Cup"):
        users = []
        for index, profile in enumerate(players):
            profile = dict(profile)
            username = profile.pop('username', f"P{index + 1}")
            users.append(await db.create_user(username=username, **profile))

        tournament = await db.create_tournament(name=name, game="Tekken 8", status=status)
        statuses = statuses or {}
        for index, user in enumerate(users):
            await db.add_participant(
                tournament.id, user.id, statuses.get(index + 1, ParticipantStatus.REGISTERED)
            )

        def uid(position):
            return users[position - 1].id if position is not None else None

        for round_number, a, b, winner in results:
            await db.record_result(tournament.id, round_number, uid(a), uid(b), uid(winner))

        return tournament, users

    return _make
