from collections import Counter
from datetime import timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from tourney.database.models import ParticipantStatus, TournamentStatus, User
from tourney.services.tournament_completion import TournamentCompletionService
from tourney.utils.exceptions import (
    InsufficientParticipantsError, InvalidTournamentStateError,
    NoChampionDeterminedError, PersistenceFailureError, TournamentNotFoundError
)

FOUR_PLAYERS = [{}, {}, {}, {}]
# Semifinals 1-2 and 3-4, final 1-3
SCENARIO_A = [(1, 1, 2, 1), (1, 3, 4, 3), (2, 1, 3, 1)]


def by_position(users, values):
    return {users[position - 1].id: value for position, value in values.items()}


def database_error():
    return OperationalError("UPDATE users", {}, Exception("database is locked"))


def drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.mark.asyncio
async def test_scenario_a_four_player_bracket(make_tournament, completion_service, db, now):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A)

    outcome = await completion_service.finalize(tournament.id, now)

    assert not outcome.already_awarded
    assert {a.user_id: a.placement for a in outcome.awards} == by_position(users, {1: 1, 3: 2, 2: 3, 4: 4})
    assert {a.user_id: a.points for a in outcome.awards} == by_position(users, {1: 31, 3: 21, 2: 14, 4: 14})
    assert outcome.champion.user_id == users[0].id

    champion = await db.get_user(users[0].id)
    assert champion.points == 31
    assert champion.level == 1
    assert champion.wins == 2
    assert champion.losses == 0
    assert champion.tournaments_played == 1
    assert champion.last_competitive_at.replace(tzinfo=timezone.utc) == now

    stored = await db.get_tournament(tournament.id)
    assert stored.status == TournamentStatus.COMPLETED
    assert stored.points_awarded_at is not None
    assert stored.completed_at is not None
    assert [a.user_id for a in stored.points_awards] == [users[i].id for i in (0, 2, 1, 3)]

    history = await db.get_recent_history(users[2].id)
    assert len(history) == 1
    assert history[0].placement == 2
    assert history[0].points == 21
    assert history[0].base_placement == 18
    assert history[0].wins_points == 3
    assert history[0].tournament_name == "Spring Cup"


@pytest.mark.asyncio
async def test_scenario_b_second_finalize_returns_stored_awards(make_tournament, completion_service,
                                                                 db, event_queue, now):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A)

    first = await completion_service.finalize(tournament.id, now)
    drain(event_queue)
    second = await completion_service.finalize(tournament.id, now + timedelta(days=30))

    assert second.already_awarded
    assert second.awards == first.awards
    assert second.events == []
    assert event_queue.empty()

    champion = await db.get_user(users[0].id)
    assert champion.points == 31
    assert champion.tournaments_played == 1

    profile = await db.get_competitive_profile(users[0].id)
    assert len(profile.history) == 1


@pytest.mark.asyncio
async def test_scenario_c_disqualified_player_keeps_points_minus_penalty(make_tournament, completion_service, now):
    tournament, users = await make_tournament(
        FOUR_PLAYERS, SCENARIO_A, statuses={3: ParticipantStatus.DISQUALIFIED}
    )

    outcome = await completion_service.finalize(tournament.id, now)

    award = next(a for a in outcome.awards if a.user_id == users[2].id)
    assert award.placement == 2
    assert award.breakdown.penalties == -10
    assert award.breakdown.decay == 0
    assert award.points == award.breakdown.base_placement + award.breakdown.wins_points - 10
    assert award.points == 11


@pytest.mark.asyncio
async def test_scenario_d_inactive_profile_decays(make_tournament, completion_service, db, now):
    players = [
        {'points': 200, 'level': 3, 'last_competitive_at': now - timedelta(days=40)},
        {},
    ]
    tournament, users = await make_tournament(players, [(1, 1, 2, 1)])

    outcome = await completion_service.finalize(tournament.id, now)

    award = next(a for a in outcome.awards if a.user_id == users[0].id)
    assert award.breakdown.decay == -8
    # 25 * (1/3) + 3 * (1/3) - 8
    assert award.points == 1.33

    veteran = await db.get_user(users[0].id)
    assert veteran.decay_total == 8
    assert veteran.points == 201.33
    assert veteran.level == 3


@pytest.mark.asyncio
async def test_scenario_e_odd_field_rounds_up_bracket(make_tournament, completion_service, now):
    # P3 has a bye into the final
    tournament, users = await make_tournament([{}, {}, {}], [(1, 1, 2, 1), (2, 1, 3, 1)])

    outcome = await completion_service.finalize(tournament.id, now)

    assert {a.user_id: a.placement for a in outcome.awards} == by_position(users, {1: 1, 3: 2, 2: 3})
    assert {a.user_id: a.points for a in outcome.awards} == by_position(users, {1: 31, 3: 18, 2: 14})


@pytest.mark.asyncio
async def test_player_without_matches_ranks_last_with_no_base_points(make_tournament, completion_service, now):
    tournament, users = await make_tournament([{}, {}, {}], [(2, 1, 2, 1)])

    outcome = await completion_service.finalize(tournament.id, now)

    idle = next(a for a in outcome.awards if a.user_id == users[2].id)
    assert idle.placement == 3
    assert idle.points == 0
    assert (idle.wins, idle.losses) == (0, 0)


@pytest.mark.asyncio
async def test_result_submission_order_does_not_matter(make_tournament, completion_service, now):
    forward, forward_users = await make_tournament(FOUR_PLAYERS, SCENARIO_A, name="Forward")
    reverse, reverse_users = await make_tournament(FOUR_PLAYERS, list(reversed(SCENARIO_A)), name="Reverse")

    forward_outcome = await completion_service.finalize(forward.id, now)
    reverse_outcome = await completion_service.finalize(reverse.id, now)

    def by_seat(outcome, users):
        seats = {user.id: index for index, user in enumerate(users)}
        return sorted((seats[a.user_id], a.placement, a.points, a.breakdown) for a in outcome.awards)

    assert by_seat(forward_outcome, forward_users) == by_seat(reverse_outcome, reverse_users)


@pytest.mark.asyncio
async def test_resubmitted_result_first_seen_wins(make_tournament, completion_service, now):
    tournament, users = await make_tournament([{}, {}], [(1, 1, 2, 1), (1, 2, 1, 2)])

    outcome = await completion_service.finalize(tournament.id, now)

    assert outcome.champion.user_id == users[0].id
    assert (outcome.champion.wins, outcome.champion.losses) == (1, 0)


@pytest.mark.asyncio
async def test_resubmitted_result_last_seen_policy(make_tournament, db, config_service, now):
    await config_service.set('scoring.duplicate_result_policy', 'last_seen', user_id=1)
    service = TournamentCompletionService(db.session_factory, config_service=config_service)
    tournament, users = await make_tournament([{}, {}], [(1, 1, 2, 1), (1, 2, 1, 2)])

    outcome = await service.finalize(tournament.id, now)

    assert outcome.champion.user_id == users[1].id


@pytest.mark.asyncio
async def test_invalid_results_are_ignored(make_tournament, completion_service, now):
    results = [(1, 1, 2, None), (1, 1, 1, 1), (1, 1, 2, 1)]
    tournament, users = await make_tournament([{}, {}], results)

    outcome = await completion_service.finalize(tournament.id, now)

    champion = outcome.champion
    assert champion.user_id == users[0].id
    assert (champion.wins, champion.losses) == (1, 0)


@pytest.mark.asyncio
async def test_upset_records_highlighted_win(make_tournament, completion_service, db, now):
    players = [
        {},
        {'points': 300, 'level': 4, 'last_competitive_at': now - timedelta(days=1)},
    ]
    tournament, users = await make_tournament(players, [(1, 1, 2, 1)])

    outcome = await completion_service.finalize(tournament.id, now)

    underdog = outcome.champion
    # 25 * 1.2 + 3 * 1.25 + 3 * 2
    assert underdog.points == 39.75
    assert underdog.difficulty_avg == 3

    profile = await db.get_competitive_profile(users[0].id)
    assert len(profile.highlighted_wins) == 1
    win = profile.highlighted_wins[0]
    assert win.opponent_id == users[1].id
    assert win.opponent_username == "P2"
    assert win.opponent_level == 4
    assert win.tournament_id == tournament.id

    favourite = await db.get_competitive_profile(users[1].id)
    assert favourite.highlighted_wins == []


@pytest.mark.asyncio
async def test_heavy_penalty_floors_points_at_zero(make_tournament, completion_service, db, now):
    tournament, users = await make_tournament(
        FOUR_PLAYERS, SCENARIO_A, statuses={4: ParticipantStatus.EXPELLED}
    )

    outcome = await completion_service.finalize(tournament.id, now)

    expelled = next(a for a in outcome.awards if a.user_id == users[3].id)
    assert expelled.points == -1
    assert (await db.get_user(users[3].id)).points == 0
    assert all(p.new_points >= 0 for p in outcome.profiles)


@pytest.mark.asyncio
async def test_events_emitted_after_commit(make_tournament, completion_service, event_queue, now):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A)

    outcome = await completion_service.finalize(tournament.id, now)

    events = drain(event_queue)
    assert events == outcome.events
    assert Counter(e.name for e in events) == {
        'tournament_completed': 4,
        'points_earned': 4,
        'tournament_won': 1,
    }
    won = next(e for e in events if e.name == 'tournament_won')
    assert won.user_id == users[0].id
    assert won.payload['tournament_name'] == "Spring Cup"


@pytest.mark.asyncio
async def test_level_up_event(make_tournament, completion_service, event_queue, db, now):
    tournament, users = await make_tournament([{'points': 90, 'level': 1}, {}], [(1, 1, 2, 1)])

    outcome = await completion_service.finalize(tournament.id, now)

    level_ups = [e for e in drain(event_queue) if e.name == 'level_up']
    assert len(level_ups) == 1
    assert level_ups[0].user_id == users[0].id
    assert (level_ups[0].payload['old_level'], level_ups[0].payload['new_level']) == (1, 2)
    assert outcome.profiles[0].leveled_up

    climber = await db.get_user(users[0].id)
    assert climber.points == 118
    assert climber.level == 2


@pytest.mark.asyncio
async def test_completed_tournament_without_award_can_be_finalized(make_tournament, completion_service, now):
    tournament, _ = await make_tournament(FOUR_PLAYERS, SCENARIO_A, status=TournamentStatus.COMPLETED)

    outcome = await completion_service.finalize(tournament.id, now)

    assert len(outcome.awards) == 4


@pytest.mark.asyncio
async def test_unknown_tournament(completion_service, now):
    with pytest.raises(TournamentNotFoundError):
        await completion_service.finalize(9999, now)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [TournamentStatus.UPCOMING, TournamentStatus.CANCELLED])
async def test_rejects_tournament_not_in_play(make_tournament, completion_service, db, now, status):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A, status=status)

    with pytest.raises(InvalidTournamentStateError) as excinfo:
        await completion_service.finalize(tournament.id, now)

    assert not excinfo.value.retryable
    stored = await db.get_tournament(tournament.id)
    assert stored.status == status
    assert stored.points_awarded_at is None
    assert (await db.get_user(users[0].id)).points == 0


@pytest.mark.asyncio
async def test_rejects_single_ranked_participant(make_tournament, completion_service, db, now):
    tournament, _ = await make_tournament([{}], [])
    # Participant whose account no longer exists
    await db.add_participant(tournament.id, None)

    with pytest.raises(InsufficientParticipantsError) as excinfo:
        await completion_service.finalize(tournament.id, now)

    assert excinfo.value.count == 1


@pytest.mark.asyncio
async def test_rejects_bracket_without_final(make_tournament, completion_service, db, now):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A[:2])

    with pytest.raises(NoChampionDeterminedError):
        await completion_service.finalize(tournament.id, now)

    stored = await db.get_tournament(tournament.id)
    assert stored.points_awarded_at is None
    assert stored.points_awards == []
    assert (await db.get_user(users[0].id)).wins == 0


@pytest.mark.asyncio
async def test_persistence_failure_rolls_back_everything(make_tournament, completion_service,
                                                         db, event_queue, now, monkeypatch):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A)

    async def failing_apply(*args):
        raise database_error()

    monkeypatch.setattr(completion_service, "_apply_awards", failing_apply)

    with pytest.raises(PersistenceFailureError) as excinfo:
        await completion_service.finalize(tournament.id, now)

    assert excinfo.value.retryable
    stored = await db.get_tournament(tournament.id)
    assert stored.points_awarded_at is None
    assert stored.status == TournamentStatus.ONGOING
    assert stored.points_awards == []
    for user in users:
        fresh = await db.get_user(user.id)
        assert fresh.points == 0
        assert fresh.tournaments_played == 0
    assert event_queue.empty()


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failure(make_tournament, completion_service, db, now, monkeypatch):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A)
    original_apply = completion_service._apply_awards
    calls = {'count': 0}

    async def flaky_apply(*args):
        calls['count'] += 1
        if calls['count'] == 1:
            raise database_error()
        return await original_apply(*args)

    monkeypatch.setattr(completion_service, "_apply_awards", flaky_apply)

    outcome = await completion_service.finalize_with_retry(tournament.id, now)

    assert calls['count'] == 2
    assert not outcome.already_awarded
    champion = await db.get_user(users[0].id)
    assert champion.points == 31
    assert champion.tournaments_played == 1


@pytest.mark.asyncio
async def test_retry_does_not_repeat_rejected_preconditions(make_tournament, completion_service, now, monkeypatch):
    tournament, _ = await make_tournament(FOUR_PLAYERS, SCENARIO_A, status=TournamentStatus.UPCOMING)
    original_finalize = completion_service.finalize
    calls = {'count': 0}

    async def counting_finalize(*args):
        calls['count'] += 1
        return await original_finalize(*args)

    monkeypatch.setattr(completion_service, "finalize", counting_finalize)

    with pytest.raises(InvalidTournamentStateError):
        await completion_service.finalize_with_retry(tournament.id, now)

    assert calls['count'] == 1


@pytest.mark.asyncio
async def test_losing_the_award_race_returns_winner_awards(make_tournament, completion_service,
                                                           db, event_queue, now, monkeypatch):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A)
    rival = TournamentCompletionService(db.session_factory)
    original_claim = completion_service._claim_award_marker

    async def claim_after_rival(session, tournament_id, claimed_at):
        # Another request finalizes between our guard check and our commit
        await rival.finalize(tournament_id, claimed_at)
        return await original_claim(session, tournament_id, claimed_at)

    monkeypatch.setattr(completion_service, "_claim_award_marker", claim_after_rival)

    outcome = await completion_service.finalize(tournament.id, now)

    assert outcome.already_awarded
    assert outcome.awards == await completion_service.get_awards(tournament.id)
    assert event_queue.empty()
    champion = await db.get_user(users[0].id)
    assert champion.points == 31
    assert champion.tournaments_played == 1


@pytest.mark.asyncio
async def test_concurrent_profile_change_is_a_persistence_failure(make_tournament, completion_service,
                                                                  db, now, monkeypatch):
    tournament, users = await make_tournament(FOUR_PLAYERS, SCENARIO_A)
    original_claim = completion_service._claim_award_marker
    calls = {'count': 0}

    async def claim_after_profile_edit(session, tournament_id, claimed_at):
        calls['count'] += 1
        if calls['count'] == 1:
            async with db.transaction() as other:
                user = await other.get(User, users[0].id)
                user.username = "Renamed"
        return await original_claim(session, tournament_id, claimed_at)

    monkeypatch.setattr(completion_service, "_claim_award_marker", claim_after_profile_edit)

    with pytest.raises(PersistenceFailureError):
        await completion_service.finalize(tournament.id, now)
    assert (await db.get_tournament(tournament.id)).points_awarded_at is None

    outcome = await completion_service.finalize(tournament.id, now)
    assert outcome.champion.username == "Renamed"
    assert (await db.get_user(users[0].id)).points == 31


@pytest.mark.asyncio
async def test_get_awards(make_tournament, completion_service, now):
    tournament, _ = await make_tournament(FOUR_PLAYERS, SCENARIO_A)
    outcome = await completion_service.finalize(tournament.id, now)

    awards = await completion_service.get_awards(tournament.id)

    assert awards == outcome.awards
    assert [a.placement for a in awards] == [1, 2, 3, 4]
    assert all(a.username for a in awards)

    with pytest.raises(TournamentNotFoundError):
        await completion_service.get_awards(9999)


@pytest.mark.asyncio
async def test_decay_grace_period_can_be_overridden(make_tournament, db, config_service, now):
    await config_service.set('decay.grace_days', 60, user_id=1)
    service = TournamentCompletionService(db.session_factory, config_service=config_service)
    players = [
        {'points': 200, 'level': 3, 'last_competitive_at': now - timedelta(days=40)},
        {},
    ]
    tournament, users = await make_tournament(players, [(1, 1, 2, 1)])

    outcome = await service.finalize(tournament.id, now)

    assert outcome.champion.breakdown.decay == 0


@pytest.mark.asyncio
async def test_rejected_config_value_leaves_finalize_working(make_tournament, db, config_service, now):
    with pytest.raises(ValueError):
        await config_service.set('decay.cap', 'lots', user_id=1)
    service = TournamentCompletionService(db.session_factory, config_service=config_service)
    tournament, users = await make_tournament([{}, {}], [(1, 1, 2, 1)])

    outcome = await service.finalize(tournament.id, now)

    assert outcome.champion.user_id == users[0].id
