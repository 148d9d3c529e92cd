from __future__ import annotations

import random

import pytest
from sqlmodel import select

from futsalhub.database import (
    AttendanceStatus,
    Lineup,
    ScheduleAttendance,
    ScheduleStatus,
    TeamSide,
)
from futsalhub.errors import ActionError
from futsalhub.matches import (
    GoalCreate,
    add_match,
    create_goal,
    delete_goal,
    delete_match,
    duplicate_match,
    goal_summary,
    remove_from_lineup,
    reset_lineups,
    shuffle_lineups,
    sync_squad_lineup,
    sync_team_lineup,
    update_lineup_side,
    update_match_mercenaries,
)
from futsalhub.schedules import respond_invitation


def _mark_attending(session, schedule_id, user_ids=None):
    rows = session.exec(select(ScheduleAttendance).where(ScheduleAttendance.schedule_id == schedule_id)).all()
    for row in rows:
        if user_ids is None or row.user_id in user_ids:
            row.attendance_status = AttendanceStatus.ATTENDING
            session.add(row)
    session.commit()


def _sides(session, match_id):
    lineups = session.exec(select(Lineup).where(Lineup.match_id == match_id).order_by(Lineup.id)).all()
    return {lineup.user_id: lineup.side for lineup in lineups}


@pytest.fixture
def squad(session, make_user, make_team, make_schedule):
    owner = make_user(session, "captain")
    players = [make_user(session) for _ in range(3)]
    team = make_team(session, owner, "Squad FC", members=players)
    schedule = make_schedule(session, owner, team)
    return schedule, owner, players


@pytest.fixture
def fixture_match(session, make_user, make_team, make_schedule):
    host_owner = make_user(session, "hostcap")
    host_player = make_user(session, "hoststar")
    guest_owner = make_user(session, "guestcap")
    guest_player = make_user(session, "gueststar")
    host = make_team(session, host_owner, "Home Side", members=[host_player])
    guest = make_team(session, guest_owner, "Away Side", members=[guest_player])
    schedule = make_schedule(session, host_owner, host, invited=guest)
    respond_invitation(session, guest_owner, schedule.id, "ACCEPT")
    _mark_attending(session, schedule.id)
    return schedule, host_owner, host_player, guest_owner, guest_player


def test_squad_match_lifecycle(session, squad, make_user):
    schedule, owner, players = squad
    outsider = make_user(session)
    with pytest.raises(ActionError) as exc_info:
        add_match(session, outsider, schedule.id)
    assert exc_info.value.status_code == 403

    schedule.host_team_mercenary_count = 2
    session.add(schedule)
    session.commit()

    match = add_match(session, owner, schedule.id)
    session.refresh(schedule)
    assert schedule.status == ScheduleStatus.READY
    assert not match.is_lined_up
    assert match.home_team_id == match.away_team_id == schedule.host_team_id
    assert match.undecided_team_mercenary_count == 2

    _mark_attending(session, schedule.id, {owner.id, players[0].id, players[1].id})
    assert sync_squad_lineup(session, owner, match.id) == 3
    assert sorted(_sides(session, match.id).values()) == [TeamSide.AWAY, TeamSide.HOME, TeamSide.HOME]
    session.refresh(match)
    session.refresh(schedule)
    assert match.is_lined_up
    assert schedule.status == ScheduleStatus.PLAY
    assert sync_squad_lineup(session, owner, match.id) == 0

    reset = reset_lineups(session, owner, match.id)
    assert set(_sides(session, match.id).values()) == {TeamSide.UNDECIDED}
    assert not reset.is_lined_up
    assert reset.undecided_team_mercenary_count == 2
    session.refresh(schedule)
    assert schedule.status == ScheduleStatus.READY

    assert delete_match(session, owner, match.id).status == ScheduleStatus.CONFIRMED


def test_shuffle_balances_players_and_mercenaries(session, squad):
    schedule, owner, players = squad
    schedule.host_team_mercenary_count = 3
    session.add(schedule)
    session.commit()
    _mark_attending(session, schedule.id)
    match = add_match(session, owner, schedule.id)
    sync_squad_lineup(session, owner, match.id)

    result = shuffle_lineups(session, owner, match.id, random.Random(3))
    assert result["home"] == result["away"] == 2
    assert result["home_mercenaries"] + result["away_mercenaries"] == 3
    session.refresh(match)
    assert match.undecided_team_mercenary_count == 0
    assert match.is_lined_up
    assert TeamSide.UNDECIDED not in _sides(session, match.id).values()


def test_squad_mercenaries_draw_from_undecided(session, squad):
    schedule, owner, _players = squad
    schedule.host_team_mercenary_count = 3
    session.add(schedule)
    session.commit()
    match = add_match(session, owner, schedule.id)

    updated = update_match_mercenaries(session, owner, match.id, 1, 1)
    assert (updated.home_team_mercenary_count, updated.away_team_mercenary_count) == (1, 1)
    assert updated.undecided_team_mercenary_count == 1
    with pytest.raises(ActionError):
        update_match_mercenaries(session, owner, match.id, -1, 0)


def test_pending_schedule_has_no_matches(session, make_user, make_team, make_schedule):
    host_owner = make_user(session)
    guest_owner = make_user(session)
    host = make_team(session, host_owner, "Waiting Host")
    guest = make_team(session, guest_owner, "Waiting Guest")
    schedule = make_schedule(session, host_owner, host, invited=guest)
    with pytest.raises(ActionError):
        add_match(session, host_owner, schedule.id)


def test_team_match_copies_attendance(session, fixture_match):
    schedule, host_owner, host_player, guest_owner, guest_player = fixture_match
    match = add_match(session, guest_owner, schedule.id)
    assert _sides(session, match.id) == {
        host_owner.id: TeamSide.HOME,
        host_player.id: TeamSide.HOME,
        guest_owner.id: TeamSide.AWAY,
        guest_player.id: TeamSide.AWAY,
    }
    assert match.is_lined_up
    session.refresh(schedule)
    assert schedule.status == ScheduleStatus.PLAY

    lineups = session.exec(select(Lineup).where(Lineup.match_id == match.id, Lineup.user_id == guest_player.id)).one()
    remove_from_lineup(session, host_owner, lineups.id)
    assert guest_player.id not in _sides(session, match.id)
    assert sync_team_lineup(session, host_owner, match.id, TeamSide.AWAY) == 2
    assert _sides(session, match.id)[guest_player.id] == TeamSide.AWAY

    with pytest.raises(ActionError):
        reset_lineups(session, host_owner, match.id)


def test_moving_everyone_home_clears_lined_up(session, fixture_match):
    schedule, host_owner, _host_player, guest_owner, guest_player = fixture_match
    match = add_match(session, host_owner, schedule.id)
    for lineup in session.exec(select(Lineup).where(Lineup.match_id == match.id, Lineup.side == TeamSide.AWAY)).all():
        update_lineup_side(session, host_owner, lineup.id, TeamSide.HOME)
    session.refresh(match)
    session.refresh(schedule)
    assert not match.is_lined_up
    assert schedule.status == ScheduleStatus.READY


def test_goals_scores_and_summary(session, fixture_match):
    schedule, host_owner, host_player, guest_owner, guest_player = fixture_match
    match = add_match(session, host_owner, schedule.id)

    goal = create_goal(
        session, host_owner, match.id, GoalCreate(side=TeamSide.HOME, scorer_id=host_player.id, assist_id=host_owner.id)
    )
    assert goal.scorer_side == TeamSide.HOME
    assert goal.assist_id == host_owner.id
    create_goal(session, host_owner, match.id, GoalCreate(side=TeamSide.HOME, scorer_id=host_player.id))
    own_goal = create_goal(session, host_owner, match.id, GoalCreate(side=TeamSide.HOME, scorer_id=guest_player.id))
    assert own_goal.is_own_goal
    assert own_goal.scorer_side == TeamSide.AWAY
    create_goal(session, guest_owner, match.id, GoalCreate(side=TeamSide.AWAY, is_scored_by_mercenary=True))

    session.refresh(match)
    assert (match.home_score, match.away_score) == (3, 1)
    assert goal_summary(session, match.id) == {"HOME": ["hoststar 2"], "AWAY": ["Mercenary 1"]}

    after = delete_goal(session, host_owner, own_goal.id)
    assert (after.home_score, after.away_score) == (2, 1)

    with pytest.raises(ActionError):
        create_goal(session, host_owner, match.id, GoalCreate(side=TeamSide.HOME))
    with pytest.raises(ActionError):
        create_goal(
            session,
            host_owner,
            match.id,
            GoalCreate(side=TeamSide.HOME, scorer_id=host_player.id, assist_id=host_player.id),
        )
    with pytest.raises(ActionError):
        create_goal(
            session, host_owner, match.id, GoalCreate(side=TeamSide.HOME, scorer_id=host_player.id, is_own_goal=True)
        )


def test_duplicate_match_copies_lineup_without_score(session, fixture_match):
    schedule, host_owner, host_player, _guest_owner, _guest_player = fixture_match
    match = add_match(session, host_owner, schedule.id)
    create_goal(session, host_owner, match.id, GoalCreate(side=TeamSide.HOME, scorer_id=host_player.id))

    copy = duplicate_match(session, host_owner, match.id)
    assert copy.id != match.id
    assert (copy.home_score, copy.away_score) == (0, 0)
    assert _sides(session, copy.id) == _sides(session, match.id)
    assert copy.is_lined_up
