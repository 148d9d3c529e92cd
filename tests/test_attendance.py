from __future__ import annotations

import pytest

from futsalhub.attendance import (
    remove_attendance,
    schedule_mvp,
    update_all_attendances,
    update_attendance,
    update_mercenary_count,
    vote_mvp,
)
from futsalhub.database import AttendanceStatus, TeamType
from futsalhub.errors import ActionError
from futsalhub.schedules import get_attendance


@pytest.fixture
def squad(session, make_user, make_team, make_schedule):
    owner = make_user(session, "captain")
    players = [make_user(session) for _ in range(3)]
    team = make_team(session, owner, "MVP FC", members=players)
    schedule = make_schedule(session, owner, team)
    return schedule, team, owner, players


def _received(session, schedule_id, user_id):
    return get_attendance(session, schedule_id, user_id).mvp_received


def test_mvp_vote_moves_between_players(session, squad):
    schedule, _, owner, (first, second, _third) = squad

    vote_mvp(session, owner, schedule.id, first.id)
    assert _received(session, schedule.id, first.id) == 1

    vote_mvp(session, owner, schedule.id, second.id)
    assert _received(session, schedule.id, first.id) == 0
    assert _received(session, schedule.id, second.id) == 1

    vote_mvp(session, owner, schedule.id, second.id)
    assert _received(session, schedule.id, second.id) == 1
    assert get_attendance(session, schedule.id, owner.id).mvp_to_user_id == second.id


def test_mvp_vote_rules(session, squad, make_user):
    schedule, _, owner, (first, *_rest) = squad
    outsider = make_user(session)

    with pytest.raises(ActionError):
        vote_mvp(session, owner, schedule.id, owner.id)
    with pytest.raises(ActionError) as exc_info:
        vote_mvp(session, outsider, schedule.id, first.id)
    assert exc_info.value.status_code == 403
    with pytest.raises(ActionError):
        vote_mvp(session, owner, schedule.id, outsider.id)


def test_mvp_stats_per_side(session, squad):
    schedule, _, owner, (first, second, third) = squad
    vote_mvp(session, owner, schedule.id, first.id)
    vote_mvp(session, second, schedule.id, first.id)

    result = schedule_mvp(session, schedule.id)
    assert result["stats"]["HOST"] == {"total": 4, "voted": 2, "not_voted": 2, "vote_rate": 50}
    assert result["stats"]["INVITED"] == {"total": 0, "voted": 0, "not_voted": 0, "vote_rate": 0}
    assert result["attendances"][0]["user"]["id"] == first.id
    assert result["attendances"][0]["mvp_received"] == 2


def test_removing_a_player_clears_their_votes(session, squad):
    schedule, team, owner, (first, second, _third) = squad
    vote_mvp(session, owner, schedule.id, first.id)
    vote_mvp(session, first, schedule.id, second.id)

    removed = get_attendance(session, schedule.id, first.id)
    remove_attendance(session, owner, schedule.id, team.id, removed.id, TeamType.HOST)

    assert get_attendance(session, schedule.id, first.id) is None
    assert get_attendance(session, schedule.id, owner.id).mvp_to_user_id is None
    assert _received(session, schedule.id, second.id) == 0


def test_roster_updates(session, squad, make_user):
    schedule, team, owner, (first, second, _third) = squad
    row = get_attendance(session, schedule.id, first.id)

    updated = update_attendance(
        session, second, schedule.id, team.id, row.id, TeamType.HOST, AttendanceStatus.NOT_ATTENDING
    )
    assert updated.attendance_status == AttendanceStatus.NOT_ATTENDING

    with pytest.raises(ActionError) as exc_info:
        update_all_attendances(session, first, schedule.id, team.id, TeamType.HOST, AttendanceStatus.ATTENDING)
    assert exc_info.value.status_code == 403
    assert update_all_attendances(session, owner, schedule.id, team.id, TeamType.HOST, AttendanceStatus.ATTENDING) == 4
    assert get_attendance(session, schedule.id, first.id).attendance_status == AttendanceStatus.ATTENDING

    with pytest.raises(ActionError):
        update_all_attendances(
            session, owner, schedule.id, team.id, TeamType.INVITED, AttendanceStatus.ATTENDING
        )


def test_mercenary_count(session, squad):
    schedule, team, owner, (first, *_rest) = squad
    assert update_mercenary_count(session, owner, schedule.id, team.id, TeamType.HOST, 3).host_team_mercenary_count == 3
    with pytest.raises(ActionError):
        update_mercenary_count(session, owner, schedule.id, team.id, TeamType.HOST, -1)
    with pytest.raises(ActionError):
        update_mercenary_count(session, first, schedule.id, team.id, TeamType.HOST, 1)
