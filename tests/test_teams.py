from __future__ import annotations

import pytest
from sqlmodel import select

from futsalhub.database import (
    PlayerBackground,
    ScheduleStatus,
    TeamFollow,
    TeamMember,
    TeamMemberRole,
    TeamMemberStatus,
    TeamStatus,
)
from futsalhub.errors import ActionError
from futsalhub.schedules import delete_schedule
from futsalhub.teams import (
    TeamCreate,
    add_manager,
    approve_member,
    cancel_join,
    change_owner,
    create_team,
    delete_team,
    follow_team,
    get_membership,
    join_team,
    leave_team,
    reject_member,
    remove_manager,
    restore_team,
    validate_team_code,
)


def test_create_team_makes_owner_membership(session, make_user):
    owner = make_user(session)
    team = create_team(session, owner, TeamCreate(name="  Han River FC "))
    assert team.name == "Han River FC"
    assert len(team.code) == 6
    membership = get_membership(session, team.id, owner.id)
    assert membership.role == TeamMemberRole.OWNER
    assert membership.status == TeamMemberStatus.APPROVED

    with pytest.raises(ActionError) as exc_info:
        create_team(session, make_user(session), TeamCreate(name="Han River FC"))
    assert exc_info.value.status_code == 409


def test_join_workflow(session, make_user, make_team):
    owner = make_user(session)
    player = make_user(session)
    team = make_team(session, owner, "Mapo United")

    assert join_team(session, player, team.id).status == TeamMemberStatus.PENDING
    with pytest.raises(ActionError) as exc_info:
        join_team(session, player, team.id)
    assert exc_info.value.status_code == 409

    cancel_join(session, player, team.id)
    assert get_membership(session, team.id, player.id) is None

    join_team(session, player, team.id)
    approved = approve_member(session, owner, team.id, player.id)
    assert approved.status == TeamMemberStatus.APPROVED
    assert approved.joined_at is not None
    with pytest.raises(ActionError):
        join_team(session, player, team.id)

    leave_team(session, player, team.id)
    assert get_membership(session, team.id, player.id).status == TeamMemberStatus.LEAVE

    rejoined = join_team(session, player, team.id)
    assert rejoined.status == TeamMemberStatus.PENDING
    assert rejoined.role == TeamMemberRole.MEMBER


def test_rejected_and_banned_players_cannot_join(session, make_user, make_team):
    owner = make_user(session)
    rejected = make_user(session)
    banned = make_user(session)
    team = make_team(session, owner, "Gangnam Strikers", members=[banned])

    join_team(session, rejected, team.id)
    reject_member(session, owner, team.id, rejected.id)
    with pytest.raises(ActionError) as exc_info:
        join_team(session, rejected, team.id)
    assert exc_info.value.status_code == 409

    membership = get_membership(session, team.id, banned.id)
    membership.status = TeamMemberStatus.LEAVE
    membership.banned = True
    session.add(membership)
    session.commit()
    with pytest.raises(ActionError) as exc_info:
        join_team(session, banned, team.id)
    assert exc_info.value.status_code == 403


def test_only_staff_can_approve(session, make_user, make_team):
    owner = make_user(session)
    member = make_user(session)
    applicant = make_user(session)
    team = make_team(session, owner, "Jamsil FC", members=[member])
    join_team(session, applicant, team.id)

    with pytest.raises(ActionError) as exc_info:
        approve_member(session, member, team.id, applicant.id)
    assert exc_info.value.status_code == 403


def test_former_pro_flag_follows_members(session, make_user, make_team):
    owner = make_user(session)
    pro = make_user(session, player_background=PlayerBackground.PROFESSIONAL)
    team = make_team(session, owner, "Incheon Veterans")
    assert not team.has_former_pro

    join_team(session, pro, team.id)
    approve_member(session, owner, team.id, pro.id)
    session.refresh(team)
    assert team.has_former_pro

    leave_team(session, pro, team.id)
    session.refresh(team)
    assert not team.has_former_pro


def test_owner_cannot_leave(session, make_user, make_team):
    owner = make_user(session)
    team = make_team(session, owner, "Suwon Stars")
    with pytest.raises(ActionError):
        leave_team(session, owner, team.id)


def test_managers_are_limited_to_two(session, make_user, make_team):
    owner = make_user(session)
    members = [make_user(session) for _ in range(3)]
    team = make_team(session, owner, "Busan Harbour", members=members)

    assert add_manager(session, owner, team.id, members[0].id).role == TeamMemberRole.MANAGER
    add_manager(session, owner, team.id, members[1].id)
    with pytest.raises(ActionError):
        add_manager(session, owner, team.id, members[2].id)

    with pytest.raises(ActionError) as exc_info:
        remove_manager(session, members[0], team.id, members[1].id)
    assert exc_info.value.status_code == 403

    remove_manager(session, owner, team.id, members[1].id)
    assert add_manager(session, owner, team.id, members[2].id).role == TeamMemberRole.MANAGER


def test_change_owner(session, make_user, make_team):
    owner = make_user(session)
    member = make_user(session)
    team = make_team(session, owner, "Daegu Dynamos", members=[member])

    change_owner(session, owner, team.id, member.id)
    session.refresh(team)
    assert team.owner_id == member.id
    assert get_membership(session, team.id, owner.id).role == TeamMemberRole.MEMBER
    assert get_membership(session, team.id, member.id).role == TeamMemberRole.OWNER

    with pytest.raises(ActionError) as exc_info:
        change_owner(session, owner, team.id, member.id)
    assert exc_info.value.status_code == 403


def test_delete_team_waits_for_upcoming_schedules(session, make_user, make_team, make_schedule):
    owner = make_user(session)
    member = make_user(session)
    fan = make_user(session)
    team = make_team(session, owner, "Ilsan City", members=[member])
    follow_team(session, fan, team.id)
    schedule = make_schedule(session, owner, team)
    assert schedule.status == ScheduleStatus.CONFIRMED

    with pytest.raises(ActionError) as exc_info:
        delete_team(session, owner, team.id)
    assert exc_info.value.status_code == 409

    delete_schedule(session, owner, schedule.id)
    delete_team(session, owner, team.id)
    session.refresh(team)
    assert team.is_deleted
    assert team.status == TeamStatus.DISBANDED
    assert team.deleted_by == owner.id
    statuses = session.exec(select(TeamMember.status).where(TeamMember.team_id == team.id)).all()
    assert set(statuses) == {TeamMemberStatus.LEAVE}
    assert session.exec(select(TeamFollow).where(TeamFollow.team_id == team.id)).first() is None


def test_restore_team(session, make_user, make_team):
    owner = make_user(session)
    stranger = make_user(session)
    team = make_team(session, owner, "Seongnam Wave")
    delete_team(session, owner, team.id)

    with pytest.raises(ActionError) as exc_info:
        restore_team(session, stranger, team.id)
    assert exc_info.value.status_code == 403

    restored = restore_team(session, owner, team.id)
    assert not restored.is_deleted
    assert restored.status == TeamStatus.ACTIVE
    membership = get_membership(session, team.id, owner.id)
    assert membership.status == TeamMemberStatus.APPROVED
    assert membership.role == TeamMemberRole.OWNER


def test_follow_toggles_and_code_lookup(session, make_user, make_team):
    owner = make_user(session)
    fan = make_user(session)
    team = make_team(session, owner, "Ulsan Tide")
    assert follow_team(session, fan, team.id) is True
    assert follow_team(session, fan, team.id) is False

    assert validate_team_code(session, f" {team.code.lower()} ").id == team.id
    with pytest.raises(ActionError) as exc_info:
        validate_team_code(session, "ZZZZZZZ")
    assert exc_info.value.status_code == 404
