"""Attendance voting, roster management and MVP voting for schedules."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session, select

from .auth import current_user
from .database import (
    AttendanceStatus,
    Schedule,
    ScheduleAttendance,
    ScheduleStatus,
    TeamType,
    User,
    clear_mvp_votes,
    get_session,
)
from .errors import ActionError, Forbidden, NotFound, ok
from .lineup import vote_rate
from .schedules import add_roster_attendances, get_attendance, get_live_schedule, team_id_for
from .teams import require_member, require_staff
from .users import user_summary

router = APIRouter(prefix="/api/schedules")
logger = logging.getLogger(__name__)

VOTABLE_STATUSES = (ScheduleStatus.CONFIRMED, ScheduleStatus.READY, ScheduleStatus.PLAY)


class AttendanceVote(BaseModel):
    status: Literal["ATTENDING", "NOT_ATTENDING"]


class AttendanceUpdate(BaseModel):
    team_type: TeamType
    status: AttendanceStatus


class RosterRequest(BaseModel):
    team_type: TeamType


class MercenaryCount(BaseModel):
    team_type: TeamType
    count: int


class MvpVote(BaseModel):
    user_id: int


def vote_attendance(session: Session, user: User, schedule_id: int, status: str) -> ScheduleAttendance:
    schedule = get_live_schedule(session, schedule_id)
    if not schedule.enable_attendance_vote:
        raise ActionError("Attendance voting is not enabled for this schedule.")
    if schedule.attendance_deadline and datetime.utcnow() > schedule.attendance_deadline:
        raise ActionError("The attendance deadline has passed.")
    if schedule.status not in VOTABLE_STATUSES:
        raise ActionError("Attendance can only be voted on for confirmed schedules.")
    if status not in (AttendanceStatus.ATTENDING.value, AttendanceStatus.NOT_ATTENDING.value):
        raise ActionError("Vote ATTENDING or NOT_ATTENDING.")
    attendance = get_attendance(session, schedule.id, user.id)
    if not attendance:
        raise Forbidden("You are not on this schedule's roster.")
    attendance.attendance_status = AttendanceStatus(status)
    attendance.voted_at = datetime.utcnow()
    session.add(attendance)
    session.commit()
    session.refresh(attendance)
    return attendance


def _team_for_type(schedule: Schedule, team_id: int, team_type: TeamType) -> int:
    """Make sure ``team_id`` plays as ``team_type`` on this schedule."""
    expected = team_id_for(schedule, team_type)
    if expected is None or expected != team_id:
        raise ActionError(f"That team is not the {team_type.value.lower()} team of this schedule.")
    return team_id


def _roster_row(session: Session, schedule: Schedule, attendance_id: int, team_type: TeamType) -> ScheduleAttendance:
    attendance = session.get(ScheduleAttendance, attendance_id)
    if not attendance or attendance.schedule_id != schedule.id or attendance.team_type != team_type:
        raise NotFound("Attendance not found.")
    return attendance


def add_team_attendances(session: Session, user: User, schedule_id: int, team_id: int, team_type: TeamType) -> int:
    schedule = get_live_schedule(session, schedule_id)
    _team_for_type(schedule, team_id, team_type)
    require_staff(session, team_id, user)
    added = add_roster_attendances(session, schedule, team_id, team_type)
    session.commit()
    return added


def update_attendance(
    session: Session,
    user: User,
    schedule_id: int,
    team_id: int,
    attendance_id: int,
    team_type: TeamType,
    status: AttendanceStatus,
) -> ScheduleAttendance:
    schedule = get_live_schedule(session, schedule_id)
    _team_for_type(schedule, team_id, team_type)
    require_member(session, team_id, user)
    attendance = _roster_row(session, schedule, attendance_id, team_type)
    attendance.attendance_status = status
    attendance.voted_at = datetime.utcnow()
    session.add(attendance)
    session.commit()
    session.refresh(attendance)
    return attendance


def update_all_attendances(
    session: Session, user: User, schedule_id: int, team_id: int, team_type: TeamType, status: AttendanceStatus
) -> int:
    schedule = get_live_schedule(session, schedule_id)
    _team_for_type(schedule, team_id, team_type)
    require_staff(session, team_id, user)
    rows = session.exec(
        select(ScheduleAttendance).where(
            ScheduleAttendance.schedule_id == schedule.id,
            ScheduleAttendance.team_type == team_type,
        )
    ).all()
    now = datetime.utcnow()
    for attendance in rows:
        attendance.attendance_status = status
        attendance.voted_at = now
        session.add(attendance)
    session.commit()
    return len(rows)


def remove_attendance(
    session: Session, user: User, schedule_id: int, team_id: int, attendance_id: int, team_type: TeamType
) -> None:
    schedule = get_live_schedule(session, schedule_id)
    _team_for_type(schedule, team_id, team_type)
    require_staff(session, team_id, user)
    attendance = _roster_row(session, schedule, attendance_id, team_type)
    clear_mvp_votes(session, attendance)
    session.delete(attendance)
    session.commit()


def update_mercenary_count(
    session: Session, user: User, schedule_id: int, team_id: int, team_type: TeamType, count: int
) -> Schedule:
    schedule = get_live_schedule(session, schedule_id)
    _team_for_type(schedule, team_id, team_type)
    require_staff(session, team_id, user)
    if count < 0:
        raise ActionError("Mercenary count cannot be negative.")
    if team_type == TeamType.HOST:
        schedule.host_team_mercenary_count = count
    else:
        schedule.invited_team_mercenary_count = count
    session.add(schedule)
    session.commit()
    session.refresh(schedule)
    return schedule


def vote_mvp(session: Session, user: User, schedule_id: int, target_user_id: int) -> ScheduleAttendance:
    """Cast or move the caller's MVP vote.

    The previous target loses a vote before the new target gains one, all in
    a single commit, so totals always equal the number of voters.
    """
    schedule = get_live_schedule(session, schedule_id)
    if target_user_id == user.id:
        raise ActionError("You cannot vote for yourself.")
    voter = get_attendance(session, schedule.id, user.id)
    if not voter:
        raise Forbidden("Only players on this schedule can vote for MVP.")
    target = get_attendance(session, schedule.id, target_user_id)
    if not target:
        raise ActionError("That player is not on this schedule.")
    if voter.mvp_to_user_id == target_user_id:
        return target

    if voter.mvp_to_user_id is not None:
        previous = get_attendance(session, schedule.id, voter.mvp_to_user_id)
        if previous and previous.mvp_received > 0:
            previous.mvp_received -= 1
            session.add(previous)

    voter.mvp_to_user_id = target_user_id
    target.mvp_received += 1
    session.add(voter)
    session.add(target)
    session.commit()
    session.refresh(target)
    return target


def schedule_mvp(session: Session, schedule_id: int) -> dict[str, object]:
    schedule = get_live_schedule(session, schedule_id)
    rows = session.exec(
        select(ScheduleAttendance, User)
        .join(User, User.id == ScheduleAttendance.user_id)
        .where(ScheduleAttendance.schedule_id == schedule.id)
        .order_by(ScheduleAttendance.mvp_received.desc(), ScheduleAttendance.id)
    ).all()
    stats: dict[str, dict[str, int]] = {}
    for team_type in (TeamType.HOST, TeamType.INVITED):
        side_rows = [attendance for attendance, _ in rows if attendance.team_type == team_type]
        voted = sum(1 for attendance in side_rows if attendance.mvp_to_user_id is not None)
        stats[team_type.value] = {
            "total": len(side_rows),
            "voted": voted,
            "not_voted": len(side_rows) - voted,
            "vote_rate": vote_rate(voted, len(side_rows)),
        }
    return {
        "attendances": [
            {
                "user": user_summary(attendee),
                "team_type": attendance.team_type,
                "mvp_received": attendance.mvp_received,
                "mvp_to_user_id": attendance.mvp_to_user_id,
            }
            for attendance, attendee in rows
        ],
        "stats": stats,
    }


@router.post("/{schedule_id}/attendance", name="vote_attendance")
async def vote_attendance_route(
    schedule_id: int,
    body: AttendanceVote,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    attendance = vote_attendance(session, user, schedule_id, body.status)
    return ok({"attendance_status": attendance.attendance_status, "voted_at": attendance.voted_at})


@router.post("/{schedule_id}/teams/{team_id}/attendances", name="add_team_attendances")
async def add_team_attendances_route(
    schedule_id: int,
    team_id: int,
    body: RosterRequest,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    added = add_team_attendances(session, user, schedule_id, team_id, body.team_type)
    return ok({"added": added})


@router.put("/{schedule_id}/teams/{team_id}/attendances", name="update_all_attendances")
async def update_all_attendances_route(
    schedule_id: int,
    team_id: int,
    body: AttendanceUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    updated = update_all_attendances(session, user, schedule_id, team_id, body.team_type, body.status)
    return ok({"updated": updated})


@router.put("/{schedule_id}/teams/{team_id}/attendances/{attendance_id}", name="update_attendance")
async def update_attendance_route(
    schedule_id: int,
    team_id: int,
    attendance_id: int,
    body: AttendanceUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    attendance = update_attendance(
        session, user, schedule_id, team_id, attendance_id, body.team_type, body.status
    )
    return ok({"id": attendance.id, "attendance_status": attendance.attendance_status})


@router.delete("/{schedule_id}/teams/{team_id}/attendances/{attendance_id}", name="remove_attendance")
async def remove_attendance_route(
    schedule_id: int,
    team_id: int,
    attendance_id: int,
    team_type: TeamType,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    remove_attendance(session, user, schedule_id, team_id, attendance_id, team_type)
    return ok(None, message="Removed from the roster.")


@router.put("/{schedule_id}/teams/{team_id}/mercenaries", name="update_mercenary_count")
async def update_mercenary_count_route(
    schedule_id: int,
    team_id: int,
    body: MercenaryCount,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    schedule = update_mercenary_count(session, user, schedule_id, team_id, body.team_type, body.count)
    return ok(
        {
            "host_team_mercenary_count": schedule.host_team_mercenary_count,
            "invited_team_mercenary_count": schedule.invited_team_mercenary_count,
        }
    )


@router.get("/{schedule_id}/mvp", name="schedule_mvp")
async def schedule_mvp_route(schedule_id: int, session: Session = Depends(get_session)):
    return ok(schedule_mvp(session, schedule_id))


@router.post("/{schedule_id}/mvp", name="vote_mvp")
async def vote_mvp_route(
    schedule_id: int,
    body: MvpVote,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    target = vote_mvp(session, user, schedule_id, body.user_id)
    return ok({"user_id": target.user_id, "mvp_received": target.mvp_received})
