"""Schedules: creation, invitations, listings, likes and comments."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session, func, select

from .auth import current_user, current_user_optional
from .database import (
    AttendanceStatus,
    InvitationStatus,
    Match,
    MatchType,
    Period,
    Schedule,
    ScheduleAttendance,
    ScheduleComment,
    ScheduleLike,
    ScheduleStatus,
    Team,
    TeamMatchInvitation,
    TeamMember,
    TeamMemberStatus,
    TeamType,
    User,
    get_session,
    paginate,
)
from .errors import ActionError, Forbidden, NotFound, ok
from .lineup import day_of_week_for, period_for
from .teams import approved_members, get_team, require_staff, team_summary
from .users import user_summary

router = APIRouter(prefix="/api/schedules")
logger = logging.getLogger(__name__)

HIDDEN_FROM_LISTINGS = (ScheduleStatus.DELETED, ScheduleStatus.REJECTED)
DEFAULT_PAGE_SIZE = 10


class ScheduleCreate(BaseModel):
    host_team_id: int
    invited_team_id: int | None = None
    match_type: MatchType
    place: str
    description: str | None = None
    city: str | None = None
    district: str | None = None
    match_date: date
    start_time: time
    end_time: time
    enable_attendance_vote: bool = False
    attendance_deadline: datetime | None = None
    team_share_fee: int | None = None
    message: str | None = None


class ScheduleUpdate(BaseModel):
    place: str | None = None
    description: str | None = None
    city: str | None = None
    district: str | None = None
    match_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    enable_attendance_vote: bool | None = None
    attendance_deadline: datetime | None = None
    team_share_fee: int | None = None


class NoticeUpdate(BaseModel):
    description: str | None = None


class InvitationResponse(BaseModel):
    response: Literal["ACCEPT", "DECLINE"]
    reason: str | None = None


class CommentCreate(BaseModel):
    content: str
    parent_id: int | None = None


def get_schedule(session: Session, schedule_id: int) -> Schedule:
    schedule = session.get(Schedule, schedule_id)
    if not schedule:
        raise NotFound("Schedule not found.")
    return schedule


def get_live_schedule(session: Session, schedule_id: int) -> Schedule:
    schedule = get_schedule(session, schedule_id)
    if schedule.status == ScheduleStatus.DELETED:
        raise NotFound("This schedule has been deleted.")
    return schedule


def get_attendance(session: Session, schedule_id: int, user_id: int) -> ScheduleAttendance | None:
    return session.exec(
        select(ScheduleAttendance).where(
            ScheduleAttendance.schedule_id == schedule_id,
            ScheduleAttendance.user_id == user_id,
        )
    ).first()


def team_id_for(schedule: Schedule, team_type: TeamType) -> int | None:
    return schedule.host_team_id if team_type == TeamType.HOST else schedule.invited_team_id


def add_roster_attendances(session: Session, schedule: Schedule, team_id: int, team_type: TeamType) -> int:
    """Give every approved, non-banned member an UNDECIDED attendance row.

    Players who already have a row on this schedule are skipped.
    """
    existing = set(
        session.exec(
            select(ScheduleAttendance.user_id).where(ScheduleAttendance.schedule_id == schedule.id)
        ).all()
    )
    added = 0
    for member in approved_members(session, team_id, include_banned=False):
        if member.user_id in existing:
            continue
        session.add(
            ScheduleAttendance(
                schedule_id=schedule.id,
                user_id=member.user_id,
                team_type=team_type,
                attendance_status=AttendanceStatus.UNDECIDED,
            )
        )
        existing.add(member.user_id)
        added += 1
    return added


def as_naive_utc(value: datetime | None) -> datetime | None:
    """Store deadlines as naive UTC, matching the rest of the timestamps."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _apply_timing(schedule: Schedule) -> None:
    schedule.year = schedule.match_date.year
    schedule.day_of_week = day_of_week_for(schedule.match_date)
    schedule.start_period = period_for(schedule.start_time)


def create_schedule(session: Session, user: User, data: ScheduleCreate) -> Schedule:
    host = get_team(session, data.host_team_id)
    require_staff(session, host.id, user)
    place = data.place.strip()
    if not place:
        raise ActionError("A place is required.")
    if data.team_share_fee is not None and data.team_share_fee < 0:
        raise ActionError("The team share fee cannot be negative.")

    schedule = Schedule(
        created_by_id=user.id,
        host_team_id=host.id,
        place=place,
        description=(data.description or "").strip() or None,
        city=data.city,
        district=data.district,
        match_date=data.match_date,
        year=data.match_date.year,
        day_of_week=day_of_week_for(data.match_date),
        start_time=data.start_time,
        end_time=data.end_time,
        start_period=period_for(data.start_time),
        match_type=data.match_type,
        enable_attendance_vote=data.enable_attendance_vote,
        attendance_deadline=as_naive_utc(data.attendance_deadline),
        team_share_fee=data.team_share_fee,
    )

    if data.match_type == MatchType.TEAM:
        if data.invited_team_id is None:
            raise ActionError("Choose the team you want to invite.")
        if data.invited_team_id == host.id:
            raise ActionError("A team cannot invite itself.")
        invited = get_team(session, data.invited_team_id)
        schedule.invited_team_id = invited.id
        schedule.status = ScheduleStatus.PENDING
        session.add(schedule)
        session.flush()
        session.add(
            TeamMatchInvitation(
                schedule_id=schedule.id,
                invited_team_id=invited.id,
                message=data.message,
            )
        )
    else:
        schedule.status = ScheduleStatus.CONFIRMED
        session.add(schedule)
        session.flush()
        add_roster_attendances(session, schedule, host.id, TeamType.HOST)

    session.commit()
    session.refresh(schedule)
    logger.info("Schedule %s created by user %s as %s", schedule.id, user.id, schedule.status.value)
    return schedule


def respond_invitation(
    session: Session, user: User, schedule_id: int, response: str, reason: str | None = None
) -> Schedule:
    schedule = get_schedule(session, schedule_id)
    if schedule.status == ScheduleStatus.DELETED:
        raise ActionError("This schedule has been deleted.")
    invitation = session.exec(
        select(TeamMatchInvitation).where(TeamMatchInvitation.schedule_id == schedule.id)
    ).first()
    if not invitation:
        raise NotFound("This schedule has no invitation.")
    require_staff(session, invitation.invited_team_id, user)
    if invitation.status != InvitationStatus.PENDING:
        raise ActionError("This invitation has already been answered.")

    if response == "ACCEPT":
        invitation.status = InvitationStatus.ACCEPTED
        schedule.status = ScheduleStatus.CONFIRMED
        add_roster_attendances(session, schedule, schedule.host_team_id, TeamType.HOST)
        add_roster_attendances(session, schedule, invitation.invited_team_id, TeamType.INVITED)
    elif response == "DECLINE":
        invitation.status = InvitationStatus.DECLINED
        invitation.reason = (reason or "").strip() or None
        schedule.status = ScheduleStatus.REJECTED
    else:
        raise ActionError("Respond with ACCEPT or DECLINE.")

    session.add(invitation)
    session.add(schedule)
    session.commit()
    session.refresh(schedule)
    logger.info("Team %s answered schedule %s invitation: %s", invitation.invited_team_id, schedule.id, response)
    return schedule


def _require_creator(schedule: Schedule, user: User) -> None:
    if schedule.created_by_id != user.id:
        raise Forbidden("Only the organiser can change this schedule.")
    if schedule.status == ScheduleStatus.DELETED:
        raise ActionError("This schedule has been deleted.")


def update_schedule(session: Session, user: User, schedule_id: int, data: ScheduleUpdate) -> Schedule:
    schedule = get_schedule(session, schedule_id)
    _require_creator(schedule, user)
    fields = data.model_dump(exclude_unset=True)
    if "place" in fields:
        place = (fields["place"] or "").strip()
        if not place:
            raise ActionError("A place is required.")
        fields["place"] = place
    if "attendance_deadline" in fields:
        fields["attendance_deadline"] = as_naive_utc(fields["attendance_deadline"])
    if fields.get("team_share_fee") is not None and fields["team_share_fee"] < 0:
        raise ActionError("The team share fee cannot be negative.")
    for key, value in fields.items():
        if value is None and key in {"match_date", "start_time", "end_time", "enable_attendance_vote"}:
            continue
        setattr(schedule, key, value)
    _apply_timing(schedule)
    session.add(schedule)
    session.commit()
    session.refresh(schedule)
    return schedule


def update_notice(session: Session, user: User, schedule_id: int, notice: str | None) -> Schedule:
    schedule = get_schedule(session, schedule_id)
    _require_creator(schedule, user)
    schedule.description = (notice or "").strip() or None
    session.add(schedule)
    session.commit()
    session.refresh(schedule)
    return schedule


def delete_schedule(session: Session, user: User, schedule_id: int) -> None:
    schedule = get_schedule(session, schedule_id)
    _require_creator(schedule, user)
    schedule.status = ScheduleStatus.DELETED
    session.add(schedule)
    session.commit()
    logger.info("Schedule %s deleted by user %s", schedule.id, user.id)


def like_schedule(session: Session, user: User, schedule_id: int) -> bool:
    schedule = get_live_schedule(session, schedule_id)
    existing = session.exec(
        select(ScheduleLike).where(ScheduleLike.schedule_id == schedule.id, ScheduleLike.user_id == user.id)
    ).first()
    if existing:
        session.delete(existing)
        session.commit()
        return False
    session.add(ScheduleLike(schedule_id=schedule.id, user_id=user.id))
    session.commit()
    return True


def _like_count(session: Session, schedule_id: int) -> int:
    return int(
        session.exec(
            select(func.count()).select_from(ScheduleLike).where(ScheduleLike.schedule_id == schedule_id)
        ).one()
    )


def schedule_summary(session: Session, schedule: Schedule) -> dict[str, object]:
    return {
        "id": schedule.id,
        "place": schedule.place,
        "city": schedule.city,
        "district": schedule.district,
        "match_date": schedule.match_date,
        "day_of_week": schedule.day_of_week,
        "start_time": schedule.start_time,
        "end_time": schedule.end_time,
        "start_period": schedule.start_period,
        "match_type": schedule.match_type,
        "status": schedule.status,
        "host_team": team_summary(session.get(Team, schedule.host_team_id)),
        "invited_team": team_summary(session.get(Team, schedule.invited_team_id))
        if schedule.invited_team_id
        else None,
        "likes": _like_count(session, schedule.id),
    }


def list_schedules(
    session: Session,
    *,
    city: str | None = None,
    district: str | None = None,
    periods: list[Period] | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[Schedule], dict[str, object]]:
    statement = select(Schedule).where(Schedule.status.not_in(HIDDEN_FROM_LISTINGS))
    if city:
        statement = statement.where(Schedule.city == city)
    if district:
        statement = statement.where(Schedule.district == district)
    if periods:
        statement = statement.where(Schedule.start_period.in_(periods))
    if date_from:
        statement = statement.where(Schedule.match_date >= date_from)
    if date_to:
        statement = statement.where(Schedule.match_date <= date_to)
    statement = statement.order_by(Schedule.match_date, Schedule.start_time, Schedule.id)
    return paginate(session, statement, page, limit)


def my_schedules(
    session: Session, user: User, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
) -> tuple[list[Schedule], dict[str, object]]:
    team_ids = select(TeamMember.team_id).where(
        TeamMember.user_id == user.id,
        TeamMember.status == TeamMemberStatus.APPROVED,
    )
    statement = (
        select(Schedule)
        .where(
            (Schedule.host_team_id.in_(team_ids)) | (Schedule.invited_team_id.in_(team_ids)),
            Schedule.status != ScheduleStatus.DELETED,
        )
        .order_by(Schedule.match_date.desc(), Schedule.start_time.desc(), Schedule.id.desc())
    )
    return paginate(session, statement, page, limit)


def liked_schedules(session: Session, user: User) -> list[Schedule]:
    return list(
        session.exec(
            select(Schedule)
            .join(ScheduleLike, ScheduleLike.schedule_id == Schedule.id)
            .where(ScheduleLike.user_id == user.id, Schedule.status.not_in(HIDDEN_FROM_LISTINGS))
            .order_by(Schedule.match_date.desc())
        ).all()
    )


def schedule_detail(session: Session, schedule: Schedule, viewer: User | None) -> dict[str, object]:
    attendances = session.exec(
        select(ScheduleAttendance, User)
        .join(User, User.id == ScheduleAttendance.user_id)
        .where(ScheduleAttendance.schedule_id == schedule.id)
        .order_by(ScheduleAttendance.id)
    ).all()
    matches = session.exec(select(Match).where(Match.schedule_id == schedule.id).order_by(Match.id)).all()
    invitation = session.exec(
        select(TeamMatchInvitation).where(TeamMatchInvitation.schedule_id == schedule.id)
    ).first()
    payload = schedule_summary(session, schedule)
    payload.update(
        {
            "description": schedule.description,
            "created_by": user_summary(session.get(User, schedule.created_by_id)),
            "enable_attendance_vote": schedule.enable_attendance_vote,
            "attendance_deadline": schedule.attendance_deadline,
            "team_share_fee": schedule.team_share_fee,
            "host_team_mercenary_count": schedule.host_team_mercenary_count,
            "invited_team_mercenary_count": schedule.invited_team_mercenary_count,
            "invitation": {
                "status": invitation.status,
                "message": invitation.message,
                "reason": invitation.reason,
            }
            if invitation
            else None,
            "attendances": [
                {
                    "id": attendance.id,
                    "user": user_summary(attendee),
                    "team_type": attendance.team_type,
                    "attendance_status": attendance.attendance_status,
                }
                for attendance, attendee in attendances
            ],
            "matches": [
                {
                    "id": match.id,
                    "home_score": match.home_score,
                    "away_score": match.away_score,
                    "is_lined_up": match.is_lined_up,
                }
                for match in matches
            ],
        }
    )
    if viewer:
        mine = get_attendance(session, schedule.id, viewer.id)
        payload["my_attendance"] = mine.attendance_status if mine else None
        payload["liked"] = (
            session.exec(
                select(ScheduleLike).where(
                    ScheduleLike.schedule_id == schedule.id, ScheduleLike.user_id == viewer.id
                )
            ).first()
            is not None
        )
        payload["is_creator"] = schedule.created_by_id == viewer.id
    return payload


def create_schedule_comment(
    session: Session, user: User, schedule_id: int, content: str, parent_id: int | None = None
) -> ScheduleComment:
    schedule = get_live_schedule(session, schedule_id)
    content = content.strip()
    if not content:
        raise ActionError("Comment content is required.")
    if parent_id is not None:
        parent = session.get(ScheduleComment, parent_id)
        if not parent or parent.schedule_id != schedule.id or parent.is_deleted:
            raise NotFound("The comment you are replying to no longer exists.")
        if parent.parent_id is not None:
            raise ActionError("Replies can only be one level deep.")
    comment = ScheduleComment(schedule_id=schedule.id, author_id=user.id, parent_id=parent_id, content=content)
    session.add(comment)
    session.commit()
    session.refresh(comment)
    return comment


def delete_schedule_comment(session: Session, user: User, schedule_id: int, comment_id: int) -> bool:
    """Delete a comment; return True when it was only soft-deleted to keep its replies."""
    comment = session.get(ScheduleComment, comment_id)
    if not comment or comment.schedule_id != schedule_id or comment.is_deleted:
        raise NotFound("Comment not found.")
    if comment.author_id != user.id:
        raise Forbidden("You can only delete your own comments.")
    live_replies = session.exec(
        select(func.count())
        .select_from(ScheduleComment)
        .where(ScheduleComment.parent_id == comment.id, ScheduleComment.is_deleted == False)  # noqa: E712
    ).one()
    if live_replies:
        comment.is_deleted = True
        comment.deleted_at = datetime.utcnow()
        session.add(comment)
        session.commit()
        return True
    for reply in session.exec(select(ScheduleComment).where(ScheduleComment.parent_id == comment.id)).all():
        session.delete(reply)
    session.delete(comment)
    session.commit()
    return False


def schedule_comments(session: Session, schedule_id: int) -> list[dict[str, object]]:
    rows = session.exec(
        select(ScheduleComment, User)
        .join(User, User.id == ScheduleComment.author_id)
        .where(ScheduleComment.schedule_id == schedule_id)
        .order_by(ScheduleComment.created_at, ScheduleComment.id)
    ).all()
    threads: list[dict[str, object]] = []
    by_id: dict[int, dict[str, object]] = {}
    for comment, author in rows:
        item = {
            "id": comment.id,
            "content": "This comment has been deleted." if comment.is_deleted else comment.content,
            "is_deleted": comment.is_deleted,
            "author": None if comment.is_deleted else user_summary(author),
            "created_at": comment.created_at,
            "replies": [],
        }
        if comment.parent_id is None:
            threads.append(item)
            by_id[comment.id] = item
        elif comment.parent_id in by_id and not comment.is_deleted:
            by_id[comment.parent_id]["replies"].append(item)
    return [thread for thread in threads if not thread["is_deleted"] or thread["replies"]]


@router.get("", name="list_schedules")
async def list_schedules_route(
    city: str | None = None,
    district: str | None = None,
    period: list[Period] | None = Query(default=None),
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=50),
    session: Session = Depends(get_session),
):
    schedules, pagination = list_schedules(
        session,
        city=city,
        district=district,
        periods=period,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return ok({"schedules": [schedule_summary(session, item) for item in schedules], "pagination": pagination})


@router.get("/my", name="my_schedules")
async def my_schedules_route(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=50),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    schedules, pagination = my_schedules(session, user, page=page, limit=limit)
    return ok({"schedules": [schedule_summary(session, item) for item in schedules], "pagination": pagination})


@router.get("/liked", name="liked_schedules")
async def liked_schedules_route(user: User = Depends(current_user), session: Session = Depends(get_session)):
    return ok([schedule_summary(session, item) for item in liked_schedules(session, user)])


@router.post("", name="create_schedule")
async def create_schedule_route(
    body: ScheduleCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    schedule = create_schedule(session, user, body)
    return ok(schedule_summary(session, schedule), status_code=201)


@router.get("/{schedule_id}", name="schedule_detail")
async def schedule_detail_route(
    schedule_id: int,
    viewer: User | None = Depends(current_user_optional),
    session: Session = Depends(get_session),
):
    schedule = get_live_schedule(session, schedule_id)
    return ok(schedule_detail(session, schedule, viewer))


@router.put("/{schedule_id}", name="update_schedule")
async def update_schedule_route(
    schedule_id: int,
    body: ScheduleUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    schedule = update_schedule(session, user, schedule_id, body)
    return ok(schedule_summary(session, schedule), message="Schedule updated.")


@router.put("/{schedule_id}/notice", name="update_notice")
async def update_notice_route(
    schedule_id: int,
    body: NoticeUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    schedule = update_notice(session, user, schedule_id, body.description)
    return ok({"description": schedule.description})


@router.delete("/{schedule_id}", name="delete_schedule")
async def delete_schedule_route(
    schedule_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    delete_schedule(session, user, schedule_id)
    return ok(None, message="Schedule deleted.")


@router.post("/{schedule_id}/invitation", name="respond_invitation")
async def respond_invitation_route(
    schedule_id: int,
    body: InvitationResponse,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    schedule = respond_invitation(session, user, schedule_id, body.response, body.reason)
    return ok({"status": schedule.status})


@router.post("/{schedule_id}/like", name="like_schedule")
async def like_schedule_route(
    schedule_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    liked = like_schedule(session, user, schedule_id)
    return ok({"liked": liked, "likes": _like_count(session, schedule_id)})


@router.get("/{schedule_id}/comments", name="schedule_comments")
async def schedule_comments_route(schedule_id: int, session: Session = Depends(get_session)):
    schedule = get_live_schedule(session, schedule_id)
    return ok(schedule_comments(session, schedule.id))


@router.post("/{schedule_id}/comments", name="create_schedule_comment")
async def create_schedule_comment_route(
    schedule_id: int,
    body: CommentCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    comment = create_schedule_comment(session, user, schedule_id, body.content, body.parent_id)
    return ok({"id": comment.id, "content": comment.content, "parent_id": comment.parent_id}, status_code=201)


@router.delete("/{schedule_id}/comments/{comment_id}", name="delete_schedule_comment")
async def delete_schedule_comment_route(
    schedule_id: int,
    comment_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    soft = delete_schedule_comment(session, user, schedule_id, comment_id)
    return ok({"soft_deleted": soft}, message="Comment deleted.")
