"""Onboarding, profile editing, follows and withdrawal for players."""

from __future__ import annotations

import logging
import re
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session, func, select

from .auth import SESSION_COOKIE_NAME, current_user
from .database import (
    Account,
    AttendanceStatus,
    GoalRecord,
    OnboardingStep,
    PlayerBackground,
    Schedule,
    ScheduleAttendance,
    Team,
    TeamFollow,
    TeamMember,
    TeamMemberRole,
    TeamMemberStatus,
    User,
    UserFollow,
    clear_mvp_votes,
    get_session,
    kst_today,
)
from .errors import ActionError, Conflict, NotFound, ok

router = APIRouter()
logger = logging.getLogger(__name__)

NICKNAME_MIN_LENGTH = 2
NICKNAME_MAX_LENGTH = 10
WITHDRAWN_NAME = "Withdrawn user"
BIRTH_DATE_PATTERN = re.compile(r"^\d{8}$")


class OnboardingStepUpdate(BaseModel):
    step: str


class ProfileUpdate(BaseModel):
    name: str | None = None
    nickname: str | None = None
    image: str | None = None
    phone: str | None = None
    birth_date: str | None = None
    gender: str | None = None
    position: str | None = None
    skill_level: str | None = None
    player_background: PlayerBackground | None = None
    height: int | None = None


class WithdrawRequest(BaseModel):
    reason: str | None = None


class AvailabilityCheck(BaseModel):
    value: str


def user_summary(user: User | None) -> dict[str, object] | None:
    if user is None:
        return None
    return {"id": user.id, "nickname": user.nickname, "name": user.name, "image": user.image}


def validate_nickname(nickname: str) -> str:
    cleaned = nickname.strip()
    if not NICKNAME_MIN_LENGTH <= len(cleaned) <= NICKNAME_MAX_LENGTH:
        raise ActionError(
            f"Nicknames must be {NICKNAME_MIN_LENGTH} to {NICKNAME_MAX_LENGTH} characters long."
        )
    return cleaned


def validate_birth_date(value: str) -> str:
    """Accept ``YYYYMMDD`` strings that name a real date between 1900 and this year."""
    if not BIRTH_DATE_PATTERN.match(value):
        raise ActionError("Birth date must use the YYYYMMDD format.")
    try:
        parsed = datetime.strptime(value, "%Y%m%d")
    except ValueError as exc:
        raise ActionError("Birth date is not a valid calendar date.") from exc
    if not 1900 <= parsed.year <= kst_today().year:
        raise ActionError("Birth year must be between 1900 and this year.")
    return value


def nickname_available(session: Session, nickname: str, *, exclude_user_id: int | None = None) -> bool:
    query = select(User).where(User.nickname == nickname.strip())
    if exclude_user_id is not None:
        query = query.where(User.id != exclude_user_id)
    return session.exec(query).first() is None


def email_available(session: Session, email: str, *, exclude_user_id: int | None = None) -> bool:
    query = select(User).where(User.email == email.strip())
    if exclude_user_id is not None:
        query = query.where(User.id != exclude_user_id)
    return session.exec(query).first() is None


def phone_available(session: Session, phone: str, *, exclude_user_id: int | None = None) -> bool:
    query = select(User).where(User.phone == phone.strip(), User.is_deleted == False)  # noqa: E712
    if exclude_user_id is not None:
        query = query.where(User.id != exclude_user_id)
    return session.exec(query).first() is None


def update_onboarding_step(session: Session, user: User, step: str) -> User:
    try:
        next_step = OnboardingStep(step)
    except ValueError as exc:
        raise ActionError(f"Unknown onboarding step: {step}") from exc
    user.onboarding_step = next_step
    if next_step == OnboardingStep.COMPLETE and user.onboarding_completed_at is None:
        user.onboarding_completed_at = datetime.utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def update_profile(session: Session, user: User, update: ProfileUpdate) -> User:
    fields = update.model_dump(exclude_unset=True)
    if "nickname" in fields and fields["nickname"] is not None:
        nickname = validate_nickname(fields["nickname"])
        if not nickname_available(session, nickname, exclude_user_id=user.id):
            raise Conflict("That nickname is already taken.")
        fields["nickname"] = nickname
    if fields.get("birth_date"):
        fields["birth_date"] = validate_birth_date(fields["birth_date"])
    if fields.get("height") is not None and fields["height"] <= 0:
        raise ActionError("Height must be a positive number.")
    for key, value in fields.items():
        setattr(user, key, value)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def withdraw_user(session: Session, user: User, reason: str | None = None) -> None:
    """Anonymise the user and detach them from teams, follows and upcoming schedules."""
    owned = session.exec(
        select(Team).where(Team.owner_id == user.id, Team.is_deleted == False)  # noqa: E712
    ).first()
    if owned:
        raise ActionError(f"Hand over ownership of {owned.name} before withdrawing.", status_code=409)

    for account in session.exec(select(Account).where(Account.user_id == user.id)).all():
        session.delete(account)

    memberships = session.exec(select(TeamMember).where(TeamMember.user_id == user.id)).all()
    for membership in memberships:
        if membership.status == TeamMemberStatus.PENDING:
            session.delete(membership)
        elif membership.status == TeamMemberStatus.APPROVED:
            membership.status = TeamMemberStatus.LEAVE
            membership.role = TeamMemberRole.MEMBER
            membership.updated_at = datetime.utcnow()
            session.add(membership)

    follows = session.exec(
        select(UserFollow).where((UserFollow.follower_id == user.id) | (UserFollow.following_id == user.id))
    ).all()
    for follow in follows:
        session.delete(follow)
    for follow in session.exec(select(TeamFollow).where(TeamFollow.user_id == user.id)).all():
        session.delete(follow)

    upcoming = session.exec(
        select(ScheduleAttendance)
        .join(Schedule, Schedule.id == ScheduleAttendance.schedule_id)
        .where(ScheduleAttendance.user_id == user.id, Schedule.match_date >= kst_today())
    ).all()
    for attendance in upcoming:
        clear_mvp_votes(session, attendance)
        session.delete(attendance)

    user.email = None
    user.name = WITHDRAWN_NAME
    user.nickname = None
    user.image = None
    user.phone = None
    user.birth_date = None
    user.is_deleted = True
    user.deleted_at = datetime.utcnow()
    user.delete_reason = (reason or "").strip() or None
    session.add(user)
    session.commit()
    logger.info("User %s withdrew (%s upcoming attendances removed)", user.id, len(upcoming))


def follow_user(session: Session, follower: User, target_id: int) -> bool:
    """Toggle a follow and return True when the follower now follows the target."""
    if follower.id == target_id:
        raise ActionError("You cannot follow yourself.")
    target = session.get(User, target_id)
    if not target or target.is_deleted:
        raise NotFound("User not found.")
    existing = session.exec(
        select(UserFollow).where(UserFollow.follower_id == follower.id, UserFollow.following_id == target_id)
    ).first()
    if existing:
        session.delete(existing)
        session.commit()
        return False
    session.add(UserFollow(follower_id=follower.id, following_id=target_id))
    session.commit()
    return True


def player_stats(session: Session, user_id: int) -> dict[str, int]:
    goals = session.exec(
        select(func.count())
        .select_from(GoalRecord)
        .where(
            GoalRecord.scorer_id == user_id,
            GoalRecord.is_own_goal == False,  # noqa: E712
            GoalRecord.is_scored_by_mercenary == False,  # noqa: E712
        )
    ).one()
    assists = session.exec(
        select(func.count())
        .select_from(GoalRecord)
        .where(
            GoalRecord.assist_id == user_id,
            GoalRecord.is_assisted_by_mercenary == False,  # noqa: E712
        )
    ).one()
    mvp = session.exec(
        select(func.coalesce(func.sum(ScheduleAttendance.mvp_received), 0)).where(
            ScheduleAttendance.user_id == user_id
        )
    ).one()
    attended = session.exec(
        select(func.count())
        .select_from(ScheduleAttendance)
        .where(
            ScheduleAttendance.user_id == user_id,
            ScheduleAttendance.attendance_status == AttendanceStatus.ATTENDING,
        )
    ).one()
    return {"goals": int(goals), "assists": int(assists), "mvp": int(mvp), "attended": int(attended)}


def _profile_payload(session: Session, user: User) -> dict[str, object]:
    followers = session.exec(
        select(func.count()).select_from(UserFollow).where(UserFollow.following_id == user.id)
    ).one()
    following = session.exec(
        select(func.count()).select_from(UserFollow).where(UserFollow.follower_id == user.id)
    ).one()
    teams = session.exec(
        select(Team)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .where(
            TeamMember.user_id == user.id,
            TeamMember.status == TeamMemberStatus.APPROVED,
            Team.is_deleted == False,  # noqa: E712
        )
    ).all()
    return {
        **user_summary(user),
        "position": user.position,
        "skill_level": user.skill_level,
        "player_background": user.player_background,
        "height": user.height,
        "teams": [{"id": team.id, "name": team.name, "logo_url": team.logo_url} for team in teams],
        "followers": int(followers),
        "following": int(following),
        "stats": player_stats(session, user.id),
    }


@router.get("/api/users/me", name="my_profile")
async def my_profile(user: User = Depends(current_user), session: Session = Depends(get_session)):
    payload = _profile_payload(session, user)
    payload.update(
        {
            "email": user.email,
            "phone": user.phone,
            "birth_date": user.birth_date,
            "gender": user.gender,
            "onboarding_step": user.onboarding_step,
        }
    )
    return ok(payload)


@router.put("/api/users/me/onboarding", name="update_onboarding")
async def update_onboarding(
    body: OnboardingStepUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    user = update_onboarding_step(session, user, body.step)
    return ok({"onboarding_step": user.onboarding_step})


@router.put("/api/users/me/profile", name="update_profile")
async def update_profile_route(
    body: ProfileUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    user = update_profile(session, user, body)
    return ok(user_summary(user), message="Profile updated.")


@router.post("/api/users/me/withdraw", name="withdraw")
async def withdraw(
    body: WithdrawRequest,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    withdraw_user(session, user, body.reason)
    response = ok(None, message="Your account has been deleted.")
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


@router.get("/api/users/{user_id}", name="user_profile")
async def user_profile(user_id: int, session: Session = Depends(get_session)):
    user = session.get(User, user_id)
    if not user or user.is_deleted:
        raise NotFound("User not found.")
    return ok(_profile_payload(session, user))


@router.post("/api/users/{user_id}/follow", name="follow_user")
async def follow_user_route(
    user_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    following = follow_user(session, user, user_id)
    return ok({"following": following})


@router.post("/api/check/{field}", name="check_availability")
async def check_availability(field: str, body: AvailabilityCheck, session: Session = Depends(get_session)):
    value = body.value.strip()
    if not value:
        raise ActionError("A value is required.")
    if field == "nickname":
        validate_nickname(value)
        available = nickname_available(session, value)
    elif field == "email":
        available = email_available(session, value)
    elif field == "phone":
        available = phone_available(session, value)
    else:
        raise NotFound(f"Unknown field: {field}")
    return ok({"available": available})
