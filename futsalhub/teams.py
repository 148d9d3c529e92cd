"""Team creation, membership workflow and staff management."""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from sqlmodel import Session, func, select

from .auth import current_user, current_user_optional
from .database import (
    PlayerBackground,
    RecruitmentStatus,
    Schedule,
    ScheduleStatus,
    Team,
    TeamFollow,
    TeamGender,
    TeamLevel,
    TeamMember,
    TeamMemberRole,
    TeamMemberStatus,
    TeamStatus,
    User,
    get_session,
    kst_today,
)
from .errors import ActionError, Conflict, Forbidden, NotFound, ok
from .storage import prepare_image, public_url, store_image
from .users import user_summary

router = APIRouter(prefix="/api/teams")
logger = logging.getLogger(__name__)

TEAM_CODE_LENGTH = 6
TEAM_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_MANAGERS = 2
STAFF_ROLES = (TeamMemberRole.OWNER, TeamMemberRole.MANAGER)
ACTIVE_SCHEDULE_STATUSES = (
    ScheduleStatus.PENDING,
    ScheduleStatus.CONFIRMED,
    ScheduleStatus.READY,
    ScheduleStatus.PLAY,
)


class TeamCreate(BaseModel):
    name: str
    description: str | None = None
    city: str | None = None
    district: str | None = None
    gender: TeamGender = TeamGender.MIXED
    level: TeamLevel = TeamLevel.MID
    recruitment_status: RecruitmentStatus = RecruitmentStatus.RECRUITING


class TeamUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    city: str | None = None
    district: str | None = None
    gender: TeamGender | None = None
    level: TeamLevel | None = None
    recruitment_status: RecruitmentStatus | None = None


class MemberDecision(BaseModel):
    reason: str | None = None


class CodeCheck(BaseModel):
    code: str


def team_summary(team: Team | None) -> dict[str, object] | None:
    if team is None:
        return None
    return {
        "id": team.id,
        "name": team.name,
        "logo_url": public_url(team.logo_url) if team.logo_url else None,
        "city": team.city,
        "district": team.district,
    }


def get_team(session: Session, team_id: int) -> Team:
    team = session.get(Team, team_id)
    if not team or team.is_deleted:
        raise NotFound("Team not found.")
    return team


def get_membership(session: Session, team_id: int, user_id: int) -> TeamMember | None:
    return session.exec(
        select(TeamMember).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
    ).first()


def is_approved_member(session: Session, team_id: int | None, user_id: int) -> bool:
    if team_id is None:
        return False
    membership = get_membership(session, team_id, user_id)
    return bool(membership and membership.status == TeamMemberStatus.APPROVED)


def require_member(session: Session, team_id: int, user: User) -> TeamMember:
    membership = get_membership(session, team_id, user.id)
    if not membership or membership.status != TeamMemberStatus.APPROVED:
        raise Forbidden("Only team members can do that.")
    return membership


def require_staff(session: Session, team_id: int, user: User) -> TeamMember:
    membership = require_member(session, team_id, user)
    if membership.role not in STAFF_ROLES:
        raise Forbidden("Only the team owner or a manager can do that.")
    return membership


def require_owner(session: Session, team_id: int, user: User) -> TeamMember:
    membership = require_member(session, team_id, user)
    if membership.role != TeamMemberRole.OWNER:
        raise Forbidden("Only the team owner can do that.")
    return membership


def approved_members(session: Session, team_id: int, *, include_banned: bool = True) -> list[TeamMember]:
    query = select(TeamMember).where(
        TeamMember.team_id == team_id,
        TeamMember.status == TeamMemberStatus.APPROVED,
    )
    if not include_banned:
        query = query.where(TeamMember.banned == False)  # noqa: E712
    return list(session.exec(query.order_by(TeamMember.id)).all())


def generate_team_code(session: Session) -> str:
    while True:
        code = "".join(secrets.choice(TEAM_CODE_ALPHABET) for _ in range(TEAM_CODE_LENGTH))
        if not session.exec(select(Team).where(Team.code == code)).first():
            return code


def recompute_former_pro(session: Session, team: Team) -> None:
    """Refresh has_former_pro from the team's approved members."""
    session.flush()
    professional = session.exec(
        select(TeamMember)
        .join(User, User.id == TeamMember.user_id)
        .where(
            TeamMember.team_id == team.id,
            TeamMember.status == TeamMemberStatus.APPROVED,
            User.player_background == PlayerBackground.PROFESSIONAL,
        )
    ).first()
    team.has_former_pro = professional is not None
    session.add(team)


def _clean_name(name: str) -> str:
    cleaned = name.strip()
    if len(cleaned) < 2:
        raise ActionError("Team names must be at least two characters long.")
    return cleaned


def create_team(session: Session, user: User, data: TeamCreate) -> Team:
    name = _clean_name(data.name)
    if session.exec(select(Team).where(Team.name == name)).first():
        raise Conflict("That team name already exists.")
    team = Team(
        name=name,
        code=generate_team_code(session),
        description=data.description,
        city=data.city,
        district=data.district,
        gender=data.gender,
        level=data.level,
        recruitment_status=data.recruitment_status,
        owner_id=user.id,
        has_former_pro=user.player_background == PlayerBackground.PROFESSIONAL,
    )
    session.add(team)
    session.flush()
    session.add(
        TeamMember(
            team_id=team.id,
            user_id=user.id,
            role=TeamMemberRole.OWNER,
            status=TeamMemberStatus.APPROVED,
            joined_at=datetime.utcnow(),
        )
    )
    session.commit()
    session.refresh(team)
    logger.info("User %s created team %s (%s)", user.id, team.id, team.name)
    return team


def update_team(session: Session, user: User, team_id: int, data: TeamUpdate) -> Team:
    team = get_team(session, team_id)
    require_staff(session, team.id, user)
    fields = data.model_dump(exclude_unset=True)
    if fields.get("name") is not None:
        name = _clean_name(fields["name"])
        clash = session.exec(select(Team).where(Team.name == name, Team.id != team.id)).first()
        if clash:
            raise Conflict("That team name already exists.")
        fields["name"] = name
    for key, value in fields.items():
        if value is not None:
            setattr(team, key, value)
    session.add(team)
    session.commit()
    session.refresh(team)
    return team


def join_team(session: Session, user: User, team_id: int) -> TeamMember:
    team = get_team(session, team_id)
    if team.status != TeamStatus.ACTIVE:
        raise ActionError("This team is no longer active.")
    membership = get_membership(session, team.id, user.id)
    if membership:
        if membership.status != TeamMemberStatus.LEAVE:
            messages = {
                TeamMemberStatus.PENDING: "Your application is already waiting for approval.",
                TeamMemberStatus.APPROVED: "You are already a member of this team.",
                TeamMemberStatus.REJECTED: "Your application to this team was rejected.",
            }
            raise Conflict(messages[membership.status])
        if membership.banned:
            raise Forbidden("You cannot rejoin this team.")
        membership.status = TeamMemberStatus.PENDING
        membership.role = TeamMemberRole.MEMBER
        membership.updated_at = datetime.utcnow()
    else:
        membership = TeamMember(team_id=team.id, user_id=user.id)
    session.add(membership)
    session.commit()
    session.refresh(membership)
    return membership


def cancel_join(session: Session, user: User, team_id: int) -> None:
    membership = get_membership(session, team_id, user.id)
    if not membership or membership.status != TeamMemberStatus.PENDING:
        raise ActionError("There is no pending application to cancel.")
    session.delete(membership)
    session.commit()


def leave_team(session: Session, user: User, team_id: int) -> None:
    team = get_team(session, team_id)
    membership = require_member(session, team.id, user)
    if membership.role == TeamMemberRole.OWNER:
        raise ActionError("Owners must hand over the team before leaving.")
    membership.status = TeamMemberStatus.LEAVE
    membership.role = TeamMemberRole.MEMBER
    membership.updated_at = datetime.utcnow()
    session.add(membership)
    recompute_former_pro(session, team)
    session.commit()


def _pending_applicant(session: Session, team_id: int, user_id: int) -> TeamMember:
    membership = get_membership(session, team_id, user_id)
    if not membership or membership.status != TeamMemberStatus.PENDING:
        raise ActionError("That player has no pending application.")
    return membership


def approve_member(session: Session, user: User, team_id: int, applicant_id: int) -> TeamMember:
    team = get_team(session, team_id)
    require_staff(session, team.id, user)
    membership = _pending_applicant(session, team.id, applicant_id)
    membership.status = TeamMemberStatus.APPROVED
    membership.joined_at = datetime.utcnow()
    membership.updated_at = datetime.utcnow()
    session.add(membership)
    applicant = session.get(User, applicant_id)
    if applicant and applicant.player_background == PlayerBackground.PROFESSIONAL:
        team.has_former_pro = True
        session.add(team)
    session.commit()
    session.refresh(membership)
    return membership


def reject_member(session: Session, user: User, team_id: int, applicant_id: int) -> TeamMember:
    team = get_team(session, team_id)
    require_staff(session, team.id, user)
    membership = _pending_applicant(session, team.id, applicant_id)
    membership.status = TeamMemberStatus.REJECTED
    membership.updated_at = datetime.utcnow()
    session.add(membership)
    session.commit()
    session.refresh(membership)
    return membership


def change_owner(session: Session, user: User, team_id: int, new_owner_id: int) -> None:
    team = get_team(session, team_id)
    current = require_owner(session, team.id, user)
    if new_owner_id == user.id:
        raise ActionError("You already own this team.")
    target = get_membership(session, team.id, new_owner_id)
    if not target or target.status != TeamMemberStatus.APPROVED:
        raise ActionError("The new owner must be an approved member.")
    current.role = TeamMemberRole.MEMBER
    target.role = TeamMemberRole.OWNER
    current.updated_at = target.updated_at = datetime.utcnow()
    team.owner_id = new_owner_id
    session.add(current)
    session.add(target)
    session.add(team)
    session.commit()
    logger.info("Team %s ownership moved from %s to %s", team.id, user.id, new_owner_id)


def add_manager(session: Session, user: User, team_id: int, member_id: int) -> TeamMember:
    team = get_team(session, team_id)
    require_owner(session, team.id, user)
    managers = session.exec(
        select(func.count())
        .select_from(TeamMember)
        .where(
            TeamMember.team_id == team.id,
            TeamMember.role == TeamMemberRole.MANAGER,
            TeamMember.status == TeamMemberStatus.APPROVED,
        )
    ).one()
    if managers >= MAX_MANAGERS:
        raise ActionError(f"A team can have at most {MAX_MANAGERS} managers.")
    target = get_membership(session, team.id, member_id)
    if (
        not target
        or target.status != TeamMemberStatus.APPROVED
        or target.role != TeamMemberRole.MEMBER
    ):
        raise ActionError("Only approved members can become managers.")
    target.role = TeamMemberRole.MANAGER
    target.updated_at = datetime.utcnow()
    session.add(target)
    session.commit()
    session.refresh(target)
    return target


def remove_manager(session: Session, user: User, team_id: int, member_id: int) -> TeamMember:
    team = get_team(session, team_id)
    require_owner(session, team.id, user)
    target = get_membership(session, team.id, member_id)
    if not target or target.role != TeamMemberRole.MANAGER or target.status != TeamMemberStatus.APPROVED:
        raise ActionError("That player is not a manager.")
    target.role = TeamMemberRole.MEMBER
    target.updated_at = datetime.utcnow()
    session.add(target)
    session.commit()
    session.refresh(target)
    return target


def follow_team(session: Session, user: User, team_id: int) -> bool:
    team = get_team(session, team_id)
    existing = session.exec(
        select(TeamFollow).where(TeamFollow.team_id == team.id, TeamFollow.user_id == user.id)
    ).first()
    if existing:
        session.delete(existing)
        session.commit()
        return False
    session.add(TeamFollow(team_id=team.id, user_id=user.id))
    session.commit()
    return True


def validate_team_code(session: Session, code: str) -> Team:
    team = session.exec(select(Team).where(Team.code == code.strip().upper())).first()
    if not team or team.is_deleted:
        raise NotFound("No team uses that code.")
    return team


def upcoming_active_schedules(session: Session, team_id: int) -> list[Schedule]:
    return list(
        session.exec(
            select(Schedule).where(
                (Schedule.host_team_id == team_id) | (Schedule.invited_team_id == team_id),
                Schedule.status.in_(ACTIVE_SCHEDULE_STATUSES),
                Schedule.match_date >= kst_today(),
            )
        ).all()
    )


def delete_team(session: Session, user: User, team_id: int) -> None:
    """Disband a team once it has no upcoming schedules."""
    team = get_team(session, team_id)
    require_owner(session, team.id, user)
    active = upcoming_active_schedules(session, team.id)
    if active:
        raise Conflict(
            f"This team still has {len(active)} upcoming schedule(s). Resolve them before deleting the team."
        )
    now = datetime.utcnow()
    team.is_deleted = True
    team.deleted_at = now
    team.deleted_by = user.id
    team.status = TeamStatus.DISBANDED
    team.recruitment_status = RecruitmentStatus.NOT_RECRUITING
    session.add(team)
    for membership in approved_members(session, team.id):
        membership.status = TeamMemberStatus.LEAVE
        membership.updated_at = now
        session.add(membership)
    for follow in session.exec(select(TeamFollow).where(TeamFollow.team_id == team.id)).all():
        session.delete(follow)
    session.commit()
    logger.info("Team %s disbanded by user %s", team.id, user.id)


def restore_team(session: Session, user: User, team_id: int) -> Team:
    team = session.get(Team, team_id)
    if not team or not team.is_deleted:
        raise NotFound("No deleted team to restore.")
    if user.id not in (team.owner_id, team.deleted_by):
        raise Forbidden("Only the former owner can restore this team.")
    team.is_deleted = False
    team.deleted_at = None
    team.deleted_by = None
    team.status = TeamStatus.ACTIVE
    session.add(team)
    owner = get_membership(session, team.id, team.owner_id)
    if owner:
        owner.status = TeamMemberStatus.APPROVED
        owner.role = TeamMemberRole.OWNER
        owner.updated_at = datetime.utcnow()
        session.add(owner)
    session.commit()
    session.refresh(team)
    logger.info("Team %s restored by user %s", team.id, user.id)
    return team


def team_detail(session: Session, team: Team, viewer: User | None) -> dict[str, object]:
    members = session.exec(
        select(TeamMember, User)
        .join(User, User.id == TeamMember.user_id)
        .where(TeamMember.team_id == team.id, TeamMember.status == TeamMemberStatus.APPROVED)
        .order_by(TeamMember.joined_at)
    ).all()
    followers = session.exec(
        select(func.count()).select_from(TeamFollow).where(TeamFollow.team_id == team.id)
    ).one()
    payload: dict[str, object] = {
        **team_summary(team),
        "code": team.code,
        "description": team.description,
        "gender": team.gender,
        "level": team.level,
        "status": team.status,
        "recruitment_status": team.recruitment_status,
        "has_former_pro": team.has_former_pro,
        "owner_id": team.owner_id,
        "followers": int(followers),
        "members": [
            {**user_summary(member_user), "role": membership.role, "joined_at": membership.joined_at}
            for membership, member_user in members
        ],
    }
    viewer_membership = get_membership(session, team.id, viewer.id) if viewer else None
    payload["my_membership"] = (
        {"role": viewer_membership.role, "status": viewer_membership.status} if viewer_membership else None
    )
    if (
        viewer_membership
        and viewer_membership.status == TeamMemberStatus.APPROVED
        and viewer_membership.role in STAFF_ROLES
    ):
        applicants = session.exec(
            select(TeamMember, User)
            .join(User, User.id == TeamMember.user_id)
            .where(TeamMember.team_id == team.id, TeamMember.status == TeamMemberStatus.PENDING)
            .order_by(TeamMember.created_at)
        ).all()
        payload["applicants"] = [user_summary(applicant) for _, applicant in applicants]
    return payload


@router.get("", name="list_teams")
async def list_teams(
    city: str | None = None,
    gender: TeamGender | None = None,
    recruiting: bool | None = None,
    session: Session = Depends(get_session),
):
    query = select(Team).where(Team.is_deleted == False)  # noqa: E712
    if city:
        query = query.where(Team.city == city)
    if gender:
        query = query.where(Team.gender == gender)
    if recruiting is not None:
        status = RecruitmentStatus.RECRUITING if recruiting else RecruitmentStatus.NOT_RECRUITING
        query = query.where(Team.recruitment_status == status)
    teams = session.exec(query.order_by(Team.created_at.desc())).all()
    return ok([team_summary(team) for team in teams])


@router.post("", name="create_team")
async def create_team_route(
    body: TeamCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    team = create_team(session, user, body)
    return ok({**team_summary(team), "code": team.code}, status_code=201)


@router.post("/validate-code", name="validate_team_code")
async def validate_team_code_route(body: CodeCheck, session: Session = Depends(get_session)):
    team = validate_team_code(session, body.code)
    return ok(team_summary(team))


@router.get("/{team_id}", name="team_detail")
async def team_detail_route(
    team_id: int,
    viewer: User | None = Depends(current_user_optional),
    session: Session = Depends(get_session),
):
    team = get_team(session, team_id)
    return ok(team_detail(session, team, viewer))


@router.put("/{team_id}", name="update_team")
async def update_team_route(
    team_id: int,
    body: TeamUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    team = update_team(session, user, team_id, body)
    return ok(team_summary(team), message="Team updated.")


@router.post("/{team_id}/logo", name="update_team_logo")
async def update_team_logo(
    team_id: int,
    logo: UploadFile = File(...),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    team = get_team(session, team_id)
    require_staff(session, team.id, user)
    try:
        prepared = prepare_image(await logo.read(), logo.filename, logo.content_type)
    except ValueError as exc:
        raise ActionError(str(exc)) from exc
    try:
        team.logo_url = store_image(prepared, prefix=f"teams/{team.id}")
    except RuntimeError as exc:
        logger.exception("Team logo upload failed: %s", exc)
        raise ActionError("Could not save the logo. Please try again.", status_code=500) from exc
    session.add(team)
    session.commit()
    session.refresh(team)
    return ok(team_summary(team))


@router.delete("/{team_id}", name="delete_team")
async def delete_team_route(
    team_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    delete_team(session, user, team_id)
    return ok(None, message="Team deleted.")


@router.post("/{team_id}/restore", name="restore_team")
async def restore_team_route(
    team_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    team = restore_team(session, user, team_id)
    return ok(team_summary(team), message="Team restored.")


@router.post("/{team_id}/join", name="join_team")
async def join_team_route(
    team_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    membership = join_team(session, user, team_id)
    return ok({"status": membership.status}, message="Application sent.")


@router.delete("/{team_id}/join", name="cancel_join")
async def cancel_join_route(
    team_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    cancel_join(session, user, team_id)
    return ok(None, message="Application cancelled.")


@router.post("/{team_id}/leave", name="leave_team")
async def leave_team_route(
    team_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    leave_team(session, user, team_id)
    return ok(None, message="You left the team.")


@router.post("/{team_id}/members/{member_id}/approve", name="approve_member")
async def approve_member_route(
    team_id: int,
    member_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    membership = approve_member(session, user, team_id, member_id)
    return ok({"status": membership.status})


@router.post("/{team_id}/members/{member_id}/reject", name="reject_member")
async def reject_member_route(
    team_id: int,
    member_id: int,
    body: MemberDecision | None = None,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    membership = reject_member(session, user, team_id, member_id)
    if body and body.reason:
        logger.info("Team %s rejected user %s: %s", team_id, member_id, body.reason)
    return ok({"status": membership.status})


@router.post("/{team_id}/owner/{member_id}", name="change_owner")
async def change_owner_route(
    team_id: int,
    member_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    change_owner(session, user, team_id, member_id)
    return ok(None, message="Ownership transferred.")


@router.post("/{team_id}/managers/{member_id}", name="add_manager")
async def add_manager_route(
    team_id: int,
    member_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    membership = add_manager(session, user, team_id, member_id)
    return ok({"role": membership.role})


@router.delete("/{team_id}/managers/{member_id}", name="remove_manager")
async def remove_manager_route(
    team_id: int,
    member_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    membership = remove_manager(session, user, team_id, member_id)
    return ok({"role": membership.role})


@router.post("/{team_id}/follow", name="follow_team")
async def follow_team_route(
    team_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    following = follow_team(session, user, team_id)
    return ok({"following": following})
