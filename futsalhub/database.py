"""Database models and helpers for players, teams, schedules, matches and boards."""

from __future__ import annotations

import logging
import math
import os
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from sqlalchemy import UniqueConstraint
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine, func, select

BASE_DIR = Path(__file__).resolve().parent

DEFAULT_SQLITE_PATH = "sqlite:///./futsalhub.db"
FREE_BOARD_SLUG = "free"
KST = timezone(timedelta(hours=9))

logger = logging.getLogger(__name__)


def _build_engine_url() -> str:
    """Return the configured database URL or fall back to SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_SQLITE_PATH)


def _build_engine() -> Engine:
    url = _build_engine_url()
    engine_kwargs = {}
    if url.startswith("sqlite"):
        # SQLite needs check_same_thread disabled for FastAPI concurrency,
        # but passing this flag to other drivers (e.g., psycopg2) raises errors.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **engine_kwargs)


engine = _build_engine()

STATIC_DIR = BASE_DIR / "static"
UPLOAD_DIR = STATIC_DIR / "uploads"


class OnboardingStep(str, Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    NICKNAME = "NICKNAME"
    PROFILE = "PROFILE"
    PLAYER = "PLAYER"
    SNS = "SNS"
    COMPLETE = "COMPLETE"


class PlayerBackground(str, Enum):
    AMATEUR = "AMATEUR"
    PROFESSIONAL = "PROFESSIONAL"


class TeamGender(str, Enum):
    MIXED = "MIXED"
    MALE = "MALE"
    FEMALE = "FEMALE"


class TeamLevel(str, Enum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MID = "MID"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class TeamStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DISBANDED = "DISBANDED"


class RecruitmentStatus(str, Enum):
    RECRUITING = "RECRUITING"
    NOT_RECRUITING = "NOT_RECRUITING"


class TeamMemberRole(str, Enum):
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"


class TeamMemberStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    LEAVE = "LEAVE"


class MatchType(str, Enum):
    SQUAD = "SQUAD"
    TEAM = "TEAM"


class ScheduleStatus(str, Enum):
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    CONFIRMED = "CONFIRMED"
    READY = "READY"
    PLAY = "PLAY"
    DELETED = "DELETED"


class Period(str, Enum):
    DAWN = "DAWN"
    MORNING = "MORNING"
    DAY = "DAY"
    EVENING = "EVENING"
    NIGHT = "NIGHT"


class DayOfWeek(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"


class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"


class TeamType(str, Enum):
    HOST = "HOST"
    INVITED = "INVITED"


class AttendanceStatus(str, Enum):
    ATTENDING = "ATTENDING"
    NOT_ATTENDING = "NOT_ATTENDING"
    UNDECIDED = "UNDECIDED"


class TeamSide(str, Enum):
    HOME = "HOME"
    AWAY = "AWAY"
    UNDECIDED = "UNDECIDED"


class BoardCategory(str, Enum):
    FREE = "FREE"
    NOTICE = "NOTICE"
    QUESTION = "QUESTION"


class FeedbackCategory(str, Enum):
    FEATURE_REQUEST = "FEATURE_REQUEST"
    IMPROVEMENT = "IMPROVEMENT"
    UI_UX = "UI_UX"
    CONTENT = "CONTENT"
    OTHER = "OTHER"


class FeedbackStatus(str, Enum):
    PENDING = "PENDING"
    REVIEWING = "REVIEWING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class BugSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    TRIVIAL = "TRIVIAL"


class BugStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str | None = Field(default=None, max_length=255, unique=True, index=True)
    name: str | None = Field(default=None, max_length=128)
    nickname: str | None = Field(default=None, max_length=32, unique=True, index=True)
    image: str | None = Field(default=None)
    phone: str | None = Field(default=None, max_length=32)
    birth_date: str | None = Field(default=None, max_length=8)
    gender: str | None = Field(default=None, max_length=16)
    position: str | None = Field(default=None, max_length=32)
    skill_level: str | None = Field(default=None, max_length=32)
    player_background: PlayerBackground = Field(default=PlayerBackground.AMATEUR, nullable=False)
    height: int | None = Field(default=None)
    onboarding_step: OnboardingStep = Field(default=OnboardingStep.EMAIL, nullable=False)
    onboarding_completed_at: datetime | None = Field(default=None)
    is_deleted: bool = Field(default=False, nullable=False)
    deleted_at: datetime | None = Field(default=None)
    delete_reason: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"
    __table_args__ = (UniqueConstraint("provider", "provider_account_id"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    provider: str = Field(nullable=False, max_length=32)
    provider_account_id: str = Field(nullable=False, max_length=255)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class UserFollow(SQLModel, table=True):
    __tablename__ = "user_follows"
    __table_args__ = (UniqueConstraint("follower_id", "following_id"),)

    id: int | None = Field(default=None, primary_key=True)
    follower_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    following_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class Team(SQLModel, table=True):
    __tablename__ = "teams"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(min_length=2, max_length=64, nullable=False, unique=True, index=True)
    code: str = Field(nullable=False, unique=True, index=True, max_length=6)
    description: str | None = Field(default=None)
    city: str | None = Field(default=None, max_length=64)
    district: str | None = Field(default=None, max_length=64)
    gender: TeamGender = Field(default=TeamGender.MIXED, nullable=False)
    level: TeamLevel = Field(default=TeamLevel.MID, nullable=False)
    logo_url: str | None = Field(default=None)
    status: TeamStatus = Field(default=TeamStatus.ACTIVE, nullable=False)
    recruitment_status: RecruitmentStatus = Field(default=RecruitmentStatus.RECRUITING, nullable=False)
    has_former_pro: bool = Field(default=False, nullable=False)
    owner_id: int = Field(foreign_key="users.id", nullable=False)
    is_deleted: bool = Field(default=False, nullable=False)
    deleted_at: datetime | None = Field(default=None)
    deleted_by: int | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class TeamMember(SQLModel, table=True):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="teams.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    role: TeamMemberRole = Field(default=TeamMemberRole.MEMBER, nullable=False)
    status: TeamMemberStatus = Field(default=TeamMemberStatus.PENDING, nullable=False)
    banned: bool = Field(default=False, nullable=False)
    joined_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class TeamFollow(SQLModel, table=True):
    __tablename__ = "team_follows"
    __table_args__ = (UniqueConstraint("team_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="teams.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class Schedule(SQLModel, table=True):
    __tablename__ = "schedules"

    id: int | None = Field(default=None, primary_key=True)
    created_by_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    host_team_id: int = Field(foreign_key="teams.id", nullable=False, index=True)
    invited_team_id: int | None = Field(default=None, foreign_key="teams.id", index=True)
    place: str = Field(nullable=False, max_length=128)
    description: str | None = Field(default=None)
    city: str | None = Field(default=None, max_length=64)
    district: str | None = Field(default=None, max_length=64)
    match_date: date = Field(nullable=False, index=True)
    year: int = Field(nullable=False)
    day_of_week: DayOfWeek = Field(nullable=False)
    start_time: time = Field(nullable=False)
    end_time: time = Field(nullable=False)
    start_period: Period = Field(nullable=False)
    match_type: MatchType = Field(nullable=False)
    status: ScheduleStatus = Field(default=ScheduleStatus.PENDING, nullable=False, index=True)
    enable_attendance_vote: bool = Field(default=False, nullable=False)
    attendance_deadline: datetime | None = Field(default=None)
    team_share_fee: int | None = Field(default=None)
    host_team_mercenary_count: int = Field(default=0, nullable=False)
    invited_team_mercenary_count: int = Field(default=0, nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class TeamMatchInvitation(SQLModel, table=True):
    __tablename__ = "team_match_invitations"

    id: int | None = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="schedules.id", nullable=False, unique=True)
    invited_team_id: int = Field(foreign_key="teams.id", nullable=False, index=True)
    status: InvitationStatus = Field(default=InvitationStatus.PENDING, nullable=False)
    message: str | None = Field(default=None)
    reason: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class ScheduleAttendance(SQLModel, table=True):
    __tablename__ = "schedule_attendances"
    __table_args__ = (UniqueConstraint("schedule_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="schedules.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    team_type: TeamType = Field(nullable=False)
    attendance_status: AttendanceStatus = Field(default=AttendanceStatus.UNDECIDED, nullable=False)
    voted_at: datetime | None = Field(default=None)
    mvp_to_user_id: int | None = Field(default=None, foreign_key="users.id")
    mvp_received: int = Field(default=0, nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class ScheduleLike(SQLModel, table=True):
    __tablename__ = "schedule_likes"
    __table_args__ = (UniqueConstraint("schedule_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="schedules.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class SchedulePhoto(SQLModel, table=True):
    __tablename__ = "schedule_photos"

    id: int | None = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="schedules.id", nullable=False, index=True)
    uploader_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    filename: str = Field(nullable=False, unique=True)
    original_name: str = Field(default="Upload", nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class ScheduleComment(SQLModel, table=True):
    __tablename__ = "schedule_comments"

    id: int | None = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="schedules.id", nullable=False, index=True)
    author_id: int = Field(foreign_key="users.id", nullable=False)
    parent_id: int | None = Field(default=None, foreign_key="schedule_comments.id", index=True)
    content: str = Field(nullable=False)
    is_deleted: bool = Field(default=False, nullable=False)
    deleted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class Match(SQLModel, table=True):
    __tablename__ = "matches"

    id: int | None = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="schedules.id", nullable=False, index=True)
    created_by_id: int = Field(foreign_key="users.id", nullable=False)
    home_team_id: int = Field(foreign_key="teams.id", nullable=False)
    away_team_id: int = Field(foreign_key="teams.id", nullable=False)
    home_score: int = Field(default=0, nullable=False)
    away_score: int = Field(default=0, nullable=False)
    is_lined_up: bool = Field(default=False, nullable=False)
    home_team_mercenary_count: int = Field(default=0, nullable=False)
    away_team_mercenary_count: int = Field(default=0, nullable=False)
    undecided_team_mercenary_count: int = Field(default=0, nullable=False)
    duration_minutes: int | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class Lineup(SQLModel, table=True):
    __tablename__ = "lineups"
    __table_args__ = (UniqueConstraint("match_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="matches.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    side: TeamSide = Field(default=TeamSide.UNDECIDED, nullable=False)


class GoalRecord(SQLModel, table=True):
    __tablename__ = "goal_records"

    id: int | None = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="matches.id", nullable=False, index=True)
    scorer_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    assist_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    scorer_side: TeamSide = Field(nullable=False)
    is_own_goal: bool = Field(default=False, nullable=False)
    is_scored_by_mercenary: bool = Field(default=False, nullable=False)
    is_assisted_by_mercenary: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class Board(SQLModel, table=True):
    __tablename__ = "boards"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(nullable=False, max_length=64)
    slug: str = Field(nullable=False, unique=True, index=True, max_length=64)
    category: BoardCategory = Field(default=BoardCategory.FREE, nullable=False)
    description: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class Post(SQLModel, table=True):
    __tablename__ = "posts"

    id: int | None = Field(default=None, primary_key=True)
    board_id: int = Field(foreign_key="boards.id", nullable=False, index=True)
    author_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    title: str = Field(nullable=False, max_length=200)
    content: str = Field(nullable=False)
    views: int = Field(default=0, nullable=False)
    is_pinned: bool = Field(default=False, nullable=False)
    is_hidden: bool = Field(default=False, nullable=False)
    is_deleted: bool = Field(default=False, nullable=False)
    deleted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class PostComment(SQLModel, table=True):
    __tablename__ = "post_comments"

    id: int | None = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="posts.id", nullable=False, index=True)
    author_id: int = Field(foreign_key="users.id", nullable=False)
    parent_id: int | None = Field(default=None, foreign_key="post_comments.id", index=True)
    content: str = Field(nullable=False)
    is_deleted: bool = Field(default=False, nullable=False)
    deleted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class PostLike(SQLModel, table=True):
    __tablename__ = "post_likes"
    __table_args__ = (UniqueConstraint("post_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="posts.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class Feedback(SQLModel, table=True):
    __tablename__ = "feedback"

    id: int | None = Field(default=None, primary_key=True)
    author_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    title: str = Field(nullable=False, max_length=200)
    description: str = Field(nullable=False)
    category: FeedbackCategory = Field(default=FeedbackCategory.OTHER, nullable=False)
    status: FeedbackStatus = Field(default=FeedbackStatus.PENDING, nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class FeedbackAttachment(SQLModel, table=True):
    __tablename__ = "feedback_attachments"

    id: int | None = Field(default=None, primary_key=True)
    feedback_id: int = Field(foreign_key="feedback.id", nullable=False, index=True)
    url: str = Field(nullable=False)
    file_name: str = Field(nullable=False)
    file_size: int | None = Field(default=None)
    mime_type: str | None = Field(default=None)


class BugReport(SQLModel, table=True):
    __tablename__ = "bug_reports"

    id: int | None = Field(default=None, primary_key=True)
    reporter_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    title: str = Field(nullable=False, max_length=200)
    description: str = Field(nullable=False)
    steps_to_reproduce: str | None = Field(default=None)
    expected_behavior: str | None = Field(default=None)
    actual_behavior: str | None = Field(default=None)
    browser: str | None = Field(default=None, max_length=64)
    os: str | None = Field(default=None, max_length=64)
    device_type: str | None = Field(default=None, max_length=64)
    screen_size: str | None = Field(default=None, max_length=32)
    url: str | None = Field(default=None)
    severity: BugSeverity = Field(default=BugSeverity.MEDIUM, nullable=False)
    status: BugStatus = Field(default=BugStatus.OPEN, nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class BugReportAttachment(SQLModel, table=True):
    __tablename__ = "bug_report_attachments"

    id: int | None = Field(default=None, primary_key=True)
    bug_report_id: int = Field(foreign_key="bug_reports.id", nullable=False, index=True)
    url: str = Field(nullable=False)
    file_name: str = Field(nullable=False)
    file_size: int | None = Field(default=None)
    mime_type: str | None = Field(default=None)


def init_db() -> None:
    """Create tables if they don't already exist."""
    SQLModel.metadata.create_all(engine)
    _ensure_upload_dir()
    with Session(engine) as session:
        ensure_free_board(session)
        session.commit()


def get_session() -> Iterator[Session]:
    """Yield a SQLModel session for dependency injection."""
    with Session(engine) as session:
        yield session


def kst_today() -> date:
    """Return the current calendar date in Korea, where schedules are played."""
    return datetime.now(KST).date()


def _ensure_upload_dir() -> None:
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)


def ensure_free_board(session: Session) -> Board:
    """Return the FREE board, creating it on first use."""
    board = session.exec(select(Board).where(Board.category == BoardCategory.FREE)).first()
    if board:
        return board
    board = Board(
        name="Free board",
        slug=FREE_BOARD_SLUG,
        category=BoardCategory.FREE,
        description="Talk about anything with the community.",
    )
    session.add(board)
    session.flush()
    logger.info("Created default free board (id=%s)", board.id)
    return board


def clear_mvp_votes(session: Session, attendance: ScheduleAttendance) -> None:
    """Undo the MVP votes cast by and for ``attendance`` before it is deleted."""
    voters = session.exec(
        select(ScheduleAttendance).where(
            ScheduleAttendance.schedule_id == attendance.schedule_id,
            ScheduleAttendance.mvp_to_user_id == attendance.user_id,
        )
    ).all()
    for voter in voters:
        voter.mvp_to_user_id = None
        session.add(voter)
    if attendance.mvp_to_user_id is not None:
        target = session.exec(
            select(ScheduleAttendance).where(
                ScheduleAttendance.schedule_id == attendance.schedule_id,
                ScheduleAttendance.user_id == attendance.mvp_to_user_id,
            )
        ).first()
        if target and target.mvp_received > 0:
            target.mvp_received -= 1
            session.add(target)
        attendance.mvp_to_user_id = None


def paginate(session: Session, statement: Any, page: int, limit: int) -> tuple[list[Any], dict[str, object]]:
    """Run ``statement`` for one page and describe where that page sits."""
    page = max(page, 1)
    limit = max(limit, 1)
    total = session.exec(select(func.count()).select_from(statement.subquery())).one()
    items = session.exec(statement.offset((page - 1) * limit).limit(limit)).all()
    total_pages = math.ceil(total / limit)
    return list(items), {
        "currentPage": page,
        "totalPages": total_pages,
        "totalItems": total,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }
