import os
import tempfile
from datetime import date, time, timedelta
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from sqlmodel import Session, SQLModel, create_engine


TEST_DB = Path(tempfile.gettempdir()) / "futsalhub_test_app.sqlite3"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB}"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["API_SECRET_KEY"] = "test-api-key"
os.environ["ALLOW_DEV_LOGIN"] = "true"
os.environ.pop("GCS_PHOTO_BUCKET", None)

from futsalhub import app  # noqa: E402
from futsalhub.auth import SESSION_COOKIE_NAME, encode_session  # noqa: E402
from futsalhub.database import (  # noqa: E402
    MatchType,
    OnboardingStep,
    Team,
    TeamMember,
    TeamMemberStatus,
    User,
    engine,
    init_db,
)
from futsalhub.schedules import ScheduleCreate, create_schedule  # noqa: E402
from futsalhub.teams import TeamCreate, create_team  # noqa: E402


@pytest.fixture
def session():
    """A fresh in-memory database for calling service functions directly."""
    test_engine = create_engine("sqlite://")
    SQLModel.metadata.create_all(test_engine)
    with Session(test_engine) as db:
        yield db


@pytest.fixture
def app_db():
    if TEST_DB.exists():
        TEST_DB.unlink()
    init_db()
    yield engine
    engine.dispose()
    if TEST_DB.exists():
        TEST_DB.unlink()


@pytest_asyncio.fixture
async def async_client(app_db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def login():
    def _login(client: httpx.AsyncClient, user_id: int) -> None:
        client.cookies.set(SESSION_COOKIE_NAME, encode_session(user_id))

    return _login


@pytest.fixture
def make_user():
    counter = {"value": 0}

    def _make_user(db: Session, nickname: str | None = None, **fields) -> User:
        counter["value"] += 1
        number = counter["value"]
        user = User(
            email=fields.pop("email", f"player{number}@example.com"),
            name=fields.pop("name", f"Player {number}"),
            nickname=nickname or f"player{number}",
            onboarding_step=fields.pop("onboarding_step", OnboardingStep.COMPLETE),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_team():
    def _make_team(db: Session, owner: User, name: str, members=()) -> Team:
        team = create_team(db, owner, TeamCreate(name=name, city="Seoul"))
        for member in members:
            db.add(TeamMember(team_id=team.id, user_id=member.id, status=TeamMemberStatus.APPROVED))
        db.commit()
        db.refresh(team)
        return team

    return _make_team


@pytest.fixture
def make_schedule():
    def _make_schedule(db: Session, creator: User, host, invited=None, **fields):
        data = ScheduleCreate(
            host_team_id=host.id,
            invited_team_id=invited.id if invited else None,
            match_type=MatchType.TEAM if invited else MatchType.SQUAD,
            place=fields.pop("place", "Riverside Futsal Park"),
            match_date=fields.pop("match_date", date.today() + timedelta(days=3)),
            start_time=fields.pop("start_time", time(19, 0)),
            end_time=fields.pop("end_time", time(21, 0)),
            **fields,
        )
        return create_schedule(db, creator, data)

    return _make_schedule

