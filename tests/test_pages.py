from __future__ import annotations

import pytest
from sqlmodel import Session

from futsalhub.boards import PostCreate, create_post


@pytest.fixture
def seeded(app_db, make_user, make_team, make_schedule):
    with Session(app_db) as db:
        owner = make_user(db, "organiser")
        team = make_team(db, owner, "Page FC")
        schedule = make_schedule(db, owner, team, place="Olympic Park Court 3")
        post = create_post(db, owner, PostCreate(title="Looking for a keeper", content="Thursday nights", boardId="free"))
        return schedule.id, post.id


@pytest.mark.asyncio
async def test_index_lists_upcoming_schedules(async_client, seeded):
    response = await async_client.get("/")
    assert response.status_code == 200
    assert "Upcoming schedules" in response.text
    assert "Olympic Park Court 3" in response.text


@pytest.mark.asyncio
async def test_schedule_page(async_client, seeded):
    schedule_id, _ = seeded
    response = await async_client.get(f"/schedules/{schedule_id}")
    assert response.status_code == 200
    assert "Page FC" in response.text

    missing = await async_client.get("/schedules/9999")
    assert missing.status_code == 404
    assert "Schedule not found." in missing.text


@pytest.mark.asyncio
async def test_board_pages(async_client, seeded):
    _, post_id = seeded
    board = await async_client.get("/boards")
    assert board.status_code == 200
    assert "Looking for a keeper" in board.text

    post = await async_client.get(f"/boards/{post_id}")
    assert post.status_code == 200
    assert "1 views" in post.text

    assert (await async_client.get("/boards", params={"board": "nope"})).status_code == 404
    assert (await async_client.get("/boards/9999")).status_code == 404
