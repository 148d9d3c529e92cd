from __future__ import annotations

import pytest
from sqlmodel import Session

from futsalhub.boards import DELETED_POST_TEXT
from futsalhub.database import Post


@pytest.fixture
def players(app_db, make_user):
    with Session(app_db) as db:
        author = make_user(db, "writer")
        reader = make_user(db, "reader")
        return author.id, reader.id


async def _create_post(client, title="Match report", content="We won 5-3"):
    response = await client.post("/api/posts", json={"title": title, "content": content, "boardId": "free"})
    assert response.status_code == 201
    return response.json()["data"]["id"]


@pytest.mark.asyncio
async def test_listing_requires_board(async_client):
    response = await async_client.get("/api/posts")
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "boardId is required."}

    response = await async_client.get("/api/posts", params={"boardId": "tactics"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_creating_posts_requires_login(async_client):
    response = await async_client.post("/api/posts", json={"title": "Hi", "content": "There", "boardId": "free"})
    assert response.status_code == 401
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_free_board_lists_pinned_first(async_client, app_db, players, login):
    author_id, _ = players
    login(async_client, author_id)
    older = await _create_post(async_client, title="Older")
    newer = await _create_post(async_client, title="Newer")
    with Session(app_db) as db:
        post = db.get(Post, older)
        post.is_pinned = True
        db.add(post)
        db.commit()

    response = await async_client.get("/api/posts", params={"boardId": "free", "limit": 1})
    body = response.json()["data"]
    assert body["board"]["slug"] == "free"
    assert [item["id"] for item in body["posts"]] == [older]
    assert body["pagination"]["totalItems"] == 2
    assert body["pagination"]["hasNext"] is True

    response = await async_client.get("/api/posts", params={"boardId": "free", "page": 2, "limit": 1})
    assert [item["id"] for item in response.json()["data"]["posts"]] == [newer]


@pytest.mark.asyncio
async def test_viewing_counts_and_author_only_edits(async_client, players, login):
    author_id, reader_id = players
    login(async_client, author_id)
    post_id = await _create_post(async_client)

    login(async_client, reader_id)
    first = await async_client.get(f"/api/posts/{post_id}")
    second = await async_client.get(f"/api/posts/{post_id}")
    assert first.json()["data"]["views"] == 1
    assert second.json()["data"]["views"] == 2
    assert second.json()["data"]["is_author"] is False

    response = await async_client.put(f"/api/posts/{post_id}", json={"title": "Hijacked"})
    assert response.status_code == 403
    response = await async_client.delete(f"/api/posts/{post_id}")
    assert response.status_code == 403

    login(async_client, author_id)
    response = await async_client.put(f"/api/posts/{post_id}", json={"title": "  Final score "})
    assert response.status_code == 200
    assert response.json()["data"]["title"] == "Final score"


@pytest.mark.asyncio
async def test_delete_without_comments_removes_post(async_client, app_db, players, login):
    author_id, _ = players
    login(async_client, author_id)
    post_id = await _create_post(async_client)

    response = await async_client.delete(f"/api/posts/{post_id}")
    assert response.json()["data"] == {"soft_deleted": False}
    assert (await async_client.get(f"/api/posts/{post_id}")).status_code == 404
    with Session(app_db) as db:
        assert db.get(Post, post_id) is None


@pytest.mark.asyncio
async def test_delete_with_comments_keeps_a_tombstone(async_client, app_db, players, login):
    author_id, reader_id = players
    login(async_client, author_id)
    post_id = await _create_post(async_client)
    login(async_client, reader_id)
    response = await async_client.post(f"/api/posts/{post_id}/comments", json={"content": "Nice goal"})
    assert response.status_code == 201

    login(async_client, author_id)
    response = await async_client.delete(f"/api/posts/{post_id}")
    assert response.json()["data"] == {"soft_deleted": True}
    assert (await async_client.get(f"/api/posts/{post_id}")).status_code == 404
    with Session(app_db) as db:
        post = db.get(Post, post_id)
        assert post.is_deleted
        assert post.title == DELETED_POST_TEXT


@pytest.mark.asyncio
async def test_comment_threads(async_client, players, login):
    author_id, reader_id = players
    login(async_client, author_id)
    post_id = await _create_post(async_client)
    parent = await async_client.post(f"/api/posts/{post_id}/comments", json={"content": "Who is in next week?"})
    parent_id = parent.json()["data"]["id"]

    login(async_client, reader_id)
    reply = await async_client.post(f"/api/posts/{post_id}/comments", json={"content": "Me", "parentId": parent_id})
    assert reply.status_code == 201
    reply_id = reply.json()["data"]["id"]
    nested = await async_client.post(f"/api/posts/{post_id}/comments", json={"content": "Too deep", "parentId": reply_id})
    assert nested.status_code == 400

    response = await async_client.put(f"/api/posts/{post_id}/comments/{parent_id}", json={"content": "Edited"})
    assert response.status_code == 403
    response = await async_client.put(f"/api/posts/{post_id}/comments/{reply_id}", json={"content": "Me too"})
    assert response.json()["data"]["content"] == "Me too"

    login(async_client, author_id)
    response = await async_client.delete(f"/api/posts/{post_id}/comments/{parent_id}")
    assert response.json()["data"] == {"soft_deleted": True}
    orphan = await async_client.post(f"/api/posts/{post_id}/comments", json={"content": "Late", "parentId": parent_id})
    assert orphan.status_code == 404

    threads = (await async_client.get(f"/api/posts/{post_id}/comments")).json()["data"]
    assert len(threads) == 1
    assert threads[0]["is_deleted"] is True
    assert threads[0]["author"] is None
    assert [item["content"] for item in threads[0]["replies"]] == ["Me too"]


@pytest.mark.asyncio
async def test_post_likes_toggle(async_client, players, login):
    author_id, reader_id = players
    login(async_client, author_id)
    post_id = await _create_post(async_client)
    login(async_client, reader_id)

    liked = await async_client.post(f"/api/posts/{post_id}/like")
    assert liked.json()["data"] == {"liked": True, "likes": 1}
    unliked = await async_client.post(f"/api/posts/{post_id}/like")
    assert unliked.json()["data"] == {"liked": False, "likes": 0}
