"""Community board posts, comments and likes."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session, func, select

from .auth import current_user, current_user_optional
from .database import (
    FREE_BOARD_SLUG,
    Board,
    Post,
    PostComment,
    PostLike,
    User,
    ensure_free_board,
    get_session,
    paginate,
)
from .errors import ActionError, Forbidden, NotFound, ok
from .users import user_summary

router = APIRouter(prefix="/api/posts")
logger = logging.getLogger(__name__)

DELETED_POST_TEXT = "This post has been deleted."
DELETED_COMMENT_TEXT = "This comment has been deleted."
DEFAULT_PAGE_SIZE = 20


class PostCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    content: str
    board_id: str = Field(alias="boardId")


class PostUpdate(BaseModel):
    title: str | None = None
    content: str | None = None


class CommentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str
    parent_id: int | None = Field(default=None, alias="parentId")


class CommentUpdate(BaseModel):
    content: str


def resolve_board(session: Session, board_id: str) -> Board:
    """Look a board up by id or slug; ``free`` always resolves to the FREE board."""
    key = board_id.strip()
    if not key:
        raise ActionError("boardId is required.")
    if key.lower() == FREE_BOARD_SLUG:
        return ensure_free_board(session)
    board = None
    if key.isdigit():
        board = session.get(Board, int(key))
    if board is None:
        board = session.exec(select(Board).where(Board.slug == key)).first()
    if board is None:
        raise NotFound("Board not found.")
    return board


def get_live_post(session: Session, post_id: int) -> Post:
    post = session.get(Post, post_id)
    if not post or post.is_deleted or post.is_hidden:
        raise NotFound("Post not found.")
    return post


def _require_author(record_author_id: int, user: User, noun: str) -> None:
    if record_author_id != user.id:
        raise Forbidden(f"Only the author can change this {noun}.")


def _live_comment_count(session: Session, post_id: int) -> int:
    return int(
        session.exec(
            select(func.count())
            .select_from(PostComment)
            .where(PostComment.post_id == post_id, PostComment.is_deleted == False)  # noqa: E712
        ).one()
    )


def _like_count(session: Session, post_id: int) -> int:
    return int(session.exec(select(func.count()).select_from(PostLike).where(PostLike.post_id == post_id)).one())


def post_summary(session: Session, post: Post, author: User | None) -> dict[str, object]:
    return {
        "id": post.id,
        "board_id": post.board_id,
        "title": post.title,
        "author": user_summary(author),
        "views": post.views,
        "is_pinned": post.is_pinned,
        "comments": _live_comment_count(session, post.id),
        "likes": _like_count(session, post.id),
        "created_at": post.created_at,
        "updated_at": post.updated_at,
    }


def list_posts(
    session: Session, board: Board, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
) -> tuple[list[tuple[Post, User]], dict[str, object]]:
    statement = (
        select(Post, User)
        .join(User, User.id == Post.author_id)
        .where(
            Post.board_id == board.id,
            Post.is_deleted == False,  # noqa: E712
            Post.is_hidden == False,  # noqa: E712
        )
        .order_by(Post.is_pinned.desc(), Post.created_at.desc(), Post.id.desc())
    )
    return paginate(session, statement, page, limit)


def create_post(session: Session, user: User, data: PostCreate) -> Post:
    title = data.title.strip()
    content = data.content.strip()
    if not title or not content:
        raise ActionError("Title and content are required.")
    board = resolve_board(session, data.board_id)
    post = Post(board_id=board.id, author_id=user.id, title=title, content=content)
    session.add(post)
    session.commit()
    session.refresh(post)
    return post


def view_post(session: Session, post_id: int) -> Post:
    post = get_live_post(session, post_id)
    post.views += 1
    session.add(post)
    session.commit()
    session.refresh(post)
    return post


def update_post(session: Session, user: User, post_id: int, data: PostUpdate) -> Post:
    post = get_live_post(session, post_id)
    _require_author(post.author_id, user, "post")
    if data.title is not None:
        title = data.title.strip()
        if not title:
            raise ActionError("Title cannot be empty.")
        post.title = title
    if data.content is not None:
        content = data.content.strip()
        if not content:
            raise ActionError("Content cannot be empty.")
        post.content = content
    post.updated_at = datetime.utcnow()
    session.add(post)
    session.commit()
    session.refresh(post)
    return post


def delete_post(session: Session, user: User, post_id: int) -> bool:
    """Delete a post; return True when comments forced a soft delete."""
    post = session.get(Post, post_id)
    if not post or post.is_deleted:
        raise NotFound("Post not found.")
    _require_author(post.author_id, user, "post")
    if _live_comment_count(session, post.id):
        post.is_deleted = True
        post.deleted_at = datetime.utcnow()
        post.title = DELETED_POST_TEXT
        post.content = DELETED_POST_TEXT
        session.add(post)
        session.commit()
        return True
    for comment in session.exec(select(PostComment).where(PostComment.post_id == post.id)).all():
        session.delete(comment)
    for like in session.exec(select(PostLike).where(PostLike.post_id == post.id)).all():
        session.delete(like)
    session.delete(post)
    session.commit()
    return False


def toggle_post_like(session: Session, user: User, post_id: int) -> bool:
    post = get_live_post(session, post_id)
    existing = session.exec(select(PostLike).where(PostLike.post_id == post.id, PostLike.user_id == user.id)).first()
    if existing:
        session.delete(existing)
        session.commit()
        return False
    session.add(PostLike(post_id=post.id, user_id=user.id))
    session.commit()
    return True


def post_comments(session: Session, post_id: int) -> list[dict[str, object]]:
    """Top-level comments oldest first, each with its live replies."""
    rows = session.exec(
        select(PostComment, User)
        .join(User, User.id == PostComment.author_id)
        .where(PostComment.post_id == post_id)
        .order_by(PostComment.created_at, PostComment.id)
    ).all()
    threads: list[dict[str, object]] = []
    by_id: dict[int, dict[str, object]] = {}
    for comment, author in rows:
        if comment.parent_id is not None:
            continue
        item = {
            "id": comment.id,
            "content": comment.content,
            "is_deleted": comment.is_deleted,
            "author": None if comment.is_deleted else user_summary(author),
            "created_at": comment.created_at,
            "updated_at": comment.updated_at,
            "replies": [],
        }
        threads.append(item)
        by_id[comment.id] = item
    for comment, author in rows:
        if comment.parent_id is None or comment.is_deleted or comment.parent_id not in by_id:
            continue
        by_id[comment.parent_id]["replies"].append(
            {
                "id": comment.id,
                "content": comment.content,
                "author": user_summary(author),
                "created_at": comment.created_at,
                "updated_at": comment.updated_at,
            }
        )
    return [thread for thread in threads if not thread["is_deleted"] or thread["replies"]]


def create_comment(session: Session, user: User, post_id: int, data: CommentCreate) -> PostComment:
    post = get_live_post(session, post_id)
    content = data.content.strip()
    if not content:
        raise ActionError("Content is required.")
    if data.parent_id is not None:
        parent = session.get(PostComment, data.parent_id)
        if not parent or parent.is_deleted or parent.post_id != post.id:
            raise NotFound("Parent comment not found.")
        if parent.parent_id is not None:
            raise ActionError("Replies can only be one level deep.")
    comment = PostComment(post_id=post.id, author_id=user.id, parent_id=data.parent_id, content=content)
    session.add(comment)
    session.commit()
    session.refresh(comment)
    return comment


def _live_comment(session: Session, post_id: int, comment_id: int) -> PostComment:
    comment = session.get(PostComment, comment_id)
    if not comment or comment.is_deleted or comment.post_id != post_id:
        raise NotFound("Comment not found.")
    return comment


def update_comment(session: Session, user: User, post_id: int, comment_id: int, content: str) -> PostComment:
    content = content.strip()
    if not content:
        raise ActionError("Content is required.")
    comment = _live_comment(session, post_id, comment_id)
    _require_author(comment.author_id, user, "comment")
    comment.content = content
    comment.updated_at = datetime.utcnow()
    session.add(comment)
    session.commit()
    session.refresh(comment)
    return comment


def delete_comment(session: Session, user: User, post_id: int, comment_id: int) -> bool:
    """Delete a comment; return True when live replies forced a soft delete."""
    comment = _live_comment(session, post_id, comment_id)
    _require_author(comment.author_id, user, "comment")
    live_replies = session.exec(
        select(func.count())
        .select_from(PostComment)
        .where(PostComment.parent_id == comment.id, PostComment.is_deleted == False)  # noqa: E712
    ).one()
    if live_replies:
        comment.is_deleted = True
        comment.deleted_at = datetime.utcnow()
        comment.content = DELETED_COMMENT_TEXT
        session.add(comment)
        session.commit()
        return True
    for reply in session.exec(select(PostComment).where(PostComment.parent_id == comment.id)).all():
        session.delete(reply)
    session.delete(comment)
    session.commit()
    return False


@router.get("", name="list_posts")
async def list_posts_route(
    board_id: str | None = Query(default=None, alias="boardId"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=100),
    session: Session = Depends(get_session),
):
    if not board_id:
        raise ActionError("boardId is required.")
    board = resolve_board(session, board_id)
    rows, pagination = list_posts(session, board, page=page, limit=limit)
    session.commit()
    return ok(
        {
            "board": {"id": board.id, "name": board.name, "slug": board.slug, "category": board.category},
            "posts": [post_summary(session, post, author) for post, author in rows],
            "pagination": pagination,
        }
    )


@router.post("", name="create_post")
async def create_post_route(
    body: PostCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    post = create_post(session, user, body)
    return ok({"id": post.id, "title": post.title, "board_id": post.board_id}, status_code=201)


@router.get("/{post_id}", name="post_detail")
async def post_detail_route(
    post_id: int,
    viewer: User | None = Depends(current_user_optional),
    session: Session = Depends(get_session),
):
    post = view_post(session, post_id)
    author = session.get(User, post.author_id)
    payload = post_summary(session, post, author)
    payload["content"] = post.content
    payload["comment_list"] = post_comments(session, post.id)
    payload["is_author"] = bool(viewer and viewer.id == post.author_id)
    if viewer:
        payload["liked"] = (
            session.exec(select(PostLike).where(PostLike.post_id == post.id, PostLike.user_id == viewer.id)).first()
            is not None
        )
    return ok(payload)


@router.put("/{post_id}", name="update_post")
async def update_post_route(
    post_id: int,
    body: PostUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    post = update_post(session, user, post_id, body)
    return ok({"id": post.id, "title": post.title, "content": post.content})


@router.delete("/{post_id}", name="delete_post")
async def delete_post_route(
    post_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    soft = delete_post(session, user, post_id)
    return ok({"soft_deleted": soft}, message="Post deleted.")


@router.post("/{post_id}/like", name="like_post")
async def like_post_route(
    post_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    liked = toggle_post_like(session, user, post_id)
    return ok({"liked": liked, "likes": _like_count(session, post_id)})


@router.get("/{post_id}/comments", name="list_comments")
async def list_comments_route(post_id: int, session: Session = Depends(get_session)):
    post = get_live_post(session, post_id)
    return ok(post_comments(session, post.id))


@router.post("/{post_id}/comments", name="create_comment")
async def create_comment_route(
    post_id: int,
    body: CommentCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    comment = create_comment(session, user, post_id, body)
    return ok(
        {"id": comment.id, "content": comment.content, "parent_id": comment.parent_id},
        status_code=201,
    )


@router.put("/{post_id}/comments/{comment_id}", name="update_comment")
async def update_comment_route(
    post_id: int,
    comment_id: int,
    body: CommentUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    comment = update_comment(session, user, post_id, comment_id, body.content)
    return ok({"id": comment.id, "content": comment.content})


@router.delete("/{post_id}/comments/{comment_id}", name="delete_comment")
async def delete_comment_route(
    post_id: int,
    comment_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    soft = delete_comment(session, user, post_id, comment_id)
    return ok({"soft_deleted": soft}, message="Comment deleted.")
