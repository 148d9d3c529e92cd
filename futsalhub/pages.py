"""Server-rendered pages for schedules and the community board."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

from .auth import current_user_optional
from .boards import list_posts, post_comments, resolve_board, view_post
from .database import BASE_DIR, Period, User, get_session, kst_today
from .errors import ActionError
from .schedules import get_live_schedule, list_schedules, schedule_comments, schedule_detail, schedule_summary

router = APIRouter()
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


def _render(
    request: Request,
    template_name: str,
    context: dict[str, object],
    *,
    viewer: User | None = None,
    status_code: int | None = None,
) -> HTMLResponse:
    payload = dict(context)
    payload["viewer"] = viewer
    response = templates.TemplateResponse(request, template_name, payload)
    if status_code is not None:
        response.status_code = status_code
    return response


@router.get("/", response_class=HTMLResponse, name="index")
async def index(
    request: Request,
    city: str | None = None,
    period: Period | None = None,
    page: int = Query(default=1, ge=1),
    viewer: User | None = Depends(current_user_optional),
    session: Session = Depends(get_session),
):
    schedules, pagination = list_schedules(
        session,
        city=city,
        periods=[period] if period else None,
        date_from=kst_today(),
        page=page,
    )
    context = {
        "schedules": [schedule_summary(session, schedule) for schedule in schedules],
        "pagination": pagination,
        "city": city or "",
        "period": period.value if period else "",
        "periods": list(Period),
    }
    return _render(request, "index.html", context, viewer=viewer)


@router.get("/schedules/{schedule_id}", response_class=HTMLResponse, name="schedule_page")
async def schedule_page(
    request: Request,
    schedule_id: int,
    viewer: User | None = Depends(current_user_optional),
    session: Session = Depends(get_session),
):
    try:
        schedule = get_live_schedule(session, schedule_id)
    except ActionError as exc:
        return _render(request, "not_found.html", {"message": exc.message}, viewer=viewer, status_code=404)
    context = {
        "schedule": schedule_detail(session, schedule, viewer),
        "comments": schedule_comments(session, schedule.id),
    }
    return _render(request, "schedule.html", context, viewer=viewer)


@router.get("/boards", response_class=HTMLResponse, name="board_page")
async def board_page(
    request: Request,
    board: str = "free",
    page: int = Query(default=1, ge=1),
    viewer: User | None = Depends(current_user_optional),
    session: Session = Depends(get_session),
):
    try:
        selected = resolve_board(session, board)
    except ActionError as exc:
        return _render(request, "not_found.html", {"message": exc.message}, viewer=viewer, status_code=404)
    rows, pagination = list_posts(session, selected, page=page)
    session.commit()
    context = {
        "board": selected,
        "posts": [{"post": post, "author": author} for post, author in rows],
        "pagination": pagination,
    }
    return _render(request, "board.html", context, viewer=viewer)


@router.get("/boards/{post_id}", response_class=HTMLResponse, name="post_page")
async def post_page(
    request: Request,
    post_id: int,
    viewer: User | None = Depends(current_user_optional),
    session: Session = Depends(get_session),
):
    try:
        post = view_post(session, post_id)
    except ActionError as exc:
        return _render(request, "not_found.html", {"message": exc.message}, viewer=viewer, status_code=404)
    context = {
        "post": post,
        "author": session.get(User, post.author_id),
        "comments": post_comments(session, post.id),
    }
    return _render(request, "post.html", context, viewer=viewer)
