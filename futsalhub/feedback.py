"""Feature feedback and bug reports submitted by players."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session, select

from .auth import current_user
from .database import (
    BugReport,
    BugReportAttachment,
    BugSeverity,
    BugStatus,
    Feedback,
    FeedbackAttachment,
    FeedbackCategory,
    FeedbackStatus,
    User,
    get_session,
    paginate,
)
from .errors import ActionError, ok

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_ATTACHMENTS = 5
DEFAULT_PAGE_SIZE = 10


class AttachmentIn(BaseModel):
    url: str
    file_name: str
    file_size: int | None = None
    mime_type: str | None = None


class FeedbackCreate(BaseModel):
    title: str
    description: str
    category: FeedbackCategory = FeedbackCategory.OTHER
    attachments: list[AttachmentIn] = []


class BugReportCreate(BaseModel):
    title: str
    description: str
    steps_to_reproduce: str | None = None
    expected_behavior: str | None = None
    actual_behavior: str | None = None
    browser: str | None = None
    os: str | None = None
    device_type: str | None = None
    screen_size: str | None = None
    url: str | None = None
    severity: BugSeverity = BugSeverity.MEDIUM
    attachments: list[AttachmentIn] = []


def _required_text(title: str, description: str) -> tuple[str, str]:
    title = title.strip()
    description = description.strip()
    if not title or not description:
        raise ActionError("Title and description are required.")
    return title, description


def _check_attachments(attachments: list[AttachmentIn]) -> None:
    if len(attachments) > MAX_ATTACHMENTS:
        raise ActionError(f"Attach at most {MAX_ATTACHMENTS} files.")


def submit_feedback(session: Session, user: User, data: FeedbackCreate) -> Feedback:
    title, description = _required_text(data.title, data.description)
    _check_attachments(data.attachments)
    feedback = Feedback(author_id=user.id, title=title, description=description, category=data.category)
    session.add(feedback)
    session.flush()
    for attachment in data.attachments:
        session.add(FeedbackAttachment(feedback_id=feedback.id, **attachment.model_dump()))
    session.commit()
    session.refresh(feedback)
    logger.info("Feedback %s submitted by user %s", feedback.id, user.id)
    return feedback


def submit_bug_report(session: Session, user: User, data: BugReportCreate) -> BugReport:
    title, description = _required_text(data.title, data.description)
    _check_attachments(data.attachments)
    fields = data.model_dump(exclude={"title", "description", "attachments"})
    report = BugReport(reporter_id=user.id, title=title, description=description, **fields)
    session.add(report)
    session.flush()
    for attachment in data.attachments:
        session.add(BugReportAttachment(bug_report_id=report.id, **attachment.model_dump()))
    session.commit()
    session.refresh(report)
    logger.info("Bug report %s (%s) submitted by user %s", report.id, report.severity.value, user.id)
    return report


def my_feedback(
    session: Session,
    user: User,
    *,
    status: FeedbackStatus | None = None,
    category: FeedbackCategory | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[Feedback], dict[str, object]]:
    statement = select(Feedback).where(Feedback.author_id == user.id)
    if status:
        statement = statement.where(Feedback.status == status)
    if category:
        statement = statement.where(Feedback.category == category)
    return paginate(session, statement.order_by(Feedback.created_at.desc(), Feedback.id.desc()), page, limit)


def my_bug_reports(
    session: Session,
    user: User,
    *,
    status: BugStatus | None = None,
    severity: BugSeverity | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[BugReport], dict[str, object]]:
    statement = select(BugReport).where(BugReport.reporter_id == user.id)
    if status:
        statement = statement.where(BugReport.status == status)
    if severity:
        statement = statement.where(BugReport.severity == severity)
    return paginate(session, statement.order_by(BugReport.created_at.desc(), BugReport.id.desc()), page, limit)


def _feedback_payload(session: Session, feedback: Feedback) -> dict[str, object]:
    attachments = session.exec(
        select(FeedbackAttachment).where(FeedbackAttachment.feedback_id == feedback.id)
    ).all()
    return {
        "id": feedback.id,
        "title": feedback.title,
        "description": feedback.description,
        "category": feedback.category,
        "status": feedback.status,
        "created_at": feedback.created_at,
        "attachments": [{"url": item.url, "file_name": item.file_name} for item in attachments],
    }


def _bug_payload(session: Session, report: BugReport) -> dict[str, object]:
    attachments = session.exec(
        select(BugReportAttachment).where(BugReportAttachment.bug_report_id == report.id)
    ).all()
    return {
        "id": report.id,
        "title": report.title,
        "description": report.description,
        "severity": report.severity,
        "status": report.status,
        "created_at": report.created_at,
        "attachments": [{"url": item.url, "file_name": item.file_name} for item in attachments],
    }


@router.post("/api/feedback", name="submit_feedback")
async def submit_feedback_route(
    body: FeedbackCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    feedback = submit_feedback(session, user, body)
    return ok(_feedback_payload(session, feedback), message="Thanks for the feedback!", status_code=201)


@router.get("/api/feedback", name="my_feedback")
async def my_feedback_route(
    status: FeedbackStatus | None = None,
    category: FeedbackCategory | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=50),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    items, pagination = my_feedback(session, user, status=status, category=category, page=page, limit=limit)
    return ok({"feedback": [_feedback_payload(session, item) for item in items], "pagination": pagination})


@router.post("/api/bug-reports", name="submit_bug_report")
async def submit_bug_report_route(
    body: BugReportCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    report = submit_bug_report(session, user, body)
    return ok(_bug_payload(session, report), message="Thanks for reporting the bug!", status_code=201)


@router.get("/api/bug-reports", name="my_bug_reports")
async def my_bug_reports_route(
    status: BugStatus | None = None,
    severity: BugSeverity | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=50),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    items, pagination = my_bug_reports(session, user, status=status, severity=severity, page=page, limit=limit)
    return ok({"reports": [_bug_payload(session, item) for item in items], "pagination": pagination})
