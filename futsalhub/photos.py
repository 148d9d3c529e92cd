"""Schedule photo galleries backed by local disk or Google Cloud Storage."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile
from sqlmodel import Session, func, select

from .auth import current_user
from .database import SchedulePhoto, User, get_session
from .errors import ActionError, Forbidden, NotFound, ok
from .schedules import get_live_schedule
from .storage import PreparedImage, delete_image, prepare_image, public_url, store_image
from .users import user_summary

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_PHOTOS_PER_UPLOAD = 10
MAX_PHOTOS_PER_SCHEDULE = 50


def photo_payload(photo: SchedulePhoto, uploader: User | None = None) -> dict[str, object]:
    return {
        "id": photo.id,
        "url": public_url(photo.filename),
        "original_name": photo.original_name,
        "uploader": user_summary(uploader),
        "created_at": photo.created_at,
    }


def photo_count(session: Session, schedule_id: int) -> int:
    return int(
        session.exec(
            select(func.count()).select_from(SchedulePhoto).where(SchedulePhoto.schedule_id == schedule_id)
        ).one()
    )


def save_schedule_photos(
    session: Session, user: User, schedule_id: int, images: list[PreparedImage]
) -> tuple[list[SchedulePhoto], list[str]]:
    """Store each image and record it; failures are collected per file."""
    schedule = get_live_schedule(session, schedule_id)
    if not images:
        raise ActionError("Select at least one image to upload.")
    if len(images) > MAX_PHOTOS_PER_UPLOAD:
        raise ActionError(f"You can upload up to {MAX_PHOTOS_PER_UPLOAD} photos at once.")
    existing = photo_count(session, schedule.id)
    if existing + len(images) > MAX_PHOTOS_PER_SCHEDULE:
        raise ActionError(
            f"A schedule can hold at most {MAX_PHOTOS_PER_SCHEDULE} photos ({existing} already uploaded)."
        )

    saved: list[SchedulePhoto] = []
    failures: list[str] = []
    for image in images:
        try:
            identifier = store_image(image, prefix=f"schedules/{schedule.id}/photos")
            photo = SchedulePhoto(
                schedule_id=schedule.id,
                uploader_id=user.id,
                filename=identifier,
                original_name=image.original_name,
            )
            session.add(photo)
            session.commit()
            session.refresh(photo)
            saved.append(photo)
        except RuntimeError as exc:
            logger.exception("Photo upload failed: %s", exc)
            failures.append(f"{image.original_name}: {exc}")
            session.rollback()
        except Exception:
            logger.exception("Unexpected error while uploading photo %s.", image.original_name)
            failures.append(f"{image.original_name}: we hit a snag saving that photo. Please try again.")
            session.rollback()
    return saved, failures


def delete_schedule_photo(session: Session, user: User, photo_id: int) -> None:
    photo = session.get(SchedulePhoto, photo_id)
    if not photo:
        raise NotFound("Photo not found.")
    if photo.uploader_id != user.id:
        raise Forbidden("Only the uploader can delete this photo.")
    identifier = photo.filename
    session.delete(photo)
    session.commit()
    try:
        delete_image(identifier)
    except (OSError, RuntimeError):
        logger.exception("Could not remove stored file for photo %s.", photo_id)


@router.get("/api/schedules/{schedule_id}/photos", name="schedule_photos")
async def schedule_photos(schedule_id: int, session: Session = Depends(get_session)):
    schedule = get_live_schedule(session, schedule_id)
    rows = session.exec(
        select(SchedulePhoto, User)
        .join(User, User.id == SchedulePhoto.uploader_id)
        .where(SchedulePhoto.schedule_id == schedule.id)
        .order_by(SchedulePhoto.created_at.desc(), SchedulePhoto.id.desc())
    ).all()
    return ok([photo_payload(photo, uploader) for photo, uploader in rows])


@router.post("/api/schedules/{schedule_id}/photos", name="upload_schedule_photos")
async def upload_schedule_photos(
    schedule_id: int,
    images: list[UploadFile] = File(...),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    if len(images) > MAX_PHOTOS_PER_UPLOAD:
        raise ActionError(f"You can upload up to {MAX_PHOTOS_PER_UPLOAD} photos at once.")
    prepared: list[PreparedImage] = []
    errors: list[str] = []
    for image in images:
        try:
            prepared.append(prepare_image(await image.read(), image.filename, image.content_type))
        except ValueError as exc:
            errors.append(str(exc))
    if not prepared:
        raise ActionError(" ".join(errors) or "Select at least one image to upload.")

    saved, failures = save_schedule_photos(session, user, schedule_id, prepared)
    errors.extend(failures)
    if not saved:
        raise ActionError(" ".join(errors), status_code=500)
    status_code = 207 if errors else 201
    return ok(
        {"photos": [photo_payload(photo, user) for photo in saved], "errors": errors},
        status_code=status_code,
    )


@router.delete("/api/photos/{photo_id}", name="delete_schedule_photo")
async def delete_schedule_photo_route(
    photo_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    delete_schedule_photo(session, user, photo_id)
    return ok(None, message="Photo deleted.")
