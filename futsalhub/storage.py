from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import BinaryIO
from uuid import uuid4

from PIL import Image
from pillow_heif import read_heif

from .database import UPLOAD_DIR

GCS_PHOTO_BUCKET = os.getenv("GCS_PHOTO_BUCKET")
GCS_PHOTO_BASE_URL = os.getenv("GCS_PHOTO_BASE_URL")
GCS_PHOTO_CACHE_CONTROL = os.getenv("GCS_PHOTO_CACHE_CONTROL", "public, max-age=86400")

ALLOWED_IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".heic", ".heif"}

_GCS_IDENTIFIER_PREFIX = "gcs:"

logger = logging.getLogger(__name__)


@dataclass
class PreparedImage:
    data: bytes
    original_name: str
    suffix: str
    content_type: str


def gcs_photos_enabled() -> bool:
    """Return True when a Google Cloud Storage bucket is configured for photos."""
    return bool(GCS_PHOTO_BUCKET)


def make_gcs_identifier(object_name: str) -> str:
    """Encode an object name so we can store it next to local filenames."""
    return f"{_GCS_IDENTIFIER_PREFIX}{object_name.lstrip('/')}"


def is_gcs_identifier(value: str) -> bool:
    return value.startswith(_GCS_IDENTIFIER_PREFIX)


def extract_object_name(identifier: str) -> str:
    if not is_gcs_identifier(identifier):
        raise ValueError("Identifier does not reference GCS content.")
    return identifier[len(_GCS_IDENTIFIER_PREFIX) :].lstrip("/")


def gcs_public_url(object_name: str) -> str:
    if not GCS_PHOTO_BUCKET:
        raise RuntimeError("GCS_PHOTO_BUCKET is not configured.")
    base_url = (GCS_PHOTO_BASE_URL or f"https://storage.googleapis.com/{GCS_PHOTO_BUCKET}").rstrip("/")
    return f"{base_url}/{object_name.lstrip('/')}"


def public_url(identifier: str) -> str:
    """Resolve a stored identifier to a URL the browser can load."""
    if is_gcs_identifier(identifier):
        return gcs_public_url(extract_object_name(identifier))
    if identifier.startswith(("http://", "https://", "/")):
        return identifier
    return f"/static/uploads/{identifier}"


def _gcs_bucket():
    try:
        from google.cloud import storage
    except ImportError as exc:  # pragma: no cover - dependency absent in some envs
        raise RuntimeError(
            "google-cloud-storage is required to upload photos to GCS."
        ) from exc

    client = storage.Client()
    return client.bucket(GCS_PHOTO_BUCKET)


def upload_photo_stream(handle: BinaryIO, *, object_name: str, content_type: str) -> str:
    """Upload the provided file-like object to the configured GCS bucket."""
    if not gcs_photos_enabled():
        raise RuntimeError("GCS photo storage is not enabled.")

    bucket = _gcs_bucket()
    blob = bucket.blob(object_name.lstrip("/"))
    blob.upload_from_file(handle, content_type=content_type)
    if GCS_PHOTO_CACHE_CONTROL:
        blob.cache_control = GCS_PHOTO_CACHE_CONTROL
        blob.patch()
    return gcs_public_url(object_name)


def prepare_image(data: bytes, original_name: str | None, content_type: str | None) -> PreparedImage:
    """Validate an uploaded image and convert HEIC/HEIF files to JPEG.

    Raises ``ValueError`` with a user-facing message when the upload is not
    an image we can store.
    """
    original_name = original_name or "upload.png"
    content_type = (content_type or "").lower()
    suffix = Path(original_name).suffix.lower() or ".png"

    if not content_type.startswith("image/"):
        raise ValueError(f"{original_name}: only image uploads are allowed.")
    if suffix not in ALLOWED_IMAGE_SUFFIXES:
        raise ValueError(f"{original_name}: use PNG, JPG, GIF, HEIC, or WebP images.")

    if suffix in {".heic", ".heif"}:
        try:
            heif_file = read_heif(data)
            img = Image.frombytes(heif_file.mode, heif_file.size, heif_file.data, "raw")
            buffer = BytesIO()
            img.save(buffer, format="JPEG")
        except Exception as exc:
            raise ValueError(f"{original_name}: could not convert HEIC image.") from exc
        return PreparedImage(
            data=buffer.getvalue(),
            original_name=f"{Path(original_name).stem}.jpg",
            suffix=".jpg",
            content_type="image/jpeg",
        )

    if suffix in {".jpg", ".jpeg"}:
        content_type = "image/jpeg"
    return PreparedImage(
        data=data,
        original_name=original_name,
        suffix=suffix,
        content_type=content_type or "image/jpeg",
    )


def store_image(image: PreparedImage, *, prefix: str) -> str:
    """Persist a prepared image and return the identifier to save in the database."""
    object_basename = f"{uuid4().hex}{image.suffix}"
    if gcs_photos_enabled():
        object_name = f"{prefix.strip('/')}/{object_basename}"
        upload_photo_stream(BytesIO(image.data), object_name=object_name, content_type=image.content_type)
        return make_gcs_identifier(object_name)

    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    destination = UPLOAD_DIR / object_basename
    with destination.open("wb") as buffer:
        buffer.write(image.data)
    return object_basename


def delete_image(identifier: str) -> None:
    """Remove a stored image; missing files are ignored."""
    if is_gcs_identifier(identifier):
        if not gcs_photos_enabled():
            logger.warning("Cannot delete %s without a configured bucket.", identifier)
            return
        bucket = _gcs_bucket()
        blob = bucket.blob(extract_object_name(identifier))
        if blob.exists():
            blob.delete()
        return
    if identifier.startswith(("http://", "https://", "/")):
        return
    path = UPLOAD_DIR / Path(identifier).name
    if path.exists():
        path.unlink()
