from __future__ import annotations

import logging
import os
import re
import secrets
import time
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from immobilier.config import uploads_dir

logger = logging.getLogger(__name__)


_IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp"}
_CONTENT_TYPE_EXTS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class PhotoStoreError(RuntimeError):
    pass


def ensure_uploads_dir() -> str:
    base = uploads_dir()
    os.makedirs(base, exist_ok=True)
    return base


def safe_upload_ext(*, filename: str, content_type: str) -> str:
    """
    Keep the original extension when it looks sane, else derive one from the content type.
    """
    ext = os.path.splitext((filename or "").strip())[1].lower()
    if ext and len(ext) <= 12 and re.match(r"^\.[a-z0-9]+$", ext):
        return ext
    return _CONTENT_TYPE_EXTS.get((content_type or "").lower().strip(), ".jpg")


def is_image_upload(*, filename: str, content_type: str) -> bool:
    ct = (content_type or "").lower().strip()
    if ct.startswith("image/"):
        return True
    return os.path.splitext(filename or "")[1].lower() in _IMAGE_EXTS


def looks_like_image(raw: bytes) -> bool:
    if not raw:
        return False
    try:
        with Image.open(BytesIO(raw)) as img:
            img.verify()
        return True
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return False


def new_photo_filename(ext: str) -> str:
    # Millisecond timestamp keeps names sortable; the random suffix keeps same-millisecond uploads apart.
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}{ext}"


def photo_path(filename: str) -> str | None:
    """
    Absolute path for a stored photo, or None if `filename` tries to escape the uploads dir.
    """
    name = (filename or "").strip().replace("\\", "/")
    if not name or "/" in name or name in {".", ".."}:
        return None
    return os.path.join(uploads_dir(), name)


def store_photos(items: list[tuple[bytes, str]]) -> list[str]:
    """
    Write each (raw bytes, extension) pair under a fresh unique name.

    Returns the filenames in input order. If any write fails, files already written
    by this call are removed before PhotoStoreError is raised.
    """
    base = ensure_uploads_dir()
    written: list[str] = []
    for raw, ext in items:
        name = new_photo_filename(ext)
        while os.path.exists(os.path.join(base, name)):
            name = new_photo_filename(ext)
        try:
            with open(os.path.join(base, name), "wb") as f:
                f.write(raw)
        except OSError as exc:
            logger.error("Failed to store photo %s: %s", name, exc)
            remove_photos(written)
            raise PhotoStoreError("Failed to store uploaded photos") from exc
        written.append(name)
    return written


def remove_photos(filenames: list[str]) -> int:
    """
    Best-effort delete of stored photos. Returns how many files were removed.
    """
    removed = 0
    for name in filenames or []:
        path = photo_path(name)
        if not path:
            continue
        try:
            os.remove(path)
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Could not remove photo %s: %s", name, exc)
    return removed
