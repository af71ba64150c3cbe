"""Load local image files into inline attachments for the next user turn."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path

from .exceptions import AttachmentError
from .models import ImageAttachment

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp"})


def _is_regular_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError:
        return False


def load_image(raw_path: str, *, max_bytes: int) -> ImageAttachment:
    """Validate and read an image file.

    Args:
        raw_path: Absolute, relative, or ``~``-prefixed path
        max_bytes: Largest file accepted

    Raises:
        AttachmentError: When the path is missing, not an image, too large,
            or unreadable
    """
    path = Path(raw_path.strip()).expanduser()
    if not raw_path.strip() or not _is_regular_file(path):
        raise AttachmentError(f"Image not found: {raw_path}")

    extension = path.suffix.lower()
    if extension not in IMAGE_EXTENSIONS:
        allowed = ", ".join(sorted(IMAGE_EXTENSIONS))
        raise AttachmentError(f"Unsupported image type {extension or '(none)'}. Allowed: {allowed}")

    try:
        size = path.stat().st_size
    except OSError as exc:
        raise AttachmentError("Unable to read image size.") from exc
    if size > max_bytes:
        max_mb = max_bytes / (1024 * 1024)
        raise AttachmentError(f"Image too large (max {max_mb:.1f}MB)")

    try:
        data = path.read_bytes()
    except OSError as exc:
        raise AttachmentError(f"Unable to read image: {exc}") from exc

    mime_type, _ = mimetypes.guess_type(path.name)
    LOGGER.info(
        "attachment.image.loaded",
        extra={"event": "attachment.image.loaded", "bytes": size},
    )
    return ImageAttachment(
        data=data,
        mime_type=mime_type or f"image/{extension.lstrip('.')}",
        filename=path.name,
    )
