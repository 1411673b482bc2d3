"""Storage for uploaded profile images."""
from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger("userdir.uploads")

DEFAULT_MAX_UPLOAD_BYTES = 5_000_000

ALLOWED_EXTENSIONS = frozenset({".jpeg", ".jpg", ".png", ".gif", ".webp"})
ALLOWED_CONTENT_TYPES = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
)

IMAGE_TYPE_ERROR = "Only image files (JPEG, JPG, PNG, GIF, WEBP) are allowed."


class UploadRejected(ValueError):
    """Raised when an uploaded file is not an accepted image."""


@dataclass(frozen=True)
class ImageUpload:
    """An uploaded file as received from the client, fully read into memory."""

    filename: str
    content_type: str
    data: bytes


def _format_megabytes(size: int) -> str:
    return f"{size / 1_000_000:g}MB"


def _is_upload_file(obj: object) -> bool:
    return (
        hasattr(obj, "read")
        and callable(getattr(obj, "read", None))
        and hasattr(obj, "filename")
    )


class ImageStore:
    """Flat directory of profile images named by generated filenames."""

    def __init__(self, directory: Path, *, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> None:
        if max_bytes < 1:
            raise ValueError("max_bytes must be greater than zero")
        self._directory = directory
        self._max_bytes = max_bytes
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def too_large_message(self) -> str:
        return f"File too large. Maximum size is {_format_megabytes(self._max_bytes)}."

    def validate(self, filename: str, content_type: str) -> None:
        """Reject anything whose extension or declared content type is not an image."""

        extension = Path(filename).suffix.lower()
        mimetype = (content_type or "").split(";")[0].strip().lower()
        if extension not in ALLOWED_EXTENSIONS or mimetype not in ALLOWED_CONTENT_TYPES:
            raise UploadRejected(IMAGE_TYPE_ERROR)

    async def read(self, value: object) -> Optional[ImageUpload]:
        """Read an uploaded form field, returning ``None`` when no file was sent.

        The type check runs before the body is read; the size check reads at
        most one byte past the limit.
        """

        if value is None or not _is_upload_file(value):
            return None
        filename = getattr(value, "filename", None) or ""
        if not filename:
            return None
        content_type = getattr(value, "content_type", None) or ""
        self.validate(filename, content_type)

        data = await value.read(self._max_bytes + 1)  # type: ignore[attr-defined]
        if len(data) > self._max_bytes:
            raise UploadRejected(self.too_large_message())
        return ImageUpload(filename=filename, content_type=content_type, data=data)

    @staticmethod
    def generate_filename(original: str) -> str:
        millis = int(time.time() * 1000)
        suffix = secrets.randbelow(1_000_000_000)
        return f"profile-{millis}-{suffix}{Path(original).suffix}"

    def path_for(self, name: str) -> Path:
        if not name or Path(name).name != name or name in {".", ".."}:
            raise ValueError(f"Invalid image name: {name!r}")
        return self._directory / name

    def save(self, upload: ImageUpload) -> str:
        """Write an accepted upload to disk and return its generated name."""

        self.validate(upload.filename, upload.content_type)
        if len(upload.data) > self._max_bytes:
            raise UploadRejected(self.too_large_message())

        name = self.generate_filename(upload.filename)
        self.path_for(name).write_bytes(upload.data)
        logger.info("Stored profile image %s (%d bytes)", name, len(upload.data))
        return name

    def delete(self, name: str) -> bool:
        """Remove an image. A file that is already gone is not an error."""

        try:
            self.path_for(name).unlink()
        except FileNotFoundError:
            logger.warning("Profile image %s was already missing", name)
            return False
        logger.info("Deleted profile image %s", name)
        return True


__all__ = [
    "ALLOWED_CONTENT_TYPES",
    "ALLOWED_EXTENSIONS",
    "IMAGE_TYPE_ERROR",
    "ImageStore",
    "ImageUpload",
    "UploadRejected",
]
