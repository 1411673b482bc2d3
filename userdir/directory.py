"""Create, edit and delete flows that keep user rows and image files in step."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .database import Database, DatabaseError
from .models import User
from .uploads import ImageStore, ImageUpload

logger = logging.getLogger("userdir.directory")


class ValidationError(ValueError):
    """Raised when submitted user details are incomplete or conflict with another user."""


class NotFound(LookupError):
    """Raised when the requested user does not exist."""


@dataclass(frozen=True)
class ImageTransition:
    """Result of reconciling an edit with the user's current image."""

    profile_image: Optional[str]
    delete: Tuple[str, ...] = ()


def resolve_image_transition(
    current: Optional[str],
    new_image: Optional[str],
    remove_requested: bool,
) -> ImageTransition:
    """Decide which image a user keeps after an edit and which files go away.

    * remove requested with an existing image: drop it, reference becomes ``None``
    * new image with an existing one (remove not requested): drop the old one
    * new image: it becomes the reference
    * otherwise the reference is left alone
    """

    profile_image = current
    delete: list[str] = []

    if remove_requested:
        if current:
            delete.append(current)
        profile_image = None

    if new_image:
        if current and not remove_requested:
            delete.append(current)
        profile_image = new_image

    return ImageTransition(profile_image=profile_image, delete=tuple(delete))


_SQLITE_INTEGER_MIN = -(2**63)
_SQLITE_INTEGER_MAX = 2**63 - 1


def parse_user_id(value: object) -> Optional[int]:
    """Return the id as an int, or ``None`` when it cannot name a stored row."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        numeric_id = value
    else:
        text = str(value)
        digits = text[1:] if text.startswith("-") else text
        if not (digits.isascii() and digits.isdigit()):
            return None
        numeric_id = int(text)
    if not _SQLITE_INTEGER_MIN <= numeric_id <= _SQLITE_INTEGER_MAX:
        return None
    return numeric_id


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class UserDirectory:
    """Coordinates the database and the image store for each user mutation."""

    def __init__(self, database: Database, images: ImageStore) -> None:
        self._database = database
        self._images = images

    @property
    def database(self) -> Database:
        return self._database

    @property
    def images(self) -> ImageStore:
        return self._images

    def list_users(self) -> list[User]:
        return self._database.list_users()

    def get_user(self, user_id: object) -> Optional[User]:
        numeric_id = parse_user_id(user_id)
        if numeric_id is None:
            return None
        return self._database.get_user(numeric_id)

    def _discard(self, name: Optional[str]) -> None:
        if name:
            self._images.delete(name)

    def create_user(
        self,
        name: Optional[str],
        email: Optional[str],
        upload: Optional[ImageUpload] = None,
    ) -> User:
        cleaned_name = _clean(name)
        cleaned_email = _clean(email)
        if not cleaned_name or not cleaned_email:
            raise ValidationError("Name and email are required")

        if self._database.get_user_by_email(cleaned_email) is not None:
            raise ValidationError("User with this email already exists")

        profile_image = self._images.save(upload) if upload is not None else None
        try:
            user = self._database.create_user(cleaned_name, cleaned_email, profile_image)
        except DatabaseError:
            self._discard(profile_image)
            raise

        logger.info("User created: #%s <%s>", user.id, user.email)
        return user

    def update_user(
        self,
        user_id: object,
        name: Optional[str],
        email: Optional[str],
        upload: Optional[ImageUpload] = None,
        *,
        remove_image: bool = False,
    ) -> User:
        numeric_id = parse_user_id(user_id)
        cleaned_name = _clean(name)
        cleaned_email = _clean(email)
        if not cleaned_name or not cleaned_email:
            raise ValidationError("Name and email are required")

        existing = self._database.get_user_by_email(cleaned_email)
        if existing is not None and existing.id != numeric_id:
            raise ValidationError("Email address is already in use by another user")

        current = self._database.get_user(numeric_id) if numeric_id is not None else None
        if current is None:
            raise NotFound("User not found")

        new_image = self._images.save(upload) if upload is not None else None
        transition = resolve_image_transition(current.profile_image, new_image, remove_image)
        for name_to_delete in transition.delete:
            self._images.delete(name_to_delete)

        try:
            updated = self._database.update_user(
                current.id, cleaned_name, cleaned_email, transition.profile_image
            )
        except DatabaseError:
            self._discard(new_image)
            raise

        if updated is None:
            self._discard(new_image)
            raise NotFound("User not found")

        logger.info("User updated: #%s <%s>", updated.id, updated.email)
        return updated

    def delete_user(self, user_id: object) -> User:
        numeric_id = parse_user_id(user_id)
        deleted = self._database.delete_user(numeric_id) if numeric_id is not None else None
        if deleted is None:
            raise NotFound("User not found")

        if deleted.profile_image:
            self._images.delete(deleted.profile_image)

        logger.info("User deleted: #%s <%s>", deleted.id, deleted.email)
        return deleted


__all__ = [
    "ImageTransition",
    "NotFound",
    "UserDirectory",
    "ValidationError",
    "parse_user_id",
    "resolve_image_transition",
]
