"""JSON API over the user directory."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from .database import DatabaseError
from .directory import NotFound, UserDirectory, ValidationError
from .models import User
from .uploads import ImageUpload, UploadRejected

logger = logging.getLogger("userdir.api")

USER_NOT_FOUND = "User not found"
INTERNAL_ERROR = "Internal server error"


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    profile_image: Optional[str]
    created_at: datetime
    updated_at: datetime


class UpdateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    remove_image: bool = Field(default=False, alias="removeImage")


class DeleteUserResponse(BaseModel):
    message: str


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        profile_image=user.profile_image,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _form_text(value: object) -> Optional[str]:
    return value if isinstance(value, str) else None


async def _read_update_request(
    request: Request, directory: UserDirectory
) -> tuple[UpdateUserRequest, Optional[ImageUpload]]:
    """Parse a JSON body or a (multipart) form into an update request and optional image."""

    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type == "application/json":
        try:
            body = await request.json()
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON: {exc!s}") from exc
        if not isinstance(body, dict):
            raise ValidationError("JSON body must be an object")
        try:
            return UpdateUserRequest.model_validate(body), None
        except PydanticValidationError as exc:
            raise ValidationError("Invalid user details") from exc

    if content_type in {"multipart/form-data", "application/x-www-form-urlencoded"}:
        form = await request.form()
        upload = await directory.images.read(form.get("profileImage"))
        payload = UpdateUserRequest(
            name=_form_text(form.get("name")),
            email=_form_text(form.get("email")),
            remove_image=_form_text(form.get("removeImage")) == "true",
        )
        return payload, upload

    raise ValidationError(
        "Content-Type must be application/json, multipart/form-data or application/x-www-form-urlencoded"
    )


def register_api_routes(app: FastAPI, directory: UserDirectory) -> None:
    """Expose the JSON endpoints under ``/api``."""

    router = APIRouter(prefix="/api")

    @router.get("/users", response_model=List[UserResponse])
    async def list_users():
        try:
            users = directory.list_users()
        except DatabaseError:
            logger.exception("Error fetching users")
            return error_response(INTERNAL_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR)
        return [user_to_response(user) for user in users]

    @router.get("/users/{user_id}", response_model=UserResponse)
    async def read_user(user_id: str):
        try:
            user = directory.get_user(user_id)
        except DatabaseError:
            logger.exception("Error fetching user %s", user_id)
            return error_response(INTERNAL_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR)
        if user is None:
            return error_response(USER_NOT_FOUND, status.HTTP_404_NOT_FOUND)
        return user_to_response(user)

    @router.put("/users/{user_id}", response_model=UserResponse)
    async def update_user(user_id: str, request: Request):
        try:
            payload, upload = await _read_update_request(request, directory)
            updated = directory.update_user(
                user_id,
                payload.name,
                payload.email,
                upload,
                remove_image=payload.remove_image,
            )
        except NotFound:
            return error_response(USER_NOT_FOUND, status.HTTP_404_NOT_FOUND)
        except (ValidationError, UploadRejected) as exc:
            return error_response(str(exc), status.HTTP_400_BAD_REQUEST)
        except DatabaseError:
            logger.exception("Error updating user %s", user_id)
            return error_response(INTERNAL_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR)
        return user_to_response(updated)

    @router.delete("/users/{user_id}", response_model=DeleteUserResponse)
    async def delete_user(user_id: str):
        try:
            directory.delete_user(user_id)
        except NotFound:
            return error_response(USER_NOT_FOUND, status.HTTP_404_NOT_FOUND)
        except DatabaseError:
            logger.exception("Error deleting user %s", user_id)
            return error_response(INTERNAL_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR)
        return DeleteUserResponse(message="User deleted successfully")

    app.include_router(router)


__all__ = [
    "DeleteUserResponse",
    "UpdateUserRequest",
    "UserResponse",
    "error_response",
    "register_api_routes",
    "user_to_response",
]
