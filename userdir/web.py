"""Server-rendered pages for browsing and editing the user directory."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from .database import DatabaseError
from .directory import NotFound, UserDirectory, ValidationError
from .models import User
from .uploads import UploadRejected

logger = logging.getLogger("userdir.web")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

UPLOADS_PATH = "/uploads"


def _format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%d %b %Y • %H:%M %Z")


def create_templates() -> Jinja2Templates:
    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.globals["uploads_path"] = UPLOADS_PATH
    templates.env.filters["datetime"] = _format_datetime
    return templates


def _form_text(value: object) -> Optional[str]:
    return value if isinstance(value, str) else None


def _redirect_home(**params: str) -> RedirectResponse:
    return RedirectResponse(f"/?{urlencode(params)}", status_code=status.HTTP_302_FOUND)


def render_not_found(
    templates: Jinja2Templates,
    request: Request,
    message: str = "Page not found",
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "404.html",
        {"message": message, "back_url": "/"},
        status_code=status.HTTP_404_NOT_FOUND,
    )


def render_error(
    templates: Jinja2Templates,
    request: Request,
    message: str,
    *,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        {"error": message, "back_url": "/"},
        status_code=status_code,
    )


def register_ui_routes(
    app: FastAPI,
    directory: UserDirectory,
    templates: Jinja2Templates,
) -> None:
    """Expose the HTML user directory on the provided FastAPI app."""

    router = APIRouter(include_in_schema=False)

    def _render_add_form(
        request: Request,
        *,
        error: Optional[str] = None,
        values: Optional[Dict[str, str]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "add_user.html",
            {"error": error, "values": values or {}},
            status_code=status_code,
        )

    def _render_edit_form(
        request: Request,
        user: User,
        *,
        error: Optional[str] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "edit_user.html",
            {"user": user, "error": error},
            status_code=status_code,
        )

    @router.get("/", response_class=HTMLResponse, name="list_users")
    async def list_users(request: Request):
        context = {
            "success": request.query_params.get("success"),
            "error": request.query_params.get("error"),
        }
        try:
            users = directory.list_users()
        except DatabaseError:
            logger.exception("Error fetching users")
            return templates.TemplateResponse(
                request,
                "index.html",
                {"users": [], "success": None, "error": "Failed to fetch users"},
            )
        return templates.TemplateResponse(request, "index.html", {"users": users, **context})

    @router.get("/add", response_class=HTMLResponse, name="add_user")
    async def add_user(request: Request):
        return _render_add_form(request)

    @router.get("/users/{user_id}/edit", response_class=HTMLResponse, name="edit_user")
    async def edit_user(request: Request, user_id: str):
        try:
            user = directory.get_user(user_id)
        except DatabaseError:
            logger.exception("Error fetching user %s for edit", user_id)
            return render_error(templates, request, "Failed to fetch user for editing")
        if user is None:
            return render_not_found(templates, request, "User not found")
        return _render_edit_form(request, user)

    @router.put("/users/{user_id}", response_class=HTMLResponse, name="update_user")
    async def update_user(request: Request, user_id: str):
        form = await request.form()
        remove_image = _form_text(form.get("removeImage")) == "true"

        try:
            upload = await directory.images.read(form.get("profileImage"))
            directory.update_user(
                user_id,
                _form_text(form.get("name")),
                _form_text(form.get("email")),
                upload,
                remove_image=remove_image,
            )
        except NotFound:
            return render_not_found(templates, request, "User not found")
        except (ValidationError, UploadRejected) as exc:
            logger.warning("Rejected update for user %s: %s", user_id, exc)
            user = directory.get_user(user_id)
            if user is None:
                return render_not_found(templates, request, "User not found")
            return _render_edit_form(
                request, user, error=str(exc), status_code=status.HTTP_400_BAD_REQUEST
            )
        except DatabaseError:
            logger.exception("Error updating user %s", user_id)
            user = directory.get_user(user_id)
            if user is None:
                return render_not_found(templates, request, "User not found")
            return _render_edit_form(
                request,
                user,
                error="Failed to update user. Please try again.",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return _redirect_home(success="User updated successfully")

    @router.get("/users/{user_id}", response_class=HTMLResponse, name="user_detail")
    async def user_detail(request: Request, user_id: str):
        try:
            user = directory.get_user(user_id)
        except DatabaseError:
            logger.exception("Error fetching user %s", user_id)
            return render_error(templates, request, "Failed to fetch user details")
        if user is None:
            return render_not_found(templates, request, "User not found")
        return templates.TemplateResponse(request, "user_detail.html", {"user": user})

    @router.post("/users", response_class=HTMLResponse, name="create_user")
    async def create_user(request: Request):
        form = await request.form()
        name = _form_text(form.get("name"))
        email = _form_text(form.get("email"))
        values = {"name": name or "", "email": email or ""}

        try:
            upload = await directory.images.read(form.get("profileImage"))
            directory.create_user(name, email, upload)
        except (ValidationError, UploadRejected) as exc:
            logger.warning("Rejected new user submission: %s", exc)
            return _render_add_form(
                request, error=str(exc), values=values, status_code=status.HTTP_400_BAD_REQUEST
            )
        except DatabaseError:
            logger.exception("Error creating user")
            return _render_add_form(
                request,
                error="Failed to create user. Please try again.",
                values=values,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return _redirect_home(success="User created successfully")

    app.include_router(router)


__all__ = [
    "TEMPLATE_DIR",
    "UPLOADS_PATH",
    "create_templates",
    "register_ui_routes",
    "render_error",
    "render_not_found",
]
