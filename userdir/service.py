"""Application factory that serves the directory pages and the JSON API."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional
from urllib.parse import parse_qs

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from .api import error_response, register_api_routes
from .config import Settings
from .database import Database, resolve_database_path
from .directory import UserDirectory
from .uploads import ImageStore
from .web import UPLOADS_PATH, create_templates, register_ui_routes, render_error, render_not_found

logger = logging.getLogger("userdir.service")

STATIC_DIR = Path(__file__).resolve().parent / "static"

_PROCESS_STARTED = time.monotonic()


class MethodOverrideMiddleware:
    """Let HTML forms reach PUT/PATCH/DELETE routes via ``?_method=``."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        param: str = "_method",
        allowed_methods: Iterable[str] = ("PUT", "PATCH", "DELETE"),
    ) -> None:
        self.app = app
        self.param = param
        self.allowed_methods = frozenset(method.upper() for method in allowed_methods)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["method"] == "POST":
            query = parse_qs(scope.get("query_string", b"").decode("latin-1"))
            override = (query.get(self.param) or [""])[0].strip().upper()
            if override in self.allowed_methods:
                scope = dict(scope)
                scope["method"] = override
        await self.app(scope, receive, send)


def _is_api_request(request: Request) -> bool:
    path = request.url.path
    return path == "/api" or path.startswith("/api/")


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    images: Optional[ImageStore] = None,
    initialize_database: bool = False,
) -> FastAPI:
    """Create the combined HTML + JSON application."""

    if settings is None:
        settings = Settings()

    if database is None:
        db_path = resolve_database_path(settings.database_url)
        database = Database(db_path, max_connections=settings.max_connections)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if images is None:
        images = ImageStore(settings.upload_dir, max_bytes=settings.max_upload_bytes)

    directory = UserDirectory(database, images)
    templates = create_templates()

    app = FastAPI(
        title="User Directory",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(MethodOverrideMiddleware)
    app.state.settings = settings
    app.state.database = database
    app.state.images = images
    app.state.directory = directory
    app.state.templates = templates

    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
    app.mount(UPLOADS_PATH, StaticFiles(directory=str(images.directory)), name="uploads")

    @app.get("/health", include_in_schema=False)
    async def healthcheck() -> Dict[str, Any]:
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": time.monotonic() - _PROCESS_STARTED,
            "database": "connected" if database.ping() else "disconnected",
        }

    register_api_routes(app, directory)
    register_ui_routes(app, directory, templates)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code != status.HTTP_404_NOT_FOUND:
            return await http_exception_handler(request, exc)
        if _is_api_request(request):
            return error_response("Not found", status.HTTP_404_NOT_FOUND)
        return render_not_found(templates, request)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Application error while handling %s %s", request.method, request.url.path)
        if _is_api_request(request):
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal server error"},
            )
        return render_error(templates, request, "Something went wrong!")

    return app


__all__ = ["MethodOverrideMiddleware", "create_app"]
