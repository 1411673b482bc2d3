"""Server-rendered user directory with a parallel JSON API."""

from __future__ import annotations

from typing import Any

from .database import ConstraintViolation, Database, DatabaseError, resolve_database_path
from .models import User


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the combined web + API application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "ConstraintViolation",
    "Database",
    "DatabaseError",
    "User",
    "create_app",
    "resolve_database_path",
]
