from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from userdir.config import Settings
from userdir.database import Database
from userdir.service import create_app
from userdir.uploads import ImageStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "userdir.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def images(tmp_path: Path) -> ImageStore:
    return ImageStore(tmp_path / "uploads", max_bytes=1024)


@pytest.fixture()
def app(tmp_path: Path, database: Database, images: ImageStore) -> FastAPI:
    settings = Settings(
        database_url=f"sqlite:///{database.path}",
        upload_dir=images.directory,
        max_upload_bytes=images.max_bytes,
    )
    return create_app(settings, database=database, images=images)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def stored_images(images: ImageStore) -> list[str]:
    return sorted(path.name for path in images.directory.iterdir())
