from __future__ import annotations

from pathlib import Path

import pytest

from userdir.config import Settings, load_settings, resolve_config_path
from userdir.database import resolve_database_path


def test_defaults_without_config_file(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "missing.yaml", environ={})

    assert settings == Settings()
    assert settings.port == 3000
    assert settings.max_upload_bytes == 5_000_000


def test_yaml_file_is_loaded_relative_to_its_directory(tmp_path: Path) -> None:
    config = tmp_path / "userdir.yaml"
    config.write_text(
        "port: 8080\n"
        "database_url: sqlite:////srv/userdir.sqlite3\n"
        "max_upload_bytes: 1000\n"
        "upload_dir: images\n",
        encoding="utf-8",
    )

    settings = load_settings(config, environ={})

    assert settings.port == 8080
    assert resolve_database_path(settings.database_url) == Path("/srv/userdir.sqlite3").resolve()
    assert settings.max_upload_bytes == 1000
    assert settings.upload_dir == (tmp_path / "images").resolve()


def test_environment_overrides_file(tmp_path: Path) -> None:
    config = tmp_path / "userdir.yaml"
    config.write_text("port: 8080\n", encoding="utf-8")

    settings = load_settings(
        config,
        environ={"USERDIR_PORT": "9090", "USERDIR_MAX_CONNECTIONS": "3", "USERDIR_ENV": "production"},
    )

    assert settings.port == 9090
    assert settings.max_connections == 3
    assert settings.environment == "production"


def test_config_path_from_environment(tmp_path: Path) -> None:
    config = tmp_path / "custom.yaml"
    config.write_text("port: 4000\n", encoding="utf-8")

    settings = load_settings(environ={"USERDIR_CONFIG": str(config)})

    assert settings.port == 4000
    assert resolve_config_path(None).name == "userdir.yaml"


@pytest.mark.parametrize(
    "environ",
    [
        {"USERDIR_PORT": "not-a-port"},
        {"USERDIR_PORT": "70000"},
        {"USERDIR_MAX_UPLOAD_BYTES": "0"},
        {"USERDIR_MAX_CONNECTIONS": "-1"},
    ],
)
def test_invalid_values_are_rejected(tmp_path: Path, environ) -> None:
    with pytest.raises(ValueError):
        load_settings(tmp_path / "missing.yaml", environ=environ)


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    config = tmp_path / "userdir.yaml"
    config.write_text("prot: 3000\n", encoding="utf-8")

    with pytest.raises(ValueError, match="prot"):
        load_settings(config, environ={})


def test_relative_database_url_in_file_uses_config_directory(tmp_path: Path) -> None:
    config = tmp_path / "config" / "userdir.yaml"
    config.parent.mkdir()
    config.write_text(
        "database_url: sqlite:///../data/userdir.sqlite3\nupload_dir: ../uploads\n",
        encoding="utf-8",
    )

    settings = load_settings(config, environ={})

    expected = (tmp_path / "data" / "userdir.sqlite3").resolve()
    assert resolve_database_path(settings.database_url) == expected
    assert settings.upload_dir == (tmp_path / "uploads").resolve()


def test_relative_paths_from_environment_use_working_directory(
    tmp_path: Path, monkeypatch
) -> None:
    config = tmp_path / "config" / "userdir.yaml"
    config.parent.mkdir()
    config.write_text("port: 8080\n", encoding="utf-8")
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    settings = load_settings(
        config,
        environ={"USERDIR_DATABASE_URL": "sqlite:///users.sqlite3", "USERDIR_UPLOAD_DIR": "images"},
    )

    assert resolve_database_path(settings.database_url) == (workdir / "users.sqlite3").resolve()
    assert settings.upload_dir == (workdir / "images").resolve()
