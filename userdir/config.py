"""Configuration for the user directory service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import DEFAULT_MAX_CONNECTIONS
from .uploads import DEFAULT_MAX_UPLOAD_BYTES

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_DATABASE_URL = f"sqlite:///{PROJECT_ROOT / 'data' / 'userdir.sqlite3'}"
_SQLITE_URL_PREFIXES = ("sqlite:///", "sqlite://")

_ENV_KEYS: Dict[str, str] = {
    "host": "USERDIR_HOST",
    "port": "USERDIR_PORT",
    "database_url": "USERDIR_DATABASE_URL",
    "max_upload_bytes": "USERDIR_MAX_UPLOAD_BYTES",
    "upload_dir": "USERDIR_UPLOAD_DIR",
    "max_connections": "USERDIR_MAX_CONNECTIONS",
    "environment": "USERDIR_ENV",
}


@dataclass(frozen=True)
class Settings:
    """Settings resolved once at start-up and handed to the application factory."""

    host: str = "0.0.0.0"
    port: int = 3000
    database_url: str = DEFAULT_DATABASE_URL
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    upload_dir: Path = PROJECT_ROOT / "uploads"
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    environment: str = "development"

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw mapping data, e.g. a YAML document."""

        unknown = set(data.keys()) - set(_ENV_KEYS)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        settings = Settings()
        values: Dict[str, object] = {}
        if "host" in data:
            host = str(data["host"]).strip()
            if not host:
                raise ValueError("host must not be empty")
            values["host"] = host
        if "port" in data:
            values["port"] = _parse_int("port", data["port"], minimum=1, maximum=65535)
        if "database_url" in data:
            url = str(data["database_url"]).strip()
            if not url:
                raise ValueError("database_url must not be empty")
            values["database_url"] = _resolve_database_url(url, base_path)
        if "max_upload_bytes" in data:
            values["max_upload_bytes"] = _parse_int(
                "max_upload_bytes", data["max_upload_bytes"], minimum=1
            )
        if "upload_dir" in data:
            values["upload_dir"] = _resolve_path(str(data["upload_dir"]), base_path)
        if "max_connections" in data:
            values["max_connections"] = _parse_int(
                "max_connections", data["max_connections"], minimum=1
            )
        if "environment" in data:
            values["environment"] = str(data["environment"]).strip() or settings.environment
        return replace(settings, **values)


def _parse_int(key: str, value: object, *, minimum: int, maximum: Optional[int] = None) -> int:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be a whole number") from exc
    if number < minimum or (maximum is not None and number > maximum):
        bounds = f"between {minimum} and {maximum}" if maximum is not None else f"at least {minimum}"
        raise ValueError(f"{key} must be {bounds}")
    return number


def _resolve_path(raw: str, base_path: Path | None) -> Path:
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute() and base_path is not None:
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


def _resolve_database_url(url: str, base_path: Path | None) -> str:
    if base_path is None:
        return url
    for prefix in _SQLITE_URL_PREFIXES:
        if url.startswith(prefix):
            raw = url[len(prefix):]
            break
    else:
        if "://" in url:
            return url  # rejected by resolve_database_path
        raw = url
    if not raw:
        return url
    return f"sqlite:///{_resolve_path(raw, base_path)}"


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (PROJECT_ROOT / "config" / "userdir.yaml").resolve(strict=False)


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from the YAML file (if present), then apply environment overrides."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("USERDIR_CONFIG"))

    raw: Dict[str, object] = {}
    if path.is_file():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw.update(loaded)

    for key, env_name in _ENV_KEYS.items():
        value = env.get(env_name)
        if value is None or not value.strip():
            continue
        # relative to the working directory, not the config file
        if key == "upload_dir":
            value = str(_resolve_path(value, Path.cwd()))
        elif key == "database_url":
            value = _resolve_database_url(value.strip(), Path.cwd())
        raw[key] = value

    return Settings.from_dict(raw, base_path=path.parent)


__all__ = ["Settings", "load_settings", "resolve_config_path"]
