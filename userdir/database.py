"""SQLite-backed persistence for directory users."""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from .models import User

DEFAULT_MAX_CONNECTIONS = 10
CONNECTION_WAIT_SECONDS = 30.0

_SQLITE_URL_PREFIXES = ("sqlite:///", "sqlite://")


class DatabaseError(RuntimeError):
    """Raised when the database cannot complete an operation."""


class ConstraintViolation(DatabaseError):
    """Raised when a write would break a table constraint (e.g. duplicate email)."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the directory database.

    Accepts either a filesystem path or a ``sqlite:///`` connection string.
    """

    if env_value:
        value = env_value.strip()
        if "://" in value:
            prefix = next((p for p in _SQLITE_URL_PREFIXES if value.startswith(p)), None)
            if prefix is None:
                raise ValueError(
                    "Database URL must use the sqlite scheme (e.g. sqlite:///data/userdir.sqlite3)"
                )
            value = value[len(prefix):]
            if not value:
                raise ValueError("Database URL must include a file path")
        return Path(value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "userdir.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _first(rows: List[sqlite3.Row]) -> Optional[sqlite3.Row]:
    # RETURNING cursors are drained before the transaction commits.
    return rows[0] if rows else None


class Database:
    """Simple wrapper around SQLite for persisting directory users.

    Every public method runs a single statement on a connection of its own.
    At most ``max_connections`` connections are open at any one time.
    """

    def __init__(self, path: Path, *, max_connections: int = DEFAULT_MAX_CONNECTIONS) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        _ensure_directory(path)
        self._path = path
        self._slots = threading.BoundedSemaphore(max_connections)

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction, releasing it on every exit path."""

        if not self._slots.acquire(timeout=CONNECTION_WAIT_SECONDS):
            raise DatabaseError("Timed out waiting for a database connection")
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            self._slots.release()
            raise DatabaseError(f"Unable to open database: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolation(str(exc)) from exc
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc
        finally:
            conn.close()
            self._slots.release()

    def initialize(self) -> None:
        """Create the users table if it does not already exist."""

        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT UNIQUE NOT NULL,
                    profile_image TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
                """
            )

    def ping(self) -> bool:
        """Run a trivial query to verify the database is reachable."""

        try:
            with self._connection() as conn:
                conn.execute("SELECT 1").fetchone()
        except DatabaseError:
            return False
        return True

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, name: str, email: str, profile_image: Optional[str] = None) -> User:
        """Insert a new user. Raises :class:`ConstraintViolation` for a duplicate email."""

        timestamp = _serialize_datetime(_current_timestamp())
        with self._connection() as conn:
            row = _first(conn.execute(
                """
                INSERT INTO users (name, email, profile_image, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                RETURNING *
                """,
                (name, email, profile_image, timestamp, timestamp),
            ).fetchall())
        return self._row_to_user(row)

    def list_users(self) -> List[User]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def update_user(
        self,
        user_id: int,
        name: str,
        email: str,
        profile_image: Optional[str],
    ) -> Optional[User]:
        """Overwrite the mutable fields of a user and refresh ``updated_at``.

        Returns ``None`` when no user has the given id.
        """

        with self._connection() as conn:
            row = _first(conn.execute(
                """
                UPDATE users
                   SET name = ?, email = ?, profile_image = ?, updated_at = ?
                 WHERE id = ?
                RETURNING *
                """,
                (name, email, profile_image, _serialize_datetime(_current_timestamp()), user_id),
            ).fetchall())
        if row is None:
            return None
        return self._row_to_user(row)

    def delete_user(self, user_id: int) -> Optional[User]:
        """Remove a user and return the deleted record, or ``None`` if it did not exist."""

        with self._connection() as conn:
            row = _first(conn.execute(
                "DELETE FROM users WHERE id = ? RETURNING *", (user_id,)
            ).fetchall())
        if row is None:
            return None
        return self._row_to_user(row)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            profile_image=row["profile_image"],
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )


__all__ = [
    "ConstraintViolation",
    "Database",
    "DatabaseError",
    "resolve_database_path",
]
