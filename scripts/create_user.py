import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userdir.config import load_settings
from userdir.database import Database, DatabaseError, resolve_database_path
from userdir.directory import UserDirectory, ValidationError
from userdir.uploads import ImageStore


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user directory entry")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path or sqlite:/// URL of the database (defaults to USERDIR_DATABASE_URL)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = load_settings()

    db_path = resolve_database_path(args.db_path or settings.database_url)
    database = Database(db_path, max_connections=settings.max_connections)
    database.initialize()
    directory = UserDirectory(
        database, ImageStore(settings.upload_dir, max_bytes=settings.max_upload_bytes)
    )

    try:
        user = directory.create_user(args.name, args.email)
    except (ValidationError, DatabaseError) as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
