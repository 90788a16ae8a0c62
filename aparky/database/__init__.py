"""Database package - async SQLite key-value store with mixin-based composition.

Usage: ``from database import db, DatabaseError``.
"""
from pathlib import Path

from config import DB_PATH as _DEFAULT_DB_PATH

DB_PATH: Path = _DEFAULT_DB_PATH

from database.helpers import DatabaseError  # noqa: E402
from database.core import DatabaseCore  # noqa: E402
from database.timers import TimerBackupMixin  # noqa: E402


class Database(DatabaseCore, TimerBackupMixin):
    """Composed database class combining all mixins."""
    pass


def configure_db_path(path: Path) -> None:
    """Set a custom database path before any connection is opened.

    Raises:
        RuntimeError: If the database connection is already open.
    """
    global DB_PATH
    if Database._instance is not None and Database._instance._conn is not None:
        raise RuntimeError(
            "Cannot change DB_PATH after a database connection has been opened. "
            "Call configure_db_path() before any database operations."
        )
    DB_PATH = path


db = Database()
