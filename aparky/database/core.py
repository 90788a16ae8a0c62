import aiosqlite
import asyncio
import sqlite3
import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional, Any, AsyncIterator

import database as _pkg
from database.helpers import DatabaseError, encode_json, decode_json

logger = logging.getLogger(__name__)


class DatabaseCore:
    """Async SQLite key-value store with a persistent connection.

    A single connection is serialized through an asyncio lock (SQLite
    limitation), opened lazily on first use and reused until closed.
    """
    _instance: Optional["DatabaseCore"] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> "DatabaseCore":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
                    cls._instance._conn: Optional[aiosqlite.Connection] = None
                    cls._instance._conn_lock: Optional[asyncio.Lock] = None
        return cls._instance

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            try:
                self._conn = await aiosqlite.connect(_pkg.DB_PATH)
                self._conn.row_factory = aiosqlite.Row
                await self._conn.execute("PRAGMA journal_mode=WAL")
                await self._conn.execute("PRAGMA busy_timeout=5000")
            except (sqlite3.Error, OSError) as e:
                self._conn = None
                raise DatabaseError(f"Cannot open database at {_pkg.DB_PATH}: {e}") from e
        return self._conn

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the connection with serialized access, creating the schema once."""
        if self._conn_lock is None:
            self._conn_lock = asyncio.Lock()
        async with self._conn_lock:
            conn = await self._ensure_connection()
            if not self._initialized:
                await self._init_schema(conn)
                self._initialized = True
            yield conn

    async def _init_schema(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.executescript("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
            """)
            await conn.commit()
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Error initializing database schema: {e}")
            raise DatabaseError(f"Failed to initialize schema: {e}") from e

    async def init_db(self) -> None:
        """Open the connection and create the schema if needed."""
        async with self._get_connection():
            pass

    async def close(self) -> None:
        """Close the persistent connection."""
        if self._conn is not None:
            try:
                await self._conn.close()
            except (sqlite3.Error, OSError) as e:
                logger.warning(f"Error closing database connection: {e}")
            finally:
                self._conn = None
                self._initialized = False

    async def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value.

        Raises:
            DatabaseError: if the store cannot be read
        """
        try:
            async with self._get_connection() as conn:
                async with conn.execute(
                    "SELECT value FROM settings WHERE key=?",
                    (key,)
                ) as cursor:
                    row = await cursor.fetchone()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error getting setting {key}: {e}")
            raise DatabaseError(f"Failed to read setting {key}: {e}") from e
        return decode_json(row["value"], default) if row else default

    async def set_setting(self, key: str, value: Any) -> None:
        """Replace a setting value as a whole (no partial updates)."""
        payload = encode_json(value)
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    "INSERT OR REPLACE INTO settings (key,value) VALUES (?,?)",
                    (key, payload)
                )
                await conn.commit()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error setting {key}: {e}")
            raise DatabaseError(f"Failed to save setting {key}: {e}") from e

    async def delete_setting(self, key: str) -> None:
        try:
            async with self._get_connection() as conn:
                await conn.execute("DELETE FROM settings WHERE key=?", (key,))
                await conn.commit()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error deleting setting {key}: {e}")
            raise DatabaseError(f"Failed to delete setting {key}: {e}") from e

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the singleton so the next Database() starts fresh. Test helper."""
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance._initialized = False
                cls._instance._conn = None
                cls._instance._conn_lock = None
                cls._instance = None
