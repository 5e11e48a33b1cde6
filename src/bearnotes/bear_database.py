"""
Read-only SQLite access to Bear's Core Data database.
"""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import DatabaseConnectionError, DatabaseError

logger = logging.getLogger(__name__)

# Core Data stores timestamps as seconds since 2001-01-01 00:00:00 UTC
CORE_DATA_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

NOTES_TABLE = "ZSFNOTE"
TAGS_TABLE = "ZSFNOTETAG"
NOTE_TAGS_TABLE = "Z_5TAGS"
FILES_TABLE = "ZSFNOTEFILE"

# SQLite LOWER() folds ASCII only; this registered function uses str.lower()
LOWER_FUNCTION = "unicode_lower"

NOTE_COLUMNS = (
    "n.Z_PK, n.ZUNIQUEIDENTIFIER, n.ZTITLE, n.ZTEXT, n.ZCREATIONDATE, "
    "n.ZMODIFICATIONDATE, n.ZTRASHED, n.ZARCHIVED, n.ZPINNED, n.ZENCRYPTED"
)


def unicode_lower(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return str(value).lower()


def core_data_to_datetime(value: Optional[float]) -> Optional[datetime]:
    """Convert a Core Data timestamp to an aware UTC datetime."""
    if value is None:
        return None
    return CORE_DATA_EPOCH + timedelta(seconds=float(value))


def datetime_to_core_data(value: datetime) -> float:
    """Convert a datetime to a Core Data timestamp; naive values are taken as local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return (value - CORE_DATA_EPOCH).total_seconds()


class BearDatabase:
    """Read-only connection to Bear's database.sqlite."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        self.conn: Optional[sqlite3.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self.conn is not None

    async def connect(self) -> None:
        """Open the database read-only so Bear's own writes are never disturbed."""
        if self.conn:
            return

        path = Path(self.db_path).expanduser()
        if not path.exists():
            raise DatabaseConnectionError(str(path), cause=FileNotFoundError(str(path)))

        try:
            self.conn = sqlite3.connect(
                f"{path.as_uri()}?mode=ro",
                uri=True,
                check_same_thread=False,
                timeout=self.timeout,
            )
        except sqlite3.Error as e:
            raise DatabaseConnectionError(str(path), cause=e) from e

        self.conn.row_factory = sqlite3.Row
        self.conn.create_function(LOWER_FUNCTION, 1, unicode_lower, deterministic=True)
        logger.info(f"Opened Bear database read-only: {path}")

    async def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Bear database connection closed")

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a statement and return every row as a plain dict."""
        if not self.conn:
            raise DatabaseError("Database connection not initialized", operation="query")

        try:
            cursor = self.conn.execute(sql, tuple(params))
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"Query failed: {e}")
            raise DatabaseError(f"Query failed: {e}", operation="query", cause=e) from e

        return [dict(row) for row in rows]

    def file_stats(self) -> Dict[str, Any]:
        """Size and modification time of the database file."""
        path = Path(self.db_path).expanduser()
        stat = path.stat()
        return {
            "size": stat.st_size,
            "last_modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        }
