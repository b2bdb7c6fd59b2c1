# core/story_engine/users.py
"""
User aggregate seam.

The engine only needs a stats snapshot and an increment primitive. Both
accept the caller's connection so reward application can share the
progress transaction.
"""

import sqlite3
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from .db import connection
from .errors import InternalError, NotFoundError
from .models import UserStats

logger = logging.getLogger(__name__)

STATS = ("affection", "xp", "level")


class UserStore(ABC):
    """Interface to the external User aggregate."""

    @abstractmethod
    def get_stats(self, user_id: str, conn: Optional[sqlite3.Connection] = None) -> UserStats:
        pass

    @abstractmethod
    def increment_stat(self, user_id: str, stat: str, delta: int, conn: sqlite3.Connection) -> None:
        pass


class SqliteUserStore(UserStore):
    """User stats kept in the story database's `users` table."""

    def __init__(self, db_path: Union[str, Path], xp_per_level: int = 1000, timeout: float = 30.0):
        self._db_path = db_path
        self._xp_per_level = max(1, int(xp_per_level))
        self._timeout = timeout

    def _row_to_stats(self, row) -> UserStats:
        return UserStats(
            id=row["id"],
            affection=row["affection"],
            level=row["level"],
            xp=row["xp"],
            is_premium=bool(row["is_premium"]),
        )

    def get_stats(self, user_id: str, conn: Optional[sqlite3.Connection] = None) -> UserStats:
        if conn is None:
            with connection(self._db_path, self._timeout) as own:
                return self.get_stats(user_id, own)

        row = conn.execute(
            "SELECT id, affection, level, xp, is_premium FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("User not found")
        return self._row_to_stats(row)

    def increment_stat(self, user_id: str, stat: str, delta: int, conn: sqlite3.Connection) -> None:
        """Add delta to a stat. Level is recomputed whenever xp changes."""
        if stat not in STATS:
            raise InternalError(f"Unknown user stat: {stat}")
        if delta == 0:
            return

        cursor = conn.execute(f"UPDATE users SET {stat} = {stat} + ? WHERE id = ?", (delta, user_id))
        if cursor.rowcount != 1:
            raise InternalError(f"Failed to apply {stat} reward to user {user_id}")

        if stat == "xp":
            conn.execute(
                "UPDATE users SET level = 1 + (MAX(xp, 0) / ?) WHERE id = ?",
                (self._xp_per_level, user_id),
            )
        logger.debug(f"[USER] {user_id}: {stat} {delta:+d}")

    def upsert(self, stats: UserStats) -> UserStats:
        """Create or replace a user's stats row (account sync and tests)."""
        with connection(self._db_path, self._timeout) as conn:
            conn.execute(
                """INSERT INTO users (id, affection, level, xp, is_premium)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       affection = excluded.affection, level = excluded.level,
                       xp = excluded.xp, is_premium = excluded.is_premium""",
                (stats.id, stats.affection, stats.level, stats.xp, int(stats.is_premium)),
            )
        return stats

    def ensure_user(self, user_id: str) -> bool:
        """Create a default stats row if missing. Returns True if created."""
        with connection(self._db_path, self._timeout) as conn:
            cursor = conn.execute("INSERT OR IGNORE INTO users (id) VALUES (?)", (user_id,))
        if cursor.rowcount:
            logger.info(f"[USER] Created stats row for {user_id}")
        return bool(cursor.rowcount)
