# core/story_engine/progress_store.py
"""
Progress Store - one UserStoryProgress row per (user, story).

Writes take the caller's transaction connection. Every UPDATE carries an
optimistic version check so a writer holding a stale row cannot overwrite
a newer one.
"""

import json
import uuid
import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from .db import connection, transaction
from .errors import ConflictError, NotFoundError
from .models import ChoiceRecord, UserStoryProgress, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class ProgressStore:
    """SQLite-backed user story progress."""

    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0, idle_cap: int = 300):
        self._db_path = db_path
        self._timeout = timeout
        self._idle_cap = idle_cap  # seconds of inactivity counted as play time at most

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE transaction shared by progress, rewards and rating writes."""
        with transaction(self._db_path, self._timeout) as conn:
            yield conn

    def _row_to_progress(self, row) -> UserStoryProgress:
        return UserStoryProgress(
            id=row["id"],
            user_id=row["user_id"],
            story_id=row["story_id"],
            current_chapter_id=row["current_chapter_id"],
            completed_chapter_ids=json.loads(row["completed_chapter_ids"] or "[]"),
            choices_made=[ChoiceRecord.from_dict(r) for r in json.loads(row["choices_made"] or "[]")],
            total_affection_gained=row["total_affection_gained"],
            total_xp_gained=row["total_xp_gained"],
            started_at=row["started_at"],
            last_played_at=row["last_played_at"],
            completed_at=row["completed_at"],
            rating=row["rating"],
            play_time=row["play_time"],
            version=row["version"],
        )

    # ==================== READS ====================

    def get_progress(self, user_id: str, story_id: str,
                     conn: Optional[sqlite3.Connection] = None) -> Optional[UserStoryProgress]:
        if conn is None:
            with connection(self._db_path, self._timeout) as own:
                return self.get_progress(user_id, story_id, own)

        row = conn.execute(
            "SELECT * FROM user_story_progress WHERE user_id = ? AND story_id = ?",
            (user_id, story_id),
        ).fetchone()
        return self._row_to_progress(row) if row else None

    def list_for_user(self, user_id: str) -> List[UserStoryProgress]:
        with connection(self._db_path, self._timeout) as conn:
            rows = conn.execute(
                "SELECT * FROM user_story_progress WHERE user_id = ? ORDER BY last_played_at DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_progress(r) for r in rows]

    def list_for_story(self, story_id: str, conn: Optional[sqlite3.Connection] = None) -> List[UserStoryProgress]:
        if conn is None:
            with connection(self._db_path, self._timeout) as own:
                return self.list_for_story(story_id, own)

        rows = conn.execute(
            "SELECT * FROM user_story_progress WHERE story_id = ?", (story_id,)
        ).fetchall()
        return [self._row_to_progress(r) for r in rows]

    # ==================== WRITES ====================

    def create_or_reset(self, user_id: str, story_id: str, start_chapter_id: str,
                        conn: sqlite3.Connection) -> UserStoryProgress:
        """
        Create progress or overwrite the existing row back to the start chapter.

        History, totals, completion and play time are cleared. The user's rating
        survives a restart so the story average stays in step. Stat rewards
        already granted to the user are not touched here.
        """
        now = utc_now()
        existing = self.get_progress(user_id, story_id, conn)

        if existing is None:
            progress = UserStoryProgress(
                id=str(uuid.uuid4()), user_id=user_id, story_id=story_id,
                current_chapter_id=start_chapter_id, started_at=now, last_played_at=now,
                version=1,
            )
            conn.execute(
                """INSERT INTO user_story_progress
                   (id, user_id, story_id, current_chapter_id, completed_chapter_ids, choices_made,
                    total_affection_gained, total_xp_gained, started_at, last_played_at,
                    completed_at, rating, play_time, version)
                   VALUES (?, ?, ?, ?, '[]', '[]', 0, 0, ?, ?, NULL, NULL, 0, ?)""",
                (progress.id, user_id, story_id, start_chapter_id, now, now, progress.version),
            )
            logger.info(f"[PROGRESS] Created progress for user {user_id} story {story_id}")
            return progress

        progress = UserStoryProgress(
            id=existing.id, user_id=user_id, story_id=story_id,
            current_chapter_id=start_chapter_id, started_at=now, last_played_at=now,
            rating=existing.rating, version=existing.version + 1,
        )
        cursor = conn.execute(
            """UPDATE user_story_progress SET
                   current_chapter_id = ?, completed_chapter_ids = '[]', choices_made = '[]',
                   total_affection_gained = 0, total_xp_gained = 0, started_at = ?,
                   last_played_at = ?, completed_at = NULL, play_time = 0,
                   version = ?
               WHERE id = ? AND version = ?""",
            (start_chapter_id, now, now, progress.version, existing.id, existing.version),
        )
        if cursor.rowcount != 1:
            raise ConflictError()
        logger.info(f"[PROGRESS] Reset progress for user {user_id} story {story_id}")
        return progress

    def _elapsed_play_time(self, last_played_at: str, now: str) -> int:
        """Seconds since last activity, capped so idle sessions don't inflate play time."""
        try:
            delta = (parse_timestamp(now) - parse_timestamp(last_played_at)).total_seconds()
        except (TypeError, ValueError):
            return 0
        return int(min(max(delta, 0), self._idle_cap))

    def advance(self, progress: UserStoryProgress, next_chapter_id: Optional[str],
                record: ChoiceRecord, affection_delta: int, xp_delta: int,
                conn: sqlite3.Connection) -> UserStoryProgress:
        """
        Apply one accepted choice to a progress row.

        Appends the record, adds the left chapter to completedChapterIds, moves
        to next_chapter_id or marks completion when it is None, and updates
        totals, play time and lastPlayedAt. Raises ConflictError if the row
        changed since `progress` was read.
        """
        now = record.timestamp
        completed = list(progress.completed_chapter_ids)
        if record.chapter_id not in completed:
            completed.append(record.chapter_id)

        updated = UserStoryProgress(
            id=progress.id,
            user_id=progress.user_id,
            story_id=progress.story_id,
            current_chapter_id=next_chapter_id or progress.current_chapter_id,
            completed_chapter_ids=completed,
            choices_made=list(progress.choices_made) + [record],
            total_affection_gained=progress.total_affection_gained + affection_delta,
            total_xp_gained=progress.total_xp_gained + xp_delta,
            started_at=progress.started_at,
            last_played_at=now,
            completed_at=progress.completed_at if next_chapter_id else now,
            rating=progress.rating,
            play_time=progress.play_time + self._elapsed_play_time(progress.last_played_at, now),
            version=progress.version + 1,
        )

        cursor = conn.execute(
            """UPDATE user_story_progress SET
                   current_chapter_id = ?, completed_chapter_ids = ?, choices_made = ?,
                   total_affection_gained = ?, total_xp_gained = ?, last_played_at = ?,
                   completed_at = ?, play_time = ?, version = ?
               WHERE id = ? AND version = ?""",
            (updated.current_chapter_id, json.dumps(updated.completed_chapter_ids),
             json.dumps([r.to_dict() for r in updated.choices_made]),
             updated.total_affection_gained, updated.total_xp_gained, updated.last_played_at,
             updated.completed_at, updated.play_time, updated.version,
             progress.id, progress.version),
        )
        if cursor.rowcount != 1:
            logger.warning(f"[PROGRESS] Version conflict on {progress.id} (expected v{progress.version})")
            raise ConflictError()
        return updated

    def set_rating(self, progress: UserStoryProgress, rating: int,
                   conn: sqlite3.Connection) -> UserStoryProgress:
        cursor = conn.execute(
            "UPDATE user_story_progress SET rating = ?, version = version + 1 WHERE id = ? AND version = ?",
            (rating, progress.id, progress.version),
        )
        if cursor.rowcount != 1:
            raise ConflictError()
        progress.rating = rating
        progress.version += 1
        return progress

    def ratings_for_story(self, story_id: str, conn: sqlite3.Connection) -> List[int]:
        rows = conn.execute(
            "SELECT rating FROM user_story_progress WHERE story_id = ? AND rating IS NOT NULL",
            (story_id,),
        ).fetchall()
        return [r["rating"] for r in rows]

    def delete_for_user(self, user_id: str) -> int:
        """Remove all of a user's progress (account deletion path). Returns rows removed."""
        with transaction(self._db_path, self._timeout) as conn:
            cursor = conn.execute("DELETE FROM user_story_progress WHERE user_id = ?", (user_id,))
        logger.info(f"[PROGRESS] Deleted {cursor.rowcount} progress rows for user {user_id}")
        return cursor.rowcount

    def require(self, user_id: str, story_id: str, conn: Optional[sqlite3.Connection] = None,
                message: str = "Story progress not found. Start the story first.") -> UserStoryProgress:
        progress = self.get_progress(user_id, story_id, conn)
        if progress is None:
            raise NotFoundError(message)
        return progress
