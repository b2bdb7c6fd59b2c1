# core/story_engine/content_store.py
"""
Content Store - Story/Chapter/Choice definitions.

Read-mostly: content is written once by preset seeding. At runtime only the
play/completion/selection counters and the cached average rating change.
"""

import json
import sqlite3
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from .conditions import parse_requirement
from .db import connection, transaction
from .errors import InternalError, NotFoundError, PermissionDeniedError
from .models import Chapter, Choice, Story, UserStats, utc_now

logger = logging.getLogger(__name__)

_STORY_COLUMNS = """id, title, description, genre, thumbnail_url, is_premium, is_active,
    difficulty, estimated_duration, tags, play_count, completion_count,
    average_rating, created_at"""


class ContentStore:
    """SQLite-backed story content."""

    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0):
        self._db_path = db_path
        self._timeout = timeout

    def _connect(self):
        return connection(self._db_path, self._timeout)

    # ==================== ROW MAPPING ====================

    def _row_to_story(self, row) -> Story:
        return Story(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            genre=row["genre"],
            thumbnail_url=row["thumbnail_url"],
            is_premium=bool(row["is_premium"]),
            is_active=bool(row["is_active"]),
            difficulty=row["difficulty"],
            estimated_duration=row["estimated_duration"],
            tags=json.loads(row["tags"] or "[]"),
            play_count=row["play_count"],
            completion_count=row["completion_count"],
            average_rating=row["average_rating"],
            created_at=row["created_at"],
        )

    def _row_to_chapter(self, row) -> Chapter:
        return Chapter(
            id=row["id"],
            story_id=row["story_id"],
            chapter_number=row["chapter_number"],
            title=row["title"],
            content=row["content"],
            is_start=bool(row["is_start"]),
            is_ending=bool(row["is_ending"]),
            image_url=row["image_url"],
            background_music_url=row["background_music_url"],
        )

    def _row_to_choice(self, row) -> Choice:
        # Stored rows are parsed leniently; strictness applies at seed time
        try:
            requirements = [parse_requirement(r) for r in json.loads(row["requirements"] or "[]")]
        except ValueError as e:
            logger.error(f"[CONTENT] Choice {row['id']} has malformed requirements: {e}")
            raise InternalError(f"Choice {row['id']} has malformed requirements") from e
        return Choice(
            id=row["id"],
            chapter_id=row["chapter_id"],
            text=row["text"],
            order=row["sort_order"],
            next_chapter_id=row["next_chapter_id"],
            affection_change=row["affection_change"],
            xp_change=row["xp_change"],
            requirements=requirements,
            selected_count=row["selected_count"],
            is_optimal=bool(row["is_optimal"]),
        )

    def _choices_for(self, conn: sqlite3.Connection, chapter_ids: List[str]) -> Dict[str, List[Choice]]:
        grouped: Dict[str, List[Choice]] = {cid: [] for cid in chapter_ids}
        if not chapter_ids:
            return grouped
        placeholders = ",".join("?" for _ in chapter_ids)
        rows = conn.execute(
            f"""SELECT * FROM choices WHERE chapter_id IN ({placeholders})
                ORDER BY sort_order ASC, id ASC""",
            chapter_ids,
        ).fetchall()
        for row in rows:
            grouped[row["chapter_id"]].append(self._row_to_choice(row))
        return grouped

    # ==================== READS ====================

    def get_catalog(self) -> List[Story]:
        """Active stories, newest first, with chapter summaries by chapterNumber."""
        with self._connect() as conn:
            rows = conn.execute(
                f"""SELECT {_STORY_COLUMNS} FROM stories WHERE is_active = 1
                    ORDER BY created_at DESC, id ASC"""
            ).fetchall()
            stories = [self._row_to_story(r) for r in rows]
            by_id = {s.id: s for s in stories}

            chapter_rows = conn.execute(
                """SELECT c.* FROM chapters c JOIN stories s ON s.id = c.story_id
                   WHERE s.is_active = 1 ORDER BY c.story_id, c.chapter_number ASC"""
            ).fetchall()
            for row in chapter_rows:
                by_id[row["story_id"]].chapters.append(self._row_to_chapter(row))

        return stories

    def get_story_header(self, story_id: str, conn: Optional[sqlite3.Connection] = None,
                         include_inactive: bool = False) -> Story:
        """Story row without chapters. Raises NotFoundError for unknown/inactive ids."""
        if conn is None:
            with self._connect() as own:
                return self.get_story_header(story_id, own, include_inactive)

        row = conn.execute(f"SELECT {_STORY_COLUMNS} FROM stories WHERE id = ?", (story_id,)).fetchone()
        if row is None or (not include_inactive and not row["is_active"]):
            raise NotFoundError("Story not found")
        return self._row_to_story(row)

    def check_access(self, story_id: str, stats: UserStats,
                     conn: Optional[sqlite3.Connection] = None) -> Story:
        """
        Premium gate. Reads only the story header, so no chapter content is
        loaded for a user who may not see it.
        """
        story = self.get_story_header(story_id, conn)
        if story.is_premium and not stats.is_premium:
            logger.info(f"[STORY] Premium gate: user {stats.id} denied story {story_id}")
            raise PermissionDeniedError("Premium subscription required")
        return story

    def get_story(self, story_id: str, include_inactive: bool = False) -> Story:
        """Full story: chapters by chapterNumber, choices by order then id."""
        with self._connect() as conn:
            story = self.get_story_header(story_id, conn, include_inactive)
            rows = conn.execute(
                "SELECT * FROM chapters WHERE story_id = ? ORDER BY chapter_number ASC", (story_id,)
            ).fetchall()
            chapters = [self._row_to_chapter(r) for r in rows]
            choices = self._choices_for(conn, [c.id for c in chapters])

        for chapter in chapters:
            chapter.choices = choices[chapter.id]
        story.chapters = chapters
        return story

    def get_chapter(self, chapter_id: str, conn: Optional[sqlite3.Connection] = None) -> Chapter:
        """Chapter with its ordered choices."""
        if conn is None:
            with self._connect() as own:
                return self.get_chapter(chapter_id, own)

        row = conn.execute("SELECT * FROM chapters WHERE id = ?", (chapter_id,)).fetchone()
        if row is None:
            raise NotFoundError("Chapter not found")
        chapter = self._row_to_chapter(row)
        chapter.choices = self._choices_for(conn, [chapter.id])[chapter.id]
        return chapter

    def get_start_chapter(self, story_id: str, conn: Optional[sqlite3.Connection] = None) -> Chapter:
        if conn is None:
            with self._connect() as own:
                return self.get_start_chapter(story_id, own)

        rows = conn.execute(
            "SELECT id FROM chapters WHERE story_id = ? AND is_start = 1", (story_id,)
        ).fetchall()
        if len(rows) != 1:
            logger.error(f"[STORY] Story {story_id} has {len(rows)} start chapters")
            raise InternalError("Story has no starting chapter")
        return self.get_chapter(rows[0]["id"], conn)

    def get_choice(self, choice_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Choice]:
        if conn is None:
            with self._connect() as own:
                return self.get_choice(choice_id, own)

        row = conn.execute("SELECT * FROM choices WHERE id = ?", (choice_id,)).fetchone()
        return self._row_to_choice(row) if row else None

    def get_story_choices(self, story_id: str) -> List[Choice]:
        """All choices belonging to a story's chapters."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT ch.* FROM choices ch JOIN chapters c ON c.id = ch.chapter_id
                   WHERE c.story_id = ? ORDER BY ch.id ASC""",
                (story_id,),
            ).fetchall()
        return [self._row_to_choice(r) for r in rows]

    # ==================== COUNTERS ====================

    def _increment(self, table: str, column: str, row_id: str) -> None:
        """Best-effort counter bump; a lost increment never breaks progression."""
        try:
            with self._connect() as conn:
                conn.execute(f"UPDATE {table} SET {column} = {column} + 1 WHERE id = ?", (row_id,))
        except sqlite3.Error as e:
            logger.warning(f"[STORY] Counter {table}.{column} not incremented for {row_id}: {e}")

    def increment_play_count(self, story_id: str) -> None:
        self._increment("stories", "play_count", story_id)

    def increment_completion_count(self, story_id: str) -> None:
        self._increment("stories", "completion_count", story_id)

    def increment_selected_count(self, choice_id: str) -> None:
        self._increment("choices", "selected_count", choice_id)

    def set_average_rating(self, story_id: str, value: float, conn: sqlite3.Connection) -> None:
        conn.execute("UPDATE stories SET average_rating = ? WHERE id = ?", (value, story_id))

    # ==================== WRITES ====================

    def save_story(self, story: Story) -> None:
        """
        Insert or replace a full story graph. Counters survive a re-seed.

        Chapters and choices the new graph no longer lists are removed. Progress
        rows keep their position; a run parked on a removed chapter has to be
        restarted.
        """
        created_at = story.created_at or utc_now()
        with transaction(self._db_path, self._timeout) as conn:
            conn.execute(
                """INSERT INTO stories (id, title, description, genre, thumbnail_url, is_premium,
                       is_active, difficulty, estimated_duration, tags, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       title = excluded.title, description = excluded.description,
                       genre = excluded.genre, thumbnail_url = excluded.thumbnail_url,
                       is_premium = excluded.is_premium, is_active = excluded.is_active,
                       difficulty = excluded.difficulty,
                       estimated_duration = excluded.estimated_duration, tags = excluded.tags""",
                (story.id, story.title, story.description, story.genre, story.thumbnail_url,
                 int(story.is_premium), int(story.is_active), story.difficulty,
                 story.estimated_duration, json.dumps(story.tags), created_at),
            )

            # Free the one-start index and (story_id, chapter_number) so the graph can be reshuffled
            conn.execute(
                "UPDATE chapters SET is_start = 0, chapter_number = -chapter_number WHERE story_id = ?",
                (story.id,),
            )

            for chapter in story.chapters:
                conn.execute(
                    """INSERT INTO chapters (id, story_id, chapter_number, title, content, is_start,
                           is_ending, image_url, background_music_url)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                           chapter_number = excluded.chapter_number, title = excluded.title,
                           content = excluded.content, is_start = excluded.is_start,
                           is_ending = excluded.is_ending, image_url = excluded.image_url,
                           background_music_url = excluded.background_music_url""",
                    (chapter.id, story.id, chapter.chapter_number, chapter.title, chapter.content,
                     int(chapter.is_start), int(chapter.is_ending), chapter.image_url,
                     chapter.background_music_url),
                )

            # Choices reference chapters via next_chapter_id, so insert them after all chapters
            for chapter in story.chapters:
                for choice in chapter.choices:
                    conn.execute(
                        """INSERT INTO choices (id, chapter_id, text, sort_order, next_chapter_id,
                               affection_change, xp_change, requirements, is_optimal)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                           ON CONFLICT(id) DO UPDATE SET
                               chapter_id = excluded.chapter_id, text = excluded.text,
                               sort_order = excluded.sort_order,
                               next_chapter_id = excluded.next_chapter_id,
                               affection_change = excluded.affection_change,
                               xp_change = excluded.xp_change,
                               requirements = excluded.requirements,
                               is_optimal = excluded.is_optimal""",
                        (choice.id, chapter.id, choice.text, choice.order, choice.next_chapter_id,
                         choice.affection_change, choice.xp_change,
                         json.dumps([r.to_dict() for r in choice.requirements]),
                         int(choice.is_optimal)),
                    )

            chapter_ids = [c.id for c in story.chapters]
            choice_ids = [choice.id for c in story.chapters for choice in c.choices]
            removed_choices = conn.execute(
                f"""DELETE FROM choices
                    WHERE chapter_id IN (SELECT id FROM chapters WHERE story_id = ?)
                      AND id NOT IN ({",".join("?" for _ in choice_ids) or "''"})""",
                [story.id, *choice_ids],
            ).rowcount
            removed_chapters = conn.execute(
                f"""DELETE FROM chapters
                    WHERE story_id = ? AND id NOT IN ({",".join("?" for _ in chapter_ids)})""",
                [story.id, *chapter_ids],
            ).rowcount
            if removed_chapters or removed_choices:
                logger.info(
                    f"[STORY] Pruned {removed_chapters} chapters and {removed_choices} choices "
                    f"no longer in {story.id}"
                )

        logger.info(f"[STORY] Saved story '{story.title}' ({story.id}) with {story.total_chapters} chapters")

    def set_active(self, story_id: str, active: bool) -> None:
        """Soft-delete or restore a story."""
        with self._connect() as conn:
            cursor = conn.execute("UPDATE stories SET is_active = ? WHERE id = ?", (int(active), story_id))
        if cursor.rowcount == 0:
            raise NotFoundError("Story not found")
