# core/story_engine/db.py
"""
SQLite schema and connection helpers for the story engine.

One database file holds content (stories, chapters, choices), per-user
progress and the local projection of the User aggregate's stats.
Connections run in WAL mode with explicit transactions (isolation_level=None).
"""

import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS stories (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        genre TEXT NOT NULL DEFAULT 'romance',
        thumbnail_url TEXT,
        is_premium INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        difficulty TEXT NOT NULL DEFAULT 'easy',
        estimated_duration INTEGER NOT NULL DEFAULT 15,
        tags TEXT NOT NULL DEFAULT '[]',
        play_count INTEGER NOT NULL DEFAULT 0,
        completion_count INTEGER NOT NULL DEFAULT 0,
        average_rating REAL NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS chapters (
        id TEXT PRIMARY KEY,
        story_id TEXT NOT NULL REFERENCES stories(id) ON DELETE CASCADE,
        chapter_number INTEGER NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        is_start INTEGER NOT NULL DEFAULT 0,
        is_ending INTEGER NOT NULL DEFAULT 0,
        image_url TEXT,
        background_music_url TEXT,
        UNIQUE (story_id, chapter_number)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS choices (
        id TEXT PRIMARY KEY,
        chapter_id TEXT NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
        text TEXT NOT NULL,
        sort_order INTEGER NOT NULL DEFAULT 0,
        next_chapter_id TEXT REFERENCES chapters(id) ON DELETE SET NULL,
        affection_change INTEGER NOT NULL DEFAULT 0,
        xp_change INTEGER NOT NULL DEFAULT 0,
        requirements TEXT NOT NULL DEFAULT '[]',
        selected_count INTEGER NOT NULL DEFAULT 0,
        is_optimal INTEGER NOT NULL DEFAULT 0
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS user_story_progress (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        story_id TEXT NOT NULL REFERENCES stories(id) ON DELETE CASCADE,
        current_chapter_id TEXT NOT NULL,
        completed_chapter_ids TEXT NOT NULL DEFAULT '[]',
        choices_made TEXT NOT NULL DEFAULT '[]',
        total_affection_gained INTEGER NOT NULL DEFAULT 0,
        total_xp_gained INTEGER NOT NULL DEFAULT 0,
        started_at TEXT NOT NULL,
        last_played_at TEXT NOT NULL,
        completed_at TEXT,
        rating INTEGER CHECK (rating IS NULL OR (rating >= 1 AND rating <= 5)),
        play_time INTEGER NOT NULL DEFAULT 0,
        version INTEGER NOT NULL DEFAULT 0,
        UNIQUE (user_id, story_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        affection INTEGER NOT NULL DEFAULT 0,
        level INTEGER NOT NULL DEFAULT 1,
        xp INTEGER NOT NULL DEFAULT 0,
        is_premium INTEGER NOT NULL DEFAULT 0
    )
    ''',
    # At most one start chapter per story; seeding checks "at least one"
    'CREATE UNIQUE INDEX IF NOT EXISTS idx_chapters_one_start ON chapters(story_id) WHERE is_start = 1',
    'CREATE INDEX IF NOT EXISTS idx_choices_chapter ON choices(chapter_id)',
    'CREATE INDEX IF NOT EXISTS idx_progress_story ON user_story_progress(story_id)',
]


def get_connection(db_path: Union[str, Path], timeout: float = DEFAULT_TIMEOUT) -> sqlite3.Connection:
    """Get database connection with WAL mode and explicit transaction control."""
    conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None,
                           check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction(db_path: Union[str, Path], timeout: float = DEFAULT_TIMEOUT) -> Iterator[sqlite3.Connection]:
    """
    Open a write transaction with BEGIN IMMEDIATE.

    IMMEDIATE takes the database's reserved lock up front, so two writers
    that read-then-write the same progress row are serialized rather than
    both reading the same stale position. Commits on success, rolls back
    on any exception and re-raises it.
    """
    conn = get_connection(db_path, timeout)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


@contextmanager
def connection(db_path: Union[str, Path], timeout: float = DEFAULT_TIMEOUT) -> Iterator[sqlite3.Connection]:
    """Autocommit connection for reads and single-statement counter updates."""
    conn = get_connection(db_path, timeout)
    try:
        yield conn
    finally:
        conn.close()


def initialize_database(db_path: Union[str, Path]) -> bool:
    """Create database schema if it doesn't exist."""
    try:
        db_file = Path(db_path)
        db_file.parent.mkdir(parents=True, exist_ok=True)

        with connection(db_file) as conn:
            for statement in SCHEMA:
                conn.execute(statement)

        logger.info(f"Story database initialized at {db_path}")
        return True

    except sqlite3.Error as e:
        logger.error(f"Failed to initialize story database: {e}")
        return False
