"""
Store Tests - SQLite content, progress and user stat persistence.

Tests:
- Schema invariants (one start chapter, rating bounds)
- Content reads, ordering and the premium gate
- Progress create/reset/advance with optimistic versioning
- User stat increments and level recompute

Run with: pytest tests/test_stores.py -v
"""
import sqlite3
import pytest


# =============================================================================
# Schema
# =============================================================================

class TestSchema:
    """Test database-level invariants."""

    def test_initialize_is_idempotent(self, temp_db):
        from core.story_engine.db import initialize_database
        assert initialize_database(temp_db) is True

    def test_second_start_chapter_rejected(self, engine):
        """Partial unique index allows one start chapter per story."""
        from core.story_engine.db import connection

        with pytest.raises(sqlite3.IntegrityError):
            with connection(engine.db_path) as conn:
                conn.execute(
                    "INSERT INTO chapters (id, story_id, chapter_number, title, content, is_start) "
                    "VALUES ('x', 'first-date-adventure', 99, 'x', '', 1)"
                )

    def test_transaction_rolls_back_on_error(self, temp_db):
        from core.story_engine.db import transaction, connection

        with pytest.raises(RuntimeError):
            with transaction(temp_db) as conn:
                conn.execute("INSERT INTO users (id) VALUES ('ghost')")
                raise RuntimeError("boom")

        with connection(temp_db) as conn:
            assert conn.execute("SELECT COUNT(*) FROM users WHERE id = 'ghost'").fetchone()[0] == 0


# =============================================================================
# ContentStore
# =============================================================================

class TestContentStore:
    """Test content reads."""

    def test_catalog_only_active(self, engine):
        engine.content.set_active("mystery-at-midnight", False)
        ids = {s.id for s in engine.content.get_catalog()}
        assert "mystery-at-midnight" not in ids
        assert "first-date-adventure" in ids

    def test_every_seeded_story_has_one_start(self, engine):
        for story in engine.content.get_catalog():
            full = engine.content.get_story(story.id)
            assert sum(1 for c in full.chapters if c.is_start) == 1

    def test_chapters_ordered_by_number(self, engine):
        story = engine.content.get_story("first-date-adventure")
        numbers = [c.chapter_number for c in story.chapters]
        assert numbers == sorted(numbers)

    def test_choices_ordered(self, engine):
        chapter = engine.content.get_chapter("fd-1")
        assert [c.id for c in chapter.choices] == ["fd-1-rooftop", "fd-1-booth"]

    def test_requirements_round_trip(self, engine):
        choice = engine.content.get_choice("fd-2-confess")
        assert choice.requirements[0].value == 50

    def test_unknown_story(self, engine):
        from core.story_engine.errors import NotFoundError

        with pytest.raises(NotFoundError):
            engine.content.get_story("nope")

    def test_inactive_story_not_found(self, engine):
        from core.story_engine.errors import NotFoundError

        engine.content.set_active("first-date-adventure", False)
        with pytest.raises(NotFoundError):
            engine.content.get_story("first-date-adventure")
        assert engine.content.get_story("first-date-adventure", include_inactive=True).id == "first-date-adventure"

    def test_premium_gate(self, engine):
        from core.story_engine.errors import PermissionDeniedError

        free_user = engine.users.get_stats("alice")
        premium_user = engine.users.get_stats("vip")

        with pytest.raises(PermissionDeniedError):
            engine.content.check_access("time-travelers-dilemma", free_user)
        assert engine.content.check_access("time-travelers-dilemma", premium_user).is_premium

    def test_counter_failure_is_logged_not_raised(self, engine, caplog):
        """Best-effort counters swallow database errors with a warning."""
        from unittest.mock import patch

        with patch("core.story_engine.content_store.connection", side_effect=sqlite3.OperationalError("locked")):
            engine.content.increment_play_count("first-date-adventure")
        assert "not incremented" in caplog.text


# =============================================================================
# ProgressStore
# =============================================================================

class TestProgressStore:
    """Test progress persistence."""

    def test_create_then_reset(self, engine):
        from core.story_engine.models import ChoiceRecord, utc_now

        store = engine.progress
        with store.transaction() as conn:
            first = store.create_or_reset("alice", "first-date-adventure", "fd-1", conn)
        assert first.version == 1

        with store.transaction() as conn:
            record = ChoiceRecord("fd-1", "fd-1-rooftop", utc_now())
            store.advance(first, "fd-2", record, 3, 20, conn)

        with store.transaction() as conn:
            reset = store.create_or_reset("alice", "first-date-adventure", "fd-1", conn)

        loaded = store.get_progress("alice", "first-date-adventure")
        assert reset.id == first.id
        assert loaded.current_chapter_id == "fd-1"
        assert loaded.completed_chapter_ids == []
        assert loaded.choices_made == []
        assert loaded.total_affection_gained == 0
        assert loaded.version == 3

    def test_stale_version_conflicts(self, engine):
        from core.story_engine.errors import ConflictError
        from core.story_engine.models import ChoiceRecord, utc_now

        store = engine.progress
        with store.transaction() as conn:
            progress = store.create_or_reset("alice", "first-date-adventure", "fd-1", conn)

        record = ChoiceRecord("fd-1", "fd-1-rooftop", utc_now())
        with store.transaction() as conn:
            store.advance(progress, "fd-2", record, 3, 20, conn)

        with pytest.raises(ConflictError):
            with store.transaction() as conn:
                store.advance(progress, "fd-3", record, 3, 20, conn)

    def test_play_time_capped(self, temp_db):
        from core.story_engine.progress_store import ProgressStore

        store = ProgressStore(temp_db, idle_cap=60)
        assert store._elapsed_play_time("2025-01-01T10:00:00+00:00", "2025-01-01T10:00:30+00:00") == 30
        assert store._elapsed_play_time("2025-01-01T10:00:00+00:00", "2025-01-01T12:00:00+00:00") == 60
        assert store._elapsed_play_time("garbage", "2025-01-01T12:00:00+00:00") == 0

    def test_rating_check_constraint(self, engine):
        """Database refuses ratings outside 1..5."""
        store = engine.progress
        with store.transaction() as conn:
            progress = store.create_or_reset("alice", "first-date-adventure", "fd-1", conn)

        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction() as conn:
                store.set_rating(progress, 6, conn)

    def test_delete_for_user(self, engine):
        store = engine.progress
        with store.transaction() as conn:
            store.create_or_reset("alice", "first-date-adventure", "fd-1", conn)
            store.create_or_reset("alice", "mystery-at-midnight", "mm-1", conn)

        assert store.delete_for_user("alice") == 2
        assert store.list_for_user("alice") == []


# =============================================================================
# SqliteUserStore
# =============================================================================

class TestUserStore:
    """Test the user stats seam."""

    def test_unknown_user(self, engine):
        from core.story_engine.errors import NotFoundError

        with pytest.raises(NotFoundError):
            engine.users.get_stats("nobody")

    def test_increment_and_level_up(self, engine):
        with engine.progress.transaction() as conn:
            engine.users.increment_stat("alice", "affection", 7, conn)
            engine.users.increment_stat("alice", "xp", 2500, conn)

        stats = engine.users.get_stats("alice")
        assert stats.affection == 7
        assert stats.xp == 2500
        assert stats.level == 3

    def test_unknown_stat(self, engine):
        from core.story_engine.errors import InternalError

        with pytest.raises(InternalError):
            with engine.progress.transaction() as conn:
                engine.users.increment_stat("alice", "charisma", 1, conn)

    def test_ensure_user(self, engine):
        assert engine.users.ensure_user("carol") is True
        assert engine.users.ensure_user("carol") is False
        assert engine.users.get_stats("carol").level == 1
