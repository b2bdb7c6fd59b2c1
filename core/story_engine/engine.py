# core/story_engine/engine.py
"""
Story Engine - composition root for branching-narrative progression.

Wires the content/progress stores, the user aggregate seam, the choice
resolver and analytics, and exposes the operations the API layer calls.
All SQLite failures leave here as StoryError subclasses.
"""

import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple, Union

from core.event_bus import Events, publish

from .analytics import StoryAnalytics
from .content_store import ContentStore
from .db import initialize_database
from .errors import ConflictError, InternalError, StoryError, is_client_error
from .models import Chapter, Story, UserStoryProgress
from .progress_store import ProgressStore
from .resolver import ChoiceResolver, ChoiceResult
from .seed import load_presets
from .users import SqliteUserStore, UserStore

logger = logging.getLogger(__name__)


class StoryEngine:
    """Facade over the story subsystem. One instance per process."""

    def __init__(
        self,
        db_path: Union[str, Path],
        users: Optional[UserStore] = None,
        restart_reverses_rewards: bool = False,
        popular_limit: int = 10,
        idle_cap: int = 300,
        xp_per_level: int = 1000,
        timeout: float = 30.0,
        publisher: Optional[Callable] = None,
    ):
        self.db_path = Path(db_path)
        self.content = ContentStore(self.db_path, timeout)
        self.progress = ProgressStore(self.db_path, timeout, idle_cap)
        self.users = users or SqliteUserStore(self.db_path, xp_per_level, timeout)
        self.resolver = ChoiceResolver(self.content, self.progress, self.users, restart_reverses_rewards)
        self.analytics = StoryAnalytics(self.content, self.progress, popular_limit)
        self._publish = publisher or publish

    @classmethod
    def from_settings(cls, settings) -> "StoryEngine":
        """Build an engine from the settings manager (or the config proxy)."""
        base_dir = Path(settings.get('BASE_DIR', Path(__file__).parent.parent.parent))
        db_path = Path(settings.get('STORY_DB_PATH', 'user/stories.db'))
        if not db_path.is_absolute():
            db_path = base_dir / db_path
        return cls(
            db_path,
            restart_reverses_rewards=settings.get('STORY_RESTART_REVERSES_REWARDS', False),
            popular_limit=settings.get('STORY_POPULAR_CHOICES_LIMIT', 10),
            idle_cap=settings.get('STORY_PLAYTIME_IDLE_CAP', 300),
            xp_per_level=settings.get('STORY_XP_PER_LEVEL', 1000),
            timeout=settings.get('STORY_DB_TIMEOUT', 30.0),
        )

    def initialize(self, seed: bool = True, presets_dir: Optional[Path] = None,
                   user_presets_dir: Optional[Path] = None, strict: bool = True) -> bool:
        """Create the schema and optionally load story presets."""
        if not initialize_database(self.db_path):
            return False
        if seed:
            load_presets(self.content, presets_dir, user_presets_dir, strict)
        return True

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Log engine errors and translate SQLite failures into StoryError."""
        try:
            yield
        except StoryError as e:
            if is_client_error(e):
                logger.warning(f"[STORY] {operation} rejected ({e.kind}): {e.message}")
            else:
                logger.error(f"[STORY] {operation} failed ({e.kind}): {e.message}")
            raise
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                logger.warning(f"[STORY] {operation} hit a busy database: {e}")
                raise ConflictError("Story is busy. Retry the request.") from e
            logger.error(f"[STORY] {operation} database error: {e}", exc_info=True)
            raise InternalError("Story database error") from e
        except sqlite3.Error as e:
            logger.error(f"[STORY] {operation} database error: {e}", exc_info=True)
            raise InternalError("Story database error") from e

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def list_stories(self, user_id: str) -> List[Tuple[Story, Optional[UserStoryProgress]]]:
        """Catalog of active stories, each paired with this user's progress (or None)."""
        with self._guard("list_stories"):
            stories = self.content.get_catalog()
            progress = {p.story_id: p for p in self.progress.list_for_user(user_id)}
        return [(story, progress.get(story.id)) for story in stories]

    def get_story(self, user_id: str, story_id: str) -> Tuple[Story, Optional[UserStoryProgress]]:
        """Full story content. The premium gate runs before any content is loaded."""
        with self._guard("get_story"):
            stats = self.users.get_stats(user_id)
            self.content.check_access(story_id, stats)
            story = self.content.get_story(story_id)
            progress = self.progress.get_progress(user_id, story_id)
        return story, progress

    def start_story(self, user_id: str, story_id: str) -> Tuple[UserStoryProgress, Chapter]:
        with self._guard("start_story"):
            progress, chapter = self.resolver.start(user_id, story_id)
        self._publish(Events.STORY_STARTED, {
            "user_id": user_id, "story_id": story_id, "chapter_id": chapter.id,
        })
        return progress, chapter

    def get_current_chapter(self, user_id: str, story_id: str) -> Tuple[Chapter, UserStoryProgress]:
        with self._guard("get_current_chapter"):
            return self.resolver.current_chapter(user_id, story_id)

    def make_choice(self, user_id: str, story_id: str, chapter_id: str, choice_id: str) -> ChoiceResult:
        with self._guard("make_choice"):
            result = self.resolver.make_choice(user_id, story_id, chapter_id, choice_id)

        self._publish(Events.STORY_CHOICE_MADE, {
            "user_id": user_id, "story_id": story_id, "chapter_id": chapter_id,
            "choice_id": choice_id, "rewards": result.rewards,
        })
        if result.is_story_complete:
            self._publish(Events.STORY_COMPLETED, {
                "user_id": user_id, "story_id": story_id,
                "total_affection": result.progress.total_affection_gained,
                "total_xp": result.progress.total_xp_gained,
            })
        return result

    def rate_story(self, user_id: str, story_id: str, rating) -> float:
        with self._guard("rate_story"):
            average = self.analytics.rate_story(user_id, story_id, rating)
        self._publish(Events.STORY_RATED, {
            "user_id": user_id, "story_id": story_id, "rating": rating, "average_rating": average,
        })
        return average

    def get_story_stats(self, story_id: str, top_n: Optional[int] = None) -> dict:
        with self._guard("get_story_stats"):
            return self.analytics.compute_stats(story_id, top_n)
