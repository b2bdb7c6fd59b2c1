# core/story_engine/resolver.py
"""
Choice Resolver - the progression state machine.

    NotStarted --start--> InProgress --choice--> InProgress (next chapter)
    InProgress --final choice--> Completed (no next chapter)
    Completed --start--> InProgress

Each transition runs in a single BEGIN IMMEDIATE transaction: position check,
requirement gating, reward application to the user and the progress update
commit together or not at all. Content counters are bumped afterwards on a
best-effort basis.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .conditions import check_requirements
from .content_store import ContentStore
from .errors import (
    InternalError, InvalidChoiceError, InvalidStateError, NotFoundError,
    RequirementNotMetError,
)
from .models import Chapter, ChoiceRecord, UserStoryProgress, utc_now
from .progress_store import ProgressStore
from .users import UserStore

logger = logging.getLogger(__name__)


@dataclass
class ChoiceResult:
    progress: UserStoryProgress
    next_chapter: Optional[Chapter]
    affection: int
    xp: int
    is_story_complete: bool

    @property
    def rewards(self) -> Dict[str, int]:
        return {"affection": self.affection, "xp": self.xp}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "progress": self.progress.to_dict(),
            "nextChapter": self.next_chapter.to_dict() if self.next_chapter else None,
            "rewards": self.rewards,
            "isStoryComplete": self.is_story_complete,
        }


class ChoiceResolver:
    """Validates and applies story transitions for one user at a time."""

    def __init__(self, content: ContentStore, progress: ProgressStore, users: UserStore,
                 restart_reverses_rewards: bool = False):
        self._content = content
        self._progress = progress
        self._users = users
        self._restart_reverses_rewards = restart_reverses_rewards

    def start(self, user_id: str, story_id: str) -> Tuple[UserStoryProgress, Chapter]:
        """Create or reset progress at the story's start chapter."""
        with self._progress.transaction() as conn:
            stats = self._users.get_stats(user_id, conn)
            self._content.check_access(story_id, stats, conn)
            start_chapter = self._content.get_start_chapter(story_id, conn)

            previous = self._progress.get_progress(user_id, story_id, conn)
            if previous is not None and self._restart_reverses_rewards:
                self._users.increment_stat(user_id, "affection", -previous.total_affection_gained, conn)
                self._users.increment_stat(user_id, "xp", -previous.total_xp_gained, conn)
                logger.info(
                    f"[STORY] Restart reversed rewards for user {user_id}: "
                    f"affection {-previous.total_affection_gained:+d}, xp {-previous.total_xp_gained:+d}"
                )

            progress = self._progress.create_or_reset(user_id, story_id, start_chapter.id, conn)

        self._content.increment_play_count(story_id)
        logger.info(f"[STORY] User {user_id} started story {story_id} at chapter {start_chapter.id}")
        return progress, start_chapter

    def current_chapter(self, user_id: str, story_id: str) -> Tuple[Chapter, UserStoryProgress]:
        stats = self._users.get_stats(user_id)
        self._content.check_access(story_id, stats)
        progress = self._progress.require(user_id, story_id, message="Story not started yet")
        chapter = self._content.get_chapter(progress.current_chapter_id)
        return chapter, progress

    def make_choice(self, user_id: str, story_id: str, chapter_id: str, choice_id: str) -> ChoiceResult:
        """
        Resolve one choice submission.

        Raises:
            NotFoundError: progress missing (story never started)
            InvalidStateError: chapter_id is not the current position, or the
                story is already completed
            InvalidChoiceError: choice unknown or not on chapter_id
            RequirementNotMetError: a gating requirement failed
            ConflictError: the progress row changed underneath us
        """
        with self._progress.transaction() as conn:
            progress = self._progress.require(user_id, story_id, conn)

            if progress.is_completed:
                raise InvalidStateError("Story already completed. Start it again to replay.")
            if progress.current_chapter_id != chapter_id:
                logger.warning(
                    f"[CHOICE] Stale position for user {user_id}: submitted {chapter_id}, "
                    f"current {progress.current_chapter_id}"
                )
                raise InvalidStateError("Invalid chapter. Not your current position.")

            choice = self._content.get_choice(choice_id, conn)
            if choice is None or choice.chapter_id != chapter_id:
                raise InvalidChoiceError("Invalid choice")

            stats = self._users.get_stats(user_id, conn)
            self._content.check_access(story_id, stats, conn)

            ok, message = check_requirements(choice.requirements, stats)
            if not ok:
                logger.info(f"[CHOICE] User {user_id} blocked on choice {choice_id}: {message}")
                raise RequirementNotMetError(message)

            next_chapter = None
            if choice.next_chapter_id:
                try:
                    next_chapter = self._content.get_chapter(choice.next_chapter_id, conn)
                except NotFoundError:
                    raise InternalError(f"Choice {choice_id} points to a missing chapter")
                if next_chapter.story_id != story_id:
                    raise InternalError(f"Choice {choice_id} leaves story {story_id}")

            self._users.increment_stat(user_id, "affection", choice.affection_change, conn)
            self._users.increment_stat(user_id, "xp", choice.xp_change, conn)

            record = ChoiceRecord(chapter_id=chapter_id, choice_id=choice_id, timestamp=utc_now())
            updated = self._progress.advance(
                progress, choice.next_chapter_id, record,
                choice.affection_change, choice.xp_change, conn,
            )

        is_complete = next_chapter is None
        self._content.increment_selected_count(choice_id)
        if is_complete:
            self._content.increment_completion_count(story_id)
            logger.info(f"[STORY] User {user_id} completed story {story_id}")

        logger.info(
            f"[CHOICE] User {user_id} chose {choice_id} in {chapter_id} "
            f"(affection {choice.affection_change:+d}, xp {choice.xp_change:+d})"
        )
        return ChoiceResult(
            progress=updated,
            next_chapter=next_chapter,
            affection=choice.affection_change,
            xp=choice.xp_change,
            is_story_complete=is_complete,
        )
