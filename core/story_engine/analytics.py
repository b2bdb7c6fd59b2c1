# core/story_engine/analytics.py
"""
Analytics Aggregator - derived story statistics and ratings.
"""

import logging
from typing import Any, Dict, List

from .content_store import ContentStore
from .errors import PreconditionError
from .progress_store import ProgressStore

logger = logging.getLogger(__name__)


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class StoryAnalytics:
    """Completion rate, ratings, play time and popular choices for a story."""

    def __init__(self, content: ContentStore, progress: ProgressStore, popular_limit: int = 10):
        self._content = content
        self._progress = progress
        self._popular_limit = popular_limit

    def popular_choices(self, story_id: str, top_n: int = None) -> List[Dict[str, Any]]:
        """Top choices by selectedCount, ties broken by choice id."""
        limit = self._popular_limit if top_n is None else top_n
        choices = self._content.get_story_choices(story_id)
        total = sum(c.selected_count for c in choices)

        ranked = sorted(choices, key=lambda c: (-c.selected_count, c.id))[:max(limit, 0)]
        return [
            {
                "chapterId": c.chapter_id,
                "choiceId": c.id,
                "text": c.text,
                "count": c.selected_count,
                "percentage": round(c.selected_count / total * 100, 2) if total else 0.0,
            }
            for c in ranked
        ]

    def compute_stats(self, story_id: str, top_n: int = None) -> Dict[str, Any]:
        story = self._content.get_story_header(story_id)
        rows = self._progress.list_for_story(story_id)

        completion_rate = (story.completion_count / story.play_count * 100) if story.play_count > 0 else 0.0
        ratings = [p.rating for p in rows if p.rating is not None]
        play_times = [p.play_time for p in rows if p.is_completed]

        return {
            "storyId": story_id,
            "totalPlays": story.play_count,
            "totalCompletions": story.completion_count,
            "completionRate": round(completion_rate, 2),
            "averageRating": round(_mean(ratings), 2),
            "ratingCount": len(ratings),
            "averagePlayTime": round(_mean(play_times), 2),
            "activePlayers": sum(1 for p in rows if not p.is_completed),
            "popularChoices": self.popular_choices(story_id, top_n),
        }

    def rate_story(self, user_id: str, story_id: str, rating: Any) -> float:
        """
        Store a 1..5 rating on a completed run and recompute Story.averageRating.

        Returns:
            The story's new average rating
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise PreconditionError("Rating must be between 1 and 5")

        with self._progress.transaction() as conn:
            self._content.get_story_header(story_id, conn)
            progress = self._progress.get_progress(user_id, story_id, conn)
            if progress is None or not progress.is_completed:
                raise PreconditionError("Story not completed yet")

            self._progress.set_rating(progress, rating, conn)
            average = _mean(self._progress.ratings_for_story(story_id, conn))
            self._content.set_average_rating(story_id, average, conn)

        logger.info(f"[STORY] User {user_id} rated story {story_id} {rating}/5 (avg now {average:.2f})")
        return average
