# core/story_engine/models.py
"""
Story engine data model.

Content (Story/Chapter/Choice) is read-only at runtime apart from counters.
UserStoryProgress is the single mutable row per (user, story).
Wire format (to_dict) uses camelCase keys to match the mobile client.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string (the storage format)."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


# =============================================================================
# REQUIREMENTS
# =============================================================================

class Comparison(str, Enum):
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"


class RequirementType(str, Enum):
    AFFECTION = "affection"
    LEVEL = "level"
    PREMIUM = "premium"


@dataclass(frozen=True)
class StatRequirement:
    """Numeric threshold on a user stat (affection or level)."""
    stat: RequirementType
    comparison: Comparison
    value: int
    error_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.stat.value,
            "comparison": self.comparison.value,
            "value": self.value,
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True)
class PremiumRequirement:
    """Exact match on the user's premium flag."""
    value: bool
    error_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": RequirementType.PREMIUM.value,
            "comparison": Comparison.EQ.value,
            "value": self.value,
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True)
class UnrecognizedRequirement:
    """Stored requirement with an unknown type or comparison. Always passes."""
    raw: Dict[str, Any]
    error_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.raw)


Requirement = Union[StatRequirement, PremiumRequirement, UnrecognizedRequirement]


# =============================================================================
# USER AGGREGATE
# =============================================================================

@dataclass
class UserStats:
    """Snapshot of the stats the engine reads from the User aggregate."""
    id: str
    affection: int = 0
    level: int = 1
    xp: int = 0
    is_premium: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "affection": self.affection,
            "level": self.level,
            "xp": self.xp,
            "isPremium": self.is_premium,
        }


# =============================================================================
# CONTENT
# =============================================================================

@dataclass
class Choice:
    id: str
    chapter_id: str
    text: str
    order: int = 0
    next_chapter_id: Optional[str] = None
    affection_change: int = 0
    xp_change: int = 0
    requirements: List[Requirement] = field(default_factory=list)
    selected_count: int = 0
    is_optimal: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.next_chapter_id is None

    def sort_key(self):
        return (self.order, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chapterId": self.chapter_id,
            "text": self.text,
            "order": self.order,
            "nextChapterId": self.next_chapter_id,
            "affectionChange": self.affection_change,
            "xpChange": self.xp_change,
            "requirements": [r.to_dict() for r in self.requirements],
            "selectedCount": self.selected_count,
            "isOptimal": self.is_optimal,
        }


@dataclass
class Chapter:
    id: str
    story_id: str
    chapter_number: int
    title: str
    content: str = ""
    is_start: bool = False
    is_ending: bool = False
    image_url: Optional[str] = None
    background_music_url: Optional[str] = None
    choices: List[Choice] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return not self.choices

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "chapterNumber": self.chapter_number, "title": self.title}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "storyId": self.story_id,
            "chapterNumber": self.chapter_number,
            "title": self.title,
            "content": self.content,
            "isStart": self.is_start,
            "isEnding": self.is_ending,
            "imageUrl": self.image_url,
            "backgroundMusicUrl": self.background_music_url,
            "choices": [c.to_dict() for c in self.choices],
        }


@dataclass
class Story:
    id: str
    title: str
    description: str = ""
    genre: str = "romance"
    thumbnail_url: Optional[str] = None
    is_premium: bool = False
    is_active: bool = True
    difficulty: str = "easy"
    estimated_duration: int = 15
    tags: List[str] = field(default_factory=list)
    play_count: int = 0
    completion_count: int = 0
    average_rating: float = 0.0
    created_at: Optional[str] = None
    chapters: List[Chapter] = field(default_factory=list)

    @property
    def total_chapters(self) -> int:
        return len(self.chapters)

    @property
    def start_chapter(self) -> Optional[Chapter]:
        starts = [c for c in self.chapters if c.is_start]
        return starts[0] if len(starts) == 1 else None

    def header(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "genre": self.genre,
            "thumbnailUrl": self.thumbnail_url,
            "isPremium": self.is_premium,
            "isActive": self.is_active,
            "difficulty": self.difficulty,
            "estimatedDuration": self.estimated_duration,
            "tags": list(self.tags),
            "totalChapters": self.total_chapters,
            "playCount": self.play_count,
            "completionCount": self.completion_count,
            "averageRating": self.average_rating,
            "createdAt": self.created_at,
        }

    def to_dict(self, full: bool = True) -> Dict[str, Any]:
        data = self.header()
        if full:
            data["chapters"] = [c.to_dict() for c in self.chapters]
        else:
            data["chapters"] = [c.summary() for c in self.chapters]
        return data


# =============================================================================
# PROGRESS
# =============================================================================

@dataclass(frozen=True)
class ChoiceRecord:
    chapter_id: str
    choice_id: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {"chapterId": self.chapter_id, "choiceId": self.choice_id, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChoiceRecord":
        return cls(data["chapterId"], data["choiceId"], data["timestamp"])


@dataclass
class UserStoryProgress:
    id: str
    user_id: str
    story_id: str
    current_chapter_id: str
    completed_chapter_ids: List[str] = field(default_factory=list)
    choices_made: List[ChoiceRecord] = field(default_factory=list)
    total_affection_gained: int = 0
    total_xp_gained: int = 0
    started_at: str = ""
    last_played_at: str = ""
    completed_at: Optional[str] = None
    rating: Optional[int] = None
    play_time: int = 0
    version: int = 0

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def state(self) -> str:
        return "completed" if self.is_completed else "in_progress"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "storyId": self.story_id,
            "currentChapterId": self.current_chapter_id,
            "completedChapterIds": list(self.completed_chapter_ids),
            "choicesMade": [r.to_dict() for r in self.choices_made],
            "totalAffectionGained": self.total_affection_gained,
            "totalXpGained": self.total_xp_gained,
            "startedAt": self.started_at,
            "lastPlayedAt": self.last_played_at,
            "completedAt": self.completed_at,
            "rating": self.rating,
            "playTime": self.play_time,
            "state": self.state,
        }
