# core/story_engine/seed.py
"""
Story presets - JSON story graphs loaded into the content store at startup.

Search order mirrors other user-overridable data: user/story_presets/ first,
then the bundled core/story_engine/presets/. A user preset with the same
file name replaces the bundled one.

Preset shape:
    {
      "id": "first-date-adventure", "title": "...", "isPremium": false, ...,
      "chapters": [
        {"id": "fd-1", "chapterNumber": 1, "title": "...", "isStart": true,
         "choices": [{"id": "fd-1-a", "text": "...", "nextChapterId": "fd-2",
                      "affectionChange": 3, "xpChange": 20, "requirements": []}]}
      ]
    }
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .conditions import parse_requirement
from .content_store import ContentStore
from .errors import ContentValidationError
from .models import Chapter, Choice, Story

logger = logging.getLogger(__name__)

BUNDLED_PRESETS_DIR = Path(__file__).parent / "presets"

GENRES = {"adventure", "romance", "mystery", "fantasy", "slice-of-life"}
DIFFICULTIES = {"easy", "medium", "hard"}


def _int_field(data: dict, key: str, where: str, default: int = 0) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ContentValidationError(f"{where}: '{key}' must be an integer, got {value!r}")
    return value


def _require(data: dict, key: str, where: str) -> Any:
    if not data.get(key):
        raise ContentValidationError(f"{where}: missing '{key}'")
    return data[key]


def parse_preset(data: Dict[str, Any], strict: bool = True) -> Story:
    """Build a Story graph from preset JSON. Raises ContentValidationError."""
    if not isinstance(data, dict):
        raise ContentValidationError("Preset must be a JSON object")

    story_id = _require(data, "id", "story")
    where = f"story {story_id}"

    genre = data.get("genre", "romance")
    if genre not in GENRES:
        raise ContentValidationError(f"{where}: unknown genre {genre!r}")
    difficulty = data.get("difficulty", "easy")
    if difficulty not in DIFFICULTIES:
        raise ContentValidationError(f"{where}: unknown difficulty {difficulty!r}")

    story = Story(
        id=story_id,
        title=_require(data, "title", where),
        description=data.get("description", ""),
        genre=genre,
        thumbnail_url=data.get("thumbnailUrl"),
        is_premium=bool(data.get("isPremium", False)),
        is_active=bool(data.get("isActive", True)),
        difficulty=difficulty,
        estimated_duration=_int_field(data, "estimatedDuration", where, 15),
        tags=[str(t) for t in data.get("tags", [])],
    )

    for raw_chapter in data.get("chapters", []):
        chapter_id = _require(raw_chapter, "id", where)
        chapter_where = f"{where} chapter {chapter_id}"
        chapter = Chapter(
            id=chapter_id,
            story_id=story_id,
            chapter_number=_int_field(raw_chapter, "chapterNumber", chapter_where),
            title=_require(raw_chapter, "title", chapter_where),
            content=raw_chapter.get("content", ""),
            is_start=bool(raw_chapter.get("isStart", False)),
            is_ending=bool(raw_chapter.get("isEnding", False)),
            image_url=raw_chapter.get("imageUrl"),
            background_music_url=raw_chapter.get("backgroundMusicUrl"),
        )
        for index, raw_choice in enumerate(raw_chapter.get("choices", [])):
            choice_id = _require(raw_choice, "id", chapter_where)
            choice_where = f"{chapter_where} choice {choice_id}"
            chapter.choices.append(Choice(
                id=choice_id,
                chapter_id=chapter_id,
                text=_require(raw_choice, "text", choice_where),
                order=_int_field(raw_choice, "order", choice_where, index),
                next_chapter_id=raw_choice.get("nextChapterId"),
                affection_change=_int_field(raw_choice, "affectionChange", choice_where),
                xp_change=_int_field(raw_choice, "xpChange", choice_where),
                requirements=[parse_requirement(r, strict=strict) for r in raw_choice.get("requirements", [])],
                is_optimal=bool(raw_choice.get("isOptimal", False)),
            ))
        chapter.choices.sort(key=Choice.sort_key)
        story.chapters.append(chapter)

    story.chapters.sort(key=lambda c: c.chapter_number)
    problems = validate_story(story)
    if problems:
        raise ContentValidationError(f"{where}: " + "; ".join(problems))
    return story


def validate_story(story: Story) -> List[str]:
    """
    Check graph invariants. Returns a list of problems (empty if valid).

    - at least one chapter, exactly one start chapter
    - chapter numbers and ids unique; choice ids unique
    - every nextChapterId points at a chapter of the same story
    """
    problems = []
    if not story.chapters:
        problems.append("story has no chapters")

    starts = [c.id for c in story.chapters if c.is_start]
    if len(starts) != 1:
        problems.append(f"expected exactly one start chapter, found {len(starts)}")

    chapter_ids = [c.id for c in story.chapters]
    if len(set(chapter_ids)) != len(chapter_ids):
        problems.append("duplicate chapter ids")

    numbers = [c.chapter_number for c in story.chapters]
    if len(set(numbers)) != len(numbers):
        problems.append("duplicate chapter numbers")

    choice_ids = [ch.id for c in story.chapters for ch in c.choices]
    if len(set(choice_ids)) != len(choice_ids):
        problems.append("duplicate choice ids")

    known = set(chapter_ids)
    for chapter in story.chapters:
        for choice in chapter.choices:
            if choice.next_chapter_id is not None and choice.next_chapter_id not in known:
                problems.append(f"choice {choice.id} points to unknown chapter {choice.next_chapter_id}")

    return problems


def find_preset_files(presets_dir: Optional[Path] = None, user_dir: Optional[Path] = None) -> List[Path]:
    """Preset files by name; user presets shadow bundled ones."""
    by_name: Dict[str, Path] = {}
    for directory in (presets_dir or BUNDLED_PRESETS_DIR, user_dir):
        if directory and Path(directory).is_dir():
            for path in sorted(Path(directory).glob("*.json")):
                by_name[path.name] = path
    return [by_name[name] for name in sorted(by_name)]


def load_presets(content: ContentStore, presets_dir: Optional[Path] = None,
                 user_dir: Optional[Path] = None, strict: bool = True) -> Tuple[List[str], List[str]]:
    """
    Validate and save every preset file.

    Invalid presets are logged and skipped so one bad file doesn't block the rest.

    Returns:
        (loaded story ids, failed file names)
    """
    loaded, failed = [], []
    for path in find_preset_files(presets_dir, user_dir):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            story = parse_preset(data, strict=strict)
            content.save_story(story)
            loaded.append(story.id)
        except (OSError, json.JSONDecodeError, ContentValidationError, sqlite3.Error) as e:
            logger.error(f"[SEED] Skipping preset {path.name}: {e}")
            failed.append(path.name)

    logger.info(f"[SEED] Loaded {len(loaded)} story presets ({len(failed)} failed)")
    return loaded, failed
