"""
Seed Tests - Story preset parsing, validation and loading.

Run with: pytest tests/test_seed.py -v
"""
import json
import pytest


def _preset(**overrides):
    data = {
        "id": "p1",
        "title": "Preset",
        "chapters": [
            {"id": "p1-1", "chapterNumber": 1, "title": "One", "isStart": True,
             "choices": [{"id": "p1-1-a", "text": "Next", "nextChapterId": "p1-2", "affectionChange": 1}]},
            {"id": "p1-2", "chapterNumber": 2, "title": "Two", "isEnding": True,
             "choices": [{"id": "p1-2-a", "text": "End", "nextChapterId": None}]},
        ],
    }
    data.update(overrides)
    return data


# =============================================================================
# parse_preset
# =============================================================================

class TestParsePreset:
    """Test preset JSON -> Story graph."""

    def test_parses_valid_preset(self):
        from core.story_engine.seed import parse_preset

        story = parse_preset(_preset())
        assert story.id == "p1"
        assert story.total_chapters == 2
        assert story.start_chapter.id == "p1-1"
        assert story.chapters[0].choices[0].affection_change == 1

    def test_choices_sorted_by_order_then_id(self):
        from core.story_engine.seed import parse_preset

        data = _preset()
        data["chapters"][0]["choices"] = [
            {"id": "z", "text": "z", "order": 1, "nextChapterId": "p1-2"},
            {"id": "b", "text": "b", "order": 2, "nextChapterId": "p1-2"},
            {"id": "a", "text": "a", "order": 1, "nextChapterId": "p1-2"},
        ]
        story = parse_preset(data)
        assert [c.id for c in story.chapters[0].choices] == ["a", "z", "b"]

    def test_rejects_two_start_chapters(self):
        from core.story_engine.seed import parse_preset
        from core.story_engine.errors import ContentValidationError

        data = _preset()
        data["chapters"][1]["isStart"] = True
        with pytest.raises(ContentValidationError, match="exactly one start"):
            parse_preset(data)

    def test_rejects_no_start_chapter(self):
        from core.story_engine.seed import parse_preset
        from core.story_engine.errors import ContentValidationError

        data = _preset()
        data["chapters"][0]["isStart"] = False
        with pytest.raises(ContentValidationError):
            parse_preset(data)

    def test_rejects_dangling_next_chapter(self):
        from core.story_engine.seed import parse_preset
        from core.story_engine.errors import ContentValidationError

        data = _preset()
        data["chapters"][0]["choices"][0]["nextChapterId"] = "nowhere"
        with pytest.raises(ContentValidationError, match="unknown chapter"):
            parse_preset(data)

    def test_rejects_duplicate_chapter_numbers(self):
        from core.story_engine.seed import parse_preset
        from core.story_engine.errors import ContentValidationError

        data = _preset()
        data["chapters"][1]["chapterNumber"] = 1
        with pytest.raises(ContentValidationError, match="duplicate chapter numbers"):
            parse_preset(data)

    def test_strict_rejects_unknown_comparator(self):
        from core.story_engine.seed import parse_preset
        from core.story_engine.errors import ContentValidationError

        data = _preset()
        data["chapters"][0]["choices"][0]["requirements"] = [
            {"type": "affection", "comparison": "gt", "value": 5}
        ]
        with pytest.raises(ContentValidationError):
            parse_preset(data, strict=True)
        assert parse_preset(data, strict=False).chapters[0].choices[0].requirements

    def test_rejects_unknown_genre(self):
        from core.story_engine.seed import parse_preset
        from core.story_engine.errors import ContentValidationError

        with pytest.raises(ContentValidationError, match="genre"):
            parse_preset(_preset(genre="horror-comedy"))

    def test_rejects_non_integer_reward(self):
        from core.story_engine.seed import parse_preset
        from core.story_engine.errors import ContentValidationError

        data = _preset()
        data["chapters"][0]["choices"][0]["xpChange"] = "lots"
        with pytest.raises(ContentValidationError):
            parse_preset(data)


# =============================================================================
# Bundled presets and loading
# =============================================================================

class TestBundledPresets:
    """Every bundled preset must be a valid story graph."""

    def test_bundled_presets_parse(self):
        from core.story_engine.seed import find_preset_files, parse_preset

        files = find_preset_files()
        assert len(files) >= 3
        for path in files:
            story = parse_preset(json.loads(path.read_text(encoding='utf-8')))
            assert sum(1 for c in story.chapters if c.is_start) == 1
            assert any(ch.is_terminal for c in story.chapters for ch in c.choices)


class TestLoadPresets:
    """Test load_presets() into a content store."""

    def test_loads_bundled_presets(self, temp_db):
        from core.story_engine.content_store import ContentStore
        from core.story_engine.seed import load_presets

        content = ContentStore(temp_db)
        loaded, failed = load_presets(content)

        assert "first-date-adventure" in loaded
        assert failed == []
        assert {s.id for s in content.get_catalog()} >= {"first-date-adventure", "mystery-at-midnight"}

    def test_bad_file_skipped(self, temp_db, tmp_path):
        """One invalid preset doesn't block the rest."""
        from core.story_engine.content_store import ContentStore
        from core.story_engine.seed import load_presets

        presets = tmp_path / "presets"
        presets.mkdir()
        (presets / "good.json").write_text(json.dumps(_preset()), encoding='utf-8')
        (presets / "broken.json").write_text("{not json", encoding='utf-8')

        loaded, failed = load_presets(ContentStore(temp_db), presets_dir=presets)
        assert loaded == ["p1"]
        assert failed == ["broken.json"]

    def test_user_preset_shadows_bundled(self, tmp_path):
        from core.story_engine.seed import find_preset_files

        bundled = tmp_path / "bundled"
        user = tmp_path / "user"
        bundled.mkdir()
        user.mkdir()
        (bundled / "a.json").write_text("{}", encoding='utf-8')
        (user / "a.json").write_text("{}", encoding='utf-8')

        assert find_preset_files(bundled, user) == [user / "a.json"]

    def test_reseed_preserves_counters(self, temp_db):
        """Re-saving a story keeps play counts."""
        from core.story_engine.content_store import ContentStore
        from core.story_engine.seed import parse_preset

        content = ContentStore(temp_db)
        content.save_story(parse_preset(_preset()))
        content.increment_play_count("p1")
        content.save_story(parse_preset(_preset(title="Renamed")))

        header = content.get_story_header("p1")
        assert header.title == "Renamed"
        assert header.play_count == 1

    def test_reseed_moves_start_chapter(self, temp_db):
        """A preset may swap its start chapter and chapter numbers between seeds."""
        from core.story_engine.content_store import ContentStore
        from core.story_engine.seed import parse_preset

        content = ContentStore(temp_db)
        content.save_story(parse_preset(_preset()))
        content.save_story(parse_preset(_preset(chapters=[
            {"id": "p1-2", "chapterNumber": 1, "title": "Two", "isStart": True,
             "choices": [{"id": "p1-2-a", "text": "Back", "nextChapterId": "p1-1"}]},
            {"id": "p1-1", "chapterNumber": 2, "title": "One", "isEnding": True,
             "choices": [{"id": "p1-1-a", "text": "End", "nextChapterId": None}]},
        ])))

        assert content.get_start_chapter("p1").id == "p1-2"
        story = content.get_story("p1")
        assert [(c.id, c.chapter_number) for c in story.chapters] == [("p1-2", 1), ("p1-1", 2)]
        assert content.get_choice("p1-1-a").next_chapter_id is None

    def test_reseed_prunes_removed_content(self, temp_db):
        """Chapters and choices dropped from a preset are removed from the store."""
        from core.story_engine.content_store import ContentStore
        from core.story_engine.seed import parse_preset

        content = ContentStore(temp_db)
        content.save_story(parse_preset(_preset()))
        content.increment_selected_count("p1-1-a")
        content.save_story(parse_preset(_preset(chapters=[
            {"id": "p1-1", "chapterNumber": 1, "title": "One", "isStart": True,
             "choices": [{"id": "p1-1-a", "text": "Next", "nextChapterId": "p1-3"}]},
            {"id": "p1-3", "chapterNumber": 2, "title": "Three", "isEnding": True,
             "choices": [{"id": "p1-3-a", "text": "End", "nextChapterId": None}]},
        ])))

        story = content.get_story("p1")
        assert [c.id for c in story.chapters] == ["p1-1", "p1-3"]
        assert content.get_choice("p1-2-a") is None
        assert content.get_choice("p1-1-a").selected_count == 1
