"""Shared pytest fixtures for Amora story engine tests."""
import sys
import json
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

# Add project root to path BEFORE any other imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import pytest


@pytest.fixture
def settings_defaults():
    """Minimal settings defaults for testing."""
    return {
        "_comment": "test defaults",
        "stories": {
            "STORY_DB_PATH": "user/stories.db",
            "STORY_POPULAR_CHOICES_LIMIT": 5,
            "STORY_RESTART_REVERSES_REWARDS": False
        },
        "auth": {
            "AUTH_TOKENS": {"tok-alice": "alice"}
        },
        "web": {
            "WEB_UI_HOST": "0.0.0.0",
            "WEB_UI_PORT": 9000
        }
    }


@pytest.fixture
def settings_defaults_file(tmp_path, settings_defaults):
    """Create a temporary core/settings_defaults.json file."""
    core_dir = tmp_path / "core"
    core_dir.mkdir()
    defaults_file = core_dir / "settings_defaults.json"
    defaults_file.write_text(json.dumps(settings_defaults), encoding='utf-8')
    return defaults_file


@pytest.fixture
def temp_db():
    """Create a temporary database with the story schema."""
    from core.story_engine.db import initialize_database

    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "stories.db"
        assert initialize_database(db_path)
        yield db_path


@pytest.fixture
def publisher():
    """Event publisher stand-in that records calls."""
    return MagicMock()


@pytest.fixture
def engine(temp_db, publisher):
    """Engine with the bundled presets seeded and three users."""
    from core.story_engine import StoryEngine
    from core.story_engine.models import UserStats

    eng = StoryEngine(temp_db, publisher=publisher)
    assert eng.initialize(seed=True)
    eng.users.upsert(UserStats(id="alice"))
    eng.users.upsert(UserStats(id="bob", affection=10))
    eng.users.upsert(UserStats(id="vip", affection=80, level=6, xp=5000, is_premium=True))
    return eng


def build_branching_story():
    """
    Story S: start C1 offers A (+5 affection, +10 xp, -> C2) and B (requires affection >= 50).
    C2 offers a terminal choice Z.
    """
    from core.story_engine.models import Story, Chapter, Choice, StatRequirement, RequirementType, Comparison

    story = Story(id="S", title="Branching Test")
    c1 = Chapter(id="C1", story_id="S", chapter_number=1, title="Start", is_start=True)
    c2 = Chapter(id="C2", story_id="S", chapter_number=2, title="Middle", is_ending=True)
    c1.choices = [
        Choice(id="A", chapter_id="C1", text="Go on", order=1, next_chapter_id="C2",
               affection_change=5, xp_change=10),
        Choice(id="B", chapter_id="C1", text="Skip ahead", order=2, next_chapter_id=None,
               affection_change=5, xp_change=50,
               requirements=[StatRequirement(RequirementType.AFFECTION, Comparison.GTE, 50, "Too soon")]),
    ]
    c2.choices = [
        Choice(id="Z", chapter_id="C2", text="The end", order=1, next_chapter_id=None,
               affection_change=1, xp_change=5),
    ]
    story.chapters = [c1, c2]
    return story


@pytest.fixture
def branching_engine(engine):
    """Seeded engine that also holds the small S/C1/C2 story."""
    engine.content.save_story(build_branching_story())
    return engine


@pytest.fixture
def client(engine):
    """FastAPI TestClient wired to the seeded engine with fixed bearer tokens."""
    from fastapi.testclient import TestClient
    from core import api_fastapi, auth

    tokens = {"tok-alice": "alice", "tok-bob": "bob", "tok-vip": "vip"}
    api_fastapi.set_engine(engine)
    auth.set_token_verifier(tokens.get)
    auth._failures.clear()

    with TestClient(api_fastapi.app) as c:
        yield c

    api_fastapi.set_engine(None)
    auth.set_token_verifier(None)
    auth._failures.clear()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
