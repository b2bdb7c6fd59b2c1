# amora.py - Amora story engine server
import sys
import logging

import uvicorn

from core.amora_logging import setup_logging
from core.api_fastapi import app, set_engine
from core.settings_manager import settings
from core.story_engine import StoryEngine

logger = logging.getLogger(__name__)


def build_engine(settings=settings) -> StoryEngine:
    """Create the engine, its schema, seeded presets and the configured users."""
    engine = StoryEngine.from_settings(settings)
    ok = engine.initialize(
        seed=settings.get('STORY_SEED_ON_START', True),
        user_presets_dir=settings.resolve_path('STORY_PRESETS_DIR'),
        strict=settings.get('STORY_STRICT_REQUIREMENTS', True),
    )
    if not ok:
        raise RuntimeError(f"Could not initialize story database at {engine.db_path}")

    for user_id in sorted(set((settings.get('AUTH_TOKENS') or {}).values())):
        engine.users.ensure_user(user_id)
    return engine


def run():
    setup_logging(
        log_dir=str(settings.resolve_path('LOG_DIR', 'user/logs')),
        level=settings.get('LOG_LEVEL', 'INFO'),
        backup_count=settings.get('LOG_BACKUP_COUNT', 30),
    )

    try:
        engine = build_engine()
    except RuntimeError as e:
        logger.critical(f"FATAL: {e}")
        return 1

    set_engine(engine)

    if not settings.get('AUTH_TOKENS'):
        logger.warning("AUTH_TOKENS is empty - every story request will be rejected with 401")

    host = settings.get('WEB_UI_HOST', '127.0.0.1')
    port = settings.get('WEB_UI_PORT', 8073)
    logger.info(f"Amora story engine starting on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(run())
