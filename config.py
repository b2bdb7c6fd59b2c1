"""
Configuration Proxy

Defaults live in core/settings_defaults.json; put overrides in user/settings.json.
    import config
    config.STORY_DB_PATH
"""

from core.settings_manager import settings as _settings


def __getattr__(name):
    """Forward config.SOMETHING to the settings manager"""
    return getattr(_settings, name)


def get(key, default=None):
    return _settings.get(key, default)
