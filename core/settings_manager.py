"""
Settings Manager - Centralized configuration handling
Loads defaults, applies construction, merges user overrides
"""
import json
import logging
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


class SettingsManager:
    """Read-mostly application settings: bundled defaults plus user/settings.json."""

    # Dict-valued settings that are values, not categories
    CONFIG_OBJECTS = {'AUTH_TOKENS'}

    def __init__(self, base_dir=None):
        self.BASE_DIR = Path(base_dir) if base_dir else Path(__file__).parent.parent
        self._defaults = {}
        self._user = {}
        self._config = {}
        self._lock = threading.RLock()

        self._load_defaults()
        self._apply_construction()
        self._load_user_settings()
        self._merge_settings()

    @property
    def defaults_path(self) -> Path:
        return self.BASE_DIR / 'core' / 'settings_defaults.json'

    @property
    def user_path(self) -> Path:
        return self.BASE_DIR / 'user' / 'settings.json'

    def _flatten_dict(self, nested_dict):
        """Flatten category dicts to a single level of setting keys."""
        items = {}
        for k, v in nested_dict.items():
            if k.startswith('_'):  # _comment and friends
                continue
            if isinstance(v, dict) and k not in self.CONFIG_OBJECTS:
                items.update(self._flatten_dict(v))
            else:
                items[k] = v
        return items

    def _load_defaults(self):
        """Load core/settings_defaults.json"""
        try:
            with open(self.defaults_path, 'r', encoding='utf-8') as f:
                nested = json.load(f)
            self._defaults = self._flatten_dict(nested)
            logger.info(f"Loaded default settings from {self.defaults_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load defaults: {e}")
            self._defaults = {}

    def _apply_construction(self):
        """Derived values that depend on other settings."""
        self._defaults['BASE_DIR'] = str(self.BASE_DIR)

    def _load_user_settings(self):
        """Load user/settings.json if it exists"""
        if not self.user_path.exists():
            logger.info("No user settings found, using defaults")
            self._user = {}
            return
        try:
            with open(self.user_path, 'r', encoding='utf-8') as f:
                nested = json.load(f)
            self._user = self._flatten_dict(nested)
            logger.info(f"Loaded user settings from {self.user_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load user settings: {e}")
            self._user = {}

    def _merge_settings(self):
        self._config = {**self._defaults, **self._user}

    def resolve_path(self, key, default=None):
        """Setting value as a Path, relative values anchored at BASE_DIR."""
        value = self.get(key, default)
        if value is None:
            return None
        path = Path(value)
        return path if path.is_absolute() else self.BASE_DIR / path

    def get(self, key, default=None):
        """Get a setting value"""
        with self._lock:
            return self._config.get(key, default)

    def set(self, key, value):
        """Override a setting in memory for this process."""
        with self._lock:
            self._config[key] = value

    def __getattr__(self, key):
        """Allow settings.KEY_NAME access"""
        if key.startswith('_'):
            return object.__getattribute__(self, key)
        with self._lock:
            if key in self._config:
                return self._config[key]
        raise AttributeError(f"Setting '{key}' not found")

    def __contains__(self, key):
        with self._lock:
            return key in self._config

    def __repr__(self):
        return f"<SettingsManager: {len(self._config)} settings>"


# Create singleton instance
settings = SettingsManager()
