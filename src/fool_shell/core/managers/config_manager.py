# src/fool_shell/core/managers/config_manager.py
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from fool_shell.core.utils.path_utils import PathUtils
from fool_shell.model import ShellConfig

logger = logging.getLogger(__name__)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Returns `base` updated recursively with `override` (neither is modified)."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    A singleton class to manage the shell's configuration.

    The packaged settings.json provides defaults; ~/.fool/settings.json, when
    present, overrides them key by key. Values can be changed in memory.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Loads the configuration from the files."""
        self._config: Dict[str, Any] = {}
        self.reset()
        logger.debug("ConfigManager initialized.")

    def get_all(self) -> Dict[str, Any]:
        """Returns the entire current configuration dictionary."""
        return self._config

    def get_nested(self, key_path: str, default: Optional[Any] = None) -> Any:
        """
        Safely retrieves a nested value from the configuration.
        e.g., 'ai.trigger_prefix'.
        """
        keys = key_path.split('.')
        value = self._config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
        return value if value is not None else default

    def set_nested(self, key_path: str, value: Any) -> bool:
        """
        Sets a nested value in the in-memory configuration.
        e.g., 'debug.level', 'INFO'
        """
        keys = key_path.split('.')
        d = self._config
        # Navigate to the second-to-last dictionary
        for key in keys[:-1]:
            d = d.setdefault(key, {})
            if not isinstance(d, dict):
                logger.error("Cannot set value: '%s' is not a dictionary.", key)
                return False

        # Get the original value to determine the type
        original_value = d.get(keys[-1])
        if original_value is not None:
            try:
                # Attempt to cast the new value to the type of the old one
                value = type(original_value)(value)
            except (ValueError, TypeError):
                logger.warning(
                    "Could not cast new value for '%s' to type %s. Storing as string.",
                    key_path, type(original_value).__name__
                )

        d[keys[-1]] = value
        logger.info("Configuration updated: %s = %s", key_path, value)
        return True

    def shell_config(self) -> ShellConfig:
        """Typed view of the current configuration; falls back to defaults when invalid."""
        try:
            return ShellConfig.model_validate(self._config)
        except ValidationError as e:
            logger.error("Invalid configuration, using defaults: %s", e)
            return ShellConfig()

    def reset(self):
        """Reloads the in-memory configuration from the settings files."""
        self._config = _deep_merge(
            self._load_file(PathUtils.get_default_settings_file()),
            self._load_file(PathUtils.get_user_settings_file()),
        )
        logger.info("Configuration has been (re)loaded.")

    @staticmethod
    def _load_file(config_path: Path) -> Dict[str, Any]:
        if not config_path.exists():
            logger.debug("Settings file not found at %s.", config_path)
            return {}
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load %s: %s", config_path, e, exc_info=True)
            return {}
        if not isinstance(data, dict):
            logger.error("Ignoring %s: top level must be a JSON object.", config_path)
            return {}
        return data

    def write_user_defaults(self) -> Optional[Path]:
        """
        Writes the packaged defaults to the user settings file.

        Returns the path written, or None when the file already exists.
        """
        target = PathUtils.get_user_settings_file()
        if target.exists():
            return None
        target.parent.mkdir(parents=True, exist_ok=True)
        defaults = self._load_file(PathUtils.get_default_settings_file()) or ShellConfig().model_dump()
        target.write_text(json.dumps(defaults, indent=2) + "\n", encoding="utf-8")
        logger.info("Wrote default settings to %s", target)
        return target


# The global singleton instance that the entire application will use.
config_manager = ConfigManager()
