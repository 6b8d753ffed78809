# src/fool_shell/core/utils/path_utils.py
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class PathUtils:
    """
    A central utility for reliably retrieving important package and user paths.
    """

    # --- Package specific paths

    @staticmethod
    def get_shell_package_root() -> Path:
        """Returns the directory of the installed `fool_shell` package."""
        return Path(__file__).resolve().parents[2]

    @staticmethod
    def get_default_settings_file() -> Path:
        """The settings.json shipped with the package (the defaults)."""
        return PathUtils.get_shell_package_root() / "settings.json"

    # --- User specific paths ---

    @staticmethod
    def get_user_config_dir() -> Path:
        """
        Returns the path to the user's config directory.
        (e.g., ~/.fool/)
        """
        return Path.home() / ".fool"

    @staticmethod
    def get_user_settings_file() -> Path:
        return PathUtils.get_user_config_dir() / "settings.json"

    @staticmethod
    def expand_user_path(path: str) -> Path:
        """Expands `~` and returns an absolute path; parent directories are not created."""
        return Path(path).expanduser().resolve()
