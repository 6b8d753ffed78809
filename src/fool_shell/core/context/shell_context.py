# src/fool_shell/core/context/shell_context.py
import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

# Prevent circular imports during runtime, but retain type hinting for static analysis
if TYPE_CHECKING:
    from fool_shell.core.managers.shell_history_manager import ShellHistoryManager

logger = logging.getLogger(__name__)


class ShellContext:
    """
    The mutable state of one shell session: working directories, the
    environment map handed to child processes, and the alias table.

    It is passed explicitly into every dispatch call. Only built-ins mutate it,
    and only on the control thread.
    """

    def __init__(
        self,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        aliases: Optional[Mapping[str, str]] = None,
        history: Optional["ShellHistoryManager"] = None,
        ai_trigger: str = "!",
    ):
        self.env: Dict[str, str] = dict(os.environ if env is None else env)
        self.cwd: str = str(Path(cwd).resolve()) if cwd else os.getcwd()
        self.env["PWD"] = self.cwd
        self.previous_cwd: Optional[str] = None
        self.aliases: Dict[str, str] = dict(aliases or {})
        self.history = history
        self.ai_trigger = ai_trigger

        # Set by the exit built-in; the shell loop stops once it is not None.
        self.exit_requested: Optional[int] = None
        self.ai_service: Optional[Any] = None
        self.is_snapshot = False
        self.source_depth = 0

    # --- environment ---

    def set(self, key: str, value: str) -> None:
        """Sets (exports) an environment variable."""
        self.env[key] = value

    def get(self, key: str) -> Optional[str]:
        """Retrieves an environment variable. Returns None if key does not exist."""
        return self.env.get(key)

    def unset(self, key: str) -> bool:
        """Removes an environment variable. Returns False when it was not set."""
        return self.env.pop(key, None) is not None

    # --- paths ---

    @property
    def home(self) -> str:
        return self.env.get("HOME") or str(Path.home())

    def expand_user(self, path: str) -> str:
        """Expands a leading `~` or `~/` using the session's HOME."""
        if path == "~":
            return self.home
        if path.startswith("~/"):
            return os.path.join(self.home, path[2:])
        return path

    def resolve_path(self, path: str) -> Path:
        """Resolves a user-supplied path against the session's working directory."""
        p = Path(self.expand_user(path))
        if not p.is_absolute():
            p = Path(self.cwd) / p
        return p

    def change_directory(self, target: Path) -> None:
        """Moves the session to `target`, remembering where it came from."""
        self.previous_cwd = self.cwd
        self.cwd = str(target.resolve())
        self.env["OLDPWD"] = self.previous_cwd
        self.env["PWD"] = self.cwd

    # --- pipelines ---

    def snapshot(self) -> "ShellContext":
        """
        Copy used by built-ins running as a stage of a multi-stage pipeline.

        Changes made to the copy are discarded when the stage ends, just as
        a forked stage would lose them.
        """
        clone = copy.copy(self)
        clone.env = dict(self.env)
        clone.aliases = dict(self.aliases)
        clone.is_snapshot = True
        return clone

    def __repr__(self) -> str:
        """Provides a string representation of the context state."""
        return f"<ShellContext cwd={self.cwd!r} aliases={len(self.aliases)} env_count={len(self.env)}>"
