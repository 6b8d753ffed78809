import logging
import os
import tempfile
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Deque, List, Optional

import pandas as pd
from pydantic import ValidationError

from fool_shell.core.parser import split_words
from fool_shell.core.streams import Streams
from fool_shell.model import HistoryEntry

logger = logging.getLogger(__name__)


class ShellHistoryManager:
    """
    Stores every executed line with its exit code, timestamp and working
    directory. Entries are appended to a JSON Lines file and kept in memory,
    bounded to `max_entries` (oldest dropped first).
    """

    def __init__(self, history_file: Optional[Path] = None, max_entries: int = 10000):
        self.history_file = history_file
        self.max_entries = max_entries
        self._entries: Deque[HistoryEntry] = deque(maxlen=max_entries)
        self._appended_since_compact = 0

        if self.history_file is not None:
            self.history_file.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    @classmethod
    def memory_only(cls, max_entries: int = 10000) -> "ShellHistoryManager":
        return cls(history_file=None, max_entries=max_entries)

    # --- collaborator interface ---

    def record(
        self,
        exit_code: int,
        command_text: str,
        timestamp: Optional[datetime] = None,
        working_directory: Optional[str] = None,
    ) -> HistoryEntry:
        """Records one executed line. Persistence failures are logged, never raised."""
        entry = HistoryEntry(
            command=command_text,
            exit_code=exit_code,
            timestamp=timestamp or datetime.now(timezone.utc),
            cwd=working_directory,
        )
        self._entries.append(entry)

        if self.history_file is not None:
            try:
                with open(self.history_file, "a", encoding="utf-8", newline="\n") as f:
                    f.write(entry.format_for_file())
            except OSError as e:
                logger.error("Failed to append to history file %s: %s", self.history_file, e)
            else:
                self._appended_since_compact += 1
                # The file may hold up to twice the bound before it is rewritten.
                if self._appended_since_compact >= self.max_entries:
                    self.compact()
        return entry

    # --- queries ---

    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def get_all_commands(self) -> List[str]:
        return [e.command for e in self._entries]

    def get_recent(self, count: int) -> List[HistoryEntry]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def search(self, text: str) -> List[HistoryEntry]:
        return [e for e in self._entries if text in e.command]

    def __len__(self) -> int:
        return len(self._entries)

    # --- maintenance ---

    def clear(self) -> bool:
        self._entries.clear()
        if self.history_file is None:
            return True
        return self._rewrite_history_atomically([])

    def compact(self) -> bool:
        """Rewrites the file so it holds exactly the in-memory entries."""
        if self.history_file is None:
            return True
        ok = self._rewrite_history_atomically(list(self._entries))
        if ok:
            self._appended_since_compact = 0
        return ok

    def display_info(self, streams: Streams) -> int:
        """Prints statistics about the recorded history."""
        if not self._entries:
            streams.out("History is empty.")
            return 0

        df = pd.DataFrame(
            {
                "command": [e.command for e in self._entries],
                "exit_code": [e.exit_code for e in self._entries],
            }
        )
        df["token_count"] = df["command"].apply(self._get_token_count)
        total = len(df)
        unique = df["command"].nunique()
        failed = int((df["exit_code"].fillna(0) != 0).sum())
        top = df["command"].map(lambda c: c.split()[0] if c.split() else c).value_counts().head(5)

        streams.out("--- History Information & Stats ---")
        streams.out(f"Total Commands Logged:   {total}")
        streams.out(f"Unique Commands:         {unique}")
        streams.out(f"Failed Commands:         {failed}")
        streams.out(f"Median Command Length:   {df['token_count'].median():.2f} tokens")
        streams.out("Most Used:")
        for name, count in top.items():
            streams.out(f"  {name:<20} {count}")
        return 0

    @staticmethod
    def _get_token_count(cmd: str) -> int:
        """Helper to count tokens in a command string safely."""
        try:
            return len(split_words(cmd))
        except ValueError:
            return len(cmd.split())

    # --- persistence ---

    def _load(self) -> None:
        if not self.history_file.exists():
            return
        try:
            lines = self.history_file.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.error("Failed to read history file: %s", e)
            return

        skipped = 0
        for line in lines:
            if not line.strip():
                continue
            try:
                self._entries.append(HistoryEntry.model_validate_json(line))
            except ValidationError:
                skipped += 1
        if skipped:
            logger.warning("Skipped %d malformed history line(s) in %s", skipped, self.history_file)
        logger.debug("Loaded %d history entries from %s", len(self._entries), self.history_file)

    def _rewrite_history_atomically(self, final_entries: List[HistoryEntry]) -> bool:
        """Writes the new history to a temp file and replaces the old one atomically."""
        temp_path = None

        try:
            content = "".join(e.format_for_file() for e in final_entries)

            fd, temp_path_str = tempfile.mkstemp(
                dir=self.history_file.parent,
                prefix=f"{self.history_file.name}.",
                suffix=".tmp"
            )
            temp_path = Path(temp_path_str)

            with os.fdopen(fd, "w", encoding="utf-8", newline='\n') as f:
                f.write(content)

            os.replace(temp_path, self.history_file)
            return True

        except OSError as e:
            logger.error("Critical: Failed to rewrite history: %s", e, exc_info=True)

            if temp_path is not None and temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass

            return False
