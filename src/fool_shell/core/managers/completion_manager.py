import logging
import os
import re
from typing import Any, Dict, Iterable, List, Optional

from prompt_toolkit.completion import CompleteEvent, Completion, PathCompleter
from prompt_toolkit.document import Document

from fool_shell.core.context.shell_context import ShellContext

logger = logging.getLogger(__name__)

# Regex to find the last pipe or redirection operator *before* the cursor
OPERATOR_PATTERN = re.compile(r"(\|\s*|>>?\s*|<\s*)")


class CompletionManager:
    """
    Generates completion suggestions for the interactive prompt.

    The first word of a pipeline stage completes to built-ins, aliases and
    executables on PATH; later words and redirection targets complete to
    file paths relative to the session's working directory. Nothing is
    suggested in AI mode.
    """

    def __init__(self, shell_context: ShellContext, command_hierarchy: Dict[str, Any]):
        self.ctx = shell_context
        self.command_hierarchy = command_hierarchy
        self._path_completer = PathCompleter(get_paths=lambda: [self.ctx.cwd], expanduser=True)
        self._exe_cache_key: Optional[str] = None
        self._exe_cache: List[str] = []

    def generate_completions(self, document: Document, complete_event: Optional[CompleteEvent] = None) -> Iterable[Completion]:
        text_before_cursor = document.text_before_cursor
        if text_before_cursor.lstrip().startswith(self.ctx.ai_trigger):
            return

        last_op_match = None
        for match in OPERATOR_PATTERN.finditer(text_before_cursor):
            last_op_match = match

        segment_start_index = last_op_match.end() if last_op_match else 0
        relevant_text = text_before_cursor[segment_start_index:]
        words_in_segment = relevant_text.split()
        word_before_cursor = document.get_word_before_cursor(WORD=True)
        after_redirect = bool(last_op_match and last_op_match.group(1).strip() in (">", ">>", "<"))

        is_completing_first_word = not after_redirect and (
            len(words_in_segment) == 0
            or (len(words_in_segment) == 1 and not relevant_text.endswith(" "))
        )

        if is_completing_first_word:
            yield from self._get_command_completions(word_before_cursor)
            return

        if len(words_in_segment) >= 1 and not after_redirect:
            hierarchy_entry = self.command_hierarchy.get(words_in_segment[0])
            completing_second = (
                (len(words_in_segment) == 1 and relevant_text.endswith(" "))
                or (len(words_in_segment) == 2 and not relevant_text.endswith(" "))
            )
            if isinstance(hierarchy_entry, dict) and completing_second:
                yield from self._get_sub_command_completions(hierarchy_entry.keys(), word_before_cursor)
                return

        yield from self._path_completer.get_completions(
            Document(word_before_cursor), complete_event or CompleteEvent()
        )

    # --- Helper methods for different completion types ---

    def _get_command_completions(self, word_before_cursor: str) -> Iterable[Completion]:
        start_pos = -len(word_before_cursor)
        seen = set()
        sources = (
            (sorted(self.command_hierarchy.keys()), "Built-in"),
            (sorted(self.ctx.aliases.keys()), "Alias"),
            (self._executables(), "Command"),
        )
        for names, meta in sources:
            for name in names:
                if name.startswith(word_before_cursor) and name not in seen:
                    seen.add(name)
                    yield Completion(name, start_position=start_pos, display_meta=meta)

    def _get_sub_command_completions(self, subcommands: Iterable[str], word_before_cursor: str) -> Iterable[Completion]:
        start_pos = -len(word_before_cursor)
        for sub in sorted(subcommands):
            if sub.startswith(word_before_cursor):
                yield Completion(sub, start_position=start_pos)

    def _executables(self) -> List[str]:
        """Executable names on the session's PATH, cached until PATH changes."""
        path = self.ctx.env.get("PATH", os.defpath)
        if path == self._exe_cache_key:
            return self._exe_cache

        names = set()
        for directory in path.split(os.pathsep):
            if not directory:
                continue
            try:
                with os.scandir(directory) as it:
                    for entry in it:
                        try:
                            if entry.is_file() and os.access(entry.path, os.X_OK):
                                names.add(entry.name)
                        except OSError:
                            continue
            except OSError:
                continue
        logger.debug("Indexed %d executables on PATH.", len(names))
        self._exe_cache_key = path
        self._exe_cache = sorted(names)
        return self._exe_cache
