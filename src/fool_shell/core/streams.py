# src/fool_shell/core/streams.py
import sys
from typing import Optional, TextIO


class Streams:
    """
    The standard streams a built-in reads from and writes to.

    For a built-in running alone these are the terminal streams (or the
    redirection targets); inside a pipeline they are the adjacent pipe ends.
    """

    def __init__(
        self,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ):
        # Resolved lazily so pytest's capsys/capfd replacements are honoured.
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr

    @property
    def stdin(self) -> TextIO:
        return self._stdin if self._stdin is not None else sys.stdin

    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    def out(self, text: str = "") -> None:
        print(text, file=self.stdout)

    def err(self, text: str) -> None:
        print(text, file=self.stderr)
